"""Input discovery, file reading and path resolution."""

from __future__ import annotations

import copy
import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional
from urllib import error, request

import structlog
import yaml

from .detector import detect_tests
from .schemas import validate

LOGGER = structlog.get_logger("doc_detective", component="files")

DEFAULT_TIMEOUT = 30.0
SPEC_EXTENSIONS = ("json", "yaml", "yml")
URI_PREFIXES = ("https://", "http://", "heretto:")
CONFIG_PATH_KEYS = frozenset(
    {
        "input",
        "output",
        "loadVariables",
        "beforeAny",
        "afterAll",
        "mediaDirectory",
        "downloadDirectory",
        "descriptionPath",
        "path",
    }
)
SPEC_PATH_KEYS = frozenset(
    {
        "contentPath",
        "path",
        "directory",
        "before",
        "after",
        "loadVariables",
        "workingDirectory",
        "descriptionPath",
    }
)
_UNRESOLVED_SUBTREES = {
    "config": frozenset({"fileTypes", "environment"}),
    "spec": frozenset({"request", "response"}),
}


def is_remote(path_or_url: str) -> bool:
    return path_or_url.startswith(("http://", "https://"))


def _download(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    req = request.Request(url, headers={"Accept": "*/*"}, method="GET")
    with request.urlopen(req, timeout=timeout) as response:
        return response.read().decode("utf-8", errors="replace")


def _parse_by_extension(path_or_url: str, text: str) -> Any:
    extension = path_or_url.rsplit(".", 1)[-1].lower() if "." in path_or_url else ""
    if extension == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("json_parse_failed", path=path_or_url, error=str(exc))
            return text
    if extension in {"yaml", "yml"}:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            LOGGER.warning("yaml_parse_failed", path=path_or_url, error=str(exc))
            return text
    return text


def read_file(path_or_url: str) -> Any:
    """Read a local file or URL; JSON and YAML content comes back parsed.

    Returns ``None`` when the source can't be read.
    """

    if not isinstance(path_or_url, str) or not path_or_url.strip():
        raise ValueError("path_or_url must be a non-empty string")

    if is_remote(path_or_url):
        try:
            text = _download(path_or_url)
        except (error.URLError, OSError) as exc:
            LOGGER.warning("remote_file_unreadable", url=path_or_url, error=str(exc))
            return None
    else:
        try:
            text = Path(path_or_url).read_text(encoding="utf-8")
        except FileNotFoundError:
            LOGGER.warning("file_not_found", path=path_or_url)
            return None
        except OSError as exc:
            LOGGER.warning("file_unreadable", path=path_or_url, error=str(exc))
            return None
    return _parse_by_extension(path_or_url, text)


def fetch_file(url: str) -> Optional[str]:
    """Download ``url`` into the shared temp directory and return the local path."""

    try:
        text = _download(url)
    except (error.URLError, OSError) as exc:
        LOGGER.warning("remote_file_unreadable", url=url, error=str(exc))
        return None
    file_name = url.rstrip("/").rsplit("/", 1)[-1] or "fetched_file"
    digest = hashlib.md5(text.encode("utf-8")).hexdigest()
    temp_dir = Path(tempfile.gettempdir()) / "doc-detective"
    temp_dir.mkdir(parents=True, exist_ok=True)
    destination = temp_dir / f"{digest}_{file_name}"
    if not destination.exists():
        destination.write_text(text, encoding="utf-8")
    return str(destination)


def resolve_path(base_type: str, relative_path: str, file_path: str) -> str:
    """Make ``relative_path`` absolute; URLs and integration URIs pass through."""

    if relative_path.startswith(URI_PREFIXES) or os.path.isabs(relative_path):
        return relative_path
    if base_type != "file":
        return os.path.abspath(relative_path)
    reference = Path(file_path)
    looks_like_file = reference.is_file() if reference.exists() else reference.suffix != ""
    base_dir = reference.parent if looks_like_file else reference
    return os.path.abspath(os.path.join(base_dir, relative_path))


def _resolve_string(
    node: dict[str, Any], key: str, value: str, base_type: str, file_path: str
) -> str:
    if key == "path" and isinstance(node.get("directory"), str) and not value.startswith(URI_PREFIXES):
        directory = node["directory"]
        if not os.path.isabs(directory):
            directory = resolve_path(base_type, directory, file_path)
        return value if os.path.isabs(value) else os.path.abspath(os.path.join(directory, value))
    return resolve_path(base_type, value, file_path)


def _walk(node: dict[str, Any], keys: frozenset[str], skipped: frozenset[str], base_type: str, file_path: str) -> None:
    for key, value in list(node.items()):
        if isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, dict):
                    _walk(item, keys, skipped, base_type, file_path)
                elif isinstance(item, str) and key in keys:
                    value[index] = _resolve_string(node, key, item, base_type, file_path)
        elif isinstance(value, dict):
            if key not in skipped:
                _walk(value, keys, skipped, base_type, file_path)
        elif isinstance(value, str) and key in keys:
            node[key] = _resolve_string(node, key, value, base_type, file_path)


def resolve_paths(
    config: dict[str, Any],
    obj: dict[str, Any],
    file_path: str,
    object_type: Optional[str] = None,
) -> dict[str, Any]:
    """Resolve the path-bearing fields of a config or spec in place."""

    if object_type is None:
        if validate("config_v3", obj).valid:
            object_type = "config"
        elif validate("spec_v3", obj).valid:
            object_type = "spec"
        else:
            raise ValueError("Object isn't a valid config or spec.")
    if object_type not in _UNRESOLVED_SUBTREES:
        raise ValueError(f"Invalid object type: {object_type}")
    if not obj:
        return obj

    keys = CONFIG_PATH_KEYS if object_type == "config" else SPEC_PATH_KEYS
    base_type = config.get("relativePathBase", "file")
    _walk(obj, keys, _UNRESOLVED_SUBTREES[object_type], base_type, file_path)
    return obj


def allowed_extensions(config: dict[str, Any]) -> set[str]:
    extensions = set(SPEC_EXTENSIONS)
    for file_type in config.get("fileTypes") or []:
        extensions.update(file_type.get("extensions") or [])
    return extensions


def _extension(path: str) -> str:
    return Path(path).suffix.lstrip(".")


def _hooks_exist(config: dict[str, Any], source: str, content: dict[str, Any]) -> bool:
    for test in content.get("tests") or []:
        for hook in ("before", "after"):
            if not test.get(hook):
                continue
            hook_path = resolve_path(config.get("relativePathBase", "file"), test[hook], source)
            if not Path(hook_path).exists():
                LOGGER.debug("hook_file_missing", source=source, hook=hook, path=hook_path)
                return False
    return True


def is_valid_source_file(config: dict[str, Any], files: list[str], source: str) -> bool:
    if source in files:
        return False
    extension = _extension(source)
    if extension in SPEC_EXTENSIONS:
        content = read_file(source)
        if not isinstance(content, dict):
            LOGGER.debug("spec_file_skipped", source=source, reason="not an object")
            return False
        result = validate("spec_v3", content, add_defaults=False)
        if not result.valid:
            LOGGER.warning("spec_file_invalid", source=source, errors=result.errors)
            return False
        if not _hooks_exist(config, source, content):
            return False
    if extension not in allowed_extensions(config):
        LOGGER.debug("file_extension_skipped", source=source)
        return False
    return True


def _walk_directory(config: dict[str, Any], root: Path, files: list[str]) -> None:
    pending = [root]
    while pending:
        directory = pending.pop(0)
        for entry in sorted(directory.iterdir()):
            if entry.name == "node_modules" or entry.name.startswith("."):
                continue
            if entry.is_file():
                candidate = str(entry.resolve())
                if is_valid_source_file(config, files, candidate):
                    files.append(candidate)
            elif entry.is_dir() and config.get("recursive", True):
                pending.append(entry)


def qualify_files(config: dict[str, Any]) -> list[str]:
    """Expand ``beforeAny``, ``input`` and ``afterAll`` into the files to parse, in order."""

    sequence = list(config.get("beforeAny") or []) + list(config.get("input") or []) + list(config.get("afterAll") or [])
    if not sequence:
        LOGGER.warning("no_input_sources")
        return []

    config.setdefault("_herettoPathMapping", {})
    files: list[str] = []
    for source in sequence:
        if source.startswith("heretto:"):
            LOGGER.warning("integration_source_unsupported", source=source)
            continue
        if is_remote(source):
            fetched = fetch_file(source)
            if fetched is None:
                continue
            source = fetched

        path = Path(source)
        if path.is_file():
            candidate = str(path.resolve())
            if is_valid_source_file(config, files, candidate):
                files.append(candidate)
        elif path.is_dir():
            _walk_directory(config, path, files)
        else:
            LOGGER.warning("input_path_inaccessible", source=source)
    LOGGER.debug("files_qualified", count=len(files))
    return files


def generate_spec_id(file_path: str) -> str:
    absolute = os.path.abspath(file_path)
    cwd = os.getcwd()
    relative = os.path.relpath(absolute, cwd) if absolute.startswith(cwd) else absolute
    normalized = relative.replace(os.sep, "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return "".join(char if char.isascii() and (char.isalnum() or char in "._-/") else "_" for char in normalized)


def _hook_steps(hook_path: str) -> list[dict[str, Any]]:
    hook = read_file(hook_path)
    if isinstance(hook, dict):
        tests = hook.get("tests") or []
        if tests and isinstance(tests[0], dict):
            return list(tests[0].get("steps") or [])
    return []


def _valid_steps(steps: list[Any]) -> list[dict[str, Any]]:
    kept = []
    for step in steps:
        result = validate("step_v3", step, add_defaults=False)
        if result.valid:
            kept.append(result.object)
        else:
            LOGGER.warning("invalid_step_dropped", step=json.dumps(step, default=str), errors=result.errors)
    return kept


def _parse_spec_document(config: dict[str, Any], file_path: str, content: dict[str, Any]) -> Optional[dict[str, Any]]:
    content = resolve_paths(config, copy.deepcopy(content), file_path, object_type="spec")
    for test in content.get("tests") or []:
        steps = list(test.get("steps") or [])
        if test.get("before"):
            steps = _hook_steps(test["before"]) + steps
        if test.get("after"):
            steps = steps + _hook_steps(test["after"])
        if "steps" in test or steps:
            test["steps"] = _valid_steps(steps)
            if not test["steps"]:
                del test["steps"]

    result = validate("spec_v3", content, add_defaults=False)
    if not result.valid:
        LOGGER.warning("spec_file_invalid", source=file_path, errors=result.errors)
        return None
    return resolve_paths(config, result.object, file_path, object_type="spec")


def find_file_type(config: dict[str, Any], extension: str) -> Optional[dict[str, Any]]:
    for file_type in config.get("fileTypes") or []:
        if extension in (file_type.get("extensions") or []):
            return file_type
    return None


def _runshell_spec(file_path: str, file_type: dict[str, Any], spec: dict[str, Any]) -> Optional[dict[str, Any]]:
    run_shell = json.loads(json.dumps(file_type["runShell"]).replace("$1", file_path.replace("\\", "\\\\")))
    result = validate("test_v3", {"steps": [{"runShell": run_shell}]}, add_defaults=False)
    if not result.valid:
        LOGGER.warning("runshell_conversion_failed", source=file_path, errors=result.errors)
        return None
    spec["tests"].append(result.object)
    return spec


def parse_tests(config: dict[str, Any], files: list[str]) -> list[dict[str, Any]]:
    """Read each qualified file and turn it into a spec, dropping empty ones."""

    specs: list[dict[str, Any]] = []
    for file_path in files:
        content = read_file(file_path)
        if content is None:
            continue
        if isinstance(content, dict):
            document = _parse_spec_document(config, file_path, content)
            if document is not None:
                specs.append(document)
            continue
        if not isinstance(content, str):
            LOGGER.warning("file_content_unsupported", source=file_path)
            continue

        file_type = find_file_type(config, _extension(file_path))
        if file_type is None:
            continue
        spec: Optional[dict[str, Any]] = {"specId": generate_spec_id(file_path), "contentPath": file_path, "tests": []}
        if file_type.get("runShell"):
            spec = _runshell_spec(file_path, file_type, spec)
        else:
            spec["tests"] = detect_tests(content=content, file_path=file_path, file_type=file_type, config=config)
        if spec is None:
            continue

        spec["tests"] = [test for test in spec["tests"] if test.get("steps")]
        if not spec["tests"]:
            LOGGER.debug("spec_without_tests", source=file_path)
            continue
        result = validate("spec_v3", spec, add_defaults=False)
        if not result.valid:
            LOGGER.warning("spec_invalid", source=file_path, errors=result.errors)
            continue
        specs.append(resolve_paths(config, result.object, file_path, object_type="spec"))
    LOGGER.debug("specs_parsed", count=len(specs))
    return specs
