"""Configuration discovery, merging and normalization."""

from __future__ import annotations

import copy
import json
import os
import platform as platform_module
import re
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .file_types import get_default_file_type
from .files import resolve_path, resolve_paths
from .schemas import validate

LOGGER = structlog.get_logger("doc_detective", component="config")

CONFIG_FILE_NAMES = (".doc-detective.json", ".doc-detective.yaml", ".doc-detective.yml")
ENV_CONFIG = "DOC_DETECTIVE"
ENV_BROWSERS_PATH = "PLAYWRIGHT_BROWSERS_PATH"
DEFAULT_MAX_RUNNERS = 4
STATEMENT_KEYS = ("testStart", "testEnd", "ignoreStart", "ignoreEnd", "step")
LOG_LEVELS = {
    "silent": "CRITICAL",
    "error": "ERROR",
    "warning": "WARNING",
    "info": "INFO",
    "debug": "DEBUG",
}
_PLATFORMS = {"darwin": "mac", "linux": "linux", "win32": "windows"}
_BROWSER_DIRECTORIES = (("chromium-", "chrome"), ("firefox-", "firefox"), ("webkit-", "webkit"))
_ENV_REFERENCE = re.compile(r"(?<!\$)\$([A-Za-z0-9_]+)")
_RESERVED_KEYS = {"__proto__", "constructor", "prototype"}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge mappings recursively; lists and scalars in ``override`` replace."""

    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict):
            current = result.get(key)
            result[key] = deep_merge(current if isinstance(current, dict) else {}, value)
        else:
            result[key] = value
    return result


def read_env_json(name: str) -> Optional[dict[str, Any]]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.warning("env_json_invalid", variable=name, error=str(exc))
        return None
    if not isinstance(payload, dict):
        LOGGER.warning("env_json_not_object", variable=name)
        return None
    return payload


def discover_config_file(cwd: Optional[Path] = None) -> Optional[Path]:
    base = cwd or Path.cwd()
    for name in CONFIG_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Unable to read config file {path}: {exc}") from exc
    try:
        payload = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Config file {path} is not valid JSON or YAML: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file {path} must contain an object")
    return payload


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
    cwd: Optional[Path] = None,
) -> tuple[dict[str, Any], Optional[Path]]:
    """Return the merged raw config and the file it came from.

    Precedence, lowest first: config file, ``DOC_DETECTIVE`` env ``config``, ``overrides``.
    """

    config_path = path
    if config_path is not None and not config_path.is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")
    if config_path is None:
        config_path = discover_config_file(cwd)

    config = _read_config_file(config_path) if config_path else {}
    if config_path:
        LOGGER.debug("config_file_loaded", path=str(config_path))

    env_payload = read_env_json(ENV_CONFIG) or {}
    if isinstance(env_payload.get("config"), dict):
        config = deep_merge(config, env_payload["config"])

    if overrides:
        config = deep_merge(config, {key: value for key, value in overrides.items() if value is not None})
    return config, config_path


def replace_envs(value: Any) -> Any:
    """Substitute ``$NAME`` references with defined environment variables.

    A string that is exactly one reference to a variable holding a JSON
    object is replaced by that object.
    """

    if isinstance(value, dict):
        return {key: replace_envs(item) for key, item in value.items() if key not in _RESERVED_KEYS}
    if isinstance(value, list):
        return [replace_envs(item) for item in value]
    if not isinstance(value, str) or "$" not in value:
        return value

    match = _ENV_REFERENCE.fullmatch(value)
    if match and os.environ.get(match.group(1)):
        raw = os.environ[match.group(1)]
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, (dict, list)):
            return parsed

    def substitute(reference: re.Match[str]) -> str:
        replacement = os.environ.get(reference.group(1))
        return replacement if replacement else reference.group(0)

    return _ENV_REFERENCE.sub(substitute, value)


def load_variables(path: str) -> bool:
    """Load a dotenv file into the process environment, overriding existing values."""

    if not Path(path).is_file():
        LOGGER.warning("variables_file_missing", path=path)
        return False
    load_dotenv(path, override=True)
    LOGGER.debug("variables_loaded", path=path)
    return True


def current_platform() -> str:
    return _PLATFORMS.get(sys.platform, "linux")


def _browsers_path() -> Path:
    configured = os.environ.get(ENV_BROWSERS_PATH)
    if configured and configured != "0":
        return Path(configured)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "ms-playwright"
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", Path.home())) / "ms-playwright"
    return Path.home() / ".cache" / "ms-playwright"


@lru_cache(maxsize=4)
def _installed_browsers(browsers_path: str) -> tuple[tuple[str, str], ...]:
    root = Path(browsers_path)
    if not root.is_dir():
        return ()
    found: dict[str, str] = {}
    for entry in sorted(root.iterdir()):
        for prefix, name in _BROWSER_DIRECTORIES:
            if entry.is_dir() and entry.name.startswith(prefix) and name not in found:
                found[name] = str(entry)
    return tuple(found.items())


def available_apps() -> list[dict[str, Any]]:
    """Browsers installed for the automation driver, in preference order."""

    installed = dict(_installed_browsers(str(_browsers_path())))
    apps = []
    for name in ("firefox", "chrome", "webkit"):
        if name in installed:
            apps.append({"name": name, "path": installed[name]})
    return apps


def clear_app_cache() -> None:
    _installed_browsers.cache_clear()


def detect_environment(cwd: Optional[Path] = None) -> dict[str, Any]:
    return {
        "arch": platform_module.machine(),
        "platform": current_platform(),
        "workingDirectory": str((cwd or Path.cwd()).resolve()),
        "apps": available_apps(),
    }


def resolve_concurrent_runners(value: Any) -> int:
    if value is True:
        return min(os.cpu_count() or 1, DEFAULT_MAX_RUNNERS)
    if value is None or value is False:
        return 1
    return max(int(value), 1)


def resolve_allow_unsafe(config: dict[str, Any]) -> bool:
    explicit = config.get("allowUnsafeSteps")
    if isinstance(explicit, bool):
        return explicit
    env_payload = read_env_json(ENV_CONFIG) or {}
    return env_payload.get("container") is True


def log_level_for(config: dict[str, Any]) -> str:
    return LOG_LEVELS.get(str(config.get("logLevel", "info")), "INFO")


def _as_list(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    return value if isinstance(value, list) else [value]


def _unique(items: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def _extend_file_type(file_type: dict[str, Any]) -> dict[str, Any]:
    base = get_default_file_type(file_type["extends"])
    if base is None:
        raise ConfigurationError(
            f'Invalid config. fileType.extends references unknown fileType definition: "{file_type["extends"]}".'
        )
    file_type.setdefault("name", base["name"])
    file_type["extensions"] = _unique(base.get("extensions", []) + _as_list(file_type.get("extensions")))

    statements = file_type.setdefault("inlineStatements", {})
    for key in STATEMENT_KEYS:
        merged = _unique(_as_list(base["inlineStatements"].get(key)) + _as_list(statements.get(key)))
        if merged:
            statements[key] = merged

    markup = file_type.setdefault("markup", [])
    names = {rule.get("name") for rule in markup}
    markup.extend(rule for rule in base.get("markup", []) if rule["name"] not in names)
    return file_type


def normalize_file_type(file_type: Any) -> dict[str, Any]:
    """Turn a keyword or custom definition into a complete file type mapping."""

    if isinstance(file_type, str):
        resolved = get_default_file_type(file_type)
        if resolved is None:
            raise ConfigurationError(f'Invalid config. "{file_type}" isn\'t a valid fileType value.')
        return resolved

    file_type = copy.deepcopy(file_type)
    if "extensions" in file_type:
        file_type["extensions"] = [str(ext).lstrip(".") for ext in _as_list(file_type["extensions"])]
    statements = file_type.get("inlineStatements")
    if isinstance(statements, dict):
        for key in STATEMENT_KEYS:
            if key in statements:
                statements[key] = _as_list(statements[key])
    for rule in file_type.get("markup") or []:
        rule["regex"] = _as_list(rule.get("regex"))
        if "actions" in rule:
            rule["actions"] = _as_list(rule["actions"])
    if file_type.get("extends"):
        file_type = _extend_file_type(file_type)
    return file_type


def set_config(
    config: dict[str, Any],
    config_path: Optional[Path] = None,
    cwd: Optional[Path] = None,
) -> dict[str, Any]:
    """Validate the merged config and fill in everything the run derives from it."""

    base = config_path if config_path is not None else (cwd or Path.cwd())
    if isinstance(config.get("loadVariables"), str):
        load_variables(resolve_path(config.get("relativePathBase", "file"), config["loadVariables"], str(base)))

    config = replace_envs(copy.deepcopy(config))
    result = validate("config_v3", config)
    if not result.valid:
        raise ConfigurationError(f"Invalid config object: {result.errors}")
    config = result.object

    config["fileTypes"] = [normalize_file_type(file_type) for file_type in _as_list(config.get("fileTypes"))]
    config["input"] = _as_list(config.get("input"))
    config["beforeAny"] = _as_list(config.get("beforeAny"))
    config["afterAll"] = _as_list(config.get("afterAll"))
    config["allowUnsafeSteps"] = resolve_allow_unsafe(config)
    config["concurrentRunners"] = resolve_concurrent_runners(config.get("concurrentRunners"))
    config["environment"] = detect_environment(cwd)

    config = resolve_paths(config, config, str(base), object_type="config")

    LOGGER.debug(
        "config_resolved",
        inputs=config["input"],
        concurrent_runners=config["concurrentRunners"],
        allow_unsafe=config["allowUnsafeSteps"],
    )
    return config
