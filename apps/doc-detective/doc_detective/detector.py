"""Extract test and step definitions embedded in documentation text."""

from __future__ import annotations

import copy
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
import yaml

from .migrations import migrate
from .schemas import validate

LOGGER = structlog.get_logger("doc_detective", component="detector")

MAX_PATTERN_LENGTH = 1500
STATEMENT_TYPES = ("testStart", "testEnd", "ignoreStart", "ignoreEnd", "step")
_RESERVED_KEYS = {"__proto__", "constructor", "prototype"}
_ATTRIBUTE_PATTERN = re.compile(r"""([\w.]+)=(?:"([^"]*)"|'([^']*)'|(\S+))""")
_NUMBER_PATTERN = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?$")
_NUMERIC_VARIABLE = re.compile(r"\$[0-9]+")
_PLACEHOLDER_STEP = {"action": "goTo", "url": "https://doc-detective.com"}


@dataclass
class Statement:
    """One regex match found in the document."""

    type: str
    sort_index: int
    groups: dict[str, str]
    markup: Optional[dict[str, Any]] = field(default=None)

    @property
    def content(self) -> str:
        return self.groups.get("1") or self.groups.get("0", "")


def safe_regex(pattern: Any) -> Optional[re.Pattern[str]]:
    """Compile an operator-supplied pattern, refusing empty, oversized, or invalid ones."""

    if not isinstance(pattern, str) or not pattern:
        return None
    if len(pattern) > MAX_PATTERN_LENGTH:
        LOGGER.warning("pattern_too_long", length=len(pattern))
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        LOGGER.warning("pattern_invalid", pattern=pattern, error=str(exc))
        return None


def _coerce_attribute(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    if _NUMBER_PATTERN.match(value):
        number = float(value)
        return int(number) if number.is_integer() and re.match(r"^[-+]?\d+$", value) else number
    return value


def parse_xml_attributes(text: Any) -> Optional[dict[str, Any]]:
    """Parse ``key=value`` attribute strings; dotted keys build nested mappings."""

    if not isinstance(text, str):
        return None
    stripped = text.strip()
    if stripped.startswith(("{", "[", "-")) or re.match(r"^\w+:\s", stripped):
        return None

    result: dict[str, Any] = {}
    matched = False
    for match in _ATTRIBUTE_PATTERN.finditer(stripped):
        matched = True
        key_path = match.group(1)
        raw = next(group for group in match.groups()[1:] if group is not None)
        value = _coerce_attribute(raw)
        keys = key_path.split(".")
        if any(key in _RESERVED_KEYS for key in keys):
            continue
        current = result
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value
    return result if matched else None


def _mapping_or_none(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) else None


def parse_object(text: Any) -> Optional[dict[str, Any]]:
    """Parse attribute, JSON, or YAML text into a mapping, first success wins."""

    if not isinstance(text, str):
        return _mapping_or_none(text)

    attributes = parse_xml_attributes(text)
    if attributes is not None:
        return attributes

    try:
        return _mapping_or_none(json.loads(text))
    except json.JSONDecodeError:
        pass

    stripped = text.strip()
    if stripped.startswith(("{", "[")) and '\\"' in stripped:
        try:
            return _mapping_or_none(json.loads(json.loads(f'"{text}"')))
        except (json.JSONDecodeError, TypeError):
            try:
                return _mapping_or_none(json.loads(text.replace('\\"', '"')))
            except json.JSONDecodeError:
                pass

    try:
        return _mapping_or_none(yaml.safe_load(text))
    except yaml.YAMLError:
        return None


def _substitute(text: str, values: dict[str, str]) -> Optional[str]:
    references = _NUMERIC_VARIABLE.findall(text)
    if not references:
        return text
    if not all(reference[1:] in values for reference in references):
        return None
    return _NUMERIC_VARIABLE.sub(lambda match: values[match.group(0)[1:]], text)


def replace_numeric_variables(template: Any, values: dict[str, str]) -> Any:
    """Fill ``$N`` placeholders from captured groups.

    A string with a missing group becomes ``None``; inside a mapping the
    affected key is dropped instead.
    """

    result = copy.deepcopy(template)
    if isinstance(result, str):
        return _substitute(result, values)
    if isinstance(result, dict):
        for key in list(result):
            value = result[key]
            if isinstance(value, (dict, list)):
                result[key] = replace_numeric_variables(value, values)
            elif isinstance(value, str):
                replaced = _substitute(value, values)
                if replaced is None:
                    del result[key]
                else:
                    result[key] = replaced
        return result
    if isinstance(result, list):
        items = []
        for item in result:
            replaced = replace_numeric_variables(item, values)
            if replaced is not None:
                items.append(replaced)
        return items
    return result


def _groups(match: re.Match[str]) -> dict[str, str]:
    groups = {"0": match.group(0)}
    for index, group in enumerate(match.groups(), start=1):
        if group is not None:
            groups[str(index)] = group
    return groups


def _sort_index(match: re.Match[str]) -> int:
    first = match.group(1) if match.re.groups else None
    return match.start() + len(first) if first else match.start()


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def collect_statements(content: str, file_type: dict[str, Any], detect_steps: bool) -> list[Statement]:
    statements: list[Statement] = []
    inline = file_type.get("inlineStatements") or {}
    for statement_type in STATEMENT_TYPES:
        for pattern in _as_list(inline.get(statement_type)):
            regex = safe_regex(pattern)
            if regex is None:
                continue
            for match in regex.finditer(content):
                statements.append(Statement(statement_type, _sort_index(match), _groups(match)))

    if detect_steps:
        for markup in file_type.get("markup") or []:
            for pattern in _as_list(markup.get("regex")):
                regex = safe_regex(pattern)
                if regex is None:
                    continue
                matches = list(regex.finditer(content))
                if not matches:
                    continue
                if markup.get("batchMatches"):
                    combined = "\n".join(
                        (match.group(1) if match.re.groups else None) or match.group(0) for match in matches
                    )
                    statements.append(
                        Statement(
                            "detectedStep",
                            min(match.start() for match in matches),
                            {"0": combined, "1": combined},
                            markup,
                        )
                    )
                    continue
                for match in matches:
                    statements.append(Statement("detectedStep", _sort_index(match), _groups(match), markup))

    statements.sort(key=lambda statement: statement.sort_index)
    return statements


def find_heretto_integration(config: dict[str, Any], file_path: str) -> Optional[str]:
    mapping = config.get("_herettoPathMapping") or {}
    normalized = file_path.replace("\\", "/")
    for output_path, integration_name in mapping.items():
        if normalized.startswith(output_path.replace("\\", "/")):
            return integration_name
    return None


def _attach_source_integration(step: dict[str, Any], config: dict[str, Any], file_path: str) -> None:
    if "screenshot" not in step or not config.get("_herettoPathMapping"):
        return
    integration = find_heretto_integration(config, file_path)
    if integration is None:
        return
    screenshot = step["screenshot"]
    if isinstance(screenshot, str):
        screenshot = {"path": screenshot}
    elif not isinstance(screenshot, dict):
        screenshot = {}
    screenshot["sourceIntegration"] = {
        "type": "heretto",
        "integrationName": integration,
        "filePath": screenshot.get("path", ""),
        "contentPath": file_path,
    }
    step["screenshot"] = screenshot


def _parse_header_lines(headers: str) -> dict[str, str]:
    parsed = {}
    for line in headers.split("\n"):
        key, separator, value = line.partition(":")
        if separator and key.strip() and value.strip():
            parsed[key.strip()] = value.strip()
    return parsed


def _normalize_http_request(step: dict[str, Any]) -> None:
    http_request = step.get("httpRequest")
    if not isinstance(http_request, dict) or not isinstance(http_request.get("request"), dict):
        return
    request = http_request["request"]
    if isinstance(request.get("headers"), str):
        request["headers"] = _parse_header_lines(request["headers"])
    body = request.get("body")
    if isinstance(body, str) and body.strip().startswith(("{", "[")):
        try:
            request["body"] = json.loads(body)
        except json.JSONDecodeError:
            pass


def _steps_from_markup(statement: Statement, config: dict[str, Any], file_path: str) -> list[dict[str, Any]]:
    steps = []
    for action in _as_list((statement.markup or {}).get("actions")):
        if isinstance(action, str):
            if action == "runCode":
                continue
            step: Any = {action: statement.content}
            if config.get("origin") and action in {"goTo", "checkLink"}:
                step[action] = {"url": statement.content, "origin": config["origin"]}
        else:
            step = replace_numeric_variables(action, statement.groups)
            if not isinstance(step, dict):
                continue
        _attach_source_integration(step, config, file_path)
        _normalize_http_request(step)
        steps.append(step)
    return steps


def _validated_step(step: dict[str, Any]) -> Optional[dict[str, Any]]:
    result = validate("step_v3", step, add_defaults=False)
    if not result.valid:
        LOGGER.warning("invalid_step_dropped", step=json.dumps(step, default=str), errors=result.errors)
        return None
    return result.object


def _start_test(parsed: dict[str, Any], test_id: str, file_path: str) -> Optional[dict[str, Any]]:
    test = parsed
    if any(key in test for key in ("id", "file", "setup", "cleanup")):
        placeholder = "steps" not in test
        if placeholder:
            test["steps"] = [dict(_PLACEHOLDER_STEP)]
        legacy = validate("test_v2", test, add_defaults=False)
        if not legacy.valid:
            LOGGER.warning("invalid_test_dropped", file_path=file_path, errors=legacy.errors)
            return None
        test = migrate("test_v2", "test_v3", test)
        if placeholder:
            test["steps"] = []
    if test.get("detectSteps") == "false":
        test["detectSteps"] = False
    elif test.get("detectSteps") == "true":
        test["detectSteps"] = True
    test.setdefault("testId", test_id)
    test.setdefault("steps", [])
    return test


def detect_tests(
    *,
    content: str,
    file_path: str,
    file_type: dict[str, Any],
    config: Optional[dict[str, Any]] = None,
) -> list[dict[str, Any]]:
    """Fold inline statements and markup matches into validated tests.

    Invalid steps and tests are logged and dropped.
    """

    config = config or {}
    statements = collect_statements(content, file_type, bool(config.get("detectSteps", True)))

    tests: list[dict[str, Any]] = []
    test_id = str(uuid.uuid4())
    ignore = False

    def current_test() -> dict[str, Any]:
        for test in tests:
            if test.get("testId") == test_id:
                return test
        test = {"testId": test_id, "steps": []}
        tests.append(test)
        return test

    for statement in statements:
        if statement.type == "testEnd":
            test_id = str(uuid.uuid4())
            ignore = False
        elif statement.type == "ignoreStart":
            ignore = True
        elif statement.type == "ignoreEnd":
            ignore = False
        elif ignore:
            continue
        elif statement.type == "testStart":
            parsed = parse_object(statement.content)
            if parsed is None:
                continue
            test = _start_test(parsed, test_id, file_path)
            if test is None:
                continue
            test_id = test["testId"]
            tests.append(test)
        elif statement.type == "detectedStep":
            test = current_test()
            if test.get("detectSteps") is False:
                continue
            for step in _steps_from_markup(statement, config, file_path):
                validated = _validated_step(step)
                if validated is not None:
                    test["steps"].append(validated)
        elif statement.type == "step":
            test = current_test()
            parsed = parse_object(statement.content)
            if parsed is None:
                continue
            validated = _validated_step(parsed)
            if validated is not None:
                test["steps"].append(validated)

    validated_tests = []
    for test in tests:
        if not test.get("steps"):
            LOGGER.debug("empty_test_dropped", file_path=file_path, test_id=test.get("testId"))
            continue
        result = validate("test_v3", test, add_defaults=False)
        if not result.valid:
            LOGGER.warning("invalid_test_dropped", file_path=file_path, errors=result.errors)
            continue
        validated_tests.append(result.object)
    return validated_tests
