"""Transform legacy (v2) documents into the canonical v3 shapes."""

from __future__ import annotations

import re
from typing import Any, Callable

from .errors import MigrationContractError, UnsupportedTransformError
from .schemas import COMPATIBLE_SCHEMAS, validate


def migrate(current_schema: str, target_schema: str, obj: Any) -> Any:
    """Map ``obj`` from ``current_schema`` onto ``target_schema``.

    The result is validated against the target; a failure there means a
    mapping below is wrong and raises :class:`MigrationContractError`.
    """

    if current_schema == target_schema:
        return obj
    if current_schema not in COMPATIBLE_SCHEMAS.get(target_schema, []):
        raise UnsupportedTransformError(f"Can't transform from {current_schema} to {target_schema}.")

    transformed = _TARGETS[target_schema](current_schema, obj)
    result = validate(target_schema, transformed)
    if not result.valid:
        raise MigrationContractError(f"Invalid object: {result.errors}")
    return result.object


def _compact(mapping: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


def _fraction(percentage: Any) -> Any:
    if percentage is None:
        return None
    return percentage / 100


def _overwrite(value: Any) -> Any:
    return "aboveVariation" if value == "byVariation" else value


def _captures(entries: list[dict[str, Any]] | None, template: str, key: str) -> dict[str, str]:
    return {entry["name"]: f'{template}, "{entry[key]}")' for entry in entries or []}


def _capture_output(obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "path": obj.get("savePath"),
        "directory": obj.get("saveDirectory"),
        "maxVariation": _fraction(obj.get("maxVariation")),
        "overwrite": _overwrite(obj.get("overwrite")),
    }


def _goto_step(obj: dict[str, Any]) -> dict[str, Any]:
    return {"goTo": _compact({"url": obj.get("url"), "origin": obj.get("origin")})}


def _check_link_step(obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "checkLink": _compact(
            {"url": obj.get("url"), "origin": obj.get("origin"), "statusCodes": obj.get("statusCodes")}
        )
    }


def _type_options(type_keys: Any) -> Any:
    if isinstance(type_keys, dict):
        return _compact({"keys": type_keys.get("keys"), "inputDelay": type_keys.get("delay")})
    return {"keys": type_keys}


def _find_step(obj: dict[str, Any]) -> dict[str, Any]:
    find = {
        "selector": obj.get("selector"),
        "elementText": obj.get("matchText"),
        "timeout": obj.get("timeout"),
        "moveTo": obj.get("moveTo"),
        "click": obj.get("click"),
    }
    if obj.get("typeKeys") is not None:
        find["type"] = _type_options(obj["typeKeys"])
    step: dict[str, Any] = {"find": _compact(find)}
    variables = _captures(obj.get("setVariables"), "extract($$element.text", "regex")
    if variables:
        step["variables"] = variables
    return step


def _http_request_step(obj: dict[str, Any]) -> dict[str, Any]:
    request = _compact(
        {
            "body": obj.get("requestData"),
            "headers": obj.get("requestHeaders"),
            "parameters": obj.get("requestParams"),
        }
    )
    response = _compact({"body": obj.get("responseData"), "headers": obj.get("responseHeaders")})
    http_request = {
        "method": obj["method"].lower() if obj.get("method") else None,
        "url": obj.get("url"),
        "openApi": _openapi(obj["openApi"]) if obj.get("openApi") else None,
        "request": request or None,
        "response": response or None,
        "statusCodes": obj.get("statusCodes"),
        "allowAdditionalFields": obj.get("allowAdditionalFields"),
        "timeout": obj.get("timeout"),
        **_capture_output(obj),
    }
    step: dict[str, Any] = {"httpRequest": _compact(http_request)}
    variables = _captures(obj.get("envsFromResponseData"), "jq($$response.body", "jqFilter")
    if variables:
        step["variables"] = variables
    return step


def _shell_fields(obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "args": obj.get("args"),
        "workingDirectory": obj.get("workingDirectory"),
        "exitCodes": obj.get("exitCodes"),
        "stdio": obj.get("output"),
        "timeout": obj.get("timeout"),
        **_capture_output(obj),
    }


def _run_shell_step(obj: dict[str, Any]) -> dict[str, Any]:
    step: dict[str, Any] = {"runShell": _compact({"command": obj.get("command"), **_shell_fields(obj)})}
    variables = _captures(obj.get("setVariables"), "extract($$stdio.stdout", "regex")
    if variables:
        step["variables"] = variables
    return step


def _run_code_step(obj: dict[str, Any]) -> dict[str, Any]:
    run_code = {"language": obj.get("language"), "code": obj.get("code"), **_shell_fields(obj)}
    step: dict[str, Any] = {"runCode": _compact(run_code)}
    variables = _captures(obj.get("setVariables"), "extract($$stdio.stdout", "regex")
    if variables:
        step["variables"] = variables
    return step


def _screenshot_step(obj: dict[str, Any]) -> dict[str, Any]:
    screenshot = {
        "path": obj.get("path"),
        "directory": obj.get("directory"),
        "maxVariation": _fraction(obj.get("maxVariation")),
        "overwrite": _overwrite(obj.get("overwrite")),
        "crop": obj.get("crop"),
    }
    return {"screenshot": _compact(screenshot)}


def _record_step(obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "record": _compact(
            {"path": obj.get("path"), "directory": obj.get("directory"), "overwrite": obj.get("overwrite")}
        )
    }


def _wait_step(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        duration = obj.get("duration")
        return {"wait": duration if duration is not None else True}
    return {"wait": obj}


_STEP_MAPPINGS: dict[str, Callable[[Any], dict[str, Any]]] = {
    "checkLink_v2": _check_link_step,
    "find_v2": _find_step,
    "goTo_v2": _goto_step,
    "httpRequest_v2": _http_request_step,
    "runShell_v2": _run_shell_step,
    "runCode_v2": _run_code_step,
    "saveScreenshot_v2": _screenshot_step,
    "setVariables_v2": lambda obj: {"loadVariables": obj.get("path")},
    "startRecording_v2": _record_step,
    "stopRecording_v2": lambda obj: {"stopRecord": True},
    "typeKeys_v2": lambda obj: {"type": _type_options({"keys": obj.get("keys"), "delay": obj.get("delay")})},
    "wait_v2": _wait_step,
}


def _to_step(current_schema: str, obj: Any) -> dict[str, Any]:
    step = _STEP_MAPPINGS[current_schema](obj)
    if isinstance(obj, dict):
        step = {**_compact({"stepId": obj.get("id"), "description": obj.get("description")}), **step}
    return step


def _legacy_step(step: dict[str, Any]) -> dict[str, Any]:
    return migrate(f"{step.get('action')}_v2", "step_v3", step)


def _openapi(obj: dict[str, Any]) -> dict[str, Any]:
    transformed = {key: value for key, value in obj.items() if key != "requestHeaders"}
    if obj.get("requestHeaders") is not None:
        transformed["headers"] = obj["requestHeaders"]
    return transformed


def _to_openapi(current_schema: str, obj: dict[str, Any]) -> dict[str, Any]:
    return _openapi(obj)


def _to_context(current_schema: str, obj: dict[str, Any]) -> dict[str, Any]:
    context: dict[str, Any] = {}
    if obj.get("platforms") is not None:
        context["platforms"] = obj["platforms"]
    app = obj.get("app") or {}
    if app:
        options = app.get("options") or {}
        name = "chrome" if app.get("name") == "edge" else app.get("name")
        browser: dict[str, Any] = {"name": name}
        if options.get("headless") is not None:
            browser["headless"] = options["headless"]
        window = _compact({"width": options.get("width"), "height": options.get("height")})
        if window:
            browser["window"] = window
        viewport = _compact({"width": options.get("viewport_width"), "height": options.get("viewport_height")})
        if viewport:
            browser["viewport"] = viewport
        context["browsers"] = [browser]
    return context


def _contexts(contexts: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if contexts is None:
        return None
    return [migrate("context_v2", "context_v3", context) for context in contexts]


def _openapis(definitions: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if definitions is None:
        return None
    return [migrate("openApi_v2", "openApi_v3", definition) for definition in definitions]


def _to_test(current_schema: str, obj: dict[str, Any]) -> dict[str, Any]:
    test = {
        "testId": obj.get("id"),
        "description": obj.get("description"),
        "contentPath": obj.get("file"),
        "detectSteps": obj.get("detectSteps"),
        "before": obj.get("setup"),
        "after": obj.get("cleanup"),
        "runOn": _contexts(obj.get("contexts")),
        "openApi": _openapis(obj.get("openApi")),
        "steps": [_legacy_step(step) for step in obj.get("steps", [])],
    }
    return _compact(test)


def _to_spec(current_schema: str, obj: dict[str, Any]) -> dict[str, Any]:
    spec = {
        "specId": obj.get("id"),
        "description": obj.get("description"),
        "contentPath": obj.get("file"),
        "runOn": _contexts(obj.get("contexts")),
        "openApi": _openapis(obj.get("openApi")),
        "tests": [migrate("test_v2", "test_v3", test) for test in obj.get("tests", [])],
    }
    return _compact(spec)


def _markup_action(action: Any) -> Any:
    if isinstance(action, str):
        return action
    if action.get("params") is not None:
        action = {"action": action.get("name"), **action["params"]}
    return migrate(f"{action.get('action')}_v2", "step_v3", action)


def _file_type(file_type: dict[str, Any]) -> dict[str, Any]:
    transformed: dict[str, Any] = {
        "name": file_type.get("name"),
        "extensions": [re.sub(r"^\.", "", extension) for extension in file_type["extensions"]],
        "inlineStatements": {
            "testStart": f"{re.escape(file_type['testStartStatementOpen'])}(.*?)"
            f"{re.escape(file_type['testStartStatementClose'])}",
            "testEnd": re.escape(file_type["testEndStatement"]),
            "ignoreStart": re.escape(file_type["testIgnoreStatement"]),
            "step": f"{re.escape(file_type['stepStatementOpen'])}(.*?)"
            f"{re.escape(file_type['stepStatementClose'])}",
        },
    }
    if file_type.get("markup"):
        transformed["markup"] = [
            _compact(
                {
                    "name": markup.get("name"),
                    "regex": markup.get("regex"),
                    "actions": [_markup_action(action) for action in markup["actions"]]
                    if markup.get("actions")
                    else None,
                }
            )
            for markup in file_type["markup"]
        ]
    return _compact(transformed)


def _to_config(current_schema: str, obj: dict[str, Any]) -> dict[str, Any]:
    run_tests = obj.get("runTests") or {}
    config = {
        "loadVariables": obj.get("envVariables"),
        "input": run_tests.get("input", obj.get("input")),
        "output": run_tests.get("output", obj.get("output")),
        "recursive": run_tests.get("recursive", obj.get("recursive")),
        "relativePathBase": obj.get("relativePathBase"),
        "detectSteps": run_tests.get("detectSteps"),
        "beforeAny": run_tests.get("setup"),
        "afterAll": run_tests.get("cleanup"),
        "logLevel": obj.get("logLevel"),
        "telemetry": obj.get("telemetry"),
        "runOn": _contexts(run_tests.get("contexts")),
    }
    integrations = obj.get("integrations") or {}
    if integrations.get("openApi"):
        config["integrations"] = {"openApi": _openapis(integrations["openApi"])}
    if obj.get("fileTypes"):
        config["fileTypes"] = [_file_type(file_type) for file_type in obj["fileTypes"]]
    return _compact(config)


_TARGETS: dict[str, Callable[[str, Any], Any]] = {
    "config_v3": _to_config,
    "context_v3": _to_context,
    "openApi_v3": _to_openapi,
    "spec_v3": _to_spec,
    "step_v3": _to_step,
    "test_v3": _to_test,
}
