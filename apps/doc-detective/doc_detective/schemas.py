"""Schema registry and validation entry point."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from . import legacy_models as v2
from . import models as v3
from .errors import SchemaNotFoundError

_SCHEMA_TYPES: dict[str, Any] = {
    "config_v3": v3.Config,
    "context_v3": v3.Context,
    "openApi_v3": v3.OpenApi,
    "resolvedTests_v3": v3.ResolvedTests,
    "spec_v3": v3.Spec,
    "step_v3": v3.Step,
    "test_v3": v3.Test,
    "checkLink_v3": v3.CheckLinkDetailed,
    "click_v3": v3.ClickDetailed,
    "dragAndDrop_v3": v3.DragAndDropDetailed,
    "find_v3": v3.FindDetailed,
    "goTo_v3": v3.GoToDetailed,
    "httpRequest_v3": v3.HttpRequestDetailed,
    "loadCookie_v3": v3.CookieDetailed,
    "record_v3": v3.RecordDetailed,
    "runCode_v3": v3.RunCodeDetailed,
    "runShell_v3": v3.RunShellDetailed,
    "saveCookie_v3": v3.CookieDetailed,
    "screenshot_v3": v3.ScreenshotDetailed,
    "sourceIntegration_v3": v3.SourceIntegration,
    "type_v3": v3.TypeDetailed,
    "wait_v3": v3.WaitValue,
    "config_v2": v2.ConfigV2,
    "context_v2": v2.ContextV2,
    "openApi_v2": v2.OpenApiV2,
    "spec_v2": v2.SpecV2,
    "test_v2": v2.TestV2,
    "checkLink_v2": v2.CheckLinkV2,
    "find_v2": v2.FindV2,
    "goTo_v2": v2.GoToV2,
    "httpRequest_v2": v2.HttpRequestV2,
    "runCode_v2": v2.RunCodeV2,
    "runShell_v2": v2.RunShellV2,
    "saveScreenshot_v2": v2.SaveScreenshotV2,
    "setVariables_v2": v2.SetVariablesV2,
    "startRecording_v2": v2.StartRecordingV2,
    "stopRecording_v2": v2.StopRecordingV2,
    "typeKeys_v2": v2.TypeKeysV2,
    "wait_v2": v2.WaitV2,
}

# Target schema -> older schemas that may be migrated into it, tried in order.
COMPATIBLE_SCHEMAS: dict[str, list[str]] = {
    "config_v3": ["config_v2"],
    "context_v3": ["context_v2"],
    "openApi_v3": ["openApi_v2"],
    "spec_v3": ["spec_v2"],
    "test_v3": ["test_v2"],
    "step_v3": [
        "checkLink_v2",
        "find_v2",
        "goTo_v2",
        "httpRequest_v2",
        "runShell_v2",
        "runCode_v2",
        "saveScreenshot_v2",
        "setVariables_v2",
        "startRecording_v2",
        "stopRecording_v2",
        "typeKeys_v2",
        "wait_v2",
    ],
}

SCHEMA_EXAMPLES: dict[str, list[Any]] = {
    "step_v3": [
        {"goTo": "https://www.example.com"},
        {"checkLink": {"url": "https://www.example.com", "statusCodes": 200}},
        {"find": {"selector": "#search", "click": True, "type": {"keys": ["shorthair cat", "$ENTER$"]}}},
        {"runShell": {"command": "echo", "args": ["hello"], "stdio": "hello"}},
        {"runCode": {"language": "python", "code": "print('hello')"}},
        {"httpRequest": {"url": "https://reqres.in/api/users", "method": "post", "statusCodes": [201]}},
        {"screenshot": {"path": "results.png", "maxVariation": 0.1}},
        {"wait": 500},
        {"stopRecord": True},
        {"loadVariables": ".env"},
    ],
    "context_v3": [
        {"platforms": "linux", "browsers": "firefox"},
        {"platforms": ["linux", "mac"], "browsers": [{"name": "chrome", "headless": False}]},
    ],
    "test_v3": [
        {"testId": "search", "steps": [{"goTo": "https://www.example.com"}]},
    ],
    "spec_v3": [
        {"specId": "spec", "tests": [{"steps": [{"wait": True}]}]},
    ],
    "config_v3": [
        {},
        {"input": ["docs"], "output": "results", "runOn": [{"platforms": "linux"}], "concurrentRunners": 2},
    ],
}

_ADAPTERS: dict[str, TypeAdapter[Any]] = {}


@dataclass
class ValidationResult:
    """Outcome of validating one object against one schema."""

    valid: bool
    errors: str
    object: Any


def schema_keys() -> list[str]:
    return sorted(_SCHEMA_TYPES)


def get_schema(schema_key: str) -> TypeAdapter[Any]:
    """Return the compiled adapter for ``schema_key``."""

    adapter = _ADAPTERS.get(schema_key)
    if adapter is not None:
        return adapter
    schema_type = _SCHEMA_TYPES.get(schema_key)
    if schema_type is None:
        raise SchemaNotFoundError(schema_key)
    adapter = TypeAdapter(schema_type)
    _ADAPTERS[schema_key] = adapter
    return adapter


def compile_schemas() -> None:
    """Build every adapter up front so schema errors surface at startup."""

    for schema_key in _SCHEMA_TYPES:
        get_schema(schema_key)


def format_errors(exc: ValidationError) -> str:
    rendered = []
    for item in exc.errors():
        path = "/" + "/".join(str(part) for part in item["loc"])
        params = item.get("ctx") or {"type": item["type"]}
        rendered.append(f"{path} {item['msg']} ({json.dumps(params, default=str)})")
    return ", ".join(rendered)


def _dump(adapter: TypeAdapter[Any], value: Any, add_defaults: bool) -> Any:
    return adapter.dump_python(
        value,
        mode="json",
        by_alias=True,
        exclude_none=True,
        exclude_unset=not add_defaults,
    )


def _matches(schema_key: str, obj: Any) -> bool:
    try:
        get_schema(schema_key).validate_python(copy.deepcopy(obj))
    except ValidationError:
        return False
    return True


def validate(schema_key: str, obj: Any, add_defaults: bool = True) -> ValidationResult:
    """Validate ``obj`` against ``schema_key``, migrating compatible legacy shapes.

    Ordinary invalid input is reported through the result; only missing
    arguments raise.
    """

    if not schema_key:
        raise ValueError("Schema key is required.")
    if obj is None:
        raise ValueError("Object is required.")

    try:
        adapter = get_schema(schema_key)
    except SchemaNotFoundError as exc:
        return ValidationResult(valid=False, errors=str(exc), object=obj)

    try:
        value = adapter.validate_python(copy.deepcopy(obj))
    except ValidationError as exc:
        errors = format_errors(exc)
    else:
        return ValidationResult(valid=True, errors="", object=_dump(adapter, value, add_defaults))

    from .migrations import migrate

    for compatible_key in COMPATIBLE_SCHEMAS.get(schema_key, []):
        if not _matches(compatible_key, obj):
            continue
        migrated = migrate(compatible_key, schema_key, copy.deepcopy(obj))
        value = adapter.validate_python(migrated)
        return ValidationResult(valid=True, errors="", object=_dump(adapter, value, add_defaults))

    return ValidationResult(valid=False, errors=errors, object=obj)


def action_options(schema_key: str, value: Any, shorthand: str) -> ValidationResult:
    """Validate an action value, expanding the string form into ``{shorthand: value}``."""

    if isinstance(value, str):
        value = {shorthand: value}
    return validate(schema_key, value)


def schema_examples(schema_key: str) -> list[Any]:
    """Example payloads for ``schema_key``; each one validates against it."""

    get_schema(schema_key)
    return copy.deepcopy(SCHEMA_EXAMPLES.get(schema_key, []))
