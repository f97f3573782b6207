"""Expand detected specs into the concrete execution matrix."""

from __future__ import annotations

import copy
import uuid
from typing import Any, Optional

import structlog

from .errors import ConfigurationError
from .files import read_file
from .schemas import validate

LOGGER = structlog.get_logger("doc_detective", component="resolver")

BROWSER_ACTIONS = (
    "click",
    "dragAndDrop",
    "find",
    "goTo",
    "loadCookie",
    "record",
    "saveCookie",
    "screenshot",
    "stopRecord",
    "type",
)
BROWSER_PREFERENCE = ("firefox", "chrome", "webkit")


def _new_id() -> str:
    return str(uuid.uuid4())


def is_browser_required(steps: list[dict[str, Any]]) -> bool:
    return any(action in step for step in steps for action in BROWSER_ACTIONS)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def normalize_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy with list-valued ``platforms``/``browsers`` and browser objects."""

    context = copy.deepcopy(context)
    if "browsers" in context:
        browsers = []
        for browser in _as_list(context["browsers"]):
            browser = {"name": browser} if isinstance(browser, str) else dict(browser)
            if browser.get("name") == "safari":
                browser["name"] = "webkit"
            browsers.append(browser)
        context["browsers"] = browsers
    if "platforms" in context:
        context["platforms"] = _as_list(context["platforms"])
    return context


def _available_browsers(config: dict[str, Any]) -> list[dict[str, Any]]:
    installed = {app.get("name") for app in (config.get("environment") or {}).get("apps") or []}
    return [{"name": name} for name in BROWSER_PREFERENCE if name in installed]


def resolve_contexts(
    contexts: list[dict[str, Any]],
    steps: list[dict[str, Any]],
    config: dict[str, Any],
) -> list[dict[str, Any]]:
    """Expand declared contexts into unique ``{platform, browser}`` pairs.

    Falls back to a single empty context, which runs on the current platform.
    """

    browser_required = is_browser_required(steps)
    current_platform = (config.get("environment") or {}).get("platform")
    resolved: list[dict[str, Any]] = []

    for context in (normalize_context(context) for context in contexts):
        platforms = context.get("platforms") or ([current_platform] if current_platform else [])
        browsers = context.get("browsers") or _available_browsers(config)
        for platform in platforms:
            if not browser_required:
                candidates = [{"platform": platform}]
            elif browsers:
                candidates = [{"platform": platform, "browser": browser} for browser in browsers]
            else:
                candidates = [{"platform": platform}]
            for candidate in candidates:
                if candidate not in resolved:
                    resolved.append(candidate)

    if not resolved:
        resolved.append({})
    return resolved


def _load_description(definition: dict[str, Any]) -> Optional[dict[str, Any]]:
    if definition.get("definition") or not definition.get("descriptionPath"):
        return definition
    document = read_file(definition["descriptionPath"])
    if not isinstance(document, dict):
        LOGGER.error("openapi_description_unreadable", path=definition["descriptionPath"])
        return None
    return {**definition, "definition": document}


def merge_openapi(config: dict[str, Any], *groups: Optional[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Combine OpenAPI definitions; later entries replace earlier ones with the same name."""

    merged: list[dict[str, Any]] = list(((config.get("integrations") or {}).get("openApi")) or [])
    for group in groups:
        for definition in group or []:
            loaded = _load_description(definition)
            if loaded is None:
                continue
            merged = [item for item in merged if not loaded.get("name") or item.get("name") != loaded.get("name")]
            merged.append(loaded)
    return merged


def resolve_context(test: dict[str, Any], context: dict[str, Any], open_api: list[dict[str, Any]]) -> dict[str, Any]:
    steps = copy.deepcopy(test.get("steps") or [])
    return {
        **context,
        "contextId": context.get("contextId") or _new_id(),
        "unsafe": any(step.get("unsafe") for step in steps),
        "openApi": copy.deepcopy(open_api),
        "steps": steps,
    }


def resolve_test(config: dict[str, Any], spec: dict[str, Any], test: dict[str, Any]) -> Optional[dict[str, Any]]:
    test_id = test.get("testId") or _new_id()
    run_on = test.get("runOn") or spec.get("runOn") or []
    open_api = merge_openapi(config, spec.get("openApi"), test.get("openApi"))
    resolved = {key: value for key, value in test.items() if key != "steps"}
    resolved.update(
        {
            "testId": test_id,
            "runOn": [normalize_context(context) for context in run_on] or None,
            "openApi": open_api or None,
            "contexts": [
                resolve_context(test, context, open_api)
                for context in resolve_contexts(run_on, test.get("steps") or [], config)
            ],
        }
    )
    resolved = {key: value for key, value in resolved.items() if value is not None}

    result = validate("test_v3", resolved, add_defaults=False)
    if not result.valid:
        LOGGER.warning("invalid_test_dropped", test_id=test_id, errors=result.errors)
        return None
    return result.object


def resolve_spec(config: dict[str, Any], spec: dict[str, Any]) -> dict[str, Any]:
    spec_id = spec.get("specId") or _new_id()
    log = LOGGER.bind(spec_id=spec_id)
    run_on = spec.get("runOn") or config.get("runOn") or []
    resolved_spec = {key: value for key, value in spec.items() if key != "tests"}
    resolved_spec.update({"specId": spec_id, "runOn": run_on or None})

    tests = []
    for test in spec.get("tests") or []:
        resolved_test = resolve_test(config, resolved_spec, test)
        if resolved_test is not None:
            tests.append(resolved_test)
    if not tests:
        raise ConfigurationError(f"Spec '{spec_id}' has no valid tests after resolution")

    resolved_spec["tests"] = tests
    resolved_spec = {key: value for key, value in resolved_spec.items() if value is not None}
    result = validate("spec_v3", resolved_spec, add_defaults=False)
    if not result.valid:
        raise ConfigurationError(f"Spec '{spec_id}' is invalid after resolution: {result.errors}")
    log.debug("spec_resolved", tests=len(tests))
    return result.object


def resolve_tests(config: dict[str, Any], detected_tests: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Build the ResolvedTests document for ``detected_tests``.

    Returns ``None`` with a warning when nothing was detected.
    """

    if not detected_tests:
        LOGGER.warning("no_tests_detected")
        return None

    resolved_tests = {
        "resolvedTestsId": _new_id(),
        "config": config,
        "specs": [resolve_spec(config, spec) for spec in detected_tests],
    }
    LOGGER.info("tests_resolved", specs=len(resolved_tests["specs"]))
    return resolved_tests
