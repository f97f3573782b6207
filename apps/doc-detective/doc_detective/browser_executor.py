"""Executors for steps that drive a browser through the context's runner."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Optional

import structlog
from PIL import Image
from playwright.sync_api import Error as PlaywrightError

from .regression import compare_image
from .results import FAIL, PASS, StepContext, StepOutcome
from .schemas import action_options

LOGGER = structlog.get_logger("doc_detective", component="browser")

POLL_INTERVAL = 0.1
SPECIAL_KEYS = {
    "$CTRL$": "Control",
    "$CONTROL$": "Control",
    "$BACKSPACE$": "Backspace",
    "$TAB$": "Tab",
    "$RETURN$": "Enter",
    "$ENTER$": "Enter",
    "$SHIFT$": "Shift",
    "$ALT$": "Alt",
    "$PAUSE$": "Pause",
    "$ESCAPE$": "Escape",
    "$SPACE$": " ",
    "$PAGE_UP$": "PageUp",
    "$PAGE_DOWN$": "PageDown",
    "$END$": "End",
    "$HOME$": "Home",
    "$ARROW_LEFT$": "ArrowLeft",
    "$ARROW_UP$": "ArrowUp",
    "$ARROW_RIGHT$": "ArrowRight",
    "$ARROW_DOWN$": "ArrowDown",
    "$INSERT$": "Insert",
    "$DELETE$": "Delete",
    "$SEMICOLON$": ";",
    "$EQUALS$": "=",
    "$MULTIPLY$": "NumpadMultiply",
    "$ADD$": "NumpadAdd",
    "$SUBSTRACT$": "NumpadSubtract",
    "$DECIMAL$": "NumpadDecimal",
    "$DIVIDE$": "NumpadDivide",
    "$COMMAND$": "Meta",
    **{f"$NUMPAD_{digit}$": f"Numpad{digit}" for digit in range(10)},
    **{f"$F{number}$": f"F{number}" for number in range(1, 13)},
}
LOCATOR_FIELDS = (
    "selector",
    "elementText",
    "elementId",
    "elementTestId",
    "elementClass",
    "elementAttribute",
    "elementAria",
)


def _invalid(errors: str) -> StepOutcome:
    return StepOutcome.failed(f"Invalid step definition: {errors}")


def _css_string(value: Any) -> str:
    return json.dumps(str(value))


def _criteria_selector(criteria: dict[str, Any]) -> Optional[str]:
    parts = []
    if criteria.get("elementId"):
        parts.append(f"[id={_css_string(criteria['elementId'])}]")
    if criteria.get("elementTestId"):
        parts.append(f"[data-testid={_css_string(criteria['elementTestId'])}]")
    if criteria.get("elementAria"):
        parts.append(f"[aria-label={_css_string(criteria['elementAria'])}]")
    classes = criteria.get("elementClass") or []
    for name in [classes] if isinstance(classes, str) else classes:
        parts.append(f"[class~={_css_string(name)}]")
    for key, value in (criteria.get("elementAttribute") or {}).items():
        parts.append(f"[{key}]" if value is True else f"[{key}={_css_string(value)}]")
    if not parts:
        return None
    return f"{criteria.get('selector') or ''}{''.join(parts)}"


def candidate_locators(page: Any, criteria: Any) -> list[tuple[str, Any]]:
    """Locators to try for ``criteria``, paired with how each one finds the element."""

    if isinstance(criteria, str):
        return [("selector", page.locator(criteria)), ("elementText", page.get_by_text(criteria, exact=True))]

    selector = _criteria_selector(criteria) or criteria.get("selector")
    text = criteria.get("elementText")
    if selector and text:
        return [("selector and elementText", page.locator(selector).filter(has_text=text))]
    if selector:
        return [("selector", page.locator(selector))]
    if text:
        return [("elementText", page.get_by_text(text, exact=True))]
    return []


def find_element(page: Any, criteria: Any, timeout_ms: int) -> tuple[Optional[Any], Optional[str]]:
    """Poll until one of the candidate locators matches or ``timeout_ms`` passes."""

    candidates = candidate_locators(page, criteria)
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        for found_by, locator in candidates:
            try:
                if locator.count() > 0:
                    return locator.first, found_by
            except PlaywrightError:
                continue
        if time.monotonic() >= deadline:
            return None, None
        time.sleep(POLL_INTERVAL)


def element_outputs(element: Any) -> dict[str, Any]:
    return {
        "element": {
            "text": element.inner_text(),
            "tag": element.evaluate("node => node.tagName.toLowerCase()"),
            "html": element.inner_html(),
        }
    }


def _key_sequence(keys: Any) -> list[str]:
    return [keys] if isinstance(keys, str) else list(keys)


def type_keys(page: Any, element: Optional[Any], keys: list[str], delay_ms: int) -> None:
    if element is not None:
        element.focus()
    for key in keys:
        if key in SPECIAL_KEYS:
            page.keyboard.press(SPECIAL_KEYS[key])
        else:
            page.keyboard.type(key, delay=delay_ms)


def go_to(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("goTo_v3", step["goTo"], "url")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object
    url = options["url"]
    origin = options.get("origin") or ctx.config.get("origin")
    if not url.startswith(("http://", "https://", "file://")):
        if not origin:
            return StepOutcome.failed(
                "Relative URL provided without origin. Specify an origin in either the step or the config."
            )
        url = f"{origin.rstrip('/')}/{url.lstrip('/')}"

    page = ctx.require_runner().page
    try:
        page.goto(url, timeout=options["timeout"], wait_until="load")
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't open URL: {exc}")

    wait_until = options.get("waitUntil") or {}
    try:
        if wait_until.get("networkIdleTime") is not None:
            page.wait_for_load_state("networkidle", timeout=options["timeout"])
        if wait_until.get("find"):
            element, _ = find_element(page, wait_until["find"], options["timeout"])
            if element is None:
                return StepOutcome.failed("Opened URL, but the expected element never appeared.")
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Opened URL, but wait conditions weren't met: {exc}")
    return StepOutcome.passed("Opened URL and all wait conditions met.")


def find(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["find"]
    if isinstance(value, str):
        options: dict[str, Any] = {"timeout": 5000}
        criteria: Any = value
    else:
        validation = action_options("find_v3", value, "selector")
        if not validation.valid:
            return _invalid(validation.errors)
        options = validation.object
        criteria = {key: options[key] for key in LOCATOR_FIELDS if key in options}

    page = ctx.require_runner().page
    element, found_by = find_element(page, criteria, options.get("timeout", 5000))
    if element is None:
        return StepOutcome.failed("No elements matched selector and/or text.")

    outcome = StepOutcome(PASS, f"Found an element matching selector. Found element by {found_by}.")
    try:
        outcome.outputs = element_outputs(element)
        if options.get("moveTo"):
            element.hover()
            outcome.description += " Moved to element."
        click_options = options.get("click")
        if click_options:
            button = click_options.get("button", "left") if isinstance(click_options, dict) else "left"
            element.click(button=button)
            outcome.description += " Clicked element."
        typing = options.get("type")
        if typing:
            if isinstance(typing, dict):
                keys, delay = _key_sequence(typing.get("keys", [])), typing.get("inputDelay", 100)
            else:
                keys, delay = _key_sequence(typing), 100
            type_keys(page, element, keys, delay)
            outcome.description += " Typed keys."
    except PlaywrightError as exc:
        outcome.status = FAIL
        outcome.description += f" Couldn't interact with element. Error: {exc}"
    return outcome


def click(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["click"]
    page = ctx.require_runner().page
    if value is True:
        return StepOutcome.failed("Click requires an element to click.")
    if isinstance(value, str):
        criteria: Any = value
        button = "left"
    else:
        validation = action_options("click_v3", value, "selector")
        if not validation.valid:
            return _invalid(validation.errors)
        criteria = {key: validation.object[key] for key in LOCATOR_FIELDS if key in validation.object}
        button = validation.object.get("button", "left")

    element, found_by = find_element(page, criteria, 5000)
    if element is None:
        return StepOutcome.failed("No elements matched selector and/or text.")
    try:
        element.click(button=button)
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't click element. Error: {exc}")
    return StepOutcome(PASS, f"Clicked element. Found element by {found_by}.", element_outputs(element))


def type_step(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["type"]
    if isinstance(value, (str, list)):
        options: dict[str, Any] = {"keys": value, "inputDelay": 100}
    else:
        validation = action_options("type_v3", value, "keys")
        if not validation.valid:
            return _invalid(validation.errors)
        options = validation.object

    keys = _key_sequence(options.get("keys", []))
    if not keys:
        return StepOutcome.skipped("No keys to type.")

    page = ctx.require_runner().page
    element = None
    criteria = {key: options[key] for key in LOCATOR_FIELDS if key in options}
    if criteria:
        element, _ = find_element(page, criteria, 5000)
        if element is None:
            return StepOutcome.failed("Couldn't find element to type into.")
    try:
        type_keys(page, element, keys, options.get("inputDelay", 100))
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't type keys: {exc}.")
    return StepOutcome.passed("Typed keys.")


def drag_and_drop(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("dragAndDrop_v3", step["dragAndDrop"], "source")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object
    page = ctx.require_runner().page

    source, _ = find_element(page, options["source"], 5000)
    if source is None:
        return StepOutcome.failed("Couldn't find source element.")
    target, _ = find_element(page, options["target"], 5000)
    if target is None:
        return StepOutcome.failed("Found source element. Couldn't find target element.")
    try:
        source.drag_to(target)
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't perform drag and drop. {exc}")
    return StepOutcome.passed("Found source element. Found target element. Performed drag and drop.")


def _padding(padding: Any) -> dict[str, int]:
    if isinstance(padding, dict):
        return {side: int(padding.get(side, 0)) for side in ("top", "right", "bottom", "left")}
    return {side: int(padding or 0) for side in ("top", "right", "bottom", "left")}


def _crop(page: Any, image_path: str, crop: Any) -> Optional[str]:
    """Crop the screenshot at ``image_path`` to an element; returns an error message on failure."""

    criteria = crop if isinstance(crop, str) else {key: crop[key] for key in LOCATOR_FIELDS if key in crop}
    element, _ = find_element(page, criteria, 5000)
    if element is None:
        return "Couldn't find element to crop."
    box = element.bounding_box()
    if box is None:
        return "Element can't fit in viewport."
    padding = _padding(crop.get("padding") if isinstance(crop, dict) else 0)
    scale = page.evaluate("() => window.devicePixelRatio") or 1
    with Image.open(image_path) as image:
        left = max(int((box["x"] - padding["left"]) * scale), 0)
        top = max(int((box["y"] - padding["top"]) * scale), 0)
        right = min(int((box["x"] + box["width"] + padding["right"]) * scale), image.width)
        bottom = min(int((box["y"] + box["height"] + padding["bottom"]) * scale), image.height)
        if right <= left or bottom <= top:
            return "Element can't fit in viewport."
        cropped = image.crop((left, top, right, bottom))
    cropped.save(image_path)
    return None


def screenshot(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["screenshot"]
    if value is True:
        value = {}
    validation = action_options("screenshot_v3", value, "path")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object

    path = options.get("path") or f"{step.get('stepId', 'screenshot')}.png"
    directory = options.get("directory") or ctx.config.get("output") or os.getcwd()
    target = Path(path) if os.path.isabs(path) else Path(directory) / path
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists() and options.get("overwrite") == "false":
        return StepOutcome.skipped(f"File already exists: {target}")

    capture = target.with_name(f"{target.stem}_{int(time.time() * 1000)}{target.suffix}") if target.exists() else target
    page = ctx.require_runner().page
    try:
        page.screenshot(path=str(capture))
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't save screenshot. {exc}")

    if options.get("crop"):
        problem = _crop(page, str(capture), options["crop"])
        if problem:
            capture.unlink(missing_ok=True)
            return StepOutcome.failed(problem)

    outputs: dict[str, Any] = {"screenshotPath": str(target)}
    if options.get("sourceIntegration"):
        outputs["sourceIntegration"] = options["sourceIntegration"]
    if capture == target:
        outputs["changed"] = True
        return StepOutcome(PASS, "Saved screenshot.", outputs)

    comparison = compare_image(str(target), str(capture), float(options["maxVariation"]), options["overwrite"])
    outputs["changed"] = comparison.changed
    return StepOutcome(comparison.status, comparison.description, outputs)


def record(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["record"]
    if value is True:
        value = {}
    validation = action_options("record_v3", value, "path")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object

    browser = ctx.context.get("browser") or {}
    if browser.get("name") not in {"chrome", "firefox", "webkit"}:
        return StepOutcome.skipped("Recording is not supported for this context.")

    path = options.get("path") or f"{step.get('stepId', 'recording')}.webm"
    directory = options.get("directory") or ctx.config.get("output") or os.getcwd()
    target = Path(path) if os.path.isabs(path) else Path(directory) / path
    if target.exists() and options.get("overwrite") != "true":
        return StepOutcome.skipped(f"File already exists: {target}")

    runner = ctx.require_runner()
    try:
        runner.start_recording(str(target.parent))
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't start recording. {exc}")
    ctx.recording.update({"target": str(target)})
    return StepOutcome.passed("Started recording.")


def stop_record(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    target = ctx.recording.get("target")
    if not target:
        return StepOutcome.skipped("Recording isn't started.")
    runner = ctx.require_runner()
    try:
        video_path = runner.stop_recording()
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Couldn't stop recording. {exc}")
    finally:
        ctx.recording.clear()
    if not video_path:
        return StepOutcome.failed("Recording download timed out.")
    Path(video_path).replace(target)
    return StepOutcome.passed("Stopped recording.", recordingPath=target)


def _cookie_matches(cookie: dict[str, Any], name: Optional[str], domain: Optional[str]) -> bool:
    if name and cookie.get("name") != name:
        return False
    if not domain:
        return True
    cookie_domain = cookie.get("domain") or ""
    return cookie_domain in {domain, f".{domain}"} or cookie_domain.endswith(f".{domain}")


def _cookie_path(options: dict[str, Any], ctx: StepContext) -> Optional[Path]:
    if not options.get("path"):
        return None
    directory = options.get("directory") or ctx.config.get("output") or os.getcwd()
    return Path(directory, options["path"]).resolve()


def save_cookie(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("saveCookie_v3", step["saveCookie"], "name")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object
    name = options.get("name")
    if not name:
        return StepOutcome.failed("Cookie name must be specified.")
    file_path = _cookie_path(options, ctx)
    variable = options.get("variable")
    if not variable and file_path is None:
        return StepOutcome.failed("Either variable or file path must be specified.")

    cookies = ctx.require_runner().browser_context.cookies()
    cookie = next((item for item in cookies if _cookie_matches(item, name, options.get("domain"))), None)
    if cookie is None:
        suffix = f" for domain '{options['domain']}'" if options.get("domain") else ""
        return StepOutcome.failed(f"Cookie '{name}' not found{suffix}")

    outcome = StepOutcome(PASS, "")
    if variable:
        os.environ[variable] = json.dumps(cookie)
        outcome.description = f"Saved cookie to environment variable '{variable}'."
    if file_path is not None:
        if file_path.exists() and options.get("overwrite") != "true":
            return StepOutcome.failed(f"File '{file_path}' already exists and overwrite is not enabled.")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(json.dumps([cookie], indent=2), encoding="utf-8")
        outcome.description = f"Saved cookie '{name}' to '{file_path}'."
        outcome.outputs["path"] = str(file_path)
    return outcome


def load_cookie(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("loadCookie_v3", step["loadCookie"], "name")
    if not validation.valid:
        return _invalid(validation.errors)
    options = validation.object
    name = options.get("name")
    variable = options.get("variable")
    file_path = _cookie_path(options, ctx)

    if variable:
        raw = os.environ.get(variable)
        if not raw:
            return StepOutcome.failed(f"Environment variable '{variable}' not found or empty")
        try:
            cookies = json.loads(raw)
        except json.JSONDecodeError as exc:
            return StepOutcome.failed(
                f"Failed to parse cookie data from environment variable '{variable}': {exc}"
            )
    elif file_path is not None:
        if not file_path.is_file():
            return StepOutcome.failed(f"Cookie file '{file_path}' not found")
        try:
            cookies = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            return StepOutcome.failed(f"Failed to read cookie file '{file_path}': {exc}")
    else:
        return StepOutcome.failed("Either variable or file path must be specified.")

    cookies = cookies if isinstance(cookies, list) else [cookies]
    cookie = next(
        (item for item in cookies if isinstance(item, dict) and _cookie_matches(item, name, options.get("domain"))),
        None,
    )
    if cookie is None:
        return StepOutcome.failed(f"Cookie '{name}' not found" if name else "No valid cookies found")
    if not cookie.get("name"):
        return StepOutcome.failed("Invalid cookie data: missing name")

    runner = ctx.require_runner()
    if not cookie.get("domain") and not cookie.get("url"):
        cookie = {**cookie, "url": runner.page.url}
    elif cookie.get("domain"):
        cookie = {"path": "/", **cookie}
    try:
        runner.browser_context.add_cookies([cookie])
    except PlaywrightError as exc:
        return StepOutcome.failed(f"Failed to load cookie: {exc}")
    return StepOutcome.passed(f"Loaded cookie '{cookie['name']}' into browser.")
