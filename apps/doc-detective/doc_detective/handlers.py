"""Action handler table and single-step dispatch."""

from __future__ import annotations

import os
import time
import traceback
from typing import Any, Callable

import structlog

from . import browser_executor, http_executor, shell_executor
from .config import load_variables, replace_envs
from .expressions import resolve_expression
from .models import STEP_ACTIONS
from .results import FAIL, StepContext, StepOutcome

LOGGER = structlog.get_logger("doc_detective", component="handlers")

DEFAULT_WAIT_MS = 5000

Handler = Callable[[dict[str, Any], StepContext], StepOutcome]


def wait(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    value = step["wait"]
    if value is True or value == "true":
        duration = DEFAULT_WAIT_MS
    elif value is False or value == "false":
        return StepOutcome.skipped("Wait skipped.")
    elif isinstance(value, str):
        try:
            duration = int(value.strip())
        except ValueError:
            return StepOutcome.failed(f"Invalid wait value: {value}. Must be a number or boolean.")
    else:
        duration = int(value)

    runner = ctx.active_runner
    if runner is not None:
        runner.page.wait_for_timeout(duration)
    else:
        time.sleep(duration / 1000)
    return StepOutcome.passed("Wait completed successfully.")


def load_variables_step(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    if not load_variables(step["loadVariables"]):
        return StepOutcome.failed("Couldn't set variables. Invalid file.")
    return StepOutcome.passed("Envs set.")


HANDLERS: dict[str, Handler] = {
    "checkLink": http_executor.check_link,
    "click": browser_executor.click,
    "dragAndDrop": browser_executor.drag_and_drop,
    "find": browser_executor.find,
    "goTo": browser_executor.go_to,
    "httpRequest": http_executor.http_request,
    "loadCookie": browser_executor.load_cookie,
    "loadVariables": load_variables_step,
    "record": browser_executor.record,
    "runCode": shell_executor.run_code,
    "runShell": shell_executor.run_shell,
    "saveCookie": browser_executor.save_cookie,
    "screenshot": browser_executor.screenshot,
    "stopRecord": browser_executor.stop_record,
    "type": browser_executor.type_step,
    "wait": wait,
}


def resolve_references(value: Any, scope: dict[str, Any]) -> Any:
    """Resolve ``$$`` references in every string of an action value."""

    if isinstance(value, dict):
        return {key: resolve_references(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_references(item, scope) for item in value]
    if isinstance(value, str) and "$$" in value:
        return resolve_expression(value, scope)
    return value


def step_action(step: dict[str, Any]) -> str | None:
    return next((action for action in STEP_ACTIONS if action in step), None)


def _export_variables(step: dict[str, Any], outcome: StepOutcome, ctx: StepContext) -> None:
    variables = step.get("variables") or {}
    if not variables:
        return
    scope = {**ctx.meta_values, **outcome.outputs}
    for name, expression in variables.items():
        value = resolve_expression(expression, scope)
        if value is None:
            LOGGER.warning("variable_unresolved", variable=name, expression=expression)
            continue
        os.environ[name] = value if isinstance(value, str) else str(value)
        LOGGER.debug("variable_set", variable=name)


def run_step(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    """Execute one step and export its variables.

    Handler exceptions are reported as a failed step, never raised.
    """

    step = replace_envs(step)
    step = {
        key: resolve_references(value, ctx.meta_values) if key in STEP_ACTIONS else value
        for key, value in step.items()
    }
    action = step_action(step)
    handler = HANDLERS.get(action) if action else None
    if handler is None:
        return StepOutcome.failed(f"Unknown step action: {action or ', '.join(sorted(step))}")

    try:
        outcome = handler(step, ctx)
    except Exception as exc:
        LOGGER.debug("step_handler_crashed", action=action, traceback=traceback.format_exc())
        return StepOutcome.failed(str(exc) or exc.__class__.__name__)

    if outcome.status != FAIL:
        _export_variables(step, outcome, ctx)
    return outcome
