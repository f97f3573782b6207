"""Status roll-up and four-level result counts."""

from __future__ import annotations

from typing import Any

from .results import FAIL, PASS, SKIPPED, WARNING, rollup_status

LEVELS = ("specs", "tests", "contexts", "steps")
_COUNT_KEYS = {PASS: "pass", FAIL: "fail", WARNING: "warning", SKIPPED: "skipped"}


def empty_summary() -> dict[str, dict[str, int]]:
    return {level: {key: 0 for key in _COUNT_KEYS.values()} for level in LEVELS}


def rollup(specs: list[dict[str, Any]]) -> None:
    """Set ``result`` on every test and spec from its children, in place.

    Context results are owned by whoever executed the context; a context
    without one gets it from its steps.
    """

    for spec in specs:
        for test in spec.get("tests", []):
            for context in test.get("contexts", []):
                if "result" not in context:
                    context["result"] = rollup_status(step["result"] for step in context.get("steps", []))
            test["result"] = rollup_status(context["result"] for context in test.get("contexts", []))
        spec["result"] = rollup_status(test["result"] for test in spec.get("tests", []))


def aggregate(specs: list[dict[str, Any]]) -> dict[str, dict[str, int]]:
    """Tally pass/fail/warning/skipped counts for specs, tests, contexts and steps."""

    summary = empty_summary()

    def tally(level: str, node: dict[str, Any]) -> None:
        key = _COUNT_KEYS.get(node.get("result", SKIPPED))
        if key:
            summary[level][key] += 1

    for spec in specs:
        tally("specs", spec)
        for test in spec.get("tests", []):
            tally("tests", test)
            for context in test.get("contexts", []):
                tally("contexts", context)
                for step in context.get("steps", []):
                    tally("steps", step)
    return summary


def has_failures(summary: dict[str, dict[str, int]]) -> bool:
    return any(summary[level]["fail"] for level in LEVELS)
