"""Result types shared by the engine and the step handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

PASS = "PASS"
FAIL = "FAIL"
WARNING = "WARNING"
SKIPPED = "SKIPPED"
STATUSES = (PASS, FAIL, WARNING, SKIPPED)


@dataclass
class StepOutcome:
    """What a handler reports back for one step."""

    status: str
    description: str = ""
    outputs: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def passed(cls, description: str = "", **outputs: Any) -> "StepOutcome":
        return cls(PASS, description, dict(outputs))

    @classmethod
    def failed(cls, description: str, **outputs: Any) -> "StepOutcome":
        return cls(FAIL, description, dict(outputs))

    @classmethod
    def skipped(cls, description: str) -> "StepOutcome":
        return cls(SKIPPED, description)


@dataclass
class StepContext:
    """Everything a handler may need besides the step itself.

    ``runner`` is the context's lazy runner handle; handlers that never touch
    the browser never cause a session to be created.
    """

    config: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)
    meta_values: dict[str, Any] = field(default_factory=dict)
    runner: Optional[Any] = None
    recording: dict[str, Any] = field(default_factory=dict)

    def require_runner(self) -> Any:
        if self.runner is None:
            raise RuntimeError("This step needs a browser, but the context has none.")
        return self.runner.get()

    @property
    def active_runner(self) -> Optional[Any]:
        return self.runner.active if self.runner is not None else None


def rollup_status(statuses: Iterable[str]) -> str:
    """Parent status from child statuses.

    FAIL wins over WARNING; only an all-skipped (or empty) set is SKIPPED.
    """

    statuses = list(statuses)
    if FAIL in statuses:
        return FAIL
    if WARNING in statuses:
        return WARNING
    if all(status == SKIPPED for status in statuses):
        return SKIPPED
    return PASS
