"""Structured logging helpers for doc-detective."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LEVEL_STYLES = {
    "debug": "dim cyan",
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "critical": "bold white on red",
}

# Rendered as a ``spec/test/context/step`` path ahead of the event name.
SCOPE_KEYS = ("spec_id", "test_id", "context_id", "step_id")
_HIDDEN_KEYS = ("color_message", "stack")
_EVENT_WIDTH = 32


class RichConsoleRenderer:
    """structlog renderer printing aligned, colored events through Rich."""

    def __init__(self, width: int = 200) -> None:
        self.width = width

    @staticmethod
    def _scope(event_dict: dict[str, Any]) -> str:
        parts = [str(event_dict.pop(key)) for key in SCOPE_KEYS if event_dict.get(key) is not None]
        return "/".join(parts)

    def _render(self, text: Text) -> str:
        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False).print(text, end="")
        return buffer.getvalue()

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = str(event_dict.pop("event", ""))
        component = event_dict.pop("component", None)
        scope = self._scope(event_dict)

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(f" [{level:<8}] ", style=LEVEL_STYLES.get(level, "white"))
        if component:
            text.append(f"{component}: ", style="dim cyan")
        text.append(event, style="bold white")
        if scope:
            text.append(f" ({scope})", style="dim")

        fields = [(key, value) for key, value in sorted(event_dict.items()) if key not in _HIDDEN_KEYS]
        if fields:
            text.append(" " * max(1, _EVENT_WIDTH - len(event)))
            text.append_text(
                Text(" ").join(
                    Text.assemble((f"{key}=", "dim white"), (str(value), "bright_cyan")) for key, value in fields
                )
            )
        return self._render(text)


def configure_logging(log_level: str, log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Configure structlog for the CLI; log lines go to stderr so stdout stays machine-readable."""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)

    renderers: dict[str, Any] = {
        "console": RichConsoleRenderer(),
        "plain": structlog.dev.ConsoleRenderer(colors=False),
        "json": structlog.processors.JSONRenderer(),
    }
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            renderers.get(log_format, renderers["console"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger("doc_detective")
