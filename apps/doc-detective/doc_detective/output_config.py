"""Console output and log format selection."""

import os
from enum import Enum
from typing import Literal, Optional


class OutputFormat(str, Enum):
    """How the run reporter writes to the console."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"
LOG_FORMAT_ENV_VAR = "DOC_DETECTIVE_LOG_FORMAT"

_LOG_FORMATS = ("json", "console", "plain")
_LOG_FORMAT_FOR_OUTPUT = {
    OutputFormat.AUTO: "console",
    OutputFormat.RICH: "console",
    OutputFormat.PLAIN: "plain",
    OutputFormat.JSON: "json",
}


def _parse_output_format(value: Optional[str]) -> Optional[OutputFormat]:
    if not value:
        return None
    try:
        return OutputFormat(value.lower())
    except ValueError:
        return None


def get_output_format(cli_override: Optional[str] = None) -> OutputFormat:
    """
    Resolve the reporter format: ``--output-format`` > ``CONSOLE_OUTPUT_FORMAT`` > auto.

    Unknown values at either level are ignored.
    """
    return (
        _parse_output_format(cli_override)
        or _parse_output_format(os.environ.get(ENV_VAR_NAME))
        or OutputFormat.AUTO
    )


def get_log_format(cli_override: Optional[str] = None) -> LogFormat:
    """
    Resolve the log format: ``--log-format`` > ``DOC_DETECTIVE_LOG_FORMAT`` >
    derived from ``CONSOLE_OUTPUT_FORMAT`` > console.

    Reporter formats map to log formats as:
    - auto/rich -> console (with colors)
    - plain -> plain (no colors, simple text)
    - json -> json
    """
    for candidate in (cli_override, os.environ.get(LOG_FORMAT_ENV_VAR)):
        if candidate and candidate.lower() in _LOG_FORMATS:
            return candidate.lower()  # type: ignore[return-value]

    output_format = _parse_output_format(os.environ.get(ENV_VAR_NAME))
    if output_format is not None:
        return _LOG_FORMAT_FOR_OUTPUT[output_format]  # type: ignore[return-value]
    return "console"
