"""Executors for ``runShell`` and ``runCode`` steps."""

from __future__ import annotations

import os
import re
import shlex
import shutil
import signal
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog

from .regression import compare_text
from .results import FAIL, PASS, WARNING, StepContext, StepOutcome
from .schemas import action_options

LOGGER = structlog.get_logger("doc_detective", component="shell")

SCRIPT_SUFFIXES = {"python": ".py", "javascript": ".js", "bash": ".sh"}
INTERPRETERS = {"python": "python", "javascript": "node", "bash": "bash"}


@dataclass
class CommandResult:
    """Exit code and captured streams of a finished command."""

    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False


def _strip_trailing_newline(text: str) -> str:
    if text.endswith("\n"):
        text = text[:-1]
    if text.endswith("\r"):
        text = text[:-1]
    return text


def _kill(process: subprocess.Popen) -> None:
    """Kill the process and everything it spawned."""

    if os.name == "nt":
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_command(command: str, args: list[str], cwd: str, timeout_ms: int) -> CommandResult:
    """Run ``command`` through the shell, killing the whole process group on timeout."""

    command_line = " ".join([command, *(shlex.quote(str(arg)) for arg in args)])
    process = subprocess.Popen(
        command_line,
        shell=True,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=os.name != "nt",
    )
    try:
        stdout, stderr = process.communicate(timeout=timeout_ms / 1000 if timeout_ms else None)
    except subprocess.TimeoutExpired:
        _kill(process)
        stdout, stderr = process.communicate()
        LOGGER.warning("command_timed_out", command=command, timeout_ms=timeout_ms)
        return CommandResult(None, stdout or "", stderr or "", timed_out=True)
    return CommandResult(process.returncode, stdout, stderr)


def _stdio_matches(expected: str, stdout: str, stderr: str) -> bool:
    if len(expected) > 1 and expected.startswith("/") and expected.endswith("/"):
        pattern = re.compile(expected[1:-1])
        return bool(pattern.search(stdout) or pattern.search(stderr))
    return expected in stdout or expected in stderr


def _working_directory(options: dict[str, Any]) -> str:
    return str(Path(options.get("workingDirectory") or ".").resolve())


def _output_path(options: dict[str, Any]) -> Optional[str]:
    path = options.get("path")
    if not path:
        return None
    if options.get("directory") and not os.path.isabs(path):
        path = os.path.join(options["directory"], path)
    return path


def execute_shell(options: dict[str, Any]) -> StepOutcome:
    """Run a validated ``runShell`` option set and judge the result."""

    result = run_command(
        options["command"], options.get("args") or [], _working_directory(options), options.get("timeout", 60000)
    )
    if result.timed_out:
        return StepOutcome.failed(f"Command timed out after {options.get('timeout')} milliseconds")

    stdout = _strip_trailing_newline(result.stdout)
    stderr = _strip_trailing_newline(result.stderr)
    outputs = {"exitCode": result.exit_code, "stdio": {"stdout": stdout, "stderr": stderr}}
    outcome = StepOutcome(PASS, "Executed command.", outputs)

    exit_codes = options.get("exitCodes") or [0]
    if result.exit_code not in exit_codes:
        outcome.status = FAIL
        outcome.description = f"Returned exit code {result.exit_code}. Expected one of {exit_codes}"

    expected = options.get("stdio")
    if expected and not _stdio_matches(expected, stdout, stderr):
        outcome.status = FAIL
        outcome.description = f"Couldn't find expected output ({expected}) in stdio (stdout or stderr)."

    path = _output_path(options)
    if path:
        comparison = compare_text(
            path, stdout, float(options.get("maxVariation", 0)), options.get("overwrite", "aboveVariation")
        )
        outputs["changed"] = comparison.changed
        if comparison.status == WARNING and outcome.status != FAIL:
            outcome.status = WARNING
            outcome.description = comparison.description
        elif comparison.description and outcome.status == PASS:
            outcome.description = f"{outcome.description} {comparison.description}"
    return outcome


def run_shell(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("runShell_v3", step["runShell"], "command")
    if not validation.valid:
        return StepOutcome.failed(f"Invalid step definition: {validation.errors}")
    return execute_shell(validation.object)


def _interpreter(language: str) -> Optional[str]:
    if language == "python":
        return sys.executable or shutil.which("python3") or shutil.which("python")
    return shutil.which(INTERPRETERS[language])


def run_code(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("runCode_v3", step["runCode"], "code")
    if not validation.valid:
        return StepOutcome.failed(f"Invalid step definition: {validation.errors}")
    options = validation.object
    language = options["language"]

    if language == "bash" and os.name == "nt":
        return StepOutcome.failed(
            "runCode currently doesn't support bash on Windows. "
            "Use a different command, a different language, or a runShell step."
        )
    interpreter = _interpreter(language)
    if interpreter is None:
        return StepOutcome.failed(
            f"Command {INTERPRETERS[language]} is unavailable. Make sure it's installed and in your PATH."
        )

    handle, script_path = tempfile.mkstemp(prefix="doc-detective-", suffix=SCRIPT_SUFFIXES[language])
    try:
        with os.fdopen(handle, "w", encoding="utf-8") as script:
            script.write(options["code"])
        LOGGER.debug("script_created", path=script_path, language=language)
        shell_options = {
            key: value for key, value in options.items() if key not in {"language", "code", "args"}
        }
        shell_options.update({"command": shlex.quote(interpreter), "args": [script_path, *options.get("args", [])]})
        outcome = execute_shell(shell_options)
    finally:
        try:
            os.unlink(script_path)
        except OSError:
            LOGGER.warning("script_cleanup_failed", path=script_path)
    if outcome.status == PASS and outcome.description.startswith("Executed command."):
        outcome.description = outcome.description.replace("Executed command.", "Executed code.", 1)
    return outcome
