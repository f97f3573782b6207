from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from doc_detective import shell_executor
from doc_detective.results import StepContext
from doc_detective.shell_executor import run_code, run_command, run_shell


@pytest.fixture
def ctx() -> StepContext:
    return StepContext(config={})


def test_echo_passes_and_captures_output(ctx: StepContext) -> None:
    outcome = run_shell({"runShell": "echo hello"}, ctx)

    assert outcome.status == "PASS"
    assert outcome.description == "Executed command."
    assert outcome.outputs["exitCode"] == 0
    assert outcome.outputs["stdio"] == {"stdout": "hello", "stderr": ""}


def test_arguments_are_quoted(ctx: StepContext) -> None:
    outcome = run_shell({"runShell": {"command": "echo", "args": ["two words", "$HOME"]}}, ctx)

    assert outcome.outputs["stdio"]["stdout"] == "two words $HOME"


def test_unexpected_exit_code_fails(ctx: StepContext) -> None:
    outcome = run_shell({"runShell": "exit 3"}, ctx)

    assert outcome.status == "FAIL"
    assert outcome.description == "Returned exit code 3. Expected one of [0]"


def test_expected_exit_code_passes(ctx: StepContext) -> None:
    assert run_shell({"runShell": {"command": "exit 3", "exitCodes": [3]}}, ctx).status == "PASS"


def test_stdio_substring_and_regex(ctx: StepContext) -> None:
    assert run_shell({"runShell": {"command": "echo version 1.2.3", "stdio": "1.2"}}, ctx).status == "PASS"
    assert run_shell({"runShell": {"command": "echo version 1.2.3", "stdio": r"/\d+\.\d+\.\d+/"}}, ctx).status == "PASS"
    assert run_shell({"runShell": {"command": "echo oops >&2", "stdio": "oops"}}, ctx).status == "PASS"

    outcome = run_shell({"runShell": {"command": "echo version 1.2.3", "stdio": "/^v2/"}}, ctx)
    assert outcome.status == "FAIL"
    assert outcome.description == "Couldn't find expected output (/^v2/) in stdio (stdout or stderr)."


def test_working_directory(tmp_path: Path, ctx: StepContext) -> None:
    outcome = run_shell({"runShell": {"command": "pwd", "workingDirectory": str(tmp_path)}}, ctx)

    assert outcome.outputs["stdio"]["stdout"] == str(tmp_path.resolve())


def test_timeout_kills_the_command(ctx: StepContext) -> None:
    outcome = run_shell({"runShell": {"command": "sleep 5", "timeout": 200}}, ctx)

    assert outcome.status == "FAIL"
    assert outcome.description == "Command timed out after 200 milliseconds"


def test_run_command_reports_timeout() -> None:
    result = run_command("sleep", ["5"], ".", 100)

    assert result.timed_out
    assert result.exit_code is None


def test_output_above_variation_warns_and_updates_baseline(tmp_path: Path, ctx: StepContext) -> None:
    baseline = tmp_path / "stdout.txt"
    baseline.write_text("hello world", encoding="utf-8")
    step = {
        "runShell": {
            "command": "echo goodbye world",
            "path": str(baseline),
            "maxVariation": 0.1,
            "overwrite": "aboveVariation",
        }
    }

    outcome = run_shell(step, ctx)

    assert outcome.status == "WARNING"
    assert outcome.outputs["changed"] is True
    assert baseline.read_text(encoding="utf-8") == "goodbye world"


def test_output_within_variation_keeps_baseline(tmp_path: Path, ctx: StepContext) -> None:
    baseline = tmp_path / "stdout.txt"
    baseline.write_text("hello world", encoding="utf-8")
    step = {
        "runShell": {"command": "echo hello world!", "path": str(baseline), "maxVariation": 0.5, "overwrite": "false"}
    }

    outcome = run_shell(step, ctx)

    assert outcome.status == "PASS"
    assert outcome.outputs["changed"] is False
    assert baseline.read_text(encoding="utf-8") == "hello world"


def test_output_path_joins_directory(tmp_path: Path, ctx: StepContext) -> None:
    step = {"runShell": {"command": "echo saved", "path": "out.txt", "directory": str(tmp_path)}}

    outcome = run_shell(step, ctx)

    assert outcome.status == "PASS"
    assert outcome.description == "Executed command. Saved output to file."
    assert (tmp_path / "out.txt").read_text(encoding="utf-8") == "saved"


def test_run_code_python(ctx: StepContext) -> None:
    outcome = run_code({"runCode": {"language": "py", "code": "print('hi from python')"}}, ctx)

    assert outcome.status == "PASS"
    assert outcome.description == "Executed code."
    assert outcome.outputs["stdio"]["stdout"] == "hi from python"


@pytest.mark.skipif(shutil.which("bash") is None, reason="bash is not installed")
def test_run_code_bash_with_args(ctx: StepContext) -> None:
    outcome = run_code({"runCode": {"language": "bash", "code": 'echo "arg: $1"', "args": ["first"]}}, ctx)

    assert outcome.outputs["stdio"]["stdout"] == "arg: first"


def test_run_code_unknown_language_is_invalid(ctx: StepContext) -> None:
    outcome = run_code({"runCode": {"language": "cobol", "code": "DISPLAY 'HI'."}}, ctx)

    assert outcome.status == "FAIL"
    assert outcome.description.startswith("Invalid step definition")


def test_run_code_missing_interpreter(ctx: StepContext, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(shell_executor.shutil, "which", lambda name: None)

    outcome = run_code({"runCode": {"language": "javascript", "code": "console.log(1)"}}, ctx)

    assert outcome.status == "FAIL"
    assert outcome.description == "Command node is unavailable. Make sure it's installed and in your PATH."
