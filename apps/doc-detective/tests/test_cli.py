from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from doc_detective import main
from doc_detective.errors import ConfigurationError
from doc_detective.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DOC_DETECTIVE", "DOC_DETECTIVE_API", "CONSOLE_OUTPUT_FORMAT", "DOC_DETECTIVE_LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _doc(tmp_path: Path, command: str) -> Path:
    path = tmp_path / "guide.md"
    path.write_text(f'Install the tool.\n\n<!-- step {{"runShell": "{command}"}} -->\n', encoding="utf-8")
    return path


def _run_args(doc: Path, output: Path) -> list[str]:
    return ["run", "--input", str(doc), "--output", str(output), "--log-level", "silent", "--output-format", "plain"]


def test_run_writes_results(tmp_path: Path) -> None:
    doc = _doc(tmp_path, "echo hi")

    result = runner.invoke(app, _run_args(doc, tmp_path / "out"))

    assert result.exit_code == 0, result.output
    assert "✓ ALL TESTS PASSED" in result.output
    reports = list((tmp_path / "out").glob("testResults-*.json"))
    assert len(reports) == 1
    report = json.loads(reports[0].read_text(encoding="utf-8"))
    assert report["summary"]["steps"]["pass"] == 1
    assert report["specs"][0]["specId"] == "guide.md"


def test_run_exits_non_zero_on_failure(tmp_path: Path) -> None:
    doc = _doc(tmp_path, "exit 1")

    result = runner.invoke(app, _run_args(doc, tmp_path / "report.json"))

    assert result.exit_code == 1
    assert "✗ SOME TESTS FAILED" in result.output
    report = json.loads((tmp_path / "report.json").read_text(encoding="utf-8"))
    assert report["summary"]["specs"]["fail"] == 1


def test_run_without_tests(tmp_path: Path) -> None:
    doc = tmp_path / "plain.md"
    doc.write_text("# Nothing to run\n", encoding="utf-8")

    result = runner.invoke(app, _run_args(doc, tmp_path / "out"))

    assert result.exit_code == 0
    assert "No tests detected." in result.output
    assert not (tmp_path / "out").exists() or not list((tmp_path / "out").iterdir())


def test_run_resolved_tests_file(tmp_path: Path) -> None:
    resolved = {
        "config": {"logLevel": "silent"},
        "specs": [
            {
                "specId": "from-file",
                "tests": [{"testId": "resolved", "contexts": [{"steps": [{"runShell": "echo resolved"}]}]}],
            }
        ],
    }
    resolved_path = tmp_path / "resolved.json"
    resolved_path.write_text(json.dumps(resolved), encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "run",
            "--resolved-tests",
            str(resolved_path),
            "--output",
            str(tmp_path / "results.json"),
            "--log-level",
            "silent",
            "--output-format",
            "json",
        ],
    )

    assert result.exit_code == 0, result.output
    report = json.loads((tmp_path / "results.json").read_text(encoding="utf-8"))
    assert report["specs"][0]["tests"][0]["testId"] == "resolved"
    assert report["specs"][0]["tests"][0]["result"] == "PASS"


def test_run_rejects_invalid_resolved_tests(tmp_path: Path) -> None:
    resolved_path = tmp_path / "resolved.json"
    resolved_path.write_text(json.dumps({"specs": []}), encoding="utf-8")

    result = runner.invoke(app, ["run", "--resolved-tests", str(resolved_path), "--log-level", "silent"])

    assert result.exit_code != 0


def test_missing_config_file(tmp_path: Path) -> None:
    result = runner.invoke(app, ["detect", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_detect_prints_specs(tmp_path: Path) -> None:
    doc = _doc(tmp_path, "echo detected")

    result = runner.invoke(app, ["detect", "--input", str(doc), "--log-level", "silent"])

    assert result.exit_code == 0, result.output
    specs = json.loads(result.stdout)
    assert specs[0]["tests"][0]["steps"] == [{"runShell": "echo detected"}]


def test_resolve_prints_resolved_tests(tmp_path: Path) -> None:
    doc = _doc(tmp_path, "echo resolved")

    result = runner.invoke(app, ["resolve", "--input", str(doc), "--log-level", "silent"])

    assert result.exit_code == 0, result.output
    resolved = json.loads(result.stdout)
    assert resolved["resolvedTestsId"]
    assert resolved["config"]["logLevel"] == "silent"
    contexts = resolved["specs"][0]["tests"][0]["contexts"]
    assert len(contexts) == 1
    assert contexts[0]["steps"] == [{"runShell": "echo resolved"}]


def test_config_file_is_discovered(tmp_path: Path) -> None:
    _doc(tmp_path, "echo configured")
    (tmp_path / ".doc-detective.yaml").write_text("input: guide.md\nlogLevel: silent\n", encoding="utf-8")

    result = runner.invoke(app, ["detect"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)[0]["tests"][0]["steps"] == [{"runShell": "echo configured"}]


@pytest.mark.parametrize("command", ["run", "resolve"])
def test_resolution_errors_are_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, command: str) -> None:
    def reject(config: dict, detected: list) -> None:
        raise ConfigurationError("Spec 'guide.md' has no valid tests after resolution")

    monkeypatch.setattr(main, "resolve_tests", reject)
    doc = _doc(tmp_path, "echo hi")

    result = runner.invoke(app, [command, "--input", str(doc), "--log-level", "silent"])

    assert result.exit_code == 1
    assert "Configuration error: Spec 'guide.md' has no valid tests" in result.output
    assert not isinstance(result.exception, ConfigurationError)
