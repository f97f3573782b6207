from __future__ import annotations

import json
from io import StringIO

from rich.console import Console

from doc_detective.console_reporter import ConsoleReporter, count_contexts
from doc_detective.output_config import OutputFormat


def _summary(fail: int = 0) -> dict[str, dict[str, int]]:
    counts = {"pass": 1, "fail": fail, "warning": 0, "skipped": 0}
    return {level: dict(counts) for level in ("specs", "tests", "contexts", "steps")}


def _reporter(output_format: OutputFormat) -> tuple[ConsoleReporter, StringIO]:
    buffer = StringIO()
    return ConsoleReporter(output_format=output_format, console=Console(file=buffer, width=120)), buffer


def test_count_contexts() -> None:
    resolved = {
        "specs": [
            {"tests": [{"contexts": [{}, {}]}, {"contexts": []}]},
            {"tests": [{"contexts": [{}]}]},
        ]
    }

    assert count_contexts(resolved) == 4
    assert count_contexts({}) == 0


def test_plain_run_output() -> None:
    reporter, buffer = _reporter(OutputFormat.PLAIN)

    reporter.start_run(2)
    reporter.report_context({}, {"testId": "install"}, {"result": "PASS", "platform": "linux", "steps": [{}]})
    reporter.report_context(
        {},
        {"testId": "login"},
        {
            "result": "FAIL",
            "platform": "linux",
            "browser": {"name": "firefox"},
            "steps": [{"result": "PASS"}, {"result": "FAIL", "resultDescription": "Returned 500."}],
        },
    )
    reporter.finish_run(_summary(fail=1), 1234)

    output = buffer.getvalue()
    assert "Running 2 context(s)" in output
    assert "✓ PASS     install [linux]" in output
    assert "✗ FAIL     login [linux/firefox]" in output
    assert "  Returned 500." in output
    assert "Specs     pass: 1 | fail: 1 | warning: 0 | skipped: 0" in output
    assert "Duration: 1234ms" in output
    assert "✗ SOME TESTS FAILED" in output


def test_skipped_context_shows_reason() -> None:
    reporter, buffer = _reporter(OutputFormat.PLAIN)

    reporter.report_context(
        {}, {"testId": "mac-only"}, {"result": "SKIPPED", "platform": "mac", "resultDescription": "Unsupported context."}
    )
    reporter.finish_run(_summary(), 10)

    output = buffer.getvalue()
    assert "- SKIPPED  mac-only [mac]" in output
    assert "  Unsupported context." in output
    assert "✓ ALL TESTS PASSED" in output


def test_json_mode_prints_only_summary() -> None:
    reporter, buffer = _reporter(OutputFormat.JSON)

    reporter.start_run(1)
    reporter.report_context({}, {"testId": "t"}, {"result": "PASS", "steps": []})
    reporter.print_info("ignored")
    reporter.finish_run(_summary(), 42.4)

    document = json.loads(buffer.getvalue())
    assert document == {"summary": _summary(), "durationMs": 42}


def test_plain_error_is_not_treated_as_markup() -> None:
    reporter, buffer = _reporter(OutputFormat.PLAIN)

    reporter.print_error("bad [value]")

    assert "Error: bad [value]" in buffer.getvalue()
