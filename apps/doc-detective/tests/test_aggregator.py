from __future__ import annotations

from doc_detective.aggregator import aggregate, empty_summary, has_failures, rollup
from doc_detective.results import rollup_status


def _context(*results: str, **extra: str) -> dict:
    return {"steps": [{"result": result} for result in results], **extra}


def test_rollup_status_precedence() -> None:
    assert rollup_status(["PASS", "WARNING", "FAIL"]) == "FAIL"
    assert rollup_status(["PASS", "WARNING", "SKIPPED"]) == "WARNING"
    assert rollup_status(["PASS", "SKIPPED"]) == "PASS"
    assert rollup_status(["SKIPPED", "SKIPPED"]) == "SKIPPED"
    assert rollup_status([]) == "SKIPPED"


def test_rollup_and_aggregate() -> None:
    specs = [
        {
            "tests": [
                {"contexts": [_context("FAIL", "SKIPPED")]},
                {"contexts": [_context("PASS"), _context(result="SKIPPED")]},
            ]
        },
        {"tests": [{"contexts": [_context("PASS", "WARNING")]}]},
    ]

    rollup(specs)
    summary = aggregate(specs)

    assert [spec["result"] for spec in specs] == ["FAIL", "WARNING"]
    assert specs[0]["tests"][1]["result"] == "PASS"
    assert specs[0]["tests"][1]["contexts"][1]["result"] == "SKIPPED"
    assert summary["specs"] == {"pass": 0, "fail": 1, "warning": 1, "skipped": 0}
    assert summary["tests"] == {"pass": 1, "fail": 1, "warning": 1, "skipped": 0}
    assert summary["contexts"] == {"pass": 1, "fail": 1, "warning": 1, "skipped": 1}
    assert summary["steps"] == {"pass": 2, "fail": 1, "warning": 1, "skipped": 1}
    assert has_failures(summary)


def test_empty_summary_has_no_failures() -> None:
    summary = empty_summary()

    assert set(summary) == {"specs", "tests", "contexts", "steps"}
    assert not has_failures(summary)
