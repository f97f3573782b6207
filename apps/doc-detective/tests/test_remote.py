from __future__ import annotations

import json
from typing import Any

import pytest

from doc_detective.errors import RemoteRunError
from doc_detective.remote import api_base_url, api_config_from_env, fetch_resolved_tests, report_results, run_via_api

RESOLVED = {
    "config": {"logLevel": "info"},
    "specs": [{"specId": "s", "tests": [{"testId": "t", "contexts": [{"steps": [{"wait": 1}]}]}]}],
}


def _api_config(url: str) -> dict[str, Any]:
    return {"url": url, "token": "secret", "accountId": 42, "contextIds": ["a", "b"]}


def test_api_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DOC_DETECTIVE_API", raising=False)
    assert api_config_from_env() is None

    monkeypatch.setenv("DOC_DETECTIVE_API", "{not json")
    assert api_config_from_env() is None

    monkeypatch.setenv("DOC_DETECTIVE_API", json.dumps({"token": "x"}))
    assert api_config_from_env() is None

    monkeypatch.setenv("DOC_DETECTIVE_API", json.dumps({"url": "https://api.example.com", "token": "x"}))
    assert api_config_from_env() == {"url": "https://api.example.com", "token": "x"}


def test_api_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DOC_DETECTIVE_API_URL", raising=False)
    assert api_base_url() == "https://api.doc-detective.com"
    monkeypatch.setenv("DOC_DETECTIVE_API_URL", "https://staging.example.com")
    assert api_base_url() == "https://staging.example.com"


def test_fetch_resolved_tests(http_server) -> None:
    http_server.route("GET", "/resolved-tests", body={"resolvedTests": RESOLVED})

    resolved = fetch_resolved_tests(_api_config(http_server.url))

    assert resolved["specs"][0]["specId"] == "s"
    sent = http_server.requests[0]
    assert sent["query"] == "contextIds=a%2Cb"
    assert sent["headers"]["authorization"] == "Bearer secret"
    assert sent["headers"]["x-account-id"] == "42"


def test_fetch_resolved_tests_fails_fast(http_server) -> None:
    http_server.route("GET", "/resolved-tests", status=503, body={"error": "down"})

    with pytest.raises(RemoteRunError, match="HTTP 503"):
        fetch_resolved_tests(_api_config(http_server.url))


def test_fetch_resolved_tests_rejects_invalid_document(http_server) -> None:
    http_server.route("GET", "/resolved-tests", body={"specs": "nope"})

    with pytest.raises(RemoteRunError, match="Invalid resolved tests document"):
        fetch_resolved_tests(_api_config(http_server.url))


def test_report_results(http_server) -> None:
    http_server.route("POST", "/contexts/reports", status=201)
    report = {"summary": {}, "specs": []}

    report_results(_api_config(http_server.url), report)

    assert http_server.requests[0]["body"] == {"contexts": report}


def test_report_results_error(http_server) -> None:
    http_server.route("POST", "/contexts/reports", status=500)

    with pytest.raises(RemoteRunError, match="HTTP 500"):
        report_results(_api_config(http_server.url), {})


def test_run_via_api_polls_until_completed(http_server) -> None:
    polls = {"count": 0}
    final_report = {"summary": {"specs": {"pass": 1, "fail": 0, "warning": 0, "skipped": 0}}, "specs": []}

    def run_status(request: dict[str, Any]) -> tuple[int, Any, dict[str, str]]:
        polls["count"] += 1
        if polls["count"] < 3:
            return 200, {"status": "running"}, {}
        return 200, {"status": "completed", "report": json.dumps(final_report)}, {}

    http_server.route("POST", "/runs", status=201, body={"runId": "r1"})
    http_server.route("POST", "/runs/r1/start", body={"ok": True})
    http_server.handler("GET", "/runs/r1", run_status)

    report = run_via_api(RESOLVED, "key-1", max_wait=10, base_url=http_server.url, poll_interval=0.01)

    assert report == final_report
    assert polls["count"] == 3
    assert http_server.requests[0]["body"] == {"resolvedTests": RESOLVED}
    assert all(request["headers"]["x-api-key"] == "key-1" for request in http_server.requests)


def test_run_via_api_reports_http_errors(http_server) -> None:
    http_server.route("POST", "/runs", status=401, body={"message": "bad key"})

    result = run_via_api(RESOLVED, "wrong", base_url=http_server.url, poll_interval=0.01)

    assert result == {"status": 401, "error": {"message": "bad key"}}


def test_run_via_api_times_out(http_server) -> None:
    http_server.route("POST", "/runs", status=201, body={"runId": "r2"})
    http_server.route("POST", "/runs/r2/start", body={})
    http_server.route("GET", "/runs/r2", body={"status": "running"})

    result = run_via_api(RESOLVED, "key", max_wait=0, base_url=http_server.url, poll_interval=0.01)

    assert result == {"status": 408, "type": "TIMEOUT"}
