"""Fetching tests from, and reporting results to, an orchestration API."""

from __future__ import annotations

import json
import os
import random
import time
from typing import Any, Optional
from urllib import error, parse, request

import structlog

from .errors import RemoteRunError
from .schemas import validate

LOGGER = structlog.get_logger("doc_detective", component="remote")

ENV_API = "DOC_DETECTIVE_API"
ENV_API_URL = "DOC_DETECTIVE_API_URL"
DEFAULT_API_URL = "https://api.doc-detective.com"
REQUEST_TIMEOUT = 30.0
POLL_INTERVAL = 5.0
POLL_JITTER = 0.4


def api_config_from_env() -> Optional[dict[str, Any]]:
    """Parse ``DOC_DETECTIVE_API``; ``None`` when unset or unusable."""

    raw = os.environ.get(ENV_API)
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.error("api_config_invalid", error=str(exc))
        return None
    if not isinstance(payload, dict) or not payload.get("url"):
        LOGGER.error("api_config_incomplete", keys=sorted(payload) if isinstance(payload, dict) else None)
        return None
    return payload


def _request_json(
    method: str,
    url: str,
    headers: dict[str, str],
    body: Any = None,
    timeout: float = REQUEST_TIMEOUT,
) -> tuple[int, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    request_headers = {"Accept": "application/json", **headers}
    if data is not None:
        request_headers["Content-Type"] = "application/json"
    req = request.Request(url, data=data, headers=request_headers, method=method)
    try:
        with request.urlopen(req, timeout=timeout) as response:
            status = response.getcode()
            text = response.read().decode("utf-8", errors="replace")
    except error.HTTPError as exc:
        status = exc.code
        text = exc.read().decode("utf-8", errors="replace")
    except (error.URLError, TimeoutError, OSError) as exc:
        raise RemoteRunError(f"Request failed for {method} {url}: {exc}") from exc
    try:
        return status, json.loads(text) if text else None
    except json.JSONDecodeError:
        return status, text


def _api_headers(api_config: dict[str, Any]) -> dict[str, str]:
    headers = {}
    if api_config.get("token"):
        headers["Authorization"] = f"Bearer {api_config['token']}"
    if api_config.get("accountId"):
        headers["x-account-id"] = str(api_config["accountId"])
    return headers


def fetch_resolved_tests(api_config: dict[str, Any]) -> dict[str, Any]:
    """Download and validate the ResolvedTests document for the configured contexts."""

    context_ids = api_config.get("contextIds") or []
    if isinstance(context_ids, list):
        context_ids = ",".join(str(item) for item in context_ids)
    url = f"{api_config['url'].rstrip('/')}/resolved-tests"
    if context_ids:
        url = f"{url}?{parse.urlencode({'contextIds': context_ids})}"

    status, payload = _request_json("GET", url, _api_headers(api_config))
    if not 200 <= status < 300:
        raise RemoteRunError(f"Failed to fetch resolved tests: HTTP {status}")
    document = payload.get("resolvedTests", payload) if isinstance(payload, dict) else None
    if not isinstance(document, dict):
        raise RemoteRunError("Resolved tests response did not contain a document")

    result = validate("resolvedTests_v3", document, add_defaults=False)
    if not result.valid:
        raise RemoteRunError(f"Invalid resolved tests document: {result.errors}")
    LOGGER.info("resolved_tests_fetched", specs=len(result.object.get("specs", [])))
    return result.object


def report_results(api_config: dict[str, Any], report: dict[str, Any]) -> None:
    url = f"{api_config['url'].rstrip('/')}/contexts/reports"
    status, _ = _request_json("POST", url, _api_headers(api_config), {"contexts": report})
    if not 200 <= status < 300:
        raise RemoteRunError(f"Failed to upload results: HTTP {status}")
    LOGGER.info("results_reported", status=status)


def api_base_url() -> str:
    return os.environ.get(ENV_API_URL) or DEFAULT_API_URL


def run_via_api(
    resolved_tests: dict[str, Any],
    api_key: str,
    max_wait: int = 600,
    base_url: Optional[str] = None,
    poll_interval: float = POLL_INTERVAL,
) -> dict[str, Any]:
    """Delegate a run to the hosted API and wait for its report.

    Returns the report, ``{"status": 408, "type": "TIMEOUT"}`` when ``max_wait``
    seconds pass first, or ``{"status": ..., "error": ...}`` on an HTTP error.
    """

    base = (base_url or api_base_url()).rstrip("/")
    headers = {"X-API-Key": api_key}
    log = LOGGER.bind(base_url=base)

    status, payload = _request_json("POST", f"{base}/runs", headers, {"resolvedTests": resolved_tests})
    if status != 201 or not isinstance(payload, dict) or not payload.get("runId"):
        log.error("remote_run_create_failed", status=status)
        return {"status": status, "error": payload}
    run_id = payload["runId"]
    log = log.bind(run_id=run_id)

    status, payload = _request_json("POST", f"{base}/runs/{run_id}/start", headers)
    if status != 200:
        log.error("remote_run_start_failed", status=status)
        return {"status": status, "error": payload}
    log.info("remote_run_started")

    deadline = time.monotonic() + max_wait
    while time.monotonic() < deadline:
        status, payload = _request_json("GET", f"{base}/runs/{run_id}", headers)
        if status != 200:
            log.error("remote_run_poll_failed", status=status)
            return {"status": status, "error": payload}
        if isinstance(payload, dict) and payload.get("status") == "completed":
            report = payload.get("report")
            if isinstance(report, str):
                report = json.loads(report)
            log.info("remote_run_completed")
            return report
        time.sleep(poll_interval * (1 + random.uniform(-POLL_JITTER, POLL_JITTER)))

    log.warning("remote_run_timed_out", max_wait=max_wait)
    return {"status": 408, "type": "TIMEOUT"}
