"""Executors for ``httpRequest`` and ``checkLink`` steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import json
import os
import re
import socket
import time
from urllib import error, parse, request

import structlog

from .regression import compare_text
from .results import FAIL, PASS, WARNING, StepContext, StepOutcome
from .schemas import action_options

LOGGER = structlog.get_logger("doc_detective", component="http")

LINK_TIMEOUT = 10.0
_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_FIELD_SEGMENT = re.compile(r"[^.[\]]+")
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "identity",
    "Connection": "keep-alive",
}


@dataclass
class ExecutionResult:
    """Details about a performed request."""

    status_code: int
    elapsed_ms: float
    response_body: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


class HttpStepExecutor:
    """Performs HTTP requests for steps directly via urllib."""

    def __init__(self, timeout: float | None = None) -> None:
        env_timeout = os.getenv("DOC_DETECTIVE_HTTP_TIMEOUT", "60")
        self._timeout = timeout or float(env_timeout)

    def execute(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        method = method.upper()
        body_bytes = self._encode_body(method, body)
        request_headers = {str(key): str(value) for key, value in (headers or {}).items()}
        if body_bytes is not None and isinstance(body, (dict, list)):
            request_headers.setdefault("Content-Type", "application/json")
        return self._perform_request(method, url, request_headers, body_bytes, timeout or self._timeout)

    @staticmethod
    def _encode_body(method: str, body: Any) -> bytes | None:
        if method in {"GET", "HEAD"} or body is None or body == "":
            return None
        if isinstance(body, (dict, list)):
            return json.dumps(body).encode("utf-8")
        if isinstance(body, str):
            return body.encode("utf-8")
        return str(body).encode("utf-8")

    def _perform_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout: float,
    ) -> ExecutionResult:
        req = request.Request(url, data=body, headers=headers, method=method)
        start = time.perf_counter()
        try:
            with request.urlopen(req, timeout=timeout) as response:
                payload = response.read().decode("utf-8", errors="replace")
                status = response.getcode()
                response_headers = dict(response.headers.items())
        except error.HTTPError as exc:
            payload = exc.read().decode("utf-8", errors="replace")
            status = exc.code
            response_headers = dict(exc.headers.items()) if exc.headers else {}
        except (error.URLError, socket.timeout, ValueError) as exc:
            raise RuntimeError(f"HTTP request failed for {method} {url}: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        return ExecutionResult(status, elapsed_ms, payload, response_headers)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else [value]


def parse_headers(raw: Any) -> dict[str, str]:
    """Accept a mapping or ``Key: Value`` lines."""

    if isinstance(raw, dict):
        return {str(key): str(value) for key, value in raw.items()}
    headers: dict[str, str] = {}
    for line in str(raw or "").splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        if key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _maybe_json(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _absolute_url(url: str, origin: str | None) -> str | None:
    if _SCHEME_PATTERN.match(url):
        return url
    if origin:
        return f"{origin.rstrip('/')}/{url.lstrip('/')}"
    if url.startswith(("/", ".")):
        return None
    return f"https://{url}"


def check_link(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("checkLink_v3", step["checkLink"], "url")
    if not validation.valid:
        return StepOutcome.failed(f"Invalid step definition: {validation.errors}")
    options = validation.object
    status_codes = _as_list(options.get("statusCodes", [200, 301, 302, 307, 308]))

    url = _absolute_url(options["url"], options.get("origin") or ctx.config.get("origin"))
    if url is None:
        return StepOutcome.failed(
            "Relative URL provided without origin. Specify an origin in either the step or the config."
        )

    executor = HttpStepExecutor(timeout=LINK_TIMEOUT)
    try:
        result = executor.execute("HEAD", url, _BROWSER_HEADERS)
        if result.status_code in {403, 405, 501}:
            result = executor.execute("GET", url, _BROWSER_HEADERS)
    except RuntimeError as exc:
        LOGGER.debug("link_unreachable", url=url, error=str(exc))
        return StepOutcome.failed(f"Invalid or unresolvable URL: {url}")

    if result.status_code in status_codes:
        return StepOutcome.passed(f"Returned {result.status_code}")
    return StepOutcome.failed(f"Returned {result.status_code}. Expected one of {status_codes}")


def _find_operation(definition: dict[str, Any], operation_id: str) -> tuple[str, str, dict[str, Any]] | None:
    for path, operations in (definition.get("paths") or {}).items():
        for method, operation in (operations or {}).items():
            if isinstance(operation, dict) and operation.get("operationId") == operation_id:
                return path, method, operation
    return None


def _openapi_definition(open_api: dict[str, Any], ctx: StepContext) -> dict[str, Any] | None:
    if open_api.get("definition"):
        return open_api["definition"]
    for candidate in ctx.context.get("openApi") or []:
        if candidate.get("definition") and (not open_api.get("name") or candidate.get("name") == open_api["name"]):
            return candidate["definition"]
    return None


def _apply_openapi(options: dict[str, Any], ctx: StepContext) -> str | None:
    """Fill ``url`` and ``method`` from an OpenAPI operation; returns an error message on failure."""

    open_api = options.get("openApi") or {}
    operation_id = open_api.get("operationId")
    if not operation_id:
        return None if options.get("url") else "Request requires a URL or an OpenAPI operation."
    definition = _openapi_definition(open_api, ctx)
    if definition is None:
        return f"No OpenAPI definition available for operation '{operation_id}'."
    found = _find_operation(definition, operation_id)
    if found is None:
        return f"Couldn't find operation '{operation_id}' in the OpenAPI definition."

    path, method, _ = found
    server = open_api.get("server") or next(
        (server.get("url") for server in definition.get("servers") or [] if server.get("url")), ""
    )
    payload = options.setdefault("request", {})
    parameters = dict(payload.get("parameters") or {})
    for name in re.findall(r"\{([^}]+)\}", path):
        if name in parameters:
            path = path.replace(f"{{{name}}}", parse.quote(str(parameters.pop(name)), safe=""))
    payload["parameters"] = parameters
    payload["headers"] = {**(open_api.get("headers") or {}), **parse_headers(payload.get("headers"))}
    options["url"] = f"{server.rstrip('/')}{path}"
    options["method"] = method.lower()
    return None


def _missing_fields(body: Any, required: list[str]) -> list[str]:
    missing = []
    for dotted in required:
        current = body
        for segment in _FIELD_SEGMENT.findall(dotted):
            if isinstance(current, dict) and segment in current:
                current = current[segment]
            elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
                current = current[int(segment)]
            else:
                missing.append(dotted)
                break
    return missing


def contains_subset(expected: Any, actual: Any) -> bool:
    """Whether every field and array item in ``expected`` appears in ``actual``."""

    if isinstance(expected, dict):
        return isinstance(actual, dict) and all(
            key in actual and contains_subset(value, actual[key]) for key, value in expected.items()
        )
    if isinstance(expected, list):
        return isinstance(actual, list) and all(
            any(contains_subset(item, candidate) for candidate in actual) for item in expected
        )
    return expected == actual


def has_unexpected_fields(expected: Any, actual: Any) -> bool:
    if isinstance(expected, dict) and isinstance(actual, dict):
        return any(
            key not in expected or has_unexpected_fields(expected[key], value) for key, value in actual.items()
        )
    return False


def _check_response(options: dict[str, Any], response: dict[str, Any]) -> list[str]:
    problems = []
    expectation = options.get("response") or {}
    body = response["body"]

    missing = _missing_fields(body, expectation.get("required") or [])
    if missing:
        problems.append(f"Missing required fields: {', '.join(missing)}")

    expected_body = expectation.get("body")
    if expected_body not in (None, {}, ""):
        if not options.get("allowAdditionalFields", True) and has_unexpected_fields(expected_body, body):
            problems.append("Response contained unexpected fields.")
        if isinstance(expected_body, str) != isinstance(body, str):
            problems.append("Expected response body type didn't match the actual response body type.")
        elif isinstance(expected_body, str):
            if expected_body != body:
                problems.append(f"Expected response body ({expected_body}) didn't match actual body ({body}).")
        elif not contains_subset(expected_body, body):
            problems.append(
                f"Expected response body ({json.dumps(expected_body)}) wasn't found in the actual "
                f"response body ({json.dumps(body)})."
            )

    expected_headers = {str(key).lower(): str(value) for key, value in (expectation.get("headers") or {}).items()}
    actual_headers = {str(key).lower(): str(value) for key, value in response["headers"].items()}
    for key, value in expected_headers.items():
        if actual_headers.get(key) != value:
            problems.append(f"Expected response header '{key}: {value}' wasn't found.")
    return problems


def _request_url(url: str, parameters: dict[str, Any]) -> str:
    if not parameters:
        return url
    separator = "&" if parse.urlparse(url).query else "?"
    return f"{url}{separator}{parse.urlencode(parameters, doseq=True)}"


def http_request(step: dict[str, Any], ctx: StepContext) -> StepOutcome:
    validation = action_options("httpRequest_v3", step["httpRequest"], "url")
    if not validation.valid:
        return StepOutcome.failed(f"Invalid step definition: {validation.errors}")
    options = validation.object
    open_api = options.get("openApi") or {}

    problem = _apply_openapi(options, ctx)
    if problem:
        return StepOutcome.failed(problem)

    payload = options.get("request") or {}
    status_codes = options.get("statusCodes") or [200, 201]
    body = payload.get("body")
    if isinstance(body, str) and body.strip()[:1] in {"{", "["}:
        body = _maybe_json(body)

    if open_api.get("mockResponse"):
        response = {
            "body": (options.get("response") or {}).get("body"),
            "statusCode": open_api.get("statusCode") or status_codes[0],
            "headers": {},
        }
    else:
        url = _absolute_url(options["url"], ctx.config.get("origin"))
        if url is None:
            return StepOutcome.failed(
                "Relative URL provided without origin. Specify an origin in either the step or the config."
            )
        try:
            result = HttpStepExecutor().execute(
                options.get("method", "get"),
                _request_url(url, payload.get("parameters") or {}),
                parse_headers(payload.get("headers")),
                body,
                timeout=options.get("timeout", 60000) / 1000,
            )
        except RuntimeError as exc:
            return StepOutcome.failed(str(exc))
        response = {
            "body": _maybe_json(result.response_body) if result.response_body else {},
            "statusCode": result.status_code,
            "headers": result.headers,
        }

    outcome = StepOutcome(PASS, "", {"response": response})
    if response["statusCode"] in status_codes:
        outcome.description = f"Returned {response['statusCode']}."
    else:
        outcome.status = FAIL
        outcome.description = f"Returned {response['statusCode']}. Expected one of {status_codes}"

    problems = _check_response(options, response)
    if problems:
        outcome.status = FAIL
        outcome.description = " ".join([outcome.description, *problems])

    path = options.get("path")
    if path:
        if options.get("directory") and not os.path.isabs(path):
            path = os.path.join(options["directory"], path)
        comparison = compare_text(
            path,
            json.dumps(response["body"], indent=2),
            float(options.get("maxVariation", 0)),
            options.get("overwrite", "aboveVariation"),
            subject="saved response",
        )
        if comparison.status == WARNING and outcome.status != FAIL:
            outcome.status = WARNING
        if comparison.description:
            outcome.description = f"{outcome.description} {comparison.description}"
    return outcome
