"""Test bootstrap for doc-detective."""

from __future__ import annotations

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
import structlog

APP_ROOT = Path(__file__).resolve().parents[1]
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from doc_detective.config import current_platform  # noqa: E402


class RecordingServer:
    """Local HTTP server answering from a ``(method, path) -> (status, body, headers)`` table."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[dict[str, Any]], tuple[int, Any, dict[str, str]]]] = {}
        self.requests: list[dict[str, Any]] = []
        self.server: HTTPServer | None = None

    @property
    def url(self) -> str:
        assert self.server is not None
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def route(self, method: str, path: str, status: int = 200, body: Any = None, headers: dict[str, str] | None = None) -> None:
        self.routes[(method, path)] = lambda request: (status, body, headers or {})

    def handler(self, method: str, path: str, func: Callable[[dict[str, Any]], tuple[int, Any, dict[str, str]]]) -> None:
        self.routes[(method, path)] = func


def _make_handler(state: RecordingServer) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def _respond(self, method: str) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length).decode("utf-8") if length else ""
            path, _, query = self.path.partition("?")
            request = {
                "method": method,
                "path": path,
                "query": query,
                "headers": {key.lower(): value for key, value in self.headers.items()},
                "body": json.loads(raw) if raw.strip().startswith(("{", "[")) else raw,
            }
            state.requests.append(request)
            route = state.routes.get((method, path))
            if route is None:
                status, body, headers = 404, {"error": "not found"}, {}
            else:
                status, body, headers = route(request)
                headers = dict(headers)
            payload = body if isinstance(body, str) else json.dumps(body if body is not None else {})
            encoded = payload.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", headers.pop("Content-Type", "application/json"))
            for key, value in headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            if method != "HEAD":
                self.wfile.write(encoded)

        def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
            self._respond("GET")

        def do_POST(self) -> None:  # noqa: N802
            self._respond("POST")

        def do_PUT(self) -> None:  # noqa: N802
            self._respond("PUT")

        def do_HEAD(self) -> None:  # noqa: N802
            self._respond("HEAD")

        def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
            return

    return Handler


@pytest.fixture
def http_server() -> Iterator[RecordingServer]:
    state = RecordingServer()
    server = HTTPServer(("127.0.0.1", 0), _make_handler(state))
    state.server = server
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield state
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def environment() -> dict[str, Any]:
    return {"arch": "x64", "platform": current_platform(), "workingDirectory": str(Path.cwd()), "apps": []}


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()
