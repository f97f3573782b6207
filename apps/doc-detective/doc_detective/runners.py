"""Browser sessions bound to one resolved context."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import structlog
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .errors import RunnerStartError

LOGGER = structlog.get_logger("doc_detective", component="runner")

BROWSER_ENGINES = {"chrome": "chromium", "firefox": "firefox", "webkit": "webkit", "safari": "webkit"}


class Runner(Protocol):
    """Minimal surface the browser handlers rely on."""

    @property
    def page(self) -> Any: ...

    @property
    def browser_context(self) -> Any: ...

    def start(self) -> None: ...

    def start_recording(self, directory: str) -> None: ...

    def stop_recording(self) -> Optional[str]: ...

    def close(self) -> None: ...


RunnerFactory = Callable[[dict[str, Any], dict[str, Any]], Runner]


class PlaywrightRunner:
    """One Playwright browser, browser context and page.

    ``close`` may be called any number of times; only the first call tears
    anything down.
    """

    def __init__(self, browser: dict[str, Any], config: Optional[dict[str, Any]] = None) -> None:
        self.browser_options = dict(browser or {})
        self.config = config or {}
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None
        self._recording = False
        self._closed = False

    @property
    def page(self) -> Any:
        if self._page is None:
            raise RuntimeError("Runner has not been started")
        return self._page

    @property
    def browser_context(self) -> Any:
        if self._context is None:
            raise RuntimeError("Runner has not been started")
        return self._context

    @property
    def is_recording(self) -> bool:
        return self._recording

    def _context_options(self, video_directory: Optional[str] = None) -> dict[str, Any]:
        options: dict[str, Any] = {}
        size = self.browser_options.get("viewport") or self.browser_options.get("window") or {}
        if size.get("width") and size.get("height"):
            options["viewport"] = {"width": int(size["width"]), "height": int(size["height"])}
        if video_directory:
            options["record_video_dir"] = video_directory
            if "viewport" in options:
                options["record_video_size"] = options["viewport"]
        download_directory = self.config.get("downloadDirectory")
        if download_directory:
            options["accept_downloads"] = True
        return options

    def start(self) -> None:
        name = self.browser_options.get("name") or "firefox"
        engine = BROWSER_ENGINES.get(name)
        if engine is None:
            raise RunnerStartError(f"Unsupported browser: {name}")
        headless = self.browser_options.get("headless", True)
        log = LOGGER.bind(browser=name, headless=headless)
        try:
            self._playwright = sync_playwright().start()
            self._browser = getattr(self._playwright, engine).launch(headless=headless)
            self._context = self._browser.new_context(**self._context_options())
            self._page = self._context.new_page()
        except PlaywrightError as exc:
            log.warning("runner_start_failed", error=str(exc))
            self.close()
            raise RunnerStartError(f"Failed to start context '{name}': {exc}") from exc
        log.debug("runner_started")

    def _swap_context(self, video_directory: Optional[str]) -> Any:
        """Replace the browser context, keeping cookies, storage and the current URL."""

        previous_context = self._context
        previous_page = self._page
        url = previous_page.url
        state = previous_context.storage_state()
        self._context = self._browser.new_context(storage_state=state, **self._context_options(video_directory))
        self._page = self._context.new_page()
        if url and url != "about:blank":
            self._page.goto(url)
        return previous_context, previous_page

    def start_recording(self, directory: str) -> None:
        Path(directory).mkdir(parents=True, exist_ok=True)
        previous_context, _ = self._swap_context(directory)
        previous_context.close()
        self._recording = True
        LOGGER.debug("recording_started", directory=directory)

    def stop_recording(self) -> Optional[str]:
        """Finish the active recording and return the path of the video file."""

        if not self._recording:
            return None
        recorded_context, recorded_page = self._swap_context(None)
        video = recorded_page.video
        recorded_context.close()
        self._recording = False
        video_path = video.path() if video is not None else None
        LOGGER.debug("recording_stopped", path=video_path)
        return str(video_path) if video_path else None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for resource, action in ((self._context, "close"), (self._browser, "close"), (self._playwright, "stop")):
            if resource is None:
                continue
            try:
                getattr(resource, action)()
            except PlaywrightError as exc:
                LOGGER.warning("runner_close_failed", error=str(exc))
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        LOGGER.debug("runner_closed")


def playwright_runner_factory(context: dict[str, Any], config: dict[str, Any]) -> Runner:
    return PlaywrightRunner(context.get("browser") or {}, config)


class RunnerHandle:
    """Creates a context's runner on first use and tears it down at most once."""

    def __init__(self, start: Callable[[], Runner]) -> None:
        self._start = start
        self._runner: Optional[Runner] = None
        self._closed = False

    @property
    def active(self) -> Optional[Runner]:
        return self._runner

    def get(self) -> Runner:
        if self._closed:
            raise RuntimeError("Runner has already been closed")
        if self._runner is None:
            self._runner = self._start()
        return self._runner

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._runner is not None:
            self._runner.close()
