"""In-memory stand-ins for the parts of Playwright's async API the pipeline touches."""
from __future__ import annotations

import asyncio
import contextlib
import inspect
from pathlib import Path
from typing import Any, Callable, Optional

from postharvest.core.extract import COMMENTARY_SELECTOR
from postharvest.core.navigation import RESULTS_SELECTOR


class FakeLocator:
    def __init__(self, elements: list[dict[str, Any]], error: Optional[Exception] = None):
        self._elements = elements
        self._error = error

    async def count(self) -> int:
        if self._error:
            raise self._error
        return len(self._elements)

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self._elements[:1], self._error)

    async def text_content(self) -> Optional[str]:
        if self._error:
            raise self._error
        return self._elements[0].get("text") if self._elements else None

    async def get_attribute(self, name: str) -> Optional[str]:
        if self._error:
            raise self._error
        return self._elements[0].get(name) if self._elements else None

    async def screenshot(self, path: str) -> bytes:
        if self._error:
            raise self._error
        Path(path).write_bytes(b"\x89PNG")
        return b"\x89PNG"


class FakeKeyboard:
    def __init__(self):
        self.presses: list[str] = []

    async def press(self, key: str) -> None:
        self.presses.append(key)


class FakeFrame:
    def __init__(self, page: "FakePage"):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url


class FakePage:
    def __init__(
        self,
        url: str = "about:blank",
        *,
        xpaths: Optional[dict[str, list[dict[str, Any]]]] = None,
        commentary: Optional[list[str]] = None,
        scopes: Optional[list[Optional[str]]] = None,
        errors: Optional[dict[str, Exception]] = None,
        goto_error: Optional[Exception] = None,
        wait_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self._url = url
        self.xpaths = xpaths or {}
        self.commentary = commentary if commentary is not None else []
        self.scopes = scopes if scopes is not None else []
        self.errors = errors or {}
        self.goto_error = goto_error
        self.wait_error = wait_error
        self.delay = delay
        self.keyboard = FakeKeyboard()
        self.main_frame = FakeFrame(self)
        self.visited: list[str] = []
        self.waits: list[int] = []
        self.closed = False
        self._listeners: dict[str, list[Callable]] = {}
        self._close_waiters: list[asyncio.Future] = []
        self.tasks: list[asyncio.Task] = []

    # --- navigation ---------------------------------------------------------
    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        if self.goto_error:
            raise self.goto_error
        self.visited.append(url)
        self._url = url

    def navigate(self, url: str) -> list[asyncio.Task]:
        """Simulate a user navigation: URL changes, then both navigation events fire."""
        self._url = url
        return self.emit("framenavigated", self.main_frame) + self.emit("domcontentloaded", self)

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None):
        return None

    async def wait_for_timeout(self, ms: float) -> None:
        self.waits.append(ms)
        await asyncio.sleep(0)

    async def wait_for_function(self, expression: str, arg: Any = None, timeout: Optional[float] = None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.wait_error:
            raise self.wait_error
        return True

    def set_default_navigation_timeout(self, timeout: float) -> None:
        pass

    def set_default_timeout(self, timeout: float) -> None:
        pass

    # --- DOM ----------------------------------------------------------------
    def locator(self, selector: str) -> FakeLocator:
        key = selector[len("xpath="):] if selector.startswith("xpath=") else selector
        if key in self.errors:
            return FakeLocator([], self.errors[key])
        if key == COMMENTARY_SELECTOR:
            return FakeLocator([{"text": t} for t in self.commentary])
        return FakeLocator(self.xpaths.get(key, []))

    async def eval_on_selector_all(self, selector: str, expression: str):
        if selector in self.errors:
            raise self.errors[selector]
        if selector == COMMENTARY_SELECTOR:
            return list(self.commentary)
        if selector == RESULTS_SELECTOR:
            return list(self.scopes)
        return []

    # --- events -------------------------------------------------------------
    def on(self, event: str, handler: Callable) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self._listeners.get(event, []).remove(handler)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def emit(self, event: str, *args: Any) -> list[asyncio.Task]:
        scheduled = []
        for handler in list(self._listeners.get(event, [])):
            res = handler(*args)
            if inspect.isawaitable(res):
                task = asyncio.ensure_future(res)
                scheduled.append(task)
        self.tasks.extend(scheduled)
        return scheduled

    async def wait_for_event(self, event: str, timeout: Optional[float] = None):
        assert event == "close"
        if self.closed:
            return self
        fut = asyncio.get_running_loop().create_future()
        self._close_waiters.append(fut)
        return await fut

    def is_closed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.emit("close", self)
        for fut in self._close_waiters:
            if not fut.done():
                fut.set_result(self)


class FakeContext:
    def __init__(
        self,
        page_factory: Optional[Callable[[], FakePage]] = None,
        *,
        cookies: Optional[list[dict[str, Any]]] = None,
        storage_state: Optional[dict[str, Any]] = None,
        storage_error: Optional[Exception] = None,
        storage_delay: float = 0.0,
        cookie_error: Optional[Exception] = None,
        on_new_page: Optional[Callable[[FakePage], Any]] = None,
    ):
        self.page_factory = page_factory or FakePage
        self._cookies = cookies or []
        self._storage_state = storage_state or {"cookies": self._cookies, "origins": []}
        self.storage_error = storage_error
        self.storage_delay = storage_delay
        self.cookie_error = cookie_error
        self.on_new_page = on_new_page
        self.pages: list[FakePage] = []
        self.storage_calls = 0
        self.max_open_pages = 0

    def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self._cookies = cookies
        self._storage_state = {"cookies": cookies, "origins": []}

    async def new_page(self) -> FakePage:
        page = self.page_factory()
        self.pages.append(page)
        open_now = sum(1 for p in self.pages if not p.closed)
        self.max_open_pages = max(self.max_open_pages, open_now)
        if self.on_new_page is not None:
            self.on_new_page(page)
        return page

    async def cookies(self, urls: Optional[list[str]] = None) -> list[dict[str, Any]]:
        if self.cookie_error:
            raise self.cookie_error
        return list(self._cookies)

    async def storage_state(self) -> dict[str, Any]:
        self.storage_calls += 1
        if self.storage_delay:
            await asyncio.sleep(self.storage_delay)
        if self.storage_error:
            raise self.storage_error
        return dict(self._storage_state)


class FakeBrowserFactory:
    """Callable matching ``open_browser``'s signature; records each launch."""

    def __init__(self, context: FakeContext):
        self.context = context
        self.launches: list[dict[str, Any]] = []

    @contextlib.asynccontextmanager
    async def __call__(self, settings, *, headless: bool, storage_state=None):
        self.launches.append({"headless": headless, "storage_state": storage_state})
        yield self.context


class RecordingCredentials:
    def __init__(self, error: Optional[Exception] = None):
        self.saved: list[dict[str, Any]] = []
        self.error = error

    def save(self, state: dict[str, Any]) -> None:
        if self.error:
            raise self.error
        self.saved.append(state)


LI_AT = {"name": "li_at", "value": "secret", "domain": ".linkedin.com", "path": "/"}


def tracking_scope(urn: str) -> str:
    import json

    return json.dumps([{"breadcrumb": {"updateUrn": urn, "trackingId": "x"}}])
