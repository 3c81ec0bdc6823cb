"""Login detection for the user-driven authentication window.

Three channels race to notice that the user finished logging in:

* the main frame navigates to the feed (``navigated-to-feed``)
* ``domcontentloaded`` fires while the page is on the feed (``domcontentloaded-on-feed``)
* a poll task sees the auth cookie (``li_at-cookie-detected``) or the feed URL
  (``feed-url-detected``)

plus one immediate check when the detector is attached (``immediate-on-feed``).

Each claim runs in its own task: it captures the browser storage state, then the
first claim to hold a capture takes the flag and writes it to the credential slot,
resolves ``detected`` with its reason and calls ``on_detected``. A failed capture
leaves the flag untouched so a later channel can still win. The flag is taken with
no await between check and set, so at most one write is ever attempted; a failed
write is not retried and ``detected`` stays pending.

``teardown()`` stops the channels but never cancels a running claim; ``settle()``
waits for those to finish.
"""
from __future__ import annotations

import asyncio
import contextlib
import re
from typing import Any, Awaitable, Callable, Optional

import structlog

from .bootstrap import LOGIN_DETECTIONS_TOTAL

OnDetected = Callable[[str], Awaitable[None]]


class LoginDetector:
    def __init__(
        self,
        page: Any,
        context: Any,
        credentials: Any,
        on_detected: Optional[OnDetected] = None,
        *,
        poll_interval: float = 1.5,
        cookie_name: str = "li_at",
        cookie_url: str = "https://www.linkedin.com",
        feed_pattern: str = r"linkedin\.com/feed",
        logger=None,
    ):
        # must be built inside a running loop
        self.detected: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.page = page
        self.context = context
        self.credentials = credentials
        self.on_detected = on_detected
        self.poll_interval = poll_interval
        self.cookie_name = cookie_name
        self.cookie_url = cookie_url
        self._feed_re = re.compile(feed_pattern)
        self.logger = logger or structlog.get_logger(__name__).bind(component="login_detector")
        self._saved = False
        self._closed = False
        self._attached = False
        self._poll_task: Optional[asyncio.Task] = None
        self._claims: set[asyncio.Task] = set()
        self.save_attempts = 0

    # --- public -------------------------------------------------------------
    @property
    def claimed(self) -> bool:
        return self._saved

    async def attach(self) -> None:
        """Register the listeners, start polling, then run the immediate check."""
        if self._attached:
            return
        self._attached = True
        self.page.on("framenavigated", self._on_frame_navigated)
        self.page.on("domcontentloaded", self._on_dom_content_loaded)
        self.page.on("close", self._on_close)
        self._poll_task = asyncio.create_task(self._poll(), name="login-detector-poll")
        if self._looks_like_feed(self.page.url):
            await self._claim("immediate-on-feed")

    def teardown(self) -> None:
        """Remove listeners and stop polling; idempotent. Running claims are left alone."""
        if self._closed:
            return
        self._closed = True
        if self._attached:
            for event, handler in (
                ("framenavigated", self._on_frame_navigated),
                ("domcontentloaded", self._on_dom_content_loaded),
                ("close", self._on_close),
            ):
                with contextlib.suppress(KeyError, ValueError):
                    self.page.remove_listener(event, handler)
        task = self._poll_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.logger.debug("detector_teardown", claimed=self._saved, pending_claims=len(self._claims))

    async def settle(self) -> None:
        """Wait for claims still capturing or writing when the channels stopped."""
        while self._claims:
            await asyncio.gather(*list(self._claims), return_exceptions=True)

    # --- channels -----------------------------------------------------------
    def _looks_like_feed(self, url: Optional[str]) -> bool:
        return bool(url) and self._feed_re.search(url) is not None

    async def _on_frame_navigated(self, frame: Any) -> None:
        if self._closed or frame is not self.page.main_frame:
            return
        if self._looks_like_feed(frame.url):
            await self._claim("navigated-to-feed")

    async def _on_dom_content_loaded(self, *_: Any) -> None:
        if self._closed:
            return
        if self._looks_like_feed(self.page.url):
            await self._claim("domcontentloaded-on-feed")

    def _on_close(self, *_: Any) -> None:
        self.teardown()

    async def _has_auth_cookie(self) -> bool:
        cookies = await self.context.cookies([self.cookie_url])
        return any(c.get("name") == self.cookie_name for c in cookies)

    async def _poll(self) -> None:
        while not self._closed and not self._saved:
            await asyncio.sleep(self.poll_interval)
            if self._closed or self._saved:
                return
            try:
                if await self._has_auth_cookie():
                    await self._claim("li_at-cookie-detected")
                elif self._looks_like_feed(self.page.url):
                    await self._claim("feed-url-detected")
            except Exception as exc:  # page may be navigating or closing
                self.logger.debug("detector_poll_error", error=str(exc))

    # --- race resolution ----------------------------------------------------
    async def _claim(self, reason: str) -> None:
        if self._saved:
            return
        task = asyncio.create_task(self._capture_and_save(reason), name=f"login-claim-{reason}")
        self._claims.add(task)
        task.add_done_callback(self._claims.discard)
        # cancelling the channel must not cancel the claim
        await asyncio.shield(task)

    async def _capture_and_save(self, reason: str) -> None:
        try:
            state = await self.context.storage_state()
        except Exception as exc:
            self.logger.debug("auth_capture_failed", reason=reason, error=str(exc))
            return
        if self._saved:
            return
        self._saved = True
        self.save_attempts += 1
        try:
            await asyncio.to_thread(self.credentials.save, state)
        except Exception as exc:
            self.logger.warning("auth_save_failed", reason=reason, error=str(exc))
            return
        LOGIN_DETECTIONS_TOTAL.labels(reason).inc()
        self.logger.info("auth_detected", reason=reason)
        if not self.detected.done():
            self.detected.set_result(reason)
        if self.on_detected is not None:
            await self.on_detected(reason)
