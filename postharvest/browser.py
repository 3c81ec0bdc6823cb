"""Playwright browser launcher shared by the login flow and the search pipeline."""
from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Optional

import structlog
from playwright.async_api import BrowserContext, Error as PlaywrightError, async_playwright

from .bootstrap import Settings
from .core.errors import BrowserUnavailable

logger = structlog.get_logger(__name__)


@contextlib.asynccontextmanager
async def open_browser(
    settings: Settings,
    *,
    headless: bool,
    storage_state: Optional[dict[str, Any]] = None,
) -> AsyncIterator[BrowserContext]:
    """Launch Chromium and yield a fresh context; everything is closed on exit.

    ``storage_state`` carries the captured session (cookies + origins) into the context.
    """
    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch(headless=headless)
        except PlaywrightError as exc:
            raise BrowserUnavailable(f"browser launch failed: {exc}") from exc
        logger.debug("browser_launched", headless=headless, with_session=storage_state is not None)
        try:
            context = await browser.new_context(storage_state=storage_state) if storage_state else await browser.new_context()
            context.set_default_navigation_timeout(settings.navigation_timeout_ms)
            try:
                yield context
            finally:
                with contextlib.suppress(PlaywrightError):
                    await context.close()
        finally:
            with contextlib.suppress(PlaywrightError):
                await browser.close()
            logger.debug("browser_closed")
