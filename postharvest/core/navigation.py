"""Navigation helpers for the content search results page."""
from __future__ import annotations
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .ids import build_search_url

RESULTS_SELECTOR = "div[data-view-tracking-scope]"


async def open_search(page: Any, keywords: str, settings) -> str:
    """Open the search results for ``keywords`` and wait for the first result cards.

    A timed-out wait is not an error: discovery will then simply find nothing.
    """
    url = build_search_url(keywords)
    await page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
    try:
        await page.wait_for_selector(RESULTS_SELECTOR, timeout=settings.results_wait_timeout_ms)
    except PlaywrightTimeoutError:
        pass
    return url
