"""Search orchestration: credential check, browser, discovery, extraction pool.

``search_posts`` is the pure pipeline (no persistence) and raises
``AuthenticationRequired`` before any browser is launched. ``run_search`` wraps it
into a ``SearchOutcome`` and optionally hands the items to the store.
"""
from __future__ import annotations

import contextlib
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..bootstrap import AppContext, SEARCH_DURATION_SECONDS, SEARCH_RUNS_TOTAL, STEP_DURATION
from ..browser import open_browser
from ..runtime.models import ExtractedItem, SearchOutcome
from .discovery import discover_identifiers
from .errors import AuthenticationRequired
from .extract import ExtractorOptions
from .navigation import open_search
from .pool import run_extraction_pool


async def perform_search(
    context: Any,
    keywords: str,
    pagination_depth: int,
    *,
    settings,
    concurrency: int,
    extractor_options: ExtractorOptions,
    logger,
) -> list[ExtractedItem]:
    page = await context.new_page()
    try:
        with STEP_DURATION.labels("open_search").time():
            url = await open_search(page, keywords, settings)
        logger.debug("search_page_opened", url=url)
        with STEP_DURATION.labels("discovery").time():
            urns = await discover_identifiers(page, pagination_depth, settle_ms=settings.scroll_settle_ms)
        if not urns:
            logger.info("no_posts_found", keywords=keywords)
            return []
        logger.info("posts_to_process", count=len(urns))
        with STEP_DURATION.labels("extraction").time():
            return await run_extraction_pool(
                context, urns, concurrency, extractor_options=extractor_options, logger=logger
            )
    finally:
        with contextlib.suppress(Exception):
            await page.close()


def _clamp_depth(ctx: AppContext, pagination_depth: Optional[int]) -> int:
    depth = ctx.settings.pagination_depth if pagination_depth is None else pagination_depth
    return max(0, min(int(depth), ctx.settings.max_pagination_depth))


async def search_posts(
    ctx: AppContext,
    keywords: str,
    pagination_depth: Optional[int] = None,
    *,
    concurrency: Optional[int] = None,
    headless: Optional[bool] = None,
    capture_screenshots: Optional[bool] = None,
    browser_factory: Callable = open_browser,
) -> list[ExtractedItem]:
    cred = ctx.credentials.load_valid()
    if cred is None:
        raise AuthenticationRequired()
    settings = ctx.settings
    depth = _clamp_depth(ctx, pagination_depth)
    workers = concurrency if concurrency is not None else settings.search_concurrency
    headless = settings.playwright_headless_scrape if headless is None else headless
    options = ExtractorOptions.from_settings(settings, capture_screenshots=capture_screenshots)
    log = ctx.logger.bind(component="search", keywords=keywords)
    log.info("search_started", pages=depth, concurrency=workers, headless=headless)
    async with browser_factory(settings, headless=headless, storage_state=cred.storage_state()) as context:
        return await perform_search(
            context,
            keywords,
            depth,
            settings=settings,
            concurrency=workers,
            extractor_options=options,
            logger=log,
        )


async def run_search(
    ctx: AppContext,
    keywords: str,
    pagination_depth: Optional[int] = None,
    *,
    persist: bool = False,
    **search_kwargs: Any,
) -> SearchOutcome:
    """Structured search: never raises, reports ``status`` instead."""
    outcome = SearchOutcome(status="ok", keywords=keywords)
    log = ctx.logger.bind(component="search", keywords=keywords)
    try:
        with SEARCH_DURATION_SECONDS.time():
            outcome.items = await search_posts(ctx, keywords, pagination_depth, **search_kwargs)
        if not outcome.items:
            outcome.status = "empty"
        elif outcome.failed_count:
            outcome.status = "partial"
        if persist and outcome.items:
            outcome.persisted = ctx.store.persist(outcome.items, keywords).model_dump()
    except AuthenticationRequired as exc:
        outcome.status = "auth_required"
        outcome.error = str(exc)
        log.warning("search_auth_required")
    except Exception as exc:
        outcome.status = "error"
        outcome.error = str(exc) or type(exc).__name__
        log.error("search_failed", error=outcome.error)
    outcome.finished_at = datetime.now(timezone.utc)
    SEARCH_RUNS_TOTAL.labels(outcome.status).inc()
    log.info(
        "search_finished",
        status=outcome.status,
        count=len(outcome.items),
        failed=outcome.failed_count,
        duration=round(outcome.duration_seconds, 3),
    )
    return outcome
