"""Bounded-concurrency extraction over a list of identifiers.

Workers share one queue of ``(identifier, index)`` pairs and write into a
pre-sized result list, so output order always matches input order whatever
the completion order. A failing item becomes a placeholder; nothing is retried.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..bootstrap import ITEMS_EXTRACTED_TOTAL
from ..runtime.models import ExtractedItem
from .errors import log_playwright_failure
from .extract import ExtractorOptions, extract_item
from .ids import post_link

Extractor = Callable[[Any, str, ExtractorOptions], Awaitable[ExtractedItem]]


async def process_item(
    context: Any,
    urn: str,
    index: int,
    total: int,
    options: ExtractorOptions,
    *,
    extractor: Extractor = extract_item,
    logger=None,
) -> ExtractedItem:
    log = logger or structlog.get_logger(__name__)
    link = post_link(urn)
    page = None
    try:
        log.debug("post_processing", position=f"{index + 1}/{total}", urn=urn)
        page = await context.new_page()
        await page.goto(link, wait_until="domcontentloaded", timeout=0)
        item = await extractor(page, link, options)
        if item.failed:
            ITEMS_EXTRACTED_TOTAL.labels("degraded").inc()
            log.warning("post_degraded", position=index + 1, urn=urn, description=item.description)
        else:
            ITEMS_EXTRACTED_TOTAL.labels("success").inc()
            log.info("post_processed", position=index + 1, urn=urn)
        return item
    except Exception as exc:
        ITEMS_EXTRACTED_TOTAL.labels("failed").inc()
        log_playwright_failure("post_processing", exc)
        log.warning("post_failed", position=index + 1, urn=urn, error=str(exc))
        return ExtractedItem.placeholder(link)
    finally:
        if page is not None:
            with contextlib.suppress(Exception):
                await page.close()


async def run_extraction_pool(
    context: Any,
    identifiers: list[str],
    concurrency: int,
    *,
    extractor_options: Optional[ExtractorOptions] = None,
    extractor: Extractor = extract_item,
    logger=None,
) -> list[ExtractedItem]:
    log = logger or structlog.get_logger(__name__)
    total = len(identifiers)
    if total == 0:
        return []
    options = extractor_options or ExtractorOptions()
    queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
    for index, urn in enumerate(identifiers):
        queue.put_nowait((urn, index))
    results: list[Optional[ExtractedItem]] = [None] * total

    async def worker() -> None:
        while True:
            try:
                urn, index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await process_item(
                context, urn, index, total, options, extractor=extractor, logger=log
            )

    workers = max(1, min(concurrency, total))
    log.info("pool_started", items=total, workers=workers)
    outcomes = await asyncio.gather(*(worker() for _ in range(workers)), return_exceptions=True)
    for exc in outcomes:
        if isinstance(exc, BaseException):
            log.error("pool_worker_crashed", error=str(exc))

    # a crashed worker can leave a slot unfilled
    final = [r if r is not None else ExtractedItem.placeholder(post_link(identifiers[i])) for i, r in enumerate(results)]
    failed = sum(1 for r in final if r.failed)
    log.info("pool_complete", successful=total - failed, failed=failed, total=total)
    return final
