"""Identifier discovery on the paginated search results view.

Each result card carries a ``data-view-tracking-scope`` attribute holding a JSON
array; ``[0].breadcrumb.updateUrn`` is the post identifier.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Optional

import structlog

from ..bootstrap import SEARCH_IDENTIFIERS_DISCOVERED
from .navigation import RESULTS_SELECTOR

logger = structlog.get_logger(__name__)

_READ_SCOPES_JS = "els => els.map(e => e.getAttribute('data-view-tracking-scope'))"


def parse_tracking_scope(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
        urn = parsed[0]["breadcrumb"]["updateUrn"]
    except (ValueError, TypeError, KeyError, IndexError):
        return None
    return urn if isinstance(urn, str) and urn else None


def parse_tracking_scopes(raw_values: Iterable[Optional[str]]) -> list[str]:
    """Unique identifiers in first-seen order; malformed entries are skipped."""
    seen: dict[str, None] = {}
    for raw in raw_values:
        urn = parse_tracking_scope(raw)
        if urn is not None and urn not in seen:
            seen[urn] = None
    return list(seen)


async def load_more_results(page: Any, pagination_depth: int, settle_ms: int = 1200) -> None:
    for _ in range(max(0, pagination_depth)):
        await page.keyboard.press("End")
        await page.wait_for_timeout(settle_ms)


async def discover_identifiers(page: Any, pagination_depth: int, *, settle_ms: int = 1200) -> list[str]:
    await load_more_results(page, pagination_depth, settle_ms)
    raw_values = await page.eval_on_selector_all(RESULTS_SELECTOR, _READ_SCOPES_JS)
    urns = parse_tracking_scopes(raw_values or [])
    SEARCH_IDENTIFIERS_DISCOVERED.inc(len(urns))
    logger.info("identifiers_discovered", count=len(urns), scanned=len(raw_values or []), pages=pagination_depth)
    return urns
