from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from domain.models import PersistResult, PostFilter, PostUpdate
from postharvest.core.errors import InvalidFilter

logger = structlog.get_logger(__name__)


@dataclass
class PostsPage:
    posts: list[dict[str, Any]]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "limit": self.limit, "offset": self.offset, "posts": self.posts}


@dataclass
class BulkResult:
    action: str
    matched_ids: list[int] = field(default_factory=list)
    affected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "matched_ids": self.matched_ids, "affected": self.affected}


class PostsService:
    """Read / update / delete stored posts selected by a filter.

    Update and delete resolve the matching ids first, then act on exactly those
    ids, so the reported ids are the rows that were touched.
    """

    def read(self, ctx, flt: PostFilter | None = None) -> PostsPage:
        flt = flt or PostFilter()
        limit = flt.limit or ctx.settings.query_default_limit
        limit = min(limit, ctx.settings.query_max_limit)
        page_filter = flt.model_copy(update={"limit": limit})
        rows = ctx.store.query_posts(page_filter)
        total = ctx.store.count_posts(flt)
        return PostsPage(
            posts=[r.model_dump() for r in rows],
            total=total,
            limit=limit,
            offset=flt.offset,
        )

    def update(self, ctx, flt: PostFilter, update: PostUpdate, *, allow_all: bool = False) -> BulkResult:
        self._require_selection(flt, allow_all)
        if not update.changes():
            raise InvalidFilter("no fields to update")
        ids = ctx.store.matching_ids(flt)
        affected = ctx.store.update_posts(ids, update) if ids else 0
        logger.info("posts_updated", matched=len(ids), affected=affected)
        return BulkResult(action="update", matched_ids=ids, affected=affected)

    def delete(self, ctx, flt: PostFilter, *, allow_all: bool = False) -> BulkResult:
        self._require_selection(flt, allow_all)
        ids = ctx.store.matching_ids(flt)
        affected = ctx.store.delete_posts(ids) if ids else 0
        logger.info("posts_deleted", matched=len(ids), affected=affected)
        return BulkResult(action="delete", matched_ids=ids, affected=affected)

    def save_search(self, ctx, items: Iterable, keywords: str) -> PersistResult:
        return ctx.store.persist(list(items), keywords)

    # --- internal helpers -------------------------------------------------
    @staticmethod
    def _require_selection(flt: PostFilter, allow_all: bool) -> None:
        # an empty filter selects the whole table
        if flt.is_empty and not allow_all:
            raise InvalidFilter("at least one filter criterion is required")
