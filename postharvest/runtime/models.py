from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

PLACEHOLDER_PREFIX = "["
NO_DESCRIPTION = "[No description content found]"
DESCRIPTION_FAILED = "[Description extraction failed]"
PROCESSING_FAILED = "[Post processing failed - page may not have loaded]"


@dataclass(slots=True)
class ExtractedItem:
    """Fields read from one post page. ``link`` is the dedup key."""

    link: str
    description: str
    author_name: Optional[str] = None
    author_occupation: Optional[str] = None
    profile_image: Optional[str] = None
    post_date: Optional[str] = None
    like_count: Optional[str] = None
    comment_count: Optional[str] = None
    screenshot_path: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.description.startswith(PLACEHOLDER_PREFIX)

    @classmethod
    def placeholder(cls, link: str) -> "ExtractedItem":
        return cls(link=link, description=PROCESSING_FAILED)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SearchOutcome:
    """Aggregate result of one search invocation."""

    status: str  # ok | empty | partial | error | auth_required
    keywords: str
    items: list[ExtractedItem] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    persisted: Optional[dict[str, int]] = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def failed_count(self) -> int:
        return sum(1 for it in self.items if it.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "keywords": self.keywords,
            "count": len(self.items),
            "failed": self.failed_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
            "persisted": self.persisted,
            "items": [it.to_dict() for it in self.items],
        }
