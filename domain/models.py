from __future__ import annotations
from typing import Optional, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime, timezone
import time

_DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionCredential(BaseModel):
    """Browser storage state captured after a successful login.

    Serialised as one JSON object: Playwright's ``{cookies, origins}`` plus the
    capture ``timestamp`` and ``lastValidated`` (epoch milliseconds).
    """
    cookies: list[dict[str, Any]] = Field(default_factory=list)
    origins: list[dict[str, Any]] = Field(default_factory=list)
    timestamp: int = Field(default_factory=_now_ms)
    last_validated: Optional[int] = Field(None, alias="lastValidated")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def auth_cookie(self, name: str = "li_at") -> Optional[dict[str, Any]]:
        for c in self.cookies:
            if c.get("name") == name and "linkedin.com" in str(c.get("domain", "")):
                return c
        return None

    def age_ms(self, now_ms: Optional[int] = None) -> int:
        return (now_ms if now_ms is not None else _now_ms()) - self.timestamp

    def is_valid(self, *, cookie_name: str = "li_at", max_age_days: int = 30, now_ms: Optional[int] = None) -> bool:
        if self.auth_cookie(cookie_name) is None:
            return False
        return self.age_ms(now_ms) < max_age_days * _DAY_MS

    def age_label(self, now_ms: Optional[int] = None) -> str:
        days = self.age_ms(now_ms) // _DAY_MS
        if days < 1:
            return "Less than 1 day"
        return f"{days} day{'s' if days != 1 else ''}"

    def storage_state(self) -> dict[str, Any]:
        return {"cookies": list(self.cookies), "origins": list(self.origins)}

    def to_storage_dict(self) -> dict[str, Any]:
        return {
            "cookies": self.cookies,
            "origins": self.origins,
            "timestamp": self.timestamp,
            "lastValidated": self.last_validated,
        }


class StoredPost(BaseModel):
    """Row of the ``posts`` table."""
    id: int
    search_keywords: str
    post_link: str
    description: str
    search_date: str
    applied: bool = False
    saved: bool = False
    profile_image: str = ""
    author_name: str = ""
    author_occupation: str = ""
    post_date: str = ""
    like_count: str = ""
    comment_count: str = ""
    screenshot_path: str = ""

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "StoredPost":
        row = {k: ("" if v is None else v) for k, v in dict(data).items()}
        row["applied"] = bool(row.get("applied") or 0)
        row["saved"] = bool(row.get("saved") or 0)
        return cls(**row)


class PostFilter(BaseModel):
    """Selection of stored posts. Every provided criterion is ANDed."""
    ids: Optional[list[int]] = None
    search_text: Optional[str] = None
    keyword: Optional[str] = None
    contains: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    applied: Optional[bool] = None
    saved: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("search_text", "keyword", "contains")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _check_range(self) -> "PostFilter":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def is_empty(self) -> bool:
        return not any(
            v is not None
            for v in (self.ids, self.search_text, self.keyword, self.contains,
                      self.date_from, self.date_to, self.applied, self.saved)
        )


UPDATABLE_FIELDS = (
    "search_keywords",
    "description",
    "applied",
    "saved",
    "profile_image",
    "author_name",
    "author_occupation",
    "post_date",
    "like_count",
    "comment_count",
)


class PostUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""
    search_keywords: Optional[str] = None
    description: Optional[str] = None
    applied: Optional[bool] = None
    saved: Optional[bool] = None
    profile_image: Optional[str] = None
    author_name: Optional[str] = None
    author_occupation: Optional[str] = None
    post_date: Optional[str] = None
    like_count: Optional[str] = None
    comment_count: Optional[str] = None

    model_config = {"extra": "forbid"}

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in self.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            out[name] = int(value) if isinstance(value, bool) else value
        return out


class PersistResult(BaseModel):
    total: int = 0
    new: int = 0
    duplicates: int = 0


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
