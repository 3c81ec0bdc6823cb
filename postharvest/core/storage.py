"""SQLite post store.

One connection per process, opened by ``bootstrap`` and handed around through the
application context. Writes go through a lock so the store can be shared with
threads (CLI helpers, executors) as well as the event loop.
"""
from __future__ import annotations
from pathlib import Path
import sqlite3
import threading
from typing import Any, Iterable, Optional

import structlog

from ..bootstrap import PERSISTED_ROWS_TOTAL
from ..runtime.models import ExtractedItem
from .errors import StorageError, InvalidFilter
from domain.models import PersistResult, PostFilter, PostUpdate, StoredPost, utc_now_iso

_CREATE_POSTS = """CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    search_keywords TEXT NOT NULL,
    post_link TEXT UNIQUE NOT NULL,
    description TEXT NOT NULL,
    search_date TEXT NOT NULL,
    applied INTEGER DEFAULT 0,
    saved INTEGER DEFAULT 0,
    profile_image TEXT DEFAULT '',
    author_name TEXT DEFAULT '',
    author_occupation TEXT DEFAULT '',
    post_date TEXT DEFAULT '',
    like_count TEXT DEFAULT '',
    comment_count TEXT DEFAULT '',
    screenshot_path TEXT DEFAULT ''
)"""

# Columns added after the first release; older databases get them through ALTER TABLE.
_MIGRATED_COLUMNS = {
    "applied": "INTEGER DEFAULT 0",
    "saved": "INTEGER DEFAULT 0",
    "profile_image": "TEXT DEFAULT ''",
    "author_name": "TEXT DEFAULT ''",
    "author_occupation": "TEXT DEFAULT ''",
    "post_date": "TEXT DEFAULT ''",
    "like_count": "TEXT DEFAULT ''",
    "comment_count": "TEXT DEFAULT ''",
    "screenshot_path": "TEXT DEFAULT ''",
}

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_posts_link ON posts(post_link)",
    "CREATE INDEX IF NOT EXISTS idx_posts_search_date ON posts(search_date)",
    "CREATE INDEX IF NOT EXISTS idx_posts_applied ON posts(applied)",
    "CREATE INDEX IF NOT EXISTS idx_posts_saved ON posts(saved)",
)

FLAGS = ("applied", "saved")


def _like_pattern(text: str) -> str:
    """Substring pattern for ``LIKE ? ESCAPE '\\'`` with the wildcards taken literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PostStore:
    def __init__(self, conn: sqlite3.Connection, logger=None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.logger = logger or structlog.get_logger(__name__)
        self._lock = threading.Lock()
        self.ensure_schema()

    @classmethod
    def open(cls, path: str | Path, logger=None) -> "PostStore":
        p = Path(path)
        if str(p) != ":memory:":
            p.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(p), check_same_thread=False)
        return cls(conn, logger=logger)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # --- schema -------------------------------------------------------------
    def ensure_schema(self) -> None:
        with self._lock, self.conn:
            self.conn.execute(_CREATE_POSTS)
            existing = {row[1] for row in self.conn.execute("PRAGMA table_info(posts)")}
            for col, decl in _MIGRATED_COLUMNS.items():
                if col in existing:
                    continue
                try:
                    self.conn.execute(f"ALTER TABLE posts ADD COLUMN {col} {decl}")
                    self.logger.info("sqlite_column_added", column=col)
                except sqlite3.OperationalError as exc:
                    if "duplicate column name" not in str(exc).lower():
                        raise StorageError(str(exc)) from exc
            for stmt in _INDEXES:
                self.conn.execute(stmt)

    # --- writes -------------------------------------------------------------
    def insert_post(self, item: ExtractedItem, keywords: str, search_date: Optional[str] = None) -> Optional[int]:
        """Insert one item; returns the new row id, or None when the link already exists."""
        row = (
            keywords,
            item.link,
            item.description,
            search_date or utc_now_iso(),
            item.profile_image or "",
            item.author_name or "",
            item.author_occupation or "",
            item.post_date or "",
            item.like_count or "",
            item.comment_count or "",
            item.screenshot_path or "",
        )
        try:
            with self._lock, self.conn:
                cur = self.conn.execute(
                    "INSERT INTO posts (search_keywords, post_link, description, search_date, profile_image, "
                    "author_name, author_occupation, post_date, like_count, comment_count, screenshot_path) "
                    "VALUES (?,?,?,?,?,?,?,?,?,?,?)",
                    row,
                )
                return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" in str(exc):
                return None
            raise StorageError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def persist(self, items: Iterable[ExtractedItem], keywords: str) -> PersistResult:
        """Idempotent bulk insert keyed by link; all rows share one capture timestamp."""
        search_date = utc_now_iso()
        res = PersistResult()
        for item in items:
            res.total += 1
            if self.insert_post(item, keywords, search_date) is None:
                res.duplicates += 1
            else:
                res.new += 1
        PERSISTED_ROWS_TOTAL.labels("new").inc(res.new)
        PERSISTED_ROWS_TOTAL.labels("duplicate").inc(res.duplicates)
        self.logger.info("sqlite_inserted", inserted=res.new, duplicates=res.duplicates, total=res.total, keywords=keywords)
        return res

    def update_posts(self, ids: list[int], update: PostUpdate) -> int:
        """Apply provided fields to every id; returns how many of the ids existed."""
        if not ids:
            return 0
        changes = update.changes()
        existing = self._existing_ids(ids)
        if not existing or not changes:
            return len(existing)
        assignments = ", ".join(f"{k} = ?" for k in changes)
        placeholders = ",".join(["?"] * len(existing))
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    f"UPDATE posts SET {assignments} WHERE id IN ({placeholders})",
                    [*changes.values(), *existing],
                )
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        self.logger.info("sqlite_updated", updated=len(existing), fields=sorted(changes))
        return len(existing)

    def delete_posts(self, ids: list[int]) -> int:
        if not ids:
            return 0
        existing = self._existing_ids(ids)
        if not existing:
            return 0
        placeholders = ",".join(["?"] * len(existing))
        try:
            with self._lock, self.conn:
                self.conn.execute(f"DELETE FROM posts WHERE id IN ({placeholders})", existing)
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        self.logger.info("sqlite_deleted", deleted=len(existing))
        return len(existing)

    def set_flag(self, post_id: int, flag: str, value: bool) -> bool:
        if flag not in FLAGS:
            raise InvalidFilter(f"unknown flag: {flag}")
        with self._lock, self.conn:
            cur = self.conn.execute(f"UPDATE posts SET {flag} = ? WHERE id = ?", (int(value), post_id))
        return cur.rowcount > 0

    def toggle_flag(self, post_id: int, flag: str) -> Optional[bool]:
        """Flip ``applied`` or ``saved``; returns the new value or None for an unknown id."""
        if flag not in FLAGS:
            raise InvalidFilter(f"unknown flag: {flag}")
        with self._lock, self.conn:
            cur = self.conn.execute(
                f"UPDATE posts SET {flag} = CASE WHEN {flag} = 1 THEN 0 ELSE 1 END WHERE id = ?", (post_id,)
            )
            if cur.rowcount == 0:
                return None
            row = self.conn.execute(f"SELECT {flag} FROM posts WHERE id = ?", (post_id,)).fetchone()
        return bool(row[0])

    # --- reads --------------------------------------------------------------
    def get_post(self, post_id: int) -> Optional[StoredPost]:
        row = self.conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
        return StoredPost.from_storage(dict(row)) if row else None

    def post_exists(self, link: str) -> bool:
        return self.conn.execute("SELECT 1 FROM posts WHERE post_link = ?", (link,)).fetchone() is not None

    def query_posts(self, flt: PostFilter | None = None) -> list[StoredPost]:
        flt = flt or PostFilter()
        where, params = self._where(flt)
        sql = "SELECT * FROM posts" + where + " ORDER BY search_date DESC, id DESC"
        if flt.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([flt.limit, flt.offset])
        elif flt.offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(flt.offset)
        return [StoredPost.from_storage(dict(r)) for r in self.conn.execute(sql, params)]

    def count_posts(self, flt: PostFilter | None = None) -> int:
        where, params = self._where(flt or PostFilter())
        row = self.conn.execute("SELECT COUNT(*) FROM posts" + where, params).fetchone()
        return int(row[0]) if row else 0

    def matching_ids(self, flt: PostFilter) -> list[int]:
        where, params = self._where(flt)
        sql = "SELECT id FROM posts" + where + " ORDER BY search_date DESC, id DESC"
        return [int(r[0]) for r in self.conn.execute(sql, params)]

    # --- internal helpers ---------------------------------------------------
    def _existing_ids(self, ids: list[int]) -> list[int]:
        uniq = list(dict.fromkeys(int(i) for i in ids))
        placeholders = ",".join(["?"] * len(uniq))
        rows = self.conn.execute(f"SELECT id FROM posts WHERE id IN ({placeholders})", uniq)
        return [int(r[0]) for r in rows]

    @staticmethod
    def _where(flt: PostFilter) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if flt.ids is not None:
            if not flt.ids:
                clauses.append("0")
            else:
                clauses.append(f"id IN ({','.join(['?'] * len(flt.ids))})")
                params.extend(int(i) for i in flt.ids)
        if flt.search_text:
            pat = _like_pattern(flt.search_text)
            clauses.append("(search_keywords LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
            params.extend([pat, pat])
        if flt.keyword:
            clauses.append("search_keywords LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(flt.keyword))
        if flt.contains:
            clauses.append("description LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(flt.contains))
        # search_date is ISO-8601; its first 10 chars are the calendar date
        if flt.date_from:
            clauses.append("substr(search_date, 1, 10) >= ?")
            params.append(flt.date_from.isoformat())
        if flt.date_to:
            clauses.append("substr(search_date, 1, 10) <= ?")
            params.append(flt.date_to.isoformat())
        if flt.applied is not None:
            clauses.append("applied = ?")
            params.append(int(flt.applied))
        if flt.saved is not None:
            clauses.append("saved = ?")
            params.append(int(flt.saved))
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params
