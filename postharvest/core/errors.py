"""Exception taxonomy and structured registry for Playwright failures.

The registry writes JSON lines to the file named by env PLAYWRIGHT_FAILURE_LOG and
stays silent when the variable is unset. An in-memory counter per signature keeps
the volume down for repeated failures.
"""
from __future__ import annotations
import os, json, time, threading
from dataclasses import dataclass, asdict
from typing import Dict


class PostHarvestError(Exception):
    """Base class for every error raised on purpose by postharvest."""


class AuthenticationRequired(PostHarvestError):
    def __init__(self, message: str = "No valid LinkedIn authentication found. Please authenticate first."):
        super().__init__(message)


class BrowserUnavailable(PostHarvestError):
    """The Playwright browser could not be launched."""


class StorageError(PostHarvestError):
    """Unexpected SQLite failure (anything other than a duplicate link)."""


class InvalidFilter(PostHarvestError, ValueError):
    """A post filter or update is malformed."""


_lock = threading.Lock()
_counts: Dict[str, int] = {}

@dataclass
class PlaywrightFailure:
    ts: float
    category: str
    signature: str
    message: str
    occurrences: int

def _log_path() -> str | None:
    return os.environ.get("PLAYWRIGHT_FAILURE_LOG") or None

def log_playwright_failure(category: str, exc: Exception | str) -> bool:
    """Record a failure; returns True when a line was written."""
    sig = f"{category}:{type(exc).__name__ if not isinstance(exc, str) else 'str'}"
    with _lock:
        count = _counts.get(sig, 0) + 1
        _counts[sig] = count
        path = _log_path()
        if path is None:
            return False
        # first 3, then every 10th occurrence
        if count > 3 and (count % 10) != 0:
            return False
        rec = PlaywrightFailure(ts=time.time(), category=category, signature=sig, message=str(exc), occurrences=count)
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(rec), ensure_ascii=False) + "\n")
        except OSError:
            return False
        return True

def reset_failure_counts() -> None:
    with _lock:
        _counts.clear()
