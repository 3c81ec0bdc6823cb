"""Identifier, permalink and search URL helpers."""
from __future__ import annotations
import re
from urllib.parse import quote

_URN_PAT = re.compile(r"urn:li:[A-Za-z]+:[A-Za-z0-9_-]+")

SEARCH_BASE_URL = "https://www.linkedin.com/search/results/content/"
POST_BASE_URL = "https://www.linkedin.com/feed/update/"


def build_search_url(keywords: str) -> str:
    """Content search URL restricted to the past month and sorted by relevance."""
    return (
        f"{SEARCH_BASE_URL}?datePosted=%22past-month%22"
        f"&keywords={quote(keywords, safe='')}"
        "&origin=FACETED_SEARCH&sortBy=%22relevance%22"
    )


def post_link(urn: str) -> str:
    return f"{POST_BASE_URL}{urn}/"


def urn_from_link(link: str) -> str | None:
    m = _URN_PAT.search(link or "")
    return m.group(0) if m else None


def safe_filename(urn: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", urn).strip("_") or "post"
