"""Playwright DOM extraction for a single post page.

Every field has its own extractor returning ``Found(value)`` or ``Absent(reason)``;
extractors never raise, so one broken field never costs the rest of the item.
``extract_item`` waits for the commentary to render, runs the extractors
concurrently and folds their results into an ``ExtractedItem``.

Design notes:
* Selectors are XPath expressions anchored on LinkedIn's component class names.
* Text normalisation (bullets, "Edited", whitespace) is done in Python so it can
  be tested without a browser.
* The description keeps paragraph breaks: commentary blocks are joined by a blank line.
"""
from __future__ import annotations

import asyncio
import re as _re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog

from ..bootstrap import FIELDS_ABSENT_TOTAL, STEP_DURATION
from ..runtime.models import DESCRIPTION_FAILED, NO_DESCRIPTION, ExtractedItem
from ..runtime.result import Absent, Found, Result
from .ids import safe_filename, urn_from_link

logger = structlog.get_logger(__name__)

# ------------------------------------------------------------
# Selectors
# ------------------------------------------------------------
COMMENTARY_SELECTOR = "div.update-components-text.relative.update-components-update-v2__commentary"
PROFILE_IMAGE_XPATH = (
    '//div[contains(@class, "ivm-view-attr__img-wrapper")]//img[contains(@class, "EntityPhoto-circle")]'
)
AUTHOR_NAME_XPATH = (
    '//span[contains(@class, "update-components-actor__title")]//span[contains(@class, "hoverable-link-text")]'
)
AUTHOR_OCCUPATION_XPATH = (
    '//span[contains(@class, "update-components-actor__description")]//span[@aria-hidden="true"]'
)
POST_DATE_XPATH = (
    '//span[contains(@class, "update-components-actor__sub-description")]//span[@aria-hidden="true"]'
)
LIKE_COUNT_XPATH = (
    '//span[contains(@class, "social-details-social-counts__reactions-count") and @aria-hidden="true"]'
)
COMMENT_COUNT_XPATH = '//span[@aria-hidden="true" and contains(normalize-space(.), "comments")]'

_WAIT_BODY_JS = (
    "([sel, min]) => { const el = document.querySelector(sel);"
    " return !!el && !!el.textContent && el.textContent.trim().length > min; }"
)
_READ_COMMENTARY_JS = "els => els.map(e => e.innerText || '')"

_INLINE_WS = _re.compile(r"[ \t]+")
_ANY_WS = _re.compile(r"\s+")
_EDITED = _re.compile(r"\bEdited\b", _re.IGNORECASE)
# "â€¢" is the UTF-8 bullet decoded as cp1252
_BULLETS = ("â€¢", "•")


@dataclass(slots=True)
class ExtractorOptions:
    body_min_chars: int = 10
    capture_screenshots: bool = False
    screenshot_dir: str = "screenshots"

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "ExtractorOptions":
        opts = cls(
            body_min_chars=settings.body_min_chars,
            capture_screenshots=settings.capture_screenshots,
            screenshot_dir=settings.screenshot_dir,
        )
        for k, v in overrides.items():
            if v is not None:
                setattr(opts, k, v)
        return opts


# ------------------------------------------------------------
# Pure text helpers
# ------------------------------------------------------------
def join_commentary(texts: list[str]) -> str:
    """Collapse runs of spaces/tabs per block, drop empty blocks, join with a blank line."""
    parts = [_INLINE_WS.sub(" ", t or "").strip() for t in texts]
    return "\n\n".join(p for p in parts if p)


def repair_author_name(raw: str) -> str:
    """LinkedIn sometimes renders the name twice ("Jane DoeJane Doe"); keep one copy."""
    trimmed = (raw or "").strip()
    n = len(trimmed)
    if n and n % 2 == 0 and trimmed[: n // 2] == trimmed[n // 2:]:
        return trimmed[: n // 2].strip()
    return trimmed


def clean_metadata_text(raw: str) -> str:
    text = raw or ""
    for b in _BULLETS:
        text = text.replace(b, "")
    text = _EDITED.sub("", text)
    return _ANY_WS.sub(" ", text).strip()


def collapse_whitespace(raw: str) -> str:
    return _ANY_WS.sub(" ", raw or "").strip()


# ------------------------------------------------------------
# Field extractors
# ------------------------------------------------------------
async def _first_match(page: Any, xpath: str, attribute: Optional[str] = None) -> Result[str]:
    try:
        loc = page.locator(f"xpath={xpath}")
        if await loc.count() == 0:
            return Absent("not-found")
        first = loc.first
        raw = await (first.get_attribute(attribute) if attribute else first.text_content())
    except Exception as exc:  # extractors report, never raise
        return Absent("error", str(exc))
    if not raw:
        return Absent("not-found")
    return Found(raw)


def _map(result: Result[str], fn) -> Result[str]:
    if result.ok:
        value = fn(result.value)
        return Found(value) if value else Absent("not-found")
    return result


async def extract_description(page: Any) -> Result[str]:
    try:
        texts = await page.eval_on_selector_all(COMMENTARY_SELECTOR, _READ_COMMENTARY_JS)
    except Exception as exc:
        return Absent("error", str(exc))
    text = join_commentary(list(texts or []))
    return Found(text) if text else Absent("not-found")


async def extract_profile_image(page: Any) -> Result[str]:
    return await _first_match(page, PROFILE_IMAGE_XPATH, attribute="src")


async def extract_author_name(page: Any) -> Result[str]:
    return _map(await _first_match(page, AUTHOR_NAME_XPATH), repair_author_name)


async def extract_author_occupation(page: Any) -> Result[str]:
    return _map(await _first_match(page, AUTHOR_OCCUPATION_XPATH), collapse_whitespace)


async def extract_post_date(page: Any) -> Result[str]:
    return _map(await _first_match(page, POST_DATE_XPATH), clean_metadata_text)


async def extract_like_count(page: Any) -> Result[str]:
    return _map(await _first_match(page, LIKE_COUNT_XPATH), collapse_whitespace)


async def extract_comment_count(page: Any) -> Result[str]:
    return _map(await _first_match(page, COMMENT_COUNT_XPATH), collapse_whitespace)


async def capture_screenshot(page: Any, link: str, screenshot_dir: str) -> Result[str]:
    urn = urn_from_link(link) or link
    target = Path(screenshot_dir) / f"{safe_filename(urn)}.png"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        await page.locator(COMMENTARY_SELECTOR).first.screenshot(path=str(target))
    except Exception as exc:
        return Absent("error", str(exc))
    return Found(str(target))


async def _skipped() -> Result[str]:
    return Absent("disabled")


# ------------------------------------------------------------
# Combinator
# ------------------------------------------------------------
def _unwrap(name: str, result: Result[str]) -> Optional[str]:
    if result.ok:
        return result.value
    if result.reason != "disabled":
        FIELDS_ABSENT_TOTAL.labels(name).inc()
        if result.failed:
            logger.debug("field_extraction_failed", field=name, error=result.detail)
    return None


async def extract_item(page: Any, link: str, options: ExtractorOptions | None = None) -> ExtractedItem:
    """Read every field of the post currently loaded in ``page``.

    Blocks (no timeout) until the commentary holds more than ``body_min_chars``
    characters; that wait is the only step allowed to raise.
    """
    opts = options or ExtractorOptions()
    with STEP_DURATION.labels("wait_body").time():
        await page.wait_for_function(_WAIT_BODY_JS, arg=[COMMENTARY_SELECTOR, opts.body_min_chars], timeout=0)

    with STEP_DURATION.labels("extract_fields").time():
        (
            description,
            profile_image,
            author_name,
            author_occupation,
            post_date,
            like_count,
            comment_count,
            screenshot,
        ) = await asyncio.gather(
            extract_description(page),
            extract_profile_image(page),
            extract_author_name(page),
            extract_author_occupation(page),
            extract_post_date(page),
            extract_like_count(page),
            extract_comment_count(page),
            capture_screenshot(page, link, opts.screenshot_dir) if opts.capture_screenshots else _skipped(),
        )

    if description.ok:
        body = description.value
    else:
        FIELDS_ABSENT_TOTAL.labels("description").inc()
        body = DESCRIPTION_FAILED if description.failed else NO_DESCRIPTION

    return ExtractedItem(
        link=link,
        description=body,
        author_name=_unwrap("author_name", author_name),
        author_occupation=_unwrap("author_occupation", author_occupation),
        profile_image=_unwrap("profile_image", profile_image),
        post_date=_unwrap("post_date", post_date),
        like_count=_unwrap("like_count", like_count),
        comment_count=_unwrap("comment_count", comment_count),
        screenshot_path=_unwrap("screenshot", screenshot),
    )
