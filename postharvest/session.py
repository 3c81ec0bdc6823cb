from __future__ import annotations

import contextlib
import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from domain.models import SessionCredential
from .bootstrap import AppContext
from .browser import open_browser
from .detector import LoginDetector

logger = structlog.get_logger(__name__)


class CredentialStore:
    """Single-slot JSON file holding the captured session.

    Writes go to ``<stem>.tmp.json`` first and are moved into place with
    ``os.replace`` so a crash never leaves a half-written credential.
    """

    def __init__(self, path: str | Path, *, cookie_name: str = "li_at", max_age_days: int = 30):
        self.path = Path(path)
        self.cookie_name = cookie_name
        self.max_age_days = max_age_days

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(f"{self.path.stem}.tmp.json")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[SessionCredential]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return SessionCredential.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("auth_file_unreadable", path=str(self.path), error=str(exc))
            return None

    def is_valid(self, cred: Optional[SessionCredential]) -> bool:
        if cred is None:
            return False
        return cred.is_valid(cookie_name=self.cookie_name, max_age_days=self.max_age_days)

    def load_valid(self) -> Optional[SessionCredential]:
        cred = self.load()
        return cred if self.is_valid(cred) else None

    def save(self, storage_state: dict[str, Any]) -> SessionCredential:
        now = int(time.time() * 1000)
        cred = SessionCredential(
            cookies=storage_state.get("cookies") or [],
            origins=storage_state.get("origins") or [],
            timestamp=now,
            last_validated=now,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.tmp_path
        try:
            tmp.write_text(json.dumps(cred.to_storage_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise
        logger.info("auth_saved", path=str(self.path), cookies_count=len(cred.cookies))
        return cred

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("auth_cleared", path=str(self.path))
        return True


@dataclass
class AuthResult:
    success: bool
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SessionStatus:
    has_auth: bool
    valid: bool
    details: dict[str, Any] = field(default_factory=dict)


def _iso_ms(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def auth_status(ctx: AppContext) -> SessionStatus:
    cred = ctx.credentials.load()
    if cred is None:
        return SessionStatus(has_auth=False, valid=False, details={"auth_file": str(ctx.credentials.path)})
    valid = ctx.credentials.is_valid(cred)
    details = {
        "auth_file": str(ctx.credentials.path),
        "created_at": _iso_ms(cred.timestamp),
        "last_validated": _iso_ms(cred.last_validated),
        "age": cred.age_label(),
        "cookies_count": len(cred.cookies),
        "has_auth_cookie": cred.auth_cookie(ctx.credentials.cookie_name) is not None,
    }
    return SessionStatus(has_auth=True, valid=valid, details=details)


def clear_auth(ctx: AppContext) -> bool:
    return ctx.credentials.clear()


async def authenticate(ctx: AppContext, force: bool = False, *, browser_factory: Callable = open_browser) -> AuthResult:
    """Interactive login: open a headed browser and wait for the user to close it.

    The login detector saves the session as soon as it notices the feed or the auth
    cookie; closing the window ends the wait.
    """
    log = ctx.logger.bind(component="auth")
    if not force and ctx.credentials.load_valid() is not None:
        log.info("auth_existing_valid")
        return AuthResult(success=True, reason="existing-credentials-valid")
    if force:
        ctx.credentials.clear()

    settings = ctx.settings
    detected: list[str] = []

    async def _on_detected(reason: str) -> None:
        detected.append(reason)
        log.info("auth_successful", reason=reason)

    try:
        async with browser_factory(settings, headless=False) as context:
            page = await context.new_page()
            page.set_default_navigation_timeout(0)
            page.set_default_timeout(0)
            await page.goto(settings.login_url, wait_until="domcontentloaded")
            log.info("auth_waiting_for_login", login_url=settings.login_url)
            detector = LoginDetector(
                page,
                context,
                ctx.credentials,
                _on_detected,
                poll_interval=settings.login_poll_interval,
                cookie_name=settings.auth_cookie_name,
                cookie_url=settings.auth_cookie_url,
                feed_pattern=settings.feed_url_pattern,
                logger=log.bind(component="login_detector"),
            )
            await detector.attach()
            try:
                if not page.is_closed():
                    await page.wait_for_event("close", timeout=0)
            finally:
                detector.teardown()
                # a claim still capturing or writing must land before the context closes
                await detector.settle()
    except Exception as exc:
        log.error("auth_failed", error=str(exc))
        return AuthResult(success=False, error=str(exc) or type(exc).__name__)
    if not detected:
        log.warning("auth_not_detected")
        return AuthResult(success=False)
    return AuthResult(success=True, reason=detected[0])
