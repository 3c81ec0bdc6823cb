import asyncio
import json
import time

import pytest

from domain.models import SessionCredential
from postharvest.session import CredentialStore, auth_status, authenticate, clear_auth
from fakes import LI_AT, FakeBrowserFactory, FakeContext, FakePage

DAY_MS = 24 * 60 * 60 * 1000


def test_save_writes_atomically(tmp_path):
    store = CredentialStore(tmp_path / "auth.json")
    cred = store.save({"cookies": [LI_AT], "origins": [{"origin": "https://www.linkedin.com"}]})
    data = json.loads((tmp_path / "auth.json").read_text(encoding="utf-8"))
    assert data["cookies"] == [LI_AT]
    assert data["timestamp"] == cred.timestamp
    assert data["lastValidated"] == cred.timestamp
    assert not (tmp_path / "auth.tmp.json").exists()
    assert store.load_valid() is not None


def test_failed_write_removes_tmp(tmp_path, monkeypatch):
    store = CredentialStore(tmp_path / "auth.json")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("postharvest.session.os.replace", broken_replace)
    with pytest.raises(OSError):
        store.save({"cookies": [LI_AT], "origins": []})
    assert not (tmp_path / "auth.tmp.json").exists()
    assert not (tmp_path / "auth.json").exists()


def test_validity_rules():
    now = int(time.time() * 1000)
    good = SessionCredential(cookies=[LI_AT], timestamp=now - DAY_MS)
    assert good.is_valid()
    assert not SessionCredential(cookies=[], timestamp=now).is_valid()
    wrong_domain = dict(LI_AT, domain=".example.com")
    assert not SessionCredential(cookies=[wrong_domain], timestamp=now).is_valid()
    expired = SessionCredential(cookies=[LI_AT], timestamp=now - 31 * DAY_MS)
    assert not expired.is_valid()
    assert expired.is_valid(max_age_days=60)


def test_age_label():
    now = int(time.time() * 1000)
    assert SessionCredential(timestamp=now - 1000).age_label(now) == "Less than 1 day"
    assert SessionCredential(timestamp=now - DAY_MS).age_label(now) == "1 day"
    assert SessionCredential(timestamp=now - 5 * DAY_MS - 10).age_label(now) == "5 days"


def test_corrupt_file_loads_as_none(tmp_path):
    (tmp_path / "auth.json").write_text("{not json", encoding="utf-8")
    assert CredentialStore(tmp_path / "auth.json").load() is None


def test_status_and_clear(ctx):
    assert auth_status(ctx).has_auth is False
    ctx.credentials.save({"cookies": [LI_AT], "origins": []})
    st = auth_status(ctx)
    assert st.has_auth and st.valid
    assert st.details["age"] == "Less than 1 day"
    assert st.details["has_auth_cookie"] is True
    assert clear_auth(ctx) is True
    assert clear_auth(ctx) is False
    assert not ctx.has_valid_session()


@pytest.mark.asyncio
async def test_authenticate_skips_browser_when_valid(authed_ctx):
    factory = FakeBrowserFactory(FakeContext())
    res = await authenticate(authed_ctx, browser_factory=factory)
    assert res.success and res.reason == "existing-credentials-valid"
    assert factory.launches == []


def _user_logs_in(cookie=True):
    async def user(page: FakePage, context: FakeContext):
        await asyncio.sleep(0.01)
        if cookie:
            context.set_cookies([LI_AT])
        await asyncio.gather(*page.navigate("https://www.linkedin.com/feed/"))
        await asyncio.sleep(0.01)
        await page.close()

    return user


def _factory_with_user(user, **context_kw):
    holder = {}

    def on_new_page(page):
        holder["task"] = asyncio.ensure_future(user(page, holder["context"]))

    context = FakeContext(on_new_page=on_new_page, **context_kw)
    holder["context"] = context
    return FakeBrowserFactory(context)


@pytest.mark.asyncio
async def test_authenticate_flow_saves_credential(authed_ctx):
    factory = _factory_with_user(_user_logs_in())
    res = await authenticate(authed_ctx, force=True, browser_factory=factory)
    assert res.success
    assert res.reason == "navigated-to-feed"
    assert factory.launches[0]["headless"] is False
    assert factory.context.pages[0].visited == [authed_ctx.settings.login_url]
    assert authed_ctx.credentials.load_valid() is not None


@pytest.mark.asyncio
async def test_authenticate_window_closed_without_login(ctx):
    async def user(page, context):
        await asyncio.sleep(0.01)
        await page.close()

    factory = _factory_with_user(user)
    res = await authenticate(ctx, browser_factory=factory)
    assert res.success is False
    assert res.error is None
    assert ctx.credentials.load() is None


@pytest.mark.asyncio
async def test_force_clears_previous_credential(authed_ctx):
    async def user(page, context):
        await page.close()

    factory = _factory_with_user(user)
    res = await authenticate(authed_ctx, force=True, browser_factory=factory)
    assert res.success is False
    assert authed_ctx.credentials.load() is None


@pytest.mark.asyncio
async def test_authenticate_reports_errors(ctx):
    class Broken:
        def __call__(self, settings, **kw):
            raise RuntimeError("no display")

    res = await authenticate(ctx, browser_factory=Broken())
    assert res.success is False
    assert "no display" in res.error


@pytest.mark.asyncio
async def test_window_closed_while_session_is_captured(ctx):
    async def user(page, context):
        context.set_cookies([LI_AT])
        await asyncio.sleep(0.03)  # the poll has started a slow capture
        await page.close()

    factory = _factory_with_user(user, storage_delay=0.05)
    res = await authenticate(ctx, browser_factory=factory)
    assert res.success
    assert res.reason == "li_at-cookie-detected"
    assert factory.context.storage_calls == 1
    cred = ctx.credentials.load_valid()
    assert cred is not None
    assert cred.auth_cookie("li_at")["value"] == "secret"
