import pytest

from postharvest.bootstrap import Settings, bootstrap
from postharvest.core.storage import PostStore
from fakes import LI_AT


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.delenv("PLAYWRIGHT_FAILURE_LOG", raising=False)
    return Settings(
        DATA_DIR=str(tmp_path / "data"),
        SCREENSHOT_DIR=str(tmp_path / "screenshots"),
        SCROLL_SETTLE_MS=0,
        LOGIN_POLL_INTERVAL_MS=10,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def ctx(settings):
    c = bootstrap(settings)
    yield c
    c.close()


@pytest.fixture
def authed_ctx(ctx):
    ctx.credentials.save({"cookies": [LI_AT], "origins": []})
    return ctx


@pytest.fixture
def store(tmp_path):
    s = PostStore.open(tmp_path / "posts.db")
    yield s
    s.close()
