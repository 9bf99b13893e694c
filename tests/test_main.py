"""Smoke tests for component wiring and the app lifespan."""

import pytest
from httpx import ASGITransport, AsyncClient

from streamrelay.config import Settings
from streamrelay.main import _LazyProxy, build_app, create_components, shutdown_components
from streamrelay.notify import Notifier
from streamrelay.streaming import TurnDispatcher


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        _env_file=None,
        TELEGRAM_BOT_TOKEN="test-token",
        ANTHROPIC_API_KEY="test-key",
        DB_URL=f"sqlite+aiosqlite:///{tmp_path / 'app.sqlite'}",
    )


@pytest.mark.asyncio
async def test_create_and_shutdown_components(app_settings):
    components = await create_components(app_settings)
    try:
        assert isinstance(components["dispatcher"], TurnDispatcher)
        assert components["notifier"] is None
    finally:
        await shutdown_components(components)


@pytest.mark.asyncio
async def test_notifier_created_when_configured(tmp_path):
    settings = Settings(
        _env_file=None,
        TELEGRAM_NOTIFY_TOKEN="notify",
        TELEGRAM_NOTIFY_CHAT_ID="-100",
        DB_URL=f"sqlite+aiosqlite:///{tmp_path / 'n.sqlite'}",
    )
    components = await create_components(settings)
    try:
        assert isinstance(components["notifier"], Notifier)
        assert components["notifier"].chat_id == "-100"
    finally:
        await shutdown_components(components)


@pytest.mark.asyncio
async def test_lifespan_serves_health(app_settings):
    app = build_app(app_settings)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/health")
    assert resp.json() == {"status": "healthy", "active_turns": 0}


def test_lazy_proxy_before_lifespan():
    proxy = _LazyProxy({}, "dispatcher")
    with pytest.raises(RuntimeError, match="not yet initialized"):
        proxy.spawn
