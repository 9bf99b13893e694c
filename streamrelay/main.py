"""streamrelay entry point.

Initializes all components and starts the webhook server:
  Settings -> Database -> ChatHistory -> TelegramClient -> ModelClient
  -> TurnOrchestrator -> TurnDispatcher -> App -> Uvicorn

Uses Starlette lifespan so every component lives on the same event loop
as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from streamrelay.config import Settings
from streamrelay.model import ModelClient
from streamrelay.notify import Notifier
from streamrelay.storage.database import Database
from streamrelay.storage.history import ChatHistory
from streamrelay.streaming import FlushPolicy, TurnDispatcher, TurnOrchestrator
from streamrelay.telegram import TelegramClient

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.
    """
    database = Database(settings)
    await database.connect()
    history = ChatHistory(database)

    telegram = TelegramClient.from_settings(settings)
    model = ModelClient(settings)
    await model.start()

    orchestrator = TurnOrchestrator(
        telegram,
        model,
        history,
        settings,
        policy=FlushPolicy.from_settings(settings),
    )
    dispatcher = TurnDispatcher(orchestrator, grace_seconds=settings.shutdown_grace_seconds)

    notifier = None
    if settings.telegram_notify_token and settings.telegram_notify_chat_id:
        notifier = Notifier(
            TelegramClient.from_settings(settings, notify=True),
            settings.telegram_notify_chat_id,
        )

    return {
        "database": database,
        "history": history,
        "telegram": telegram,
        "model": model,
        "orchestrator": orchestrator,
        "dispatcher": dispatcher,
        "notifier": notifier,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down streamrelay...")

    # Running turns still need the clients and the database
    dispatcher = components.get("dispatcher")
    if dispatcher:
        await dispatcher.shutdown()

    notifier = components.get("notifier")
    if notifier:
        await notifier.close()

    model = components.get("model")
    if model:
        await model.close()

    telegram = components.get("telegram")
    if telegram:
        await telegram.close()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("streamrelay shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components are created in its lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info(
            "streamrelay started: model=%s, debounce=%dms, length_every=%d",
            settings.model,
            settings.flush_debounce_ms,
            settings.flush_length_every,
        )
        yield
        await shutdown_components(components)

    from streamrelay.api.rest import create_app

    notify_enabled = bool(settings.telegram_notify_token and settings.telegram_notify_chat_id)
    return create_app(
        dispatcher=_lazy_component(components, "dispatcher"),
        notifier=_lazy_component(components, "notifier") if notify_enabled else None,
        settings=settings,
        lifespan=lifespan,
    )


class _LazyProxy:
    """Proxy that defers attribute access to a dict-backed component.

    Lets create_app() receive component references before the lifespan
    has initialized them.
    """

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized -- lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)


def _lazy_component(components: dict, key: str):
    """Create a lazy proxy for a component that will be initialized in lifespan."""
    return _LazyProxy(components, key)


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting streamrelay on %s:%d", settings.host, settings.port)
    logger.info("Model: %s", settings.model)
    logger.info("History store: %s", settings.db_url.split("@")[-1])

    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set -- replies cannot be delivered")
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set -- every turn will fail upstream")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
