"""HTTP API for the relay.

Endpoints:
  GET  /               - Liveness text
  POST /               - Telegram webhook; spawns a streamed turn
  POST /notify         - Forward a service alert to the notify chat
  GET  /notify/status  - Notify forwarder status
  GET  /health         - Health check + running turn count
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from streamrelay.config import Settings
from streamrelay.notify import Notifier
from streamrelay.streaming.dispatcher import TurnDispatcher

logger = logging.getLogger(__name__)


def parse_update(body: dict[str, Any]) -> tuple[int | str, int | str, str, str] | None:
    """Extract (chat_id, user_id, user_name, text) from a Telegram update.

    Returns None when the update carries no message. Raises KeyError when
    the message has no chat.
    """
    message = body.get("message")
    if not message:
        return None
    chat_id = message["chat"]["id"]
    sender = message.get("from") or {}
    user_id = sender.get("id", chat_id)
    user_name = sender.get("username") or sender.get("first_name") or "unknown"
    text = (message.get("text") or "").strip()
    return chat_id, user_id, user_name, text


def create_app(
    dispatcher: TurnDispatcher,
    notifier: Notifier | None,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def index(request: Request) -> PlainTextResponse:
        """GET / - Liveness text."""
        return PlainTextResponse("Telegram Bot Webhook Server is running!")

    async def webhook(request: Request) -> JSONResponse:
        """POST / - Acknowledge the update, stream the reply in the background."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        try:
            update = parse_update(body)
        except (KeyError, TypeError, AttributeError):
            return JSONResponse({"error": "Malformed message"}, status_code=400)
        if update is None:
            return JSONResponse({"error": "No message in request"}, status_code=400)

        chat_id, user_id, user_name, text = update
        if not text:
            logger.debug("Ignoring non-text message in chat %s", chat_id)
            return JSONResponse({"status": "ignored"})

        logger.info("Message from %s in chat %s (%d chars)", user_name, chat_id, len(text))
        try:
            dispatcher.spawn(chat_id, user_id, user_name, text)
        except RuntimeError as e:
            return JSONResponse({"error": str(e)}, status_code=503)
        return JSONResponse({"status": "OK"})

    async def notify(request: Request) -> JSONResponse:
        """POST /notify?service=<name> - Forward an alert to Telegram."""
        if notifier is None:
            return JSONResponse({"error": "Notifications not configured"}, status_code=503)
        service = request.query_params.get("service") or "unknown"
        try:
            raw_body = (await request.body()).decode("utf-8", errors="replace")
            await notifier.forward(service, raw_body)
        except Exception as e:
            logger.error("Notification from %s failed: %s", service, e)
            return JSONResponse({"error": "Failed to process notification"}, status_code=400)
        return JSONResponse({"status": "Notification forwarded to Telegram"})

    async def notify_status(request: Request) -> JSONResponse:
        """GET /notify/status - Forwarder status."""
        logger.debug("Status check from %s", request.headers.get("origin", "no-origin"))
        return JSONResponse(
            {
                "status": "active" if notifier is not None else "disabled",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({"status": "healthy", "active_turns": dispatcher.active})

    routes = [
        Route("/", index, methods=["GET"]),
        Route("/", webhook, methods=["POST"]),
        Route("/notify", notify, methods=["POST"]),
        Route("/notify/status", notify_status, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
    ]

    return Starlette(routes=routes, lifespan=lifespan)
