"""Telegram Bot API client: the outbound half of the relay.

Only the three calls the delivery channel needs (sendMessage,
editMessageText, sendChatAction). Messages go out as plain text: partial
markdown in a half-streamed reply breaks Telegram's parser.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from streamrelay.config import Settings
from streamrelay.streaming.errors import DeliveryError

logger = logging.getLogger(__name__)

# Telegram Bot API endpoint template
TG_API = "{base}/bot{token}/{method}"

# Edit rejected because the text did not change; the message is already correct
_NOT_MODIFIED = "message is not modified"


class TelegramClient:
    """Thin async wrapper around the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        http: httpx.AsyncClient | None = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, notify: bool = False) -> TelegramClient:
        token = settings.telegram_notify_token if notify else settings.telegram_bot_token
        return cls(token, api_base=settings.telegram_api_base, timeout=settings.telegram_timeout)

    async def create_message(
        self, chat_id: int | str, text: str, parse_mode: str | None = None
    ) -> int:
        """sendMessage; returns the new message id."""
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        result = await self._call("sendMessage", params)
        try:
            return int(result["message_id"])
        except (TypeError, KeyError, ValueError) as e:
            raise DeliveryError(f"sendMessage returned no message_id: {result!r}") from e

    async def edit_message(self, chat_id: int | str, message_id: int, text: str) -> None:
        """editMessageText. An unchanged text is treated as success."""
        try:
            await self._call(
                "editMessageText",
                {"chat_id": chat_id, "message_id": message_id, "text": text},
            )
        except DeliveryError as e:
            if _NOT_MODIFIED in str(e).lower():
                logger.debug("editMessageText: text unchanged for %s/%s", chat_id, message_id)
                return
            raise

    async def send_presence(self, chat_id: int | str, kind: str = "typing") -> None:
        """sendChatAction. Best-effort: failures are logged and ignored."""
        try:
            await self._call("sendChatAction", {"chat_id": chat_id, "action": kind})
        except DeliveryError as e:
            logger.debug("sendChatAction failed for %s: %s", chat_id, e)

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        """Call a Bot API method and return its result, raising DeliveryError."""
        url = TG_API.format(base=self.api_base, token=self.bot_token, method=method)
        try:
            response = await self._http.post(url, json=params)
        except httpx.HTTPError as e:
            raise DeliveryError(f"{method} transport error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise DeliveryError(
                f"{method} HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )
        if not isinstance(data, dict):
            raise DeliveryError(
                f"{method} HTTP {response.status_code}: unexpected response {data!r:.200}",
                status=response.status_code,
            )

        if response.status_code != 200 or not data.get("ok"):
            retry_after = (data.get("parameters") or {}).get("retry_after")
            raise DeliveryError(
                f"{method} failed ({data.get('error_code', response.status_code)}): "
                f"{data.get('description', 'unknown error')}",
                status=data.get("error_code", response.status_code),
                retry_after=float(retry_after) if retry_after is not None else None,
            )
        return data.get("result")

    async def close(self) -> None:
        """Cleanup."""
        if self._owns_http:
            await self._http.aclose()
