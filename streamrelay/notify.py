"""Alert forwarder -- relays service notifications to a Telegram chat.

Other services POST a plain-text alert body; it is cleaned up, tagged with
the sending service and sent to the notify chat with the notify bot, as
MarkdownV2 so the header renders bold.
"""

from __future__ import annotations

import logging
import re

from streamrelay.telegram import TelegramClient

logger = logging.getLogger(__name__)

# Characters MarkdownV2 requires to be escaped outside entities
_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(text: str) -> str:
    """Backslash-escape every MarkdownV2 special character."""
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def format_alert(service: str, body: str) -> str:
    """Bold alert header plus the body with blank lines dropped, MarkdownV2-escaped."""
    prefix = f"⚠️ Alert from {service}:"
    clean_body = "\n".join(line for line in body.split("\n") if line.strip())
    return f"*{escape_markdown_v2(prefix)}*\n{escape_markdown_v2(clean_body)}"


class Notifier:
    """Sends formatted alerts to the configured notify chat."""

    def __init__(self, client: TelegramClient, chat_id: int | str) -> None:
        self._client = client
        self.chat_id = chat_id

    async def forward(self, service: str, body: str) -> int:
        """Format and send one alert. Returns the Telegram message id.

        Raises DeliveryError when Telegram rejects the message.
        """
        if not self.chat_id:
            raise ValueError("TELEGRAM_NOTIFY_CHAT_ID is not configured")
        message = format_alert(service, body)
        logger.debug("Forwarding alert from %s (%d chars)", service, len(message))
        return await self._client.create_message(self.chat_id, message, parse_mode="MarkdownV2")

    async def close(self) -> None:
        await self._client.close()
