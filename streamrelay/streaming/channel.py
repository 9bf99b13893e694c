"""Delivery channel: one outbound Telegram message per turn.

State machine:

    EMPTY ──create──▶ SENT ──edit──▶ SENT
      │                 │
      └─────finalize────┴──▶ FINALIZING ──▶ DONE

Every call carries the full cumulative text of the message, since Telegram
can only replace a message, not append to it. A failed edit falls back to
sending the latest text as a new message and editing that one from then on.

A 429 opens a flood window (Telegram's retry_after): flushes inside it are
skipped without an API call, and finalize waits out what is left of it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

from streamrelay.streaming.errors import DeliveryError, FinalizationError, InvariantError

logger = logging.getLogger(__name__)

# Back-off when a 429 carries no retry_after
_DEFAULT_RETRY_AFTER = 1.0

# Longest finalize will wait for a flood window to close
_MAX_FINAL_WAIT = 5.0


@runtime_checkable
class MessagingAPI(Protocol):
    """Outbound chat operations the channel drives (TelegramClient in production)."""

    async def create_message(self, chat_id: int | str, text: str) -> int: ...

    async def edit_message(self, chat_id: int | str, message_id: int, text: str) -> None: ...

    async def send_presence(self, chat_id: int | str, kind: str = "typing") -> None: ...


class DeliveryState(str, Enum):
    EMPTY = "empty"
    SENT = "sent"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class DeliveryHandle:
    """Outbound message identity for one turn."""

    message_id: int | None = None
    last_delivered: str = ""
    state: DeliveryState = DeliveryState.EMPTY
    # Transcript offset where the current message starts (> 0 after overflow)
    segment_start: int = 0
    # Messages abandoned by edit fallback or closed on overflow
    previous_ids: list[int] = field(default_factory=list)
    # Clock time before which Telegram's flood control rejects calls
    not_before: float = 0.0


def append_marker(text: str, marker: str) -> str:
    """Append the completion marker exactly once."""
    if not marker:
        return text
    body = text.rstrip()
    return f"{body} {marker}" if body else marker


class DeliveryChannel:
    """Create-then-edit lifecycle of the reply message for a single turn."""

    def __init__(
        self,
        api: MessagingAPI,
        chat_id: int | str,
        *,
        max_length: int = 4096,
        completion_marker: str = "✅",
        presence_kind: str = "typing",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_final_wait: float = _MAX_FINAL_WAIT,
    ):
        if max_length <= 0:
            raise ValueError("max_length must be > 0")
        self._api = api
        self.chat_id = chat_id
        self._max_length = max_length
        self._marker = completion_marker
        self._presence_kind = presence_kind
        self._clock = clock
        self._sleep = sleep
        self._max_final_wait = max_final_wait
        self.handle = DeliveryHandle()

    @property
    def state(self) -> DeliveryState:
        return self.handle.state

    @property
    def message_id(self) -> int | None:
        return self.handle.message_id

    async def deliver(self, text: str) -> bool:
        """Push the cumulative text. Returns False if the flush did not land.

        Failures are logged, never raised: the next flush carries the same
        text again.
        """
        self._require_open("deliver")
        if text == self.handle.last_delivered:
            return True
        if self._flood_wait() > 0:
            logger.debug("Chat %s in flood window, holding flush", self.chat_id)
            return False

        error = await self._push(text)
        await self._api.send_presence(self.chat_id, self._presence_kind)
        if error is not None:
            logger.warning("Delivery to chat %s failed, retrying on next flush: %s", self.chat_id, error)
            return False
        return True

    async def finalize(self, final_text: str) -> str:
        """Send the final text with the completion marker and close the channel.

        Returns the text that was delivered. Raises FinalizationError when
        neither the final edit nor its fallback went through; the channel is
        DONE either way.
        """
        self._require_open("finalize")
        self.handle.state = DeliveryState.FINALIZING
        text = append_marker(final_text, self._marker)
        try:
            wait = min(self._flood_wait(), self._max_final_wait)
            if wait > 0:
                logger.info("Chat %s: waiting %.1fs for flood control before final edit", self.chat_id, wait)
                await self._sleep(wait)
            error = await self._push(text)
        finally:
            self.handle.state = DeliveryState.DONE
        if error is not None:
            raise FinalizationError(f"final delivery to chat {self.chat_id} failed: {error}") from error
        return text

    def _require_open(self, operation: str) -> None:
        if self.handle.state in (DeliveryState.FINALIZING, DeliveryState.DONE):
            raise InvariantError(f"{operation}() called on a {self.handle.state.value} delivery channel")

    def _flood_wait(self) -> float:
        """Seconds left in the current flood window (0 when none is open)."""
        return max(0.0, self.handle.not_before - self._clock())

    async def _push(self, text: str) -> DeliveryError | None:
        """Bring the chat in line with text. Returns the failure, if any."""
        error = await self._push_segments(text)
        if error is not None and error.rate_limited:
            retry_after = error.retry_after if error.retry_after is not None else _DEFAULT_RETRY_AFTER
            self.handle.not_before = self._clock() + retry_after
            logger.warning("Chat %s rate limited, pausing deliveries for %.1fs", self.chat_id, retry_after)
        return error

    async def _push_segments(self, text: str) -> DeliveryError | None:
        handle = self.handle
        segment = text[handle.segment_start :]

        # Close messages that reached Telegram's limit; the rest continues in a new one
        while len(segment) > self._max_length:
            head = segment[: self._max_length]
            error = await self._write(head)
            if error is not None:
                return error
            if handle.message_id is not None:
                handle.previous_ids.append(handle.message_id)
            handle.message_id = None
            handle.segment_start += self._max_length
            segment = segment[self._max_length :]
            logger.debug("Chat %s: message full, continuing in a new one", self.chat_id)

        error = await self._write(segment)
        if error is None:
            handle.last_delivered = text
        return error

    async def _write(self, segment: str) -> DeliveryError | None:
        if self.handle.message_id is None:
            if not segment.strip():
                # Telegram rejects blank messages; wait for visible text
                return None
            return await self._create(segment)
        return await self._edit_or_replace(segment)

    async def _create(self, segment: str) -> DeliveryError | None:
        try:
            message_id = await self._api.create_message(self.chat_id, segment)
        except DeliveryError as e:
            return e
        self.handle.message_id = message_id
        if self.handle.state == DeliveryState.EMPTY:
            self.handle.state = DeliveryState.SENT
        return None

    async def _edit_or_replace(self, segment: str) -> DeliveryError | None:
        old_id = self.handle.message_id
        try:
            await self._api.edit_message(self.chat_id, old_id, segment)
            return None
        except DeliveryError as e:
            if e.rate_limited:
                # A new message would hit the same flood limit
                return e
            logger.warning(
                "Edit of message %s in chat %s failed (%s), sending a new message",
                old_id,
                self.chat_id,
                e,
            )

        error = await self._create(segment)
        if error is None:
            self.handle.previous_ids.append(old_id)
            logger.info("Chat %s: replaced message %s with %s", self.chat_id, old_id, self.handle.message_id)
        return error
