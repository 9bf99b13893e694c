"""Turn orchestrator -- drives one prompt-in, streamed-reply-out cycle.

Steps:
1. Load recent turns of the conversation -> system prompt
2. Stream deltas from the model into a StreamBuffer
3. After each delta, ask the FlushPolicy; on a positive decision hand the
   cumulative flushed text to the DeliveryChannel
4. Finalize the message with the completion marker
5. Record the turn in the chat history

Everything inside a turn is sequential: a delivery call is awaited before
the next decision is evaluated, so edits can never land out of order.
Failures are absorbed here; run_turn never raises except on cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from streamrelay.config import Settings
from streamrelay.streaming.buffer import StreamBuffer
from streamrelay.streaming.channel import DeliveryChannel, MessagingAPI
from streamrelay.streaming.errors import DeliveryError, FinalizationError
from streamrelay.streaming.policy import FlushPolicy

logger = logging.getLogger(__name__)

ERROR_NOTICE = "❌ Sorry, something went wrong while answering. Please try again."
INTERRUPTED_NOTICE = "⚠️ Response interrupted: {reason}"

# Longest upstream error text shown in the chat
_MAX_REASON_CHARS = 200


@dataclass(frozen=True)
class ConversationTurn:
    """One request/response cycle. Immutable once created."""

    conversation_id: int | str
    user_id: int | str
    user_name: str
    prompt: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class TurnResult:
    """What happened during a turn, for the caller and for tests."""

    response_text: str = ""
    message_id: int | None = None
    flushes: int = 0
    upstream_error: str | None = None
    finalization_failed: bool = False
    aborted: bool = False


def annotate_interrupted(text: str, reason: str) -> str:
    """Append the visible interruption notice to a partial reply."""
    notice = INTERRUPTED_NOTICE.format(reason=reason[:_MAX_REASON_CHARS])
    return f"{text}\n\n{notice}" if text else notice


def build_system_prompt(base: str, turns: list[Any]) -> str:
    """Base prompt plus recent turns (given newest first, rendered oldest first)."""
    if not turns:
        return base
    lines = [base, "", "Recent conversation (oldest first):"]
    for turn in reversed(turns):
        lines.append(f"{turn.user_name}: {turn.message_text}")
        if turn.ai_response:
            lines.append(f"Assistant: {turn.ai_response}")
    return "\n".join(lines)


class TurnOrchestrator:
    """Runs turns against the model, the chat and the history store.

    Holds only collaborators and configuration; all per-turn state lives in
    the StreamBuffer and DeliveryChannel created inside run_turn().
    """

    def __init__(
        self,
        messaging: MessagingAPI,
        model: Any,
        history: Any,
        settings: Settings,
        *,
        policy: FlushPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._messaging = messaging
        self._model = model
        self._history = history
        self._settings = settings
        self._policy = policy or FlushPolicy.from_settings(settings)
        self._clock = clock

    async def run_turn(
        self,
        conversation_id: int | str,
        user_id: int | str,
        user_name: str,
        prompt_text: str,
    ) -> TurnResult:
        """Relay one streamed reply to the conversation and record it."""
        turn = ConversationTurn(conversation_id, user_id, user_name, prompt_text)
        buffer = StreamBuffer()
        channel = DeliveryChannel(
            self._messaging,
            conversation_id,
            max_length=self._settings.message_max_length,
            completion_marker=self._settings.completion_marker,
            clock=self._clock,
        )
        result = TurnResult()

        try:
            return await self._drive(turn, buffer, channel, result)
        except asyncio.CancelledError:
            logger.warning("Turn for chat %s cancelled, saving partial reply", conversation_id)
            await self._persist(turn, buffer.full_text())
            raise
        except Exception:
            # InvariantError or an unexpected defect: this turn only
            logger.exception("Turn for chat %s aborted", conversation_id)
            await self._send_error_notice(turn)
            result.aborted = True
            result.response_text = buffer.full_text()
            result.message_id = channel.message_id
            return result

    async def _drive(
        self,
        turn: ConversationTurn,
        buffer: StreamBuffer,
        channel: DeliveryChannel,
        result: TurnResult,
    ) -> TurnResult:
        history = await self._load_history(turn)
        system_prompt = build_system_prompt(self._settings.system_prompt, history)
        await self._messaging.send_presence(turn.conversation_id, "typing")

        started = self._clock()
        last_flush: float | None = None
        upstream_error: Exception | None = None

        stream: AsyncIterator[str] = aiter(self._model.stream_text(system_prompt, turn.prompt))
        try:
            while True:
                try:
                    delta = await anext(stream)
                except StopAsyncIteration:
                    break
                except Exception as e:
                    upstream_error = e
                    logger.warning("Model stream for chat %s failed: %s", turn.conversation_id, e)
                    break

                buffer.append(delta)
                last_flush = await self._flush_ready(buffer, channel, result, started, last_flush)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        final_text = buffer.full_text()
        if upstream_error is not None:
            reason = str(upstream_error) or type(upstream_error).__name__
            result.upstream_error = reason
            final_text = annotate_interrupted(final_text, reason)

        try:
            await channel.finalize(final_text)
        except FinalizationError as e:
            logger.error("Finalizing reply for chat %s failed: %s", turn.conversation_id, e)
            result.finalization_failed = True
            await self._send_error_notice(turn)

        result.response_text = final_text
        result.message_id = channel.message_id
        logger.info(
            "Turn for chat %s done: %d chars, %d flushes%s",
            turn.conversation_id,
            len(buffer),
            result.flushes,
            " (interrupted)" if upstream_error is not None else "",
        )
        await self._persist(turn, final_text)
        return result

    async def _flush_ready(
        self,
        buffer: StreamBuffer,
        channel: DeliveryChannel,
        result: TurnResult,
        started: float,
        last_flush: float | None,
    ) -> float | None:
        """Deliver as long as the policy says so. Returns the last flush time.

        Re-evaluating after each flush lets one large delta go out in
        several length-bounded steps when the debounce floor allows it.
        Only runs when a delta arrives: text pending during a model stall
        waits for the next delta or for finalize.
        """
        while True:
            since = self._clock() - (started if last_flush is None else last_flush)
            decision = self._policy.should_flush(
                buffer.pending_suffix(),
                since * 1000,
                flushed_length=buffer.flushed_length,
                initial=last_flush is None,
            )
            if not decision.flush:
                return last_flush

            buffer.consume_pending(decision.offset)
            logger.debug(
                "Flush (%s) for chat %s at %d chars", decision.reason, channel.chat_id, buffer.flushed_length
            )
            await channel.deliver(buffer.flushed_text())
            result.flushes += 1
            last_flush = self._clock()

    async def _load_history(self, turn: ConversationTurn) -> list[Any]:
        try:
            return await self._history.fetch_recent_turns(
                turn.conversation_id, self._settings.history_limit
            )
        except Exception as e:
            logger.warning("Loading history for chat %s failed, continuing without: %s", turn.conversation_id, e)
            return []

    async def _persist(self, turn: ConversationTurn, response_text: str) -> None:
        try:
            await self._history.record_turn(
                turn.conversation_id,
                turn.user_id,
                turn.user_name,
                turn.prompt,
                response_text,
                self._model.model,
            )
        except Exception:
            logger.exception("Recording turn for chat %s failed", turn.conversation_id)

    async def _send_error_notice(self, turn: ConversationTurn) -> None:
        """Last-resort human-readable error in the chat."""
        try:
            await self._messaging.create_message(turn.conversation_id, ERROR_NOTICE)
        except DeliveryError as e:
            logger.warning("Could not send error notice to chat %s: %s", turn.conversation_id, e)
