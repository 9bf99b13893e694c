"""Chat history -- persisted turns per conversation.

Written once per turn after the reply is finalized; read before the next
turn to give the model the recent conversation as context. Methods follow
the session injection pattern: pass a session to join a transaction,
omit it to get a committed one-shot session.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from streamrelay.storage.database import Database
from streamrelay.storage.models import ChatMessage

logger = logging.getLogger(__name__)


class TurnRecord(BaseModel):
    """A stored turn, as returned by fetch_recent_turns()."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    chat_id: str
    user_id: str
    user_name: str
    message_text: str
    ai_response: str | None
    model: str
    timestamp: int

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


class ChatHistory:
    """Conversation history store backed by the messages table."""

    def __init__(self, db: Database, clock=time.time) -> None:
        self.db = db
        self._clock = clock

    async def record_turn(
        self,
        conversation_id: int | str,
        user_id: int | str,
        user_name: str,
        prompt_text: str,
        response_text: str,
        model: str,
        session: AsyncSession | None = None,
    ) -> TurnRecord:
        """Store a completed turn."""
        if session is None:
            async with self.db.session() as session:
                record = await self._record(
                    conversation_id, user_id, user_name, prompt_text, response_text, model, session
                )
                await session.commit()
                return record
        return await self._record(
            conversation_id, user_id, user_name, prompt_text, response_text, model, session
        )

    async def _record(
        self,
        conversation_id: int | str,
        user_id: int | str,
        user_name: str,
        prompt_text: str,
        response_text: str,
        model: str,
        session: AsyncSession,
    ) -> TurnRecord:
        row = ChatMessage(
            chat_id=str(conversation_id),
            user_id=str(user_id),
            user_name=user_name,
            message_text=prompt_text,
            ai_response=response_text,
            model=model,
            timestamp=int(self._clock()),
        )
        session.add(row)
        await session.flush()
        logger.debug("Recorded turn %d for chat %s", row.id, row.chat_id)
        return TurnRecord.model_validate(row)

    async def fetch_recent_turns(
        self,
        conversation_id: int | str,
        limit: int = 3,
        session: AsyncSession | None = None,
    ) -> list[TurnRecord]:
        """Most recent turns of a conversation, newest first."""
        if session is None:
            async with self.db.session() as session:
                return await self._fetch_recent(conversation_id, limit, session)
        return await self._fetch_recent(conversation_id, limit, session)

    async def _fetch_recent(
        self, conversation_id: int | str, limit: int, session: AsyncSession
    ) -> list[TurnRecord]:
        if limit <= 0:
            return []
        result = await session.execute(
            select(ChatMessage)
            .where(ChatMessage.chat_id == str(conversation_id))
            .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        return [TurnRecord.model_validate(row) for row in result.scalars()]
