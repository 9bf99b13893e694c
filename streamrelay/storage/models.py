"""SQLAlchemy ORM models for the chat history store."""

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Single declarative base."""

    pass


class ChatMessage(Base):
    """One completed turn: the user's prompt and the relayed reply."""

    __tablename__ = "messages"
    __table_args__ = (Index("idx_chat_timestamp", "chat_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    ai_response: Mapped[str | None] = mapped_column(Text)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch seconds
