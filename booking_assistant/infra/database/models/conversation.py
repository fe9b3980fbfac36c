"""BookingConversation, ConversationMessage and MessageEvent ORM models."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Identity, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_assistant.infra.database.models.base import Base, TimestampMixin, _uuid_pk


class BookingConversation(Base, TimestampMixin):
    """One booking conversation; ``data`` holds the serialised BookingSession."""

    __tablename__ = "booking_conversations"
    __table_args__ = (
        Index("ix_booking_conversations_state", "state"),
        Index("ix_booking_conversations_user_id", "user_id"),
        Index("ix_booking_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    """The session id the client sends with every turn."""

    state: Mapped[str] = mapped_column(String(32), nullable=False, server_default="INIT")
    mode: Mapped[str] = mapped_column(String(16), nullable=False, server_default="GENERAL")
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    """Incremented on every applied turn. Writes are last-write-wins."""

    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    """Dollars spent on the language model over the whole conversation."""

    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    messages: Mapped[List["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConversationMessage.seq",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"BookingConversation(id={self.id!r}, state={self.state!r}, v={self.version})"


class ConversationMessage(Base):
    """A single user or assistant message."""

    __tablename__ = "booking_messages"
    __table_args__ = (
        Index("ix_booking_messages_conversation_id", "conversation_id"),
        Index("ix_booking_messages_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False, unique=True)
    """Insertion order. Both messages of a turn share one transaction timestamp."""

    conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("booking_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    """Message author: user | assistant."""

    content: Mapped[str] = mapped_column(Text, nullable=False, server_default="")

    # --- assistant-only fields (NULL for user messages) ---
    next_state: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    action: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    fallback_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extra_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.clock_timestamp(),
    )

    conversation: Mapped["BookingConversation"] = relationship(
        "BookingConversation", back_populates="messages",
    )
    events: Mapped[List["MessageEvent"]] = relationship(
        "MessageEvent",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MessageEvent.created_at",
        lazy="raise",
    )

    def __repr__(self) -> str:
        preview = (self.content or "")[:40]
        return f"ConversationMessage(id={self.id!r}, role={self.role!r}, content={preview!r})"


class MessageEvent(Base):
    """Audit entry for a message: security flags, tool calls, validation errors."""

    __tablename__ = "booking_message_events"
    __table_args__ = (
        Index("ix_booking_message_events_message_id", "message_id"),
        Index("ix_booking_message_events_event_type", "event_type"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("booking_messages.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    """security_flag, tool_call, tool_skipped, validation_error, extraction_error,
    relaxation, stale_write, ..."""

    data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    message: Mapped["ConversationMessage"] = relationship("ConversationMessage", back_populates="events")

    def __repr__(self) -> str:
        return f"MessageEvent(id={self.id!r}, type={self.event_type!r})"
