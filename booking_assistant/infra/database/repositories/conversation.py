"""Repositories for BookingConversation, ConversationMessage and MessageEvent."""
from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select

from booking_assistant.booking.types import BookingSession
from booking_assistant.infra.database.models.conversation import (
    BookingConversation,
    ConversationMessage,
    MessageEvent,
)
from booking_assistant.infra.database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class BookingConversationRepository(BaseRepository[BookingConversation]):
    model: ClassVar[type] = BookingConversation

    async def load_session(self, session_id: str) -> Optional[BookingSession]:
        row = await self.get_by_id(session_id)
        if row is None:
            return None
        return BookingSession.from_dict(row.data)

    async def save_session(
        self,
        session: BookingSession,
        *,
        user_id: Optional[str] = None,
    ) -> bool:
        """Write *session*; last write wins.

        Returns ``False`` when the stored version was already at or past the
        incoming one, meaning a concurrent turn's state was overwritten.
        """
        row = await self.get_by_id(session.session_id)
        values = {
            "state": session.state.value,
            "mode": session.mode.value,
            "data": session.to_dict(),
            "version": session.version,
            "message_count": session.message_count,
            "input_tokens": session.usage.input_tokens,
            "output_tokens": session.usage.output_tokens,
            "estimated_cost": session.usage.estimated_cost,
            "last_message_at": func.now(),
        }
        if user_id:
            values["user_id"] = user_id

        if row is None:
            await self.create({"id": session.session_id, **values})
            return True

        in_order = row.version < session.version
        if not in_order:
            logger.warning(
                "save_session: stale write for %s (stored v%d, incoming v%d), overwriting",
                session.session_id, row.version, session.version,
            )
        for attr, value in values.items():
            setattr(row, attr, value)
        await self.session.flush()
        return in_order


class ConversationMessageRepository(BaseRepository[ConversationMessage]):
    model: ClassVar[type] = ConversationMessage

    async def add_user_message(self, session_id: str, content: str) -> ConversationMessage:
        return await self.create({
            "conversation_id": session_id,
            "role": "user",
            "content": content,
        })

    async def add_assistant_message(
        self,
        session_id: str,
        content: str,
        *,
        next_state: Optional[str] = None,
        action: Optional[str] = None,
        fallback_level: Optional[int] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage:
        return await self.create({
            "conversation_id": session_id,
            "role": "assistant",
            "content": content,
            "next_state": next_state,
            "action": action,
            "fallback_level": fallback_level,
            "extra_metadata": extra_metadata or None,
        })

    async def get_recent(self, session_id: str, limit: int = 30) -> List[ConversationMessage]:
        """The *limit* most recent messages, oldest first."""
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == session_id)
            .order_by(ConversationMessage.seq.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(reversed(result.scalars().all()))


class MessageEventRepository(BaseRepository[MessageEvent]):
    model: ClassVar[type] = MessageEvent

    async def log_events_bulk(
        self,
        message_id: UUID,
        events: List[Dict[str, Any]],
    ) -> List[MessageEvent]:
        items = [
            {"message_id": message_id, "event_type": e["event_type"], "data": e.get("data")}
            for e in events
        ]
        return await self.bulk_create(items)

