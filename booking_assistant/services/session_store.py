"""Session persistence behind one small contract.

``InMemorySessionStore`` serves tests and local runs. ``SqlSessionStore``
wraps the conversation repositories for one request-scoped AsyncSession.
Writes are last-write-wins: ``save_session`` returns ``False`` when it
overwrote a version at or past its own, and the caller logs that.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

from booking_assistant.booking.types import BookingSession, ConversationTurn
from booking_assistant.infra.database.repositories.conversation import (
    BookingConversationRepository,
    ConversationMessageRepository,
    MessageEventRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    async def load_session(self, session_id: str) -> Optional[BookingSession]:
        ...

    async def save_session(self, session: BookingSession, *, user_id: Optional[str] = None) -> bool:
        ...

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        next_state: Optional[str] = None,
        action: Optional[str] = None,
        fallback_level: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        events: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        ...

    async def load_history(self, session_id: str, *, limit: int = 30) -> List[ConversationTurn]:
        ...


@dataclass
class StoredMessage:
    role: str
    content: str
    next_state: Optional[str] = None
    action: Optional[str] = None
    fallback_level: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)


class InMemorySessionStore:
    def __init__(self) -> None:
        self.sessions: Dict[str, BookingSession] = {}
        self.messages: Dict[str, List[StoredMessage]] = {}
        self.user_ids: Dict[str, str] = {}

    async def load_session(self, session_id: str) -> Optional[BookingSession]:
        return self.sessions.get(session_id)

    async def save_session(self, session: BookingSession, *, user_id: Optional[str] = None) -> bool:
        stored = self.sessions.get(session.session_id)
        in_order = stored is None or stored.version < session.version
        if not in_order:
            logger.warning(
                "InMemorySessionStore: stale write for %s (stored v%d, incoming v%d), overwriting",
                session.session_id, stored.version, session.version,
            )
        self.sessions[session.session_id] = session
        if user_id:
            self.user_ids[session.session_id] = user_id
        return in_order

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        next_state: Optional[str] = None,
        action: Optional[str] = None,
        fallback_level: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        events: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.messages.setdefault(session_id, []).append(StoredMessage(
            role=role,
            content=content,
            next_state=next_state,
            action=action,
            fallback_level=fallback_level,
            metadata=dict(metadata or {}),
            events=list(events or []),
        ))

    async def load_history(self, session_id: str, *, limit: int = 30) -> List[ConversationTurn]:
        stored = self.messages.get(session_id, [])[-limit:] if limit > 0 else []
        return [{"role": m.role, "content": m.content} for m in stored]

    def events(self, session_id: str) -> List[Dict[str, Any]]:
        """Every audit event recorded for *session_id*, in order."""
        return [e for m in self.messages.get(session_id, []) for e in m.events]


class SqlSessionStore:
    """Postgres-backed store; commit is left to the caller's session scope."""

    def __init__(self, session: "AsyncSession") -> None:
        self._conversations = BookingConversationRepository(session)
        self._messages = ConversationMessageRepository(session)
        self._events = MessageEventRepository(session)

    async def load_session(self, session_id: str) -> Optional[BookingSession]:
        return await self._conversations.load_session(session_id)

    async def save_session(self, session: BookingSession, *, user_id: Optional[str] = None) -> bool:
        return await self._conversations.save_session(session, user_id=user_id)

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        next_state: Optional[str] = None,
        action: Optional[str] = None,
        fallback_level: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        events: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        if role == "user":
            msg = await self._messages.add_user_message(session_id, content)
        else:
            msg = await self._messages.add_assistant_message(
                session_id,
                content,
                next_state=next_state,
                action=action,
                fallback_level=fallback_level,
                extra_metadata=metadata,
            )
        if events:
            await self._events.log_events_bulk(msg.id, events)
        logger.debug("SqlSessionStore: %s message recorded: %s", role, msg.id)

    async def load_history(self, session_id: str, *, limit: int = 30) -> List[ConversationTurn]:
        rows = await self._messages.get_recent(session_id, limit=limit)
        return [{"role": m.role, "content": m.content} for m in rows]
