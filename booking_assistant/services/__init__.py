"""Service layer: turn processing and session persistence."""
from booking_assistant.services.booking_service import BookingService
from booking_assistant.services.session_store import InMemorySessionStore, SessionStore, SqlSessionStore

__all__ = [
    "BookingService",
    "SessionStore",
    "InMemorySessionStore",
    "SqlSessionStore",
]
