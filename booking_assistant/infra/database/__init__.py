"""
booking_assistant.infra.database – async Postgres storage for sessions, messages and inventory.
"""
from booking_assistant.infra.database.engine import (
    build_engine,
    build_session_factory,
    close_engine,
    ensure_database_exists,
    init_db,
    session_scope,
    split_database_url,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "close_engine",
    "ensure_database_exists",
    "init_db",
    "session_scope",
    "split_database_url",
]
