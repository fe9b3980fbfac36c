"""
booking_assistant.infra.database.models – SQLAlchemy 2.0 ORM models.
"""
from booking_assistant.infra.database.models.base import Base, TimestampMixin, _uuid_pk
from booking_assistant.infra.database.models.conversation import (
    BookingConversation,
    ConversationMessage,
    MessageEvent,
)
from booking_assistant.infra.database.models.vehicle import Host, Vehicle, VehicleBlock, VehicleReview

__all__ = [
    "Base",
    "TimestampMixin",
    "_uuid_pk",
    "BookingConversation",
    "ConversationMessage",
    "MessageEvent",
    "Host",
    "Vehicle",
    "VehicleBlock",
    "VehicleReview",
]
