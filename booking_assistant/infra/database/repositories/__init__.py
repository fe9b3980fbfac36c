from booking_assistant.infra.database.repositories.base import BaseRepository
from booking_assistant.infra.database.repositories.conversation import (
    BookingConversationRepository,
    ConversationMessageRepository,
    MessageEventRepository,
)
from booking_assistant.infra.database.repositories.vehicle import (
    VehicleRepository,
    VehicleReviewRepository,
    predicate_clause,
)

__all__ = [
    "BaseRepository",
    "BookingConversationRepository",
    "ConversationMessageRepository",
    "MessageEventRepository",
    "VehicleRepository",
    "VehicleReviewRepository",
    "predicate_clause",
]
