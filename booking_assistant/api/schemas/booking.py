"""Pydantic v2 schemas for the booking API."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from booking_assistant.booking.types import (
    BookingSession,
    CallerAuthState,
    TurnRequest,
    TurnResponse,
)


class CallerAuthSchema(BaseModel):
    logged_in: bool = False
    verified: bool = False
    account_email: Optional[str] = Field(default=None, max_length=255)
    user_id: Optional[str] = Field(default=None, max_length=64)


class TurnRequestSchema(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    session_id: Optional[str] = Field(default=None, max_length=64)
    """Omit on the first message; the response carries the new id."""

    locale: str = Field(default="en-US", max_length=16)
    caller_auth: CallerAuthSchema = Field(default_factory=CallerAuthSchema)

    def to_request(self, session_id: str) -> TurnRequest:
        return TurnRequest(
            message=self.message,
            session_id=session_id,
            locale=self.locale,
            caller_auth=CallerAuthState(**self.caller_auth.model_dump()),
        )


class VehicleSchema(BaseModel):
    id: str
    make: str
    model: str
    year: int
    daily_rate: float
    car_type: str = ""
    city: str = ""
    rating: Optional[float] = None
    trip_count: int = 0
    distance_miles: Optional[float] = None
    instant_book: bool = False
    seats: Optional[int] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    rideshare_eligible: bool = False
    delivery_available: bool = False
    deposit_amount: float = 0.0
    photo_url: Optional[str] = None


class BookingSummarySchema(BaseModel):
    vehicle: VehicleSchema
    location: str
    start_date: date
    end_date: date
    start_time: str
    end_time: str
    number_of_days: int
    daily_rate: float
    subtotal: float
    service_fee: float
    estimated_tax: float
    estimated_total: float
    deposit_amount: float


class TurnResponseSchema(BaseModel):
    session_id: str
    reply: str
    next_state: str
    mode: str
    extracted_data: Dict[str, Any] = {}
    action: Optional[str] = None
    search_query: Optional[Dict[str, Any]] = None
    cards: Optional[List[str]] = None
    vehicles: List[VehicleSchema] = []
    suggestions: List[str] = []
    summary: Optional[BookingSummarySchema] = None
    fallback_level: Optional[int] = None
    errors: List[Dict[str, Any]] = []
    security_flags: List[str] = []
    metadata: Dict[str, Any] = {}

    @classmethod
    def from_response(cls, session_id: str, response: TurnResponse) -> "TurnResponseSchema":
        return cls(
            session_id=session_id,
            reply=response.reply,
            next_state=response.next_state.value,
            mode=response.mode.value,
            extracted_data=response.extracted_data,
            action=response.action.value if response.action else None,
            search_query=response.search_query.to_dict() if response.search_query else None,
            cards=response.cards,
            vehicles=[VehicleSchema.model_validate(v.to_dict()) for v in response.vehicles],
            suggestions=response.suggestions,
            summary=(
                BookingSummarySchema.model_validate(response.summary.to_dict())
                if response.summary else None
            ),
            fallback_level=response.fallback_level,
            errors=response.errors,
            security_flags=response.security_flags,
            metadata=response.metadata,
        )


class SessionSchema(BaseModel):
    session_id: str
    state: str
    mode: str
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    version: int = 0
    message_count: int = 0
    usage: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_session(cls, session: BookingSession) -> "SessionSchema":
        return cls.model_validate(session.to_dict())
