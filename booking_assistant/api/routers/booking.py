"""Booking router: run a conversational turn, read a session."""
from __future__ import annotations

import logging
import os
import uuid

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from booking_assistant.api.dependencies import get_booking_service
from booking_assistant.api.schemas.booking import SessionSchema, TurnRequestSchema, TurnResponseSchema
from booking_assistant.services.booking_service import BookingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/booking", tags=["booking"])
limiter = Limiter(key_func=get_remote_address)

_TURN_RATE_LIMIT = os.environ.get("BOOKING_RATE_LIMIT", "30/minute")


@router.post("/turn", response_model=TurnResponseSchema)
@limiter.limit(_TURN_RATE_LIMIT)
async def turn(
    request: Request,
    body: TurnRequestSchema,
    service: BookingService = Depends(get_booking_service),
):
    session_id = body.session_id or uuid.uuid4().hex
    response = await service.process_turn(body.to_request(session_id))
    return TurnResponseSchema.from_response(session_id, response)


@router.get("/sessions/{session_id}", response_model=SessionSchema)
async def get_session_state(
    session_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return SessionSchema.from_session(await service.get_session(session_id))
