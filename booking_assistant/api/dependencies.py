"""FastAPI dependency providers."""
from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_assistant.infra.database.engine import session_scope
from booking_assistant.infra.database.repositories.vehicle import VehicleRepository, VehicleReviewRepository
from booking_assistant.services.booking_service import BookingService
from booking_assistant.services.session_store import SqlSessionStore


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a transactional AsyncSession from the app-level session factory."""
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not initialised. Check server startup logs.",
        )
    async with session_scope(session_factory) as session:
        yield session


async def get_booking_service(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> BookingService:
    """A BookingService bound to this request's database session."""
    state = request.app.state
    return BookingService.build(
        state.engine_config,
        llm=state.llm_client,
        store=SqlSessionStore(session),
        inventory=VehicleRepository(session),
        reviews=VehicleReviewRepository(session),
        weather=state.weather_client,
        assembler=state.context_assembler,
        tables=state.lookup_tables,
    )
