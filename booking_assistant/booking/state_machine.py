"""Booking session state machine.

``apply_turn`` is the only way a session changes: it validates the turn's
extracted fields, merges what passed, and computes the next state. The
session is a frozen dataclass so every applied turn yields a new instance.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from booking_assistant.booking.types import (
    SIDE_ACTIONS,
    BookingSession,
    BookingState,
    BookingSummary,
    CandidateTurn,
    ConversationMode,
    ExtractedFields,
    TurnAction,
    VehicleSummary,
)
from booking_assistant.booking.validators import (
    validate_date_range,
    validate_location,
    validate_return_date,
    validate_time,
)
from booking_assistant.core.exceptions import ValidationError
from booking_assistant.search.tables import LookupTables

logger = logging.getLogger(__name__)

LINEAR_FLOW = (
    BookingState.INIT,
    BookingState.COLLECTING_LOCATION,
    BookingState.COLLECTING_DATES,
    BookingState.COLLECTING_VEHICLE,
    BookingState.CONFIRMING,
    BookingState.READY_FOR_PAYMENT,
)
_RANK = {state: i for i, state in enumerate(LINEAR_FLOW)}

_SUGGESTIONS: Dict[BookingState, List[str]] = {
    BookingState.INIT: ["I need a car in Phoenix", "SUV in Scottsdale", "Cheapest car tomorrow"],
    BookingState.COLLECTING_LOCATION: ["Phoenix", "Scottsdale", "Tempe", "Mesa"],
    BookingState.COLLECTING_DATES: ["This weekend", "Tomorrow for 3 days", "Next Friday to Sunday"],
    BookingState.COLLECTING_VEHICLE: ["Show me SUVs", "Under $100/day", "The cheapest option"],
    BookingState.CONFIRMING: ["Book it", "Change dates", "Show other cars"],
    BookingState.NEEDS_LOGIN: ["Log in", "Continue as guest"],
    BookingState.READY_FOR_PAYMENT: ["Proceed to payment"],
}

_VEHICLE_TAG = re.compile(r"\[id:([^\]]+)\]")


@dataclass
class TurnOutcome:
    session: BookingSession
    next_state: BookingState
    errors: List[ValidationError] = field(default_factory=list)


def create_initial_session(session_id: Optional[str] = None) -> BookingSession:
    return BookingSession(session_id=session_id or uuid.uuid4().hex)


def suggestions_for(state: BookingState) -> List[str]:
    return list(_SUGGESTIONS.get(state, []))


def extract_vehicle_id(message: Optional[str]) -> Optional[str]:
    """Vehicle id from an ``[id:...]`` tag the UI appends to a selection message."""
    if not message:
        return None
    m = _VEHICLE_TAG.search(message)
    return m.group(1).strip() or None if m else None


def compute_next_state(session: BookingSession) -> BookingState:
    """First missing requirement in priority order location → dates → vehicle."""
    if not session.location:
        return BookingState.COLLECTING_LOCATION
    if not session.has_dates:
        return BookingState.COLLECTING_DATES
    if not session.vehicle_id:
        return BookingState.COLLECTING_VEHICLE
    return BookingState.CONFIRMING


# ── Validation + merge ────────────────────────────────────────────────────────


def _validated_fields(
    session: BookingSession,
    extracted: ExtractedFields,
    *,
    today: Optional[date],
    tables: Optional[LookupTables],
) -> tuple:
    """Return (accepted field values, errors). Rejected values are left out."""
    errors: List[ValidationError] = []
    accepted: Dict[str, object] = {}

    if extracted.location is not None:
        try:
            accepted["location"] = validate_location(extracted.location, tables)
        except ValidationError as exc:
            errors.append(exc)

    if extracted.start_date is not None or extracted.end_date is not None:
        start = extracted.start_date or session.start_date
        end = extracted.end_date or session.end_date
        # A new pickup past the stored return date makes the old return stale.
        stale_end = (
            extracted.start_date is not None and extracted.end_date is None
            and end is not None and end <= start
        )
        if stale_end:
            end = None
        try:
            if start is not None and end is not None:
                start, end = validate_date_range(start, end, today=today)
            elif start is not None:
                # Pickup alone is fine until a return date arrives.
                validate_date_range(start, None, today=today)
            elif end is not None:
                # Held until a pickup arrives, but never a date already gone.
                end = validate_return_date(end, today=today)
        except ValidationError as exc:
            errors.append(exc)
        else:
            if extracted.start_date is not None:
                accepted["start_date"] = start
            if extracted.end_date is not None:
                accepted["end_date"] = end
            if stale_end:
                accepted["end_date"] = None

    for name in ("start_time", "end_time"):
        raw = getattr(extracted, name)
        if raw is None:
            continue
        try:
            accepted[name] = validate_time(raw)
        except ValidationError as exc:
            errors.append(exc)

    if extracted.vehicle_type:
        accepted["vehicle_type"] = extracted.vehicle_type.strip().lower()
    if extracted.vehicle_id:
        accepted["vehicle_id"] = extracted.vehicle_id.strip()
    return accepted, errors


def _merge(session: BookingSession, accepted: Dict[str, object]) -> BookingSession:
    """Set fields never go back to None, except a stale return date."""
    updates = {k: v for k, v in accepted.items() if v is not None}
    if "end_date" in accepted and accepted["end_date"] is None:
        updates["end_date"] = None
    return replace(session, **updates) if updates else session


def _resolve_state(
    session: BookingSession,
    turn: CandidateTurn,
    errors: List[ValidationError],
) -> BookingState:
    if turn.action in SIDE_ACTIONS:
        return BookingState(turn.action.value)

    computed = compute_next_state(session)
    wants_payment = (
        turn.action is TurnAction.READY_FOR_PAYMENT
        or turn.next_state is BookingState.READY_FOR_PAYMENT
    )
    if wants_payment:
        if session.is_complete:
            return BookingState.READY_FOR_PAYMENT
        errors.append(ValidationError(
            "The booking is missing details needed for payment",
            details={"field": computed.value.replace("COLLECTING_", "").lower()},
        ))
        return computed

    requested = turn.next_state
    if requested is not None and requested.value in {a.value for a in SIDE_ACTIONS}:
        return requested
    # A requested linear state may hold the flow back (e.g. keep browsing) but never jump ahead.
    if requested in _RANK and requested is not BookingState.INIT and _RANK[requested] <= _RANK[computed]:
        return requested
    return computed


def apply_turn(
    session: BookingSession,
    turn: CandidateTurn,
    *,
    today: Optional[date] = None,
    tables: Optional[LookupTables] = None,
) -> TurnOutcome:
    """Validate, merge and advance.

    Side actions win over the linear flow. ``START_OVER`` resets the session
    but keeps its id and bumps its version.
    """
    if turn.action is TurnAction.START_OVER:
        fresh = replace(
            create_initial_session(session.session_id),
            version=session.version + 1,
            message_count=session.message_count,
            usage=session.usage,
        )
        logger.info("apply_turn: session reset")
        return TurnOutcome(session=fresh, next_state=BookingState.INIT)

    accepted, errors = _validated_fields(session, turn.extracted, today=today, tables=tables)
    merged = _merge(session, accepted)

    mode = turn.mode
    if mode is None:
        mode = merged.mode
        if mode is ConversationMode.GENERAL and accepted:
            mode = ConversationMode.BOOKING
    filters = turn.search_query if turn.search_query is not None else merged.filters
    merged = replace(merged, mode=mode, filters=filters)

    next_state = _resolve_state(merged, turn, errors)
    merged = replace(merged, state=next_state, version=session.version + 1)

    if errors:
        logger.info(
            "apply_turn: rejected %s",
            [e.details.get("field") for e in errors],
        )
    logger.debug("apply_turn: %s → %s", session.state.value, next_state.value)
    return TurnOutcome(session=merged, next_state=next_state, errors=errors)


# ── Pricing ───────────────────────────────────────────────────────────────────

_CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate_days(start: date, end: date) -> int:
    """Billable days; a same-day or inverted range bills as one day."""
    return max(1, (end - start).days)


def build_booking_summary(
    session: BookingSession,
    vehicle: VehicleSummary,
    *,
    service_fee_percent: float = 0.15,
    tax_rate: float = 0.084,
    default_time: str = "10:00",
) -> BookingSummary:
    if not session.location or not session.has_dates:
        raise ValidationError(
            "A summary needs a location and dates",
            details={"field": "location" if not session.location else "dates"},
        )
    days = calculate_days(session.start_date, session.end_date)
    rate = Decimal(str(vehicle.daily_rate))
    subtotal = _money(rate * days)
    fee = _money(subtotal * Decimal(str(service_fee_percent)))
    taxable = subtotal + fee
    tax = _money(taxable * Decimal(str(tax_rate)))
    total = _money(taxable + tax)
    return BookingSummary(
        vehicle=vehicle,
        location=session.location,
        start_date=session.start_date,
        end_date=session.end_date,
        start_time=session.start_time or default_time,
        end_time=session.end_time or default_time,
        number_of_days=days,
        daily_rate=float(rate),
        subtotal=float(subtotal),
        service_fee=float(fee),
        estimated_tax=float(tax),
        estimated_total=float(total),
        deposit_amount=vehicle.deposit_amount,
    )
