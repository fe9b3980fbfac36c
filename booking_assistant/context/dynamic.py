"""Dynamic context tier, rebuilt on every turn."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from booking_assistant.booking.types import BookingSession, CallerAuthState, FallbackResult, VehicleSummary
from booking_assistant.context.static import HARD_GUARDRAILS

_MAX_VEHICLES = 8


def _vehicle_line(v: VehicleSummary) -> str:
    parts = [f"{v.title} [id:{v.id}]", f"${v.daily_rate:g}/day"]
    if v.rating is not None:
        parts.append(f"{v.rating:.1f}★ ({v.trip_count} trips)")
    if v.distance_miles is not None:
        parts.append(f"{v.distance_miles:.1f} mi")
    parts.append(f"deposit ${v.deposit_amount:g}" if v.deposit_amount else "no deposit")
    if v.instant_book:
        parts.append("instant book")
    return " · ".join(parts)


def build_dynamic_context(
    session: BookingSession,
    auth: Optional[CallerAuthState] = None,
    *,
    vehicles: Sequence[VehicleSummary] = (),
    weather: Optional[Dict[str, Any]] = None,
    fallback: Optional[FallbackResult] = None,
    tool_notes: Sequence[str] = (),
    today: Optional[date] = None,
    locale: Optional[str] = None,
) -> str:
    auth = auth or CallerAuthState()
    lines: List[str] = [
        "## Current session",
        f"Today: {(today or date.today()).isoformat()}",
        f"State: {session.state.value}",
        f"Mode: {session.mode.value}",
        f"Location: {session.location or 'unknown'}",
        f"Dates: {session.start_date or '?'} → {session.end_date or '?'}",
    ]
    if session.start_time or session.end_time:
        lines.append(f"Times: {session.start_time or '10:00'} → {session.end_time or '10:00'}")
    if session.vehicle_type:
        lines.append(f"Vehicle preference: {session.vehicle_type}")
    if session.vehicle_id:
        lines.append(f"Selected vehicle: {session.vehicle_id}")
    if session.filters is not None:
        active = {k: v for k, v in session.filters.to_dict().items() if v is not None}
        if active:
            lines.append("Active filters: " + ", ".join(f"{k}={v}" for k, v in sorted(active.items())))

    lines.append("")
    lines.append("## Guest")
    lines.append(f"Logged in: {'yes' if auth.logged_in else 'no'}")
    lines.append(f"Verified: {'yes' if auth.verified else 'no'}")
    if locale:
        lines.append(f"Locale: {locale} (dates, currency and language default to this)")

    if vehicles:
        lines.append("")
        lines.append("## Vehicles shown to the guest")
        lines.extend(f"- {_vehicle_line(v)}" for v in list(vehicles)[:_MAX_VEHICLES])
        if fallback is not None and fallback.relaxed:
            lines.append(f"(No exact matches; {fallback.explanation}. Tell the guest what was loosened.)")

    if weather:
        lines.append("")
        lines.append("## Weather at pickup")
        lines.append(", ".join(f"{k}: {v}" for k, v in weather.items() if v is not None))

    if tool_notes:
        lines.append("")
        lines.append("## Tool results this turn")
        lines.extend(f"- {note}" for note in tool_notes)

    # Repeated every turn; long conversations drift from the static tier.
    lines.append("")
    lines.append("## Always")
    lines.extend(f"- {g}" for g in HARD_GUARDRAILS)
    return "\n".join(lines)
