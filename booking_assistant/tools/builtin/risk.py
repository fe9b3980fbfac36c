"""Booking risk bridge: score a pending booking and map it to a side action."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from booking_assistant.booking.types import CallerAuthState, TurnAction
from booking_assistant.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

MEDIUM_THRESHOLD = 30
HIGH_THRESHOLD = 60

# factor → points
_WEIGHTS: Dict[str, int] = {
    "unverified_identity": 25,
    "no_account_email": 10,
    "high_total": 20,
    "very_high_total": 35,
    "long_rental": 15,
    "same_day_pickup": 10,
    "premium_vehicle": 15,
}


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    level: str
    action: Optional[TurnAction] = None
    factors: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "action": self.action.value if self.action else None,
            "factors": list(self.factors),
        }


def assess_booking_risk(
    *,
    auth: CallerAuthState,
    total_amount: float,
    number_of_days: int,
    daily_rate: float,
    pickup: Optional[date] = None,
    today: Optional[date] = None,
) -> RiskAssessment:
    factors: List[str] = []
    if not auth.verified:
        factors.append("unverified_identity")
    if not auth.account_email:
        factors.append("no_account_email")
    if total_amount >= 3000:
        factors.append("very_high_total")
    elif total_amount >= 1000:
        factors.append("high_total")
    if number_of_days > 14:
        factors.append("long_rental")
    if pickup is not None and pickup <= (today or date.today()):
        factors.append("same_day_pickup")
    if daily_rate >= 150:
        factors.append("premium_vehicle")

    score = min(100, sum(_WEIGHTS[f] for f in factors))
    if score >= HIGH_THRESHOLD:
        level, action = "high", TurnAction.HIGH_RISK_REVIEW
    elif score >= MEDIUM_THRESHOLD:
        level = "medium"
        if not auth.verified:
            action = TurnAction.NEEDS_VERIFICATION
        elif not auth.account_email:
            action = TurnAction.NEEDS_EMAIL_OTP
        else:
            action = None
    else:
        level, action = "low", None
    logger.info("assess_booking_risk: score=%d level=%s factors=%s", score, level, factors)
    return RiskAssessment(score=score, level=level, action=action, factors=tuple(factors))


def build_risk_tool(*, timeout_seconds: float | None = None) -> ToolDefinition:
    async def assess_risk(
        total_amount: float,
        number_of_days: int,
        daily_rate: float,
        verified: bool = False,
        account_email: Optional[str] = None,
        pickup_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        return assess_booking_risk(
            auth=CallerAuthState(logged_in=True, verified=verified, account_email=account_email),
            total_amount=float(total_amount),
            number_of_days=int(number_of_days),
            daily_rate=float(daily_rate),
            pickup=date.fromisoformat(pickup_date[:10]) if pickup_date else None,
        ).to_dict()

    return ToolDefinition(
        name="assess_risk",
        description="Score a pending booking for fraud risk; returns score, level and any required check.",
        parameters={
            "type": "object",
            "properties": {
                "total_amount": {"type": "number"},
                "number_of_days": {"type": "integer"},
                "daily_rate": {"type": "number"},
                "verified": {"type": "boolean"},
                "account_email": {"type": "string"},
                "pickup_date": {"type": "string"},
            },
            "required": ["total_amount", "number_of_days", "daily_rate"],
        },
        handler=assess_risk,
        timeout_seconds=timeout_seconds,
    )
