"""Core data structures for the booking conversation."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

ConversationTurn = Dict[str, str]
"""A single stored message: {"role": "user" | "assistant", "content": "..."}."""


class BookingState(str, Enum):
    """Linear booking flow plus side states that can interrupt it."""
    INIT = "INIT"
    COLLECTING_LOCATION = "COLLECTING_LOCATION"
    COLLECTING_DATES = "COLLECTING_DATES"
    COLLECTING_VEHICLE = "COLLECTING_VEHICLE"
    CONFIRMING = "CONFIRMING"
    READY_FOR_PAYMENT = "READY_FOR_PAYMENT"
    NEEDS_LOGIN = "NEEDS_LOGIN"
    NEEDS_VERIFICATION = "NEEDS_VERIFICATION"
    NEEDS_EMAIL_OTP = "NEEDS_EMAIL_OTP"
    HIGH_RISK_REVIEW = "HIGH_RISK_REVIEW"


class ConversationMode(str, Enum):
    GENERAL = "GENERAL"
    BOOKING = "BOOKING"
    PERSONAL = "PERSONAL"
    HOST = "HOST"


class TurnAction(str, Enum):
    """Explicit signals from the extractor, detector or risk bridge."""
    NEEDS_LOGIN = "NEEDS_LOGIN"
    NEEDS_VERIFICATION = "NEEDS_VERIFICATION"
    NEEDS_EMAIL_OTP = "NEEDS_EMAIL_OTP"
    HIGH_RISK_REVIEW = "HIGH_RISK_REVIEW"
    START_OVER = "START_OVER"
    READY_FOR_PAYMENT = "READY_FOR_PAYMENT"


SIDE_ACTIONS = frozenset({
    TurnAction.NEEDS_LOGIN,
    TurnAction.NEEDS_VERIFICATION,
    TurnAction.NEEDS_EMAIL_OTP,
    TurnAction.HIGH_RISK_REVIEW,
})
"""Actions that short-circuit the linear flow; each maps to the state of the same name."""


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None or value == "" else float(value)


def _opt_int(value: Any) -> Optional[int]:
    return None if value is None or value == "" else int(value)


def _opt_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ── Search ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SearchQuery:
    """Normalized vehicle search for one turn.

    Boolean filters are tri-state: ``None`` means "never mentioned",
    ``False`` means the guest explicitly turned the filter off.
    """

    location: Optional[str] = None
    pickup_date: Optional[date] = None
    return_date: Optional[date] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    car_type: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    seats: Optional[int] = None
    transmission: Optional[str] = None
    no_deposit: Optional[bool] = None
    instant_book: Optional[bool] = None
    rideshare: Optional[bool] = None
    delivery: Optional[bool] = None
    sort_by_price: Optional[bool] = None

    BOOLEAN_FILTERS = ("no_deposit", "instant_book", "rideshare", "delivery")
    RESTRICTIVE_FILTERS = ("price_min", "price_max", "car_type", "make", "seats", "transmission")

    @property
    def has_restrictive_filters(self) -> bool:
        return any(getattr(self, name) is not None for name in self.RESTRICTIVE_FILTERS)

    @property
    def has_floor(self) -> bool:
        """Location and both dates are present."""
        return bool(self.location) and self.pickup_date is not None and self.return_date is not None

    def without(self, *names: str) -> "SearchQuery":
        """Copy with the given fields cleared."""
        return replace(self, **{name: None for name in names})

    def minimal(self) -> "SearchQuery":
        """Location and date range only."""
        return SearchQuery(
            location=self.location,
            pickup_date=self.pickup_date,
            return_date=self.return_date,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = _iso(value) if isinstance(value, date) else value
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchQuery":
        data = data or {}
        return cls(
            location=_opt_str(data.get("location")),
            pickup_date=_parse_date(data.get("pickup_date")),
            return_date=_parse_date(data.get("return_date")),
            price_min=_opt_float(data.get("price_min")),
            price_max=_opt_float(data.get("price_max")),
            car_type=_opt_str(data.get("car_type")),
            make=_opt_str(data.get("make")),
            model=_opt_str(data.get("model")),
            seats=_opt_int(data.get("seats")),
            transmission=_opt_str(data.get("transmission")),
            no_deposit=_opt_bool(data.get("no_deposit")),
            instant_book=_opt_bool(data.get("instant_book")),
            rideshare=_opt_bool(data.get("rideshare")),
            delivery=_opt_bool(data.get("delivery")),
            sort_by_price=_opt_bool(data.get("sort_by_price")),
        )


@dataclass(frozen=True)
class DetectedIntents:
    """High-precision phrase signals from the deterministic detector."""

    no_deposit: bool = False
    lowest_price: bool = False
    instant_book: bool = False
    delivery: bool = False
    luxury: bool = False
    electric: bool = False
    suv: bool = False
    rideshare: bool = False
    matched: Tuple[str, ...] = ()

    @property
    def has_signal(self) -> bool:
        return any(
            getattr(self, f.name) for f in fields(self) if f.name != "matched"
        )

    @property
    def category(self) -> Optional[str]:
        """Category implied by the signals, most specific first."""
        if self.luxury:
            return "luxury"
        if self.electric:
            return "electric"
        if self.suv:
            return "suv"
        return None


@dataclass(frozen=True)
class VehicleSummary:
    """Read-only inventory projection.

    Deposits come in two configurations: the vehicle's own amount
    (``use_host_deposit=False``) or the host's default amount.
    """

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
    use_host_deposit: bool = False
    vehicle_deposit: Optional[float] = None
    host_deposit: Optional[float] = None
    photo_url: Optional[str] = None

    @property
    def deposit_amount(self) -> float:
        raw = self.host_deposit if self.use_host_deposit else self.vehicle_deposit
        return float(raw or 0.0)

    @property
    def title(self) -> str:
        return f"{self.year} {self.make} {self.model}"

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["deposit_amount"] = self.deposit_amount
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VehicleSummary":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class FallbackResult:
    """Outcome of progressive relaxation."""

    level: int
    vehicles: Tuple[VehicleSummary, ...]
    explanation: str = ""
    removed: Tuple[str, ...] = ()
    query: Optional[SearchQuery] = None

    @property
    def relaxed(self) -> bool:
        return self.level > 0


# ── Session ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractedFields:
    """Partial session fields proposed by one turn."""

    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: _iso(getattr(self, f.name)) if isinstance(getattr(self, f.name), date)
            else getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class TokenUsage:
    """Language-model tokens spent, per turn or summed over a conversation."""

    input_tokens: int = 0
    output_tokens: int = 0
    llm_calls: int = 0
    estimated_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            llm_calls=self.llm_calls + other.llm_calls,
            estimated_cost=round(self.estimated_cost + other.estimated_cost, 6),
        )

    def priced(self, input_per_million: float, output_per_million: float) -> "TokenUsage":
        """Same counts with ``estimated_cost`` in dollars at the given rates."""
        cost = (self.input_tokens * input_per_million + self.output_tokens * output_per_million) / 1_000_000
        return replace(self, estimated_cost=round(cost, 6))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "llm_calls": self.llm_calls,
            "estimated_cost": self.estimated_cost,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TokenUsage":
        data = data or {}
        return cls(
            input_tokens=int(data.get("input_tokens") or 0),
            output_tokens=int(data.get("output_tokens") or 0),
            llm_calls=int(data.get("llm_calls") or 0),
            estimated_cost=float(data.get("estimated_cost") or 0.0),
        )


@dataclass(frozen=True)
class BookingSession:
    """Conversation state. Replaced, never mutated, on every applied turn."""

    session_id: str
    state: BookingState = BookingState.INIT
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[str] = None
    mode: ConversationMode = ConversationMode.GENERAL
    filters: Optional[SearchQuery] = None
    version: int = 0
    message_count: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    """Conversation totals; survive START_OVER like the message count."""

    @property
    def has_dates(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    @property
    def is_complete(self) -> bool:
        return bool(self.location) and self.has_dates and bool(self.vehicle_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "location": self.location,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "vehicle_type": self.vehicle_type,
            "vehicle_id": self.vehicle_id,
            "mode": self.mode.value,
            "filters": self.filters.to_dict() if self.filters else None,
            "version": self.version,
            "message_count": self.message_count,
            "usage": self.usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookingSession":
        filters = data.get("filters")
        return cls(
            session_id=str(data["session_id"]),
            state=BookingState(data.get("state") or BookingState.INIT.value),
            location=_opt_str(data.get("location")),
            start_date=_parse_date(data.get("start_date")),
            end_date=_parse_date(data.get("end_date")),
            start_time=_opt_str(data.get("start_time")),
            end_time=_opt_str(data.get("end_time")),
            vehicle_type=_opt_str(data.get("vehicle_type")),
            vehicle_id=_opt_str(data.get("vehicle_id")),
            mode=ConversationMode(data.get("mode") or ConversationMode.GENERAL.value),
            filters=SearchQuery.from_dict(filters) if filters else None,
            version=int(data.get("version") or 0),
            message_count=int(data.get("message_count") or 0),
            usage=TokenUsage.from_dict(data.get("usage")),
        )


@dataclass(frozen=True)
class BookingSummary:
    """Price breakdown shown while confirming."""

    vehicle: VehicleSummary
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

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle": self.vehicle.to_dict(),
            "location": self.location,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "number_of_days": self.number_of_days,
            "daily_rate": self.daily_rate,
            "subtotal": self.subtotal,
            "service_fee": self.service_fee,
            "estimated_tax": self.estimated_tax,
            "estimated_total": self.estimated_total,
            "deposit_amount": self.deposit_amount,
        }


# ── Turn I/O ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CallerAuthState:
    logged_in: bool = False
    verified: bool = False
    account_email: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class ToolCall:
    """One tool invocation requested by the extractor."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass
class CandidateTurn:
    """Validated output of the structured extractor."""

    reply: str = ""
    next_state: Optional[BookingState] = None
    extracted: ExtractedFields = field(default_factory=ExtractedFields)
    action: Optional[TurnAction] = None
    search_query: Optional[SearchQuery] = None
    mode: Optional[ConversationMode] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    cleared_filters: List[str] = field(default_factory=list)
    """SearchQuery fields the guest explicitly dropped ("any price is fine")."""
    awaiting_tool_results: bool = False
    """The model asked for tools instead of answering; ask again with their results."""
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class TurnRequest:
    message: str
    session_id: str
    locale: str = "en-US"
    caller_auth: CallerAuthState = field(default_factory=CallerAuthState)


@dataclass
class TurnResponse:
    """Structured output consumed by the rendering layer."""

    reply: str
    next_state: BookingState
    mode: ConversationMode
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    action: Optional[TurnAction] = None
    search_query: Optional[SearchQuery] = None
    cards: Optional[List[str]] = None
    vehicles: List[VehicleSummary] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    summary: Optional[BookingSummary] = None
    fallback_level: Optional[int] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    security_flags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
