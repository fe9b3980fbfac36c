"""Query composer: SearchQuery → PredicateSet.

The composer never runs a search. It produces a value object of predicates
that an inventory store evaluates, either in process (``PredicateSet.matches``)
or by translating each predicate into SQL.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple, Type

from booking_assistant.booking.types import SearchQuery, VehicleSummary
from booking_assistant.core.exceptions import ValidationError
from booking_assistant.search.normalize import (
    default_tables,
    metro_cities,
    normalize_category,
    normalize_location,
    normalize_make,
    normalize_transmission,
)
from booking_assistant.search.tables import CategoryRule, LookupTables

logger = logging.getLogger(__name__)


def _low(value: Optional[str]) -> str:
    return (value or "").strip().lower()


# ── Predicates ────────────────────────────────────────────────────────────────

_PREDICATE_TYPES: Dict[str, Type["Predicate"]] = {}


def _register(cls: Type["Predicate"]) -> Type["Predicate"]:
    _PREDICATE_TYPES[cls.kind] = cls
    return cls


class Predicate:
    """One attribute constraint. ``group`` is what relaxation removes."""

    kind: ClassVar[str] = ""
    group: ClassVar[str] = ""

    def matches(self, vehicle: VehicleSummary) -> bool:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Predicate":
        kind = data.get("kind")
        cls = _PREDICATE_TYPES.get(str(kind))
        if cls is None:
            raise ValidationError(f"Unknown predicate kind: {kind!r}", details={"kind": kind})
        return cls._load(data)  # type: ignore[attr-defined]


@_register
@dataclass(frozen=True)
class PriceRangePredicate(Predicate):
    kind: ClassVar[str] = "price_range"
    group: ClassVar[str] = "price"

    min_daily: Optional[float] = None
    max_daily: Optional[float] = None

    def matches(self, vehicle: VehicleSummary) -> bool:
        if self.min_daily is not None and vehicle.daily_rate < self.min_daily:
            return False
        if self.max_daily is not None and vehicle.daily_rate > self.max_daily:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "min_daily": self.min_daily, "max_daily": self.max_daily}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "PriceRangePredicate":
        return cls(min_daily=data.get("min_daily"), max_daily=data.get("max_daily"))


@_register
@dataclass(frozen=True)
class CategoryGroupPredicate(Predicate):
    """Mapped category: body style / fuel / make allow-list / rate threshold."""

    kind: ClassVar[str] = "category_group"
    group: ClassVar[str] = "category"

    rule: CategoryRule = field(default_factory=lambda: CategoryRule(name="any", body_styles=("*",)))

    def _criteria(self, vehicle: VehicleSummary) -> Tuple[bool, ...]:
        rule = self.rule
        checks = []
        if rule.body_styles:
            checks.append(_low(vehicle.car_type) in rule.body_styles)
        if rule.fuel_types:
            checks.append(_low(vehicle.fuel_type) in rule.fuel_types)
        if rule.makes:
            checks.append(_low(vehicle.make) in {m.lower() for m in rule.makes})
        if rule.min_daily_rate is not None:
            checks.append(vehicle.daily_rate >= rule.min_daily_rate)
        if rule.max_daily_rate is not None:
            checks.append(vehicle.daily_rate <= rule.max_daily_rate)
        return tuple(checks)

    def matches(self, vehicle: VehicleSummary) -> bool:
        checks = self._criteria(vehicle)
        return all(checks) if self.rule.match == "all" else any(checks)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "name": self.rule.name, **self.rule.to_dict()}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "CategoryGroupPredicate":
        return cls(rule=CategoryRule(
            name=data["name"],
            body_styles=tuple(data.get("body_styles") or ()),
            fuel_types=tuple(data.get("fuel_types") or ()),
            makes=tuple(data.get("makes") or ()),
            min_daily_rate=data.get("min_daily_rate"),
            max_daily_rate=data.get("max_daily_rate"),
            match=data.get("match", "any"),
        ))


@_register
@dataclass(frozen=True)
class CategoryLiteralPredicate(Predicate):
    """Unmapped category: substring match on the vehicle's category field."""

    kind: ClassVar[str] = "category_literal"
    group: ClassVar[str] = "category"

    text: str = ""

    def matches(self, vehicle: VehicleSummary) -> bool:
        return _low(self.text) in _low(vehicle.car_type)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "text": self.text}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "CategoryLiteralPredicate":
        return cls(text=str(data.get("text") or ""))


@_register
@dataclass(frozen=True)
class MakePredicate(Predicate):
    kind: ClassVar[str] = "make"
    group: ClassVar[str] = "make"

    make: str = ""

    def matches(self, vehicle: VehicleSummary) -> bool:
        return _low(vehicle.make) == _low(self.make)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "make": self.make}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "MakePredicate":
        return cls(make=str(data.get("make") or ""))


@_register
@dataclass(frozen=True)
class ModelPredicate(Predicate):
    kind: ClassVar[str] = "model"
    group: ClassVar[str] = "model"

    text: str = ""

    def matches(self, vehicle: VehicleSummary) -> bool:
        return _low(self.text) in _low(vehicle.model)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "text": self.text}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "ModelPredicate":
        return cls(text=str(data.get("text") or ""))


@_register
@dataclass(frozen=True)
class SeatsPredicate(Predicate):
    kind: ClassVar[str] = "seats"
    group: ClassVar[str] = "seats"

    min_seats: int = 1

    def matches(self, vehicle: VehicleSummary) -> bool:
        return (vehicle.seats or 0) >= self.min_seats

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "min_seats": self.min_seats}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "SeatsPredicate":
        return cls(min_seats=int(data.get("min_seats") or 1))


@_register
@dataclass(frozen=True)
class TransmissionPredicate(Predicate):
    kind: ClassVar[str] = "transmission"
    group: ClassVar[str] = "transmission"

    value: str = "automatic"

    def matches(self, vehicle: VehicleSummary) -> bool:
        return _low(vehicle.transmission) == _low(self.value)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "value": self.value}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "TransmissionPredicate":
        return cls(value=str(data.get("value") or "automatic"))


@_register
@dataclass(frozen=True)
class DepositExemptPredicate(Predicate):
    """Zero deposit under either configuration.

    (vehicle-level amount in use AND it is zero) OR (host default in use AND it is zero)
    """

    kind: ClassVar[str] = "deposit_exempt"
    group: ClassVar[str] = "deposit"

    def matches(self, vehicle: VehicleSummary) -> bool:
        vehicle_mode = not vehicle.use_host_deposit and not (vehicle.vehicle_deposit or 0)
        host_mode = vehicle.use_host_deposit and not (vehicle.host_deposit or 0)
        return vehicle_mode or host_mode

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "DepositExemptPredicate":
        return cls()


_FLAG_ATTRIBUTES: Dict[str, Callable[[VehicleSummary], bool]] = {
    "instant_book": lambda v: v.instant_book,
    "rideshare": lambda v: v.rideshare_eligible,
    "delivery": lambda v: v.delivery_available,
}


@_register
@dataclass(frozen=True)
class FlagPredicate(Predicate):
    """Boolean listing capability: instant_book, rideshare or delivery."""

    kind: ClassVar[str] = "flag"
    group: ClassVar[str] = "flags"

    flag: str = "instant_book"

    def __post_init__(self) -> None:
        if self.flag not in _FLAG_ATTRIBUTES:
            raise ValidationError(f"Unknown listing flag {self.flag!r}", details={"flag": self.flag})

    def matches(self, vehicle: VehicleSummary) -> bool:
        return bool(_FLAG_ATTRIBUTES[self.flag](vehicle))

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "flag": self.flag}

    @classmethod
    def _load(cls, data: Dict[str, Any]) -> "FlagPredicate":
        return cls(flag=str(data.get("flag") or ""))


# ── Predicate set ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PredicateSet:
    """Location + date floor plus conjunctive attribute predicates."""

    cities: Tuple[str, ...]
    start_date: date
    end_date: date
    predicates: Tuple[Predicate, ...] = ()
    sort_by_price: bool = False

    def __post_init__(self) -> None:
        if not self.cities:
            raise ValidationError("A search needs at least one city", details={"field": "location"})
        if self.end_date <= self.start_date:
            raise ValidationError(
                "Return date must be after pickup date",
                details={"field": "end_date", "start": self.start_date.isoformat(),
                         "end": self.end_date.isoformat()},
            )

    @property
    def groups(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(p.group for p in self.predicates))

    def matches(self, vehicle: VehicleSummary) -> bool:
        """Location and attribute predicates; availability is the store's job."""
        if vehicle.city not in self.cities:
            return False
        return all(p.matches(vehicle) for p in self.predicates)

    def without(self, *groups: str) -> "PredicateSet":
        return PredicateSet(
            cities=self.cities,
            start_date=self.start_date,
            end_date=self.end_date,
            predicates=tuple(p for p in self.predicates if p.group not in groups),
            sort_by_price=self.sort_by_price,
        )

    def find(self, predicate_type: Type[Predicate]) -> Optional[Predicate]:
        for p in self.predicates:
            if isinstance(p, predicate_type):
                return p
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cities": list(self.cities),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "predicates": [p.to_dict() for p in self.predicates],
            "sort_by_price": self.sort_by_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredicateSet":
        return cls(
            cities=tuple(data.get("cities") or ()),
            start_date=date.fromisoformat(data["start_date"]),
            end_date=date.fromisoformat(data["end_date"]),
            predicates=tuple(Predicate.from_dict(p) for p in data.get("predicates") or ()),
            sort_by_price=bool(data.get("sort_by_price", False)),
        )


# ── Composer ──────────────────────────────────────────────────────────────────


class QueryComposer:
    """Translate a normalized SearchQuery into a PredicateSet."""

    def __init__(self, tables: Optional[LookupTables] = None) -> None:
        self._tables = tables or default_tables()

    @property
    def tables(self) -> LookupTables:
        return self._tables

    def normalize(self, query: SearchQuery) -> SearchQuery:
        """Canonicalise location, make, category and transmission in place of the raw values."""
        return replace(
            query,
            location=normalize_location(query.location, self._tables) or query.location,
            make=normalize_make(query.make, self._tables),
            car_type=normalize_category(query.car_type, self._tables),
            transmission=normalize_transmission(query.transmission, self._tables),
        )

    def compose(self, query: SearchQuery) -> PredicateSet:
        if not query.location:
            raise ValidationError("Search needs a location", details={"field": "location"})
        if query.pickup_date is None or query.return_date is None:
            raise ValidationError("Search needs pickup and return dates", details={"field": "dates"})

        cities = metro_cities(query.location, self._tables)
        if not cities:
            raise ValidationError(
                f"We don't serve {query.location!r} yet",
                details={"field": "location", "value": query.location},
            )

        predicates = []
        if query.price_min is not None or query.price_max is not None:
            if (query.price_min is not None and query.price_max is not None
                    and query.price_min > query.price_max):
                raise ValidationError(
                    "Minimum price is above maximum price",
                    details={"field": "price_min", "price_min": query.price_min,
                             "price_max": query.price_max},
                )
            predicates.append(PriceRangePredicate(query.price_min, query.price_max))

        category = normalize_category(query.car_type, self._tables)
        if category:
            rule = self._tables.categories.get(category)
            predicates.append(
                CategoryGroupPredicate(rule) if rule is not None else CategoryLiteralPredicate(category)
            )

        make = normalize_make(query.make, self._tables)
        if make:
            predicates.append(MakePredicate(make))
        if query.model:
            predicates.append(ModelPredicate(query.model.strip()))
        if query.seats:
            predicates.append(SeatsPredicate(int(query.seats)))
        transmission = normalize_transmission(query.transmission, self._tables)
        if transmission:
            predicates.append(TransmissionPredicate(transmission))
        if query.no_deposit:
            predicates.append(DepositExemptPredicate())
        for flag in ("instant_book", "rideshare", "delivery"):
            if getattr(query, flag):
                predicates.append(FlagPredicate(flag))

        result = PredicateSet(
            cities=cities,
            start_date=query.pickup_date,
            end_date=query.return_date,
            predicates=tuple(predicates),
            sort_by_price=bool(query.sort_by_price),
        )
        logger.debug(
            "QueryComposer: %s → %d cities, groups=%s",
            query.location, len(cities), result.groups,
        )
        return result
