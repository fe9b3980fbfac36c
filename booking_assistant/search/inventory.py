"""Inventory collaborator contract and the in-process implementation."""
from __future__ import annotations

import logging
from collections import deque
from datetime import date
from typing import Deque, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from booking_assistant.booking.types import VehicleSummary
from booking_assistant.search.composer import PredicateSet

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
RECENT_QUERIES = 50


@runtime_checkable
class InventoryStore(Protocol):
    """Anything that can evaluate a PredicateSet against available vehicles."""

    async def query(self, predicates: PredicateSet, *, limit: int = DEFAULT_LIMIT) -> List[VehicleSummary]:
        ...

    async def get(self, vehicle_id: str) -> Optional[VehicleSummary]:
        ...


def _overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start < b_end and b_start < a_end


def rank(vehicles: Iterable[VehicleSummary], *, sort_by_price: bool) -> List[VehicleSummary]:
    """Cheapest first when asked, otherwise best-rated then most-travelled."""
    if sort_by_price:
        return sorted(vehicles, key=lambda v: (v.daily_rate, v.id))
    return sorted(vehicles, key=lambda v: (-(v.rating or 0.0), -v.trip_count, v.daily_rate, v.id))


class InMemoryInventory:
    """Fleet held in memory with optional blocked date ranges per vehicle.

    Used by tests and local runs; the SQL-backed store lives in
    ``infra/database/repositories/vehicle.py``. ``calls`` keeps only the
    last ``recent_queries`` predicate sets it was asked for.
    """

    def __init__(
        self,
        vehicles: Sequence[VehicleSummary] = (),
        *,
        blocked: Optional[Dict[str, Sequence[Tuple[date, date]]]] = None,
        recent_queries: int = RECENT_QUERIES,
    ) -> None:
        self._vehicles: Dict[str, VehicleSummary] = {v.id: v for v in vehicles}
        self._blocked: Dict[str, List[Tuple[date, date]]] = {
            vid: list(ranges) for vid, ranges in (blocked or {}).items()
        }
        self.calls: Deque[PredicateSet] = deque(maxlen=recent_queries)

    def add(self, vehicle: VehicleSummary) -> None:
        self._vehicles[vehicle.id] = vehicle

    def block(self, vehicle_id: str, start: date, end: date) -> None:
        self._blocked.setdefault(vehicle_id, []).append((start, end))

    def is_available(self, vehicle_id: str, start: date, end: date) -> bool:
        return not any(
            _overlaps(start, end, b_start, b_end)
            for b_start, b_end in self._blocked.get(vehicle_id, ())
        )

    async def query(self, predicates: PredicateSet, *, limit: int = DEFAULT_LIMIT) -> List[VehicleSummary]:
        self.calls.append(predicates)
        hits = [
            v for v in self._vehicles.values()
            if predicates.matches(v)
            and self.is_available(v.id, predicates.start_date, predicates.end_date)
        ]
        logger.debug("InMemoryInventory: %d/%d vehicles match", len(hits), len(self._vehicles))
        return rank(hits, sort_by_price=predicates.sort_by_price)[:limit]

    async def get(self, vehicle_id: str) -> Optional[VehicleSummary]:
        return self._vehicles.get(vehicle_id)

    def __len__(self) -> int:
        return len(self._vehicles)
