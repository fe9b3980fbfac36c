"""Progressive relaxation: loosen restrictive filters until something is available.

Levels are cumulative and each one only removes predicates, so every level's
result set is a superset of the previous one:

    0  the query as given
    1  without price bounds
    2  … and without the category
    3  … and without the make
    4  location and dates only
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from booking_assistant.booking.types import FallbackResult, SearchQuery
from booking_assistant.core.exceptions import ZeroResultError
from booking_assistant.search.composer import QueryComposer
from booking_assistant.search.inventory import DEFAULT_LIMIT, InventoryStore
from booking_assistant.search.normalize import normalize_category

logger = logging.getLogger(__name__)

# Fields cleared at each level, cumulative.
RELAXATION_LEVELS: Tuple[Tuple[str, ...], ...] = (
    ("price_min", "price_max"),
    ("car_type",),
    ("make",),
)
MAX_LEVEL = len(RELAXATION_LEVELS) + 1

_CATEGORY_LABELS = {"suv": "SUV", "ev": "EV"}


def _label(query: SearchQuery, name: str) -> Optional[str]:
    value = getattr(query, name)
    if value is None or value is False:
        return None
    if name == "price_min":
        return "minimum price"
    if name == "price_max":
        return "maximum price"
    if name == "car_type":
        key = normalize_category(value) or str(value)
        return f"{_CATEGORY_LABELS.get(key, key.title())} type"
    if name == "make":
        return f"{value} make"
    if name == "model":
        return f"{value} model"
    if name == "seats":
        return f"{value}+ seats"
    if name == "transmission":
        return f"{value} transmission"
    if name == "no_deposit":
        return "no-deposit"
    return name.replace("_", " ")


def _removed_labels(original: SearchQuery, relaxed: SearchQuery) -> Tuple[str, ...]:
    """Labels of constraints present in *original* and gone from *relaxed*, in field order."""
    out: List[str] = []
    for name in (
        "price_min", "price_max", "car_type", "make", "model", "seats",
        "transmission", "no_deposit", "instant_book", "rideshare", "delivery",
    ):
        if getattr(original, name) is not None and getattr(relaxed, name) is None:
            label = _label(original, name)
            if label:
                out.append(label)
    return tuple(out)


def explain(removed: Sequence[str]) -> str:
    """``removed minimum price, maximum price, and SUV type filters``"""
    if not removed:
        return ""
    if len(removed) == 1:
        return f"removed {removed[0]} filter"
    if len(removed) == 2:
        return f"removed {removed[0]} and {removed[1]} filters"
    return f"removed {', '.join(removed[:-1])}, and {removed[-1]} filters"


def relaxed_query(query: SearchQuery, level: int) -> SearchQuery:
    """The query used at *level* (0..4)."""
    if level <= 0:
        return query
    if level >= MAX_LEVEL:
        return replace(query.minimal(), sort_by_price=query.sort_by_price)
    cleared = [name for group in RELAXATION_LEVELS[:level] for name in group]
    return query.without(*cleared)


class RelaxationEngine:
    """Run a query, relaxing it step by step when nothing matches."""

    def __init__(
        self,
        composer: QueryComposer,
        inventory: InventoryStore,
        *,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._composer = composer
        self._inventory = inventory
        self._limit = limit

    async def search(self, query: SearchQuery) -> FallbackResult:
        """Return the first non-empty level.

        Raises:
            ValidationError: the query has no serviceable location/date floor.
            ZeroResultError: nothing is available even at the minimal level.
        """
        vehicles = await self._inventory.query(self._composer.compose(query), limit=self._limit)
        if vehicles:
            return FallbackResult(level=0, vehicles=tuple(vehicles), query=query)

        attempted = [0]
        if not query.has_restrictive_filters:
            logger.info("RelaxationEngine: no results and nothing to relax for %s", query.location)
            raise ZeroResultError(
                f"No vehicles are available in {query.location} for those dates.",
                attempted_levels=attempted,
            )

        minimal = relaxed_query(query, MAX_LEVEL)
        previous = query
        removed: Tuple[str, ...] = ()
        for level in range(1, MAX_LEVEL + 1):
            candidate = relaxed_query(query, level)
            # Whatever step leaves only location and dates is the minimal level.
            if candidate == minimal:
                level = MAX_LEVEL
            if candidate == previous:
                continue
            previous = candidate
            attempted.append(level)
            removed = _removed_labels(query, candidate)
            vehicles = await self._inventory.query(
                self._composer.compose(candidate), limit=self._limit,
            )
            logger.info(
                "RelaxationEngine: level %d (%s) → %d vehicles",
                level, explain(removed) or "no change", len(vehicles),
            )
            if vehicles:
                return FallbackResult(
                    level=level,
                    vehicles=tuple(vehicles),
                    explanation=explain(removed),
                    removed=removed,
                    query=candidate,
                )

        raise ZeroResultError(
            f"No vehicles are available in {query.location} for those dates.",
            explanation=explain(removed),
            attempted_levels=attempted,
        )
