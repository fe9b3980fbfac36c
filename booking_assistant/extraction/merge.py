"""Field-level merge of the two extraction layers and of successive turns.

Precedence, highest first:

1. the structured extractor's explicit value for this turn (True *or* False),
2. a deterministic signal found in this turn's message,
3. the filter carried forward from earlier turns.

A field only changes when a higher tier provides a value; ``None`` never
overwrites anything. Fields the guest explicitly drops are passed as
``cleared``.
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Iterable, Optional

from booking_assistant.booking.types import BookingSession, DetectedIntents, SearchQuery
from booking_assistant.extraction.intent_detector import BudgetSignal

logger = logging.getLogger(__name__)

_QUERY_FIELDS = tuple(f.name for f in fields(SearchQuery))


def merge_intents(query: Optional[SearchQuery], intents: DetectedIntents) -> SearchQuery:
    """Backfill unset booleans and an unset category from detector signals."""
    query = query or SearchQuery()
    updates = {}
    for name in SearchQuery.BOOLEAN_FILTERS:
        if getattr(query, name) is None and getattr(intents, name, False):
            updates[name] = True
    if query.car_type is None and intents.category:
        updates["car_type"] = intents.category
    if intents.lowest_price and query.sort_by_price is None:
        updates["sort_by_price"] = True
    if updates:
        logger.debug("merge_intents: backfilled %s", sorted(updates))
    return replace(query, **updates) if updates else query


def apply_budget(query: SearchQuery, budget: Optional[BudgetSignal]) -> SearchQuery:
    """Gap-fill ``price_max`` from a per-day budget phrase.

    Totals over several days are not divided here; that goes through the
    calculator tool.
    """
    if budget is None or budget.daily_max is None or query.price_max is not None:
        return query
    return replace(query, price_max=budget.daily_max)


def merge_search_queries(
    previous: Optional[SearchQuery],
    incoming: Optional[SearchQuery],
    *,
    cleared: Iterable[str] = (),
) -> SearchQuery:
    """Carry every established filter forward unless *incoming* sets it."""
    base = previous or SearchQuery()
    drop = [name for name in cleared if name in _QUERY_FIELDS]
    if drop:
        base = base.without(*drop)
    if incoming is None:
        return base
    updates = {
        name: getattr(incoming, name)
        for name in _QUERY_FIELDS
        if getattr(incoming, name) is not None
    }
    return replace(base, **updates) if updates else base


def with_session_floor(query: SearchQuery, session: BookingSession) -> SearchQuery:
    """Location and dates come from the validated session whenever it has them."""
    return replace(
        query,
        location=session.location or query.location,
        pickup_date=session.start_date or query.pickup_date,
        return_date=session.end_date or query.return_date,
    )


def merge_turn_query(
    previous: Optional[SearchQuery],
    extracted: Optional[SearchQuery],
    intents: DetectedIntents,
    *,
    budget: Optional[BudgetSignal] = None,
    cleared: Iterable[str] = (),
) -> SearchQuery:
    """This turn's query: backfill the extractor's output, then merge over the carried filters.

    A cleared ``price_max`` also discards this turn's budget phrase.
    """
    cleared = tuple(cleared)
    if "price_max" in cleared:
        budget = None
    incoming = apply_budget(merge_intents(extracted, intents), budget)
    return merge_search_queries(previous, incoming, cleared=cleared)
