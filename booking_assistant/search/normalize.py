"""Normalisers over the lookup tables. Pure functions, idempotent by construction."""
from __future__ import annotations

import difflib
import logging
import re
from functools import lru_cache
from typing import Optional, Tuple

from booking_assistant.search.tables import LookupTables

logger = logging.getLogger(__name__)

_PUNCT = re.compile(r"[^\w\s\-']+")
_STATE_SUFFIX = re.compile(r"(?:,?\s+(?:az|arizona))+\s*$")
_FUZZY_CUTOFF = 0.85


@lru_cache(maxsize=1)
def default_tables() -> LookupTables:
    return LookupTables.default()


def _clean(text: str) -> str:
    return " ".join(_PUNCT.sub(" ", text.lower()).split())


def normalize_location(raw: Optional[str], tables: Optional[LookupTables] = None) -> Optional[str]:
    """Resolve a free-text place to ``"City, AZ"``; None when not serviced.

    Order: exact alias → alias without the state suffix → close spelling match.
    """
    if not raw or not raw.strip():
        return None
    tables = tables or default_tables()
    aliases = tables.location_aliases

    direct = " ".join(raw.strip().lower().split())
    if direct in aliases:
        return aliases[direct]

    cleaned = _clean(raw)
    if cleaned in aliases:
        return aliases[cleaned]
    stripped = _STATE_SUFFIX.sub("", cleaned).strip(" ,")
    if stripped in aliases:
        return aliases[stripped]

    close = difflib.get_close_matches(stripped, list(aliases), n=1, cutoff=_FUZZY_CUTOFF)
    if close:
        logger.debug("normalize_location: %r matched %r by spelling", raw, close[0])
        return aliases[close[0]]
    return None


def metro_cities(location: Optional[str], tables: Optional[LookupTables] = None) -> Tuple[str, ...]:
    """All cities served together with *location* (including itself)."""
    tables = tables or default_tables()
    canonical = normalize_location(location, tables)
    if canonical is None:
        return ()
    metro = tables.city_to_metro.get(canonical)
    return tables.metros.get(metro, (canonical,)) if metro else (canonical,)


def is_serviced(location: Optional[str], tables: Optional[LookupTables] = None) -> bool:
    return normalize_location(location, tables) is not None


def normalize_make(raw: Optional[str], tables: Optional[LookupTables] = None) -> Optional[str]:
    """Canonical manufacturer; unknown makes are returned title-cased."""
    if not raw or not raw.strip():
        return None
    tables = tables or default_tables()
    key = " ".join(raw.strip().lower().replace("_", " ").split())
    if key in tables.manufacturer_aliases:
        return tables.manufacturer_aliases[key]
    close = difflib.get_close_matches(key, list(tables.manufacturer_aliases), n=1, cutoff=_FUZZY_CUTOFF)
    if close:
        return tables.manufacturer_aliases[close[0]]
    return raw.strip().title()


def normalize_category(raw: Optional[str], tables: Optional[LookupTables] = None) -> Optional[str]:
    """Canonical category key, or the lowered literal when unmapped."""
    if not raw or not raw.strip():
        return None
    tables = tables or default_tables()
    key = " ".join(raw.strip().lower().split())
    if key in tables.category_aliases:
        return tables.category_aliases[key]
    if key.endswith("s") and key[:-1] in tables.category_aliases:
        return tables.category_aliases[key[:-1]]
    return key


def normalize_transmission(raw: Optional[str], tables: Optional[LookupTables] = None) -> Optional[str]:
    if not raw or not raw.strip():
        return None
    tables = tables or default_tables()
    key = " ".join(raw.strip().lower().split())
    return tables.transmission_aliases.get(key, key)
