"""Deterministic phrase signals, no LLM calls.

High-precision patterns only. A signal that fires is used to backfill
filters the structured extractor left unset; it never removes anything.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Sequence

from booking_assistant.booking.types import DetectedIntents

logger = logging.getLogger(__name__)

_DEFAULT_SIGNALS: Dict[str, Sequence[str]] = {
    "no_deposit": (
        r"\bno[\s-]+deposits?\b",
        r"\bwithout\s+(?:a\s+|any\s+)?deposits?\b",
        r"\b(?:zero|\$?0)\s+deposits?\b",
        r"\bdeposit[\s-]*free\b",
        r"\bdon'?t\s+(?:want\s+to\s+)?(?:pay|put\s+down|leave)\s+(?:a\s+|any\s+)?deposits?\b",
        r"\bskip\s+the\s+deposit\b",
    ),
    "lowest_price": (
        r"\bcheap(?:est|er)?\b",
        r"\blowest\s+(?:price|rate|cost)\b",
        r"\b(?:most\s+)?affordable\b",
        r"\binexpensive\b",
        r"\bon\s+a\s+budget\b",
        r"\bbest\s+(?:price|deal)\b",
    ),
    "instant_book": (
        r"\binstant(?:ly)?[\s-]*book(?:ing|able)?\b",
        r"\bbook\s+(?:it\s+)?(?:right\s+)?now\b",
        r"\b(?:asap|right\s+away|immediately|urgent(?:ly)?)\b",
        r"\bno\s+(?:host\s+)?approval\b",
    ),
    "delivery": (
        r"\b(?:car|vehicle)\s+delivery\b",
        r"\bdelivery\s+to\b",
        r"\bdeliver(?:ed)?\s+(?:it\s+|the\s+car\s+)?to\s+(?:me|my|the)\b",
        r"\bdrop(?:ped)?[\s-]off\s+at\s+my\b",
        r"\bbring\s+(?:it|the\s+car)\s+to\b",
    ),
    "luxury": (
        r"\bluxur(?:y|ious)\b",
        r"\bpremium\b",
        r"\bhigh[\s-]end\b",
        r"\bupscale\b",
    ),
    "electric": (
        r"\belectric\b",
        r"\bevs?\b",
        r"\bplug[\s-]in\b",
        r"\bzero[\s-]emissions?\b",
    ),
    "suv": (
        r"\bsuvs?\b",
        r"\bcrossovers?\b",
        r"\bsport\s+utility\b",
    ),
    "rideshare": (
        r"\b(?:uber|lyft|doordash|door\s+dash|instacart|grubhub)\b",
        r"\bride[\s-]?shar(?:e|ing)\b",
        r"\bgig\s+(?:work|driving|economy)\b",
    ),
}

_MONEY = r"\$\s?(\d[\d,]*(?:\.\d{1,2})?)|(\d+(?:\.\d{1,2})?)\s?(?:dollars|bucks|usd)"
_PER_DAY = re.compile(
    rf"(?:under|below|less\s+than|max(?:imum)?|up\s+to|at\s+most|around|about|~)?\s*(?:{_MONEY})\s*"
    r"(?:/|per|a|an|each)\s*(?:day|daily|night)\b",
    re.IGNORECASE,
)
_TOTAL_FOR_DAYS = re.compile(
    rf"(?:{_MONEY})\s*(?:total\s+)?(?:for|over|across)\s+(\d{{1,3}})\s*(?:days?|nights?)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class BudgetSignal:
    """Price phrasing found in the message.

    ``daily_max`` is set for "$50/day"; ``total`` and ``days`` for "$350 for 4
    days", whose division is left to the calculator tool.
    """

    daily_max: Optional[float] = None
    total: Optional[float] = None
    days: Optional[int] = None

    @property
    def needs_division(self) -> bool:
        return self.total is not None and bool(self.days)

    @property
    def expression(self) -> Optional[str]:
        if not self.needs_division:
            return None
        return f"{self.total:g} / {self.days}"


def _amount(match: "re.Match[str]", first_group: int) -> float:
    raw = match.group(first_group) or match.group(first_group + 1)
    return float(raw.replace(",", ""))


class IntentDetector:
    """Compiled phrase table → DetectedIntents.

    ``extra_signals`` adds patterns per signal name (e.g. from config); names
    outside DetectedIntents are rejected.
    """

    def __init__(self, extra_signals: Optional[Dict[str, Sequence[str]]] = None) -> None:
        table: Dict[str, List[str]] = {k: list(v) for k, v in _DEFAULT_SIGNALS.items()}
        for name, patterns in (extra_signals or {}).items():
            if name not in table:
                raise ValueError(f"Unknown intent signal {name!r}")
            table[name].extend(patterns)
        self._signals: Dict[str, List[Pattern[str]]] = {
            name: [re.compile(p, re.IGNORECASE) for p in patterns]
            for name, patterns in table.items()
        }

    @property
    def signal_names(self) -> List[str]:
        return list(self._signals)

    def detect(self, message: str) -> DetectedIntents:
        flags: Dict[str, bool] = {}
        matched: List[str] = []
        for name, patterns in self._signals.items():
            for pattern in patterns:
                m = pattern.search(message or "")
                if m:
                    flags[name] = True
                    matched.append(m.group(0).strip())
                    break
        if matched:
            logger.debug("IntentDetector: %s via %s", sorted(flags), matched)
        return DetectedIntents(matched=tuple(matched), **flags)

    def detect_budget(self, message: str) -> Optional[BudgetSignal]:
        text = message or ""
        total = _TOTAL_FOR_DAYS.search(text)
        if total:
            return BudgetSignal(total=_amount(total, 1), days=int(total.group(3)))
        per_day = _PER_DAY.search(text)
        if per_day:
            return BudgetSignal(daily_max=_amount(per_day, 1))
        return None
