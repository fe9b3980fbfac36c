"""Static instruction tier: rules, examples, output schema and guardrails.

Built once per conversation and reused across turns. Persona and tone come
from EngineConfig as plain text; nothing here interprets them.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from booking_assistant.config.engine import EngineConfig
from booking_assistant.search.tables import LookupTables

logger = logging.getLogger(__name__)

HARD_GUARDRAILS: Tuple[str, ...] = (
    "Never say you are unable to look up vehicles, prices or availability; call the tools instead.",
    "Never suggest chargebacks, disputes, bad reviews or any adversarial action against hosts or the platform.",
    "Never invent vehicles, prices, availability, fees or booking details; only state what tools returned.",
)

BOOKING_RULES: Tuple[str, ...] = (
    "Collect in this order, skipping what is already known: location, dates, vehicle, confirmation.",
    "Only suggest cities from the serviced list; for anything else say we don't serve it yet.",
    "Dates are ISO (YYYY-MM-DD). A one-day rental returns the next day; pickup and return are never the same day.",
    "When the guest gives a total budget over several days, call the calculator tool with the division and "
    "then search with the result as priceMax. Never do arithmetic yourself.",
    "Keep every filter the guest set earlier unless they change or drop it; list dropped ones in clearFilters.",
    "Set noDeposit, instantBook, rideshare and delivery only when the guest says so; leave them out otherwise.",
    "Use action only for START_OVER or READY_FOR_PAYMENT; identity checks are decided by the system.",
)

WORKED_EXAMPLES: Tuple[Tuple[str, str], ...] = (
    (
        "cheap SUV under $50/day in Scottsdale, no deposit",
        '{"reply": "What dates do you need the SUV?", "nextState": "COLLECTING_DATES", '
        '"extractedData": {"location": "Scottsdale, AZ", "vehicleType": "suv"}, '
        '"searchQuery": {"location": "Scottsdale, AZ", "carType": "suv", "priceMax": 50, '
        '"noDeposit": true, "sortByPrice": true}, "mode": "BOOKING"}',
    ),
    (
        "actually any price is fine",
        '{"reply": "Got it, I\'ll show all prices.", "clearFilters": ["price_min", "price_max"]}',
    ),
    (
        "start over",
        '{"reply": "Sure, where would you like to pick up?", "action": "START_OVER"}',
    ),
)

OUTPUT_SCHEMA = {
    "reply": "string, required, what the guest sees",
    "nextState": "INIT | COLLECTING_LOCATION | COLLECTING_DATES | COLLECTING_VEHICLE | CONFIRMING | READY_FOR_PAYMENT",
    "extractedData": {
        "location": "City, AZ", "startDate": "YYYY-MM-DD", "endDate": "YYYY-MM-DD",
        "startTime": "HH:MM", "endTime": "HH:MM", "vehicleType": "string", "vehicleId": "string",
    },
    "action": "START_OVER | READY_FOR_PAYMENT | null",
    "searchQuery": {
        "location": "City, AZ", "pickupDate": "YYYY-MM-DD", "returnDate": "YYYY-MM-DD",
        "priceMin": "number", "priceMax": "number", "carType": "string", "make": "string",
        "model": "string", "seats": "integer", "transmission": "automatic | manual",
        "noDeposit": "boolean", "instantBook": "boolean", "rideshare": "boolean",
        "delivery": "boolean", "sortByPrice": "boolean",
    },
    "clearFilters": ["searchQuery field names the guest dropped"],
    "mode": "GENERAL | BOOKING | PERSONAL | HOST",
}


@dataclass(frozen=True)
class StaticInstructions:
    bot_name: str
    persona: str
    tone_rules: Tuple[str, ...]
    serviced_cities: Tuple[str, ...]
    rules: Tuple[str, ...] = BOOKING_RULES
    examples: Tuple[Tuple[str, str], ...] = WORKED_EXAMPLES
    guardrails: Tuple[str, ...] = HARD_GUARDRAILS
    schema: dict = field(default_factory=lambda: dict(OUTPUT_SCHEMA), compare=False, hash=False)

    def render(self) -> str:
        lines: List[str] = [f"Your name is {self.bot_name}.", self.persona, ""]
        if self.tone_rules:
            lines.append("## Tone")
            lines.extend(f"- {r}" for r in self.tone_rules)
            lines.append("")
        lines.append("## Booking rules")
        lines.extend(f"- {r}" for r in self.rules)
        lines.append("")
        lines.append("## Serviced cities")
        lines.append(", ".join(self.serviced_cities))
        lines.append("")
        lines.append("## Hard rules")
        lines.extend(f"- {g}" for g in self.guardrails)
        lines.append("")
        lines.append("## Output")
        lines.append("Respond with exactly one JSON object (no prose around it) shaped like:")
        lines.append(json.dumps(self.schema, indent=2))
        lines.append("")
        lines.append("## Examples")
        for guest, answer in self.examples:
            lines.append(f"Guest: {guest}")
            lines.append(f"Output: {answer}")
        return "\n".join(lines)

    def fingerprint(self) -> str:
        payload = json.dumps(
            [self.bot_name, self.persona, self.tone_rules, self.serviced_cities,
             self.rules, self.examples, self.guardrails, self.schema],
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def build_static_instructions(config: EngineConfig, tables: LookupTables) -> StaticInstructions:
    return StaticInstructions(
        bot_name=config.bot_name,
        persona=config.persona,
        tone_rules=tuple(config.tone_rules),
        serviced_cities=tuple(tables.serviced_cities),
    )


class StaticInstructionCache:
    """LRU cache of rendered static instructions with TTL expiry.

    Keyed on (conversation id, config fingerprint) so a config change
    invalidates every conversation's entry.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: int = 3600) -> None:
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._store: "OrderedDict[Tuple[str, str], Tuple[str, float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, conversation_id: str, fingerprint: str) -> Optional[str]:
        key = (conversation_id, fingerprint)
        entry = self._store.get(key)
        if entry is None:
            return None
        text, ts = entry
        if time.monotonic() - ts > self._ttl:
            self._store.pop(key, None)
            return None
        self._store.move_to_end(key)
        return text

    def put(self, conversation_id: str, fingerprint: str, text: str) -> None:
        key = (conversation_id, fingerprint)
        self._store[key] = (text, time.monotonic())
        self._store.move_to_end(key)
        while len(self._store) > self._max_size:
            self._store.popitem(last=False)

    def get_or_build(self, conversation_id: str, instructions: StaticInstructions) -> str:
        fingerprint = instructions.fingerprint()
        cached = self.get(conversation_id, fingerprint)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        text = instructions.render()
        self.put(conversation_id, fingerprint, text)
        logger.debug("StaticInstructionCache: built for %s (%d chars)", conversation_id, len(text))
        return text

    def clear(self) -> None:
        self._store.clear()

    @property
    def size(self) -> int:
        return len(self._store)
