"""Pure validation helpers: dates, times, locations and message hygiene.

Nothing here touches the session. Callers validate first and merge only what
passed, so a rejected value never replaces a good one.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from booking_assistant.core.exceptions import ValidationError
from booking_assistant.search.normalize import normalize_location
from booking_assistant.search.tables import LookupTables

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


# ── Dates & times ─────────────────────────────────────────────────────────────


def one_day_rental(start: date) -> Tuple[date, date]:
    """A single-day rental ends the next calendar day."""
    return start, start + timedelta(days=1)


def validate_date_range(
    start: Optional[date],
    end: Optional[date],
    *,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """Return ``(start, end)`` or raise ValidationError.

    ``end`` missing means a one-day rental. ``start == end`` is never valid.
    """
    if start is None:
        raise ValidationError("Pickup date is required", details={"field": "start_date"})
    if end is None:
        start, end = one_day_rental(start)
    today = today or date.today()
    if start < today:
        raise ValidationError(
            "Pickup date is in the past",
            details={"field": "start_date", "value": start.isoformat(), "today": today.isoformat()},
        )
    if end <= start:
        raise ValidationError(
            "Return date must be at least one day after pickup",
            details={"field": "end_date", "start": start.isoformat(), "end": end.isoformat()},
        )
    return start, end


def validate_return_date(end: date, *, today: Optional[date] = None) -> date:
    """A return date given before any pickup must still leave room for a pickup from today."""
    today = today or date.today()
    if end <= today:
        raise ValidationError(
            "Return date must be after today",
            details={"field": "end_date", "value": end.isoformat(), "today": today.isoformat()},
        )
    return end


_TIME = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*([ap]\.?m\.?)?\s*$", re.IGNORECASE)


def validate_time(raw: Optional[str]) -> Optional[str]:
    """Normalise ``"9am"``, ``"9:30 pm"``, ``"14:00"`` to ``"HH:MM"``."""
    if raw is None or not str(raw).strip():
        return None
    m = _TIME.match(str(raw))
    if not m:
        raise ValidationError(f"Unrecognised time {raw!r}", details={"field": "time", "value": raw})
    hour, minute = int(m.group(1)), int(m.group(2) or 0)
    meridiem = (m.group(3) or "").lower().replace(".", "")
    if meridiem:
        if not 1 <= hour <= 12:
            raise ValidationError(f"Unrecognised time {raw!r}", details={"field": "time", "value": raw})
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        raise ValidationError(f"Unrecognised time {raw!r}", details={"field": "time", "value": raw})
    return f"{hour:02d}:{minute:02d}"


# ── Locations ─────────────────────────────────────────────────────────────────


def validate_location(raw: Optional[str], tables: Optional[LookupTables] = None) -> str:
    """Canonical ``"City, AZ"`` for a serviced place, else ValidationError."""
    if raw is None or not raw.strip():
        raise ValidationError("Location is required", details={"field": "location"})
    canonical = normalize_location(raw, tables)
    if canonical is None:
        raise ValidationError(
            f"We don't serve {raw.strip()} yet",
            details={"field": "location", "value": raw.strip()},
        )
    return canonical


# ── Message hygiene ───────────────────────────────────────────────────────────


class SecurityFlag(str, Enum):
    """Audit tags attached to a turn. The message is sanitised, not rejected."""
    PROMPT_INJECTION = "PROMPT_INJECTION"
    SPAM_REPETITION = "SPAM_REPETITION"
    SPAM_LINKS = "SPAM_LINKS"
    OVERLONG = "OVERLONG"
    CONTROL_CHARS = "CONTROL_CHARS"


_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bignore\s+(?:all\s+|any\s+)?(?:the\s+)?(?:previous|prior|above)\s+(?:instructions|rules|prompts?)",
        r"\bdisregard\s+(?:all\s+|your\s+)?(?:previous\s+|prior\s+)?(?:instructions|rules)",
        r"\b(?:reveal|show|print|repeat)\s+(?:me\s+)?(?:your|the)\s+(?:system\s+)?(?:prompt|instructions)",
        r"\byou\s+are\s+now\s+(?:a|an|in)\b",
        r"\b(?:developer|god|jailbreak)\s+mode\b",
        r"</?\s*(?:system|assistant|instructions?)\s*>",
        r"<\|[a-z_]+\|>",
        r"^\s*(?:system|assistant)\s*:",
    )
]
_ROLE_TOKENS = re.compile(r"<\|[a-z_]+\|>|</?\s*(?:system|assistant|instructions?)\s*>", re.IGNORECASE)
_URL = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
_REPEATED_CHAR = re.compile(r"(.)\1{14,}")
_MAX_LINKS = 2


@dataclass(frozen=True)
class SanitizedMessage:
    text: str
    flags: Tuple[SecurityFlag, ...] = ()

    @property
    def flag_names(self) -> List[str]:
        return [f.value for f in self.flags]


def detect_security_flags(text: str) -> List[SecurityFlag]:
    flags: List[SecurityFlag] = []
    if any(p.search(text) for p in _INJECTION_PATTERNS):
        flags.append(SecurityFlag.PROMPT_INJECTION)
    words = text.lower().split()
    if _REPEATED_CHAR.search(text) or (
        len(words) >= 8 and len(set(words)) <= len(words) // 4
    ):
        flags.append(SecurityFlag.SPAM_REPETITION)
    if len(_URL.findall(text)) > _MAX_LINKS:
        flags.append(SecurityFlag.SPAM_LINKS)
    return flags


def sanitize_message(text: Optional[str], *, max_length: int = MAX_MESSAGE_LENGTH) -> SanitizedMessage:
    """Strip control characters and role markers, cap length, collect flags.

    Raises:
        ValidationError: the message is missing or empty after cleaning.
    """
    if text is None or not isinstance(text, str):
        raise ValidationError("Message is required", details={"field": "message"})

    flags = detect_security_flags(text)
    cleaned_chars = [
        ch for ch in text
        if ch in "\n\t" or unicodedata.category(ch)[0] != "C"
    ]
    if len(cleaned_chars) != len(text):
        flags.append(SecurityFlag.CONTROL_CHARS)
    cleaned = "".join(cleaned_chars)
    if SecurityFlag.PROMPT_INJECTION in flags:
        cleaned = _ROLE_TOKENS.sub(" ", cleaned)
    cleaned = re.sub(r"[ \t]+", " ", cleaned).strip()

    if len(cleaned) > max_length:
        flags.append(SecurityFlag.OVERLONG)
        cleaned = cleaned[:max_length].rstrip()
    if not cleaned:
        raise ValidationError("Message is empty", details={"field": "message"})
    if flags:
        logger.warning("sanitize_message: flags=%s", [f.value for f in flags])
    return SanitizedMessage(text=cleaned, flags=tuple(flags))
