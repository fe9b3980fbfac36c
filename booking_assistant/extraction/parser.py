"""Parse and validate the structured extractor's raw text.

The model is asked for one JSON object (see ``context/static.py`` for the
schema). Anything that is not valid JSON matching that schema raises
ExtractionError; nothing partial is ever returned.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from booking_assistant.booking.types import (
    BookingState,
    CandidateTurn,
    ConversationMode,
    ExtractedFields,
    SearchQuery,
    ToolCall,
    TurnAction,
)
from booking_assistant.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake(name: str) -> str:
    """``priceMax`` → ``price_max``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", name.strip()).lower()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Lenient(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("*", mode="before")
    @classmethod
    def _blanks(cls, value: Any) -> Any:
        return _blank_to_none(value)


class ExtractedDataModel(_Lenient):
    location: Optional[str] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    vehicle_type: Optional[str] = Field(default=None, alias="vehicleType")
    vehicle_id: Optional[str] = Field(default=None, alias="vehicleId")

    def to_fields(self) -> ExtractedFields:
        return ExtractedFields(**self.model_dump())


class SearchQueryModel(_Lenient):
    location: Optional[str] = None
    pickup_date: Optional[date] = Field(default=None, alias="pickupDate")
    return_date: Optional[date] = Field(default=None, alias="returnDate")
    price_min: Optional[float] = Field(default=None, alias="priceMin", ge=0)
    price_max: Optional[float] = Field(default=None, alias="priceMax", ge=0)
    car_type: Optional[str] = Field(default=None, alias="carType")
    make: Optional[str] = None
    model: Optional[str] = None
    seats: Optional[int] = Field(default=None, ge=1, le=15)
    transmission: Optional[str] = None
    no_deposit: Optional[bool] = Field(default=None, alias="noDeposit")
    instant_book: Optional[bool] = Field(default=None, alias="instantBook")
    rideshare: Optional[bool] = None
    delivery: Optional[bool] = None
    sort_by_price: Optional[bool] = Field(default=None, alias="sortByPrice")

    def to_query(self) -> SearchQuery:
        return SearchQuery(**self.model_dump())


class ToolCallModel(BaseModel):
    name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)


class CandidateTurnModel(_Lenient):
    reply: str = Field(..., min_length=1)
    next_state: Optional[BookingState] = Field(default=None, alias="nextState")
    extracted_data: Optional[ExtractedDataModel] = Field(default=None, alias="extractedData")
    action: Optional[TurnAction] = None
    search_query: Optional[SearchQueryModel] = Field(default=None, alias="searchQuery")
    mode: Optional[ConversationMode] = None
    tool_calls: List[ToolCallModel] = Field(default_factory=list, alias="toolCalls")
    clear_filters: List[str] = Field(default_factory=list, alias="clearFilters")

    @field_validator("next_state", "action", "mode", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) and value.strip() else _blank_to_none(value)

    @field_validator("tool_calls", "clear_filters", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def extract_json_object(raw: str) -> Dict[str, Any]:
    """First JSON object in *raw*: fenced block, whole text, or outermost braces."""
    text = (raw or "").strip()
    if not text:
        raise ExtractionError("Extractor returned an empty response")

    candidates: List[str] = []
    fenced = _FENCE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text)
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    last_error: Optional[Exception] = None
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        if isinstance(data, dict):
            return data
    raise ExtractionError(
        "Extractor output is not a JSON object",
        details={"preview": text[:200]},
        cause=last_error,
    )


def parse_candidate_turn(raw: str) -> CandidateTurn:
    """Validate raw extractor text into a CandidateTurn or raise ExtractionError."""
    data = extract_json_object(raw)
    try:
        model = CandidateTurnModel.model_validate(data)
    except PydanticValidationError as exc:
        logger.warning("parse_candidate_turn: %d schema errors", exc.error_count())
        raise ExtractionError(
            "Extractor output does not match the turn schema",
            details={"errors": [
                {"loc": ".".join(str(p) for p in e["loc"]), "msg": e["msg"]} for e in exc.errors()
            ]},
            cause=exc,
        ) from exc

    return CandidateTurn(
        reply=model.reply.strip(),
        next_state=model.next_state,
        extracted=model.extracted_data.to_fields() if model.extracted_data else ExtractedFields(),
        action=model.action,
        search_query=model.search_query.to_query() if model.search_query else None,
        mode=model.mode,
        tool_calls=[ToolCall(name=t.name, arguments=dict(t.arguments)) for t in model.tool_calls],
        cleared_filters=[_snake(str(name)) for name in model.clear_filters],
    )
