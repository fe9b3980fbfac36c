"""Vehicle search tool: composer + relaxation behind one capability."""
from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from booking_assistant.booking.types import FallbackResult, SearchQuery, VehicleSummary
from booking_assistant.core.exceptions import ValidationError
from booking_assistant.extraction.parser import SearchQueryModel
from booking_assistant.search.relaxation import RelaxationEngine
from booking_assistant.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search_vehicles"


def query_from_arguments(arguments: Dict[str, Any]) -> SearchQuery:
    """Tool arguments (camelCase or snake_case) → SearchQuery."""
    try:
        return SearchQueryModel.model_validate(arguments or {}).to_query()
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid search arguments",
            details={"field": "searchQuery", "errors": [e["msg"] for e in exc.errors()]},
            cause=exc,
        ) from exc


def _vehicle_payload(v: VehicleSummary) -> Dict[str, Any]:
    return {
        "id": v.id,
        "title": v.title,
        "daily_rate": v.daily_rate,
        "city": v.city,
        "car_type": v.car_type,
        "rating": v.rating,
        "trip_count": v.trip_count,
        "deposit_amount": v.deposit_amount,
        "instant_book": v.instant_book,
    }


def result_payload(result: FallbackResult) -> Dict[str, Any]:
    return {
        "count": len(result.vehicles),
        "fallback_level": result.level,
        "explanation": result.explanation,
        "removed": list(result.removed),
        "vehicles": [_vehicle_payload(v) for v in result.vehicles],
        "query": result.query.to_dict() if result.query else None,
    }


class VehicleSearch:
    """Callable search capability. ``run`` is used directly by the executor."""

    def __init__(self, engine: RelaxationEngine, *, timeout_seconds: float | None = None) -> None:
        self._engine = engine
        self._timeout = timeout_seconds

    async def run(self, query: SearchQuery) -> FallbackResult:
        result = await self._engine.search(query)
        logger.info(
            "VehicleSearch: %s → %d vehicles (level %d)",
            query.location, len(result.vehicles), result.level,
        )
        return result

    async def _handle(self, **arguments: Any) -> Dict[str, Any]:
        return result_payload(await self.run(query_from_arguments(arguments)))

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=SEARCH_TOOL_NAME,
            description=(
                "Search available vehicles. Location and dates default to the session's. "
                "Filters set in earlier turns are kept automatically; pass only what changes. "
                "If nothing matches, filters are loosened step by step and the result says which."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "location": {"type": "string", "description": "City, AZ"},
                    "pickupDate": {"type": "string", "description": "YYYY-MM-DD"},
                    "returnDate": {"type": "string", "description": "YYYY-MM-DD"},
                    "priceMin": {"type": "number"},
                    "priceMax": {"type": "number", "description": "Daily rate ceiling"},
                    "carType": {"type": "string", "description": "suv, electric, luxury, ..."},
                    "make": {"type": "string"},
                    "model": {"type": "string"},
                    "seats": {"type": "integer"},
                    "transmission": {"type": "string", "enum": ["automatic", "manual"]},
                    "noDeposit": {"type": "boolean"},
                    "instantBook": {"type": "boolean"},
                    "rideshare": {"type": "boolean"},
                    "delivery": {"type": "boolean"},
                    "sortByPrice": {"type": "boolean"},
                },
            },
            handler=self._handle,
            critical=True,
            timeout_seconds=self._timeout,
        )
