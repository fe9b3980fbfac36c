"""Weather at pickup via Open-Meteo (no API key)."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional, Tuple

import httpx

from booking_assistant.core.exceptions import ExternalServiceError, ValidationError
from booking_assistant.search.normalize import default_tables, normalize_location
from booking_assistant.search.tables import LookupTables
from booking_assistant.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"

_COORDINATES: Dict[str, Tuple[float, float]] = {
    "Phoenix, AZ": (33.4484, -112.0740),
    "Scottsdale, AZ": (33.4942, -111.9261),
    "Tempe, AZ": (33.4255, -111.9400),
    "Mesa, AZ": (33.4152, -111.8315),
    "Chandler, AZ": (33.3062, -111.8413),
    "Gilbert, AZ": (33.3528, -111.7890),
    "Glendale, AZ": (33.5387, -112.1860),
    "Tucson, AZ": (32.2226, -110.9747),
    "Sedona, AZ": (34.8697, -111.7610),
    "Flagstaff, AZ": (35.1983, -111.6513),
}
# Metro fallback when a member city has no entry of its own.
_METRO_CENTRE = {"phoenix": "Phoenix, AZ", "tucson": "Tucson, AZ"}


def coordinates_for(location: str, tables: Optional[LookupTables] = None) -> Tuple[float, float]:
    tables = tables or default_tables()
    city = normalize_location(location, tables)
    if city is None:
        raise ValidationError(f"Unknown location {location!r}", details={"field": "location"})
    if city in _COORDINATES:
        return _COORDINATES[city]
    centre = _METRO_CENTRE.get(tables.city_to_metro.get(city, ""))
    if centre is None:
        raise ValidationError(f"No coordinates for {city}", details={"field": "location"})
    return _COORDINATES[centre]


class WeatherClient:
    """Daily forecast for a serviced city."""

    def __init__(
        self,
        base_url: str = OPEN_METEO_URL,
        *,
        timeout_seconds: float = 4.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout_seconds
        self._transport = transport

    async def forecast(self, location: str, day: date) -> Dict[str, Any]:
        lat, lon = coordinates_for(location)
        params = {
            "latitude": lat,
            "longitude": lon,
            "daily": "temperature_2m_max,temperature_2m_min,precipitation_probability_max",
            "temperature_unit": "fahrenheit",
            "timezone": "America/Phoenix",
            "start_date": day.isoformat(),
            "end_date": day.isoformat(),
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._base_url, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                "Weather service unavailable",
                details={"location": location},
                cause=exc,
                recoverable=True,
            ) from exc

        daily = data.get("daily") or {}

        def first(key: str) -> Any:
            values = daily.get(key) or []
            return values[0] if values else None

        return {
            "location": normalize_location(location) or location,
            "date": day.isoformat(),
            "high_f": first("temperature_2m_max"),
            "low_f": first("temperature_2m_min"),
            "precipitation_chance": first("precipitation_probability_max"),
        }


def build_weather_tool(client: WeatherClient, *, timeout_seconds: float | None = None) -> ToolDefinition:
    async def get_weather(location: str, date: str) -> Dict[str, Any]:
        from datetime import date as _date

        return await client.forecast(location, _date.fromisoformat(date[:10]))

    return ToolDefinition(
        name="get_weather",
        description="Forecast high/low and rain chance for a city on the pickup day.",
        parameters={
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "City, AZ"},
                "date": {"type": "string", "description": "YYYY-MM-DD"},
            },
            "required": ["location", "date"],
        },
        handler=get_weather,
        timeout_seconds=timeout_seconds,
    )
