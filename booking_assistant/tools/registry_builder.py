"""Build the ToolRegistry from built-in tools and engine configuration."""
from __future__ import annotations

import logging
from typing import Optional

from booking_assistant.config.engine import EngineConfig
from booking_assistant.tools.builtin.calculator import CALCULATOR_TOOL
from booking_assistant.tools.builtin.reviews import ReviewSource, build_reviews_tool
from booking_assistant.tools.builtin.risk import build_risk_tool
from booking_assistant.tools.builtin.search import VehicleSearch
from booking_assistant.tools.builtin.weather import WeatherClient, build_weather_tool
from booking_assistant.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_tool_registry(
    config: EngineConfig,
    *,
    search: VehicleSearch,
    reviews: Optional[ReviewSource] = None,
    weather: Optional[WeatherClient] = None,
) -> ToolRegistry:
    """Build and return a fully populated ToolRegistry.

    Always registers:
      - calculator
      - search_vehicles

    Conditionally registers:
      - get_reviews   (if a review source is provided)
      - get_weather   (if config.weather_enabled)
      - assess_risk   (if config.risk_assessment_enabled)
    """
    registry = ToolRegistry()
    registry.register(CALCULATOR_TOOL)
    registry.register(search.definition())

    if reviews is not None:
        registry.register(build_reviews_tool(reviews, timeout_seconds=config.tool_timeout_seconds))

    if config.weather_enabled:
        client = weather or WeatherClient(
            config.weather_base_url, timeout_seconds=config.tool_timeout_seconds,
        )
        registry.register(build_weather_tool(client, timeout_seconds=config.tool_timeout_seconds))

    if config.risk_assessment_enabled:
        registry.register(build_risk_tool(timeout_seconds=config.tool_timeout_seconds))

    logger.info(
        "registry_builder: built registry with %d tools: %s",
        len(registry.names),
        registry.names,
    )
    return registry
