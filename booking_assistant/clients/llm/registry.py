"""
LLM provider registry: map provider name -> build client from config dict.

Register your provider, then build clients from EngineConfig with build_llm_client().
"""
from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict

from booking_assistant.clients.llm.base import BaseLLMClient
from booking_assistant.config.engine import EngineConfig
from booking_assistant.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class LLMRegistry:
    """Maps provider id to a builder that takes config dict and returns BaseLLMClient."""

    def __init__(self) -> None:
        self._builders: Dict[str, Callable[[Dict[str, Any]], BaseLLMClient]] = {}

    def register(self, provider: str, builder: Callable[[Dict[str, Any]], BaseLLMClient]) -> None:
        self._builders[provider] = builder

    def get(self, provider: str) -> Callable[[Dict[str, Any]], BaseLLMClient] | None:
        return self._builders.get(provider)

    @property
    def providers(self) -> list:
        return sorted(self._builders)

    def build(self, provider: str, config: Dict[str, Any]) -> BaseLLMClient:
        """Build a client for this provider. Raises ConfigurationError if unknown."""
        builder = self._builders.get(provider)
        if builder is None:
            raise ConfigurationError(
                f"Unknown LLM provider: {provider!r}",
                details={"registered": self.providers},
            )
        return builder(config)


# Default registry with all built-in providers pre-registered.
default_registry = LLMRegistry()

from booking_assistant.clients.llm.providers.noop import noop_builder  # noqa: E402
from booking_assistant.clients.llm.providers.openai import openai_builder  # noqa: E402

default_registry.register("openai", openai_builder)
default_registry.register("noop", noop_builder)


def build_llm_client(config: EngineConfig, registry: LLMRegistry | None = None) -> BaseLLMClient:
    """Client for ``config.llm_provider``; falls back to noop when OpenAI has no key."""
    registry = registry or default_registry
    provider = config.llm_provider
    if provider == "openai" and not os.environ.get("OPENAI_API_KEY"):
        logger.warning("build_llm_client: OPENAI_API_KEY not set, using noop client")
        provider = "noop"
    return registry.build(provider, {"model": config.model_id, "max_tokens": config.max_tokens})
