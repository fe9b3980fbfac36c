"""
LLM clients: base, registry.

Provider registration: default_registry.register(provider, builder).
"""
from booking_assistant.clients.llm.base import (
    BaseLLMClient,
    LLMMessage,
    LLMResponse,
    RequestedToolCall,
    SystemBlock,
)
from booking_assistant.clients.llm.registry import LLMRegistry, build_llm_client, default_registry

__all__ = [
    "BaseLLMClient",
    "LLMMessage",
    "LLMResponse",
    "RequestedToolCall",
    "SystemBlock",
    "LLMRegistry",
    "build_llm_client",
    "default_registry",
]
