"""LLM provider implementations."""
from booking_assistant.clients.llm.providers.noop import NoOpLLMClient, noop_builder
from booking_assistant.clients.llm.providers.openai import OpenAILLMClient, openai_builder

__all__ = ["NoOpLLMClient", "noop_builder", "OpenAILLMClient", "openai_builder"]
