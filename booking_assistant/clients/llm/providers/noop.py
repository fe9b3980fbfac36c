"""No-op LLM client when no provider is configured.

Replies with a valid turn that only asks the guest to continue, so the
deterministic layers (intent detection, budget arithmetic, state machine)
still run end to end without an API key.
"""
from __future__ import annotations

import json
from typing import Any, Dict

from booking_assistant.clients.llm.base import BaseLLMClient, LLMResponse

_NOOP_REPLY = (
    "Our booking assistant is running without a language model right now. "
    "Tell me the city and dates you need and I'll look for cars."
)


class NoOpLLMClient(BaseLLMClient):
    """Placeholder client when no API key is configured."""

    @property
    def provider(self) -> str:
        return "noop"

    async def complete(self, prompt: str, *, model: str | None = None) -> str:
        return json.dumps({"reply": _NOOP_REPLY})

    async def chat(self, messages, *, system=None, tools=None, json_mode=False) -> LLMResponse:
        return LLMResponse(text=json.dumps({"reply": _NOOP_REPLY}))

    async def test_connection(self) -> bool:
        return False


def noop_builder(config: Dict[str, Any]) -> NoOpLLMClient:
    return NoOpLLMClient()
