"""OpenAI chat-completions provider and its registry builder."""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from booking_assistant.clients.llm.base import (
    BaseLLMClient,
    LLMMessage,
    LLMResponse,
    RequestedToolCall,
    SystemBlock,
    message_text,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAILLMClient(BaseLLMClient):
    """Chat client for OpenAI and OpenAI-compatible endpoints.

    OpenAI caches long identical prompt prefixes itself, so the system blocks
    are joined in order into a single system message and cache marks are
    dropped.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = AsyncOpenAI(api_key=api_key or os.environ.get("OPENAI_API_KEY"), base_url=base_url)

    @property
    def provider(self) -> str:
        return "openai"

    def _request(self, wire: List[Dict[str, Any]], model: Optional[str] = None) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model or self._model,
            "messages": wire,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            request["max_tokens"] = self._max_tokens
        return request

    @staticmethod
    def to_wire(messages: List[LLMMessage], system: Optional[List[SystemBlock]] = None) -> List[Dict[str, Any]]:
        """Conversation in chat-completions form, system prompt first."""
        wire: List[Dict[str, Any]] = []
        if system:
            wire.append({"role": "system", "content": "\n\n".join(block.text for block in system)})
        for msg in messages:
            item: Dict[str, Any] = {"role": msg.get("role", "user"), "content": message_text(msg.get("content"))}
            for key in ("tool_calls", "tool_call_id"):
                if msg.get(key):
                    item[key] = msg[key]
            wire.append(item)
        return wire

    @staticmethod
    def _tool_calls(message: Any) -> List[RequestedToolCall]:
        calls: List[RequestedToolCall] = []
        for call in getattr(message, "tool_calls", None) or []:
            name = call.function.name
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("OpenAILLMClient: tool %r sent arguments that are not JSON", name)
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}
            calls.append(RequestedToolCall(name=name, arguments=arguments, call_id=call.id))
        return calls

    async def complete(self, prompt: str, *, model: Optional[str] = None) -> str:
        request = self._request([{"role": "user", "content": prompt}], model)
        response = await self._client.chat.completions.create(**request)
        return response.choices[0].message.content or ""

    async def chat(
        self,
        messages: List[LLMMessage],
        *,
        system: Optional[List[SystemBlock]] = None,
        tools: Optional[List[dict]] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        request = self._request(self.to_wire(messages, system))
        if tools:
            request.update(tools=tools, tool_choice="auto")
        elif json_mode:
            request["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**request)
        message = response.choices[0].message
        usage = getattr(response, "usage", None)
        return LLMResponse(
            text=message.content or "",
            tool_calls=self._tool_calls(message),
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    async def test_connection(self) -> bool:
        try:
            await self._client.models.list()
        except Exception as exc:
            logger.warning("OpenAILLMClient: connection test failed: %s", exc)
            return False
        return True


def openai_builder(config: Dict[str, Any]) -> OpenAILLMClient:
    """Registry builder; ``config`` holds model, api_key, base_url, temperature, max_tokens."""
    max_tokens = config.get("max_tokens")
    return OpenAILLMClient(
        model=config.get("model") or DEFAULT_MODEL,
        api_key=config.get("api_key"),
        base_url=config.get("base_url"),
        temperature=float(config.get("temperature", 0.0)),
        max_tokens=int(max_tokens) if max_tokens is not None else None,
    )
