from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypedDict


class LLMMessage(TypedDict, total=False):
    role: Literal["system", "user", "assistant", "tool"]
    content: Any
    tool_calls: List[Dict[str, Any]]
    tool_call_id: str


@dataclass
class SystemBlock:
    """One block of system instructions. ``cache`` marks a reusable prefix."""

    text: str
    cache: bool = False


@dataclass
class RequestedToolCall:
    """A tool the model asked to run."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass
class LLMResponse:
    text: str = ""
    tool_calls: List[RequestedToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class BaseLLMClient(ABC):
    @property
    @abstractmethod
    def provider(self) -> str:
        ...

    @abstractmethod
    async def complete(self, prompt: str, *, model: str | None = None) -> str:
        ...

    async def chat(
        self,
        messages: List[LLMMessage],
        *,
        system: Optional[List[SystemBlock]] = None,
        tools: Optional[List[dict]] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Multi-turn conversation with system blocks and optional tools.

        Default implementation flattens everything into one prompt and calls
        ``complete()``; tools are ignored. Providers with native chat APIs
        override this.
        """
        parts: List[str] = []
        if system:
            parts.append("[System instructions]\n" + "\n\n".join(b.text for b in system) + "\n")
        for msg in messages:
            content = message_text(msg.get("content"))
            if content:
                parts.append(f"{msg.get('role', 'user')}: {content}")
        return LLMResponse(text=await self.complete("\n".join(parts)))

    @abstractmethod
    async def test_connection(self) -> bool:
        ...


def message_text(content: Any) -> str:
    """Plain text of a message whose content is a string or a list of text blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    return "\n".join(
        str(block.get("text", "")) for block in content if isinstance(block, dict)
    ).strip()
