"""Assemble the extractor request: cached static tier + dynamic tier + trimmed history."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from booking_assistant.booking.types import (
    BookingSession,
    CallerAuthState,
    ConversationTurn,
    FallbackResult,
    ToolCall,
    VehicleSummary,
)
from booking_assistant.clients.llm.base import LLMMessage, SystemBlock
from booking_assistant.config.engine import EngineConfig
from booking_assistant.context.dynamic import build_dynamic_context
from booking_assistant.context.static import StaticInstructionCache, build_static_instructions
from booking_assistant.search.normalize import default_tables
from booking_assistant.search.tables import LookupTables

logger = logging.getLogger(__name__)

CACHE_MARK = {"type": "ephemeral"}
_MIN_MESSAGES_FOR_MARK = 4


@dataclass
class AssembledContext:
    system: List[SystemBlock]
    messages: List[LLMMessage]
    trimmed: int = 0
    """How many history messages were dropped to fit ``max_context_messages``."""

    def with_tool_exchange(
        self,
        calls: Sequence[ToolCall],
        results: Sequence[Dict[str, Any]],
        *,
        assistant_text: str = "",
    ) -> "AssembledContext":
        """Append the assistant's tool request and one tool message per result."""
        messages = list(self.messages)
        messages.append({
            "role": "assistant",
            "content": assistant_text,
            "tool_calls": [
                {
                    "id": call.call_id or f"call_{i}",
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments, default=str)},
                }
                for i, call in enumerate(calls)
            ],
        })
        for i, (call, result) in enumerate(zip(calls, results)):
            messages.append({
                "role": "tool",
                "tool_call_id": call.call_id or f"call_{i}",
                "content": json.dumps(result, default=str),
            })
        return replace(self, messages=messages)


def trim_history(messages: Sequence[LLMMessage], max_messages: int) -> List[LLMMessage]:
    """Keep the newest *max_messages*, starting on a user message."""
    kept = list(messages)[-max_messages:] if max_messages > 0 else []
    while kept and kept[0].get("role") != "user":
        kept.pop(0)
    return kept


def mark_conversation_prefix(messages: Sequence[LLMMessage]) -> List[LLMMessage]:
    """Cache-mark the second-to-last user message once there are at least four messages."""
    out = [dict(m) for m in messages]
    if len(out) < _MIN_MESSAGES_FOR_MARK:
        return out  # type: ignore[return-value]
    seen = 0
    for i in range(len(out) - 1, -1, -1):
        if out[i].get("role") != "user":
            continue
        seen += 1
        if seen == 2:
            text = out[i].get("content")
            out[i]["content"] = [{"type": "text", "text": text if isinstance(text, str) else "",
                                  "cache_control": dict(CACHE_MARK)}]
            break
    return out  # type: ignore[return-value]


class ContextAssembler:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        tables: Optional[LookupTables] = None,
        cache: Optional[StaticInstructionCache] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._tables = tables or default_tables()
        self._cache = cache or StaticInstructionCache(
            max_size=self._config.static_cache_max_size,
            ttl_seconds=self._config.static_cache_ttl_seconds,
        )
        self._instructions = build_static_instructions(self._config, self._tables)

    @property
    def cache(self) -> StaticInstructionCache:
        return self._cache

    def assemble(
        self,
        session: BookingSession,
        history: Sequence[ConversationTurn],
        message: str,
        *,
        auth: Optional[CallerAuthState] = None,
        vehicles: Sequence[VehicleSummary] = (),
        weather: Optional[Dict[str, Any]] = None,
        fallback: Optional[FallbackResult] = None,
        tool_notes: Sequence[str] = (),
        today: Optional[date] = None,
        locale: Optional[str] = None,
    ) -> AssembledContext:
        static_text = self._cache.get_or_build(session.session_id, self._instructions)
        dynamic_text = build_dynamic_context(
            session, auth,
            vehicles=vehicles, weather=weather, fallback=fallback,
            tool_notes=tool_notes, today=today, locale=locale,
        )
        full: List[LLMMessage] = [
            {"role": turn["role"], "content": turn["content"]}  # type: ignore[typeddict-item]
            for turn in history
            if turn.get("role") in ("user", "assistant") and turn.get("content")
        ]
        full.append({"role": "user", "content": message})
        kept = trim_history(full, self._config.max_context_messages)
        trimmed = len(full) - len(kept)
        if trimmed:
            logger.info("ContextAssembler: trimmed %d history messages", trimmed)
        return AssembledContext(
            system=[SystemBlock(static_text, cache=True), SystemBlock(dynamic_text)],
            messages=mark_conversation_prefix(kept),
            trimmed=trimmed,
        )
