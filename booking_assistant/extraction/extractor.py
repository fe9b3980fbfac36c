"""Structured extraction through the configured LLM client."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol

from booking_assistant.booking.types import CandidateTurn, TokenUsage, ToolCall
from booking_assistant.clients.llm.base import BaseLLMClient
from booking_assistant.context.assembler import AssembledContext
from booking_assistant.core.exceptions import ExternalServiceError, ExtractionError
from booking_assistant.extraction.parser import parse_candidate_turn

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def extract(self, context: AssembledContext, message: str) -> CandidateTurn:
        ...


class LLMExtractor:
    """Ask the model for one turn.

    When the model asks for tools the returned CandidateTurn carries only
    ``tool_calls``; the caller runs them, extends the context and asks again.
    Otherwise the text is parsed and validated (ExtractionError on bad output).
    Token counts ride on the turn as ``usage``, or on the error's details
    when the output could not be parsed.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        *,
        tool_schemas: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._llm = llm
        self._tool_schemas = tool_schemas or []
        self._timeout = timeout_seconds

    async def extract(self, context: AssembledContext, message: str) -> CandidateTurn:
        coro = self._llm.chat(
            context.messages,
            system=context.system,
            tools=self._tool_schemas or None,
            json_mode=True,
        )
        try:
            if self._timeout is not None:
                response = await asyncio.wait_for(coro, timeout=self._timeout)
            else:
                response = await coro
        except asyncio.TimeoutError as exc:
            logger.warning("LLMExtractor: %s timed out after %.1fs", self._llm.provider, self._timeout)
            raise ExternalServiceError(
                "The assistant took too long to answer",
                details={"provider": self._llm.provider},
                cause=exc,
                recoverable=True,
            ) from exc
        except ExternalServiceError:
            raise
        except Exception as exc:
            logger.error("LLMExtractor: %s call failed: %s", self._llm.provider, exc)
            raise ExternalServiceError(
                "The assistant is unavailable",
                details={"provider": self._llm.provider},
                cause=exc,
                recoverable=True,
            ) from exc

        usage = TokenUsage(
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            llm_calls=1,
        )
        if response.wants_tools:
            logger.info("LLMExtractor: model requested tools %s", [c.name for c in response.tool_calls])
            return CandidateTurn(
                reply=response.text,
                awaiting_tool_results=True,
                usage=usage,
                tool_calls=[
                    ToolCall(name=c.name, arguments=dict(c.arguments), call_id=c.call_id)
                    for c in response.tool_calls
                ],
            )
        try:
            turn = parse_candidate_turn(response.text)
        except ExtractionError as exc:
            exc.details["usage"] = usage.to_dict()
            raise
        turn.usage = usage
        return turn
