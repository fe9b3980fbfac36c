"""Run a turn's tool calls sequentially with per-tool timeouts.

Search is critical: a timeout or store failure raises SearchUnavailableError
and ends the turn. Every other tool is best-effort; a failure is logged,
recorded in ``skipped`` and its context left out.

Budget chaining: a ``calculator`` call tagged ``daily_budget`` must be
followed by a search bounded by the rounded result. If the next call is not a
search, the executor issues one itself. Either way the search starts from the
session's carried filters, so nothing established earlier is lost.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from booking_assistant.booking.types import (
    BookingSession,
    CallerAuthState,
    FallbackResult,
    SearchQuery,
    ToolCall,
)
from booking_assistant.core.exceptions import (
    ProjectError,
    SearchUnavailableError,
    ToolTimeoutError,
    ValidationError,
    ZeroResultError,
)
from booking_assistant.extraction.merge import merge_search_queries, with_session_floor
from booking_assistant.tools.builtin.calculator import DAILY_BUDGET
from booking_assistant.tools.builtin.search import (
    SEARCH_TOOL_NAME,
    VehicleSearch,
    query_from_arguments,
    result_payload,
)
from booking_assistant.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ToolRun:
    """Everything the tools produced during one turn."""

    calls: List[ToolCall] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    search: Optional[FallbackResult] = None
    search_query: Optional[SearchQuery] = None
    no_availability: Optional[ZeroResultError] = None
    weather: Optional[Dict[str, Any]] = None
    risk: Optional[Dict[str, Any]] = None
    daily_budget: Optional[int] = None

    def record(self, call: ToolCall, result: Dict[str, Any]) -> None:
        self.calls.append(call)
        self.results.append(result)

    def extend(self, other: "ToolRun") -> None:
        self.calls.extend(other.calls)
        self.results.extend(other.results)
        self.notes.extend(other.notes)
        self.skipped.extend(other.skipped)
        for name in ("search", "search_query", "no_availability", "weather", "risk", "daily_budget"):
            value = getattr(other, name)
            if value is not None:
                setattr(self, name, value)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        search: VehicleSearch,
        *,
        tool_timeout_seconds: float = 4.0,
        search_timeout_seconds: float = 10.0,
    ) -> None:
        self._registry = registry
        self._search = search
        self._tool_timeout = tool_timeout_seconds
        self._search_timeout = search_timeout_seconds

    async def run(
        self,
        calls: Sequence[ToolCall],
        session: BookingSession,
        *,
        auth: Optional[CallerAuthState] = None,
    ) -> ToolRun:
        run = ToolRun()
        filters = session.filters
        pending_budget: Optional[int] = None
        for i, call in enumerate(calls):
            if call.name == SEARCH_TOOL_NAME:
                args = dict(call.arguments)
                if pending_budget is not None:
                    args["price_max"] = pending_budget
                    args.pop("priceMax", None)
                    pending_budget = None
                filters = await self._run_search(call, args, session, filters, run)
                continue

            result = await self._run_auxiliary(call, auth, run)
            if result.get("purpose") == DAILY_BUDGET and "daily_budget" in result:
                pending_budget = int(result["daily_budget"])
                run.daily_budget = pending_budget
                run.notes.append(
                    f"calculator: {result['expression']} = {result['result']:g} "
                    f"→ daily budget ${pending_budget}"
                )
                next_is_search = i + 1 < len(calls) and calls[i + 1].name == SEARCH_TOOL_NAME
                if not next_is_search:
                    logger.info("ToolExecutor: chaining search for daily budget %d", pending_budget)
                    chained = ToolCall(name=SEARCH_TOOL_NAME, arguments={}, call_id=f"chained_{i}")
                    filters = await self._run_search(
                        chained, {"price_max": pending_budget}, session, filters, run,
                    )
                    pending_budget = None
        return run

    # ── Search ──

    async def _run_search(
        self,
        call: ToolCall,
        args: Dict[str, Any],
        session: BookingSession,
        filters: Optional[SearchQuery],
        run: ToolRun,
    ) -> Optional[SearchQuery]:
        try:
            incoming = query_from_arguments(args)
        except ValidationError as exc:
            run.record(call, {"error": exc.message})
            return filters
        query = with_session_floor(merge_search_queries(filters, incoming), session)
        run.search_query = query

        try:
            result = await asyncio.wait_for(self._search.run(query), timeout=self._search_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("ToolExecutor: search timed out after %.1fs", self._search_timeout)
            raise SearchUnavailableError(
                "Vehicle search timed out, please try again",
                details={"timeout_seconds": self._search_timeout},
                cause=exc,
            ) from exc
        except ZeroResultError as exc:
            run.no_availability = exc
            run.record(call, {"count": 0, "no_availability": True, "explanation": exc.explanation})
            run.notes.append(f"search: no availability ({exc.explanation or 'no filters to loosen'})")
            return query
        except ValidationError as exc:
            run.record(call, {"error": exc.message, "field": exc.field})
            run.notes.append(f"search not run: {exc.message}")
            return filters
        except ProjectError:
            raise
        except Exception as exc:
            logger.error("ToolExecutor: search failed: %s", exc)
            raise SearchUnavailableError(
                "Vehicle search is unavailable right now, please try again",
                cause=exc,
            ) from exc

        run.search = result
        run.record(call, result_payload(result))
        note = f"search: {len(result.vehicles)} vehicles"
        if result.relaxed:
            note += f" after relaxing (level {result.level}: {result.explanation})"
        run.notes.append(note)
        return query

    # ── Everything else ──

    async def _run_auxiliary(
        self,
        call: ToolCall,
        auth: Optional[CallerAuthState],
        run: ToolRun,
    ) -> Dict[str, Any]:
        tool = self._registry.get(call.name)
        if tool is None or tool.handler is None or not self._registry.is_enabled(call.name):
            logger.warning("ToolExecutor: unknown or disabled tool '%s'", call.name)
            run.skipped.append(call.name)
            result: Dict[str, Any] = {"error": f"tool {call.name!r} is not available"}
            run.record(call, result)
            return result

        args = dict(call.arguments)
        if call.name == "assess_risk" and auth is not None:
            # Identity facts come from the caller, never from the model.
            args["verified"] = auth.verified
            args["account_email"] = auth.account_email

        timeout = tool.timeout_seconds or self._tool_timeout
        try:
            result = await asyncio.wait_for(tool.handler(**args), timeout=timeout)
        except asyncio.TimeoutError:
            err = ToolTimeoutError(f"{call.name} timed out after {timeout:.1f}s", tool_name=call.name)
            logger.warning("ToolExecutor: %s", err.message)
            run.skipped.append(call.name)
            result = {"error": err.to_dict()}
        except TypeError as exc:
            logger.error("ToolExecutor: tool '%s' called with bad arguments %s: %s", call.name, args, exc)
            run.skipped.append(call.name)
            result = {"error": "invalid arguments"}
        except Exception as exc:
            logger.warning("ToolExecutor: tool '%s' failed: %s", call.name, exc)
            run.skipped.append(call.name)
            result = {"error": str(exc)}
        else:
            if not isinstance(result, dict):
                result = {"result": result}
            if call.name == "get_weather":
                run.weather = result
            elif call.name == "assess_risk":
                run.risk = result

        run.record(call, result)
        return result

