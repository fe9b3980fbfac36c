"""BookingService: one conversational turn, end to end.

    sanitize → load session → detect intents/budget → [calculator + search]
    → extractor ⇄ tools (bounded rounds) → merge filters → apply_turn
    → summary / risk → persist → TurnResponse

The service owns no state between turns; everything lives in the SessionStore
so any worker can take the next message.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from booking_assistant.booking.state_machine import (
    TurnOutcome,
    apply_turn,
    build_booking_summary,
    create_initial_session,
    extract_vehicle_id,
    suggestions_for,
)
from booking_assistant.booking.types import (
    BookingSession,
    BookingState,
    BookingSummary,
    CallerAuthState,
    CandidateTurn,
    SearchQuery,
    TokenUsage,
    ToolCall,
    TurnAction,
    TurnRequest,
    TurnResponse,
    VehicleSummary,
)
from booking_assistant.booking.validators import SanitizedMessage, sanitize_message
from booking_assistant.clients.llm.base import BaseLLMClient
from booking_assistant.config.engine import EngineConfig
from booking_assistant.context.assembler import AssembledContext, ContextAssembler
from booking_assistant.core.exceptions import (
    ExternalServiceError,
    ExtractionError,
    NotFoundError,
    ProjectError,
    SearchUnavailableError,
    ValidationError,
)
from booking_assistant.core.logger import bind_session
from booking_assistant.extraction.extractor import Extractor, LLMExtractor
from booking_assistant.extraction.intent_detector import BudgetSignal, IntentDetector
from booking_assistant.extraction.merge import merge_turn_query
from booking_assistant.search.composer import QueryComposer
from booking_assistant.search.inventory import InventoryStore
from booking_assistant.search.normalize import default_tables
from booking_assistant.search.relaxation import RelaxationEngine
from booking_assistant.search.tables import LookupTables
from booking_assistant.services.session_store import SessionStore
from booking_assistant.tools.builtin.calculator import CALCULATOR_TOOL, DAILY_BUDGET
from booking_assistant.tools.builtin.reviews import ReviewSource
from booking_assistant.tools.builtin.risk import assess_booking_risk
from booking_assistant.tools.builtin.search import SEARCH_TOOL_NAME, VehicleSearch
from booking_assistant.tools.builtin.weather import WeatherClient
from booking_assistant.tools.executor import ToolExecutor, ToolRun
from booking_assistant.tools.registry_builder import build_tool_registry

logger = logging.getLogger(__name__)

_CLARIFY_REPLY = (
    "Sorry, I didn't quite catch that. Could you tell me the city, the dates "
    "and the kind of car you're after?"
)
_UNAVAILABLE_REPLY = "I'm having trouble answering right now. Please try again in a moment."


class BookingService:
    """Runs turns against injected collaborators.

    Use :meth:`build` to wire the standard pipeline from an EngineConfig;
    the constructor takes ready-made parts so tests can swap any of them.
    """

    def __init__(
        self,
        *,
        extractor: Extractor,
        executor: ToolExecutor,
        store: SessionStore,
        inventory: InventoryStore,
        assembler: Optional[ContextAssembler] = None,
        detector: Optional[IntentDetector] = None,
        config: Optional[EngineConfig] = None,
        tables: Optional[LookupTables] = None,
        clock: Optional[Callable[[], date]] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._tables = tables or default_tables()
        self._extractor = extractor
        self._executor = executor
        self._store = store
        self._inventory = inventory
        self._assembler = assembler or ContextAssembler(self._config, tables=self._tables)
        self._detector = detector or IntentDetector()
        self._clock = clock or date.today

    @classmethod
    def build(
        cls,
        config: EngineConfig,
        *,
        llm: BaseLLMClient,
        store: SessionStore,
        inventory: InventoryStore,
        reviews: Optional[ReviewSource] = None,
        weather: Optional[WeatherClient] = None,
        assembler: Optional[ContextAssembler] = None,
        tables: Optional[LookupTables] = None,
        clock: Optional[Callable[[], date]] = None,
    ) -> "BookingService":
        tables = tables or default_tables()
        engine = RelaxationEngine(QueryComposer(tables), inventory)
        search = VehicleSearch(engine, timeout_seconds=config.search_timeout_seconds)
        registry = build_tool_registry(config, search=search, reviews=reviews, weather=weather)
        executor = ToolExecutor(
            registry,
            search,
            tool_timeout_seconds=config.tool_timeout_seconds,
            search_timeout_seconds=config.search_timeout_seconds,
        )
        extractor = LLMExtractor(
            llm,
            tool_schemas=registry.get_schema_for_llm(),
            timeout_seconds=config.llm_timeout_seconds,
        )
        return cls(
            extractor=extractor,
            executor=executor,
            store=store,
            inventory=inventory,
            assembler=assembler,
            config=config,
            tables=tables,
            clock=clock,
        )

    # ── Public API ────────────────────────────────────────────────

    async def get_session(self, session_id: str) -> BookingSession:
        session = await self._store.load_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id!r} not found", details={"session_id": session_id})
        return session

    async def process_turn(self, request: TurnRequest) -> TurnResponse:
        """Run one turn.

        Raises:
            ValidationError: the message is empty after sanitising.
            SearchUnavailableError: a requested search timed out or failed.
        """
        with bind_session(request.session_id):
            return await self._process(request)

    # ── Turn pipeline ─────────────────────────────────────────────

    async def _process(self, request: TurnRequest) -> TurnResponse:
        today = self._clock()
        auth = request.caller_auth
        sanitized = sanitize_message(request.message)
        message = sanitized.text

        session = await self._store.load_session(request.session_id)
        if session is None:
            session = create_initial_session(request.session_id)
            logger.info("BookingService: new session")
        history = await self._store.load_history(session.session_id, limit=self._config.max_context_messages)

        intents = self._detector.detect(message)
        budget = self._detector.detect_budget(message)
        working = merge_turn_query(session.filters, None, intents, budget=budget)

        run = ToolRun()
        if budget is not None and budget.needs_division:
            # "$350 for 4 days": divide first so the model sees a daily bound.
            budget_call = ToolCall(
                name=CALCULATOR_TOOL.name,
                arguments={"expression": budget.expression, "purpose": DAILY_BUDGET},
                call_id="budget",
            )
            run.extend(await self._executor.run([budget_call], replace(session, filters=working), auth=auth))
            budget = self._resolved_budget(budget, run)
            working = merge_turn_query(session.filters, None, intents, budget=budget)
            if run.search_query is not None:
                working = run.search_query

        errors: List[Dict[str, Any]] = []
        candidate, context, failure, usage = await self._extract(
            session, history, message, auth, working, run, today, locale=request.locale,
        )
        usage = self._priced(usage)
        if candidate is None:
            return await self._fail_closed(session, sanitized, failure, run, errors, context, auth, usage)

        if run.search_query is not None:
            working = run.search_query
        if candidate.extracted.vehicle_id is None:
            tagged = extract_vehicle_id(request.message)
            if tagged:
                candidate.extracted = replace(candidate.extracted, vehicle_id=tagged)

        query = merge_turn_query(
            working, candidate.search_query, intents,
            budget=budget, cleared=candidate.cleared_filters,
        )
        if run.daily_budget is not None and "price_max" not in candidate.cleared_filters:
            # The calculator's bound wins over any figure the model worked out itself.
            query = replace(query, price_max=float(run.daily_budget))
        turn = replace(candidate, search_query=query)
        outcome = apply_turn(session, turn, today=today, tables=self._tables)
        errors.extend(e.to_dict() for e in outcome.errors)

        if self._should_auto_search(outcome, run):
            await self._auto_search(outcome.session, auth, run, errors)

        summary: Optional[BookingSummary] = None
        risk: Optional[Dict[str, Any]] = None
        if outcome.session.vehicle_id and outcome.next_state in (
            BookingState.CONFIRMING, BookingState.READY_FOR_PAYMENT,
        ):
            summary = await self._summary(outcome.session, run, errors)
            if summary is None and outcome.next_state is BookingState.READY_FOR_PAYMENT:
                # A booking we cannot price cannot go to payment.
                turn = replace(turn, action=None, next_state=BookingState.CONFIRMING)
                outcome = apply_turn(session, turn, today=today, tables=self._tables)
        if outcome.next_state is BookingState.READY_FOR_PAYMENT and summary is not None:
            action, risk = self._gate_payment(auth, summary, today)
            if action is not None:
                turn = replace(turn, action=action)
                outcome = apply_turn(session, turn, today=today, tables=self._tables)

        reply = self._compose_reply(turn.reply or _CLARIFY_REPLY, run)
        new_session = replace(
            outcome.session,
            message_count=session.message_count + 2,
            usage=session.usage + usage,
        )
        return await self._persist_and_respond(
            new_session, sanitized, reply, turn, outcome, run, context, errors,
            summary=summary, risk=risk, auth=auth, usage=usage,
        )

    async def _extract(
        self,
        session: BookingSession,
        history: Sequence[Dict[str, str]],
        message: str,
        auth: CallerAuthState,
        working: SearchQuery,
        run: ToolRun,
        today: date,
        *,
        locale: Optional[str] = None,
    ) -> tuple[Optional[CandidateTurn], AssembledContext, Optional[ProjectError], TokenUsage]:
        """Extractor ⇄ tools loop. The candidate is ``None`` when extraction failed.

        Token usage is summed over every round, failed ones included.
        """
        context = self._assembler.assemble(
            replace(session, filters=working),
            history,
            message,
            auth=auth,
            vehicles=run.search.vehicles if run.search else (),
            weather=run.weather,
            fallback=run.search,
            tool_notes=run.notes,
            today=today,
            locale=locale,
        )
        usage = TokenUsage()
        try:
            for round_no in range(1, self._config.max_tool_rounds + 1):
                candidate = await self._extractor.extract(context, message)
                usage = usage + candidate.usage
                if not candidate.awaiting_tool_results:
                    return candidate, context, None, usage
                step = await self._executor.run(
                    candidate.tool_calls,
                    replace(session, filters=run.search_query or working),
                    auth=auth,
                )
                run.extend(step)
                context = context.with_tool_exchange(step.calls, step.results, assistant_text=candidate.reply)
                logger.debug("BookingService: tool round %d ran %s", round_no, [c.name for c in step.calls])
            raise ExtractionError(
                "The assistant kept calling tools without answering",
                details={"max_tool_rounds": self._config.max_tool_rounds},
            )
        except (ExtractionError, ExternalServiceError) as exc:
            usage = usage + TokenUsage.from_dict(exc.details.pop("usage", None))
            logger.warning("BookingService: extraction failed (%s): %s", exc.code, exc.message)
            return None, context, exc, usage

    # ── Helpers ───────────────────────────────────────────────────

    def _priced(self, usage: TokenUsage) -> TokenUsage:
        rates = self._config.token_rates()
        if rates is None:
            return usage
        return usage.priced(*rates)

    @staticmethod
    def _resolved_budget(budget: BudgetSignal, run: ToolRun) -> BudgetSignal:
        if run.daily_budget is None:
            return budget
        return BudgetSignal(daily_max=float(run.daily_budget), total=budget.total, days=budget.days)

    @staticmethod
    def _should_auto_search(outcome: TurnOutcome, run: ToolRun) -> bool:
        s = outcome.session
        return (
            outcome.next_state is BookingState.COLLECTING_VEHICLE
            and run.search is None
            and run.no_availability is None
            and bool(s.location) and s.has_dates
        )

    async def _auto_search(
        self,
        session: BookingSession,
        auth: CallerAuthState,
        run: ToolRun,
        errors: List[Dict[str, Any]],
    ) -> None:
        call = ToolCall(name=SEARCH_TOOL_NAME, arguments={}, call_id="auto")
        try:
            run.extend(await self._executor.run([call], session, auth=auth))
        except SearchUnavailableError as exc:
            logger.warning("BookingService: follow-up search unavailable: %s", exc.message)
            errors.append(exc.to_dict())

    async def _summary(
        self,
        session: BookingSession,
        run: ToolRun,
        errors: List[Dict[str, Any]],
    ) -> Optional[BookingSummary]:
        vehicle: Optional[VehicleSummary] = None
        if run.search is not None:
            vehicle = next((v for v in run.search.vehicles if v.id == session.vehicle_id), None)
        if vehicle is None:
            vehicle = await self._inventory.get(session.vehicle_id)
        if vehicle is None:
            err = NotFoundError(
                "That vehicle is no longer listed",
                details={"field": "vehicle_id", "vehicle_id": session.vehicle_id},
            )
            logger.warning("BookingService: %s (%s)", err.message, session.vehicle_id)
            errors.append(err.to_dict())
            return None
        try:
            return build_booking_summary(
                session,
                vehicle,
                service_fee_percent=self._config.service_fee_percent,
                tax_rate=self._config.tax_rate,
                default_time=self._config.default_pickup_time,
            )
        except ValidationError as exc:
            errors.append(exc.to_dict())
            return None

    def _gate_payment(
        self,
        auth: CallerAuthState,
        summary: BookingSummary,
        today: date,
    ) -> tuple[Optional[TurnAction], Optional[Dict[str, Any]]]:
        """Login first, then the risk check decides whether payment may proceed."""
        if not auth.logged_in:
            return TurnAction.NEEDS_LOGIN, None
        if not self._config.risk_assessment_enabled:
            return None, None
        assessment = assess_booking_risk(
            auth=auth,
            total_amount=summary.estimated_total,
            number_of_days=summary.number_of_days,
            daily_rate=summary.daily_rate,
            pickup=summary.start_date,
            today=today,
        )
        return assessment.action, assessment.to_dict()

    @staticmethod
    def _compose_reply(reply: str, run: ToolRun) -> str:
        if run.search is not None and run.search.relaxed and run.search.explanation not in reply:
            return f"{reply}\n\nNo exact matches, so I {run.search.explanation}."
        if run.no_availability is not None and run.search is None and run.no_availability.message not in reply:
            return f"{reply}\n\n{run.no_availability.message}"
        return reply

    async def _fail_closed(
        self,
        session: BookingSession,
        sanitized: SanitizedMessage,
        failure: ProjectError,
        run: ToolRun,
        errors: List[Dict[str, Any]],
        context: AssembledContext,
        auth: CallerAuthState,
        usage: TokenUsage,
    ) -> TurnResponse:
        """Nothing from this turn is merged; the guest is asked to rephrase."""
        errors.append(failure.to_dict())
        reply = _CLARIFY_REPLY if isinstance(failure, ExtractionError) else _UNAVAILABLE_REPLY
        new_session = replace(
            session,
            version=session.version + 1,
            message_count=session.message_count + 2,
            usage=session.usage + usage,
        )
        outcome = TurnOutcome(session=new_session, next_state=session.state)
        return await self._persist_and_respond(
            new_session, sanitized, reply, CandidateTurn(reply=reply), outcome, run, context, errors,
            summary=None, risk=None, auth=auth, usage=usage,
        )

    async def _persist_and_respond(
        self,
        session: BookingSession,
        sanitized: SanitizedMessage,
        reply: str,
        turn: CandidateTurn,
        outcome: TurnOutcome,
        run: ToolRun,
        context: AssembledContext,
        errors: List[Dict[str, Any]],
        *,
        summary: Optional[BookingSummary],
        risk: Optional[Dict[str, Any]],
        auth: CallerAuthState,
        usage: TokenUsage,
    ) -> TurnResponse:
        in_order = await self._store.save_session(session, user_id=auth.user_id)

        user_events = [
            {"event_type": "security_flag", "data": {"flag": name}} for name in sanitized.flag_names
        ]
        assistant_events: List[Dict[str, Any]] = [
            {"event_type": "tool_call", "data": {"name": call.name, "call_id": call.call_id}}
            for call in run.calls
        ]
        assistant_events.extend({"event_type": "tool_skipped", "data": {"name": n}} for n in run.skipped)
        assistant_events.extend({"event_type": "error", "data": e} for e in errors)
        if run.search is not None and run.search.relaxed:
            assistant_events.append({"event_type": "relaxation", "data": {
                "level": run.search.level, "explanation": run.search.explanation,
            }})
        if risk is not None:
            assistant_events.append({"event_type": "risk_assessment", "data": risk})
        if not in_order:
            assistant_events.append({"event_type": "stale_write", "data": {"version": session.version}})

        fallback_level = run.search.level if run.search is not None else None
        action = turn.action
        await self._store.append_message(session.session_id, "user", sanitized.text, events=user_events)
        await self._store.append_message(
            session.session_id,
            "assistant",
            reply,
            next_state=outcome.next_state.value,
            action=action.value if action else None,
            fallback_level=fallback_level,
            metadata={
                "version": session.version,
                "tools": [c.name for c in run.calls],
                "usage": usage.to_dict(),
            },
            events=assistant_events,
        )

        vehicles = list(run.search.vehicles) if run.search is not None else []
        logger.info(
            "BookingService: turn done state=%s vehicles=%d errors=%d tokens=%d",
            outcome.next_state.value, len(vehicles), len(errors), usage.total_tokens,
        )
        return TurnResponse(
            reply=reply,
            next_state=outcome.next_state,
            mode=session.mode,
            extracted_data=turn.extracted.to_dict(),
            action=action,
            search_query=session.filters,
            cards=[v.id for v in vehicles] or None,
            vehicles=vehicles,
            suggestions=suggestions_for(outcome.next_state),
            summary=summary,
            fallback_level=fallback_level,
            errors=errors,
            security_flags=sanitized.flag_names,
            metadata={
                "version": session.version,
                "tools": [c.name for c in run.calls],
                "skipped_tools": list(run.skipped),
                "trimmed_messages": context.trimmed,
                "risk": risk,
                "daily_budget": run.daily_budget,
                "usage": usage.to_dict(),
            },
        )
