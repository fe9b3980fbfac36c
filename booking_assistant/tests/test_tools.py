"""Tests for the built-in tools, the registry and the tool executor."""
from __future__ import annotations

import asyncio
import unittest
from datetime import date

import httpx

from booking_assistant.booking.types import BookingSession, CallerAuthState, SearchQuery, ToolCall, TurnAction, VehicleSummary
from booking_assistant.config.engine import EngineConfig
from booking_assistant.core.exceptions import ExternalServiceError, SearchUnavailableError, ValidationError
from booking_assistant.search.composer import QueryComposer
from booking_assistant.search.inventory import InMemoryInventory
from booking_assistant.search.relaxation import RelaxationEngine
from booking_assistant.tools.builtin.calculator import DAILY_BUDGET, calculate, evaluate, round_daily_budget
from booking_assistant.tools.builtin.reviews import InMemoryReviewSource, Review
from booking_assistant.tools.builtin.risk import assess_booking_risk
from booking_assistant.tools.builtin.search import SEARCH_TOOL_NAME, VehicleSearch, query_from_arguments
from booking_assistant.tools.builtin.weather import WeatherClient, coordinates_for
from booking_assistant.tools.executor import ToolExecutor
from booking_assistant.tools.registry import ToolDefinition
from booking_assistant.tools.registry_builder import build_tool_registry

PICKUP, RETURN = date(2030, 6, 10), date(2030, 6, 14)


def _run(coro):
    return asyncio.run(coro)


def _fleet():
    return [
        VehicleSummary(id="camry", make="Toyota", model="Camry", year=2022, daily_rate=55.0,
                       car_type="sedan", city="Phoenix, AZ", rating=4.8),
        VehicleSummary(id="rav4", make="Toyota", model="RAV4", year=2023, daily_rate=85.0,
                       car_type="suv", city="Tempe, AZ", rating=4.9,
                       use_host_deposit=True, host_deposit=0.0),
        VehicleSummary(id="civic", make="Honda", model="Civic", year=2021, daily_rate=70.0,
                       car_type="sedan", city="Mesa, AZ", rating=4.5, vehicle_deposit=200.0),
        VehicleSummary(id="model3", make="Tesla", model="Model 3", year=2023, daily_rate=95.0,
                       car_type="sedan", city="Phoenix, AZ", rating=4.7),
    ]


def _session(**filters) -> BookingSession:
    return BookingSession(
        session_id="s1", location="Phoenix, AZ", start_date=PICKUP, end_date=RETURN,
        filters=SearchQuery(**filters) if filters else None,
    )


class _SlowInventory(InMemoryInventory):
    async def query(self, predicates, *, limit=20):
        await asyncio.sleep(1)
        return []


class _BrokenInventory(InMemoryInventory):
    async def query(self, predicates, *, limit=20):
        raise RuntimeError("connection reset")


def _executor(inventory, *, search_timeout=10.0, reviews=None) -> ToolExecutor:
    config = EngineConfig(weather_enabled=False)
    search = VehicleSearch(RelaxationEngine(QueryComposer(), inventory))
    registry = build_tool_registry(config, search=search, reviews=reviews)
    return ToolExecutor(registry, search, tool_timeout_seconds=0.05, search_timeout_seconds=search_timeout)


class TestCalculator(unittest.TestCase):
    def test_evaluate(self) -> None:
        self.assertEqual(evaluate("350 / 4"), 87.5)
        self.assertEqual(evaluate("$1,000 / 4"), 250.0)
        self.assertEqual(evaluate("(60 + 40) * 3 - 2 ** 3"), 292)

    def test_rejects_unsafe_or_invalid(self) -> None:
        for expression in ("__import__('os')", "2 ** 100", "1 / 0", "", "4 +", "x * 2"):
            with self.subTest(expression=expression), self.assertRaises(ValidationError):
                evaluate(expression)

    def test_round_half_up(self) -> None:
        self.assertEqual(round_daily_budget(87.5), 88)
        self.assertEqual(round_daily_budget(86.5), 87)
        self.assertEqual(round_daily_budget(87.49), 87)

    def test_daily_budget_purpose(self) -> None:
        out = _run(calculate("350 / 4", purpose=DAILY_BUDGET))
        self.assertEqual(out["result"], 87.5)
        self.assertEqual(out["daily_budget"], 88)
        self.assertNotIn("daily_budget", _run(calculate("350 / 4")))


class TestRisk(unittest.TestCase):
    def test_low_risk(self) -> None:
        auth = CallerAuthState(logged_in=True, verified=True, account_email="a@b.co")
        result = assess_booking_risk(auth=auth, total_amount=300, number_of_days=3, daily_rate=80,
                                     pickup=date(2030, 6, 10), today=date(2030, 6, 1))
        self.assertEqual((result.score, result.level, result.action), (0, "low", None))

    def test_unverified_needs_verification(self) -> None:
        result = assess_booking_risk(auth=CallerAuthState(logged_in=True), total_amount=300,
                                     number_of_days=3, daily_rate=80)
        self.assertEqual(result.score, 35)
        self.assertEqual(result.action, TurnAction.NEEDS_VERIFICATION)

    def test_missing_email_needs_otp(self) -> None:
        auth = CallerAuthState(logged_in=True, verified=True)
        result = assess_booking_risk(auth=auth, total_amount=1200, number_of_days=3, daily_rate=90)
        self.assertEqual(result.factors, ("no_account_email", "high_total"))
        self.assertEqual(result.action, TurnAction.NEEDS_EMAIL_OTP)

    def test_high_risk_review(self) -> None:
        result = assess_booking_risk(
            auth=CallerAuthState(logged_in=True), total_amount=4000, number_of_days=20,
            daily_rate=200, pickup=date(2030, 6, 1), today=date(2030, 6, 1),
        )
        self.assertEqual(result.score, 100)
        self.assertEqual(result.level, "high")
        self.assertEqual(result.to_dict()["action"], "HIGH_RISK_REVIEW")


class TestWeather(unittest.TestCase):
    def test_forecast(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json={"daily": {
                "temperature_2m_max": [104.2], "temperature_2m_min": [81.0],
                "precipitation_probability_max": [5],
            }})

        client = WeatherClient(transport=httpx.MockTransport(handler))
        out = _run(client.forecast("scottsdale", PICKUP))
        self.assertEqual(out["location"], "Scottsdale, AZ")
        self.assertEqual(out["high_f"], 104.2)
        self.assertEqual(out["precipitation_chance"], 5)
        self.assertEqual(seen["start_date"], "2030-06-10")

    def test_http_failure(self) -> None:
        client = WeatherClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with self.assertRaises(ExternalServiceError) as ctx:
            _run(client.forecast("Phoenix", PICKUP))
        self.assertTrue(ctx.exception.recoverable)

    def test_metro_member_uses_centre(self) -> None:
        self.assertEqual(coordinates_for("Queen Creek"), coordinates_for("Phoenix"))
        with self.assertRaises(ValidationError):
            coordinates_for("Boise")


class TestRegistry(unittest.TestCase):
    def test_builder(self) -> None:
        search = VehicleSearch(RelaxationEngine(QueryComposer(), InMemoryInventory()))
        registry = build_tool_registry(
            EngineConfig(risk_assessment_enabled=False), search=search, reviews=InMemoryReviewSource(),
        )
        self.assertEqual(
            sorted(registry.names), ["calculator", "get_reviews", "get_weather", SEARCH_TOOL_NAME],
        )
        registry.disable("get_weather")
        schema_names = [s["function"]["name"] for s in registry.get_schema_for_llm()]
        self.assertNotIn("get_weather", schema_names)
        self.assertFalse(registry.is_enabled("get_weather"))

    def test_query_from_arguments(self) -> None:
        query = query_from_arguments({"carType": "suv", "price_max": 90, "noDeposit": True})
        self.assertEqual(query, SearchQuery(car_type="suv", price_max=90, no_deposit=True))
        with self.assertRaises(ValidationError):
            query_from_arguments({"seats": 0})


class TestToolExecutor(unittest.TestCase):
    def test_budget_chains_search_and_keeps_carried_filters(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))
        calls = [ToolCall("calculator", {"expression": "350 / 4", "purpose": DAILY_BUDGET})]
        run = _run(executor.run(calls, _session(no_deposit=True)))

        self.assertEqual(run.daily_budget, 88)
        self.assertEqual([c.name for c in run.calls], ["calculator", SEARCH_TOOL_NAME])
        self.assertEqual(run.results[0]["result"], 87.5)
        self.assertEqual(run.search_query.price_max, 88)
        self.assertTrue(run.search_query.no_deposit)
        self.assertEqual(run.search_query.location, "Phoenix, AZ")
        self.assertEqual([v.id for v in run.search.vehicles], ["rav4", "camry"])
        self.assertEqual(run.search.level, 0)

    def test_budget_bound_overrides_following_search(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))
        calls = [
            ToolCall("calculator", {"expression": "280 / 4", "purpose": DAILY_BUDGET}),
            ToolCall(SEARCH_TOOL_NAME, {"priceMax": 500, "carType": "sedan"}),
        ]
        run = _run(executor.run(calls, _session()))
        self.assertEqual(len(run.calls), 2)
        self.assertEqual(run.search_query.price_max, 70)
        self.assertEqual({v.id for v in run.search.vehicles}, {"camry", "civic"})

    def test_zero_results_is_not_fatal(self) -> None:
        executor = _executor(InMemoryInventory([]))
        run = _run(executor.run([ToolCall(SEARCH_TOOL_NAME, {"carType": "suv"})], _session()))
        self.assertIsNone(run.search)
        self.assertIsNotNone(run.no_availability)
        self.assertTrue(run.results[0]["no_availability"])

    def test_bad_search_arguments_recorded(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))
        run = _run(executor.run([ToolCall(SEARCH_TOOL_NAME, {"priceMax": -5})], _session()))
        self.assertIsNone(run.search)
        self.assertIn("error", run.results[0])

    def test_search_timeout_is_terminal(self) -> None:
        executor = _executor(_SlowInventory(), search_timeout=0.01)
        with self.assertRaises(SearchUnavailableError):
            _run(executor.run([ToolCall(SEARCH_TOOL_NAME, {})], _session()))

    def test_search_failure_is_terminal(self) -> None:
        executor = _executor(_BrokenInventory())
        with self.assertRaises(SearchUnavailableError) as ctx:
            _run(executor.run([ToolCall(SEARCH_TOOL_NAME, {})], _session()))
        self.assertEqual(ctx.exception.http_status, 503)

    def test_auxiliary_timeout_is_skipped(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))

        async def slow() -> dict:
            await asyncio.sleep(1)
            return {}

        executor._registry.register(ToolDefinition(name="slow", description="", handler=slow))
        run = _run(executor.run([ToolCall("slow", {}), ToolCall("calculator", {"expression": "1 + 1"})], _session()))
        self.assertEqual(run.skipped, ["slow"])
        self.assertEqual(run.results[0]["error"]["code"], "TOOL_TIMEOUT")
        self.assertEqual(run.results[1]["result"], 2)

    def test_unknown_tool_and_bad_arguments_are_skipped(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))
        calls = [ToolCall("teleport", {}), ToolCall("calculator", {"expr": "1"})]
        run = _run(executor.run(calls, _session()))
        self.assertEqual(run.skipped, ["teleport", "calculator"])

    def test_risk_uses_caller_identity(self) -> None:
        executor = _executor(InMemoryInventory(_fleet()))
        call = ToolCall("assess_risk", {
            "total_amount": 300, "number_of_days": 3, "daily_rate": 80,
            "verified": True, "account_email": "claimed@example.com",
        })
        run = _run(executor.run([call], _session(), auth=CallerAuthState(logged_in=True)))
        self.assertEqual(run.risk["action"], "NEEDS_VERIFICATION")
        self.assertIn("unverified_identity", run.risk["factors"])

    def test_reviews(self) -> None:
        source = InMemoryReviewSource({"camry": [
            Review("camry", 5.0, "Spotless"), Review("camry", 4.0, "Smooth pickup"),
        ]})
        executor = _executor(InMemoryInventory(_fleet()), reviews=source)
        run = _run(executor.run([ToolCall("get_reviews", {"vehicle_id": "camry"})], _session()))
        self.assertEqual(run.results[0]["average_rating"], 4.5)
        self.assertEqual(run.results[0]["count"], 2)


if __name__ == "__main__":
    unittest.main()
