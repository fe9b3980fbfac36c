"""HTTP tests for the booking router with an in-memory BookingService."""
from __future__ import annotations

import unittest
from datetime import date

from fastapi.testclient import TestClient

from booking_assistant.api.dependencies import get_booking_service
from booking_assistant.api.main import app
from booking_assistant.booking.types import CandidateTurn, ExtractedFields, ToolCall, VehicleSummary
from booking_assistant.config.engine import EngineConfig
from booking_assistant.search.composer import QueryComposer
from booking_assistant.search.inventory import InMemoryInventory
from booking_assistant.search.relaxation import RelaxationEngine
from booking_assistant.services.booking_service import BookingService
from booking_assistant.services.session_store import InMemorySessionStore
from booking_assistant.tools.builtin.search import VehicleSearch
from booking_assistant.tools.executor import ToolExecutor
from booking_assistant.tools.registry_builder import build_tool_registry

PICKUP, RETURN = date(2030, 6, 10), date(2030, 6, 14)


class _FixedExtractor:
    def __init__(self, turn: CandidateTurn) -> None:
        self.turn = turn

    async def extract(self, context, message):
        return self.turn


class _BrokenInventory(InMemoryInventory):
    async def query(self, predicates, *, limit=20):
        raise RuntimeError("connection reset")


def _build_service(extractor, store, inventory) -> BookingService:
    config = EngineConfig(weather_enabled=False)
    search = VehicleSearch(RelaxationEngine(QueryComposer(), inventory))
    executor = ToolExecutor(build_tool_registry(config, search=search), search)
    return BookingService(
        extractor=extractor,
        executor=executor,
        store=store,
        inventory=inventory,
        config=config,
        clock=lambda: date(2030, 6, 1),
    )


class TestBookingApi(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemorySessionStore()
        self.inventory = InMemoryInventory([
            VehicleSummary(id="camry", make="Toyota", model="Camry", year=2022, daily_rate=55.0,
                           car_type="sedan", city="Phoenix, AZ", rating=4.8),
        ])
        self.extractor = _FixedExtractor(CandidateTurn(
            reply="Here is what I found.",
            extracted=ExtractedFields(location="Phoenix", start_date=PICKUP, end_date=RETURN),
        ))
        app.dependency_overrides[get_booking_service] = lambda: _build_service(
            self.extractor, self.store, self.inventory,
        )
        # No context manager: the database lifespan is not started.
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_turn_creates_session(self) -> None:
        resp = self.client.post("/api/v1/booking/turn", json={"message": "A car in Phoenix June 10-14"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(len(body["session_id"]), 32)
        self.assertEqual(body["next_state"], "COLLECTING_VEHICLE")
        self.assertEqual(body["cards"], ["camry"])
        self.assertEqual(body["vehicles"][0]["deposit_amount"], 0.0)
        self.assertEqual(body["metadata"]["version"], 1)

        session = self.client.get(f"/api/v1/booking/sessions/{body['session_id']}")
        self.assertEqual(session.status_code, 200)
        self.assertEqual(session.json()["location"], "Phoenix, AZ")
        self.assertEqual(session.json()["start_date"], "2030-06-10")

    def test_turn_reuses_given_session_id(self) -> None:
        first = self.client.post("/api/v1/booking/turn", json={"message": "hi", "session_id": "abc"})
        second = self.client.post("/api/v1/booking/turn", json={"message": "hi again", "session_id": "abc"})
        self.assertEqual(first.json()["session_id"], "abc")
        self.assertEqual(second.json()["metadata"]["version"], 2)
        self.assertEqual(self.store.sessions["abc"].message_count, 4)

    def test_caller_auth_is_forwarded(self) -> None:
        self.client.post("/api/v1/booking/turn", json={
            "message": "hi", "session_id": "abc",
            "caller_auth": {"logged_in": True, "user_id": "u42"},
        })
        self.assertEqual(self.store.user_ids["abc"], "u42")

    def test_unknown_session_is_404(self) -> None:
        resp = self.client.get("/api/v1/booking/sessions/missing")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"]["code"], "NOT_FOUND")

    def test_blank_message_is_400(self) -> None:
        resp = self.client.post("/api/v1/booking/turn", json={"message": "   "})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["details"]["field"], "message")

    def test_missing_message_is_422(self) -> None:
        resp = self.client.post("/api/v1/booking/turn", json={"session_id": "abc"})
        self.assertEqual(resp.status_code, 422)

    def test_search_outage_is_503(self) -> None:
        self.inventory = _BrokenInventory()
        self.extractor.turn = CandidateTurn(
            reply="", tool_calls=[ToolCall("search_vehicles", {
                "location": "Phoenix", "pickupDate": "2030-06-10", "returnDate": "2030-06-14",
            })],
            awaiting_tool_results=True,
        )
        resp = self.client.post("/api/v1/booking/turn", json={"message": "cars in Phoenix"})
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"]["code"], "SEARCH_UNAVAILABLE")


if __name__ == "__main__":
    unittest.main()
