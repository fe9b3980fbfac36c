"""Tests for apply_turn, next-state resolution and the booking summary."""
from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import date

from booking_assistant.booking.state_machine import (
    apply_turn,
    build_booking_summary,
    calculate_days,
    compute_next_state,
    create_initial_session,
    extract_vehicle_id,
    suggestions_for,
)
from booking_assistant.booking.types import (
    BookingSession,
    BookingState,
    CandidateTurn,
    ConversationMode,
    ExtractedFields,
    SearchQuery,
    TurnAction,
    VehicleSummary,
)

TODAY = date(2030, 6, 1)


def _turn(**extracted) -> CandidateTurn:
    return CandidateTurn(reply="ok", extracted=ExtractedFields(**extracted))


def _complete_session(**overrides) -> BookingSession:
    base = BookingSession(
        session_id="s1",
        state=BookingState.CONFIRMING,
        location="Phoenix, AZ",
        start_date=date(2030, 6, 10),
        end_date=date(2030, 6, 13),
        vehicle_id="v1",
        version=4,
    )
    return replace(base, **overrides)


class TestComputeNextState(unittest.TestCase):
    def test_priority_order(self) -> None:
        s = create_initial_session("s1")
        self.assertEqual(compute_next_state(s), BookingState.COLLECTING_LOCATION)
        s = replace(s, location="Phoenix, AZ")
        self.assertEqual(compute_next_state(s), BookingState.COLLECTING_DATES)
        s = replace(s, start_date=date(2030, 6, 10), end_date=date(2030, 6, 12))
        self.assertEqual(compute_next_state(s), BookingState.COLLECTING_VEHICLE)
        s = replace(s, vehicle_id="v1")
        self.assertEqual(compute_next_state(s), BookingState.CONFIRMING)

    def test_dates_before_location_still_asks_location(self) -> None:
        s = BookingSession(session_id="s1", start_date=date(2030, 6, 10), end_date=date(2030, 6, 12))
        self.assertEqual(compute_next_state(s), BookingState.COLLECTING_LOCATION)


class TestApplyTurn(unittest.TestCase):
    def test_location_is_canonicalised_and_flow_advances(self) -> None:
        out = apply_turn(create_initial_session("s1"), _turn(location="scottsdale"), today=TODAY)
        self.assertEqual(out.session.location, "Scottsdale, AZ")
        self.assertEqual(out.next_state, BookingState.COLLECTING_DATES)
        self.assertEqual(out.session.mode, ConversationMode.BOOKING)
        self.assertEqual(out.session.version, 1)
        self.assertEqual(out.errors, [])

    def test_invalid_location_keeps_previous_value(self) -> None:
        s = replace(create_initial_session("s1"), location="Phoenix, AZ")
        out = apply_turn(s, _turn(location="Las Vegas"), today=TODAY)
        self.assertEqual(out.session.location, "Phoenix, AZ")
        self.assertEqual([e.field for e in out.errors], ["location"])

    def test_single_pickup_date_is_accepted_without_return(self) -> None:
        s = replace(create_initial_session("s1"), location="Phoenix, AZ")
        out = apply_turn(s, _turn(start_date=date(2030, 6, 10)), today=TODAY)
        self.assertEqual(out.session.start_date, date(2030, 6, 10))
        self.assertIsNone(out.session.end_date)
        self.assertEqual(out.next_state, BookingState.COLLECTING_DATES)

    def test_same_day_range_rejected(self) -> None:
        s = replace(create_initial_session("s1"), location="Phoenix, AZ")
        out = apply_turn(s, _turn(start_date=date(2030, 6, 10), end_date=date(2030, 6, 10)), today=TODAY)
        self.assertIsNone(out.session.start_date)
        self.assertEqual(out.errors[0].field, "end_date")

    def test_return_date_without_pickup_is_checked(self) -> None:
        s = replace(create_initial_session("s1"), location="Phoenix, AZ")
        past = apply_turn(s, _turn(end_date=date(2001, 1, 1)), today=TODAY)
        self.assertIsNone(past.session.end_date)
        self.assertEqual(past.errors[0].field, "end_date")

        held = apply_turn(s, _turn(end_date=date(2030, 6, 14)), today=TODAY)
        self.assertEqual(held.session.end_date, date(2030, 6, 14))
        self.assertEqual(held.errors, [])
        self.assertEqual(held.next_state, BookingState.COLLECTING_DATES)

    def test_new_pickup_past_return_drops_stale_return(self) -> None:
        s = _complete_session(vehicle_id=None)
        out = apply_turn(s, _turn(start_date=date(2030, 6, 20)), today=TODAY)
        self.assertEqual(out.session.start_date, date(2030, 6, 20))
        self.assertIsNone(out.session.end_date)
        self.assertEqual(out.next_state, BookingState.COLLECTING_DATES)

    def test_times_are_normalised(self) -> None:
        out = apply_turn(_complete_session(), _turn(start_time="9am", end_time="bogus"), today=TODAY)
        self.assertEqual(out.session.start_time, "09:00")
        self.assertIsNone(out.session.end_time)
        self.assertEqual(len(out.errors), 1)

    def test_side_action_wins(self) -> None:
        turn = CandidateTurn(reply="log in", action=TurnAction.NEEDS_LOGIN)
        out = apply_turn(_complete_session(), turn, today=TODAY)
        self.assertEqual(out.next_state, BookingState.NEEDS_LOGIN)
        self.assertEqual(out.session.state, BookingState.NEEDS_LOGIN)

    def test_requested_state_cannot_jump_ahead(self) -> None:
        s = replace(create_initial_session("s1"), location="Phoenix, AZ")
        turn = CandidateTurn(reply="ok", next_state=BookingState.CONFIRMING)
        self.assertEqual(apply_turn(s, turn, today=TODAY).next_state, BookingState.COLLECTING_DATES)

    def test_requested_state_may_hold_back(self) -> None:
        turn = CandidateTurn(reply="more cars", next_state=BookingState.COLLECTING_VEHICLE)
        self.assertEqual(
            apply_turn(_complete_session(), turn, today=TODAY).next_state,
            BookingState.COLLECTING_VEHICLE,
        )

    def test_payment_requires_complete_session(self) -> None:
        turn = CandidateTurn(reply="pay", action=TurnAction.READY_FOR_PAYMENT)
        done = apply_turn(_complete_session(), turn, today=TODAY)
        self.assertEqual(done.next_state, BookingState.READY_FOR_PAYMENT)

        partial = apply_turn(_complete_session(vehicle_id=None), turn, today=TODAY)
        self.assertEqual(partial.next_state, BookingState.COLLECTING_VEHICLE)
        self.assertEqual(partial.errors[0].field, "vehicle")

    def test_start_over_keeps_id_and_bumps_version(self) -> None:
        s = _complete_session(message_count=6)
        out = apply_turn(s, CandidateTurn(reply="fresh", action=TurnAction.START_OVER), today=TODAY)
        self.assertEqual(out.session.session_id, "s1")
        self.assertEqual(out.session.version, 5)
        self.assertIsNone(out.session.location)
        self.assertEqual(out.session.message_count, 6)
        self.assertEqual(out.next_state, BookingState.INIT)

    def test_filters_replaced_only_when_turn_has_query(self) -> None:
        s = _complete_session(filters=SearchQuery(car_type="suv"))
        kept = apply_turn(s, _turn(), today=TODAY)
        self.assertEqual(kept.session.filters.car_type, "suv")
        swapped = apply_turn(
            s, CandidateTurn(reply="ok", search_query=SearchQuery(car_type="luxury")), today=TODAY,
        )
        self.assertEqual(swapped.session.filters.car_type, "luxury")

    def test_input_session_unchanged(self) -> None:
        s = create_initial_session("s1")
        apply_turn(s, _turn(location="Tempe"), today=TODAY)
        self.assertIsNone(s.location)
        self.assertEqual(s.version, 0)


class TestHelpers(unittest.TestCase):
    def test_extract_vehicle_id(self) -> None:
        self.assertEqual(extract_vehicle_id("I'll take this one [id:veh_42]"), "veh_42")
        self.assertIsNone(extract_vehicle_id("no tag here"))
        self.assertIsNone(extract_vehicle_id(None))

    def test_suggestions(self) -> None:
        self.assertIn("Phoenix", suggestions_for(BookingState.COLLECTING_LOCATION))
        self.assertEqual(suggestions_for(BookingState.HIGH_RISK_REVIEW), [])

    def test_calculate_days(self) -> None:
        self.assertEqual(calculate_days(date(2030, 6, 10), date(2030, 6, 13)), 3)
        self.assertEqual(calculate_days(date(2030, 6, 10), date(2030, 6, 10)), 1)


class TestBookingSummary(unittest.TestCase):
    def test_price_breakdown(self) -> None:
        vehicle = VehicleSummary(
            id="v1", make="Toyota", model="Camry", year=2022, daily_rate=100.0,
            use_host_deposit=True, host_deposit=250.0,
        )
        summary = build_booking_summary(_complete_session(), vehicle)
        self.assertEqual(summary.number_of_days, 3)
        self.assertEqual(summary.subtotal, 300.0)
        self.assertEqual(summary.service_fee, 45.0)
        self.assertEqual(summary.estimated_tax, 28.98)
        self.assertEqual(summary.estimated_total, 373.98)
        self.assertEqual(summary.deposit_amount, 250.0)
        self.assertEqual(summary.start_time, "10:00")

    def test_requires_location_and_dates(self) -> None:
        from booking_assistant.core.exceptions import ValidationError

        vehicle = VehicleSummary(id="v1", make="Kia", model="Rio", year=2020, daily_rate=40.0)
        with self.assertRaises(ValidationError):
            build_booking_summary(_complete_session(location=None), vehicle)


if __name__ == "__main__":
    unittest.main()
