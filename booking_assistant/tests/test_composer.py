"""Tests for lookup tables, normalisers and the query composer."""
from __future__ import annotations

import unittest
from datetime import date

from booking_assistant.booking.types import SearchQuery, VehicleSummary
from booking_assistant.core.exceptions import ConfigurationError, ValidationError
from booking_assistant.extraction.intent_detector import IntentDetector
from booking_assistant.extraction.merge import merge_turn_query
from booking_assistant.search.composer import (
    CategoryGroupPredicate,
    CategoryLiteralPredicate,
    DepositExemptPredicate,
    FlagPredicate,
    MakePredicate,
    PredicateSet,
    PriceRangePredicate,
    QueryComposer,
    SeatsPredicate,
    TransmissionPredicate,
)
from booking_assistant.search.normalize import (
    metro_cities,
    normalize_category,
    normalize_make,
    normalize_transmission,
)
from booking_assistant.search.tables import LookupTables

PICKUP, RETURN = date(2030, 6, 10), date(2030, 6, 13)


def _vehicle(vid: str, **kw) -> VehicleSummary:
    base = dict(id=vid, make="Toyota", model="Camry", year=2022, daily_rate=60.0,
                car_type="sedan", city="Phoenix, AZ")
    base.update(kw)
    return VehicleSummary(**base)


class TestNormalizers(unittest.TestCase):
    def test_make_aliases(self) -> None:
        self.assertEqual(normalize_make("chevy"), "Chevrolet")
        self.assertEqual(normalize_make("Mercedes Benz"), "Mercedes-Benz")
        self.assertEqual(normalize_make("bugatti"), "Bugatti")
        self.assertEqual(normalize_make("zastava"), "Zastava")
        self.assertIsNone(normalize_make(" "))

    def test_category_aliases(self) -> None:
        self.assertEqual(normalize_category("SUVs"), "suv")
        self.assertEqual(normalize_category("EV"), "electric")
        self.assertEqual(normalize_category("cheap"), "economy")
        self.assertEqual(normalize_category("limousine"), "limousine")

    def test_transmission(self) -> None:
        self.assertEqual(normalize_transmission("stick shift"), "manual")
        self.assertEqual(normalize_transmission("Auto"), "automatic")

    def test_metro_expansion(self) -> None:
        cities = metro_cities("Old Town")
        self.assertIn("Scottsdale, AZ", cities)
        self.assertIn("Tempe, AZ", cities)
        self.assertNotIn("Tucson, AZ", cities)
        self.assertEqual(metro_cities("Sedona"), ("Sedona, AZ",))
        self.assertEqual(metro_cities("Reno"), ())


class TestLookupTables(unittest.TestCase):
    def test_round_trip_through_dict(self) -> None:
        tables = LookupTables.default()
        again = LookupTables.from_dict(tables.to_dict())
        self.assertEqual(again.serviced_cities, tables.serviced_cities)
        self.assertEqual(again.categories["luxury"], tables.categories["luxury"])

    def test_bad_alias_target(self) -> None:
        with self.assertRaises(ConfigurationError):
            LookupTables.from_dict({"metros": {"x": ["A"]}, "location_aliases": {"b": "Nowhere"}})

    def test_needs_a_metro(self) -> None:
        with self.assertRaises(ConfigurationError):
            LookupTables.from_dict({})


class TestComposer(unittest.TestCase):
    def setUp(self) -> None:
        self.composer = QueryComposer()

    def test_cheap_suv_under_budget_without_deposit(self) -> None:
        message = "cheap SUV under $50/day in Scottsdale, no deposit"
        detector = IntentDetector()
        query = merge_turn_query(
            None,
            SearchQuery(location="Scottsdale", pickup_date=PICKUP, return_date=RETURN),
            detector.detect(message),
            budget=detector.detect_budget(message),
        )
        predicates = self.composer.compose(query)

        self.assertIn("Scottsdale, AZ", predicates.cities)
        self.assertIn("Mesa, AZ", predicates.cities)
        price = predicates.find(PriceRangePredicate)
        self.assertEqual(price.max_daily, 50)
        self.assertIsNone(price.min_daily)
        self.assertEqual(predicates.find(CategoryGroupPredicate).rule.name, "suv")
        self.assertIsNotNone(predicates.find(DepositExemptPredicate))
        self.assertTrue(predicates.sort_by_price)
        self.assertEqual(predicates.groups, ("price", "category", "deposit"))

    def test_location_normalisation_is_idempotent(self) -> None:
        once = self.composer.normalize(SearchQuery(location="pheonix", make="vw", car_type="EVs"))
        twice = self.composer.normalize(once)
        self.assertEqual(once, twice)
        self.assertEqual(once.location, "Phoenix, AZ")
        self.assertEqual(once.make, "Volkswagen")
        self.assertEqual(once.car_type, "electric")

    def test_unmapped_category_is_literal(self) -> None:
        query = SearchQuery(location="Tempe", pickup_date=PICKUP, return_date=RETURN, car_type="Limousine")
        literal = self.composer.compose(query).find(CategoryLiteralPredicate)
        self.assertEqual(literal.text, "limousine")
        self.assertTrue(literal.matches(_vehicle("v1", car_type="Stretch Limousine")))

    def test_every_filter(self) -> None:
        query = SearchQuery(
            location="Mesa", pickup_date=PICKUP, return_date=RETURN,
            make="beemer", seats=5, transmission="stick", instant_book=True, delivery=True,
            rideshare=False,
        )
        predicates = self.composer.compose(query)
        self.assertEqual(predicates.find(MakePredicate).make, "BMW")
        self.assertEqual(predicates.find(SeatsPredicate).min_seats, 5)
        self.assertEqual(predicates.find(TransmissionPredicate).value, "manual")
        flags = sorted(p.flag for p in predicates.predicates if isinstance(p, FlagPredicate))
        self.assertEqual(flags, ["delivery", "instant_book"])

    def test_needs_floor(self) -> None:
        with self.assertRaises(ValidationError):
            self.composer.compose(SearchQuery(pickup_date=PICKUP, return_date=RETURN))
        with self.assertRaises(ValidationError):
            self.composer.compose(SearchQuery(location="Phoenix"))
        with self.assertRaises(ValidationError):
            self.composer.compose(SearchQuery(location="Reno", pickup_date=PICKUP, return_date=RETURN))

    def test_inverted_price_bounds(self) -> None:
        query = SearchQuery(location="Phoenix", pickup_date=PICKUP, return_date=RETURN,
                            price_min=100, price_max=50)
        with self.assertRaises(ValidationError) as ctx:
            self.composer.compose(query)
        self.assertEqual(ctx.exception.field, "price_min")


class TestPredicates(unittest.TestCase):
    def test_deposit_exempt_covers_both_configurations(self) -> None:
        p = DepositExemptPredicate()
        self.assertTrue(p.matches(_vehicle("a", use_host_deposit=False, vehicle_deposit=0)))
        self.assertTrue(p.matches(_vehicle("b", use_host_deposit=False, vehicle_deposit=None)))
        self.assertFalse(p.matches(_vehicle("c", use_host_deposit=False, vehicle_deposit=200)))
        self.assertTrue(p.matches(_vehicle("d", use_host_deposit=True, host_deposit=0, vehicle_deposit=300)))
        self.assertFalse(p.matches(_vehicle("e", use_host_deposit=True, host_deposit=150, vehicle_deposit=0)))

    def test_luxury_matches_make_or_rate(self) -> None:
        p = CategoryGroupPredicate(LookupTables.default().categories["luxury"])
        self.assertTrue(p.matches(_vehicle("a", make="BMW", daily_rate=90)))
        self.assertTrue(p.matches(_vehicle("b", make="Ford", daily_rate=180)))
        self.assertFalse(p.matches(_vehicle("c", make="Ford", daily_rate=80)))

    def test_economy_needs_all_criteria(self) -> None:
        p = CategoryGroupPredicate(LookupTables.default().categories["economy"])
        self.assertTrue(p.matches(_vehicle("a", car_type="compact", daily_rate=45)))
        self.assertFalse(p.matches(_vehicle("b", car_type="compact", daily_rate=85)))
        self.assertFalse(p.matches(_vehicle("c", car_type="suv", daily_rate=45)))

    def test_unknown_flag(self) -> None:
        with self.assertRaises(ValidationError):
            FlagPredicate("teleport")


class TestPredicateSet(unittest.TestCase):
    def test_dict_round_trip(self) -> None:
        query = SearchQuery(
            location="Scottsdale", pickup_date=PICKUP, return_date=RETURN,
            price_min=30, price_max=120, car_type="luxury", make="audi", model="Q5",
            seats=4, transmission="automatic", no_deposit=True, rideshare=True, sort_by_price=True,
        )
        predicates = QueryComposer().compose(query)
        self.assertEqual(PredicateSet.from_dict(predicates.to_dict()), predicates)

    def test_without_removes_groups(self) -> None:
        query = SearchQuery(location="Phoenix", pickup_date=PICKUP, return_date=RETURN,
                            price_max=50, car_type="suv", make="Ford")
        relaxed = QueryComposer().compose(query).without("price", "category")
        self.assertEqual(relaxed.groups, ("make",))

    def test_rejects_empty_range(self) -> None:
        with self.assertRaises(ValidationError):
            PredicateSet(cities=("Phoenix, AZ",), start_date=PICKUP, end_date=PICKUP)
        with self.assertRaises(ValidationError):
            PredicateSet(cities=(), start_date=PICKUP, end_date=RETURN)

    def test_query_dict_round_trip(self) -> None:
        query = SearchQuery(location="Tempe, AZ", pickup_date=PICKUP, return_date=RETURN,
                            price_max=75.0, no_deposit=False, seats=5)
        self.assertEqual(SearchQuery.from_dict(query.to_dict()), query)


if __name__ == "__main__":
    unittest.main()
