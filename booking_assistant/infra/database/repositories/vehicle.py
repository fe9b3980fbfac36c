"""SQL-backed inventory: PredicateSet → SELECT, plus reviews.

``VehicleRepository`` satisfies ``search.inventory.InventoryStore`` so the
relaxation engine can run against Postgres exactly as it runs in memory.
"""
from __future__ import annotations

import logging
from functools import singledispatch
from typing import ClassVar, List, Optional

from sqlalchemy import and_, exists, false, func, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from booking_assistant.booking.types import VehicleSummary
from booking_assistant.infra.database.models.vehicle import Host, Vehicle, VehicleBlock, VehicleReview
from booking_assistant.infra.database.repositories.base import BaseRepository
from booking_assistant.search.composer import (
    CategoryGroupPredicate,
    CategoryLiteralPredicate,
    DepositExemptPredicate,
    FlagPredicate,
    MakePredicate,
    ModelPredicate,
    Predicate,
    PredicateSet,
    PriceRangePredicate,
    SeatsPredicate,
    TransmissionPredicate,
)
from booking_assistant.search.inventory import DEFAULT_LIMIT
from booking_assistant.tools.builtin.reviews import Review

logger = logging.getLogger(__name__)


# ── Predicate → SQL ───────────────────────────────────────────────────────────


@singledispatch
def predicate_clause(predicate: Predicate) -> ColumnElement[bool]:
    raise NotImplementedError(f"No SQL translation for {type(predicate).__name__}")


@predicate_clause.register
def _(predicate: PriceRangePredicate) -> ColumnElement[bool]:
    clauses = []
    if predicate.min_daily is not None:
        clauses.append(Vehicle.daily_rate >= predicate.min_daily)
    if predicate.max_daily is not None:
        clauses.append(Vehicle.daily_rate <= predicate.max_daily)
    return and_(true(), *clauses)


@predicate_clause.register
def _(predicate: CategoryGroupPredicate) -> ColumnElement[bool]:
    rule = predicate.rule
    criteria = []
    if rule.body_styles:
        criteria.append(func.lower(Vehicle.car_type).in_(list(rule.body_styles)))
    if rule.fuel_types:
        criteria.append(func.lower(Vehicle.fuel_type).in_(list(rule.fuel_types)))
    if rule.makes:
        criteria.append(func.lower(Vehicle.make).in_([m.lower() for m in rule.makes]))
    if rule.min_daily_rate is not None:
        criteria.append(Vehicle.daily_rate >= rule.min_daily_rate)
    if rule.max_daily_rate is not None:
        criteria.append(Vehicle.daily_rate <= rule.max_daily_rate)
    if not criteria:
        return false()
    return and_(*criteria) if rule.match == "all" else or_(*criteria)


@predicate_clause.register
def _(predicate: CategoryLiteralPredicate) -> ColumnElement[bool]:
    return func.lower(Vehicle.car_type).contains(predicate.text.strip().lower(), autoescape=True)


@predicate_clause.register
def _(predicate: MakePredicate) -> ColumnElement[bool]:
    return func.lower(Vehicle.make) == predicate.make.strip().lower()


@predicate_clause.register
def _(predicate: ModelPredicate) -> ColumnElement[bool]:
    return func.lower(Vehicle.model).contains(predicate.text.strip().lower(), autoescape=True)


@predicate_clause.register
def _(predicate: SeatsPredicate) -> ColumnElement[bool]:
    return func.coalesce(Vehicle.seats, 0) >= predicate.min_seats


@predicate_clause.register
def _(predicate: TransmissionPredicate) -> ColumnElement[bool]:
    return func.lower(Vehicle.transmission) == predicate.value.strip().lower()


@predicate_clause.register
def _(predicate: DepositExemptPredicate) -> ColumnElement[bool]:
    return or_(
        and_(Vehicle.use_host_deposit.is_(False), func.coalesce(Vehicle.vehicle_deposit, 0) == 0),
        and_(Vehicle.use_host_deposit.is_(True), func.coalesce(Host.default_deposit, 0) == 0),
    )


_FLAG_COLUMNS = {
    "instant_book": Vehicle.instant_book,
    "rideshare": Vehicle.rideshare_eligible,
    "delivery": Vehicle.delivery_available,
}


@predicate_clause.register
def _(predicate: FlagPredicate) -> ColumnElement[bool]:
    return _FLAG_COLUMNS[predicate.flag].is_(True)


def _available(predicates: PredicateSet) -> ColumnElement[bool]:
    overlapping = (
        select(VehicleBlock.id)
        .where(
            VehicleBlock.vehicle_id == Vehicle.id,
            VehicleBlock.start_date < predicates.end_date,
            VehicleBlock.end_date > predicates.start_date,
        )
    )
    return ~exists(overlapping)


def to_summary(vehicle: Vehicle, host_deposit: Optional[float]) -> VehicleSummary:
    return VehicleSummary(
        id=vehicle.id,
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        daily_rate=float(vehicle.daily_rate),
        car_type=vehicle.car_type or "",
        city=vehicle.city,
        rating=vehicle.rating,
        trip_count=vehicle.trip_count or 0,
        instant_book=bool(vehicle.instant_book),
        seats=vehicle.seats,
        transmission=vehicle.transmission,
        fuel_type=vehicle.fuel_type,
        rideshare_eligible=bool(vehicle.rideshare_eligible),
        delivery_available=bool(vehicle.delivery_available),
        use_host_deposit=bool(vehicle.use_host_deposit),
        vehicle_deposit=vehicle.vehicle_deposit,
        host_deposit=host_deposit,
        photo_url=vehicle.photo_url,
    )


# ── Repositories ──────────────────────────────────────────────────────────────


class VehicleRepository(BaseRepository[Vehicle]):
    model: ClassVar[type] = Vehicle

    def build_query(self, predicates: PredicateSet, *, limit: int = DEFAULT_LIMIT):
        stmt = (
            select(Vehicle, Host.default_deposit)
            .outerjoin(Host, Vehicle.host_id == Host.id)
            .where(
                Vehicle.is_active.is_(True),
                Vehicle.city.in_(list(predicates.cities)),
                _available(predicates),
                *(predicate_clause(p) for p in predicates.predicates),
            )
        )
        if predicates.sort_by_price:
            stmt = stmt.order_by(Vehicle.daily_rate.asc(), Vehicle.id.asc())
        else:
            stmt = stmt.order_by(
                Vehicle.rating.desc().nulls_last(),
                Vehicle.trip_count.desc(),
                Vehicle.daily_rate.asc(),
                Vehicle.id.asc(),
            )
        return stmt.limit(limit)

    async def query(self, predicates: PredicateSet, *, limit: int = DEFAULT_LIMIT) -> List[VehicleSummary]:
        result = await self.session.execute(self.build_query(predicates, limit=limit))
        rows = result.all()
        logger.debug("VehicleRepository: %d vehicles for %s", len(rows), predicates.groups)
        return [to_summary(vehicle, deposit) for vehicle, deposit in rows]

    async def get(self, vehicle_id: str) -> Optional[VehicleSummary]:
        stmt = (
            select(Vehicle, Host.default_deposit)
            .outerjoin(Host, Vehicle.host_id == Host.id)
            .where(Vehicle.id == vehicle_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        vehicle, deposit = row
        return to_summary(vehicle, deposit)


class VehicleReviewRepository(BaseRepository[VehicleReview]):
    """``ReviewSource`` over the vehicle_reviews table."""

    model: ClassVar[type] = VehicleReview

    async def reviews_for(self, vehicle_id: str, *, limit: int = 3) -> List[Review]:
        stmt = (
            select(VehicleReview)
            .where(VehicleReview.vehicle_id == vehicle_id)
            .order_by(VehicleReview.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            Review(vehicle_id=r.vehicle_id, rating=r.rating, comment=r.comment, reviewer=r.reviewer_name)
            for r in result.scalars().all()
        ]
