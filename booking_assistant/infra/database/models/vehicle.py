"""Inventory ORM models: Host, Vehicle, VehicleBlock, VehicleReview."""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_assistant.infra.database.models.base import Base, TimestampMixin, _uuid_pk


class Host(Base, TimestampMixin):
    __tablename__ = "hosts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_deposit: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    """Applies to every vehicle of this host with ``use_host_deposit``."""

    vehicles: Mapped[List["Vehicle"]] = relationship("Vehicle", back_populates="host")


class Vehicle(Base, TimestampMixin):
    __tablename__ = "vehicles"
    __table_args__ = (
        Index("ix_vehicles_city", "city"),
        Index("ix_vehicles_daily_rate", "daily_rate"),
        Index("ix_vehicles_make", "make"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    host_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("hosts.id", ondelete="SET NULL"), nullable=True,
    )
    make: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_rate: Mapped[float] = mapped_column(Float, nullable=False)
    car_type: Mapped[str] = mapped_column(String(32), nullable=False, server_default="")
    """Body style: sedan, suv, truck, convertible, ..."""

    city: Mapped[str] = mapped_column(String(64), nullable=False)
    """Canonical "City, AZ"."""

    fuel_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    seats: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    transmission: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    trip_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    instant_book: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    rideshare_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    delivery_available: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    use_host_deposit: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    vehicle_deposit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    host: Mapped[Optional["Host"]] = relationship("Host", back_populates="vehicles", lazy="joined")

    def __repr__(self) -> str:
        return f"Vehicle(id={self.id!r}, {self.year} {self.make} {self.model}, city={self.city!r})"


class VehicleBlock(Base):
    """A date range in which the vehicle is booked or blocked by its host."""

    __tablename__ = "vehicle_blocks"
    __table_args__ = (Index("ix_vehicle_blocks_vehicle_dates", "vehicle_id", "start_date", "end_date"),)

    id: Mapped[uuid.UUID] = _uuid_pk()
    vehicle_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class VehicleReview(Base):
    __tablename__ = "vehicle_reviews"
    __table_args__ = (Index("ix_vehicle_reviews_vehicle_id", "vehicle_id"),)

    id: Mapped[uuid.UUID] = _uuid_pk()
    vehicle_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False,
    )
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    reviewer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )
