"""
Parking Lot model

Operators own lots. The reservation lifecycle only writes
`availability_manual`, always through the clamped helpers below so the
counter stays inside [0, capacity].
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Numeric, ForeignKey, JSON, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship

from parcin.core.database import Base


class LotStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ParkingLot(Base):
    __tablename__ = "parking_lots"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_lot_capacity_positive"),
        CheckConstraint("availability_manual >= 0", name="ck_lot_availability_non_negative"),
        CheckConstraint("availability_manual <= capacity", name="ck_lot_availability_within_capacity"),
        CheckConstraint("pricing_hourly > 0", name="ck_lot_hourly_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    operator_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Location
    address = Column(String(500), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Pricing
    pricing_hourly = Column(Numeric(10, 2), nullable=False)
    pricing_daily_max = Column(Numeric(10, 2), nullable=True)

    # Spots
    capacity = Column(Integer, nullable=False)
    availability_manual = Column(Integer, nullable=False, default=0)

    amenities = Column(JSON, default=list)
    status = Column(Enum(LotStatus, name="lot_status"), default=LotStatus.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    operator = relationship("User", back_populates="lots")
    reservations = relationship("Reservation", back_populates="lot")

    def occupy_spot(self) -> int:
        """Take one spot, never going below zero. Returns the new count."""
        self.availability_manual = max(0, (self.availability_manual or 0) - 1)
        return self.availability_manual

    def release_spot(self) -> int:
        """Give one spot back, never exceeding capacity. Returns the new count."""
        self.availability_manual = min(self.capacity, (self.availability_manual or 0) + 1)
        return self.availability_manual

    def set_availability(self, availability: int) -> int:
        """Operator override, clamped to [0, capacity]."""
        self.availability_manual = max(0, min(self.capacity, availability))
        return self.availability_manual

    def resize(self, capacity: int) -> int:
        """Change capacity and shift availability by the same delta."""
        delta = capacity - self.capacity
        self.capacity = capacity
        return self.set_availability((self.availability_manual or 0) + delta)

    def __repr__(self):
        return (
            f"<ParkingLot(id={self.id}, name={self.name!r}, "
            f"availability={self.availability_manual}/{self.capacity})>"
        )
