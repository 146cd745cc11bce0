"""
Reservation model

A driver's booking of one spot in a parking lot. The row moves through the
state machine in VALID_RESERVATION_TRANSITIONS; services/lifecycle.py is the
only code that changes `state`.

- Monetary fields are Numeric(10, 2)
- Timestamps are timezone-aware UTC
- Unpaid rows are purged after PENDING_RESERVATION_TTL_MINUTES by
  services/reservation_cleanup.py
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Index, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship

from parcin.core.database import Base


# =============================================================================
# ENUMS
# =============================================================================

class ReservationState(str, PyEnum):
    """
    Reservation state machine.

    1. Booking request -> PENDING_PAYMENT
    2. Payment succeeds -> CONFIRMED (spot is held)
       Payment fails -> EXPIRED
    3. Driver arrives inside the window -> CHECKED_IN
       Driver arrives late -> NO_SHOW
    4. Driver leaves -> CHECKED_OUT (spot released)
    PENDING_PAYMENT and CONFIRMED can also be CANCELLED.
    """
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"

    # Terminal states
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    CHECKED_OUT = "CHECKED_OUT"


class PaymentStatus(str, PyEnum):
    REQUIRES_PAYMENT = "REQUIRES_PAYMENT"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class ReservationEvent(str, PyEnum):
    """Events that drive reservation transitions."""
    CONFIRM = "confirm"
    PAYMENT_FAILED = "payment_failed"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    CANCEL = "cancel"


# Allowed target states per (state, event). Anything absent is InvalidState.
VALID_RESERVATION_TRANSITIONS = {
    ReservationState.PENDING_PAYMENT: {
        ReservationEvent.CONFIRM: [ReservationState.CONFIRMED],
        ReservationEvent.PAYMENT_FAILED: [ReservationState.EXPIRED],
        ReservationEvent.CANCEL: [ReservationState.CANCELLED],
    },
    ReservationState.CONFIRMED: {
        ReservationEvent.CHECK_IN: [ReservationState.CHECKED_IN, ReservationState.NO_SHOW],
        ReservationEvent.CANCEL: [ReservationState.CANCELLED],
    },
    ReservationState.CHECKED_IN: {
        ReservationEvent.CHECK_OUT: [ReservationState.CHECKED_OUT],
    },
    # Terminal states
    ReservationState.EXPIRED: {},
    ReservationState.CANCELLED: {},
    ReservationState.NO_SHOW: {},
    ReservationState.CHECKED_OUT: {},
}

TERMINAL_STATES = frozenset(
    state for state, events in VALID_RESERVATION_TRANSITIONS.items() if not events
)

# States in which a reservation still has a claim on its lot
ACTIVE_STATES = (
    ReservationState.PENDING_PAYMENT,
    ReservationState.CONFIRMED,
    ReservationState.CHECKED_IN,
)


def generate_reservation_id() -> str:
    return str(uuid.uuid4())


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=generate_reservation_id)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lot_id = Column(Integer, ForeignKey("parking_lots.id", ondelete="CASCADE"), nullable=False)

    state = Column(
        Enum(ReservationState, name="reservation_state"),
        default=ReservationState.PENDING_PAYMENT,
        nullable=False,
    )

    # Window in which the driver must check in
    arrival_window_start = Column(DateTime(timezone=True), nullable=False)
    arrival_window_end = Column(DateTime(timezone=True), nullable=False)

    car_plate = Column(String(20), nullable=False)

    # Informational estimate, not what gets charged
    price_hourly = Column(Numeric(10, 2), nullable=False)
    expected_hours = Column(Integer, nullable=True)

    # Frozen at creation
    reservation_pct = Column(Numeric(5, 4), nullable=False)
    reservation_fee_amount = Column(Numeric(10, 2), nullable=False)

    # Payment
    payment_provider = Column(String(20), default="stripe", nullable=False)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_status = Column(
        Enum(PaymentStatus, name="reservation_payment_status"),
        default=PaymentStatus.REQUIRES_PAYMENT,
        nullable=False,
    )
    refund_amount = Column(Numeric(10, 2), default=0, nullable=False)

    checkin_at = Column(DateTime(timezone=True), nullable=True)
    checkout_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user = relationship("User", back_populates="reservations")
    lot = relationship("ParkingLot", back_populates="reservations")

    __table_args__ = (
        Index("ix_reservations_lot_state", "lot_id", "state"),
        Index("ix_reservations_user_state", "user_id", "state"),
        CheckConstraint("reservation_fee_amount >= 0", name="ck_reservation_fee_non_negative"),
        CheckConstraint("refund_amount >= 0", name="ck_reservation_refund_non_negative"),
        CheckConstraint(
            "checkout_at IS NULL OR checkin_at IS NULL OR checkout_at >= checkin_at",
            name="ck_reservation_checkout_after_checkin",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self):
        return f"<Reservation(id={self.id!r}, lot_id={self.lot_id}, state={self.state})>"
