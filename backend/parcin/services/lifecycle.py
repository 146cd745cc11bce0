"""
Reservation Lifecycle

Pure transition functions and fee arithmetic over model instances. Nothing
here touches the database or a provider; reservation_service.py loads the
rows under lock, calls into this module and commits.

Every transition takes `now` explicitly so the time guards (arrival window,
refund tiers) are deterministic.

Refund tiers are evaluated in a fixed order:
    1. >= 15 minutes before arrival window start -> 50% of the fee
    2. otherwise, <= 5 minutes since booking -> 100% of the fee
    3. otherwise -> nothing
A cancellation inside the grace period but well ahead of arrival therefore
gets 50%, not 100%.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from parcin.core.config import settings
from parcin.core.exceptions import InvalidStateError, ValidationError
from parcin.core.utils import ensure_aware, to_money, money_to_cents
from parcin.models.parking_lot import ParkingLot
from parcin.models.reservation import (
    Reservation,
    ReservationState,
    ReservationEvent,
    PaymentStatus,
    VALID_RESERVATION_TRANSITIONS,
    generate_reservation_id,
)


ARRIVAL_WINDOW_MINUTES = 30
DEFAULT_EXPECTED_HOURS = 2

CANCELLATION_GRACE_MINUTES = 5
EARLY_CANCELLATION_MINUTES = 15
EARLY_CANCELLATION_REFUND_RATIO = Decimal("0.5")

# Stripe rejects charges below this many cents
MINIMUM_CHARGE_CENTS = 50


@dataclass
class CheckoutCharge:
    """Final charge for a stay. Reported to the driver, not captured."""
    parking_hours: int
    total_amount: Decimal
    reservation_fee_paid: Decimal
    remaining_amount: Decimal


# =============================================================================
# TRANSITION TABLE
# =============================================================================

def allowed_targets(state: ReservationState, event: ReservationEvent) -> List[ReservationState]:
    return VALID_RESERVATION_TRANSITIONS.get(state, {}).get(event, [])


def _require_transition(reservation: Reservation, event: ReservationEvent, target: ReservationState):
    current = ReservationState(reservation.state)
    if target not in allowed_targets(current, event):
        raise InvalidStateError(
            f"Cannot {event.value.replace('_', ' ')} a reservation in state {current.value}",
            current_state=current.value,
            event=event.value,
        )


# =============================================================================
# FEES
# =============================================================================

def compute_reservation_fee(
    hourly_rate,
    pct: Optional[Decimal] = None,
    minimum: Optional[Decimal] = None,
) -> Decimal:
    """Up-front fee: a percentage of the hourly rate, never below the minimum."""
    pct = settings.RESERVATION_FEE_PCT if pct is None else pct
    minimum = settings.RESERVATION_FEE_MINIMUM if minimum is None else minimum
    fee = Decimal(str(hourly_rate)) * Decimal(str(pct))
    return to_money(max(fee, Decimal(str(minimum))))


def fee_to_charge_cents(fee) -> int:
    return max(money_to_cents(fee), MINIMUM_CHARGE_CENTS)


def compute_refund(reservation: Reservation, now: datetime) -> Decimal:
    """
    Refund owed if the reservation were cancelled at `now`.

    Only paid (CONFIRMED) reservations get money back; an unpaid one has
    nothing to refund.
    """
    if ReservationState(reservation.state) != ReservationState.CONFIRMED:
        return to_money(0)

    fee = to_money(reservation.reservation_fee_amount)
    minutes_until_arrival = (ensure_aware(reservation.arrival_window_start) - now) / timedelta(minutes=1)
    minutes_since_booking = (now - ensure_aware(reservation.created_at)) / timedelta(minutes=1)

    if minutes_until_arrival >= EARLY_CANCELLATION_MINUTES:
        return to_money(fee * EARLY_CANCELLATION_REFUND_RATIO)
    elif minutes_since_booking <= CANCELLATION_GRACE_MINUTES:
        return fee
    return to_money(0)


def compute_parking_hours(checkin_at: datetime, checkout_at: datetime) -> int:
    """Whole hours billed, rounding any started hour up."""
    hours, remainder = divmod(ensure_aware(checkout_at) - ensure_aware(checkin_at), timedelta(hours=1))
    return hours + (1 if remainder else 0)


def compute_checkout_charge(
    checkin_at: datetime,
    checkout_at: datetime,
    price_hourly,
    reservation_fee_paid,
) -> CheckoutCharge:
    hours = compute_parking_hours(checkin_at, checkout_at)
    total = to_money(Decimal(hours) * Decimal(str(price_hourly)))
    fee_paid = to_money(reservation_fee_paid)
    return CheckoutCharge(
        parking_hours=hours,
        total_amount=total,
        reservation_fee_paid=fee_paid,
        remaining_amount=max(to_money(0), total - fee_paid),
    )


# =============================================================================
# CREATION
# =============================================================================

def new_reservation(
    lot: ParkingLot,
    user_id: int,
    car_plate: str,
    now: datetime,
    expected_hours: Optional[int] = None,
    arrival_time: Optional[datetime] = None,
) -> Reservation:
    """
    Build a PENDING_PAYMENT reservation against `lot`.

    Availability checks belong to the caller, which holds the lot lock.
    Availability is not touched until payment is confirmed.
    """
    plate = (car_plate or "").strip()
    if not plate:
        raise ValidationError("Car plate is required")

    window_start = ensure_aware(arrival_time) if arrival_time else now
    pct = Decimal(str(settings.RESERVATION_FEE_PCT))

    return Reservation(
        id=generate_reservation_id(),
        user_id=user_id,
        lot_id=lot.id,
        state=ReservationState.PENDING_PAYMENT,
        arrival_window_start=window_start,
        arrival_window_end=window_start + timedelta(minutes=ARRIVAL_WINDOW_MINUTES),
        car_plate=plate,
        price_hourly=to_money(lot.pricing_hourly),
        expected_hours=expected_hours or DEFAULT_EXPECTED_HOURS,
        reservation_pct=pct,
        reservation_fee_amount=compute_reservation_fee(lot.pricing_hourly, pct=pct),
        payment_provider="stripe",
        payment_status=PaymentStatus.REQUIRES_PAYMENT,
        refund_amount=to_money(0),
        created_at=now,
        updated_at=now,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================

def confirm(reservation: Reservation, lot: ParkingLot, now: datetime) -> None:
    """PENDING_PAYMENT -> CONFIRMED. Payment is PAID and one spot is held."""
    _require_transition(reservation, ReservationEvent.CONFIRM, ReservationState.CONFIRMED)

    reservation.state = ReservationState.CONFIRMED
    reservation.payment_status = PaymentStatus.PAID
    reservation.updated_at = now
    lot.occupy_spot()


def expire_for_payment_failure(reservation: Reservation, now: datetime) -> None:
    """PENDING_PAYMENT -> EXPIRED. No spot was held so availability is untouched."""
    _require_transition(reservation, ReservationEvent.PAYMENT_FAILED, ReservationState.EXPIRED)

    reservation.state = ReservationState.EXPIRED
    reservation.payment_status = PaymentStatus.FAILED
    reservation.updated_at = now


def check_in(reservation: Reservation, now: datetime) -> ReservationState:
    """
    CONFIRMED -> CHECKED_IN, or NO_SHOW when `now` is past the arrival window.

    A no-show keeps its spot decremented. Returns the new state so the caller
    can report the no-show after persisting it.
    """
    if ensure_aware(reservation.arrival_window_end) < now:
        _require_transition(reservation, ReservationEvent.CHECK_IN, ReservationState.NO_SHOW)
        reservation.state = ReservationState.NO_SHOW
        reservation.updated_at = now
        return ReservationState.NO_SHOW

    _require_transition(reservation, ReservationEvent.CHECK_IN, ReservationState.CHECKED_IN)
    reservation.state = ReservationState.CHECKED_IN
    reservation.checkin_at = now
    reservation.updated_at = now
    return ReservationState.CHECKED_IN


def check_out(reservation: Reservation, lot: ParkingLot, now: datetime) -> CheckoutCharge:
    """CHECKED_IN -> CHECKED_OUT. Releases the spot and computes the final charge."""
    _require_transition(reservation, ReservationEvent.CHECK_OUT, ReservationState.CHECKED_OUT)

    charge = compute_checkout_charge(
        reservation.checkin_at,
        now,
        reservation.price_hourly,
        reservation.reservation_fee_amount,
    )
    reservation.state = ReservationState.CHECKED_OUT
    reservation.checkout_at = now
    reservation.updated_at = now
    lot.release_spot()
    return charge


def cancel(reservation: Reservation, lot: ParkingLot, now: datetime) -> Decimal:
    """
    PENDING_PAYMENT or CONFIRMED -> CANCELLED.

    Returns the refund amount. A previously CONFIRMED reservation gives its
    spot back; an unpaid one keeps REQUIRES_PAYMENT.
    """
    _require_transition(reservation, ReservationEvent.CANCEL, ReservationState.CANCELLED)

    previous_state = ReservationState(reservation.state)
    refund = compute_refund(reservation, now)

    reservation.state = ReservationState.CANCELLED
    reservation.refund_amount = refund
    reservation.updated_at = now

    if previous_state == ReservationState.CONFIRMED:
        reservation.payment_status = PaymentStatus.REFUNDED if refund > 0 else PaymentStatus.PAID
        lot.release_spot()

    return refund
