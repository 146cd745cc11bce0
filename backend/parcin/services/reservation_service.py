"""
Reservation Service

Runs every lifecycle transition inside one database transaction:

1. Load the reservation row and its lot row with SELECT ... FOR UPDATE
2. Apply the pure transition from services/lifecycle.py
3. Commit the reservation change and the availability change together
4. Talk to external providers (Stripe refunds) only after the commit

Concurrent confirm/cancel/checkout calls and duplicate webhooks serialize on
the row locks, so the availability counter is moved at most once per edge.
"""
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.config import settings
from parcin.core.exceptions import (
    ArrivalWindowExpired,
    InvalidStateError,
    LotUnavailableError,
    NoCapacityError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from parcin.core.utils import utcnow, to_money, money_to_cents
from parcin.models import (
    ParkingLot,
    LotStatus,
    Reservation,
    ReservationState,
    PaymentStatus,
    User,
    UserRole,
)
from parcin.services import lifecycle
from parcin.services.lifecycle import CheckoutCharge
from parcin.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

USER_RESERVATION_LIMIT = 50


def log_metric(event: str, **fields) -> None:
    parts = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.info(f"RESERVATION_METRIC: {event} {parts}".rstrip())


class ReservationService:
    """Transactional reservation operations."""

    # =========================================================================
    # LOADING
    # =========================================================================

    @staticmethod
    async def get_reservation_with_lot(
        db: AsyncSession,
        reservation_id: str,
    ) -> Tuple[Reservation, Optional[ParkingLot]]:
        result = await db.execute(
            select(Reservation, ParkingLot)
            .outerjoin(ParkingLot, ParkingLot.id == Reservation.lot_id)
            .where(Reservation.id == reservation_id)
        )
        row = result.first()
        if not row:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return row[0], row[1]

    @staticmethod
    async def get_lot(db: AsyncSession, lot_id: int, for_update: bool = False) -> ParkingLot:
        query = select(ParkingLot).where(ParkingLot.id == lot_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        lot = result.scalar_one_or_none()
        if not lot:
            raise NotFoundError(f"Parking lot {lot_id} not found")
        return lot

    @staticmethod
    async def lock_reservation(db: AsyncSession, reservation_id: str) -> Tuple[Reservation, ParkingLot]:
        """Lock the reservation row, then its lot row. Always in that order."""
        result = await db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found")

        lot = await ReservationService.get_lot(db, reservation.lot_id, for_update=True)
        return reservation, lot

    @staticmethod
    def ensure_access(reservation: Reservation, lot: Optional[ParkingLot], user: Optional[User]) -> None:
        """
        The driver who booked, the lot's operator and admins may act on a
        reservation. Anyone else gets NotFound.
        """
        if user is None:
            return
        if reservation.user_id == user.id or user.role == UserRole.ADMIN:
            return
        if lot is not None and user.role == UserRole.OPERATOR and lot.operator_user_id == user.id:
            return
        raise NotFoundError(f"Reservation {reservation.id} not found")

    # =========================================================================
    # CREATION & PAYMENT INTENT
    # =========================================================================

    @staticmethod
    async def create_reservation(
        db: AsyncSession,
        user: User,
        lot_id: int,
        car_plate: str,
        expected_hours: Optional[int] = None,
        arrival_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Reservation, ParkingLot]:
        """
        Create a PENDING_PAYMENT reservation. Availability is not changed.

        Raises:
            NotFoundError: Lot does not exist
            LotUnavailableError: Lot is not ACTIVE
            NoCapacityError: Lot has no free spots
            ValidationError: Blank car plate
        """
        now = now or utcnow()
        lot = await ReservationService.get_lot(db, lot_id, for_update=True)

        if lot.status != LotStatus.ACTIVE:
            raise LotUnavailableError(
                "Parking lot is not available",
                details={"lot_id": lot.id, "status": getattr(lot.status, "value", lot.status)},
            )
        if (lot.availability_manual or 0) <= 0:
            raise NoCapacityError("No available spots", details={"lot_id": lot.id})

        reservation = lifecycle.new_reservation(
            lot,
            user_id=user.id,
            car_plate=car_plate,
            now=now,
            expected_hours=expected_hours,
            arrival_time=arrival_time,
        )
        db.add(reservation)
        await db.commit()

        log_metric(
            "created",
            reservation_id=reservation.id,
            user_id=user.id,
            lot_id=lot.id,
            fee=reservation.reservation_fee_amount,
        )
        return reservation, lot

    @staticmethod
    async def create_payment_intent(
        db: AsyncSession,
        reservation_id: str,
        user: Optional[User],
        gateway: PaymentGateway,
    ) -> Dict[str, Any]:
        """
        Create a Stripe PaymentIntent for the reservation fee and store its id.

        Raises:
            NotFoundError: Reservation does not exist
            InvalidStateError: Reservation is not PENDING_PAYMENT
            PaymentProviderError: Stripe failed; nothing is stored
        """
        start_time = time.time()
        reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        ReservationService.ensure_access(reservation, lot, user)

        if reservation.state != ReservationState.PENDING_PAYMENT:
            raise InvalidStateError(
                "Reservation is not in pending payment state",
                current_state=getattr(reservation.state, "value", reservation.state),
                event="create_payment_intent",
            )

        amount_cents = lifecycle.fee_to_charge_cents(reservation.reservation_fee_amount)
        intent = gateway.create_intent(
            amount_cents=amount_cents,
            currency=settings.PAYMENT_CURRENCY,
            metadata={
                "reservation_id": reservation.id,
                "user_id": reservation.user_id,
                "lot_id": reservation.lot_id,
            },
        )

        reservation.payment_intent_id = intent.intent_id
        reservation.payment_provider = gateway.provider
        reservation.updated_at = utcnow()
        await db.commit()

        duration_ms = (time.time() - start_time) * 1000
        log_metric(
            "payment_intent_created",
            reservation_id=reservation.id,
            intent_id=intent.intent_id,
            amount_cents=amount_cents,
            duration_ms=f"{duration_ms:.2f}",
        )

        return {
            "client_secret": intent.client_secret,
            "payment_intent_id": intent.intent_id,
            "amount": amount_cents,
            "currency": settings.PAYMENT_CURRENCY,
        }

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    @staticmethod
    async def confirm(
        db: AsyncSession,
        reservation_id: str,
        user: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Reservation, ParkingLot]:
        now = now or utcnow()
        reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        ReservationService.ensure_access(reservation, lot, user)

        lifecycle.confirm(reservation, lot, now)
        await db.commit()

        log_metric(
            "confirmed",
            reservation_id=reservation.id,
            lot_id=lot.id,
            availability=lot.availability_manual,
        )
        return reservation, lot

    @staticmethod
    async def check_in(
        db: AsyncSession,
        reservation_id: str,
        user: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Reservation, ParkingLot]:
        """
        Raises:
            ArrivalWindowExpired: Arrival window has passed; the reservation
                has been committed as NO_SHOW
        """
        now = now or utcnow()
        reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        ReservationService.ensure_access(reservation, lot, user)

        new_state = lifecycle.check_in(reservation, now)
        await db.commit()

        if new_state == ReservationState.NO_SHOW:
            log_metric("no_show", reservation_id=reservation.id, lot_id=lot.id)
            raise ArrivalWindowExpired(
                "Arrival window has expired. Reservation marked as no-show.",
                current_state=ReservationState.NO_SHOW.value,
                event="check_in",
            )

        log_metric("checked_in", reservation_id=reservation.id, lot_id=lot.id)
        return reservation, lot

    @staticmethod
    async def check_out(
        db: AsyncSession,
        reservation_id: str,
        user: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Reservation, ParkingLot, CheckoutCharge]:
        now = now or utcnow()
        reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        ReservationService.ensure_access(reservation, lot, user)

        charge = lifecycle.check_out(reservation, lot, now)
        await db.commit()

        log_metric(
            "checked_out",
            reservation_id=reservation.id,
            lot_id=lot.id,
            parking_hours=charge.parking_hours,
            total=charge.total_amount,
            remaining=charge.remaining_amount,
            availability=lot.availability_manual,
        )
        return reservation, lot, charge

    @staticmethod
    async def cancel(
        db: AsyncSession,
        reservation_id: str,
        user: Optional[User] = None,
        gateway: Optional[PaymentGateway] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Reservation, ParkingLot, Decimal]:
        """
        Cancel a reservation and return the refund amount.

        The refund is sent to Stripe after the cancellation commits. A Stripe
        failure is logged; the reservation stays CANCELLED.
        """
        now = now or utcnow()
        reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        ReservationService.ensure_access(reservation, lot, user)

        refund = lifecycle.cancel(reservation, lot, now)
        await db.commit()

        log_metric(
            "cancelled",
            reservation_id=reservation.id,
            lot_id=lot.id,
            refund=refund,
            availability=lot.availability_manual,
        )

        if refund > 0 and reservation.payment_intent_id and gateway is not None:
            try:
                gateway.refund(
                    reservation.payment_intent_id,
                    amount_cents=money_to_cents(refund),
                    metadata={"reservation_id": reservation.id, "reason": "cancellation"},
                )
            except PaymentProviderError as e:
                logger.error(
                    f"Refund of {refund} for cancelled reservation {reservation.id} failed: {e.message}"
                )

        return reservation, lot, refund

    # =========================================================================
    # MANUAL REFUND
    # =========================================================================

    @staticmethod
    async def manual_refund(
        db: AsyncSession,
        reservation_id: str,
        gateway: PaymentGateway,
        amount: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Refund a paid reservation through Stripe. With no amount, whatever is
        left of the fee is refunded.

        Partial refunds accumulate in `refund_amount`; the payment becomes
        REFUNDED once the whole fee has been returned.

        Raises:
            NotFoundError: Reservation does not exist
            ValidationError: No payment intent, not paid, or bad amount
            PaymentProviderError: Stripe rejected the refund
        """
        reservation, _ = await ReservationService.lock_reservation(db, reservation_id)

        if not reservation.payment_intent_id:
            raise ValidationError("No payment intent found for this reservation")
        if reservation.payment_status != PaymentStatus.PAID:
            raise ValidationError(
                "Reservation payment is not refundable",
                details={"payment_status": getattr(reservation.payment_status, "value", reservation.payment_status)},
            )

        fee = to_money(reservation.reservation_fee_amount)
        already_refunded = to_money(reservation.refund_amount or 0)
        remaining = fee - already_refunded
        refund_amount = remaining if amount is None else to_money(amount)
        if refund_amount <= 0 or refund_amount > remaining:
            raise ValidationError(
                f"Refund amount must be between 0.01 and {remaining}",
                details={"amount": str(refund_amount), "already_refunded": str(already_refunded)},
            )

        refund = gateway.refund(
            reservation.payment_intent_id,
            amount_cents=money_to_cents(refund_amount),
            metadata={"reservation_id": reservation.id, "reason": "requested_by_customer"},
        )

        reservation.refund_amount = already_refunded + refund_amount
        if reservation.refund_amount >= fee:
            reservation.payment_status = PaymentStatus.REFUNDED
        reservation.updated_at = utcnow()
        await db.commit()

        log_metric("refunded", reservation_id=reservation.id, amount=refund_amount, refund_id=refund.refund_id)

        return {
            "id": refund.refund_id,
            "amount": refund_amount,
            "status": refund.status,
        }

    # =========================================================================
    # LISTING
    # =========================================================================

    @staticmethod
    async def list_user_reservations(
        db: AsyncSession,
        user_id: int,
        limit: int = USER_RESERVATION_LIMIT,
    ) -> List[Tuple[Reservation, Optional[ParkingLot]]]:
        result = await db.execute(
            select(Reservation, ParkingLot)
            .outerjoin(ParkingLot, ParkingLot.id == Reservation.lot_id)
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.created_at.desc())
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]
