"""
Reservation routes

Booking and the driver-facing lifecycle transitions. All state changes go
through ReservationService, which holds row locks on the reservation and
its lot for the length of the transaction.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.config import settings
from parcin.core.database import get_db
from parcin.core.rate_limit import limiter
from parcin.api.deps import get_current_user, get_payment_gateway
from parcin.models import User
from parcin.schemas.reservation import (
    ReservationCreate,
    ReservationSummary,
    ReservationDetail,
    TransitionResponse,
    CancelResponse,
    CheckoutResponse,
    CheckoutBreakdown,
)
from parcin.services.payment_gateway import PaymentGateway
from parcin.services.reservation_service import ReservationService

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationSummary)
@limiter.limit(settings.RATE_LIMIT_BOOKING)
async def create_reservation(
    request: Request,
    payload: ReservationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a spot. The reservation starts in PENDING_PAYMENT; the spot is
    only held once payment is confirmed.
    """
    reservation, lot = await ReservationService.create_reservation(
        db,
        user=current_user,
        lot_id=payload.lot_id,
        car_plate=payload.car_plate,
        expected_hours=payload.expected_hours,
        arrival_time=payload.arrival_time,
    )
    return ReservationSummary.from_models(reservation, lot)


@router.get("/{reservation_id}", response_model=ReservationDetail)
async def get_reservation(
    reservation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reservation, lot = await ReservationService.get_reservation_with_lot(db, reservation_id)
    ReservationService.ensure_access(reservation, lot, current_user)
    return ReservationDetail.from_models(reservation, lot)


@router.post("/{reservation_id}/confirm", response_model=TransitionResponse)
async def confirm_reservation(
    reservation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reservation, lot = await ReservationService.confirm(db, reservation_id, user=current_user)
    return TransitionResponse(reservation=ReservationDetail.from_models(reservation, lot))


@router.post("/{reservation_id}/cancel", response_model=CancelResponse)
async def cancel_reservation(
    reservation_id: str,
    current_user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    reservation, lot, refund = await ReservationService.cancel(
        db, reservation_id, user=current_user, gateway=gateway
    )
    return CancelResponse(
        reservation=ReservationDetail.from_models(reservation, lot),
        refund_amount=refund,
    )


@router.post("/{reservation_id}/checkin", response_model=TransitionResponse)
async def check_in(
    reservation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Check in. Past the arrival window the reservation becomes NO_SHOW and 400 is returned."""
    reservation, lot = await ReservationService.check_in(db, reservation_id, user=current_user)
    return TransitionResponse(reservation=ReservationDetail.from_models(reservation, lot))


@router.post("/{reservation_id}/checkout", response_model=CheckoutResponse)
async def check_out(
    reservation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reservation, lot, charge = await ReservationService.check_out(db, reservation_id, user=current_user)
    return CheckoutResponse(
        reservation=ReservationDetail.from_models(reservation, lot),
        checkout=CheckoutBreakdown.from_charge(charge, reservation.price_hourly),
    )
