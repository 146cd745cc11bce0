"""
Operator routes

Lot management and reservation listings for OPERATOR users, scoped to the
lots they own. ADMIN users see every lot.

Availability writes take a row lock on the lot so they serialize with
reservation transitions moving the same counter.

Creating a lot needs a live plan subscription, within the plan's lot cap.
Operators start that subscription here through Stripe Checkout.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.config import settings
from parcin.core.database import get_db
from parcin.core.exceptions import NotFoundError, ValidationError
from parcin.core.rate_limit import limiter
from parcin.core.utils import utcnow
from parcin.api.deps import get_current_operator, get_payment_gateway, require_active_subscription
from parcin.models import (
    ParkingLot,
    LotStatus,
    Reservation,
    ReservationState,
    User,
    UserRole,
)
from parcin.schemas.parking_lot import (
    LotCreate,
    LotUpdate,
    AvailabilityUpdate,
    LotResponse,
    OperatorLotResponse,
    OperatorLotListResponse,
)
from parcin.schemas.reservation import OperatorReservation, OperatorReservationList, Pagination
from parcin.schemas.subscription import (
    CheckoutRequest,
    CheckoutResponse,
    OperatorSubscriptionResponse,
    SubscriptionResponse,
)
from parcin.services.lot_service import LotRemoval, retire_lot
from parcin.services.payment_gateway import PaymentGateway
from parcin.services.subscriptions import SubscriptionCheck, SubscriptionService, evaluate_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/operator", tags=["operator"])


def _owned_lots_query(user: User):
    query = select(ParkingLot)
    if user.role != UserRole.ADMIN:
        query = query.where(ParkingLot.operator_user_id == user.id)
    return query


async def _get_owned_lot(db: AsyncSession, lot_id: int, user: User, for_update: bool = False) -> ParkingLot:
    query = _owned_lots_query(user).where(ParkingLot.id == lot_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    lot = result.scalar_one_or_none()
    if not lot:
        raise NotFoundError("Lot not found or access denied")
    return lot


# ============================================================================
# LOTS
# ============================================================================
@router.get("/lots", response_model=OperatorLotListResponse)
async def list_operator_lots(
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        _owned_lots_query(current_user).order_by(ParkingLot.created_at.desc())
    )
    return OperatorLotListResponse(lots=[LotResponse.from_lot(lot) for lot in result.scalars().all()])


@router.post("/lots", response_model=OperatorLotResponse)
async def create_lot(
    payload: LotCreate,
    current_user: User = Depends(get_current_operator),
    subscription: SubscriptionCheck = Depends(require_active_subscription),
    db: AsyncSession = Depends(get_db),
):
    """New lots start fully available."""
    await SubscriptionService.ensure_lot_allowance(db, current_user, subscription.plan)

    lot = ParkingLot(
        name=payload.name,
        operator_user_id=current_user.id,
        address=payload.address,
        latitude=payload.latitude,
        longitude=payload.longitude,
        pricing_hourly=payload.hourly_rate,
        pricing_daily_max=payload.daily_max,
        capacity=payload.capacity,
        availability_manual=payload.capacity,
        amenities=payload.amenities,
        status=LotStatus.ACTIVE,
    )
    db.add(lot)
    await db.commit()
    await db.refresh(lot)

    logger.info(f"Operator {current_user.id} created lot {lot.id} ({lot.name}, capacity {lot.capacity})")
    return OperatorLotResponse(lot=LotResponse.from_lot(lot))


@router.get("/lots/{lot_id}", response_model=OperatorLotResponse)
async def get_operator_lot(
    lot_id: int,
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    lot = await _get_owned_lot(db, lot_id, current_user)
    return OperatorLotResponse(lot=LotResponse.from_lot(lot))


@router.patch("/lots/{lot_id}", response_model=OperatorLotResponse)
async def update_lot(
    lot_id: int,
    payload: LotUpdate,
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Update lot fields. A capacity change shifts availability by the same
    amount, clamped to [0, capacity]. Existing reservations keep their fee.
    """
    lot = await _get_owned_lot(db, lot_id, current_user, for_update=True)
    updates = payload.model_dump(exclude_unset=True)

    if "name" in updates:
        lot.name = updates["name"]
    if "address" in updates:
        lot.address = updates["address"]
    if updates.get("latitude") is not None and updates.get("longitude") is not None:
        lot.latitude = updates["latitude"]
        lot.longitude = updates["longitude"]
    if updates.get("hourly_rate") is not None:
        lot.pricing_hourly = Decimal(updates["hourly_rate"])
    if "daily_max" in updates:
        lot.pricing_daily_max = updates["daily_max"]
    if updates.get("capacity") is not None:
        lot.resize(updates["capacity"])
    if updates.get("amenities") is not None:
        lot.amenities = updates["amenities"]
    if updates.get("status") is not None:
        lot.status = updates["status"]

    await db.commit()
    await db.refresh(lot)

    logger.info(f"Operator {current_user.id} updated lot {lot.id}: {sorted(updates)}")
    return OperatorLotResponse(lot=LotResponse.from_lot(lot))


@router.delete("/lots/{lot_id}")
async def delete_lot(
    lot_id: int,
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Lots with past reservations are deactivated rather than deleted."""
    lot = await _get_owned_lot(db, lot_id, current_user, for_update=True)

    outcome = await db.run_sync(retire_lot, lot)
    await db.commit()

    logger.info(f"Operator {current_user.id} retired lot {lot_id}: {outcome.value}")
    if outcome == LotRemoval.DEACTIVATED:
        return {
            "success": True,
            "deactivated": True,
            "message": "Lot has reservation history and was deactivated instead of deleted",
        }
    return {"success": True, "deactivated": False, "message": "Lot deleted successfully"}


@router.patch("/lots/{lot_id}/availability", response_model=OperatorLotResponse)
async def update_availability(
    lot_id: int,
    payload: AvailabilityUpdate,
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    lot = await _get_owned_lot(db, lot_id, current_user, for_update=True)

    if payload.availability > lot.capacity:
        raise ValidationError(
            "Availability cannot exceed capacity",
            details={"capacity": lot.capacity, "availability": payload.availability},
        )

    lot.set_availability(payload.availability)
    await db.commit()
    await db.refresh(lot)

    logger.info(f"Operator {current_user.id} set lot {lot.id} availability to {lot.availability_manual}")
    return OperatorLotResponse(lot=LotResponse.from_lot(lot))


# ============================================================================
# RESERVATIONS
# ============================================================================
@router.get("/reservations", response_model=OperatorReservationList)
async def list_operator_reservations(
    lot_id: Optional[int] = None,
    state: Optional[ReservationState] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    if lot_id is not None:
        await _get_owned_lot(db, lot_id, current_user)
        lot_ids = [lot_id]
    else:
        result = await db.execute(
            _owned_lots_query(current_user).with_only_columns(ParkingLot.id)
        )
        lot_ids = list(result.scalars().all())

    filters = [Reservation.lot_id.in_(lot_ids)]
    if state is not None:
        filters.append(Reservation.state == state)

    total = await db.scalar(select(func.count(Reservation.id)).where(*filters)) or 0

    result = await db.execute(
        select(Reservation, ParkingLot, User)
        .join(ParkingLot, ParkingLot.id == Reservation.lot_id)
        .outerjoin(User, User.id == Reservation.user_id)
        .where(*filters)
        .order_by(Reservation.created_at.desc())
        .limit(limit)
        .offset(offset)
    )

    return OperatorReservationList(
        reservations=[
            OperatorReservation.from_rows(reservation, lot, user)
            for reservation, lot, user in result.all()
        ],
        pagination=Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        ),
    )


# ============================================================================
# SUBSCRIPTION
# ============================================================================
@router.get("/subscription", response_model=OperatorSubscriptionResponse)
async def get_operator_subscription(
    current_user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """The operator's latest subscription and whether it currently grants access."""
    subscription, plan = await SubscriptionService.get_operator_subscription(db, current_user.id)
    check = evaluate_subscription(subscription, utcnow(), plan)
    return OperatorSubscriptionResponse(
        subscription=SubscriptionResponse.from_models(subscription, plan),
        has_access=check.has_access,
        access_status=check.status,
    )


@router.post("/subscription/checkout", response_model=CheckoutResponse)
@limiter.limit(settings.RATE_LIMIT_BOOKING)
async def start_subscription_checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: User = Depends(get_current_operator),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    if current_user.role != UserRole.OPERATOR:
        raise ValidationError("Only operator accounts can subscribe to a plan")

    result = await SubscriptionService.start_checkout(db, current_user, payload.plan_id, gateway)
    return CheckoutResponse(**result)
