"""
Public parking lot routes
"""
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.database import get_db
from parcin.core.utils import utcnow
from parcin.models import ParkingLot, LotStatus
from parcin.schemas.parking_lot import (
    LotResponse,
    LotAvailabilityRequest,
    LotAvailabilityResponse,
)
from parcin.services.reservation_service import ReservationService

router = APIRouter(prefix="/lots", tags=["lots"])

EARTH_RADIUS_METERS = 6371000


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


@router.get("", response_model=List[LotResponse])
async def list_lots(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(5000, gt=0, description="Search radius in meters"),
    db: AsyncSession = Depends(get_db),
):
    """Active lots, optionally limited to `radius` meters around (lat, lng)."""
    result = await db.execute(
        select(ParkingLot)
        .where(ParkingLot.status == LotStatus.ACTIVE)
        .order_by(ParkingLot.name)
    )
    lots = result.scalars().all()

    if lat is not None and lng is not None:
        lots = [
            lot for lot in lots
            if lot.latitude is not None and lot.longitude is not None
            and distance_meters(lat, lng, lot.latitude, lot.longitude) <= radius
        ]

    return [LotResponse.from_lot(lot) for lot in lots]


@router.get("/{lot_id}", response_model=LotResponse)
async def get_lot(lot_id: int, db: AsyncSession = Depends(get_db)):
    lot = await ReservationService.get_lot(db, lot_id)
    return LotResponse.from_lot(lot)


@router.post("/availability", response_model=LotAvailabilityResponse)
async def get_availability(
    payload: LotAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    """Current free-spot counts for several active lots at once."""
    if not payload.lot_ids:
        return LotAvailabilityResponse(availability={})

    result = await db.execute(
        select(ParkingLot.id, ParkingLot.availability_manual)
        .where(ParkingLot.id.in_(payload.lot_ids))
        .where(ParkingLot.status == LotStatus.ACTIVE)
    )
    availability = {str(lot_id): count for lot_id, count in result.all()}

    return LotAvailabilityResponse(availability=availability, timestamp=utcnow())
