"""
User routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.database import get_db
from parcin.api.deps import get_current_user
from parcin.models import User
from parcin.schemas.reservation import ReservationDetail, ReservationListResponse
from parcin.services.reservation_service import ReservationService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/reservations", response_model=ReservationListResponse)
async def list_my_reservations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The driver's most recent reservations, newest first."""
    rows = await ReservationService.list_user_reservations(db, current_user.id)
    return ReservationListResponse(
        reservations=[ReservationDetail.from_models(reservation, lot) for reservation, lot in rows]
    )
