"""
Lot retirement

A lot that never had a reservation is deleted outright. One with booking
history is switched to INACTIVE instead, so past reservations keep their
lot. Lots with active reservations cannot be retired at all.

Runs on a sync Session; async routes call it through `AsyncSession.run_sync`.
"""
import logging
from enum import Enum

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from parcin.core.exceptions import ValidationError
from parcin.models import ParkingLot, LotStatus, Reservation, ACTIVE_STATES

logger = logging.getLogger(__name__)


class LotRemoval(str, Enum):
    DELETED = "deleted"
    DEACTIVATED = "deactivated"


def retire_lot(session: Session, lot: ParkingLot) -> LotRemoval:
    """
    Delete or deactivate `lot`. The caller commits.

    Raises:
        ValidationError: The lot still has active reservations
    """
    counts = session.execute(
        select(
            func.count(Reservation.id),
            func.count(Reservation.id).filter(Reservation.state.in_(ACTIVE_STATES)),
        ).where(Reservation.lot_id == lot.id)
    ).one()
    total, active = counts[0] or 0, counts[1] or 0

    if active:
        raise ValidationError(
            "Cannot delete a lot with active reservations",
            details={"lot_id": lot.id, "active_reservations": active},
        )

    if total:
        lot.status = LotStatus.INACTIVE
        logger.info(f"Lot {lot.id} has {total} past reservations, deactivated instead of deleted")
        return LotRemoval.DEACTIVATED

    session.delete(lot)
    return LotRemoval.DELETED
