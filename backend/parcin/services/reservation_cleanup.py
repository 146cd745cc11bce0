"""
Unpaid Reservation Cleanup

Deletes reservations that sat in PENDING_PAYMENT for longer than
PENDING_RESERVATION_TTL_MINUTES. Pending reservations never held a spot,
so no availability is restored.

Runs on the lifespan scheduler in main.py and standalone via run_cleanup.py.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete, func

from parcin.core.config import settings
from parcin.core.database import AsyncSessionLocal
from parcin.core.utils import utcnow
from parcin.models import Reservation, ReservationState

logger = logging.getLogger(__name__)


def pending_cutoff(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(minutes=settings.PENDING_RESERVATION_TTL_MINUTES)


async def purge_stale_pending_reservations(now: Optional[datetime] = None) -> dict:
    """
    Delete stale unpaid reservations.

    Returns:
        dict with count of purged reservations and errors
    """
    stats = {
        "reservations_purged": 0,
        "errors": 0,
    }
    cutoff = pending_cutoff(now)

    async with AsyncSessionLocal() as db:
        try:
            # Lock so a concurrent confirm either wins or sees the row gone
            result = await db.execute(
                select(Reservation.id)
                .where(Reservation.state == ReservationState.PENDING_PAYMENT)
                .where(Reservation.created_at < cutoff)
                .with_for_update(skip_locked=True)
            )
            stale_ids = list(result.scalars().all())

            if not stale_ids:
                logger.debug("No stale pending reservations to purge")
                return stats

            await db.execute(
                delete(Reservation)
                .where(Reservation.id.in_(stale_ids))
                .where(Reservation.state == ReservationState.PENDING_PAYMENT)
            )
            await db.commit()

            stats["reservations_purged"] = len(stale_ids)
            logger.info(f"Purged {len(stale_ids)} unpaid reservations older than {cutoff.isoformat()}")

        except Exception as e:
            logger.error(f"Error in reservation cleanup: {e}")
            stats["errors"] += 1
            await db.rollback()

    return stats


async def get_pending_stats(now: Optional[datetime] = None) -> dict:
    """Pending reservation counts for monitoring."""
    cutoff = pending_cutoff(now)

    async with AsyncSessionLocal() as db:
        total = await db.scalar(
            select(func.count(Reservation.id))
            .where(Reservation.state == ReservationState.PENDING_PAYMENT)
        )
        stale = await db.scalar(
            select(func.count(Reservation.id))
            .where(Reservation.state == ReservationState.PENDING_PAYMENT)
            .where(Reservation.created_at < cutoff)
        )

    return {
        "pending_reservations": total or 0,
        "stale_pending_reservations": stale or 0,
        "ttl_minutes": settings.PENDING_RESERVATION_TTL_MINUTES,
    }
