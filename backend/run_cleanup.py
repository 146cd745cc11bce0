#!/usr/bin/env python3
"""
Parcin - Standalone Reservation Cleanup

Purges reservations left in PENDING_PAYMENT past their TTL. Use this from a
cron service when the API runs with RESERVATION_CLEANUP_ENABLED=false.

    python run_cleanup.py           # single pass
    python run_cleanup.py --loop    # run every RESERVATION_CLEANUP_INTERVAL_MINUTES

Requires DATABASE_URL and SECRET_KEY env vars, like the API.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys

# Setup logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_VARS = ["DATABASE_URL", "SECRET_KEY"]
missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
if missing:
    logger.error(f"Missing required environment variables: {missing}")
    sys.exit(1)

# Import after env validation
from parcin.core.config import settings
from parcin.services.reservation_cleanup import purge_stale_pending_reservations, get_pending_stats

# Graceful shutdown flag
_shutdown = False


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global _shutdown
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    _shutdown = True


async def run_once() -> dict:
    stats = await purge_stale_pending_reservations()
    pending = await get_pending_stats()
    logger.info(f"Cleanup complete: {stats}; pending now: {pending}")
    return stats


async def main(loop: bool):
    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    if not loop:
        await run_once()
        return

    interval_seconds = settings.RESERVATION_CLEANUP_INTERVAL_MINUTES * 60
    logger.info(f"Cleanup loop running every {settings.RESERVATION_CLEANUP_INTERVAL_MINUTES} minutes")

    while not _shutdown:
        await run_once()
        waited = 0
        while waited < interval_seconds and not _shutdown:
            await asyncio.sleep(1)
            waited += 1

    logger.info("Cleanup service shutdown complete")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge stale unpaid reservations")
    parser.add_argument("--loop", action="store_true", help="Keep running on an interval")
    args = parser.parse_args()
    asyncio.run(main(args.loop))
