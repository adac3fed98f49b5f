"""
Periodic sweep of expired provisional holds.

Meant to be driven by an external scheduler (cron), either through
``POST /availability/blocked/cleanup`` or this entry point:

    mechanic-booking-sweep
    mechanic-booking-sweep --grace-minutes 15 --verbose
"""

import argparse
import logging
import sys
from typing import Optional

from mechanic_booking.core.errors import BookingError
import mechanic_booking.db.init_db  # noqa: F401  registers every mapped model
from mechanic_booking.db.base import SessionLocal
from mechanic_booking.scheduling.blocked import cleanup_expired_blocks

logger = logging.getLogger(__name__)


def run_sweep(grace_minutes: Optional[int] = None, session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        return cleanup_expired_blocks(db, grace_minutes=grace_minutes)
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Delete provisional blocked time slots older than the grace period."
    )
    parser.add_argument(
        "--grace-minutes",
        type=int,
        default=None,
        help="Override BLOCK_GRACE_MINUTES for this run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        deleted = run_sweep(args.grace_minutes)
    except BookingError as e:
        logger.error("Sweep failed: %s", e.message)
        sys.exit(1)
    print(f"Deleted {deleted} expired blocked slot(s)")


if __name__ == "__main__":
    main()
