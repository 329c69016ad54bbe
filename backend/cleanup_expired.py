"""
Cancel bookings whose deposit was never paid and drop expired slot holds
Run from cron: python cleanup_expired.py
"""
import logging

from salon_booking.database import SessionLocal
from salon_booking.logging_config import setup_logging
from salon_booking.services.cleanup import expire_abandoned_checkouts

logger = logging.getLogger("cleanup_expired")


def cleanup_expired():
    db = SessionLocal()
    try:
        result = expire_abandoned_checkouts(db)
        logger.info(
            f"Cancelled {result['cancelled_bookings']} unpaid bookings, "
            f"removed {result['expired_holds']} expired holds"
        )
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    cleanup_expired()
