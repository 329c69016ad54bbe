"""
Janitor for abandoned checkouts
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..config import get_settings
from ..models.booking import Booking, BookingStatus
from ..models.slot_hold import SlotHold

settings = get_settings()
logger = logging.getLogger(__name__)

ABANDONED_REASON = "Payment not completed"


def expire_abandoned_checkouts(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Cancel PENDING_PAYMENT bookings older than PENDING_PAYMENT_TTL_MINUTES and
    delete slot holds past their expiry. Paid bookings are never touched.
    """
    now = now or datetime.now()
    cutoff = now - timedelta(minutes=settings.PENDING_PAYMENT_TTL_MINUTES)

    stale = (
        db.query(Booking)
        .filter(
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            Booking.is_deposit_paid.is_(False),
            Booking.created_at < cutoff,
        )
        .all()
    )
    for booking in stale:
        booking.status = BookingStatus.CANCELLED.value
        booking.cancel_reason = ABANDONED_REASON
        booking.cancelled_at = now
        logger.info(f"Booking {booking.id} cancelled: payment not completed since {booking.created_at}")

    holds = (
        db.query(SlotHold)
        .filter(SlotHold.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.commit()

    if stale or holds:
        logger.info(f"Cleanup: {len(stale)} abandoned bookings cancelled, {holds} expired holds removed")
    return {"cancelled_bookings": len(stale), "expired_holds": holds}
