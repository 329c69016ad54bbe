"""
FastAPI dependencies shared by the routers
"""
import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .database import get_db
from .permissions import Caller, Role
from .services.bookings import BookingService, Notifier
from .services.notifications import NotificationType, send_booking_notification
from .services.payments import PaymentService

logger = logging.getLogger(__name__)


async def get_current_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Caller:
    """Identity set by the authenticating gateway in front of the API"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        user_id = int(x_user_id)
        role = Role((x_user_role or Role.USER.value).upper())
    except ValueError:
        logger.warning(f"Rejected malformed identity headers: id={x_user_id!r} role={x_user_role!r}")
        raise HTTPException(status_code=401, detail="Invalid identity")
    return Caller(user_id=user_id, role=role)


def get_notifier(background_tasks: BackgroundTasks) -> Notifier:
    """Notifications run after the response is sent"""

    def notify(kind: NotificationType, booking_id: int):
        background_tasks.add_task(send_booking_notification, kind, booking_id)

    return notify


def get_booking_service(
    db: Session = Depends(get_db),
    notify: Notifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(db, notify=notify)


def get_payment_service(
    db: Session = Depends(get_db),
    notify: Notifier = Depends(get_notifier),
) -> PaymentService:
    return PaymentService(db, notify=notify)
