"""
Booking notifications

Salon-facing messages go to Telegram, client-facing ones by email. Delivery
is best-effort: every failure is logged and swallowed, a booking's state
never depends on it.
"""
import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from enum import Enum
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import get_settings
from ..models.booking import Booking
from ..models.notification import Notification

settings = get_settings()
logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    NEW_BOOKING = "new_booking"
    BOOKING_CONFIRMED = "booking_confirmed"
    CANCELLED_BOOKING = "cancelled_booking"
    PAYMENT_RECEIVED = "payment_received"
    SLOT_CONFLICT = "slot_conflict"


# Who hears about what
SALON_NOTIFICATIONS = {
    NotificationType.NEW_BOOKING,
    NotificationType.CANCELLED_BOOKING,
    NotificationType.PAYMENT_RECEIVED,
    NotificationType.SLOT_CONFLICT,
}
CLIENT_NOTIFICATIONS = {
    NotificationType.NEW_BOOKING,
    NotificationType.BOOKING_CONFIRMED,
    NotificationType.CANCELLED_BOOKING,
}

ICONS = {
    NotificationType.NEW_BOOKING: "🔔",
    NotificationType.BOOKING_CONFIRMED: "✅",
    NotificationType.CANCELLED_BOOKING: "❌",
    NotificationType.PAYMENT_RECEIVED: "💰",
    NotificationType.SLOT_CONFLICT: "🚨",
}

CLIENT_SUBJECTS = {
    NotificationType.NEW_BOOKING: "We received your booking",
    NotificationType.BOOKING_CONFIRMED: "Your booking is confirmed",
    NotificationType.CANCELLED_BOOKING: "Your booking was cancelled",
}


def describe_booking(booking: Booking) -> str:
    service_name = booking.service.name if booking.service else f"service #{booking.service_id}"
    client = booking.user.full_name if booking.user else f"user #{booking.user_id}"
    lines = [
        f"Client: {client}",
        f"Service: {service_name}",
        f"Date: {booking.date.strftime('%d.%m.%Y')}",
        f"Time: {booking.start_time}-{booking.end_time}",
        f"Status: {booking.status}",
    ]
    if booking.is_deposit_paid and booking.deposit_amount is not None:
        lines.append(f"Deposit paid: {booking.deposit_amount}")
    if booking.cancel_reason:
        lines.append(f"Reason: {booking.cancel_reason}")
    if booking.notes:
        lines.append(f"Notes: {booking.notes}")
    return "\n".join(lines)


class NotificationService:
    """Sends booking notifications over Telegram and SMTP"""

    def __init__(self):
        self.bot_token = settings.TELEGRAM_BOT_TOKEN
        self.admin_chat_id = settings.TELEGRAM_ADMIN_CHAT_ID
        self.dev_chat_id = settings.TELEGRAM_DEV_CHAT_ID
        self.api_url = f"https://api.telegram.org/bot{self.bot_token}"

    async def send_telegram_message(self, chat_id: Optional[str], text: str) -> bool:
        """
        Send a Telegram message

        Args:
            chat_id: Recipient chat
            text: Message text

        Returns:
            bool: True if the Bot API accepted it
        """
        if not chat_id or not self.bot_token:
            logger.warning("Telegram is not configured, skipping message")
            return False

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.api_url}/sendMessage",
                    json={"chat_id": chat_id, "text": text},
                    timeout=10.0
                )
            if response.status_code == 200:
                logger.info(f"Notification sent to chat {chat_id}")
                return True
            logger.error(f"Telegram send failed: {response.text}")
            return False
        except Exception as e:
            logger.error(f"Exception while sending to Telegram: {e}")
            return False

    def _send_email_sync(self, to_email: str, subject: str, body: str):
        sender = settings.SMTP_FROM_EMAIL or settings.SMTP_USER
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = f"{settings.SMTP_FROM_NAME} <{sender}>"
        msg["To"] = to_email

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
            server.starttls()
            if settings.SMTP_USER and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.sendmail(sender, [to_email], msg.as_string())

    async def send_email(self, to_email: Optional[str], subject: str, body: str) -> bool:
        if not to_email or not settings.SMTP_HOST:
            logger.warning("SMTP is not configured or client has no email, skipping email")
            return False
        try:
            await asyncio.to_thread(self._send_email_sync, to_email, subject, body)
            logger.info(f"Email '{subject}' sent to {to_email}")
            return True
        except Exception as e:
            logger.error(f"Exception while sending email to {to_email}: {e}")
            return False

    async def notify_booking(self, db: Session, kind: NotificationType, booking: Booking):
        """Deliver one booking notification to every audience that should get it"""
        details = describe_booking(booking)

        if kind in SALON_NOTIFICATIONS:
            text = f"{ICONS[kind]} {kind.value.upper()} #{booking.id}\n\n{details}"
            sent = await self.send_telegram_message(self.admin_chat_id, text)
            if kind == NotificationType.SLOT_CONFLICT and self.dev_chat_id:
                await self.send_telegram_message(self.dev_chat_id, text)
            self._log(db, booking.id, "telegram", kind, text, sent)

        if kind in CLIENT_NOTIFICATIONS and booking.user is not None:
            subject = CLIENT_SUBJECTS[kind]
            body = f"Hello {booking.user.full_name},\n\n{subject}.\n\n{details}\n"
            sent = await self.send_email(booking.user.email, subject, body)
            self._log(db, booking.id, "email", kind, body, sent)

    @staticmethod
    def _log(db: Session, booking_id: int, channel: str, kind: NotificationType, message: str, sent: bool):
        db.add(Notification(
            booking_id=booking_id,
            channel=channel,
            kind=kind.value,
            message=message,
            status="sent" if sent else "failed",
        ))
        db.commit()


notification_service = NotificationService()


async def send_booking_notification(
    kind: NotificationType,
    booking_id: int,
    session_factory: Optional[Callable[[], Session]] = None,
):
    """
    Background task entry point. Opens its own session because it runs after
    the request that scheduled it has finished.
    """
    if session_factory is None:
        from ..database import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        booking = db.get(Booking, booking_id)
        if booking is None:
            logger.warning(f"Booking {booking_id} vanished before its {kind.value} notification was sent")
            return
        await notification_service.notify_booking(db, kind, booking)
    except Exception:
        logger.exception(f"Failed to deliver {kind.value} notification for booking {booking_id}")
        db.rollback()
    finally:
        db.close()
