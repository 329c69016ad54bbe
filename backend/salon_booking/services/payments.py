"""
Deposit payments through Stripe Checkout and webhook reconciliation

Two flows put a paid booking in the PENDING state:

* deferred: the booking only exists once ``checkout.session.completed``
  arrives; the session metadata carries the booking parameters.
* direct: a PENDING_PAYMENT booking already exists and the session metadata
  carries its ``booking_id``.

Webhook deliveries are at-least-once and unordered, so every handler is
idempotent on the checkout session id.
"""
import json
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional, Union

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import (
    ForbiddenError,
    InvalidSignatureError,
    NotFoundError,
    PaymentProviderError,
    PolicyViolationError,
)
from ..models.booking import Booking, BookingStatus
from ..models.service import Service
from ..models.slot_hold import SlotHold
from ..models.user import User
from ..permissions import Caller, Role, can_refund, can_view_booking, owns
from .bookings import BookingService, Notifier, can_transition
from .notifications import NotificationType
from .policy import BookingPolicy
from .slot_lock import slot_reservation
from .time_slots import add_minutes

settings = get_settings()
logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"


# ==================== Webhook events ====================

@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    payment_intent_id: Optional[str]
    metadata: Dict[str, str]
    amount_total: Optional[int] = None


@dataclass(frozen=True)
class CheckoutExpired:
    event_id: str
    session_id: str
    metadata: Dict[str, str]


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str


PaymentEvent = Union[CheckoutCompleted, CheckoutExpired, IgnoredEvent]


def parse_event(event: Dict[str, Any]) -> PaymentEvent:
    """Map a verified provider event onto the kinds this service acts on"""
    event_id = event.get("id", "")
    event_type = event.get("type", "")
    session = (event.get("data") or {}).get("object") or {}
    metadata = {key: str(value) for key, value in (session.get("metadata") or {}).items()}

    if event_type == CHECKOUT_COMPLETED:
        return CheckoutCompleted(
            event_id=event_id,
            session_id=session.get("id", ""),
            payment_intent_id=_payment_intent_id(session.get("payment_intent")),
            metadata=metadata,
            amount_total=session.get("amount_total"),
        )
    if event_type == CHECKOUT_EXPIRED:
        return CheckoutExpired(event_id=event_id, session_id=session.get("id", ""), metadata=metadata)
    return IgnoredEvent(event_id=event_id, event_type=event_type or "unknown")


def _payment_intent_id(value) -> Optional[str]:
    # expanded sessions carry the whole PaymentIntent object
    if isinstance(value, dict):
        return value.get("id")
    return value


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RefundEligibility:
    can_refund: bool
    reason: Optional[str] = None
    hours_until_booking: Optional[float] = None


class PaymentService:
    """Checkout sessions, webhook reconciliation and refunds"""

    def __init__(
        self,
        db: Session,
        policy: Optional[BookingPolicy] = None,
        notify: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.clock = clock
        self.bookings = BookingService(db, policy=policy, notify=notify, clock=clock)

    # ==================== Stripe API ====================

    def _connect_account_id(self) -> Optional[str]:
        if settings.STRIPE_CONNECT_ACCOUNT_ID:
            return settings.STRIPE_CONNECT_ACCOUNT_ID
        admin = (
            self.db.query(User)
            .filter(User.role == Role.ADMIN.value, User.stripe_account_id.isnot(None))
            .first()
        )
        return admin.stripe_account_id if admin else None

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": settings.STRIPE_SECRET_KEY}
        account = self._connect_account_id()
        if account:
            options["stripe_account"] = account
        return options

    def _open_deposit_session(
        self,
        user: User,
        service: Service,
        target_date: date,
        start_time: str,
        deposit: Decimal,
        metadata: Dict[str, str],
        success_query: str,
        cancel_query: str,
        now: datetime,
    ):
        expires_at = now + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES)
        try:
            return stripe.checkout.Session.create(
                mode="payment",
                success_url=f"{settings.FRONTEND_URL}/reservation/success?session_id={{CHECKOUT_SESSION_ID}}{success_query}",
                cancel_url=f"{settings.FRONTEND_URL}/reservation/cancel?{cancel_query}",
                customer_email=user.email,
                metadata=metadata,
                line_items=[{
                    "price_data": {
                        "currency": settings.STRIPE_CURRENCY,
                        "unit_amount": to_cents(deposit),
                        "product_data": {
                            "name": f"Deposit - {service.name}",
                            "description": f"Booking on {target_date.strftime('%A %d %B %Y')} at {start_time}",
                        },
                    },
                    "quantity": 1,
                }],
                payment_method_types=["card"],
                expires_at=int(expires_at.timestamp()),
                **self._request_options(),
            )
        except stripe.StripeError as e:
            logger.error(f"Could not open checkout session for user {user.id}: {e}")
            raise PaymentProviderError("The payment provider is unavailable, please try again")

    def _retrieve_session(self, session_id: str):
        try:
            return stripe.checkout.Session.retrieve(session_id, **self._request_options())
        except stripe.StripeError as e:
            logger.error(f"Could not retrieve checkout session {session_id}: {e}")
            raise PaymentProviderError("The payment provider is unavailable, please try again")

    # ==================== Checkout ====================

    def create_checkout_for_new_booking(
        self,
        caller: Caller,
        service_id: int,
        target_date: date,
        start_time: str,
        notes: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Deferred flow: verify the slot, then open a checkout session whose
        metadata describes the booking to create once payment succeeds.
        With slot holds enabled the slot stays reserved until the session
        completes or expires.
        """
        user = self.db.get(User, caller.user_id)
        if user is None:
            raise NotFoundError("User not found", {"user_id": caller.user_id})

        now = self.clock()
        guard = slot_reservation(self.db, target_date) if settings.SLOT_HOLD_ENABLED else nullcontext()
        with guard:
            check = self.bookings.check_slot_availability(service_id, target_date, start_time, caller=caller, now=now)
            deposit = check.policy.deposit_amount
            metadata = {
                "user_id": str(user.id),
                "service_id": str(check.service.id),
                "date": target_date.isoformat(),
                "start_time": check.start_time,
                "end_time": check.end_time,
                "notes": notes or "",
                "deposit_amount": str(deposit),
            }
            session = self._open_deposit_session(
                user, check.service, target_date, check.start_time, deposit, metadata,
                success_query="", cancel_query=f"service_id={check.service.id}", now=now,
            )
            if settings.SLOT_HOLD_ENABLED:
                self.db.add(SlotHold(
                    date=target_date,
                    start_time=check.start_time,
                    end_time=check.end_time,
                    service_id=check.service.id,
                    user_id=user.id,
                    payment_session_id=session.id,
                    expires_at=now + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
                ))
                self.db.commit()

        logger.info(f"Checkout session {session.id} opened for user {user.id} on {target_date} {start_time}")
        return {"checkout_url": session.url, "session_id": session.id}

    def create_checkout_for_booking(self, booking_id: int, caller: Caller) -> Dict[str, str]:
        """Direct flow: collect the deposit for an existing PENDING_PAYMENT booking"""
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})
        if not owns(caller, booking):
            raise ForbiddenError("You can only pay for your own bookings")
        if booking.status != BookingStatus.PENDING_PAYMENT.value:
            raise PolicyViolationError(
                "This booking has already been paid or is no longer valid", {"status": booking.status}
            )

        if booking.payment_session_id:
            try:
                existing = self._retrieve_session(booking.payment_session_id)
                if existing.status == "open":
                    return {"checkout_url": existing.url, "session_id": existing.id}
            except PaymentProviderError:
                logger.warning(f"Checkout session {booking.payment_session_id} unusable, opening a new one")

        deposit = booking.deposit_amount or self.bookings.get_policy().deposit_amount
        metadata = {
            "booking_id": str(booking.id),
            "user_id": str(booking.user_id),
            "service_id": str(booking.service_id),
        }
        session = self._open_deposit_session(
            booking.user, booking.service, booking.date, booking.start_time, deposit, metadata,
            success_query=f"&booking_id={booking.id}", cancel_query=f"booking_id={booking.id}",
            now=self.clock(),
        )
        booking.payment_session_id = session.id
        booking.deposit_amount = deposit
        self.db.commit()

        logger.info(f"Checkout session {session.id} opened for booking {booking.id}")
        return {"checkout_url": session.url, "session_id": session.id}

    # ==================== Webhooks ====================

    @staticmethod
    def construct_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the Stripe-Signature header, then parse the payload"""
        secret = settings.STRIPE_WEBHOOK_SECRET
        if not secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured, rejecting webhook")
            raise InvalidSignatureError("Webhook verification is not configured")
        if not signature:
            logger.warning("Webhook received without signature")
            raise InvalidSignatureError("Missing webhook signature")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, secret, settings.WEBHOOK_TOLERANCE_SECONDS)
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise InvalidSignatureError("Invalid webhook signature")

        try:
            return json.loads(body)
        except ValueError:
            raise InvalidSignatureError("Invalid webhook payload")

    def handle_event(self, event: Dict[str, Any]) -> PaymentEvent:
        parsed = parse_event(event)
        if isinstance(parsed, CheckoutCompleted):
            self.handle_checkout_completed(parsed)
        elif isinstance(parsed, CheckoutExpired):
            self.handle_checkout_expired(parsed)
        else:
            logger.info(f"Ignoring unhandled payment event {parsed.event_id}: {parsed.event_type}")
        return parsed

    def handle_checkout_completed(self, event: CheckoutCompleted) -> Optional[Booking]:
        booking_id = event.metadata.get("booking_id")
        if booking_id:
            return self._mark_deposit_paid(int(booking_id), event)
        if event.metadata.get("user_id") and event.metadata.get("service_id"):
            return self._create_paid_booking(event)
        logger.error(f"Checkout session {event.session_id} completed without booking metadata")
        return None

    def _mark_deposit_paid(self, booking_id: int, event: CheckoutCompleted) -> Optional[Booking]:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            logger.error(f"Booking {booking_id} from checkout session {event.session_id} not found")
            return None

        if booking.is_deposit_paid:
            if event.session_id == booking.payment_session_id:
                logger.warning(f"Duplicate payment event for booking {booking_id} (session {event.session_id})")
            else:
                # A second checkout for the same booking was paid too; only a manual refund settles it
                logger.error(
                    f"Booking {booking_id} already paid through session {booking.payment_session_id}, "
                    f"extra payment {event.payment_intent_id} from session {event.session_id} needs a refund"
                )
            return booking

        now = self.clock()
        current = BookingStatus(booking.status)
        promote = current != BookingStatus.PENDING and can_transition(current, BookingStatus.PENDING)
        conflict = None
        with slot_reservation(self.db, booking.date) if promote else nullcontext():
            if promote:
                conflict = self.bookings.find_slot_conflict(booking.date, booking.start_time, booking.end_time, now)
                booking.status = BookingStatus.PENDING.value
            elif current != BookingStatus.PENDING:
                # e.g. cancelled by the cleanup job before the payment arrived
                logger.warning(f"Deposit received for booking {booking_id} in status {current.value}, status kept")
            booking.is_deposit_paid = True
            booking.deposit_paid_at = now
            booking.payment_session_id = event.session_id or booking.payment_session_id
            booking.payment_intent_id = event.payment_intent_id
            self.db.commit()
        self.db.refresh(booking)

        logger.info(f"Deposit confirmed for booking {booking_id}")
        if conflict:
            # Deposit is already taken; the salon has to resolve it by hand
            logger.error(
                f"Paid booking {booking.id} on {booking.date} {booking.start_time}-{booking.end_time} "
                f"overlaps existing occupancy: {conflict}"
            )
            self.bookings.schedule_notification(NotificationType.SLOT_CONFLICT, booking.id)
        self.bookings.schedule_notification(NotificationType.PAYMENT_RECEIVED, booking.id)
        return booking

    def _find_by_session(self, session_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.payment_session_id == session_id).first()

    def _create_paid_booking(self, event: CheckoutCompleted) -> Optional[Booking]:
        existing = self._find_by_session(event.session_id)
        if existing is not None:
            logger.warning(f"Duplicate payment event: booking {existing.id} already exists for session {event.session_id}")
            return existing

        metadata = event.metadata
        service = self.db.get(Service, int(metadata["service_id"]))
        if service is None:
            logger.error(f"Service {metadata['service_id']} from checkout session {event.session_id} not found")
            return None
        user_id = int(metadata["user_id"])
        if self.db.get(User, user_id) is None:
            logger.error(f"User {user_id} from checkout session {event.session_id} not found")
            return None

        target_date = date.fromisoformat(metadata["date"])
        start_time = metadata["start_time"]
        end_time = metadata.get("end_time") or add_minutes(start_time, service.duration_minutes)
        deposit = metadata.get("deposit_amount")
        now = self.clock()

        with slot_reservation(self.db, target_date):
            conflict = self.bookings.find_slot_conflict(
                target_date, start_time, end_time, now, exclude_session_id=event.session_id
            )
            booking = Booking(
                user_id=user_id,
                service_id=service.id,
                date=target_date,
                start_time=start_time,
                end_time=end_time,
                notes=metadata.get("notes") or None,
                status=BookingStatus.PENDING.value,
                price_at_booking=service.price,
                payment_session_id=event.session_id,
                payment_intent_id=event.payment_intent_id,
                deposit_amount=Decimal(deposit) if deposit else None,
                is_deposit_paid=True,
                deposit_paid_at=now,
                created_at=now,
            )
            self.db.add(booking)
            self.db.query(SlotHold).filter(SlotHold.payment_session_id == event.session_id).delete(
                synchronize_session=False
            )
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                existing = self._find_by_session(event.session_id)
                logger.warning(f"Concurrent duplicate payment event for session {event.session_id}")
                return existing
        self.db.refresh(booking)

        logger.info(f"Booking {booking.id} created after successful payment (session {event.session_id})")
        if conflict:
            # Deposit is already taken; the salon has to resolve it by hand
            logger.error(
                f"Paid booking {booking.id} on {target_date} {start_time}-{end_time} overlaps existing "
                f"occupancy: {conflict}"
            )
            self.bookings.schedule_notification(NotificationType.SLOT_CONFLICT, booking.id)
        self.bookings.schedule_notification(NotificationType.NEW_BOOKING, booking.id)
        return booking

    def handle_checkout_expired(self, event: CheckoutExpired):
        """
        Release the slot hold of an abandoned checkout. Booking statuses are
        left alone: a later session for the same booking may already have
        been paid.
        """
        released = (
            self.db.query(SlotHold)
            .filter(SlotHold.payment_session_id == event.session_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if released:
            logger.info(f"Released slot hold for expired checkout session {event.session_id}")
        booking_id = event.metadata.get("booking_id")
        if booking_id:
            logger.info(f"Checkout session {event.session_id} expired for booking {booking_id}, left for cleanup")

    # ==================== Verification and refunds ====================

    def verify_payment(self, booking_id: int, session_id: str, caller: Caller) -> Dict[str, Any]:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})
        if not can_view_booking(caller, booking):
            raise ForbiddenError("You can only view your own bookings")
        if booking.payment_session_id != session_id:
            return {"valid": False}

        session = self._retrieve_session(session_id)
        if session.payment_status != "paid":
            return {"valid": False, "payment_status": session.payment_status}
        return {
            "valid": True,
            "payment_status": session.payment_status,
            "amount_paid": session.amount_total / 100 if session.amount_total else None,
            "customer_email": session.customer_email,
        }

    def refund_eligibility(self, booking_id: int) -> RefundEligibility:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})
        if not booking.is_deposit_paid or not booking.payment_intent_id:
            return RefundEligibility(False, "No payment to refund")
        if booking.status == BookingStatus.CANCELLED.value:
            return RefundEligibility(False, "Booking is already cancelled")

        deadline = self.bookings.get_policy().cancellation_deadline_hours
        hours_until = BookingService.hours_until(booking, self.clock())
        if hours_until < deadline:
            return RefundEligibility(
                False,
                f"Deposits are not refunded less than {deadline} hours before the appointment",
                max(0.0, hours_until),
            )
        return RefundEligibility(True, hours_until_booking=hours_until)

    def refund_booking(self, booking_id: int, caller: Caller, reason: Optional[str] = None) -> Dict[str, Any]:
        """Refund the deposit and cancel the booking"""
        if not can_refund(caller):
            raise ForbiddenError("Only salon staff can issue refunds")

        eligibility = self.refund_eligibility(booking_id)
        if not eligibility.can_refund:
            raise PolicyViolationError(eligibility.reason, {"booking_id": booking_id})

        booking = self.db.get(Booking, booking_id)
        try:
            refund = stripe.Refund.create(
                payment_intent=booking.payment_intent_id,
                reason="requested_by_customer",
                metadata={"booking_id": str(booking.id), "reason": reason or "Client cancellation"},
                **self._request_options(),
            )
        except stripe.StripeError as e:
            logger.error(f"Refund failed for booking {booking_id}: {e}")
            raise PaymentProviderError("The refund could not be processed")

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = self.clock()
        booking.cancel_reason = reason or "Cancelled with refund"
        self.db.commit()

        logger.info(f"Refund {refund.id} issued for booking {booking_id}: {refund.amount / 100}")
        self.bookings.schedule_notification(NotificationType.CANCELLED_BOOKING, booking.id)
        return {"success": True, "refund_id": refund.id, "amount": refund.amount / 100}
