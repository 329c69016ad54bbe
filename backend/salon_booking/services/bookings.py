"""
Booking lifecycle: creation with policy and occupancy checks, updates,
cancellation and the status state machine.
"""
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..errors import ForbiddenError, NotFoundError, PolicyViolationError, SlotUnavailableError
from ..models.booking import Booking, BookingStatus, OCCUPYING_STATUSES, TERMINAL_STATUSES
from ..models.service import Service
from ..models.user import User
from ..permissions import (
    Caller,
    bypasses_cancellation_deadline,
    bypasses_opening_hours,
    can_cancel_booking,
    can_list_all_bookings,
    can_update_booking,
    can_view_booking,
    updatable_fields,
)
from .notifications import NotificationType
from .policy import BookingPolicy, load_booking_policy
from .schedule import ScheduleService
from .slot_lock import slot_reservation
from .time_slots import MINUTES_PER_DAY, intervals_overlap, is_valid_hhmm, to_hhmm, to_minutes

logger = logging.getLogger(__name__)

Notifier = Callable[[NotificationType, int], None]

ALLOWED_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.PENDING, BookingStatus.CANCELLED}),
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
    return new == current or new in ALLOWED_TRANSITIONS[current]


@dataclass
class SlotCheck:
    """Result of a successful availability check"""

    service: Service
    start_time: str
    end_time: str
    policy: BookingPolicy


class BookingService:
    """Authoritative write path for bookings"""

    def __init__(
        self,
        db: Session,
        policy: Optional[BookingPolicy] = None,
        notify: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.policy = policy
        self.notify = notify
        self.clock = clock
        self.schedule = ScheduleService(db)

    # ==================== Validation ====================

    def get_policy(self) -> BookingPolicy:
        return self.policy or load_booking_policy(self.db)

    def find_slot_conflict(
        self,
        target_date: date,
        start_time: str,
        end_time: str,
        now: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> Optional[str]:
        """Return why [start_time, end_time) is taken on ``target_date``, or None if it is free"""
        start, end = to_minutes(start_time), to_minutes(end_time)
        occupancy = self.schedule.get_occupancy(target_date, now=now, exclude_session_id=exclude_session_id)

        for block in occupancy.blocked_slots:
            if intervals_overlap(start, end, to_minutes(block.start_time), to_minutes(block.end_time)):
                suffix = f" ({block.reason})" if block.reason else ""
                return f"The salon is unavailable from {block.start_time} to {block.end_time}{suffix}"

        for booking in occupancy.bookings:
            if intervals_overlap(start, end, to_minutes(booking.start_time), to_minutes(booking.end_time)):
                return "This time slot is already booked"

        for hold in occupancy.holds:
            if intervals_overlap(start, end, to_minutes(hold.start_time), to_minutes(hold.end_time)):
                return "This time slot is being reserved by another client"

        return None

    def check_slot_availability(
        self,
        service_id: int,
        target_date: date,
        start_time: str,
        caller: Optional[Caller] = None,
        now: Optional[datetime] = None,
    ) -> SlotCheck:
        """
        Run every create() rule without inserting anything.

        Raises NotFoundError, PolicyViolationError or SlotUnavailableError
        naming the first rule that fails.
        """
        now = now or self.clock()
        service = self.schedule.get_bookable_service(service_id)
        policy = self.get_policy()

        days_in_advance = (target_date - now.date()).days
        if days_in_advance < policy.booking_advance_min_days:
            raise PolicyViolationError(
                f"Bookings must be made at least {policy.booking_advance_min_days} days in advance",
                {"min_days": policy.booking_advance_min_days, "days_in_advance": days_in_advance},
            )
        if days_in_advance > policy.booking_advance_max_days:
            raise PolicyViolationError(
                f"Bookings cannot be made more than {policy.booking_advance_max_days} days in advance",
                {"max_days": policy.booking_advance_max_days, "days_in_advance": days_in_advance},
            )

        if not is_valid_hhmm(start_time):
            raise PolicyViolationError("Start time must be in HH:MM format", {"start_time": start_time})
        start = to_minutes(start_time)
        if days_in_advance == 0 and start <= now.hour * 60 + now.minute:
            raise PolicyViolationError("This start time has already passed", {"start_time": start_time})

        end = start + service.duration_minutes
        if end > MINUTES_PER_DAY:
            raise SlotUnavailableError("The service would end after midnight", {"start_time": start_time})
        end_time = to_hhmm(end)

        if caller is None or not bypasses_opening_hours(caller):
            windows = self.schedule.get_availability_windows(target_date)
            if not windows:
                raise SlotUnavailableError("The salon is closed on this day", {"date": target_date.isoformat()})
            inside = any(
                to_minutes(window.start_time) <= start and end <= to_minutes(window.end_time)
                for window in windows
            )
            if not inside:
                raise SlotUnavailableError(
                    "This time slot is outside opening hours",
                    {"start_time": start_time, "end_time": end_time},
                )

        reason = self.find_slot_conflict(target_date, start_time, end_time, now)
        if reason:
            raise SlotUnavailableError(reason, {"start_time": start_time, "end_time": end_time})

        return SlotCheck(service=service, start_time=start_time, end_time=end_time, policy=policy)

    # ==================== Commands ====================

    def create(
        self,
        user_id: int,
        service_id: int,
        target_date: date,
        start_time: str,
        notes: Optional[str] = None,
        caller: Optional[Caller] = None,
        status: BookingStatus = BookingStatus.PENDING,
    ) -> Booking:
        """
        Create a booking after re-checking policy and occupancy under the
        per-date reservation lock.
        """
        if self.db.get(User, user_id) is None:
            raise NotFoundError("User not found", {"user_id": user_id})

        now = self.clock()
        with slot_reservation(self.db, target_date):
            check = self.check_slot_availability(service_id, target_date, start_time, caller=caller, now=now)
            booking = Booking(
                user_id=user_id,
                service_id=check.service.id,
                date=target_date,
                start_time=check.start_time,
                end_time=check.end_time,
                status=status.value,
                price_at_booking=check.service.price,
                notes=notes,
                created_at=now,
            )
            if status == BookingStatus.PENDING_PAYMENT:
                booking.deposit_amount = check.policy.deposit_amount
            self.db.add(booking)
            self.db.commit()
        self.db.refresh(booking)

        logger.info(
            f"Booking {booking.id} created for user {user_id}: "
            f"{target_date} {booking.start_time}-{booking.end_time} ({booking.status})"
        )
        self.schedule_notification(NotificationType.NEW_BOOKING, booking.id)
        return booking

    def update(self, booking_id: int, patch: Mapping[str, Any], caller: Caller) -> Booking:
        """
        Apply a partial update. Regular users may change their own notes only;
        staff may also move the booking through the status state machine.
        """
        booking = self._load(booking_id)
        if not can_update_booking(caller, booking):
            raise ForbiddenError("You can only update your own bookings")

        # an explicit null status means "leave it"
        patch = {key: value for key, value in patch.items() if not (key == "status" and value is None)}
        forbidden = set(patch) - updatable_fields(caller)
        if forbidden:
            raise ForbiddenError(
                f"You are not allowed to update: {', '.join(sorted(forbidden))}",
                {"fields": sorted(forbidden)},
            )

        previous = BookingStatus(booking.status)
        new_status = previous
        if "status" in patch:
            try:
                new_status = BookingStatus(patch["status"])
            except ValueError:
                raise PolicyViolationError(f"Unknown status {patch['status']!r}")
            if not can_transition(previous, new_status):
                raise PolicyViolationError(
                    f"Cannot change a {previous.value} booking to {new_status.value}",
                    {"from": previous.value, "to": new_status.value},
                )

        # Moving into an occupying status claims the slot, so it is re-checked under the lock
        claims_slot = new_status in OCCUPYING_STATUSES and previous not in OCCUPYING_STATUSES
        guard = slot_reservation(self.db, booking.date) if claims_slot else nullcontext()
        with guard:
            if claims_slot:
                conflict = self.find_slot_conflict(booking.date, booking.start_time, booking.end_time, self.clock())
                if conflict:
                    raise SlotUnavailableError(
                        conflict, {"start_time": booking.start_time, "end_time": booking.end_time}
                    )
            booking.status = new_status.value
            if new_status == BookingStatus.CANCELLED and previous != BookingStatus.CANCELLED:
                booking.cancelled_at = self.clock()

            if "notes" in patch:
                booking.notes = patch["notes"]
            if "pro_notes" in patch:
                booking.pro_notes = patch["pro_notes"]

            self.db.commit()
        self.db.refresh(booking)

        current = BookingStatus(booking.status)
        if current != previous:
            logger.info(f"Booking {booking.id} status {previous.value} -> {current.value} by user {caller.user_id}")
        if current == BookingStatus.CONFIRMED and previous != BookingStatus.CONFIRMED:
            self.schedule_notification(NotificationType.BOOKING_CONFIRMED, booking.id)
        elif current == BookingStatus.CANCELLED and previous != BookingStatus.CANCELLED:
            self.schedule_notification(NotificationType.CANCELLED_BOOKING, booking.id)
        return booking

    def cancel(self, booking_id: int, caller: Caller, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking. Regular users must respect the cancellation
        deadline; staff are exempt.
        """
        booking = self._load(booking_id)
        if not can_cancel_booking(caller, booking):
            raise ForbiddenError("You can only cancel your own bookings")

        if BookingStatus(booking.status) in TERMINAL_STATUSES:
            raise PolicyViolationError(
                "This booking cannot be cancelled", {"status": booking.status}
            )

        now = self.clock()
        if not bypasses_cancellation_deadline(caller):
            deadline = self.get_policy().cancellation_deadline_hours
            hours_until = self.hours_until(booking, now)
            if hours_until < deadline:
                raise PolicyViolationError(
                    f"Bookings can only be cancelled at least {deadline} hours in advance "
                    f"({max(hours_until, 0):.1f} hours left)",
                    {"deadline_hours": deadline, "hours_until_booking": round(hours_until, 2)},
                )

        booking.status = BookingStatus.CANCELLED.value
        booking.cancel_reason = reason
        booking.cancelled_at = now
        self.db.commit()
        self.db.refresh(booking)

        logger.info(f"Booking {booking.id} cancelled by user {caller.user_id} ({caller.role.value})")
        self.schedule_notification(NotificationType.CANCELLED_BOOKING, booking.id)
        return booking

    # ==================== Queries ====================

    def get(self, booking_id: int, caller: Caller) -> Booking:
        booking = self._load(booking_id)
        if not can_view_booking(caller, booking):
            raise ForbiddenError("You can only view your own bookings")
        return booking

    def list_bookings(
        self,
        caller: Caller,
        status: Optional[BookingStatus] = None,
        target_date: Optional[date] = None,
        user_id: Optional[int] = None,
    ) -> List[Booking]:
        if not can_list_all_bookings(caller):
            raise ForbiddenError("Only salon staff can list all bookings")
        return self._query(status=status, target_date=target_date, user_id=user_id)

    def list_for_user(self, user_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        return self._query(status=status, user_id=user_id)

    # ==================== Helpers ====================

    @staticmethod
    def hours_until(booking: Booking, now: datetime) -> float:
        hour, minute = divmod(to_minutes(booking.start_time), 60)
        starts_at = datetime.combine(booking.date, time(hour, minute))
        return (starts_at - now).total_seconds() / 3600

    def schedule_notification(self, kind: NotificationType, booking_id: int):
        """Hand a notification to the dispatcher; failures never reach the caller"""
        if self.notify is None:
            return
        try:
            self.notify(kind, booking_id)
        except Exception:
            logger.exception(f"Could not schedule {kind.value} notification for booking {booking_id}")

    def _load(self, booking_id: int) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})
        return booking

    def _query(
        self,
        status: Optional[BookingStatus] = None,
        target_date: Optional[date] = None,
        user_id: Optional[int] = None,
    ) -> List[Booking]:
        query = self.db.query(Booking)
        if status is not None:
            query = query.filter(Booking.status == BookingStatus(status).value)
        if target_date is not None:
            query = query.filter(Booking.date == target_date)
        if user_id is not None:
            query = query.filter(Booking.user_id == user_id)
        return query.order_by(Booking.date, Booking.start_time).all()


def deposit_due(policy: BookingPolicy) -> bool:
    return policy.deposit_amount is not None and Decimal(policy.deposit_amount) > 0
