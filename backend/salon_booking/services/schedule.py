"""
Opening hours, occupancy and slot generation
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import NotFoundError, PolicyViolationError
from ..models.blocked_slot import BlockedSlot
from ..models.booking import Booking, OCCUPYING_STATUSES
from ..models.service import Service
from ..models.slot_hold import SlotHold
from ..models.weekly_availability import WeeklyAvailability
from .time_slots import day_of_week, intervals_overlap, to_hhmm, to_minutes

settings = get_settings()

Interval = Tuple[int, int]


@dataclass
class Occupancy:
    """Everything that removes capacity on one date"""

    blocked_slots: List[BlockedSlot] = field(default_factory=list)
    bookings: List[Booking] = field(default_factory=list)
    holds: List[SlotHold] = field(default_factory=list)

    def intervals(self) -> List[Interval]:
        rows: Iterable = [*self.blocked_slots, *self.bookings, *self.holds]
        return [(to_minutes(row.start_time), to_minutes(row.end_time)) for row in rows]


def generate_slots(
    windows: Sequence[WeeklyAvailability],
    duration_minutes: int,
    busy: Sequence[Interval],
    step_minutes: int,
) -> List[str]:
    """
    Walk each window in ``step_minutes`` increments and keep every start time
    whose [start, start + duration) interval fits the window and overlaps
    nothing in ``busy``.
    """
    slots = set()
    for window in windows:
        window_start = to_minutes(window.start_time)
        window_end = to_minutes(window.end_time)
        start = window_start
        while start + duration_minutes <= window_end:
            end = start + duration_minutes
            if not any(intervals_overlap(start, end, busy_start, busy_end) for busy_start, busy_end in busy):
                slots.add(start)
            start += step_minutes
    return [to_hhmm(minutes) for minutes in sorted(slots)]


class ScheduleService:
    """Read side of the schedule: windows, occupancy, advisory slot lists"""

    def __init__(self, db: Session, slot_step_minutes: Optional[int] = None):
        self.db = db
        self.slot_step = slot_step_minutes or settings.SLOT_DURATION_MINUTES

    def get_availability_windows(self, target_date: date) -> List[WeeklyAvailability]:
        """Active weekly windows for the weekday of ``target_date``; empty when closed"""
        return (
            self.db.query(WeeklyAvailability)
            .filter(
                WeeklyAvailability.day_of_week == day_of_week(target_date),
                WeeklyAvailability.is_active.is_(True),
            )
            .order_by(WeeklyAvailability.start_time)
            .all()
        )

    def get_blocked_slots(self, target_date: date) -> List[BlockedSlot]:
        return (
            self.db.query(BlockedSlot)
            .filter(BlockedSlot.date == target_date)
            .order_by(BlockedSlot.start_time)
            .all()
        )

    def get_occupying_bookings(self, target_date: date) -> List[Booking]:
        """PENDING and CONFIRMED bookings; PENDING_PAYMENT ones do not hold a slot"""
        return (
            self.db.query(Booking)
            .filter(
                Booking.date == target_date,
                Booking.status.in_([status.value for status in OCCUPYING_STATUSES]),
            )
            .order_by(Booking.start_time)
            .all()
        )

    def get_active_holds(self, target_date: date, now: datetime) -> List[SlotHold]:
        return (
            self.db.query(SlotHold)
            .filter(SlotHold.date == target_date, SlotHold.expires_at > now)
            .all()
        )

    def get_occupancy(
        self,
        target_date: date,
        now: Optional[datetime] = None,
        exclude_session_id: Optional[str] = None,
    ) -> Occupancy:
        """
        Blocked periods, occupying bookings and (when enabled) unexpired slot
        holds for ``target_date``. ``exclude_session_id`` leaves out the hold
        belonging to the checkout that is being completed.
        """
        holds: List[SlotHold] = []
        if settings.SLOT_HOLD_ENABLED:
            holds = [
                hold for hold in self.get_active_holds(target_date, now or datetime.now())
                if exclude_session_id is None or hold.payment_session_id != exclude_session_id
            ]
        return Occupancy(
            blocked_slots=self.get_blocked_slots(target_date),
            bookings=self.get_occupying_bookings(target_date),
            holds=holds,
        )

    def get_bookable_service(self, service_id: int) -> Service:
        service = self.db.get(Service, service_id)
        if service is None:
            raise NotFoundError("Service not found", {"service_id": service_id})
        if not service.is_active:
            raise PolicyViolationError("Service is not active", {"service_id": service_id})
        return service

    def get_available_slots(
        self,
        service_id: int,
        target_date: date,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """
        Advisory list of free start times for a service on a date.
        Booking creation repeats the occupancy check on its own.
        """
        service = self.get_bookable_service(service_id)

        windows = self.get_availability_windows(target_date)
        if not windows:
            return []

        occupancy = self.get_occupancy(target_date, now=now)
        return generate_slots(windows, service.duration_minutes, occupancy.intervals(), self.slot_step)
