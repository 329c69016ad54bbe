"""
Read-only audit of the schedule

Re-derives every overlap from the raw rows instead of trusting the write
path, so it also catches bookings inserted by the deferred payment flow
after their slot was taken.
"""
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.blocked_slot import BlockedSlot
from ..models.booking import Booking, BookingStatus
from ..models.weekly_availability import WeeklyAvailability
from .time_slots import DAY_NAMES, day_of_week, times_overlap, to_minutes

# Every non-cancelled status that ever held a slot
AUDITED_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.NO_SHOW,
)


class ConflictType(str, Enum):
    OVERLAPPING_BOOKINGS = "OVERLAPPING_BOOKINGS"
    BOOKING_BLOCKED_SLOT = "BOOKING_BLOCKED_SLOT"
    BOOKING_NO_AVAILABILITY = "BOOKING_NO_AVAILABILITY"
    OVERLAPPING_BLOCKED_SLOTS = "OVERLAPPING_BLOCKED_SLOTS"


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


SEVERITY_ORDER = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


@dataclass
class Conflict:
    id: str
    type: ConflictType
    severity: Severity
    date: str
    start_time: str
    end_time: str
    description: str
    booking_ids: List[int] = field(default_factory=list)
    blocked_slot_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        return data


def _window(row: WeeklyAvailability) -> Dict[str, str]:
    return {"start_time": row.start_time, "end_time": row.end_time}


class ConflictAuditor:
    """Scans bookings, blocked periods and opening hours for broken invariants"""

    def __init__(self, db: Session):
        self.db = db

    def _bookings(self, from_date: Optional[date], to_date: Optional[date]) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.status.in_([status.value for status in AUDITED_STATUSES])
        )
        if from_date is not None:
            query = query.filter(Booking.date >= from_date)
        if to_date is not None:
            query = query.filter(Booking.date <= to_date)
        return query.order_by(Booking.date, Booking.start_time).all()

    def _blocked_slots(self, from_date: Optional[date], to_date: Optional[date]) -> List[BlockedSlot]:
        query = self.db.query(BlockedSlot)
        if from_date is not None:
            query = query.filter(BlockedSlot.date >= from_date)
        if to_date is not None:
            query = query.filter(BlockedSlot.date <= to_date)
        return query.order_by(BlockedSlot.date, BlockedSlot.start_time).all()

    def find_all_conflicts(self, from_date: Optional[date] = None, to_date: Optional[date] = None) -> Dict[str, Any]:
        bookings = self._bookings(from_date, to_date)
        blocked_slots = self._blocked_slots(from_date, to_date)
        windows = (
            self.db.query(WeeklyAvailability)
            .filter(WeeklyAvailability.is_active.is_(True))
            .order_by(WeeklyAvailability.day_of_week, WeeklyAvailability.start_time)
            .all()
        )

        conflicts = (
            self.overlapping_bookings(bookings)
            + self.bookings_in_blocked_slots(bookings, blocked_slots)
            + self.bookings_outside_hours(bookings, windows)
            + self.overlapping_blocked_slots(blocked_slots)
        )
        conflicts.sort(key=lambda c: (SEVERITY_ORDER[c.severity], c.date, c.start_time))
        return {"total": len(conflicts), "conflicts": conflicts}

    def summary(self, from_date: Optional[date] = None, to_date: Optional[date] = None) -> Dict[str, Any]:
        conflicts = self.find_all_conflicts(from_date, to_date)["conflicts"]
        by_type = {kind.value: 0 for kind in ConflictType}
        by_severity = {severity.value: 0 for severity in Severity}
        for conflict in conflicts:
            by_type[conflict.type.value] += 1
            by_severity[conflict.severity.value] += 1
        return {"total": len(conflicts), "by_type": by_type, "by_severity": by_severity}

    # ==================== Scans ====================

    @staticmethod
    def overlapping_bookings(bookings: List[Booking]) -> List[Conflict]:
        found = []
        for first, second in combinations(bookings, 2):
            if first.date != second.date:
                continue
            if times_overlap(first.start_time, first.end_time, second.start_time, second.end_time):
                found.append(Conflict(
                    id=f"overlap-{first.id}-{second.id}",
                    type=ConflictType.OVERLAPPING_BOOKINGS,
                    severity=Severity.HIGH,
                    date=first.date.isoformat(),
                    start_time=first.start_time,
                    end_time=first.end_time,
                    description=(
                        f"Bookings {first.id} ({first.start_time}-{first.end_time}) and "
                        f"{second.id} ({second.start_time}-{second.end_time}) overlap"
                    ),
                    booking_ids=[first.id, second.id],
                ))
        return found

    @staticmethod
    def bookings_in_blocked_slots(bookings: List[Booking], blocked_slots: List[BlockedSlot]) -> List[Conflict]:
        found = []
        for booking in bookings:
            for block in blocked_slots:
                if block.date != booking.date:
                    continue
                if not times_overlap(booking.start_time, booking.end_time, block.start_time, block.end_time):
                    continue
                reason = f" ({block.reason})" if block.reason else ""
                found.append(Conflict(
                    id=f"booking-block-{booking.id}-{block.id}",
                    type=ConflictType.BOOKING_BLOCKED_SLOT,
                    severity=Severity.HIGH,
                    date=booking.date.isoformat(),
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    description=(
                        f"Booking {booking.id} falls in blocked period "
                        f"{block.start_time}-{block.end_time}{reason}"
                    ),
                    booking_ids=[booking.id],
                    blocked_slot_id=block.id,
                ))
        return found

    @staticmethod
    def bookings_outside_hours(bookings: List[Booking], windows: List[WeeklyAvailability]) -> List[Conflict]:
        by_day: Dict[int, List[WeeklyAvailability]] = {}
        for window in windows:
            by_day.setdefault(window.day_of_week, []).append(window)

        found = []
        for booking in bookings:
            weekday = day_of_week(booking.date)
            day_windows = by_day.get(weekday, [])
            if not day_windows:
                found.append(Conflict(
                    id=f"no-availability-{booking.id}",
                    type=ConflictType.BOOKING_NO_AVAILABILITY,
                    severity=Severity.MEDIUM,
                    date=booking.date.isoformat(),
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    description=f"Booking {booking.id} is on a closed day ({DAY_NAMES[weekday]})",
                    booking_ids=[booking.id],
                    details={"day_of_week": weekday},
                ))
                continue

            start, end = to_minutes(booking.start_time), to_minutes(booking.end_time)
            inside = any(
                to_minutes(window.start_time) <= start and end <= to_minutes(window.end_time)
                for window in day_windows
            )
            if not inside:
                found.append(Conflict(
                    id=f"outside-hours-{booking.id}",
                    type=ConflictType.BOOKING_NO_AVAILABILITY,
                    severity=Severity.MEDIUM,
                    date=booking.date.isoformat(),
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    description=f"Booking {booking.id} is outside opening hours",
                    booking_ids=[booking.id],
                    details={"day_of_week": weekday, "windows": [_window(w) for w in day_windows]},
                ))
        return found

    @staticmethod
    def overlapping_blocked_slots(blocked_slots: List[BlockedSlot]) -> List[Conflict]:
        found = []
        for first, second in combinations(blocked_slots, 2):
            if first.date != second.date:
                continue
            if times_overlap(first.start_time, first.end_time, second.start_time, second.end_time):
                found.append(Conflict(
                    id=f"block-overlap-{first.id}-{second.id}",
                    type=ConflictType.OVERLAPPING_BLOCKED_SLOTS,
                    severity=Severity.LOW,
                    date=first.date.isoformat(),
                    start_time=first.start_time,
                    end_time=first.end_time,
                    description="Two blocked periods overlap",
                    blocked_slot_id=first.id,
                    details={"blocked_slot_ids": [first.id, second.id]},
                ))
        return found
