"""
Role checks for booking operations

One predicate per operation, each a pure function of the caller and the booking.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

from .models.booking import Booking


class Role(str, Enum):
    USER = "USER"
    PRO = "PRO"
    ADMIN = "ADMIN"


PRIVILEGED_ROLES = frozenset({Role.PRO, Role.ADMIN})

USER_UPDATABLE_FIELDS: FrozenSet[str] = frozenset({"notes"})
STAFF_UPDATABLE_FIELDS: FrozenSet[str] = frozenset({"status", "notes", "pro_notes"})


@dataclass(frozen=True)
class Caller:
    """Already authenticated identity making the request"""

    user_id: int
    role: Role = Role.USER

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def owns(caller: Caller, booking: Booking) -> bool:
    return booking.user_id == caller.user_id


def can_view_booking(caller: Caller, booking: Booking) -> bool:
    return caller.is_privileged or owns(caller, booking)


def can_update_booking(caller: Caller, booking: Booking) -> bool:
    return caller.is_privileged or owns(caller, booking)


def updatable_fields(caller: Caller) -> FrozenSet[str]:
    return STAFF_UPDATABLE_FIELDS if caller.is_privileged else USER_UPDATABLE_FIELDS


def can_cancel_booking(caller: Caller, booking: Booking) -> bool:
    return caller.is_privileged or owns(caller, booking)


def bypasses_cancellation_deadline(caller: Caller) -> bool:
    return caller.is_privileged


def bypasses_opening_hours(caller: Caller) -> bool:
    """Staff may book outside the weekly windows; overlap checks still apply"""
    return caller.is_privileged


def can_list_all_bookings(caller: Caller) -> bool:
    return caller.is_privileged


def can_audit_conflicts(caller: Caller) -> bool:
    return caller.is_privileged


def can_refund(caller: Caller) -> bool:
    return caller.is_privileged
