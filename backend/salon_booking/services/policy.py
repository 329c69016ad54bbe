"""
Booking policy loaded from the site settings row
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from ..models.site_settings import SiteSettings


@dataclass(frozen=True)
class BookingPolicy:
    """
    Policy parameters used by the booking core.

    The defaults apply while no site settings row exists and are deliberately
    permissive: same-day bookings allowed, a year of lead time, cancellation
    up to the start of the appointment.
    """

    booking_advance_min_days: int = 0
    booking_advance_max_days: int = 365
    cancellation_deadline_hours: int = 0
    deposit_amount: Decimal = Decimal("20.00")

    @classmethod
    def from_settings(cls, row: SiteSettings) -> "BookingPolicy":
        default = cls()
        return cls(
            booking_advance_min_days=_or_default(row.booking_advance_min_days, default.booking_advance_min_days),
            booking_advance_max_days=_or_default(row.booking_advance_max_days, default.booking_advance_max_days),
            cancellation_deadline_hours=_or_default(
                row.cancellation_deadline_hours, default.cancellation_deadline_hours
            ),
            deposit_amount=Decimal(str(_or_default(row.deposit_amount, default.deposit_amount))),
        )


def _or_default(value, default):
    return default if value is None else value


def load_booking_policy(db: Session) -> BookingPolicy:
    """Read the policy from the first site settings row, or fall back to defaults"""
    row = db.query(SiteSettings).order_by(SiteSettings.id).first()
    if row is None:
        return BookingPolicy()
    return BookingPolicy.from_settings(row)
