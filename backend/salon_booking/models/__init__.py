"""
SQLAlchemy models
"""
from .user import User
from .service import Service
from .weekly_availability import WeeklyAvailability
from .blocked_slot import BlockedSlot
from .booking import Booking, BookingStatus
from .site_settings import SiteSettings
from .slot_hold import SlotHold
from .notification import Notification

__all__ = [
    "User",
    "Service",
    "WeeklyAvailability",
    "BlockedSlot",
    "Booking",
    "BookingStatus",
    "SiteSettings",
    "SlotHold",
    "Notification",
]
