"""
Recurring weekly opening hours
"""
from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from ..database import Base


class WeeklyAvailability(Base):
    """Open window on a weekday; several windows per day are allowed (split shifts)"""

    __tablename__ = "weekly_availability"

    id = Column(Integer, primary_key=True, index=True)
    day_of_week = Column(Integer, nullable=False, index=True)  # 0=Mon, 6=Sun
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_weekly_availability_window"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_weekly_availability_day"),
    )

    def __repr__(self):
        days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        return f"<WeeklyAvailability {days[self.day_of_week]} {self.start_time}-{self.end_time}>"


# Seed schedule for a fresh database
DEFAULT_WEEKLY_AVAILABILITY = [
    {"day_of_week": 0, "start_time": "09:00", "end_time": "12:30"},
    {"day_of_week": 0, "start_time": "14:00", "end_time": "19:00"},
    {"day_of_week": 1, "start_time": "09:00", "end_time": "19:00"},
    {"day_of_week": 2, "start_time": "09:00", "end_time": "19:00"},
    {"day_of_week": 3, "start_time": "09:00", "end_time": "19:00"},
    {"day_of_week": 4, "start_time": "09:00", "end_time": "19:00"},
    {"day_of_week": 5, "start_time": "10:00", "end_time": "16:00"},
]
