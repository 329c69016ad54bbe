"""
Booking model
"""
from enum import Enum

from sqlalchemy import Column, Integer, ForeignKey, Date, String, Numeric, Text, Boolean, TIMESTAMP
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that take a slot away from future scheduling
OCCUPYING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

TERMINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW)


class Booking(Base):
    """Client booking"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)  # frozen at creation
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False, index=True)
    price_at_booking = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    pro_notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)

    # Deposit
    deposit_amount = Column(Numeric(10, 2), nullable=True)
    is_deposit_paid = Column(Boolean, default=False, nullable=False)
    deposit_paid_at = Column(TIMESTAMP, nullable=True)
    payment_session_id = Column(String(255), unique=True, nullable=True)
    payment_intent_id = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    service = relationship("Service", lazy="joined")
    user = relationship("User", lazy="joined")

    def __repr__(self):
        return f"<Booking {self.date} {self.start_time}-{self.end_time} (Status: {self.status})>"
