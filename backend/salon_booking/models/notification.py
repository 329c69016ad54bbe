"""
Notification delivery log
"""
from sqlalchemy import Column, Integer, ForeignKey, String, Text, TIMESTAMP
from sqlalchemy.sql import func
from ..database import Base


class Notification(Base):
    """One delivery attempt for a booking notification"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    channel = Column(String(20), nullable=False)  # telegram, email
    kind = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    sent_at = Column(TIMESTAMP, server_default=func.now())
    status = Column(String(20), default="sent")  # sent, failed

    def __repr__(self):
        return f"<Notification {self.channel}/{self.kind} (Status: {self.status})>"
