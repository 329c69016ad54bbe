"""
Blocked periods on a specific date
"""
from sqlalchemy import Column, Integer, Date, String, TIMESTAMP, CheckConstraint
from sqlalchemy.sql import func
from ..database import Base


class BlockedSlot(Base):
    """One-off exclusion (holiday, personal appointment)"""

    __tablename__ = "blocked_slots"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)
    reason = Column(String(200), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_blocked_slot_window"),
    )

    def __repr__(self):
        return f"<BlockedSlot {self.date} {self.start_time}-{self.end_time} - {self.reason}>"
