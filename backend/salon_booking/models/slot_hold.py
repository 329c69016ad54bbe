"""
Short-lived slot reservation held while a checkout session is open
"""
from sqlalchemy import Column, Integer, ForeignKey, Date, String, TIMESTAMP
from sqlalchemy.sql import func
from ..database import Base


class SlotHold(Base):
    """Slot kept out of availability until payment completes or the session expires"""

    __tablename__ = "slot_holds"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    payment_session_id = Column(String(255), unique=True, nullable=True)
    expires_at = Column(TIMESTAMP, nullable=False)
    created_at = Column(TIMESTAMP, server_default=func.now())

    def __repr__(self):
        return f"<SlotHold {self.date} {self.start_time}-{self.end_time} until {self.expires_at}>"
