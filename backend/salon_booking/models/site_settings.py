"""
Site settings (singleton row edited from the admin settings page)
"""
from sqlalchemy import Column, Integer, String, Numeric, TIMESTAMP
from sqlalchemy.sql import func
from ..database import Base


class SiteSettings(Base):
    """Salon-wide booking policy"""

    __tablename__ = "site_settings"

    id = Column(Integer, primary_key=True, index=True)
    salon_name = Column(String(100), nullable=True)
    booking_advance_min_days = Column(Integer, default=1, nullable=False)
    booking_advance_max_days = Column(Integer, default=60, nullable=False)
    cancellation_deadline_hours = Column(Integer, default=24, nullable=False)
    deposit_amount = Column(Numeric(10, 2), default=20, nullable=False)
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return (
            f"<SiteSettings advance={self.booking_advance_min_days}-{self.booking_advance_max_days}d "
            f"cancel={self.cancellation_deadline_hours}h>"
        )
