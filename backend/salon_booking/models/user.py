"""
User model
"""
from sqlalchemy import Column, Integer, String, TIMESTAMP
from sqlalchemy.sql import func
from ..database import Base


class User(Base):
    """Salon client or staff member (managed by the accounts module)"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    role = Column(String(10), default="USER", nullable=False)  # USER, PRO, ADMIN
    stripe_account_id = Column(String(100), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.email

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
