"""
Pytest configuration: isolated databases, factories and a fixed clock.
"""
import os

# Must be set before any salon_booking import reads the settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"  # matches helpers.WEBHOOK_SECRET
os.environ["BOOKING_FLOW"] = "deferred"
os.environ["SLOT_HOLD_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salon_booking import models  # noqa: F401  registers every table
from salon_booking.config import get_settings
from salon_booking.database import Base
from salon_booking.models import BlockedSlot, Booking, Service, SiteSettings, User, WeeklyAvailability
from salon_booking.models.booking import BookingStatus
from salon_booking.permissions import Caller, Role
from salon_booking.services.policy import BookingPolicy

from helpers import NOW


@pytest.fixture
def settings():
    """The cached application settings; patch attributes with monkeypatch"""
    return get_settings()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def policy():
    return BookingPolicy(
        booking_advance_min_days=0,
        booking_advance_max_days=60,
        cancellation_deadline_hours=24,
        deposit_amount=Decimal("20.00"),
    )


class Recorder:
    """Stands in for the notification dispatcher"""

    def __init__(self):
        self.sent = []

    def __call__(self, kind, booking_id):
        self.sent.append((kind, booking_id))

    def kinds(self):
        return [kind for kind, _ in self.sent]


@pytest.fixture
def notifier():
    return Recorder()


# ==================== Factories ====================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role = Role.USER, **kwargs):
        counter["n"] += 1
        user = User(
            email=kwargs.pop("email", f"user{counter['n']}@example.com"),
            first_name=kwargs.pop("first_name", "Test"),
            last_name=kwargs.pop("last_name", f"User{counter['n']}"),
            role=role.value,
            **kwargs,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_service(db):
    def _make(duration_minutes=60, price="50.00", is_active=True, name="Massage"):
        service = Service(
            name=name,
            duration_minutes=duration_minutes,
            price=Decimal(price),
            is_active=is_active,
        )
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return _make


@pytest.fixture
def make_window(db):
    def _make(day_of_week, start_time="09:00", end_time="18:00", is_active=True):
        window = WeeklyAvailability(
            day_of_week=day_of_week, start_time=start_time, end_time=end_time, is_active=is_active
        )
        db.add(window)
        db.commit()
        return window

    return _make


@pytest.fixture
def open_every_day(make_window):
    """09:00-18:00 Monday to Saturday, closed on Sunday"""
    return [make_window(day) for day in range(6)]


@pytest.fixture
def make_block(db):
    def _make(target_date, start_time, end_time, reason=None):
        block = BlockedSlot(date=target_date, start_time=start_time, end_time=end_time, reason=reason)
        db.add(block)
        db.commit()
        db.refresh(block)
        return block

    return _make


@pytest.fixture
def make_booking(db):
    """Insert a booking row directly, bypassing every check"""

    def _make(user, service, target_date, start_time, end_time, status=BookingStatus.PENDING, **kwargs):
        booking = Booking(
            user_id=user.id,
            service_id=service.id,
            date=target_date,
            start_time=start_time,
            end_time=end_time,
            status=status.value,
            price_at_booking=service.price,
            **kwargs,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def site_settings(db):
    def _make(**kwargs):
        row = SiteSettings(**kwargs)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def client_user(make_user):
    return make_user(Role.USER)


@pytest.fixture
def admin_user(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture
def user_caller(client_user):
    return Caller(user_id=client_user.id, role=Role.USER)


@pytest.fixture
def admin_caller(admin_user):
    return Caller(user_id=admin_user.id, role=Role.ADMIN)

