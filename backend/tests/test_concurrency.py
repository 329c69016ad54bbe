"""
Concurrent booking of the same slot against a file-backed database
"""
import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from salon_booking.database import Base
from salon_booking.errors import SlotUnavailableError
from salon_booking.models import Booking, Service, User, WeeklyAvailability
from salon_booking.services.bookings import BookingService
from salon_booking.services.policy import BookingPolicy

from helpers import NEXT_MONDAY, NOW


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = factory()
    db.add(User(email="racer@example.com", first_name="Race", last_name="Condition"))
    db.add(Service(name="Massage", duration_minutes=60, price=Decimal("50.00")))
    db.add(WeeklyAvailability(day_of_week=0, start_time="09:00", end_time="18:00"))
    db.commit()
    db.close()

    yield factory
    engine.dispose()


def _race(factory, attempts, start_times):
    barrier = threading.Barrier(attempts)
    outcomes = []
    lock = threading.Lock()

    def attempt(start_time):
        db = factory()
        try:
            bookings = BookingService(db, policy=BookingPolicy(), clock=lambda: NOW)
            barrier.wait()
            try:
                booking = bookings.create(1, 1, NEXT_MONDAY, start_time)
                result = ("ok", booking.id)
            except SlotUnavailableError as e:
                result = ("taken", e.message)
            with lock:
                outcomes.append(result)
        finally:
            db.close()

    threads = [threading.Thread(target=attempt, args=(start_time,)) for start_time in start_times]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_two_concurrent_creates_for_one_slot(file_session_factory):
    outcomes = _race(file_session_factory, 2, ["10:00", "10:00"])

    assert sorted(kind for kind, _ in outcomes) == ["ok", "taken"]


def test_many_concurrent_overlapping_creates(file_session_factory):
    outcomes = _race(file_session_factory, 6, ["10:00", "10:15", "10:30", "10:45", "10:00", "10:30"])

    assert len(outcomes) == 6
    assert [kind for kind, _ in outcomes].count("ok") == 1

    db = file_session_factory()
    try:
        assert db.query(Booking).count() == 1
    finally:
        db.close()
