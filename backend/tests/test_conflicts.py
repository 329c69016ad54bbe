"""
Conflict audit over bookings, blocked periods and opening hours
"""
from datetime import timedelta

import pytest

from salon_booking.models.booking import BookingStatus
from salon_booking.services.conflicts import ConflictAuditor

from helpers import NEXT_MONDAY, NEXT_SUNDAY


@pytest.fixture
def service(make_service):
    return make_service(duration_minutes=60)


def test_clean_schedule_has_no_conflicts(db, open_every_day, service, client_user, make_booking, make_block):
    make_booking(client_user, service, NEXT_MONDAY, "10:00", "11:00")
    # back-to-back is not a conflict
    make_booking(client_user, service, NEXT_MONDAY, "11:00", "12:00", BookingStatus.CONFIRMED)
    make_block(NEXT_MONDAY, "12:00", "13:00")

    assert ConflictAuditor(db).find_all_conflicts() == {"total": 0, "conflicts": []}


def test_every_kind_of_conflict_is_found_and_sorted(
    db, open_every_day, service, client_user, make_booking, make_block
):
    later = NEXT_MONDAY + timedelta(days=1)
    first = make_booking(client_user, service, later, "10:00", "11:00")
    second = make_booking(client_user, service, later, "10:30", "11:30", BookingStatus.CONFIRMED)
    blocked = make_booking(client_user, service, NEXT_MONDAY, "14:00", "15:00")
    block = make_block(NEXT_MONDAY, "14:30", "16:00", reason="Plumber")
    make_block(NEXT_MONDAY, "15:30", "17:00")
    closed_day = make_booking(client_user, service, NEXT_SUNDAY, "10:00", "11:00", BookingStatus.COMPLETED)
    late = make_booking(client_user, service, NEXT_MONDAY, "17:30", "18:30", BookingStatus.NO_SHOW)

    report = ConflictAuditor(db).find_all_conflicts()
    conflicts = report["conflicts"]

    assert report["total"] == 5
    assert [c.severity.value for c in conflicts] == ["HIGH", "HIGH", "MEDIUM", "MEDIUM", "LOW"]

    # HIGH findings ordered by date
    assert conflicts[0].type.value == "BOOKING_BLOCKED_SLOT"
    assert conflicts[0].booking_ids == [blocked.id]
    assert conflicts[0].blocked_slot_id == block.id
    assert "Plumber" in conflicts[0].description
    assert conflicts[1].type.value == "OVERLAPPING_BOOKINGS"
    assert conflicts[1].booking_ids == [first.id, second.id]

    outside = {c.booking_ids[0]: c for c in conflicts if c.type.value == "BOOKING_NO_AVAILABILITY"}
    assert "closed day (Sunday)" in outside[closed_day.id].description
    assert outside[closed_day.id].details == {"day_of_week": 6}
    assert "outside opening hours" in outside[late.id].description
    assert outside[late.id].details["windows"] == [{"start_time": "09:00", "end_time": "18:00"}]

    assert conflicts[4].type.value == "OVERLAPPING_BLOCKED_SLOTS"
    assert conflicts[4].details == {"blocked_slot_ids": [block.id, block.id + 1]}


def test_cancelled_and_unpaid_bookings_are_not_audited(db, open_every_day, service, client_user, make_booking):
    make_booking(client_user, service, NEXT_MONDAY, "10:00", "11:00")
    make_booking(client_user, service, NEXT_MONDAY, "10:00", "11:00", BookingStatus.CANCELLED)
    make_booking(client_user, service, NEXT_MONDAY, "10:30", "11:30", BookingStatus.PENDING_PAYMENT)

    assert ConflictAuditor(db).find_all_conflicts()["total"] == 0


def test_date_range_limits_the_scan(db, open_every_day, service, client_user, make_booking):
    make_booking(client_user, service, NEXT_MONDAY, "10:00", "11:00")
    make_booking(client_user, service, NEXT_MONDAY, "10:30", "11:30")
    auditor = ConflictAuditor(db)

    assert auditor.find_all_conflicts(from_date=NEXT_MONDAY, to_date=NEXT_MONDAY)["total"] == 1
    assert auditor.find_all_conflicts(from_date=NEXT_MONDAY + timedelta(days=1))["total"] == 0
    assert auditor.find_all_conflicts(to_date=NEXT_MONDAY - timedelta(days=1))["total"] == 0


def test_summary_counts_every_type_and_severity(db, open_every_day, service, client_user, make_booking):
    make_booking(client_user, service, NEXT_MONDAY, "10:00", "11:00")
    make_booking(client_user, service, NEXT_MONDAY, "10:30", "11:30")

    assert ConflictAuditor(db).summary() == {
        "total": 1,
        "by_type": {
            "OVERLAPPING_BOOKINGS": 1,
            "BOOKING_BLOCKED_SLOT": 0,
            "BOOKING_NO_AVAILABILITY": 0,
            "OVERLAPPING_BLOCKED_SLOTS": 0,
        },
        "by_severity": {"HIGH": 1, "MEDIUM": 0, "LOW": 0},
    }


def test_conflict_serializes_to_plain_values(db, open_every_day, service, client_user, make_booking):
    make_booking(client_user, service, NEXT_SUNDAY, "10:00", "11:00")

    data = ConflictAuditor(db).find_all_conflicts()["conflicts"][0].to_dict()

    assert data["type"] == "BOOKING_NO_AVAILABILITY"
    assert data["severity"] == "MEDIUM"
    assert data["date"] == NEXT_SUNDAY.isoformat()
    assert data["id"].startswith("no-availability-")
