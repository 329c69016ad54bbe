"""
HTTP surface through FastAPI's TestClient
"""
import asyncio
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient

from salon_booking.database import get_db
from salon_booking.dependencies import get_notifier
from salon_booking.main import app
from salon_booking.models import Booking
from salon_booking.services.payments import CHECKOUT_COMPLETED

from helpers import checkout_event, encode_event, sign_payload

IN_A_WEEK = date.today() + timedelta(days=7)


@pytest.fixture
def client(db, notifier):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def open_all_week(make_window):
    return [make_window(day) for day in range(7)]


@pytest.fixture
def service(make_service):
    return make_service(duration_minutes=60, price="60.00")


@pytest.fixture
def no_deposit(site_settings):
    return site_settings(
        booking_advance_min_days=0,
        booking_advance_max_days=60,
        cancellation_deadline_hours=24,
        deposit_amount=Decimal("0"),
    )


def headers(user, role="USER"):
    return {"X-User-Id": str(user.id), "X-User-Role": role}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_available_slots(client, open_all_week, service):
    response = client.get("/api/bookings/available-slots", params={"service_id": service.id, "date": IN_A_WEEK.isoformat()})

    assert response.status_code == 200
    slots = response.json()
    assert slots[0] == "09:00"
    assert slots[-1] == "17:00"
    assert len(slots) == 17


def test_available_slots_for_unknown_service(client, open_all_week):
    response = client.get("/api/bookings/available-slots", params={"service_id": 999, "date": IN_A_WEEK.isoformat()})

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_identity_is_required(client, service, client_user):
    body = {"service_id": service.id, "date": IN_A_WEEK.isoformat(), "start_time": "10:00"}

    assert client.post("/api/bookings", json=body).status_code == 401
    bad_role = {"X-User-Id": str(client_user.id), "X-User-Role": "OWNER"}
    assert client.post("/api/bookings", json=body, headers=bad_role).status_code == 401


def test_create_booking_without_deposit(client, open_all_week, service, client_user, no_deposit, notifier):
    body = {"service_id": service.id, "date": IN_A_WEEK.isoformat(), "start_time": "10:00", "notes": "Hi"}

    response = client.post("/api/bookings", json=body, headers=headers(client_user))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["end_time"] == "11:00"
    assert data["price_at_booking"] == 60.0
    assert data["service_name"] == "Massage"
    assert len(notifier.sent) == 1

    again = client.post("/api/bookings", json=body, headers=headers(client_user))
    assert again.status_code == 409
    assert again.json()["code"] == "slot_unavailable"
    assert again.json()["start_time"] == "10:00"


def test_direct_flow_waits_for_payment(client, open_all_week, service, client_user, settings, monkeypatch):
    monkeypatch.setattr(settings, "BOOKING_FLOW", "direct")
    body = {"service_id": service.id, "date": IN_A_WEEK.isoformat(), "start_time": "10:00"}

    data = client.post("/api/bookings", json=body, headers=headers(client_user)).json()

    assert data["status"] == "PENDING_PAYMENT"
    assert data["deposit_amount"] == 20.0


def test_deferred_flow_returns_checkout(client, db, open_all_week, service, client_user, monkeypatch):
    monkeypatch.setattr(
        stripe.checkout.Session, "create",
        lambda **params: SimpleNamespace(id="cs_api_1", url="https://checkout.stripe.test/pay/api"),
    )
    body = {"service_id": service.id, "date": IN_A_WEEK.isoformat(), "start_time": "10:00"}

    response = client.post("/api/bookings", json=body, headers=headers(client_user))

    assert response.status_code == 200
    assert response.json() == {"checkout_url": "https://checkout.stripe.test/pay/api", "session_id": "cs_api_1"}
    assert db.query(Booking).count() == 0


def test_stripe_is_called_off_the_event_loop(client, open_all_week, service, client_user, monkeypatch):
    loops = []

    def fake_create(**params):
        try:
            loops.append(asyncio.get_running_loop())
        except RuntimeError:
            loops.append(None)
        return SimpleNamespace(id="cs_api_2", url="https://checkout.stripe.test/pay/2")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    body = {"service_id": service.id, "date": IN_A_WEEK.isoformat(), "start_time": "11:00"}

    assert client.post("/api/bookings", json=body, headers=headers(client_user)).status_code == 200
    assert loops == [None]


def test_policy_violation_carries_details(client, open_all_week, service, client_user, site_settings):
    site_settings(booking_advance_min_days=1, deposit_amount=Decimal("0"))
    body = {"service_id": service.id, "date": date.today().isoformat(), "start_time": "23:00"}

    response = client.post("/api/bookings", json=body, headers=headers(client_user))

    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "policy_violation"
    assert data["min_days"] == 1
    assert data["days_in_advance"] == 0


def test_listing_and_updating(client, service, client_user, admin_user, make_booking, notifier):
    booking = make_booking(client_user, service, IN_A_WEEK, "10:00", "11:00")

    assert client.get("/api/bookings", headers=headers(client_user)).status_code == 403
    listed = client.get("/api/bookings", params={"status": "PENDING"}, headers=headers(admin_user, "ADMIN"))
    assert [b["id"] for b in listed.json()] == [booking.id]
    assert len(client.get("/api/bookings/my", headers=headers(client_user)).json()) == 1
    assert client.get(f"/api/bookings/{booking.id}", headers=headers(client_user)).status_code == 200

    forbidden = client.patch(f"/api/bookings/{booking.id}", json={"status": "CONFIRMED"}, headers=headers(client_user))
    assert forbidden.status_code == 403

    confirmed = client.patch(f"/api/bookings/{booking.id}", json={"status": "CONFIRMED"}, headers=headers(admin_user, "PRO"))
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"

    notes = client.patch(f"/api/bookings/{booking.id}", json={"notes": "Parking?"}, headers=headers(client_user))
    assert notes.json()["notes"] == "Parking?"
    assert notes.json()["status"] == "CONFIRMED"


def test_cancel_endpoint(client, service, client_user, make_booking):
    booking = make_booking(client_user, service, IN_A_WEEK, "10:00", "11:00")

    response = client.post(f"/api/bookings/{booking.id}/cancel", json={"reason": "Travel"}, headers=headers(client_user))

    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert response.json()["cancel_reason"] == "Travel"

    again = client.post(f"/api/bookings/{booking.id}/cancel", headers=headers(client_user))
    assert again.status_code == 400


def test_webhook_rejects_bad_signature(client):
    payload = encode_event(checkout_event(CHECKOUT_COMPLETED, "cs_1", {}))

    response = client.post(
        "/api/payments/webhook", content=payload, headers={"Stripe-Signature": "t=1,v1=deadbeef"}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"


def test_webhook_acknowledges_unknown_events(client, db):
    payload = encode_event({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}})

    response = client.post("/api/payments/webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert db.query(Booking).count() == 0


def test_webhook_creates_booking_after_payment(client, db, open_all_week, service, client_user, notifier):
    metadata = {
        "user_id": str(client_user.id),
        "service_id": str(service.id),
        "date": IN_A_WEEK.isoformat(),
        "start_time": "10:00",
        "end_time": "11:00",
        "notes": "",
        "deposit_amount": "20.00",
    }
    payload = encode_event(checkout_event(CHECKOUT_COMPLETED, "cs_webhook", metadata))

    for _ in range(2):
        response = client.post(
            "/api/payments/webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)}
        )
        assert response.json() == {"received": True}

    booking = db.query(Booking).one()
    assert booking.payment_session_id == "cs_webhook"
    assert booking.is_deposit_paid


def test_refund_endpoints(client, service, client_user, admin_user, make_booking, monkeypatch):
    booking = make_booking(
        client_user, service, IN_A_WEEK, "10:00", "11:00",
        deposit_amount=Decimal("20.00"), is_deposit_paid=True, payment_intent_id="pi_api",
    )
    monkeypatch.setattr(stripe.Refund, "create", lambda **params: SimpleNamespace(id="re_api", amount=2000))

    eligibility = client.get(f"/api/payments/refund-eligibility/{booking.id}", headers=headers(client_user))
    assert eligibility.json()["can_refund"] is True

    assert client.post(f"/api/payments/refund/{booking.id}", headers=headers(client_user)).status_code == 403
    refunded = client.post(
        f"/api/payments/refund/{booking.id}", json={"reason": "Salon closed"}, headers=headers(admin_user, "ADMIN")
    )
    assert refunded.json() == {"success": True, "refund_id": "re_api", "amount": 20.0}


def test_conflict_report_is_staff_only(client, open_all_week, service, client_user, admin_user, make_booking):
    make_booking(client_user, service, IN_A_WEEK, "10:00", "11:00")
    make_booking(client_user, service, IN_A_WEEK, "10:30", "11:30")

    assert client.get("/api/conflicts", headers=headers(client_user)).status_code == 403

    report = client.get("/api/conflicts", headers=headers(admin_user, "ADMIN")).json()
    assert report["total"] == 1
    assert report["conflicts"][0]["type"] == "OVERLAPPING_BOOKINGS"

    summary = client.get(
        "/api/conflicts/summary",
        params={"from_date": (IN_A_WEEK + timedelta(days=1)).isoformat()},
        headers=headers(admin_user, "ADMIN"),
    ).json()
    assert summary["total"] == 0
    assert summary["by_severity"] == {"HIGH": 0, "MEDIUM": 0, "LOW": 0}
