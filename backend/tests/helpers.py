"""
Shared test constants and webhook helpers
"""
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

WEBHOOK_SECRET = "whsec_test_secret"

# Monday 09:00; the dates used in tests are relative to it
NOW = datetime(2025, 1, 6, 9, 0)
TODAY = NOW.date()
TOMORROW = TODAY + timedelta(days=1)
NEXT_SUNDAY = TODAY + timedelta(days=6)
NEXT_MONDAY = TODAY + timedelta(days=7)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header the way Stripe does"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(event_type, session_id, metadata, event_id="evt_test_1", payment_intent="pi_test_1"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "payment_status": "paid",
                "amount_total": 2000,
                "metadata": metadata,
            }
        },
    }


def encode_event(event) -> bytes:
    return json.dumps(event).encode()
