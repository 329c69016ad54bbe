"""
API router for deposit payments
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_current_caller, get_payment_service
from ..permissions import Caller
from ..services.payments import PaymentService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["payments"])


class CheckoutSessionCreate(BaseModel):
    booking_id: int


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


@router.post("/checkout-session")
async def create_checkout_session(
    data: CheckoutSessionCreate,
    caller: Caller = Depends(get_current_caller),
    payments: PaymentService = Depends(get_payment_service),
):
    """Deposit checkout for an existing booking awaiting payment"""
    return await run_in_threadpool(payments.create_checkout_for_booking, data.booking_id, caller)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Stripe webhook. The signature is checked against the raw body; any
    verified event is acknowledged, including types that are not acted on.
    """
    payload = await request.body()
    event = payments.construct_event(payload, stripe_signature)
    await run_in_threadpool(payments.handle_event, event)
    return {"received": True}


@router.get("/verify/{booking_id}")
async def verify_payment(
    booking_id: int,
    session_id: str = Query(...),
    caller: Caller = Depends(get_current_caller),
    payments: PaymentService = Depends(get_payment_service),
):
    return await run_in_threadpool(payments.verify_payment, booking_id, session_id, caller)


@router.get("/refund-eligibility/{booking_id}")
async def get_refund_eligibility(
    booking_id: int,
    caller: Caller = Depends(get_current_caller),
    payments: PaymentService = Depends(get_payment_service),
):
    payments.bookings.get(booking_id, caller)
    eligibility = payments.refund_eligibility(booking_id)
    return {
        "can_refund": eligibility.can_refund,
        "reason": eligibility.reason,
        "hours_until_booking": eligibility.hours_until_booking,
    }


@router.post("/refund/{booking_id}")
async def refund_booking(
    booking_id: int,
    data: Optional[RefundRequest] = None,
    caller: Caller = Depends(get_current_caller),
    payments: PaymentService = Depends(get_payment_service),
):
    """Refund the deposit and cancel the booking, staff only"""
    return await run_in_threadpool(payments.refund_booking, booking_id, caller, data.reason if data else None)
