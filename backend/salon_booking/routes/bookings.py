"""
API router for bookings
"""
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_booking_service, get_current_caller, get_payment_service
from ..models.booking import Booking, BookingStatus
from ..permissions import Caller
from ..services.bookings import BookingService, deposit_due
from ..services.payments import PaymentService
from ..services.schedule import ScheduleService

settings = get_settings()
router = APIRouter(prefix="/api/bookings", tags=["bookings"])


# ==================== Pydantic Schemas ====================

class BookingCreate(BaseModel):
    service_id: int
    date: date
    start_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")  # HH:MM
    notes: Optional[str] = Field(None, max_length=1000)


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    notes: Optional[str] = Field(None, max_length=1000)
    pro_notes: Optional[str] = Field(None, max_length=1000)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class BookingResponse(BaseModel):
    id: int
    user_id: int
    service_id: int
    service_name: Optional[str]
    date: str  # "YYYY-MM-DD"
    start_time: str
    end_time: str
    status: str
    price_at_booking: float
    notes: Optional[str]
    pro_notes: Optional[str]
    cancel_reason: Optional[str]
    cancelled_at: Optional[datetime]
    deposit_amount: Optional[float]
    is_deposit_paid: bool
    deposit_paid_at: Optional[datetime]
    payment_session_id: Optional[str]
    created_at: Optional[datetime]


def to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        user_id=booking.user_id,
        service_id=booking.service_id,
        service_name=booking.service.name if booking.service else None,
        date=booking.date.strftime("%Y-%m-%d"),
        start_time=booking.start_time,
        end_time=booking.end_time,
        status=booking.status,
        price_at_booking=float(booking.price_at_booking),
        notes=booking.notes,
        pro_notes=booking.pro_notes,
        cancel_reason=booking.cancel_reason,
        cancelled_at=booking.cancelled_at,
        deposit_amount=float(booking.deposit_amount) if booking.deposit_amount is not None else None,
        is_deposit_paid=bool(booking.is_deposit_paid),
        deposit_paid_at=booking.deposit_paid_at,
        payment_session_id=booking.payment_session_id,
        created_at=booking.created_at,
    )


# ==================== API Endpoints ====================

@router.get("/available-slots", response_model=List[str])
async def get_available_slots(
    service_id: int = Query(..., description="Service whose duration is used"),
    date: date = Query(..., description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    """Free start times for a service on a date"""
    return ScheduleService(db).get_available_slots(service_id, date)


@router.post("")
async def create_booking(
    data: BookingCreate,
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Book a slot. In the deferred flow a deposit checkout is opened instead and
    the booking is created once the payment succeeds.
    """
    needs_deposit = deposit_due(bookings.get_policy())

    if settings.BOOKING_FLOW == "deferred" and needs_deposit:
        checkout = await run_in_threadpool(
            payments.create_checkout_for_new_booking,
            caller, data.service_id, data.date, data.start_time, data.notes,
        )
        return CheckoutResponse(**checkout)

    status = BookingStatus.PENDING_PAYMENT if needs_deposit else BookingStatus.PENDING
    booking = await run_in_threadpool(
        bookings.create,
        caller.user_id, data.service_id, data.date, data.start_time,
        notes=data.notes, caller=caller, status=status,
    )
    return to_response(booking)


@router.get("", response_model=List[BookingResponse])
async def list_bookings(
    status: Optional[BookingStatus] = Query(None),
    date: Optional[date] = Query(None),
    user_id: Optional[int] = Query(None),
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
):
    """All bookings, staff only"""
    return [to_response(b) for b in bookings.list_bookings(caller, status=status, target_date=date, user_id=user_id)]


@router.get("/my", response_model=List[BookingResponse])
async def get_my_bookings(
    status: Optional[BookingStatus] = Query(None),
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
):
    return [to_response(b) for b in bookings.list_for_user(caller.user_id, status=status)]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
):
    return to_response(bookings.get(booking_id, caller))


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: int,
    data: BookingUpdate,
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
):
    """Partial update; only the fields sent are applied"""
    patch = data.model_dump(exclude_unset=True)
    if patch.get("status") is not None:
        patch["status"] = BookingStatus(patch["status"]).value
    booking = await run_in_threadpool(bookings.update, booking_id, patch, caller)
    return to_response(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    data: Optional[BookingCancel] = None,
    caller: Caller = Depends(get_current_caller),
    bookings: BookingService = Depends(get_booking_service),
):
    reason = data.reason if data else None
    return to_response(bookings.cancel(booking_id, caller, reason))
