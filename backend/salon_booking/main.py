"""
FastAPI application
Salon booking core: slots, bookings, deposits, conflict audit
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import init_db
from .errors import BookingError
from .logging_config import setup_logging
from .routes.bookings import router as bookings_router
from .routes.conflicts import router as conflicts_router
from .routes.payments import router as payments_router

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Create tables
init_db()

# FastAPI application
app = FastAPI(
    title="Salon Booking API",
    description="Online booking with deposits",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else [settings.SITE_URL, settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Routers
app.include_router(bookings_router)
app.include_router(payments_router)
app.include_router(conflicts_router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "booking_flow": settings.BOOKING_FLOW}
