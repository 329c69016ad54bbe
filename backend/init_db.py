"""
Database initialization script
Creates the tables and seeds the initial data
Run: python init_db.py
"""
import logging
from decimal import Decimal

from salon_booking.database import SessionLocal, init_db
from salon_booking.logging_config import setup_logging
from salon_booking.models import Service, SiteSettings, WeeklyAvailability
from salon_booking.models.weekly_availability import DEFAULT_WEEKLY_AVAILABILITY

logger = logging.getLogger("init_db")

INITIAL_SERVICES = [
    {
        "name": "Relaxing massage",
        "description": "Full body massage to release tension.",
        "duration_minutes": 60,
        "price": Decimal("70.00"),
    },
    {
        "name": "Deep tissue massage",
        "description": "Targeted work on deep muscle layers.",
        "duration_minutes": 90,
        "price": Decimal("95.00"),
    },
    {
        "name": "Back and neck massage",
        "description": "Short session focused on the upper body.",
        "duration_minutes": 45,
        "price": Decimal("50.00"),
    },
    {
        "name": "Facial care",
        "description": "Cleansing and hydrating facial treatment.",
        "duration_minutes": 75,
        "price": Decimal("80.00"),
    },
]


def seed():
    db = SessionLocal()
    try:
        if db.query(Service).count() == 0:
            db.add_all([Service(**data) for data in INITIAL_SERVICES])
            logger.info(f"Added {len(INITIAL_SERVICES)} services")
        else:
            logger.info("Services already exist, skipping")

        if db.query(WeeklyAvailability).count() == 0:
            db.add_all([WeeklyAvailability(**window) for window in DEFAULT_WEEKLY_AVAILABILITY])
            logger.info(f"Added {len(DEFAULT_WEEKLY_AVAILABILITY)} weekly availability windows")

        if db.query(SiteSettings).first() is None:
            db.add(SiteSettings(salon_name="Salon"))
            logger.info("Added default site settings")

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    init_db()
    logger.info("Tables created")
    seed()
    logger.info("Initialization complete. Start the server: uvicorn salon_booking.main:app --reload")
