"""
Per-date serialization of "check occupancy, then insert"

Within one process a lock per calendar date is taken; on PostgreSQL a
transaction-scoped advisory lock keyed by the same date also serializes
workers in other processes. The caller must commit (or roll back) inside
the ``with`` block so the advisory lock is released with the transaction.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import date
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Namespace for pg_advisory_xact_lock(int, int)
ADVISORY_LOCK_NAMESPACE = 4242

_registry_lock = threading.Lock()
# A date's lock lives only while some caller holds a reference to it
_date_locks: "weakref.WeakValueDictionary[date, threading.Lock]" = weakref.WeakValueDictionary()


def _lock_for(target_date: date) -> threading.Lock:
    with _registry_lock:
        lock = _date_locks.get(target_date)
        if lock is None:
            lock = threading.Lock()
            _date_locks[target_date] = lock
        return lock


@contextmanager
def slot_reservation(db: Session, target_date: date) -> Iterator[None]:
    lock = _lock_for(target_date)
    with lock:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT pg_advisory_xact_lock(:namespace, :key)"),
                {"namespace": ADVISORY_LOCK_NAMESPACE, "key": target_date.toordinal()},
            )
            logger.debug("Advisory slot lock taken for %s", target_date)
        try:
            yield
        except Exception:
            db.rollback()
            raise
