"""
API router for the schedule conflict report
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_current_caller
from ..errors import ForbiddenError
from ..permissions import Caller, can_audit_conflicts
from ..services.conflicts import ConflictAuditor

router = APIRouter(prefix="/api/conflicts", tags=["conflicts"])


def require_auditor(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not can_audit_conflicts(caller):
        raise ForbiddenError("Only salon staff can view conflicts")
    return caller


@router.get("")
async def get_conflicts(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    caller: Caller = Depends(require_auditor),
    db: Session = Depends(get_db),
):
    report = ConflictAuditor(db).find_all_conflicts(from_date, to_date)
    return {"total": report["total"], "conflicts": [c.to_dict() for c in report["conflicts"]]}


@router.get("/summary")
async def get_conflicts_summary(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    caller: Caller = Depends(require_auditor),
    db: Session = Depends(get_db),
):
    return ConflictAuditor(db).summary(from_date, to_date)
