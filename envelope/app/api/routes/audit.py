from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from envelope.app.api.deps import get_current_user, user_date_query
from envelope.app.db import get_db
from envelope.app.domain.contracts import AuditFinding
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import User
from envelope.app.services import diagnostics_service

router = APIRouter(prefix="/api/budgets", tags=["audit"])


class AuditReportOut(BaseModel):
    budget_id: str
    ok: bool
    violations: List[AuditFinding]
    ready_to_assign: float


@router.get("/{budget_id}/audit", response_model=AuditReportOut)
def audit_budget(
    budget_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return diagnostics_service.collect_diagnostics(db, user, budget_id, ctx)


@router.post("/{budget_id}/audit/repair", response_model=AuditReportOut)
def repair_budget(
    budget_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return diagnostics_service.repair_diagnostics(db, user, budget_id, ctx)
