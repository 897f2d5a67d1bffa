from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from envelope.app.api.deps import get_current_user, user_date_query
from envelope.app.db import get_db
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import User
from envelope.app.services import main_data_service

router = APIRouter(prefix="/api/budgets", tags=["main-data"])


@router.get("/{budget_id}/main-data")
def get_main_data(
    budget_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return main_data_service.get_main_data(db, user, budget_id, ctx)
