from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from envelope.app.api.deps import UserDateIn, get_current_user
from envelope.app.db import get_db
from envelope.app.domain.contracts import BudgetContract
from envelope.app.models import User
from envelope.app.services import budget_service

router = APIRouter(prefix="/api/budgets", tags=["budgets"])


class BudgetCreateIn(UserDateIn):
    name: str = Field(..., min_length=1, max_length=200)
    currency: Optional[str] = Field(None, max_length=8)
    currency_placement: Optional[str] = None
    number_format: Optional[str] = Field(None, max_length=20)
    date_format: Optional[str] = Field(None, max_length=20)


class BudgetUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    currency: Optional[str] = Field(None, max_length=8)
    currency_placement: Optional[str] = None
    number_format: Optional[str] = Field(None, max_length=20)
    date_format: Optional[str] = Field(None, max_length=20)


@router.post("", response_model=BudgetContract)
def create_budget(
    req: BudgetCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return budget_service.create_budget(
        db,
        user,
        req.name,
        req.context(),
        currency=req.currency,
        currency_placement=req.currency_placement,
        number_format=req.number_format,
        date_format=req.date_format,
    )


@router.get("", response_model=List[BudgetContract])
def list_budgets(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return budget_service.list_budgets(db, user)


@router.get("/{budget_id}", response_model=BudgetContract)
def get_budget(budget_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return budget_service.get_budget(db, user, budget_id)


@router.patch("/{budget_id}", response_model=BudgetContract)
def update_budget(
    budget_id: str,
    req: BudgetUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return budget_service.update_budget(db, user, budget_id, **req.model_dump(exclude_unset=True))
