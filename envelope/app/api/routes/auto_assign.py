from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from envelope.app.api.deps import UserDateIn, get_current_user
from envelope.app.db import get_db
from envelope.app.domain.contracts import AutoAssignConfigurationContract, AutoAssignSummary
from envelope.app.models import User
from envelope.app.services import auto_assign_service

router = APIRouter(prefix="/api/budgets", tags=["auto-assign"])


class AutoAssignItemIn(BaseModel):
    category_id: str
    amount: float = Field(..., gt=0)


class AutoAssignCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    items: List[AutoAssignItemIn]


class AutoAssignUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    items: Optional[List[AutoAssignItemIn]] = None


class AutoAssignApplyIn(UserDateIn):
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)


@router.post("/{budget_id}/auto-assign", response_model=AutoAssignConfigurationContract)
def create_configuration(
    budget_id: str,
    req: AutoAssignCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return auto_assign_service.create_configuration(
        db, user, budget_id, req.name, [item.model_dump() for item in req.items]
    )


@router.get("/{budget_id}/auto-assign", response_model=List[AutoAssignSummary])
def list_configurations(budget_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return auto_assign_service.list_configurations(db, user, budget_id)


@router.get("/{budget_id}/auto-assign/{name}", response_model=AutoAssignConfigurationContract)
def get_configuration(
    budget_id: str,
    name: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return auto_assign_service.get_configuration(db, user, budget_id, name)


@router.patch("/{budget_id}/auto-assign/{name}", response_model=AutoAssignConfigurationContract)
def update_configuration(
    budget_id: str,
    name: str,
    req: AutoAssignUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items = None if req.items is None else [item.model_dump() for item in req.items]
    return auto_assign_service.update_configuration(db, user, budget_id, name, new_name=req.name, items=items)


@router.delete("/{budget_id}/auto-assign/{name}")
def delete_configuration(
    budget_id: str,
    name: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return auto_assign_service.delete_configuration(db, user, budget_id, name)


@router.post("/{budget_id}/auto-assign/{name}/apply")
def apply_configuration(
    budget_id: str,
    name: str,
    req: Optional[AutoAssignApplyIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    req = req or AutoAssignApplyIn()
    return auto_assign_service.apply_configuration(
        db, user, budget_id, name, req.context(), year=req.year, month=req.month
    )
