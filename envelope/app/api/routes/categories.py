from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from envelope.app.api.deps import UserDateIn, get_current_user, user_date_query
from envelope.app.db import get_db
from envelope.app.domain.contracts import CategoryContract, CategoryGroupContract
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import User
from envelope.app.services import category_service

router = APIRouter(prefix="/api", tags=["categories"])


class GroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class GroupReorderIn(BaseModel):
    group_ids: List[str]


class CategoryReorderIn(BaseModel):
    category_ids: List[str]


class CategoryCreateIn(UserDateIn):
    name: str = Field(..., min_length=1, max_length=200)


class PeriodIn(UserDateIn):
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)


class CategoryUpdateIn(PeriodIn):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    assigned: Optional[float] = None
    activity: Optional[float] = None
    available: Optional[float] = None


class UnhideIn(BaseModel):
    target_group_id: Optional[str] = None


class MoveMoneyIn(PeriodIn):
    from_category_id: str
    to_category_id: str
    amount: float = Field(..., gt=0)


class AmountIn(PeriodIn):
    amount: float = Field(..., gt=0)


class AssignmentIn(BaseModel):
    category_id: str
    amount: float


class BatchAssignIn(PeriodIn):
    assignments: List[AssignmentIn]


# -------------------------
# Groups
# -------------------------

@router.post("/budgets/{budget_id}/category-groups", response_model=CategoryGroupContract)
def create_group(
    budget_id: str,
    req: GroupIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.create_group(db, user, budget_id, req.name)


@router.get("/budgets/{budget_id}/category-groups", response_model=List[CategoryGroupContract])
def list_groups(budget_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return category_service.list_groups_for(db, user, budget_id)


@router.put("/budgets/{budget_id}/category-groups/reorder", response_model=List[CategoryGroupContract])
def reorder_groups(
    budget_id: str,
    req: GroupReorderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.reorder_groups(db, user, budget_id, req.group_ids)


@router.patch("/category-groups/{group_id}", response_model=CategoryGroupContract)
def rename_group(
    group_id: str,
    req: GroupIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.rename_group(db, user, group_id, req.name)


@router.put("/category-groups/{group_id}/categories/reorder", response_model=List[CategoryContract])
def reorder_categories(
    group_id: str,
    req: CategoryReorderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.reorder_categories(db, user, group_id, req.category_ids)


# -------------------------
# Categories
# -------------------------

@router.post("/category-groups/{group_id}/categories")
def create_category(
    group_id: str,
    req: CategoryCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.create_category(db, user, group_id, req.name, req.context())


@router.get("/budgets/{budget_id}/categories")
def list_categories(
    budget_id: str,
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.list_categories(db, user, budget_id, year or ctx.year, month or ctx.month)


@router.patch("/categories/{category_id}")
def update_category(
    category_id: str,
    req: CategoryUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.update_category(
        db,
        user,
        category_id,
        req.context(),
        name=req.name,
        year=req.year,
        month=req.month,
        assigned=req.assigned,
        activity=req.activity,
        available=req.available,
    )


@router.post("/categories/{category_id}/hide", response_model=CategoryContract)
def hide_category(category_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return category_service.hide_category(db, user, category_id)


@router.post("/categories/{category_id}/unhide", response_model=CategoryContract)
def unhide_category(
    category_id: str,
    req: Optional[UnhideIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    target = req.target_group_id if req else None
    return category_service.unhide_category(db, user, category_id, target)


@router.post("/budgets/{budget_id}/categories/move-money")
def move_money(
    budget_id: str,
    req: MoveMoneyIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.move_money(
        db,
        user,
        budget_id,
        req.context(),
        from_category_id=req.from_category_id,
        to_category_id=req.to_category_id,
        amount=req.amount,
        year=req.year,
        month=req.month,
    )


@router.post("/categories/{category_id}/move-to-ready-to-assign")
def move_to_ready_to_assign(
    category_id: str,
    req: AmountIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.move_to_ready_to_assign(
        db, user, category_id, req.amount, req.context(), year=req.year, month=req.month
    )


@router.post("/categories/{category_id}/pull-from-ready-to-assign")
def pull_from_ready_to_assign(
    category_id: str,
    req: AmountIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.pull_from_ready_to_assign(
        db, user, category_id, req.amount, req.context(), year=req.year, month=req.month
    )


@router.post("/budgets/{budget_id}/categories/batch-assign")
def batch_assign(
    budget_id: str,
    req: BatchAssignIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return category_service.batch_assign(
        db,
        user,
        budget_id,
        [item.model_dump() for item in req.assignments],
        req.context(),
        year=req.year,
        month=req.month,
    )
