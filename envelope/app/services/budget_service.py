from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app import config
from envelope.app.domain.contracts import BudgetContract
from envelope.app.domain.dates import UserDateContext
from envelope.app.domain.errors import ConflictError, ValidationError
from envelope.app.models import (
    CURRENCY_PLACEMENTS,
    SYSTEM_KIND_CREDIT_CARD_PAYMENTS,
    SYSTEM_KIND_HIDDEN,
    Budget,
    User,
)
from envelope.app.services import category_service
from envelope.app.services.store import require_budget, unit_of_work

logger = logging.getLogger(__name__)

SYSTEM_GROUPS = (
    ("Credit Card Payments", SYSTEM_KIND_CREDIT_CARD_PAYMENTS, 999),
    ("Hidden Categories", SYSTEM_KIND_HIDDEN, 1000),
)

STARTER_CATEGORIES = (
    ("Monthly Bills", ("Rent", "Utilities")),
    ("Everyday Expenses", ("Groceries", "Dining Out", "Transportation")),
    ("Savings Goals", ("Emergency Fund", "Vacation")),
)

DISPLAY_OPTIONS = ("currency", "currency_placement", "number_format", "date_format")


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("budget name is required")
    return cleaned


def _ensure_unique_name(db: Session, owner_id: str, name: str, exclude_id: Optional[str] = None) -> None:
    query = select(Budget.id).where(Budget.owner_id == owner_id, Budget.name_key == name.lower())
    if exclude_id:
        query = query.where(Budget.id != exclude_id)
    if db.execute(query).first():
        raise ConflictError(f"a budget named {name!r} already exists")


def _apply_display_options(budget: Budget, options: Dict[str, Any]) -> None:
    for key in DISPLAY_OPTIONS:
        value = options.get(key)
        if value is None:
            continue
        if key == "currency_placement":
            value = str(value).upper()
            if value not in CURRENCY_PLACEMENTS:
                raise ValidationError(f"currency_placement must be one of {', '.join(CURRENCY_PLACEMENTS)}")
        setattr(budget, key, value)


def seed_budget(db: Session, budget: Budget, ctx: UserDateContext, *, starter: bool) -> None:
    for name, kind, order in SYSTEM_GROUPS:
        category_service.add_group(db, budget.id, name, system_kind=kind, display_order=order)
    if not starter:
        return
    for group_name, category_names in STARTER_CATEGORIES:
        group = category_service.add_group(db, budget.id, group_name)
        for category_name in category_names:
            category_service.add_category(db, group, category_name, ctx)


def create_budget(
    db: Session,
    user: User,
    name: str,
    ctx: UserDateContext,
    **options: Any,
) -> BudgetContract:
    name = _clean_name(name)
    with unit_of_work(db):
        _ensure_unique_name(db, user.id, name)
        budget = Budget(owner_id=user.id, name=name, name_key=name.lower())
        _apply_display_options(budget, options)
        db.add(budget)
        db.flush()
        seed_budget(db, budget, ctx, starter=config.seed_default_categories())
        out = BudgetContract.model_validate(budget)
    logger.info("budget created budget=%s owner=%s", out.id, user.id)
    return out


def list_budgets(db: Session, user: User) -> List[BudgetContract]:
    rows = (
        db.execute(select(Budget).where(Budget.owner_id == user.id).order_by(Budget.created_at))
        .scalars()
        .all()
    )
    return [BudgetContract.model_validate(b) for b in rows]


def get_budget(db: Session, user: User, budget_id: str) -> BudgetContract:
    return BudgetContract.model_validate(require_budget(db, budget_id, user))


def update_budget(db: Session, user: User, budget_id: str, name: Optional[str] = None, **options: Any) -> BudgetContract:
    budget = require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        if name is not None:
            name = _clean_name(name)
            _ensure_unique_name(db, user.id, name, exclude_id=budget.id)
            budget.name = name
            budget.name_key = name.lower()
        _apply_display_options(budget, options)
        db.flush()
        out = BudgetContract.model_validate(budget)
    return out
