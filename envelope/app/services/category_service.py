from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.contracts import (
    CategoryBalanceContract,
    CategoryContract,
    CategoryGroupContract,
)
from envelope.app.domain.dates import UserDateContext, validate_period
from envelope.app.domain.errors import NotFoundError, ValidationError
from envelope.app.models import (
    SYSTEM_KIND_HIDDEN,
    Category,
    CategoryGroup,
    User,
)
from envelope.app.services import (
    category_balance_service,
    credit_card_debt_service,
    ready_to_assign_service,
)
from envelope.app.services.store import (
    category_in_budget,
    require_budget,
    require_category,
    require_group,
    unit_of_work,
)

logger = logging.getLogger(__name__)


# -------------------------
# Groups
# -------------------------

def system_group(db: Session, budget_id: str, kind: str) -> CategoryGroup:
    group = (
        db.execute(
            select(CategoryGroup).where(
                CategoryGroup.budget_id == budget_id,
                CategoryGroup.system_kind == kind,
            )
        )
        .scalars()
        .first()
    )
    if not group:
        raise NotFoundError(f"system group {kind!r} is missing from budget")
    return group


def list_groups(db: Session, budget_id: str) -> List[CategoryGroup]:
    return (
        db.execute(
            select(CategoryGroup)
            .where(CategoryGroup.budget_id == budget_id)
            .order_by(CategoryGroup.display_order, CategoryGroup.created_at)
        )
        .scalars()
        .all()
    )


def list_groups_for(db: Session, user: User, budget_id: str) -> List[CategoryGroupContract]:
    require_budget(db, budget_id, user)
    return [CategoryGroupContract.model_validate(g) for g in list_groups(db, budget_id)]


def _next_group_order(db: Session, budget_id: str) -> int:
    current = db.execute(
        select(func.max(CategoryGroup.display_order)).where(
            CategoryGroup.budget_id == budget_id,
            CategoryGroup.is_system_group.is_(False),
        )
    ).scalar()
    return (current + 1) if current is not None else 0


def _clean_name(name: Optional[str], what: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{what} name is required")
    return cleaned


def add_group(db: Session, budget_id: str, name: str, *, system_kind: Optional[str] = None, display_order: Optional[int] = None) -> CategoryGroup:
    group = CategoryGroup(
        budget_id=budget_id,
        name=name,
        display_order=_next_group_order(db, budget_id) if display_order is None else display_order,
        is_system_group=system_kind is not None,
        system_kind=system_kind,
    )
    db.add(group)
    db.flush()
    return group


def create_group(db: Session, user: User, budget_id: str, name: str) -> CategoryGroupContract:
    require_budget(db, budget_id, user)
    name = _clean_name(name, "group")
    with unit_of_work(db, budget_id):
        group = add_group(db, budget_id, name)
        out = CategoryGroupContract.model_validate(group)
    return out


def rename_group(db: Session, user: User, group_id: str, name: str) -> CategoryGroupContract:
    group = require_group(db, group_id, user)
    if group.is_system_group:
        raise ValidationError("system groups cannot be renamed")
    name = _clean_name(name, "group")
    with unit_of_work(db, group.budget_id):
        group.name = name
        db.flush()
        out = CategoryGroupContract.model_validate(group)
    return out


def reorder_groups(db: Session, user: User, budget_id: str, group_ids: List[str]) -> List[CategoryGroupContract]:
    require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        groups = {g.id: g for g in list_groups(db, budget_id)}
        for index, group_id in enumerate(group_ids):
            group = groups.get(group_id)
            if group is None:
                raise NotFoundError(f"category group {group_id} not found in budget")
            if group.is_system_group:
                raise ValidationError("system groups cannot be reordered")
            group.display_order = index
        db.flush()
        out = [CategoryGroupContract.model_validate(g) for g in list_groups(db, budget_id)]
    return out


# -------------------------
# Categories
# -------------------------

def _next_category_order(db: Session, group_id: str) -> int:
    current = db.execute(
        select(func.max(Category.display_order)).where(Category.category_group_id == group_id)
    ).scalar()
    return (current + 1) if current is not None else 0


def add_category(db: Session, group: CategoryGroup, name: str, ctx: UserDateContext) -> Category:
    """Insert a category with a zeroed balance row for the current month."""
    category = Category(
        budget_id=group.budget_id,
        category_group_id=group.id,
        name=name,
        display_order=_next_category_order(db, group.id),
    )
    db.add(category)
    db.flush()
    category_balance_service.get_or_create_balance(db, category, ctx.year, ctx.month)
    return category


def create_category(db: Session, user: User, group_id: str, name: str, ctx: UserDateContext) -> Dict[str, Any]:
    group = require_group(db, group_id, user)
    if group.is_system_group:
        raise ValidationError("categories cannot be created in system groups")
    name = _clean_name(name, "category")
    with unit_of_work(db, group.budget_id):
        category_balance_service.ensure_period(db, group.budget_id, ctx)
        category = add_category(db, group, name, ctx)
        row = category_balance_service.get_balance(db, category.id, ctx.year, ctx.month)
        out = {
            "category": CategoryContract.model_validate(category),
            "balance": CategoryBalanceContract.model_validate(row),
        }
    return out


def list_categories(db: Session, user: User, budget_id: str, year: int, month: int) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    validate_period(year, month)
    categories = (
        db.execute(
            select(Category)
            .join(CategoryGroup, Category.category_group_id == CategoryGroup.id)
            .where(Category.budget_id == budget_id)
            .order_by(CategoryGroup.display_order, Category.display_order)
        )
        .scalars()
        .all()
    )
    balances = category_balance_service.list_balances(db, budget_id, year, month)
    return {
        "categories": [CategoryContract.model_validate(c) for c in categories],
        "category_balances": [CategoryBalanceContract.model_validate(b) for b in balances],
    }


def reorder_categories(db: Session, user: User, group_id: str, category_ids: List[str]) -> List[CategoryContract]:
    group = require_group(db, group_id, user)
    with unit_of_work(db, group.budget_id):
        members = {c.id: c for c in group.categories}
        for index, category_id in enumerate(category_ids):
            category = members.get(category_id)
            if category is None:
                raise NotFoundError(f"category {category_id} not found in group")
            category.display_order = index
        db.flush()
        db.refresh(group)
        out = [CategoryContract.model_validate(c) for c in group.categories]
    return out


def move_to_hidden(db: Session, category: Category) -> None:
    hidden = system_group(db, category.budget_id, SYSTEM_KIND_HIDDEN)
    category.previous_group_id = category.category_group_id
    category.category_group_id = hidden.id
    category.is_hidden = True
    category.display_order = _next_category_order(db, hidden.id)
    db.flush()


def restore_from_hidden(db: Session, category: Category, target: CategoryGroup) -> None:
    category.category_group_id = target.id
    category.previous_group_id = None
    category.is_hidden = False
    category.display_order = _next_category_order(db, target.id)
    db.flush()


def hide_category(db: Session, user: User, category_id: str) -> CategoryContract:
    category = require_category(db, category_id, user)
    if category.is_hidden:
        raise ValidationError("category is already hidden")
    with unit_of_work(db, category.budget_id):
        move_to_hidden(db, category)
        out = CategoryContract.model_validate(category)
    return out


def unhide_category(db: Session, user: User, category_id: str, target_group_id: Optional[str] = None) -> CategoryContract:
    category = require_category(db, category_id, user)
    if not category.is_hidden:
        raise ValidationError("category is not hidden")
    with unit_of_work(db, category.budget_id):
        if target_group_id:
            target = require_group(db, target_group_id, user)
            if target.budget_id != category.budget_id:
                raise ValidationError("target group belongs to another budget")
            if target.system_kind == SYSTEM_KIND_HIDDEN:
                raise ValidationError("target group must not be the hidden group")
        else:
            target = next((g for g in list_groups(db, category.budget_id) if not g.is_system_group), None)
            if target is None:
                raise ValidationError("budget has no group to unhide into")
        restore_from_hidden(db, category, target)
        out = CategoryContract.model_validate(category)
    return out


# -------------------------
# Money between envelopes
# -------------------------

def _assignment_response(
    db: Session,
    budget_id: str,
    ctx: UserDateContext,
    year: int,
    month: int,
    category_ids: List[str],
    payment_ids: Set[str],
) -> Dict[str, Any]:
    rows = category_balance_service.balances_for(db, category_ids, year, month)
    payments = category_balance_service.balances_for(db, sorted(payment_ids), year, month)
    return {
        "category_balances": [CategoryBalanceContract.model_validate(r) for r in rows],
        "payment_category_balances": [CategoryBalanceContract.model_validate(r) for r in payments],
        "ready_to_assign": money.as_float(ready_to_assign_service.compute(db, budget_id, ctx)),
    }


def _cover(db: Session, category: Category, delta: Decimal, year: int, month: int) -> Set[str]:
    if money.to_cents(delta) <= 0:
        return set()
    return credit_card_debt_service.cover_from_assignment(db, category.id, delta, year, month)


def update_category(
    db: Session,
    user: User,
    category_id: str,
    ctx: UserDateContext,
    *,
    name: Optional[str] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    assigned: Optional[Any] = None,
    activity: Optional[Any] = None,
    available: Optional[Any] = None,
) -> Dict[str, Any]:
    """
    Rename and/or edit one month's envelope. assigned is absolute here; a
    positive change first covers the category's outstanding card debt.
    """
    category = require_category(db, category_id, user)
    touches_balance = any(v is not None for v in (assigned, activity, available))
    year = year or ctx.year
    month = month or ctx.month
    payment_ids: Set[str] = set()
    with unit_of_work(db, category.budget_id):
        category_balance_service.ensure_period(db, category.budget_id, ctx)
        if name is not None:
            category.name = _clean_name(name, "category")
        if touches_balance:
            validate_period(year, month)
            if assigned is not None:
                delta = category_balance_service.set_assigned(db, category, year, month, money.to_decimal(assigned))
                payment_ids |= _cover(db, category, delta, year, month)
            if activity is not None or available is not None:
                category_balance_service.override_balance(
                    db,
                    category,
                    year,
                    month,
                    activity=None if activity is None else money.to_decimal(activity),
                    available=None if available is None else money.to_decimal(available),
                )
        db.flush()
        out = {"category": CategoryContract.model_validate(category)}
        out.update(_assignment_response(db, category.budget_id, ctx, year, month, [category.id], payment_ids))
    return out


def move_money(
    db: Session,
    user: User,
    budget_id: str,
    ctx: UserDateContext,
    *,
    from_category_id: str,
    to_category_id: str,
    amount: Any,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    year = year or ctx.year
    month = month or ctx.month
    amount = money.to_decimal(amount)
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        source = category_in_budget(db, from_category_id, budget_id)
        destination = category_in_budget(db, to_category_id, budget_id)
        category_balance_service.move_money(db, source, destination, amount, year, month)
        payment_ids = _cover(db, destination, amount, year, month)
        out = _assignment_response(db, budget_id, ctx, year, month, [source.id, destination.id], payment_ids)
    return out


def move_to_ready_to_assign(
    db: Session,
    user: User,
    category_id: str,
    amount: Any,
    ctx: UserDateContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, Any]:
    category = require_category(db, category_id, user)
    year = year or ctx.year
    month = month or ctx.month
    with unit_of_work(db, category.budget_id):
        category_balance_service.ensure_period(db, category.budget_id, ctx)
        category_balance_service.move_to_ready_to_assign(db, category, money.to_decimal(amount), year, month)
        out = _assignment_response(db, category.budget_id, ctx, year, month, [category.id], set())
    return out


def pull_from_ready_to_assign(
    db: Session,
    user: User,
    category_id: str,
    amount: Any,
    ctx: UserDateContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, Any]:
    category = require_category(db, category_id, user)
    year = year or ctx.year
    month = month or ctx.month
    amount = money.to_decimal(amount)
    with unit_of_work(db, category.budget_id):
        category_balance_service.ensure_period(db, category.budget_id, ctx)
        category_balance_service.pull_from_ready_to_assign(db, category, amount, year, month)
        payment_ids = _cover(db, category, amount, year, month)
        out = _assignment_response(db, category.budget_id, ctx, year, month, [category.id], payment_ids)
    return out


def batch_assign(
    db: Session,
    user: User,
    budget_id: str,
    items: List[Dict[str, Any]],
    ctx: UserDateContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, Any]:
    """Add each amount to its category's assigned (additive, unlike update_category)."""
    require_budget(db, budget_id, user)
    if not items:
        raise ValidationError("assignments must not be empty")
    year = year or ctx.year
    month = month or ctx.month
    validate_period(year, month)
    applied = []
    payment_ids: Set[str] = set()
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        for item in items:
            category = category_in_budget(db, item["category_id"], budget_id)
            amount = money.to_decimal(item["amount"])
            if money.is_zero(amount):
                continue
            category_balance_service.apply_assignment(db, category, year, month, amount)
            payment_ids |= _cover(db, category, amount, year, month)
            applied.append({"category_id": category.id, "amount": money.as_float(amount)})
        out = _assignment_response(
            db, budget_id, ctx, year, month, [a["category_id"] for a in applied], payment_ids
        )
        out["success_count"] = len(applied)
        out["applied"] = applied
    return out
