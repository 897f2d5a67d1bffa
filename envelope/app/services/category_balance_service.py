"""
Per-category, per-month envelope state: assigned, activity and available.

Rows are keyed by (category_id, year, month). A missing row for the current
month is materialized by rollover before anything writes to that month, so
"absent" only ever means "no carried balance".
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.dates import UserDateContext, period_of, validate_period
from envelope.app.domain.errors import ValidationError
from envelope.app.models import Category, CategoryBalance

logger = logging.getLogger(__name__)


def get_balance(db: Session, category_id: str, year: int, month: int) -> Optional[CategoryBalance]:
    return (
        db.execute(
            select(CategoryBalance).where(
                CategoryBalance.category_id == category_id,
                CategoryBalance.year == year,
                CategoryBalance.month == month,
            )
        )
        .scalars()
        .first()
    )


def get_or_create_balance(db: Session, category: Category, year: int, month: int) -> CategoryBalance:
    row = get_balance(db, category.id, year, month)
    if row is None:
        row = CategoryBalance(
            budget_id=category.budget_id,
            category_id=category.id,
            year=year,
            month=month,
            assigned=money.ZERO,
            activity=money.ZERO,
            available=money.ZERO,
        )
        db.add(row)
        db.flush()
    return row


def list_balances(db: Session, budget_id: str, year: int, month: int) -> List[CategoryBalance]:
    return (
        db.execute(
            select(CategoryBalance).where(
                CategoryBalance.budget_id == budget_id,
                CategoryBalance.year == year,
                CategoryBalance.month == month,
            )
        )
        .scalars()
        .all()
    )


def balances_for(db: Session, category_ids: Sequence[str], year: int, month: int) -> List[CategoryBalance]:
    ids = [cid for cid in dict.fromkeys(category_ids) if cid]
    if not ids:
        return []
    return (
        db.execute(
            select(CategoryBalance).where(
                CategoryBalance.category_id.in_(ids),
                CategoryBalance.year == year,
                CategoryBalance.month == month,
            )
        )
        .scalars()
        .all()
    )


def _require_category(db: Session, category_id: str) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise ValidationError("category does not exist")
    return category


def apply_assignment(
    db: Session,
    category: Category,
    year: int,
    month: int,
    delta: Decimal,
) -> CategoryBalance:
    """assigned += delta and available += delta for the month."""
    validate_period(year, month)
    row = get_or_create_balance(db, category, year, month)
    row.assigned = money.add(row.assigned, delta)
    row.available = money.add(row.available, delta)
    db.flush()
    return row


def set_assigned(
    db: Session,
    category: Category,
    year: int,
    month: int,
    new_assigned: Decimal,
) -> Decimal:
    """Set assigned to an absolute amount and return the delta that was applied."""
    validate_period(year, month)
    row = get_or_create_balance(db, category, year, month)
    delta = money.sub(new_assigned, row.assigned)
    if not money.is_zero(delta):
        apply_assignment(db, category, year, month, delta)
    return delta


def adjust_available(db: Session, category: Category, year: int, month: int, delta: Decimal) -> CategoryBalance:
    row = get_or_create_balance(db, category, year, month)
    row.available = money.add(row.available, delta)
    db.flush()
    return row


def override_balance(
    db: Session,
    category: Category,
    year: int,
    month: int,
    *,
    activity: Optional[Decimal] = None,
    available: Optional[Decimal] = None,
) -> CategoryBalance:
    """Manual correction of activity and/or available for one month."""
    validate_period(year, month)
    row = get_or_create_balance(db, category, year, month)
    if activity is not None:
        row.activity = activity
    if available is not None:
        row.available = available
    db.flush()
    logger.info("manual balance override category=%s period=%04d-%02d", category.id, year, month)
    return row


def apply_activity(
    db: Session,
    category_id: str,
    txn_date: date,
    delta: Decimal,
    ctx: UserDateContext,
) -> List[CategoryBalance]:
    """
    Record spending (negative) or income (positive) against a category.

    Activity lands in the transaction's month. Available always moves in the
    caller's current month, in the same row when the two months coincide.
    """
    if money.is_zero(delta):
        return []
    category = _require_category(db, category_id)
    txn_period = period_of(txn_date)

    activity_row = get_or_create_balance(db, category, *txn_period)
    activity_row.activity = money.add(activity_row.activity, delta)
    touched = [activity_row]

    if txn_period == ctx.period:
        activity_row.available = money.add(activity_row.available, delta)
    else:
        current_row = get_or_create_balance(db, category, *ctx.period)
        current_row.available = money.add(current_row.available, delta)
        touched.append(current_row)
    db.flush()
    return touched


def move_money(
    db: Session,
    source: Category,
    destination: Category,
    amount: Decimal,
    year: int,
    month: int,
) -> List[CategoryBalance]:
    if money.to_cents(amount) <= 0:
        raise ValidationError("amount must be positive")
    if source.id == destination.id:
        raise ValidationError("source and destination categories must differ")
    if source.budget_id != destination.budget_id:
        raise ValidationError("categories must belong to the same budget")
    validate_period(year, month)

    source_row = get_balance(db, source.id, year, month)
    if source_row is None:
        raise ValidationError("source category has no balance for this month")
    if money.to_cents(source_row.available) < money.to_cents(amount):
        raise ValidationError("insufficient funds in source category")

    # assigned is untouched on both sides
    source_row.available = money.sub(source_row.available, amount)
    destination_row = adjust_available(db, destination, year, month, amount)
    db.flush()
    return [source_row, destination_row]


def move_to_ready_to_assign(
    db: Session,
    category: Category,
    amount: Decimal,
    year: int,
    month: int,
) -> CategoryBalance:
    if money.to_cents(amount) <= 0:
        raise ValidationError("amount must be positive")
    validate_period(year, month)
    row = get_balance(db, category.id, year, month)
    if row is None:
        raise ValidationError("category has no balance for this month")
    if money.to_cents(row.available) < money.to_cents(amount):
        raise ValidationError("insufficient funds in category")
    row.assigned = money.sub(row.assigned, amount)
    row.available = money.sub(row.available, amount)
    db.flush()
    return row


def pull_from_ready_to_assign(
    db: Session,
    category: Category,
    amount: Decimal,
    year: int,
    month: int,
) -> CategoryBalance:
    if money.to_cents(amount) <= 0:
        raise ValidationError("amount must be positive")
    return apply_assignment(db, category, year, month, amount)


def _carried_available(db: Session, category_ids: Sequence[str], year: int, month: int) -> Dict[str, Decimal]:
    """Latest available strictly before (year, month), per category."""
    if not category_ids:
        return {}
    rows = (
        db.execute(
            select(CategoryBalance)
            .where(
                CategoryBalance.category_id.in_(list(category_ids)),
                or_(
                    CategoryBalance.year < year,
                    and_(CategoryBalance.year == year, CategoryBalance.month < month),
                ),
            )
            .order_by(CategoryBalance.year.desc(), CategoryBalance.month.desc())
        )
        .scalars()
        .all()
    )
    carried: Dict[str, Decimal] = {}
    for row in rows:
        carried.setdefault(row.category_id, money.to_decimal(row.available))
    return carried


def rollover(db: Session, budget_id: str, year: int, month: int) -> List[CategoryBalance]:
    """
    Materialize (year, month) rows for every category that lacks one, carrying
    available forward from its latest earlier month. Existing rows are never
    touched, so running this twice changes nothing.
    """
    validate_period(year, month)
    category_ids = (
        db.execute(select(Category.id).where(Category.budget_id == budget_id)).scalars().all()
    )
    existing = set(
        db.execute(
            select(CategoryBalance.category_id).where(
                CategoryBalance.budget_id == budget_id,
                CategoryBalance.year == year,
                CategoryBalance.month == month,
            )
        )
        .scalars()
        .all()
    )
    missing = [cid for cid in category_ids if cid not in existing]
    if not missing:
        return []

    carried = _carried_available(db, missing, year, month)
    created = []
    for category_id in missing:
        row = CategoryBalance(
            budget_id=budget_id,
            category_id=category_id,
            year=year,
            month=month,
            assigned=money.ZERO,
            activity=money.ZERO,
            available=carried.get(category_id, money.ZERO),
        )
        db.add(row)
        created.append(row)
    db.flush()
    logger.info("rolled over %s categories into %04d-%02d for budget %s", len(created), year, month, budget_id)
    return created


def ensure_period(db: Session, budget_id: str, ctx: UserDateContext) -> List[CategoryBalance]:
    return rollover(db, budget_id, ctx.year, ctx.month)
