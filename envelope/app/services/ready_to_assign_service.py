from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import CategoryBalance
from envelope.app.services import category_balance_service
from envelope.app.services.store import active_accounts


def _latest_period_with_rows(db: Session, budget_id: str) -> Optional[Tuple[int, int]]:
    row = db.execute(
        select(CategoryBalance.year, CategoryBalance.month)
        .where(CategoryBalance.budget_id == budget_id)
        .order_by(CategoryBalance.year.desc(), CategoryBalance.month.desc())
        .limit(1)
    ).first()
    return (row[0], row[1]) if row else None


def _period_rows(db: Session, budget_id: str, ctx: UserDateContext) -> List[CategoryBalance]:
    rows = category_balance_service.list_balances(db, budget_id, ctx.year, ctx.month)
    if rows:
        return rows
    latest = _latest_period_with_rows(db, budget_id)
    if latest is None:
        return []
    return category_balance_service.list_balances(db, budget_id, *latest)


def compute(db: Session, budget_id: str, ctx: UserDateContext) -> Decimal:
    """
    Money on budget accounts that no envelope holds yet:

        sum(working of active CASH accounts)
        - sum(positive available)
        + |sum(negative assigned)|

    Overspent envelopes do not give money back, so negative available is ignored.
    """
    cash = sum(money.to_cents(a.working_balance) for a in active_accounts(db, budget_id, "CASH"))
    held = 0
    unassigned = 0
    for row in _period_rows(db, budget_id, ctx):
        available = money.to_cents(row.available)
        assigned = money.to_cents(row.assigned)
        if available > 0:
            held += available
        if assigned < 0:
            unassigned += assigned
    return money.from_cents(cash - held + abs(unassigned))
