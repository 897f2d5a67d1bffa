from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.contracts import (
    AccountContract,
    BudgetContract,
    CategoryBalanceContract,
    CategoryContract,
    CategoryGroupContract,
    TransactionContract,
)
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import Account, Category, User
from envelope.app.services import (
    auto_assign_service,
    category_balance_service,
    category_service,
    ready_to_assign_service,
    transaction_service,
)
from envelope.app.services.store import require_budget, unit_of_work


def get_main_data(db: Session, user: User, budget_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    """
    Everything the budget screen needs in one read. The first read in a new
    month materializes that month's category balances.
    """
    budget = require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)

    accounts = (
        db.execute(
            select(Account)
            .where(Account.budget_id == budget_id)
            .order_by(Account.is_active.desc(), Account.display_order, Account.created_at)
        )
        .scalars()
        .all()
    )
    groups = category_service.list_groups(db, budget_id)
    categories = (
        db.execute(
            select(Category).where(Category.budget_id == budget_id).order_by(Category.display_order)
        )
        .scalars()
        .all()
    )
    balances = category_balance_service.list_balances(db, budget_id, ctx.year, ctx.month)
    txns = transaction_service.list_for_budget(db, budget_id)

    return {
        "budget": BudgetContract.model_validate(budget),
        "accounts": [AccountContract.model_validate(a) for a in accounts],
        "category_groups": [CategoryGroupContract.model_validate(g) for g in groups],
        "categories": [CategoryContract.model_validate(c) for c in categories],
        "category_balances": [CategoryBalanceContract.model_validate(b) for b in balances],
        "transactions": [TransactionContract.model_validate(t) for t in txns],
        "ready_to_assign": money.as_float(ready_to_assign_service.compute(db, budget_id, ctx)),
        "auto_assign_configurations": auto_assign_service.summaries(db, budget_id),
        "current_year": ctx.year,
        "current_month": ctx.month,
    }
