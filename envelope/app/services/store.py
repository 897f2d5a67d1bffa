"""
Scoped lookups and unit-of-work helpers shared by the budget services.

Every entity is reached through its budget, and the budget through its owner:
missing rows raise NotFoundError, rows owned by someone else raise
ForbiddenError.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from envelope.app.domain.errors import (
    BudgetEngineError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientStoreError,
)
from envelope.app.models import (
    Account,
    Budget,
    Category,
    CategoryGroup,
    Transaction,
    User,
)

logger = logging.getLogger(__name__)


def require_budget(db: Session, budget_id: str, user: User) -> Budget:
    budget = db.get(Budget, budget_id)
    if not budget:
        raise NotFoundError("budget not found")
    if budget.owner_id != user.id:
        raise ForbiddenError("budget belongs to another user")
    return budget


def require_account(db: Session, account_id: str, user: User) -> Account:
    account = db.get(Account, account_id)
    if not account:
        raise NotFoundError("account not found")
    require_budget(db, account.budget_id, user)
    return account


def require_group(db: Session, group_id: str, user: User) -> CategoryGroup:
    group = db.get(CategoryGroup, group_id)
    if not group:
        raise NotFoundError("category group not found")
    require_budget(db, group.budget_id, user)
    return group


def require_category(db: Session, category_id: str, user: User) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError("category not found")
    require_budget(db, category.budget_id, user)
    return category


def require_transaction(db: Session, transaction_id: str, user: User) -> Transaction:
    txn = db.get(Transaction, transaction_id)
    if not txn:
        raise NotFoundError("transaction not found")
    require_budget(db, txn.budget_id, user)
    return txn


def category_in_budget(db: Session, category_id: str, budget_id: str) -> Category:
    category = db.get(Category, category_id)
    if not category or category.budget_id != budget_id:
        raise NotFoundError("category not found in this budget")
    return category


def active_accounts(db: Session, budget_id: str, account_type: Optional[str] = None) -> List[Account]:
    query = select(Account).where(Account.budget_id == budget_id, Account.is_active.is_(True))
    if account_type:
        query = query.where(Account.account_type == account_type)
    return db.execute(query.order_by(Account.display_order, Account.created_at)).scalars().all()


def card_for_payment_category(db: Session, category_id: Optional[str]) -> Optional[Account]:
    """The credit card whose Payment category this is, if any."""
    if not category_id:
        return None
    return (
        db.execute(
            select(Account).where(
                Account.payment_category_id == category_id,
                Account.account_type == "CREDIT",
            )
        )
        .scalars()
        .first()
    )


def lock_budget(db: Session, budget_id: str) -> None:
    """
    Serialize mutating operations on one budget for the rest of the transaction.

    Uses a transaction-scoped advisory lock on Postgres. SQLite serializes
    writers on its own, so nothing is needed there.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": f"budget:{budget_id}"})
    # rows loaded before the lock may be stale
    db.expire_all()


@contextmanager
def unit_of_work(db: Session, budget_id: Optional[str] = None) -> Iterator[Session]:
    """
    Run one logical operation: lock the budget, commit on success, roll back on
    any failure. Store failures are translated into domain errors.
    """
    try:
        if budget_id:
            lock_budget(db, budget_id)
        yield db
        db.commit()
    except BudgetEngineError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.info("integrity error: %s", exc.orig)
        raise ConflictError("the change conflicts with existing data") from exc
    except OperationalError as exc:
        db.rollback()
        logger.error("store unavailable: %s", exc.orig)
        raise TransientStoreError("the data store is temporarily unavailable") from exc
    except Exception:
        db.rollback()
        raise


class EffectLog:
    """Collects warnings from secondary effects that were skipped after a failure."""

    def __init__(self) -> None:
        self.warnings: List[str] = []

    @contextmanager
    def secondary(self, db: Session, label: str) -> Iterator[None]:
        """
        Run a best-effort secondary effect inside a savepoint.

        Domain and store errors roll back only the savepoint; the primary
        mutation stands and the failure is logged and reported as a warning.
        """
        savepoint = db.begin_nested()
        try:
            yield
            savepoint.commit()
        except (BudgetEngineError, IntegrityError, OperationalError) as exc:
            savepoint.rollback()
            message = f"{label} skipped: {exc}"
            logger.warning(message)
            self.warnings.append(message)
