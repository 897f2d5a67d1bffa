"""
Credit card debt tracking.

Each outflow on a CREDIT account owns one CreditCardDebtTracking row. The part
of the debt already funded by the spending category (covered_amount) is held
in the card's Payment category, so paying the card never double-counts money.

    0 <= covered_amount <= debt_amount
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import Account, Category, CreditCardDebtTracking
from envelope.app.services import category_balance_service
from envelope.app.services.store import card_for_payment_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebtSource:
    """What the debt protocol needs to know about one side of a transaction."""

    transaction_id: str
    budget_id: str
    account_id: str
    account_type: str
    category_id: Optional[str]
    amount: Decimal

    @property
    def is_debt(self) -> bool:
        return self.account_type == "CREDIT" and money.to_cents(self.amount) < 0


def get_debt(db: Session, transaction_id: str) -> Optional[CreditCardDebtTracking]:
    return (
        db.execute(
            select(CreditCardDebtTracking).where(CreditCardDebtTracking.transaction_id == transaction_id)
        )
        .scalars()
        .first()
    )


def _payment_category(db: Session, card_id: str) -> Optional[Category]:
    card = db.get(Account, card_id)
    if not card or not card.payment_category_id:
        logger.warning("credit card %s has no payment category", card_id)
        return None
    return db.get(Category, card.payment_category_id)


def shift_payment(db: Session, card_id: str, delta: Decimal, ctx: UserDateContext) -> Optional[str]:
    if money.is_zero(delta):
        return None
    payment = _payment_category(db, card_id)
    if payment is None:
        return None
    category_balance_service.adjust_available(db, payment, ctx.year, ctx.month, delta)
    return payment.id


def _spendable(db: Session, category_id: Optional[str], ctx: UserDateContext) -> Decimal:
    """Non-negative current-month available of a spending category."""
    if not category_id or card_for_payment_category(db, category_id) is not None:
        return money.ZERO
    row = category_balance_service.get_balance(db, category_id, ctx.year, ctx.month)
    if row is None:
        return money.ZERO
    return max(money.to_decimal(row.available), money.ZERO)


def on_create(db: Session, source: DebtSource, ctx: UserDateContext) -> Set[str]:
    """Open a debt row for a card outflow; move the funded part into Payment."""
    if not source.is_debt:
        return set()
    debt = money.neg(source.amount)
    covered = min(debt, _spendable(db, source.category_id, ctx))
    row = CreditCardDebtTracking(
        budget_id=source.budget_id,
        transaction_id=source.transaction_id,
        credit_card_account_id=source.account_id,
        original_category_id=source.category_id,
        debt_amount=debt,
        covered_amount=covered,
    )
    db.add(row)
    db.flush()
    touched = shift_payment(db, source.account_id, covered, ctx)
    return {touched} if touched else set()


def on_update(db: Session, before: DebtSource, after: DebtSource, ctx: UserDateContext) -> Set[str]:
    """
    Re-derive coverage after an edit.

    Previously covered money counts toward the new coverage while the debt stays
    in the same spending category, even when it moves to another card. A new
    category starts fresh from its own available.
    """
    touched: Set[str] = set()
    row = get_debt(db, before.transaction_id)
    previous_covered = money.ZERO
    if row is not None:
        previous_covered = money.to_decimal(row.covered_amount)
        payment_id = shift_payment(db, row.credit_card_account_id, money.neg(previous_covered), ctx)
        if payment_id:
            touched.add(payment_id)

    if not after.is_debt:
        if row is not None:
            db.delete(row)
            db.flush()
        return touched

    pool = _spendable(db, after.category_id, ctx)
    if row is not None and row.original_category_id == after.category_id:
        pool = money.add(pool, previous_covered)
    debt = money.neg(after.amount)
    covered = min(debt, pool)

    if row is None:
        row = CreditCardDebtTracking(
            budget_id=after.budget_id,
            transaction_id=after.transaction_id,
        )
        db.add(row)
    row.credit_card_account_id = after.account_id
    row.original_category_id = after.category_id
    row.debt_amount = debt
    row.covered_amount = covered
    db.flush()

    payment_id = shift_payment(db, after.account_id, covered, ctx)
    if payment_id:
        touched.add(payment_id)
    return touched


def on_delete(db: Session, transaction_id: str, ctx: UserDateContext) -> Set[str]:
    row = get_debt(db, transaction_id)
    if row is None:
        return set()
    payment_id = shift_payment(db, row.credit_card_account_id, money.neg(row.covered_amount), ctx)
    db.delete(row)
    db.flush()
    return {payment_id} if payment_id else set()


def cover_from_assignment(
    db: Session,
    category_id: str,
    delta: Decimal,
    year: int,
    month: int,
) -> Set[str]:
    """
    Newly assigned money first covers this category's outstanding card debt,
    oldest first. The spending category keeps its available; the covered part
    is mirrored into each card's Payment category.
    """
    remaining = money.to_cents(delta)
    if remaining <= 0:
        return set()
    rows = (
        db.execute(
            select(CreditCardDebtTracking)
            .where(
                CreditCardDebtTracking.original_category_id == category_id,
                CreditCardDebtTracking.covered_amount < CreditCardDebtTracking.debt_amount,
            )
            .order_by(CreditCardDebtTracking.created_at, CreditCardDebtTracking.id)
        )
        .scalars()
        .all()
    )
    touched: Set[str] = set()
    for row in rows:
        if remaining <= 0:
            break
        gap = money.to_cents(row.debt_amount) - money.to_cents(row.covered_amount)
        take = min(remaining, gap)
        if take <= 0:
            continue
        payment = _payment_category(db, row.credit_card_account_id)
        if payment is None:
            continue
        category_balance_service.adjust_available(db, payment, year, month, money.from_cents(take))
        row.covered_amount = money.add(row.covered_amount, money.from_cents(take))
        remaining -= take
        touched.add(payment.id)
    db.flush()
    return touched


def list_debts(db: Session, card_id: str) -> List[CreditCardDebtTracking]:
    return (
        db.execute(
            select(CreditCardDebtTracking)
            .where(CreditCardDebtTracking.credit_card_account_id == card_id)
            .order_by(CreditCardDebtTracking.created_at, CreditCardDebtTracking.id)
        )
        .scalars()
        .all()
    )
