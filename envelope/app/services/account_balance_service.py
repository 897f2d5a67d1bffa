"""
Keeps Account.cleared/uncleared/working in step with the account's transactions.

account_balance is the reconciled baseline: the starting balance plus every
reconciled transaction. So for an active account
    cleared_balance   == account_balance + sum(cleared, unreconciled)
    uncleared_balance == sum(uncleared)
    working_balance   == cleared_balance + uncleared_balance
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.domain import balances, money
from envelope.app.domain.balances import AccountBalances
from envelope.app.models import Account, Transaction

logger = logging.getLogger(__name__)


def current(account: Account) -> AccountBalances:
    return AccountBalances.of(account.cleared_balance, account.uncleared_balance)


def _store(account: Account, bal: AccountBalances) -> None:
    account.cleared_balance = bal.cleared
    account.uncleared_balance = bal.uncleared
    account.working_balance = bal.working


def add_transaction(account: Account, txn: Any) -> None:
    _store(account, balances.apply_txn(current(account), txn))
    if txn.is_reconciled:
        account.account_balance = money.add(account.account_balance, txn.amount)


def remove_transaction(account: Account, txn: Any) -> None:
    _store(account, balances.revert_txn(current(account), txn))
    if txn.is_reconciled:
        account.account_balance = money.sub(account.account_balance, txn.amount)


def toggle_cleared(account: Account, txn: Any, was_cleared: bool) -> None:
    _store(account, balances.toggle_cleared(current(account), txn, was_cleared))


def apply_deltas(account: Account, cleared_delta: Decimal, uncleared_delta: Decimal, baseline_delta: Decimal) -> None:
    """Apply pre-summed deltas, one write per account for bulk operations."""
    _store(
        account,
        AccountBalances(
            money.add(account.cleared_balance, cleared_delta),
            money.add(account.uncleared_balance, uncleared_delta),
        ),
    )
    account.account_balance = money.add(account.account_balance, baseline_delta)


def expected_balances(db: Session, account: Account) -> AccountBalances:
    """Recompute balances from the baseline and the unreconciled transactions."""
    txns = (
        db.execute(
            select(Transaction).where(
                Transaction.account_id == account.id,
                Transaction.is_reconciled.is_(False),
            )
        )
        .scalars()
        .all()
    )
    return balances.recompute(account.account_balance, txns)


def full_recompute(db: Session, account: Account) -> AccountBalances:
    bal = expected_balances(db, account)
    _store(account, bal)
    db.flush()
    return bal


def restore_after_reopen(db: Session, account: Account) -> AccountBalances:
    """
    Closing zeroes every balance field. Rebuild them so that the working balance
    stays at the zero the closure adjustment left behind.
    """
    txns = (
        db.execute(
            select(Transaction).where(
                Transaction.account_id == account.id,
                Transaction.is_reconciled.is_(False),
            )
        )
        .scalars()
        .all()
    )
    outstanding = balances.recompute(money.ZERO, txns)
    account.account_balance = money.neg(outstanding.working)
    bal = full_recompute(db, account)
    logger.info("restored balances for reopened account %s", account.id)
    return bal
