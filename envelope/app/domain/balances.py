"""
Pure account balance arithmetic.

working = cleared + uncleared always holds for the values produced here; the
caller owns persistence.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from envelope.app.domain import money


@dataclass(frozen=True)
class AccountBalances:
    cleared: Decimal
    uncleared: Decimal

    @property
    def working(self) -> Decimal:
        return money.add(self.cleared, self.uncleared)

    @classmethod
    def of(cls, cleared: Any, uncleared: Any) -> "AccountBalances":
        return cls(cleared=money.to_decimal(cleared), uncleared=money.to_decimal(uncleared))


def _shift(bal: AccountBalances, amount: Any, is_cleared: bool) -> AccountBalances:
    if is_cleared:
        return AccountBalances(money.add(bal.cleared, amount), bal.uncleared)
    return AccountBalances(bal.cleared, money.add(bal.uncleared, amount))


def apply_txn(bal: AccountBalances, txn: Any) -> AccountBalances:
    return _shift(bal, txn.amount, bool(txn.is_cleared))


def revert_txn(bal: AccountBalances, txn: Any) -> AccountBalances:
    return _shift(bal, money.neg(txn.amount), bool(txn.is_cleared))


def toggle_cleared(bal: AccountBalances, txn: Any, was_cleared: bool) -> AccountBalances:
    """Move txn.amount between the cleared and uncleared buckets."""
    if was_cleared == bool(txn.is_cleared):
        return bal
    without = _shift(bal, money.neg(txn.amount), was_cleared)
    return _shift(without, txn.amount, bool(txn.is_cleared))


def recompute(base: Any, txns: Iterable[Any]) -> AccountBalances:
    """Rebuild balances from a baseline and the transactions not already folded into it."""
    cleared = money.to_cents(base)
    uncleared = 0
    for txn in txns:
        if txn.is_cleared:
            cleared += money.to_cents(txn.amount)
        else:
            uncleared += money.to_cents(txn.amount)
    return AccountBalances(money.from_cents(cleared), money.from_cents(uncleared))
