"""
Transaction orchestration.

Every intent (create, update, delete, toggle cleared, bulk delete) runs its
side effects in a fixed order: credit-card debt, category activity, account
balances, then Ready-to-Assign. Debt and activity are secondary effects: each
runs in a savepoint and degrades to a warning instead of failing the request.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from envelope.app import config
from envelope.app.domain import money
from envelope.app.domain.contracts import (
    AccountContract,
    CategoryBalanceContract,
    TransactionContract,
    TransactionResult,
)
from envelope.app.domain.dates import UserDateContext, ensure_not_future
from envelope.app.domain.errors import NotFoundError, ValidationError
from envelope.app.models import Account, Category, CreditCardDebtTracking, Transaction, User
from envelope.app.services import (
    account_balance_service,
    category_balance_service,
    credit_card_debt_service,
    ready_to_assign_service,
)
from envelope.app.services.credit_card_debt_service import DebtSource
from envelope.app.services.store import (
    EffectLog,
    card_for_payment_category,
    category_in_budget,
    require_account,
    require_budget,
    require_transaction,
    unit_of_work,
)

logger = logging.getLogger(__name__)

TRANSFER_PREFIX = "Transfer : "
READY_TO_ASSIGN = "ready-to-assign"

# source account type -> account types it may transfer into
ALLOWED_TRANSFERS = {
    "CASH": {"CASH", "TRACKING", "CREDIT"},
    "CREDIT": {"CASH", "CREDIT"},
    "TRACKING": {"CASH", "TRACKING"},
}


@dataclass(frozen=True)
class TxnState:
    """Immutable snapshot of the fields side effects depend on."""

    id: str
    budget_id: str
    account_id: str
    account_type: str
    category_id: Optional[str]
    date: date
    amount: Decimal
    is_cleared: bool
    is_reconciled: bool
    transfer_id: Optional[str]

    @classmethod
    def of(cls, db: Session, txn: Transaction) -> "TxnState":
        account = db.get(Account, txn.account_id)
        return cls(
            id=txn.id,
            budget_id=txn.budget_id,
            account_id=txn.account_id,
            account_type=account.account_type,
            category_id=txn.category_id,
            date=txn.date,
            amount=money.to_decimal(txn.amount),
            is_cleared=bool(txn.is_cleared),
            is_reconciled=bool(txn.is_reconciled),
            transfer_id=txn.transfer_id,
        )

    def debt_source(self) -> DebtSource:
        return DebtSource(
            transaction_id=self.id,
            budget_id=self.budget_id,
            account_id=self.account_id,
            account_type=self.account_type,
            category_id=self.category_id,
            amount=self.amount,
        )


def normalize_category_id(category_id: Optional[str]) -> Optional[str]:
    if not category_id or category_id == READY_TO_ASSIGN:
        return None
    return category_id


def is_transfer_payee(payee: Optional[str]) -> bool:
    return bool(payee) and payee.startswith(TRANSFER_PREFIX)


# -------------------------
# Secondary effects
# -------------------------

def _category_effect(db: Session, state: TxnState, ctx: UserDateContext, *, reverse: bool = False) -> Set[str]:
    """
    Spending categories record activity. Payment categories (the cash side of a
    card payment) only give up available.
    """
    if not state.category_id or state.account_type == "TRACKING" or money.is_zero(state.amount):
        return set()
    amount = money.neg(state.amount) if reverse else state.amount
    if card_for_payment_category(db, state.category_id) is not None:
        category = db.get(Category, state.category_id)
        category_balance_service.adjust_available(db, category, ctx.year, ctx.month, amount)
    else:
        category_balance_service.apply_activity(db, state.category_id, state.date, amount, ctx)
    return {state.category_id}


def _apply_created(db: Session, state: TxnState, ctx: UserDateContext, effects: EffectLog) -> Set[str]:
    touched: Set[str] = set()
    with effects.secondary(db, f"credit card tracking for transaction {state.id}"):
        touched |= credit_card_debt_service.on_create(db, state.debt_source(), ctx)
    with effects.secondary(db, f"category activity for transaction {state.id}"):
        touched |= _category_effect(db, state, ctx)
    return touched


def _apply_updated(
    db: Session,
    before: TxnState,
    after: TxnState,
    ctx: UserDateContext,
    effects: EffectLog,
) -> Set[str]:
    touched: Set[str] = set()
    debt_changed = (
        before.amount != after.amount
        or before.category_id != after.category_id
        or before.account_id != after.account_id
    )
    activity_changed = debt_changed or before.date != after.date
    if debt_changed:
        with effects.secondary(db, f"credit card tracking for transaction {after.id}"):
            touched |= credit_card_debt_service.on_update(db, before.debt_source(), after.debt_source(), ctx)
    if activity_changed:
        with effects.secondary(db, f"category activity for transaction {after.id}"):
            touched |= _category_effect(db, before, ctx, reverse=True)
            touched |= _category_effect(db, after, ctx)
    return touched


def _apply_deleted(db: Session, state: TxnState, ctx: UserDateContext, effects: EffectLog) -> Set[str]:
    touched: Set[str] = set()
    with effects.secondary(db, f"credit card tracking for transaction {state.id}"):
        touched |= credit_card_debt_service.on_delete(db, state.id, ctx)
    with effects.secondary(db, f"category activity for transaction {state.id}"):
        touched |= _category_effect(db, state, ctx, reverse=True)
    return touched


def _move_balance(db: Session, before: Optional[TxnState], after: Optional[TxnState]) -> None:
    if before is not None:
        account_balance_service.remove_transaction(db.get(Account, before.account_id), before)
    if after is not None:
        account_balance_service.add_transaction(db.get(Account, after.account_id), after)
    db.flush()


# -------------------------
# Helpers
# -------------------------

def _check_date(txn_date: date, ctx: UserDateContext) -> None:
    ensure_not_future(txn_date, ctx, backstop=config.server_date_backstop())


def _require_active(account: Account) -> None:
    if not account.is_active:
        raise ValidationError(f"account {account.name!r} is closed")


def _resolve_category(db: Session, budget_id: str, category_id: Optional[str]) -> Optional[str]:
    category_id = normalize_category_id(category_id)
    if category_id is None:
        return None
    return category_in_budget(db, category_id, budget_id).id


def _transfer_target(db: Session, source: Account, payee: str) -> Account:
    name = payee[len(TRANSFER_PREFIX):].strip()
    candidates = (
        db.execute(
            select(Account).where(
                Account.budget_id == source.budget_id,
                Account.is_active.is_(True),
                Account.name_key == name.lower(),
            )
        )
        .scalars()
        .all()
    )
    target = next((a for a in candidates if a.name == name), None) or (candidates[0] if candidates else None)
    if target is None:
        raise NotFoundError(f"transfer target account {name!r} not found")
    if target.id == source.id:
        raise ValidationError("cannot transfer to the same account")
    if target.account_type not in ALLOWED_TRANSFERS.get(source.account_type, set()):
        raise ValidationError(
            f"transfers from {source.account_type} to {target.account_type} accounts are not allowed"
        )
    return target


def find_peer(db: Session, txn: Transaction) -> Optional[Transaction]:
    if not txn.transfer_id:
        return None
    return (
        db.execute(
            select(Transaction).where(
                Transaction.transfer_id == txn.transfer_id,
                Transaction.id != txn.id,
            )
        )
        .scalars()
        .first()
    )


def build_result(
    db: Session,
    budget_id: str,
    ctx: UserDateContext,
    *,
    transaction: Optional[Transaction] = None,
    linked: Optional[Transaction] = None,
    account_ids: Iterable[str] = (),
    category_ids: Iterable[str] = (),
    effects: Optional[EffectLog] = None,
) -> TransactionResult:
    accounts = [db.get(Account, aid) for aid in dict.fromkeys(account_ids) if aid]
    rows = category_balance_service.balances_for(db, list(category_ids), ctx.year, ctx.month)
    result = TransactionResult(
        transaction=TransactionContract.model_validate(transaction) if transaction else None,
        linked_transaction=TransactionContract.model_validate(linked) if linked else None,
        account=AccountContract.model_validate(accounts[0]) if accounts else None,
        ready_to_assign=money.as_float(ready_to_assign_service.compute(db, budget_id, ctx)),
        category_balances=[CategoryBalanceContract.model_validate(r) for r in rows],
        warnings=list(effects.warnings) if effects else [],
    )
    if linked is not None and len(accounts) >= 2:
        result.source_account = AccountContract.model_validate(accounts[0])
        result.target_account = AccountContract.model_validate(accounts[1])
    return result


# -------------------------
# Create
# -------------------------

def insert_transaction(
    db: Session,
    account: Account,
    ctx: UserDateContext,
    effects: EffectLog,
    *,
    txn_date: date,
    amount: Any,
    payee: str,
    memo: Optional[str] = None,
    category_id: Optional[str] = None,
    is_cleared: bool = False,
    is_reconciled: bool = False,
) -> Dict[str, Any]:
    """
    Create a transaction (and its transfer peer) inside an open unit of work.

    Returns the primary row, the peer if any, and the touched category ids.
    """
    _require_active(account)
    _check_date(txn_date, ctx)
    if is_reconciled and not is_cleared:
        raise ValidationError("only cleared transactions can be reconciled")
    payee = (payee or "").strip()
    if not payee:
        raise ValidationError("payee is required")
    category_id = _resolve_category(db, account.budget_id, category_id)
    amount = money.to_decimal(amount)

    transfer = is_transfer_payee(payee)
    transfer_id = None
    if transfer:
        transfer_id = str(uuid.uuid4())
        amount = money.neg(abs(amount))

    txn = Transaction(
        budget_id=account.budget_id,
        account_id=account.id,
        category_id=category_id,
        date=txn_date,
        amount=amount,
        payee=payee,
        memo=memo,
        is_cleared=is_cleared,
        is_reconciled=is_reconciled,
        transfer_id=transfer_id,
    )
    db.add(txn)
    db.flush()

    peer = None
    if transfer:
        try:
            target = _transfer_target(db, account, payee)
            if account.account_type == "CASH" and target.account_type == "TRACKING" and not category_id:
                raise ValidationError("transfers to tracking accounts need a category")
            peer = Transaction(
                budget_id=account.budget_id,
                account_id=target.id,
                category_id=None,
                date=txn_date,
                amount=money.neg(amount),
                payee=f"{TRANSFER_PREFIX}{account.name}",
                memo=memo,
                is_cleared=is_cleared,
                is_reconciled=False,
                transfer_id=transfer_id,
            )
            db.add(peer)
            db.flush()
        except Exception:
            db.delete(txn)
            db.flush()
            raise
        logger.info(
            "transfer created budget=%s source=%s target=%s transfer_id=%s",
            account.budget_id,
            account.id,
            peer.account_id,
            transfer_id,
        )

    state = TxnState.of(db, txn)
    touched = _apply_created(db, state, ctx, effects)
    _move_balance(db, None, state)
    if peer is not None:
        peer_state = TxnState.of(db, peer)
        touched |= _apply_created(db, peer_state, ctx, effects)
        _move_balance(db, None, peer_state)
    return {"transaction": txn, "peer": peer, "categories": touched}


def create_transaction(
    db: Session,
    user: User,
    ctx: UserDateContext,
    *,
    account_id: str,
    txn_date: date,
    amount: Any,
    payee: str,
    memo: Optional[str] = None,
    category_id: Optional[str] = None,
    is_cleared: bool = False,
    is_reconciled: bool = False,
) -> TransactionResult:
    account = require_account(db, account_id, user)
    budget_id = account.budget_id
    effects = EffectLog()
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        created = insert_transaction(
            db,
            account,
            ctx,
            effects,
            txn_date=txn_date,
            amount=amount,
            payee=payee,
            memo=memo,
            category_id=category_id,
            is_cleared=is_cleared,
            is_reconciled=is_reconciled,
        )
        txn, peer = created["transaction"], created["peer"]
        result = build_result(
            db,
            budget_id,
            ctx,
            transaction=txn,
            linked=peer,
            account_ids=[txn.account_id] + ([peer.account_id] if peer else []),
            category_ids=created["categories"],
            effects=effects,
        )
    return result


# -------------------------
# Update
# -------------------------

UPDATABLE_FIELDS = ("date", "amount", "payee", "memo", "category_id", "is_cleared", "account_id")


def update_transaction(
    db: Session,
    user: User,
    transaction_id: str,
    changes: Dict[str, Any],
    ctx: UserDateContext,
) -> TransactionResult:
    txn = require_transaction(db, transaction_id, user)
    budget_id = txn.budget_id
    effects = EffectLog()
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")

    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        before = TxnState.of(db, txn)
        peer = find_peer(db, txn)

        if "category_id" in changes:
            changes["category_id"] = _resolve_category(db, budget_id, changes["category_id"])
        if "amount" in changes:
            if changes["amount"] is None:
                raise ValidationError("amount is required")
            changes["amount"] = money.to_decimal(changes["amount"])
        if "date" in changes:
            if changes["date"] is None:
                raise ValidationError("date is required")
            _check_date(changes["date"], ctx)
        if "payee" in changes:
            payee = (changes["payee"] or "").strip()
            if not payee:
                raise ValidationError("payee is required")
            if payee != txn.payee and (txn.transfer_id or is_transfer_payee(payee)):
                raise ValidationError("transfer payees cannot be changed")
            changes["payee"] = payee

        old_account = db.get(Account, txn.account_id)
        new_account_id = changes.get("account_id") or txn.account_id
        if new_account_id != txn.account_id:
            if txn.transfer_id:
                raise ValidationError("transfers cannot be moved to another account")
            new_account = require_account(db, new_account_id, user)
            if new_account.budget_id != budget_id:
                raise ValidationError("account belongs to another budget")
            _require_active(new_account)
        else:
            _require_active(old_account)
        changes["account_id"] = new_account_id

        for field_name, value in changes.items():
            setattr(txn, field_name, value)
        if txn.is_reconciled and (
            money.to_decimal(txn.amount) != before.amount
            or txn.account_id != before.account_id
            or bool(txn.is_cleared) != before.is_cleared
        ):
            txn.is_reconciled = False
        db.flush()
        after = TxnState.of(db, txn)

        touched = _apply_updated(db, before, after, ctx, effects)
        _move_balance(db, before, after)

        if peer is not None:
            touched |= _sync_peer(db, peer, after, ctx, effects)

        account_ids = [after.account_id]
        if before.account_id != after.account_id:
            account_ids.append(before.account_id)
        if peer is not None:
            account_ids.append(peer.account_id)
        result = build_result(
            db,
            budget_id,
            ctx,
            transaction=txn,
            linked=peer,
            account_ids=account_ids,
            category_ids=touched | {before.category_id, after.category_id},
            effects=effects,
        )
    return result


def _sync_peer(db: Session, peer: Transaction, primary: TxnState, ctx: UserDateContext, effects: EffectLog) -> Set[str]:
    """Mirror date, amount, cleared flag and memo onto the other leg of a transfer."""
    before = TxnState.of(db, peer)
    primary_row = db.get(Transaction, primary.id)
    peer.date = primary.date
    peer.amount = money.neg(primary.amount)
    peer.is_cleared = primary.is_cleared
    peer.memo = primary_row.memo
    if peer.is_reconciled and (money.to_decimal(peer.amount) != before.amount or peer.is_cleared != before.is_cleared):
        peer.is_reconciled = False
    db.flush()
    after = TxnState.of(db, peer)
    if after == before:
        return set()
    touched = _apply_updated(db, before, after, ctx, effects)
    _move_balance(db, before, after)
    return touched


# -------------------------
# Delete
# -------------------------

def _remove_rows(db: Session, rows: List[Transaction]) -> None:
    ids = [row.id for row in rows]
    db.execute(delete(CreditCardDebtTracking).where(CreditCardDebtTracking.transaction_id.in_(ids)))
    for row in rows:
        db.delete(row)
    db.flush()


def delete_transaction(db: Session, user: User, transaction_id: str, ctx: UserDateContext) -> TransactionResult:
    txn = require_transaction(db, transaction_id, user)
    budget_id = txn.budget_id
    effects = EffectLog()
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        rows = [txn]
        peer = find_peer(db, txn)
        if peer is not None:
            rows.append(peer)

        touched: Set[str] = set()
        for row in rows:
            state = TxnState.of(db, row)
            touched |= _apply_deleted(db, state, ctx, effects)
            _move_balance(db, state, None)
        account_ids = [row.account_id for row in rows]
        _remove_rows(db, rows)

        result = build_result(
            db,
            budget_id,
            ctx,
            account_ids=account_ids,
            category_ids=touched,
            effects=effects,
        )
    return result


def bulk_delete_transactions(
    db: Session,
    user: User,
    budget_id: str,
    transaction_ids: List[str],
    ctx: UserDateContext,
) -> Dict[str, Any]:
    """
    Delete many transactions, peers included. Balance deltas are summed per
    account and written once.
    """
    if not transaction_ids:
        raise ValidationError("transaction_ids must not be empty")
    require_budget(db, budget_id, user)
    effects = EffectLog()
    with unit_of_work(db, budget_id):
        category_balance_service.ensure_period(db, budget_id, ctx)
        found = (
            db.execute(
                select(Transaction).where(
                    Transaction.budget_id == budget_id,
                    Transaction.id.in_(list(dict.fromkeys(transaction_ids))),
                )
            )
            .scalars()
            .all()
        )
        if not found:
            raise NotFoundError("none of the transactions were found")

        rows: Dict[str, Transaction] = {row.id: row for row in found}
        for row in found:
            peer = find_peer(db, row)
            if peer is not None:
                rows.setdefault(peer.id, peer)

        deltas: Dict[str, List[int]] = {}
        touched: Set[str] = set()
        for row in rows.values():
            state = TxnState.of(db, row)
            touched |= _apply_deleted(db, state, ctx, effects)
            cents = money.to_cents(state.amount)
            bucket = deltas.setdefault(state.account_id, [0, 0, 0])
            if state.is_cleared:
                bucket[0] -= cents
            else:
                bucket[1] -= cents
            if state.is_reconciled:
                bucket[2] -= cents

        for account_id, (cleared, uncleared, baseline) in deltas.items():
            account_balance_service.apply_deltas(
                db.get(Account, account_id),
                money.from_cents(cleared),
                money.from_cents(uncleared),
                money.from_cents(baseline),
            )
        _remove_rows(db, list(rows.values()))

        summary = build_result(db, budget_id, ctx, account_ids=deltas.keys(), category_ids=touched, effects=effects)
        accounts = [AccountContract.model_validate(db.get(Account, aid)) for aid in deltas]
        result = {
            "deleted_count": len(rows),
            "accounts": accounts,
            "ready_to_assign": summary.ready_to_assign,
            "category_balances": summary.category_balances,
            "warnings": summary.warnings,
        }
    logger.info("bulk delete budget=%s deleted=%s", budget_id, len(rows))
    return result


# -------------------------
# Cleared flag
# -------------------------

def _set_cleared(db: Session, txn: Transaction, is_cleared: bool) -> None:
    before = TxnState.of(db, txn)
    txn.is_cleared = is_cleared
    if txn.is_reconciled and not is_cleared:
        txn.is_reconciled = False
    db.flush()
    after = replace(before, is_cleared=is_cleared, is_reconciled=bool(txn.is_reconciled))
    _move_balance(db, before, after)


def toggle_cleared(db: Session, user: User, transaction_id: str, ctx: UserDateContext) -> TransactionResult:
    txn = require_transaction(db, transaction_id, user)
    budget_id = txn.budget_id
    with unit_of_work(db, budget_id):
        is_cleared = not txn.is_cleared
        _set_cleared(db, txn, is_cleared)
        peer = find_peer(db, txn)
        if peer is not None and bool(peer.is_cleared) != is_cleared:
            _set_cleared(db, peer, is_cleared)
        result = build_result(
            db,
            budget_id,
            ctx,
            transaction=txn,
            linked=peer,
            account_ids=[txn.account_id] + ([peer.account_id] if peer else []),
        )
    return result


# -------------------------
# Reads
# -------------------------

def get_transaction(db: Session, user: User, transaction_id: str) -> Transaction:
    return require_transaction(db, transaction_id, user)


def list_for_account(db: Session, user: User, account_id: str) -> List[Transaction]:
    require_account(db, account_id, user)
    return (
        db.execute(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        .scalars()
        .all()
    )


def list_for_budget(db: Session, budget_id: str) -> List[Transaction]:
    return (
        db.execute(
            select(Transaction)
            .where(Transaction.budget_id == budget_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        .scalars()
        .all()
    )


def list_budget_transactions(db: Session, user: User, budget_id: str) -> List[Transaction]:
    require_budget(db, budget_id, user)
    return list_for_budget(db, budget_id)
