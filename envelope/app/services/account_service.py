from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.contracts import (
    AccountContract,
    CategoryBalanceContract,
    CategoryContract,
    TransactionContract,
)
from envelope.app.domain.dates import UserDateContext
from envelope.app.domain.errors import ConflictError, ValidationError
from envelope.app.models import (
    ACCOUNT_TYPES,
    SYSTEM_KIND_CREDIT_CARD_PAYMENTS,
    Account,
    Category,
    Transaction,
    User,
)
from envelope.app.services import (
    account_balance_service,
    category_balance_service,
    category_service,
    ready_to_assign_service,
    transaction_service,
)
from envelope.app.services.store import (
    EffectLog,
    active_accounts,
    require_account,
    require_budget,
    unit_of_work,
)

logger = logging.getLogger(__name__)

RECONCILIATION_PAYEE = "Reconciliation Adjustment"
CLOSURE_PAYEE = "Account Closure Adjustment"
BALANCE_UPDATE_PAYEE = "Balance Update"


def payment_category_name(account_name: str) -> str:
    return f"{account_name} Payment"


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("account name is required")
    return cleaned


def _ensure_unique_name(db: Session, budget_id: str, name: str, exclude_id: Optional[str] = None) -> None:
    query = select(Account.id).where(Account.budget_id == budget_id, Account.name_key == name.lower())
    if exclude_id:
        query = query.where(Account.id != exclude_id)
    if db.execute(query).first():
        raise ConflictError(f"an account named {name!r} already exists in this budget")


def _rta(db: Session, budget_id: str, ctx: UserDateContext) -> float:
    return money.as_float(ready_to_assign_service.compute(db, budget_id, ctx))


def list_accounts(db: Session, user: User, budget_id: str) -> List[AccountContract]:
    require_budget(db, budget_id, user)
    rows = (
        db.execute(
            select(Account)
            .where(Account.budget_id == budget_id)
            .order_by(Account.is_active.desc(), Account.display_order, Account.created_at)
        )
        .scalars()
        .all()
    )
    return [AccountContract.model_validate(a) for a in rows]


def get_account(db: Session, user: User, account_id: str) -> AccountContract:
    return AccountContract.model_validate(require_account(db, account_id, user))


def create_account(
    db: Session,
    user: User,
    budget_id: str,
    ctx: UserDateContext,
    *,
    name: str,
    account_type: str,
    balance: Any = 0,
) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    account_type = (account_type or "").upper()
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(f"account_type must be one of {', '.join(ACCOUNT_TYPES)}")
    name = _clean_name(name)
    starting = money.to_decimal(balance)

    with unit_of_work(db, budget_id):
        _ensure_unique_name(db, budget_id, name)
        category_balance_service.ensure_period(db, budget_id, ctx)
        next_order = db.execute(
            select(func.max(Account.display_order)).where(Account.budget_id == budget_id)
        ).scalar()
        account = Account(
            budget_id=budget_id,
            name=name,
            name_key=name.lower(),
            account_type=account_type,
            account_balance=starting,
            cleared_balance=starting,
            uncleared_balance=money.ZERO,
            working_balance=starting,
            display_order=(next_order + 1) if next_order is not None else 0,
        )
        db.add(account)
        db.flush()

        payment = None
        if account_type == "CREDIT":
            group = category_service.system_group(db, budget_id, SYSTEM_KIND_CREDIT_CARD_PAYMENTS)
            payment = category_service.add_category(db, group, payment_category_name(name), ctx)
            account.payment_category_id = payment.id
            db.flush()

        out = {
            "account": AccountContract.model_validate(account),
            "payment_category": CategoryContract.model_validate(payment) if payment else None,
            "ready_to_assign": _rta(db, budget_id, ctx),
        }
    logger.info("account created budget=%s account=%s type=%s", budget_id, out["account"].id, account_type)
    return out


def update_account(db: Session, user: User, account_id: str, *, name: str) -> Dict[str, Any]:
    account = require_account(db, account_id, user)
    name = _clean_name(name)
    with unit_of_work(db, account.budget_id):
        _ensure_unique_name(db, account.budget_id, name, exclude_id=account.id)
        old_name = account.name
        account.name = name
        account.name_key = name.lower()

        payment = db.get(Category, account.payment_category_id) if account.payment_category_id else None
        if payment is not None:
            payment.name = payment_category_name(name)

        if old_name != name:
            # keep the transfer marker on the other leg of each transfer pointing at this account
            transfer_ids = select(Transaction.transfer_id).where(
                Transaction.account_id == account.id,
                Transaction.transfer_id.is_not(None),
            )
            db.execute(
                update(Transaction)
                .where(
                    Transaction.transfer_id.in_(transfer_ids),
                    Transaction.account_id != account.id,
                    Transaction.payee == f"{transaction_service.TRANSFER_PREFIX}{old_name}",
                )
                .values(payee=f"{transaction_service.TRANSFER_PREFIX}{name}")
                .execution_options(synchronize_session="fetch")
            )
        db.flush()
        out = {
            "account": AccountContract.model_validate(account),
            "payment_category": CategoryContract.model_validate(payment) if payment else None,
        }
    return out


def reorder_accounts(db: Session, user: User, budget_id: str, account_ids: List[str]) -> List[AccountContract]:
    require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        accounts = {
            a.id: a
            for a in db.execute(select(Account).where(Account.budget_id == budget_id)).scalars().all()
        }
        for index, account_id in enumerate(account_ids):
            account = accounts.get(account_id)
            if account is None:
                raise ValidationError(f"account {account_id} is not part of this budget")
            account.display_order = index
        db.flush()
    return list_accounts(db, user, budget_id)


def _adjust(
    db: Session,
    account: Account,
    ctx: UserDateContext,
    effects: EffectLog,
    *,
    amount: Any,
    payee: str,
    memo: Optional[str] = None,
    is_reconciled: bool = False,
) -> Transaction:
    created = transaction_service.insert_transaction(
        db,
        account,
        ctx,
        effects,
        txn_date=ctx.today,
        amount=amount,
        payee=payee,
        memo=memo,
        category_id=None,
        is_cleared=True,
        is_reconciled=is_reconciled,
    )
    return created["transaction"]


def reconcile_account(
    db: Session,
    user: User,
    account_id: str,
    actual_balance: Any,
    ctx: UserDateContext,
) -> Dict[str, Any]:
    account = require_account(db, account_id, user)
    actual = money.to_decimal(actual_balance)
    effects = EffectLog()
    with unit_of_work(db, account.budget_id):
        if not account.is_active:
            raise ValidationError("closed accounts cannot be reconciled")
        category_balance_service.ensure_period(db, account.budget_id, ctx)

        adjustment = None
        difference = money.sub(actual, account.cleared_balance)
        if not money.nearly_equal(difference, money.ZERO):
            verb = "Added" if difference > 0 else "Removed"
            adjustment = _adjust(
                db,
                account,
                ctx,
                effects,
                amount=difference,
                payee=RECONCILIATION_PAYEE,
                memo=f"Reconciliation adjustment: {verb} {abs(difference)}",
                is_reconciled=True,
            )
            logger.info("reconciliation adjustment account=%s amount=%s", account.id, difference)

        pending = (
            db.execute(
                select(Transaction).where(
                    Transaction.account_id == account.id,
                    Transaction.is_cleared.is_(True),
                    Transaction.is_reconciled.is_(False),
                )
            )
            .scalars()
            .all()
        )
        for txn in pending:
            txn.is_reconciled = True

        account.account_balance = actual
        account.cleared_balance = actual
        account.working_balance = money.add(actual, account.uncleared_balance)
        db.flush()

        out = {
            "account": AccountContract.model_validate(account),
            "adjustment": TransactionContract.model_validate(adjustment) if adjustment else None,
            "reconciled_count": len(pending) + (1 if adjustment else 0),
            "ready_to_assign": _rta(db, account.budget_id, ctx),
            "warnings": effects.warnings,
        }
    return out


def update_tracking_balance(
    db: Session,
    user: User,
    account_id: str,
    new_balance: Any,
    ctx: UserDateContext,
) -> Dict[str, Any]:
    account = require_account(db, account_id, user)
    if account.account_type != "TRACKING":
        raise ValidationError("only tracking accounts support balance updates")
    target = money.to_decimal(new_balance)
    effects = EffectLog()
    with unit_of_work(db, account.budget_id):
        if not account.is_active:
            raise ValidationError("closed accounts cannot be updated")
        adjustment = None
        delta = money.sub(target, account.working_balance)
        if not money.nearly_equal(delta, money.ZERO):
            adjustment = _adjust(db, account, ctx, effects, amount=delta, payee=BALANCE_UPDATE_PAYEE)
        out = {
            "account": AccountContract.model_validate(account),
            "adjustment": TransactionContract.model_validate(adjustment) if adjustment else None,
            "ready_to_assign": _rta(db, account.budget_id, ctx),
        }
    return out


def balance_history(db: Session, user: User, account_id: str) -> List[Dict[str, Any]]:
    """Balance after each transaction, newest first, ending at the starting balance."""
    account = require_account(db, account_id, user)
    if account.account_type != "TRACKING":
        raise ValidationError("balance history is only available for tracking accounts")
    txns = transaction_service.list_for_account(db, user, account_id)

    running = money.to_cents(account.working_balance)
    points = []
    for txn in txns:
        points.append(
            {
                "date": txn.date,
                "balance": money.as_float(money.from_cents(running)),
                "label": txn.payee,
                "transaction_id": txn.id,
            }
        )
        running -= money.to_cents(txn.amount)
    start_date = txns[-1].date if txns else account.created_at.date()
    points.append(
        {
            "date": start_date,
            "balance": money.as_float(money.from_cents(running)),
            "label": "Starting balance",
            "transaction_id": None,
        }
    )
    return points


def transfer_options(db: Session, user: User, account_id: str) -> List[AccountContract]:
    account = require_account(db, account_id, user)
    if account.account_type != "CASH":
        raise ValidationError("transfers can only start from cash accounts")
    allowed = transaction_service.ALLOWED_TRANSFERS["CASH"]
    return [
        AccountContract.model_validate(a)
        for a in active_accounts(db, account.budget_id)
        if a.id != account.id and a.account_type in allowed
    ]


def close_account(db: Session, user: User, account_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    account = require_account(db, account_id, user)
    if not account.is_active:
        raise ValidationError("account is already closed")
    effects = EffectLog()
    with unit_of_work(db, account.budget_id):
        category_balance_service.ensure_period(db, account.budget_id, ctx)
        adjustment = None
        if not money.nearly_equal(account.working_balance, money.ZERO):
            adjustment = _adjust(
                db,
                account,
                ctx,
                effects,
                amount=money.neg(account.working_balance),
                payee=CLOSURE_PAYEE,
                memo="Account closed",
            )

        account.is_active = False
        account.account_balance = money.ZERO
        account.cleared_balance = money.ZERO
        account.uncleared_balance = money.ZERO
        account.working_balance = money.ZERO

        if account.account_type == "CREDIT" and account.payment_category_id:
            payment = db.get(Category, account.payment_category_id)
            if payment is not None and not payment.is_hidden:
                category_service.move_to_hidden(db, payment)
        db.flush()

        out = {
            "account": AccountContract.model_validate(account),
            "adjustment": TransactionContract.model_validate(adjustment) if adjustment else None,
            "ready_to_assign": _rta(db, account.budget_id, ctx),
            "warnings": effects.warnings,
        }
    logger.info("account closed budget=%s account=%s", account.budget_id, account_id)
    return out


def reopen_account(db: Session, user: User, account_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    account = require_account(db, account_id, user)
    if account.is_active:
        raise ValidationError("account is already open")
    with unit_of_work(db, account.budget_id):
        account.is_active = True
        account_balance_service.restore_after_reopen(db, account)

        if account.account_type == "CREDIT" and account.payment_category_id:
            payment = db.get(Category, account.payment_category_id)
            if payment is not None and payment.is_hidden:
                group = category_service.system_group(db, account.budget_id, SYSTEM_KIND_CREDIT_CARD_PAYMENTS)
                category_service.restore_from_hidden(db, payment, group)
        db.flush()

        out = {
            "account": AccountContract.model_validate(account),
            "ready_to_assign": _rta(db, account.budget_id, ctx),
        }
    logger.info("account reopened budget=%s account=%s", account.budget_id, account_id)
    return out


def credit_card_payment(
    db: Session,
    user: User,
    card_id: str,
    ctx: UserDateContext,
    *,
    amount: Any,
    from_account_id: str,
    memo: Optional[str] = None,
    payment_date: Optional[date] = None,
    is_cleared: bool = False,
) -> Dict[str, Any]:
    """
    Pay a card from a cash account: a transfer whose cash side is categorized
    to the card's Payment category, so the Payment envelope gives up the money.
    """
    card = require_account(db, card_id, user)
    source = require_account(db, from_account_id, user)
    if card.account_type != "CREDIT":
        raise ValidationError("payments can only be made to credit accounts")
    if source.account_type != "CASH":
        raise ValidationError("payments must come from a cash account")
    if source.budget_id != card.budget_id:
        raise ValidationError("accounts belong to different budgets")
    value = money.to_decimal(amount)
    if money.to_cents(value) <= 0:
        raise ValidationError("payment amount must be positive")
    if not card.is_active:
        raise ValidationError("credit account is closed")

    effects = EffectLog()
    with unit_of_work(db, card.budget_id):
        category_balance_service.ensure_period(db, card.budget_id, ctx)
        created = transaction_service.insert_transaction(
            db,
            source,
            ctx,
            effects,
            txn_date=payment_date or ctx.today,
            amount=value,
            payee=f"{transaction_service.TRANSFER_PREFIX}{card.name}",
            memo=memo,
            category_id=card.payment_category_id,
            is_cleared=is_cleared,
        )
        payment_rows = category_balance_service.balances_for(
            db, [card.payment_category_id], ctx.year, ctx.month
        )
        out = {
            "transaction": TransactionContract.model_validate(created["transaction"]),
            "linked_transaction": TransactionContract.model_validate(created["peer"]),
            "source_account": AccountContract.model_validate(source),
            "target_account": AccountContract.model_validate(card),
            "payment_category_balance": (
                CategoryBalanceContract.model_validate(payment_rows[0]) if payment_rows else None
            ),
            "ready_to_assign": _rta(db, card.budget_id, ctx),
            "warnings": effects.warnings,
        }
    return out
