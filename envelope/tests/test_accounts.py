import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from envelope.app.domain.dates import resolve_user_date
from envelope.app.domain.errors import ConflictError, ValidationError
from envelope.app.models import Account, Category, Transaction, User
from envelope.app.services import (
    account_service,
    budget_service,
    diagnostics_service,
    transaction_service,
)

MARCH = resolve_user_date(date(2024, 3, 15))


def _create_user(session, prefix: str) -> User:
    user = User(email=f"{prefix}-{uuid.uuid4().hex[:8]}@example.com", name=prefix)
    session.add(user)
    session.commit()
    return user


def _setup(session, prefix: str):
    user = _create_user(session, prefix)
    budget = budget_service.create_budget(session, user, "Accounts", MARCH)
    return user, budget


def _account(session, user, budget_id: str, name: str, account_type: str = "CASH", balance="0"):
    return account_service.create_account(
        session, user, budget_id, MARCH, name=name, account_type=account_type, balance=balance
    )["account"]


def _create(session, user, account_id: str, amount, **kwargs):
    kwargs.setdefault("txn_date", date(2024, 3, 10))
    kwargs.setdefault("payee", "Corner Store")
    return transaction_service.create_transaction(session, user, MARCH, account_id=account_id, amount=amount, **kwargs)


def _fields(session, account_id: str):
    account = session.get(Account, account_id)
    return {
        "account": account.account_balance,
        "cleared": account.cleared_balance,
        "uncleared": account.uncleared_balance,
        "working": account.working_balance,
    }


def test_create_account_validates_type_and_name(sqlite_session):
    user, budget = _setup(sqlite_session, "create")
    _account(sqlite_session, user, budget.id, "Checking")

    with pytest.raises(ValidationError):
        _account(sqlite_session, user, budget.id, "Loan", account_type="MORTGAGE")
    with pytest.raises(ConflictError):
        _account(sqlite_session, user, budget.id, "checking")

    listed = account_service.list_accounts(sqlite_session, user, budget.id)
    assert [a.name for a in listed] == ["Checking"]


def test_reconcile_creates_adjustment_and_marks_cleared(sqlite_session):
    user, budget = _setup(sqlite_session, "reconcile")
    checking = _account(sqlite_session, user, budget.id, "Checking")
    inflow = _create(sqlite_session, user, checking.id, 100, payee="Deposit", is_cleared=True).transaction
    pending = _create(sqlite_session, user, checking.id, -10, payee="Pending").transaction

    out = account_service.reconcile_account(sqlite_session, user, checking.id, 97, MARCH)

    assert out["adjustment"].amount == -3.0
    assert out["adjustment"].is_reconciled
    assert out["adjustment"].payee == account_service.RECONCILIATION_PAYEE
    assert out["reconciled_count"] == 2
    assert _fields(sqlite_session, checking.id) == {
        "account": Decimal("97"),
        "cleared": Decimal("97"),
        "uncleared": Decimal("-10"),
        "working": Decimal("87"),
    }
    assert sqlite_session.get(Transaction, inflow.id).is_reconciled
    assert not sqlite_session.get(Transaction, pending.id).is_reconciled
    assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]

    again = account_service.reconcile_account(sqlite_session, user, checking.id, 97, MARCH)
    assert again["adjustment"] is None
    assert again["reconciled_count"] == 0


def test_reconcile_without_difference_only_marks(sqlite_session):
    user, budget = _setup(sqlite_session, "reconcile-even")
    checking = _account(sqlite_session, user, budget.id, "Checking", balance="50")
    _create(sqlite_session, user, checking.id, -20, is_cleared=True)

    out = account_service.reconcile_account(sqlite_session, user, checking.id, 30, MARCH)

    assert out["adjustment"] is None
    assert out["reconciled_count"] == 1
    assert _fields(sqlite_session, checking.id)["account"] == Decimal("30")


def test_close_with_zero_balance_needs_no_adjustment(sqlite_session):
    user, budget = _setup(sqlite_session, "close-zero")
    spare = _account(sqlite_session, user, budget.id, "Spare")

    out = account_service.close_account(sqlite_session, user, spare.id, MARCH)

    assert out["adjustment"] is None
    assert not out["account"].is_active
    with pytest.raises(ValidationError):
        account_service.close_account(sqlite_session, user, spare.id, MARCH)


def test_close_and_reopen_keeps_invariants(sqlite_session):
    user, budget = _setup(sqlite_session, "close")
    checking = _account(sqlite_session, user, budget.id, "Checking", balance="120")
    _create(sqlite_session, user, checking.id, 50, payee="Refund")

    closed = account_service.close_account(sqlite_session, user, checking.id, MARCH)

    assert closed["adjustment"].amount == -170.0
    assert closed["adjustment"].payee == account_service.CLOSURE_PAYEE
    assert set(_fields(sqlite_session, checking.id).values()) == {Decimal("0")}
    assert closed["ready_to_assign"] == 0.0

    reopened = account_service.reopen_account(sqlite_session, user, checking.id, MARCH)

    assert reopened["account"].is_active
    fields = _fields(sqlite_session, checking.id)
    assert fields["working"] == Decimal("0")
    assert fields["uncleared"] == Decimal("50")
    assert fields["cleared"] == Decimal("-50")
    assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]


def test_closing_a_card_hides_its_payment_category(sqlite_session):
    user, budget = _setup(sqlite_session, "close-card")
    created = account_service.create_account(
        sqlite_session, user, budget.id, MARCH, name="Visa", account_type="CREDIT"
    )
    visa, payment = created["account"], created["payment_category"]

    account_service.close_account(sqlite_session, user, visa.id, MARCH)
    hidden = sqlite_session.get(Category, payment.id)
    assert hidden.is_hidden
    assert hidden.previous_group_id == payment.category_group_id

    account_service.reopen_account(sqlite_session, user, visa.id, MARCH)
    restored = sqlite_session.get(Category, payment.id)
    assert not restored.is_hidden
    assert restored.category_group_id == payment.category_group_id


def test_rename_updates_payment_category_and_transfer_payees(sqlite_session):
    user, budget = _setup(sqlite_session, "rename")
    checking = _account(sqlite_session, user, budget.id, "Checking", balance="300")
    created = account_service.create_account(
        sqlite_session, user, budget.id, MARCH, name="Visa", account_type="CREDIT"
    )
    visa = created["account"]
    _create(sqlite_session, user, checking.id, 100, payee="Transfer : Visa")

    out = account_service.update_account(sqlite_session, user, visa.id, name="Sapphire")

    assert out["payment_category"].name == "Sapphire Payment"
    payees = set(
        sqlite_session.execute(select(Transaction.payee).where(Transaction.account_id == checking.id)).scalars()
    )
    assert payees == {"Transfer : Sapphire"}

    with pytest.raises(ConflictError):
        account_service.update_account(sqlite_session, user, visa.id, name="checking")


def test_tracking_balance_update_and_history(sqlite_session):
    user, budget = _setup(sqlite_session, "tracking")
    house = _account(sqlite_session, user, budget.id, "House", account_type="TRACKING", balance="250000")
    _create(sqlite_session, user, house.id, -1000, payee="Appraisal", txn_date=date(2024, 3, 1))

    out = account_service.update_tracking_balance(sqlite_session, user, house.id, 260000, MARCH)

    assert out["adjustment"].amount == 11000.0
    assert out["account"].working_balance == 260000.0
    assert out["ready_to_assign"] == 0.0

    history = account_service.balance_history(sqlite_session, user, house.id)
    assert [p["balance"] for p in history] == [260000.0, 249000.0, 250000.0]
    assert history[-1]["label"] == "Starting balance"

    unchanged = account_service.update_tracking_balance(sqlite_session, user, house.id, 260000, MARCH)
    assert unchanged["adjustment"] is None


def test_tracking_only_operations_reject_cash(sqlite_session):
    user, budget = _setup(sqlite_session, "tracking-only")
    checking = _account(sqlite_session, user, budget.id, "Checking")
    with pytest.raises(ValidationError):
        account_service.update_tracking_balance(sqlite_session, user, checking.id, 10, MARCH)
    with pytest.raises(ValidationError):
        account_service.balance_history(sqlite_session, user, checking.id)


def test_transfer_options_exclude_self_and_closed(sqlite_session):
    user, budget = _setup(sqlite_session, "options")
    checking = _account(sqlite_session, user, budget.id, "Checking")
    savings = _account(sqlite_session, user, budget.id, "Savings")
    old = _account(sqlite_session, user, budget.id, "Old")
    account_service.close_account(sqlite_session, user, old.id, MARCH)

    options = account_service.transfer_options(sqlite_session, user, checking.id)

    assert [a.id for a in options] == [savings.id]


def test_reorder_accounts(sqlite_session):
    user, budget = _setup(sqlite_session, "reorder")
    first = _account(sqlite_session, user, budget.id, "First")
    second = _account(sqlite_session, user, budget.id, "Second")

    ordered = account_service.reorder_accounts(sqlite_session, user, budget.id, [second.id, first.id])

    assert [a.name for a in ordered] == ["Second", "First"]


def test_card_payment_requires_cash_source(sqlite_session):
    user, budget = _setup(sqlite_session, "pay-rules")
    visa = account_service.create_account(
        sqlite_session, user, budget.id, MARCH, name="Visa", account_type="CREDIT"
    )["account"]
    house = _account(sqlite_session, user, budget.id, "House", account_type="TRACKING")
    with pytest.raises(ValidationError):
        account_service.credit_card_payment(sqlite_session, user, visa.id, MARCH, amount=10, from_account_id=house.id)

    checking = _account(sqlite_session, user, budget.id, "Checking", balance="100")
    with pytest.raises(ValidationError):
        account_service.credit_card_payment(sqlite_session, user, visa.id, MARCH, amount=0, from_account_id=checking.id)
