import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from envelope.app.domain.dates import resolve_user_date
from envelope.app.models import Account, Category, User
from envelope.app.services import (
    account_service,
    budget_service,
    category_balance_service,
    category_service,
    credit_card_debt_service,
    diagnostics_service,
    ready_to_assign_service,
    transaction_service,
)

MARCH = resolve_user_date(date(2024, 3, 15))


def _create_user(session, prefix: str) -> User:
    user = User(email=f"{prefix}-{uuid.uuid4().hex[:8]}@example.com", name=prefix)
    session.add(user)
    session.commit()
    return user


def _category(session, budget_id: str, name: str) -> Category:
    return (
        session.execute(select(Category).where(Category.budget_id == budget_id, Category.name == name))
        .scalars()
        .one()
    )


def _available(session, category_id: str) -> Decimal:
    return category_balance_service.get_balance(session, category_id, 2024, 3).available


def _rta(session, budget_id: str) -> Decimal:
    return ready_to_assign_service.compute(session, budget_id, MARCH)


def _funded_card(session, prefix: str):
    """Checking with $100 in it, $40 assigned to Dining Out, and an empty Visa card."""
    user = _create_user(session, prefix)
    budget = budget_service.create_budget(session, user, "Cards", MARCH)
    checking = account_service.create_account(
        session, user, budget.id, MARCH, name="Checking", account_type="CASH"
    )["account"]
    created = account_service.create_account(session, user, budget.id, MARCH, name="Visa", account_type="CREDIT")
    visa, payment = created["account"], created["payment_category"]
    transaction_service.create_transaction(
        session,
        user,
        MARCH,
        account_id=checking.id,
        txn_date=date(2024, 3, 1),
        amount=100,
        payee="Paycheck",
        is_cleared=True,
    )
    dining = _category(session, budget.id, "Dining Out")
    category_service.update_category(session, user, dining.id, MARCH, assigned=40)
    return user, budget, checking, visa, payment, dining


def _spend(session, user, visa_id: str, category_id: str, amount) -> str:
    result = transaction_service.create_transaction(
        session,
        user,
        MARCH,
        account_id=visa_id,
        txn_date=date(2024, 3, 10),
        amount=amount,
        payee="Bistro",
        category_id=category_id,
    )
    return result.transaction.id


def test_credit_account_gets_payment_category(sqlite_session):
    _, budget, _, visa, payment, _ = _funded_card(sqlite_session, "payment-cat")
    assert payment.name == "Visa Payment"
    assert visa.payment_category_id == payment.id
    group = category_service.system_group(sqlite_session, budget.id, "credit_card_payments")
    assert payment.category_group_id == group.id


def test_card_spend_moves_covered_part_into_payment(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "cover")

    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -70)

    debt = credit_card_debt_service.get_debt(sqlite_session, txn_id)
    assert debt.debt_amount == Decimal("70")
    assert debt.covered_amount == Decimal("40")
    assert _available(sqlite_session, payment.id) == Decimal("40")
    assert _available(sqlite_session, dining.id) == Decimal("-30")
    assert _rta(sqlite_session, budget.id) == Decimal("60")


def test_assigning_later_covers_outstanding_debt(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "later")
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -70)

    out = category_service.update_category(sqlite_session, user, dining.id, MARCH, assigned=90)

    debt = credit_card_debt_service.get_debt(sqlite_session, txn_id)
    assert debt.covered_amount == Decimal("70")
    assert _available(sqlite_session, payment.id) == Decimal("70")
    assert _available(sqlite_session, dining.id) == Decimal("20")
    assert out["ready_to_assign"] == 10.0
    assert [b.category_id for b in out["payment_category_balances"]] == [payment.id]


def test_paying_the_card_drains_payment_category(sqlite_session):
    user, budget, checking, visa, payment, dining = _funded_card(sqlite_session, "pay")
    _spend(sqlite_session, user, visa.id, dining.id, -70)
    category_service.update_category(sqlite_session, user, dining.id, MARCH, assigned=90)

    out = account_service.credit_card_payment(
        sqlite_session, user, visa.id, MARCH, amount=70, from_account_id=checking.id, is_cleared=True
    )

    assert out["transaction"].amount == -70.0
    assert out["transaction"].category_id == payment.id
    assert out["linked_transaction"].amount == 70.0
    assert out["payment_category_balance"].available == 0.0
    assert out["source_account"].working_balance == 30.0
    assert out["target_account"].working_balance == 0.0
    assert out["ready_to_assign"] == 10.0
    assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]


def test_deleting_card_spend_restores_envelopes(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "undo")
    before = (_available(sqlite_session, payment.id), _available(sqlite_session, dining.id), _rta(sqlite_session, budget.id))

    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -70)
    transaction_service.delete_transaction(sqlite_session, user, txn_id, MARCH)

    after = (_available(sqlite_session, payment.id), _available(sqlite_session, dining.id), _rta(sqlite_session, budget.id))
    assert after == before
    assert credit_card_debt_service.get_debt(sqlite_session, txn_id) is None
    assert sqlite_session.get(Account, visa.id).working_balance == Decimal("0")


def test_editing_amount_there_and_back_is_neutral(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "edit")
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -70)
    snapshot = (
        _available(sqlite_session, payment.id),
        _available(sqlite_session, dining.id),
        credit_card_debt_service.get_debt(sqlite_session, txn_id).covered_amount,
    )

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"amount": -60}, MARCH)
    assert _available(sqlite_session, dining.id) == Decimal("-20")
    assert _available(sqlite_session, payment.id) == Decimal("40")

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"amount": -70}, MARCH)
    again = (
        _available(sqlite_session, payment.id),
        _available(sqlite_session, dining.id),
        credit_card_debt_service.get_debt(sqlite_session, txn_id).covered_amount,
    )
    assert again == snapshot


def test_recategorizing_card_spend_recomputes_coverage(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "recat")
    groceries = _category(sqlite_session, budget.id, "Groceries")
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -70)

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"category_id": groceries.id}, MARCH)

    debt = credit_card_debt_service.get_debt(sqlite_session, txn_id)
    assert debt.original_category_id == groceries.id
    assert debt.covered_amount == Decimal("0")
    assert _available(sqlite_session, payment.id) == Decimal("0")
    assert _available(sqlite_session, dining.id) == Decimal("40")
    assert _available(sqlite_session, groceries.id) == Decimal("-70")


def test_card_refund_creates_no_debt(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "refund")
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, 25)

    assert credit_card_debt_service.get_debt(sqlite_session, txn_id) is None
    assert _available(sqlite_session, payment.id) == Decimal("0")
    assert _available(sqlite_session, dining.id) == Decimal("65")


def test_flipping_spend_to_refund_drops_debt_row(sqlite_session):
    user, budget, _, visa, payment, dining = _funded_card(sqlite_session, "flip")
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -30)
    assert _available(sqlite_session, payment.id) == Decimal("30")

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"amount": 30}, MARCH)

    assert credit_card_debt_service.get_debt(sqlite_session, txn_id) is None
    assert _available(sqlite_session, payment.id) == Decimal("0")
    assert _available(sqlite_session, dining.id) == Decimal("70")
    assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]


def test_moving_spend_to_another_card_and_back_is_neutral(sqlite_session):
    user, budget, _, visa, visa_payment, dining = _funded_card(sqlite_session, "switch")
    created = account_service.create_account(sqlite_session, user, budget.id, MARCH, name="Amex", account_type="CREDIT")
    amex, amex_payment = created["account"], created["payment_category"]
    txn_id = _spend(sqlite_session, user, visa.id, dining.id, -30)

    def snapshot():
        return (
            _available(sqlite_session, visa_payment.id),
            _available(sqlite_session, amex_payment.id),
            _available(sqlite_session, dining.id),
            _rta(sqlite_session, budget.id),
        )

    before = snapshot()
    assert before == (Decimal("30"), Decimal("0"), Decimal("10"), Decimal("60"))

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"account_id": amex.id}, MARCH)
    assert snapshot() == (Decimal("0"), Decimal("30"), Decimal("10"), Decimal("60"))
    debt = credit_card_debt_service.get_debt(sqlite_session, txn_id)
    assert (debt.credit_card_account_id, debt.covered_amount) == (amex.id, Decimal("30"))

    transaction_service.update_transaction(sqlite_session, user, txn_id, {"account_id": visa.id}, MARCH)
    assert snapshot() == before
    assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]


def test_deleting_card_payment_refills_payment_category(sqlite_session):
    user, budget, checking, visa, payment, dining = _funded_card(sqlite_session, "unpay")
    _spend(sqlite_session, user, visa.id, dining.id, -70)
    category_service.update_category(sqlite_session, user, dining.id, MARCH, assigned=90)
    before = (
        _available(sqlite_session, payment.id),
        _rta(sqlite_session, budget.id),
        sqlite_session.get(Account, checking.id).working_balance,
    )
    assert before[:2] == (Decimal("70"), Decimal("10"))

    for side in ("transaction", "linked_transaction"):
        paid = account_service.credit_card_payment(
            sqlite_session, user, visa.id, MARCH, amount=70, from_account_id=checking.id
        )
        assert _available(sqlite_session, payment.id) == Decimal("0")

        transaction_service.delete_transaction(sqlite_session, user, paid[side].id, MARCH)

        after = (
            _available(sqlite_session, payment.id),
            _rta(sqlite_session, budget.id),
            sqlite_session.get(Account, checking.id).working_balance,
        )
        assert after == before
        assert sqlite_session.get(Account, visa.id).working_balance == Decimal("-70")
        assert diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)["ok"]
