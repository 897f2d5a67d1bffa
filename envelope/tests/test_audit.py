import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select

from envelope.app.domain.dates import resolve_user_date
from envelope.app.models import Account, Category, CreditCardDebtTracking, Transaction, User
from envelope.app.services import (
    account_service,
    budget_service,
    category_balance_service,
    category_service,
    credit_card_debt_service,
    diagnostics_service,
    transaction_service,
)

MARCH = resolve_user_date(date(2024, 3, 15))


def _create_user(session, prefix: str) -> User:
    user = User(email=f"{prefix}-{uuid.uuid4().hex[:8]}@example.com", name=prefix)
    session.add(user)
    session.commit()
    return user


def _seed(session, prefix: str):
    user = _create_user(session, prefix)
    budget = budget_service.create_budget(session, user, "Audited", MARCH)
    checking = account_service.create_account(
        session, user, budget.id, MARCH, name="Checking", account_type="CASH", balance="250"
    )["account"]
    visa = account_service.create_account(
        session, user, budget.id, MARCH, name="Visa", account_type="CREDIT"
    )["account"]
    dining = (
        session.execute(select(Category).where(Category.budget_id == budget.id, Category.name == "Dining Out"))
        .scalars()
        .one()
    )
    spend = transaction_service.create_transaction(
        session,
        user,
        MARCH,
        account_id=visa.id,
        txn_date=date(2024, 3, 3),
        amount=-40,
        payee="Bistro",
        category_id=dining.id,
    ).transaction
    transaction_service.create_transaction(
        session,
        user,
        MARCH,
        account_id=checking.id,
        txn_date=date(2024, 3, 4),
        amount=25,
        payee="Transfer : Visa",
        is_cleared=True,
    )
    return user, budget, checking, visa, spend


def _invariants(report):
    return sorted(f.invariant for f in report["violations"])


def test_consistent_budget_passes_audit(sqlite_session):
    user, budget, _, _, _ = _seed(sqlite_session, "clean")
    report = diagnostics_service.collect_diagnostics(sqlite_session, user, budget.id, MARCH)
    assert report["ok"]
    assert report["violations"] == []
    assert report["ready_to_assign"] == 225.0


def test_audit_flags_and_repairs_drifted_balances(sqlite_session):
    user, budget, checking, _, _ = _seed(sqlite_session, "drift")
    account = sqlite_session.get(Account, checking.id)
    account.working_balance = Decimal("999")
    account.uncleared_balance = Decimal("12")
    sqlite_session.commit()

    report = diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)
    assert _invariants(report) == ["uncleared_balance", "working_balance"]

    repaired = diagnostics_service.repair_diagnostics(sqlite_session, user, budget.id, MARCH)
    assert repaired["ok"]
    account = sqlite_session.get(Account, checking.id)
    assert account.working_balance == Decimal("225")
    assert account.uncleared_balance == Decimal("0")


def test_audit_flags_and_repairs_debt_rows(sqlite_session):
    user, budget, _, visa, spend = _seed(sqlite_session, "debt")
    row = credit_card_debt_service.get_debt(sqlite_session, spend.id)
    row.covered_amount = Decimal("55")
    sqlite_session.commit()

    assert _invariants(diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)) == ["debt_coverage"]

    sqlite_session.execute(delete(CreditCardDebtTracking).where(CreditCardDebtTracking.transaction_id == spend.id))
    sqlite_session.commit()
    assert _invariants(diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)) == ["debt_amount"]

    repaired = diagnostics_service.repair_budget(sqlite_session, budget.id, MARCH)
    assert repaired["ok"]
    restored = credit_card_debt_service.get_debt(sqlite_session, spend.id)
    assert restored.debt_amount == Decimal("40")
    assert restored.covered_amount == Decimal("0")
    assert [d.transaction_id for d in credit_card_debt_service.list_debts(sqlite_session, visa.id)] == [spend.id]


def test_repair_keeps_payment_category_in_step_with_coverage(sqlite_session):
    user, budget, _, visa, spend = _seed(sqlite_session, "repair-cover")
    dining = sqlite_session.get(Category, spend.category_id)
    category_service.update_category(sqlite_session, user, dining.id, MARCH, assigned=40)
    payment_id = sqlite_session.get(Account, visa.id).payment_category_id
    assert category_balance_service.get_balance(sqlite_session, payment_id, 2024, 3).available == Decimal("40")

    sqlite_session.get(Transaction, spend.id).amount = Decimal("-25")
    sqlite_session.commit()

    repaired = diagnostics_service.repair_budget(sqlite_session, budget.id, MARCH)

    assert repaired["ok"]
    assert credit_card_debt_service.get_debt(sqlite_session, spend.id).covered_amount == Decimal("25")
    assert category_balance_service.get_balance(sqlite_session, payment_id, 2024, 3).available == Decimal("25")


def test_audit_flags_broken_transfer_pairs(sqlite_session):
    _, budget, checking, _, _ = _seed(sqlite_session, "transfer")
    leg = (
        sqlite_session.execute(
            select(Transaction).where(Transaction.account_id == checking.id, Transaction.transfer_id.is_not(None))
        )
        .scalars()
        .one()
    )
    leg.date = date(2024, 3, 9)
    sqlite_session.commit()

    report = diagnostics_service.audit_budget(sqlite_session, budget.id, MARCH)
    assert _invariants(report) == ["transfer_pair"]
    assert report["violations"][0].entity_id == leg.transfer_id


def test_audit_endpoint_reports_violations(api_client, sqlite_session):
    headers = {"X-User-Email": f"audit-{uuid.uuid4().hex[:8]}@example.com"}
    resp = api_client.post("/api/budgets", json={"name": "Audit API", "userDate": "2024-03-15"}, headers=headers)
    budget_id = resp.json()["id"]
    resp = api_client.post(
        f"/api/budgets/{budget_id}/accounts",
        json={"name": "Checking", "account_type": "CASH", "balance": 10, "userDate": "2024-03-15"},
        headers=headers,
    )
    account = sqlite_session.get(Account, resp.json()["account"]["id"])
    account.cleared_balance = Decimal("11")
    sqlite_session.commit()

    report = api_client.get(f"/api/budgets/{budget_id}/audit", params={"userDate": "2024-03-15"}, headers=headers)
    assert report.status_code == 200
    assert report.json()["ok"] is False
    assert {v["invariant"] for v in report.json()["violations"]} == {"cleared_balance", "working_balance"}

    repaired = api_client.post(
        f"/api/budgets/{budget_id}/audit/repair", params={"userDate": "2024-03-15"}, headers=headers
    )
    assert repaired.status_code == 200
    assert repaired.json()["ok"] is True
