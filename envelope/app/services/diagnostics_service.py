"""
Invariant audit and repair.

Checks every stored balance against what the transactions imply:
    working_balance    working == cleared + uncleared
    cleared_balance    cleared == account_balance + sum(cleared, unreconciled)
    uncleared_balance  uncleared == sum(uncleared)
    debt_coverage      0 <= covered <= debt
    debt_amount        debt == |transaction amount|, and a debt row exists for every card outflow
    transfer_pair      transfer legs cancel out and agree on date and cleared flag
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.contracts import AuditFinding
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import Account, CreditCardDebtTracking, Transaction, User
from envelope.app.services import (
    account_balance_service,
    credit_card_debt_service,
    ready_to_assign_service,
)
from envelope.app.services.store import require_budget, unit_of_work

logger = logging.getLogger(__name__)

ACCOUNT_CHECKS = ("working_balance", "cleared_balance", "uncleared_balance")


def _account_findings(db: Session, account: Account) -> List[AuditFinding]:
    findings = []
    cleared = money.to_decimal(account.cleared_balance)
    uncleared = money.to_decimal(account.uncleared_balance)
    working = money.to_decimal(account.working_balance)

    if money.to_cents(working) != money.to_cents(cleared) + money.to_cents(uncleared):
        findings.append(
            AuditFinding(
                invariant="working_balance",
                entity_id=account.id,
                message="working balance is not cleared + uncleared",
                expected=money.as_float(money.add(cleared, uncleared)),
                actual=money.as_float(working),
            )
        )
    if not account.is_active:
        return findings

    expected = account_balance_service.expected_balances(db, account)
    if money.to_cents(expected.cleared) != money.to_cents(cleared):
        findings.append(
            AuditFinding(
                invariant="cleared_balance",
                entity_id=account.id,
                message="cleared balance does not match cleared transactions",
                expected=money.as_float(expected.cleared),
                actual=money.as_float(cleared),
            )
        )
    if money.to_cents(expected.uncleared) != money.to_cents(uncleared):
        findings.append(
            AuditFinding(
                invariant="uncleared_balance",
                entity_id=account.id,
                message="uncleared balance does not match uncleared transactions",
                expected=money.as_float(expected.uncleared),
                actual=money.as_float(uncleared),
            )
        )
    return findings


def _debt_findings(db: Session, budget_id: str) -> List[AuditFinding]:
    findings = []
    rows = (
        db.execute(select(CreditCardDebtTracking).where(CreditCardDebtTracking.budget_id == budget_id))
        .scalars()
        .all()
    )
    tracked = set()
    for row in rows:
        tracked.add(row.transaction_id)
        debt = money.to_cents(row.debt_amount)
        covered = money.to_cents(row.covered_amount)
        if covered < 0 or covered > debt:
            findings.append(
                AuditFinding(
                    invariant="debt_coverage",
                    entity_id=row.id,
                    message="covered amount outside [0, debt]",
                    expected=money.as_float(money.from_cents(min(max(covered, 0), debt))),
                    actual=money.as_float(row.covered_amount),
                )
            )
        txn = db.get(Transaction, row.transaction_id)
        if txn is None or money.to_cents(txn.amount) >= 0:
            findings.append(
                AuditFinding(
                    invariant="debt_amount",
                    entity_id=row.id,
                    message="debt row has no matching card outflow",
                    actual=money.as_float(row.debt_amount),
                )
            )
        elif debt != abs(money.to_cents(txn.amount)):
            findings.append(
                AuditFinding(
                    invariant="debt_amount",
                    entity_id=row.id,
                    message="debt amount differs from the transaction amount",
                    expected=money.as_float(abs(money.to_decimal(txn.amount))),
                    actual=money.as_float(row.debt_amount),
                )
            )

    outflows = (
        db.execute(
            select(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.budget_id == budget_id,
                Account.account_type == "CREDIT",
                Transaction.amount < 0,
            )
        )
        .scalars()
        .all()
    )
    for txn in outflows:
        if txn.id not in tracked:
            findings.append(
                AuditFinding(
                    invariant="debt_amount",
                    entity_id=txn.id,
                    message="card outflow has no debt row",
                    expected=money.as_float(abs(money.to_decimal(txn.amount))),
                )
            )
    return findings


def _transfer_findings(db: Session, budget_id: str) -> List[AuditFinding]:
    findings = []
    rows = (
        db.execute(
            select(Transaction).where(
                Transaction.budget_id == budget_id,
                Transaction.transfer_id.is_not(None),
            )
        )
        .scalars()
        .all()
    )
    pairs: Dict[str, List[Transaction]] = defaultdict(list)
    for row in rows:
        pairs[row.transfer_id].append(row)
    for transfer_id, legs in pairs.items():
        if len(legs) != 2:
            findings.append(
                AuditFinding(
                    invariant="transfer_pair",
                    entity_id=transfer_id,
                    message=f"transfer has {len(legs)} legs",
                )
            )
            continue
        first, second = legs
        if money.to_cents(first.amount) + money.to_cents(second.amount) != 0:
            findings.append(
                AuditFinding(
                    invariant="transfer_pair",
                    entity_id=transfer_id,
                    message="transfer amounts do not cancel out",
                    expected=0.0,
                    actual=money.as_float(money.add(first.amount, second.amount)),
                )
            )
        if first.date != second.date or bool(first.is_cleared) != bool(second.is_cleared):
            findings.append(
                AuditFinding(
                    invariant="transfer_pair",
                    entity_id=transfer_id,
                    message="transfer legs disagree on date or cleared flag",
                )
            )
    return findings


def audit_budget(db: Session, budget_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    accounts = db.execute(select(Account).where(Account.budget_id == budget_id)).scalars().all()
    findings: List[AuditFinding] = []
    for account in accounts:
        findings.extend(_account_findings(db, account))
    findings.extend(_debt_findings(db, budget_id))
    findings.extend(_transfer_findings(db, budget_id))

    for finding in findings:
        logger.error(
            "invariant violation budget=%s invariant=%s entity=%s: %s",
            budget_id,
            finding.invariant,
            finding.entity_id,
            finding.message,
        )
    return {
        "budget_id": budget_id,
        "ok": not findings,
        "violations": findings,
        "ready_to_assign": money.as_float(ready_to_assign_service.compute(db, budget_id, ctx)),
    }


def collect_diagnostics(db: Session, user: User, budget_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    return audit_budget(db, budget_id, ctx)


def repair_budget(db: Session, budget_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    """
    Recompute account balances that fail a balance check and bring debt rows back in
    line with their transactions. Returns the audit taken after the repair.
    """
    before = audit_budget(db, budget_id, ctx)
    if before["ok"]:
        return before

    with unit_of_work(db, budget_id):
        broken_accounts = {f.entity_id for f in before["violations"] if f.invariant in ACCOUNT_CHECKS}
        for account_id in broken_accounts:
            account = db.get(Account, account_id)
            if account.is_active:
                account_balance_service.full_recompute(db, account)
            else:
                account.working_balance = money.add(account.cleared_balance, account.uncleared_balance)
            logger.info("repaired balances budget=%s account=%s", budget_id, account_id)

        rows = (
            db.execute(select(CreditCardDebtTracking).where(CreditCardDebtTracking.budget_id == budget_id))
            .scalars()
            .all()
        )
        for row in rows:
            txn = db.get(Transaction, row.transaction_id)
            if txn is None or money.to_cents(txn.amount) >= 0:
                credit_card_debt_service.shift_payment(
                    db, row.credit_card_account_id, money.neg(row.covered_amount), ctx
                )
                db.delete(row)
                logger.info("removed orphan debt row budget=%s debt=%s", budget_id, row.id)
                continue
            # Payment available tracks covered_amount
            covered = money.to_decimal(row.covered_amount)
            row.debt_amount = abs(money.to_decimal(txn.amount))
            row.covered_amount = min(max(covered, money.ZERO), row.debt_amount)
            credit_card_debt_service.shift_payment(
                db, row.credit_card_account_id, money.sub(row.covered_amount, covered), ctx
            )

        tracked = {row.transaction_id for row in rows}
        outflows = (
            db.execute(
                select(Transaction)
                .join(Account, Transaction.account_id == Account.id)
                .where(
                    Transaction.budget_id == budget_id,
                    Account.account_type == "CREDIT",
                    Transaction.amount < 0,
                )
            )
            .scalars()
            .all()
        )
        for txn in outflows:
            if txn.id in tracked:
                continue
            db.add(
                CreditCardDebtTracking(
                    budget_id=budget_id,
                    transaction_id=txn.id,
                    credit_card_account_id=txn.account_id,
                    original_category_id=txn.category_id,
                    debt_amount=abs(money.to_decimal(txn.amount)),
                    covered_amount=money.ZERO,
                )
            )
            logger.info("added missing debt row budget=%s transaction=%s", budget_id, txn.id)
        db.flush()

    return audit_budget(db, budget_id, ctx)


def repair_diagnostics(db: Session, user: User, budget_id: str, ctx: UserDateContext) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    return repair_budget(db, budget_id, ctx)
