from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy import select


def main() -> int:
    parser = argparse.ArgumentParser(description="Check stored balances against transactions for every budget.")
    parser.add_argument("--budget-id", help="Only audit this budget.")
    parser.add_argument("--repair", action="store_true", help="Recompute broken balances and debt rows.")
    args = parser.parse_args()

    from envelope.app import config
    from envelope.app.db import SessionLocal
    from envelope.app.domain.dates import resolve_user_date
    from envelope.app.models import Budget
    from envelope.app.services import diagnostics_service

    logging.basicConfig(level=config.log_level())
    ctx = resolve_user_date()
    failures = 0

    session = SessionLocal()
    try:
        query = select(Budget.id).order_by(Budget.created_at)
        if args.budget_id:
            query = query.where(Budget.id == args.budget_id)
        budget_ids = session.execute(query).scalars().all()
        if not budget_ids:
            print("No budgets found.")
            return 0 if not args.budget_id else 1

        for budget_id in budget_ids:
            if args.repair:
                report = diagnostics_service.repair_budget(session, budget_id, ctx)
            else:
                report = diagnostics_service.audit_budget(session, budget_id, ctx)
            status = "OK" if report["ok"] else f"{len(report['violations'])} violation(s)"
            print(f"- budget {budget_id}: {status} (ready to assign {report['ready_to_assign']:.2f})")
            for finding in report["violations"]:
                print(f"    [{finding.invariant}] {finding.entity_id}: {finding.message}")
            if not report["ok"]:
                failures += 1
    finally:
        session.close()

    if failures:
        print(f"\nERRORS: {failures} budget(s) failed the audit.")
        return 1
    print("\nOK: all budgets passed the audit.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
