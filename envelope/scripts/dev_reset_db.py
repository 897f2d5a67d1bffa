from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild the development schema and optionally add a demo budget.")
    parser.add_argument("--yes", action="store_true", help="Confirm that every table will be emptied.")
    parser.add_argument("--seed", action="store_true", help="Create a demo budget with the starter categories.")
    parser.add_argument("--email", default="demo@example.com", help="Owner of the demo budget.")
    args = parser.parse_args()

    if not args.yes:
        print("Pass --yes to wipe the development database.")
        return 1

    from envelope.app import config

    logging.basicConfig(level=config.log_level())
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", config.database_url())
    # walk every migration down and back up so the schema matches head exactly
    command.downgrade(alembic_cfg, "base")
    command.upgrade(alembic_cfg, "head")

    if args.seed:
        from envelope.app.db import SessionLocal
        from envelope.app.domain.dates import resolve_user_date
        from envelope.app.models import User
        from envelope.app.services import budget_service

        session = SessionLocal()
        try:
            owner = User(email=args.email, name=args.email.split("@")[0])
            session.add(owner)
            session.commit()
            budget = budget_service.create_budget(session, owner, "My Budget", resolve_user_date())
            print(f"Demo budget {budget.id} owned by {args.email}")
        finally:
            session.close()

    print("Schema is at head.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
