"""Create budget engine tables.

Revision ID: 5c1e2a9d7b10
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1e2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("name_key", sa.String(length=200), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("currency_placement", sa.String(length=8), nullable=False),
        sa.Column("number_format", sa.String(length=20), nullable=False),
        sa.Column("date_format", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("owner_id", "name_key", name="uq_budget_owner_name"),
    )
    op.create_index("ix_budgets_owner_id", "budgets", ["owner_id"])

    op.create_table(
        "category_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("is_system_group", sa.Boolean(), nullable=False),
        sa.Column("system_kind", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_category_groups_budget_id", "category_groups", ["budget_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("category_group_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.Column("previous_group_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_group_id"], ["category_groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["previous_group_id"], ["category_groups.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_categories_budget_id", "categories", ["budget_id"])
    op.create_index("ix_categories_category_group_id", "categories", ["category_group_id"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("name_key", sa.String(length=200), nullable=False),
        sa.Column("account_type", sa.String(length=16), nullable=False),
        sa.Column("account_balance", MONEY, nullable=False),
        sa.Column("cleared_balance", MONEY, nullable=False),
        sa.Column("uncleared_balance", MONEY, nullable=False),
        sa.Column("working_balance", MONEY, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("payment_category_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("budget_id", "name_key", name="uq_account_budget_name"),
    )
    op.create_index("ix_accounts_budget_id", "accounts", ["budget_id"])
    op.create_index("ix_accounts_budget_active", "accounts", ["budget_id", "is_active"])

    op.create_table(
        "category_balances",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("category_id", sa.String(length=36), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("assigned", MONEY, nullable=False),
        sa.Column("activity", MONEY, nullable=False),
        sa.Column("available", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("category_id", "year", "month", name="uq_category_balance_period"),
    )
    op.create_index("ix_category_balances_category_id", "category_balances", ["category_id"])
    op.create_index("ix_category_balances_budget_period", "category_balances", ["budget_id", "year", "month"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("category_id", sa.String(length=36), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payee", sa.String(length=200), nullable=False),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("is_cleared", sa.Boolean(), nullable=False),
        sa.Column("is_reconciled", sa.Boolean(), nullable=False),
        sa.Column("transfer_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_transactions_category_id", "transactions", ["category_id"])
    op.create_index("ix_transactions_transfer_id", "transactions", ["transfer_id"])
    op.create_index("ix_transactions_account_date", "transactions", ["account_id", "date"])
    op.create_index("ix_transactions_budget_date", "transactions", ["budget_id", "date"])

    op.create_table(
        "credit_card_debt_tracking",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("transaction_id", sa.String(length=36), nullable=False),
        sa.Column("credit_card_account_id", sa.String(length=36), nullable=False),
        sa.Column("original_category_id", sa.String(length=36), nullable=True),
        sa.Column("debt_amount", MONEY, nullable=False),
        sa.Column("covered_amount", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["credit_card_account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["original_category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_credit_card_debt_tracking_budget_id", "credit_card_debt_tracking", ["budget_id"])
    op.create_index(
        "ix_credit_card_debt_tracking_credit_card_account_id",
        "credit_card_debt_tracking",
        ["credit_card_account_id"],
    )
    op.create_index("ix_cc_debt_category", "credit_card_debt_tracking", ["original_category_id", "created_at"])


def downgrade() -> None:
    op.drop_table("credit_card_debt_tracking")
    op.drop_table("transactions")
    op.drop_table("category_balances")
    op.drop_table("accounts")
    op.drop_table("categories")
    op.drop_table("category_groups")
    op.drop_table("budgets")
    op.drop_table("users")
