"""add auto assign configurations

Revision ID: 7d2f6b3a9c41
Revises: 5c1e2a9d7b10
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "7d2f6b3a9c41"
down_revision: Union[str, Sequence[str], None] = "5c1e2a9d7b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "auto_assign_configurations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("budget_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("category_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("budget_id", "name", "category_id", name="uq_auto_assign_line"),
    )
    op.create_index(
        "ix_auto_assign_budget_name", "auto_assign_configurations", ["budget_id", "name"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_auto_assign_budget_name", table_name="auto_assign_configurations")
    op.drop_table("auto_assign_configurations")
