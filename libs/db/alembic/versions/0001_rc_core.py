# ruff: noqa: I001
"""Reconciliation core tables: periods, transactions, fragments, references.

Revision ID: 0001_rc_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_rc_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.current_timestamp(),
    )


def upgrade() -> None:
    # rc_periods
    op.create_table(
        "rc_periods",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("interval_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("interval_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("granularity", sa.String(), nullable=True),
        sa.Column("budget_id", sa.String(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("obligation_id", sa.String(), nullable=True),
        sa.Column("expected_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("merchant_hint", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("amount_paid", sa.Numeric(18, 2), nullable=True),
        sa.Column("amount_due", sa.Numeric(18, 2), nullable=True),
        sa.Column("progress_percent", sa.Numeric(5, 2), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("type in ('calendar','budget','obligation')", name="ck_rc_periods_type"),
        sa.CheckConstraint(
            "granularity IS NULL OR granularity in ('monthly','weekly','bi_weekly')",
            name="ck_rc_periods_granularity",
        ),
        sa.CheckConstraint(
            "status IS NULL OR status in "
            "('pending','due_soon','partial','paid','paid_early','overdue')",
            name="ck_rc_periods_status",
        ),
        sa.CheckConstraint("interval_start <= interval_end", name="ck_rc_periods_interval"),
    )
    op.create_index(
        "ix_rc_periods_type_owner_start",
        "rc_periods",
        ["type", "owner_id", "interval_start"],
    )
    op.create_index("ix_rc_periods_obligation", "rc_periods", ["obligation_id"])

    # rc_transactions
    op.create_table(
        "rc_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("merchant_name", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_rc_transactions_owner_ts", "rc_transactions", ["owner_id", "timestamp"])

    # rc_fragments
    op.create_table(
        "rc_fragments",
        sa.Column(
            "transaction_id",
            sa.String(),
            sa.ForeignKey("rc_transactions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("assigned_budget_id", sa.String(), nullable=True),
        sa.Column("budget_period_id", sa.String(), nullable=True),
        sa.Column("assigned_obligation_id", sa.String(), nullable=True),
        sa.Column("payment_classification", sa.String(), nullable=True),
        sa.Column("calendar_monthly_id", sa.String(), nullable=True),
        sa.Column("calendar_weekly_id", sa.String(), nullable=True),
        sa.Column("calendar_bi_weekly_id", sa.String(), nullable=True),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "payment_classification IS NULL OR payment_classification in "
            "('regular','catch_up','advance','extra_principal')",
            name="ck_rc_fragments_classification",
        ),
    )

    # rc_fragment_references
    op.create_table(
        "rc_fragment_references",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column(
            "period_id",
            sa.String(),
            sa.ForeignKey("rc_periods.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("fragment_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_classification", sa.String(), nullable=False),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("auto_matched", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("transaction_id", "fragment_id", name="uq_rc_refs_tx_fragment"),
        sa.ForeignKeyConstraint(
            ["transaction_id", "fragment_id"],
            ["rc_fragments.transaction_id", "rc_fragments.id"],
            name="fk_rc_refs_fragment",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "payment_classification in ('regular','catch_up','advance','extra_principal')",
            name="ck_rc_refs_classification",
        ),
    )
    op.create_index("ix_rc_refs_period", "rc_fragment_references", ["period_id"])


def downgrade() -> None:
    op.drop_index("ix_rc_refs_period", table_name="rc_fragment_references")
    op.drop_table("rc_fragment_references")
    op.drop_table("rc_fragments")
    op.drop_index("ix_rc_transactions_owner_ts", table_name="rc_transactions")
    op.drop_table("rc_transactions")
    op.drop_index("ix_rc_periods_obligation", table_name="rc_periods")
    op.drop_index("ix_rc_periods_type_owner_start", table_name="rc_periods")
    op.drop_table("rc_periods")
