from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_BigId = BigInteger().with_variant(Integer, "sqlite")


# ---------------------------
# rc_periods
# ---------------------------


class RcPeriod(Base):
    """Calendar, budget and obligation periods in one table, keyed by ``type``.

    Variant columns are NULL for the other types. The obligation aggregate
    (status/amount_paid/amount_due/progress_percent) is derived from
    ``rc_fragment_references`` and rewritten on every recompute.
    """

    __tablename__ = "rc_periods"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String, nullable=True)
    interval_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    interval_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # calendar
    granularity: Mapped[str | None] = mapped_column(String, nullable=True)
    # budget
    budget_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # obligation
    obligation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    expected_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merchant_hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    amount_due: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    progress_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint(
            "type in ('calendar','budget','obligation')",
            name="ck_rc_periods_type",
        ),
        CheckConstraint(
            "granularity IS NULL OR granularity in ('monthly','weekly','bi_weekly')",
            name="ck_rc_periods_granularity",
        ),
        CheckConstraint(
            "status IS NULL OR status in "
            "('pending','due_soon','partial','paid','paid_early','overdue')",
            name="ck_rc_periods_status",
        ),
        CheckConstraint("interval_start <= interval_end", name="ck_rc_periods_interval"),
        Index("ix_rc_periods_type_owner_start", "type", "owner_id", "interval_start"),
        Index("ix_rc_periods_obligation", "obligation_id"),
    )


# ---------------------------
# rc_transactions / rc_fragments
# ---------------------------


class RcTransaction(Base):
    __tablename__ = "rc_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String, nullable=True)
    merchant_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (Index("ix_rc_transactions_owner_ts", "owner_id", "timestamp"),)


class RcFragment(Base):
    """A split of a transaction; ``position`` preserves document order."""

    __tablename__ = "rc_fragments"

    transaction_id: Mapped[str] = mapped_column(
        String, ForeignKey("rc_transactions.id", ondelete="CASCADE"), primary_key=True
    )
    id: Mapped[str] = mapped_column(String, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    # NULL = not yet evaluated; 'unassigned' = evaluated, nothing applies.
    assigned_budget_id: Mapped[str | None] = mapped_column(String, nullable=True)
    budget_period_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Holds the obligation *period* id.
    assigned_obligation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_classification: Mapped[str | None] = mapped_column(String, nullable=True)
    calendar_monthly_id: Mapped[str | None] = mapped_column(String, nullable=True)
    calendar_weekly_id: Mapped[str | None] = mapped_column(String, nullable=True)
    calendar_bi_weekly_id: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint(
            "payment_classification IS NULL OR payment_classification in "
            "('regular','catch_up','advance','extra_principal')",
            name="ck_rc_fragments_classification",
        ),
    )


# ---------------------------
# rc_fragment_references
# ---------------------------


class RcFragmentReference(Base):
    """Append-only match record; one row per ``(transaction_id, fragment_id)``."""

    __tablename__ = "rc_fragment_references"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    period_id: Mapped[str] = mapped_column(
        String, ForeignKey("rc_periods.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    fragment_id: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_classification: Mapped[str] = mapped_column(String, nullable=False)
    matched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    auto_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("transaction_id", "fragment_id", name="uq_rc_refs_tx_fragment"),
        ForeignKeyConstraint(
            ["transaction_id", "fragment_id"],
            ["rc_fragments.transaction_id", "rc_fragments.id"],
            name="fk_rc_refs_fragment",
            ondelete="CASCADE",
        ),
        CheckConstraint(
            "payment_classification in ('regular','catch_up','advance','extra_principal')",
            name="ck_rc_refs_classification",
        ),
        Index("ix_rc_refs_period", "period_id"),
    )


__all__ = [
    "Base",
    "RcFragment",
    "RcFragmentReference",
    "RcPeriod",
    "RcTransaction",
]
