# ruff: noqa: I001
"""Persistence integration for period_reconciliation.

Functions here read and write periods, transactions and fragment references
in the shared database owned by ``libs/db``. They rely on SQLAlchemy ORM
models defined in ``db.models.reconciliation`` and a session provided by
``db.client``.

Scope:
- Load periods (with their reference lists) and transactions as domain records.
- Upsert period and transaction documents (idempotent on primary keys).
- :class:`SqlReconciliationStore`, the write side used by the orchestrator.

Upserts use ``INSERT .. ON CONFLICT`` for PostgreSQL and SQLite alike; the
insert construct is picked from the session's dialect.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.client import dialect_name
from db.models.reconciliation import RcFragment, RcFragmentReference, RcPeriod, RcTransaction
from .errors import ReconciliationError
from .logging_setup import get_logger
from .models import (
    BudgetPeriod,
    CalendarPeriod,
    CalendarPeriodIds,
    Fragment,
    FragmentReference,
    Granularity,
    ObligationPeriod,
    PaymentClassification,
    Period,
    PeriodStatus,
    PeriodType,
    StatusSnapshot,
    Transaction,
    ensure_aware,
)

logger = get_logger("period_reconciliation.persistence")


def _insert_for(session: Session) -> Callable[..., Any]:
    dialect = dialect_name(session)
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise ReconciliationError(f"Unsupported database dialect for upserts: {dialect}")


# ---------------------------------------------------------------------------
# Row <-> domain conversion
# ---------------------------------------------------------------------------


def _utc(value: datetime | None) -> datetime | None:
    """Store instants in UTC; SQLite keeps only the wall-clock part."""

    if value is None:
        return None
    return ensure_aware(value).astimezone(UTC)


def _reference_from_row(row: RcFragmentReference) -> FragmentReference:
    return FragmentReference(
        transaction_id=row.transaction_id,
        fragment_id=row.fragment_id,
        amount=Decimal(row.amount),
        timestamp=ensure_aware(row.timestamp),
        payment_classification=PaymentClassification(row.payment_classification),
        matched_at=ensure_aware(row.matched_at),
        auto_matched=bool(row.auto_matched),
    )


def _period_from_row(row: RcPeriod, references: Sequence[FragmentReference] = ()) -> Period:
    kind = PeriodType(row.type)
    if kind == PeriodType.CALENDAR:
        if row.granularity is None:
            raise ReconciliationError(f"calendar period {row.id} has no granularity")
        return CalendarPeriod(
            id=row.id,
            interval_start=row.interval_start,
            interval_end=row.interval_end,
            granularity=Granularity(row.granularity),
            owner_id=row.owner_id,
        )
    if kind == PeriodType.BUDGET:
        return BudgetPeriod(
            id=row.id,
            interval_start=row.interval_start,
            interval_end=row.interval_end,
            budget_id=row.budget_id or "",
            owner_id=row.owner_id,
            name=row.name,
        )
    expected = Decimal(row.expected_amount or 0)
    return ObligationPeriod(
        id=row.id,
        interval_start=row.interval_start,
        interval_end=row.interval_end,
        obligation_id=row.obligation_id or "",
        expected_amount=expected,
        owner_id=row.owner_id,
        due_date=row.due_date,
        merchant_hint=row.merchant_hint,
        description=row.description,
        references=tuple(references),
        status=PeriodStatus(row.status) if row.status else PeriodStatus.PENDING,
        amount_paid=Decimal(row.amount_paid or 0),
        amount_due=Decimal(row.amount_due) if row.amount_due is not None else expected,
        progress_percent=Decimal(row.progress_percent or 0),
    )


def _period_values(period: Period) -> dict[str, Any]:
    values: dict[str, Any] = {
        "id": period.id,
        "type": str(period.type),
        "owner_id": period.owner_id,
        "interval_start": _utc(period.interval_start),
        "interval_end": _utc(period.interval_end),
    }
    if isinstance(period, CalendarPeriod):
        values["granularity"] = str(period.granularity)
    elif isinstance(period, BudgetPeriod):
        values.update(budget_id=period.budget_id, name=period.name)
    else:
        values.update(
            obligation_id=period.obligation_id,
            expected_amount=period.expected_amount,
            due_date=_utc(period.due_date),
            merchant_hint=period.merchant_hint,
            description=period.description,
            status=str(period.status),
            amount_paid=period.amount_paid,
            amount_due=period.amount_due,
            progress_percent=period.progress_percent,
        )
    return values


def _fragment_from_row(row: RcFragment) -> Fragment:
    return Fragment(
        id=row.id,
        amount=Decimal(row.amount),
        assigned_budget_id=row.assigned_budget_id,
        budget_period_id=row.budget_period_id,
        assigned_obligation_id=row.assigned_obligation_id,
        payment_classification=(
            PaymentClassification(row.payment_classification)
            if row.payment_classification
            else None
        ),
        calendar_period_ids=CalendarPeriodIds(
            monthly=row.calendar_monthly_id,
            weekly=row.calendar_weekly_id,
            bi_weekly=row.calendar_bi_weekly_id,
        ),
    )


def _fragment_assignment_values(fragment: Fragment) -> dict[str, Any]:
    ids = fragment.calendar_period_ids
    return {
        "assigned_budget_id": fragment.assigned_budget_id,
        "budget_period_id": fragment.budget_period_id,
        "assigned_obligation_id": fragment.assigned_obligation_id,
        "payment_classification": (
            str(fragment.payment_classification) if fragment.payment_classification else None
        ),
        "calendar_monthly_id": ids.monthly,
        "calendar_weekly_id": ids.weekly,
        "calendar_bi_weekly_id": ids.bi_weekly,
    }


def _reference_values(period_id: str, ref: FragmentReference) -> dict[str, Any]:
    return {
        "period_id": period_id,
        "transaction_id": ref.transaction_id,
        "fragment_id": ref.fragment_id,
        "amount": ref.amount,
        "timestamp": _utc(ref.timestamp),
        "payment_classification": str(ref.payment_classification),
        "matched_at": _utc(ref.matched_at),
        "auto_matched": ref.auto_matched,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def load_periods(session: Session, *, owner_id: str | None = None) -> list[Period]:
    """Load periods of every type with their reference lists.

    With ``owner_id`` set, returns that owner's periods plus app-wide ones
    (``owner_id IS NULL``, i.e. calendar periods).
    """

    stmt = select(RcPeriod).order_by(RcPeriod.interval_start, RcPeriod.id)
    if owner_id is not None:
        stmt = stmt.where(or_(RcPeriod.owner_id == owner_id, RcPeriod.owner_id.is_(None)))
    rows = session.scalars(stmt).all()

    obligation_ids = [r.id for r in rows if r.type == PeriodType.OBLIGATION]
    refs: dict[str, list[FragmentReference]] = {}
    if obligation_ids:
        ref_rows = session.scalars(
            select(RcFragmentReference)
            .where(RcFragmentReference.period_id.in_(obligation_ids))
            .order_by(RcFragmentReference.id)
        ).all()
        for ref_row in ref_rows:
            refs.setdefault(ref_row.period_id, []).append(_reference_from_row(ref_row))

    return [_period_from_row(r, refs.get(r.id, ())) for r in rows]


def load_transactions(
    session: Session,
    *,
    owner_id: str | None = None,
    transaction_ids: Sequence[str] | None = None,
) -> list[Transaction]:
    """Load transactions with their fragments, oldest first."""

    stmt = select(RcTransaction).order_by(RcTransaction.timestamp, RcTransaction.id)
    if owner_id is not None:
        stmt = stmt.where(RcTransaction.owner_id == owner_id)
    if transaction_ids is not None:
        stmt = stmt.where(RcTransaction.id.in_(list(transaction_ids)))
    tx_rows = session.scalars(stmt).all()
    if not tx_rows:
        return []

    fragments: dict[str, list[Fragment]] = {}
    frag_rows = session.scalars(
        select(RcFragment)
        .where(RcFragment.transaction_id.in_([t.id for t in tx_rows]))
        .order_by(RcFragment.transaction_id, RcFragment.position, RcFragment.id)
    ).all()
    for row in frag_rows:
        fragments.setdefault(row.transaction_id, []).append(_fragment_from_row(row))

    out: list[Transaction] = []
    for row in tx_rows:
        frags = fragments.get(row.id)
        if not frags:
            logger.warning("Data inconsistency: transaction %s has no splits; skipping", row.id)
            continue
        out.append(
            Transaction(
                id=row.id,
                timestamp=row.timestamp,
                fragments=tuple(frags),
                owner_id=row.owner_id,
                merchant_name=row.merchant_name,
                description=row.description,
            )
        )
    return out


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------


def upsert_periods(session: Session, periods: Iterable[Period]) -> int:
    """Insert or update period rows; obligation references are inserted if missing.

    Existing references are never rewritten (they are append-only).
    """

    insert = _insert_for(session)
    items = list(periods)
    if not items:
        return 0

    for period in items:
        values = _period_values(period)
        stmt = insert(RcPeriod).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[RcPeriod.id],
            set_={
                **{k: getattr(stmt.excluded, k) for k in values if k != "id"},
                "updated_at": func.current_timestamp(),
            },
        )
        session.execute(stmt)

    ref_payloads = [
        _reference_values(p.id, ref)
        for p in items
        if isinstance(p, ObligationPeriod)
        for ref in p.references
    ]
    if ref_payloads:
        stmt = insert(RcFragmentReference).values(ref_payloads)
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[RcFragmentReference.transaction_id, RcFragmentReference.fragment_id]
        )
        session.execute(stmt)
    return len(items)


def upsert_transactions(session: Session, transactions: Iterable[Transaction]) -> int:
    """Insert or update transactions and their fragments (keyed by id)."""

    insert = _insert_for(session)
    count = 0
    for tx in transactions:
        tx_values = {
            "id": tx.id,
            "timestamp": _utc(tx.timestamp),
            "owner_id": tx.owner_id,
            "merchant_name": tx.merchant_name,
            "description": tx.description,
        }
        stmt = insert(RcTransaction).values(**tx_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[RcTransaction.id],
            set_={k: getattr(stmt.excluded, k) for k in tx_values if k != "id"},
        )
        session.execute(stmt)

        for position, fragment in enumerate(tx.fragments):
            frag_values = {
                "transaction_id": tx.id,
                "id": fragment.id,
                "position": position,
                "amount": fragment.amount,
                **_fragment_assignment_values(fragment),
            }
            fstmt = insert(RcFragment).values(**frag_values)
            fstmt = fstmt.on_conflict_do_update(
                index_elements=[RcFragment.transaction_id, RcFragment.id],
                set_={
                    **{
                        k: getattr(fstmt.excluded, k)
                        for k in frag_values
                        if k not in ("transaction_id", "id")
                    },
                    "updated_at": func.current_timestamp(),
                },
            )
            session.execute(fstmt)
        count += 1
    return count


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlReconciliationStore:
    """Orchestrator store over a SQLAlchemy session.

    Each write runs inside a SAVEPOINT on PostgreSQL so a failed item does
    not abort the surrounding transaction. The caller owns commit/rollback
    (see ``db.client.session_scope``).
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._insert = _insert_for(session)
        self._nested = dialect_name(session) == "postgresql"

    @contextmanager
    def _write(self) -> Iterator[None]:
        if self._nested:
            with self._session.begin_nested():
                yield
        else:
            yield

    def update_fragment(self, transaction_id: str, fragment: Fragment) -> None:
        with self._write():
            result = self._session.execute(
                update(RcFragment)
                .where(
                    (RcFragment.transaction_id == transaction_id)
                    & (RcFragment.id == fragment.id)
                )
                .values(
                    **_fragment_assignment_values(fragment),
                    updated_at=func.current_timestamp(),
                )
            )
        if result.rowcount == 0:
            raise ReconciliationError(
                f"Split {fragment.id} of transaction {transaction_id} does not exist"
            )

    def append_reference(self, period_id: str, reference: FragmentReference) -> None:
        stmt = self._insert(RcFragmentReference).values(**_reference_values(period_id, reference))
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[RcFragmentReference.transaction_id, RcFragmentReference.fragment_id]
        )
        with self._write():
            result = self._session.execute(stmt)
        if result.rowcount == 0:
            logger.info(
                "Reference %s/%s already stored; skipping duplicate",
                reference.transaction_id,
                reference.fragment_id,
            )

    def remove_reference(self, period_id: str, transaction_id: str, fragment_id: str) -> None:
        with self._write():
            self._session.execute(
                delete(RcFragmentReference).where(
                    (RcFragmentReference.period_id == period_id)
                    & (RcFragmentReference.transaction_id == transaction_id)
                    & (RcFragmentReference.fragment_id == fragment_id)
                )
            )

    def update_period_status(self, period_id: str, snapshot: StatusSnapshot) -> None:
        with self._write():
            result = self._session.execute(
                update(RcPeriod)
                .where((RcPeriod.id == period_id) & (RcPeriod.type == PeriodType.OBLIGATION.value))
                .values(
                    status=str(snapshot.status),
                    amount_paid=snapshot.amount_paid,
                    amount_due=snapshot.amount_due,
                    progress_percent=snapshot.progress_percent,
                    updated_at=func.current_timestamp(),
                )
            )
        if result.rowcount == 0:
            raise ReconciliationError(f"Obligation period {period_id} does not exist")


__all__ = [
    "SqlReconciliationStore",
    "load_periods",
    "load_transactions",
    "upsert_periods",
    "upsert_transactions",
]
