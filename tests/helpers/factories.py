"""Small builders for domain records used across the test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from period_reconciliation.models import (
    BudgetPeriod,
    CalendarPeriod,
    Fragment,
    FragmentReference,
    Granularity,
    ObligationPeriod,
    PaymentClassification,
    Transaction,
)


def ts(day: str, hour: int = 12) -> datetime:
    """``"2025-03-10"`` -> aware UTC datetime at ``hour``:00."""

    return datetime.fromisoformat(day).replace(hour=hour, tzinfo=UTC)


def day_start(day: str) -> datetime:
    return datetime.fromisoformat(day).replace(tzinfo=UTC)


def day_end(day: str) -> datetime:
    return day_start(day) + timedelta(days=1) - timedelta(microseconds=1)


def monthly(period_id: str, start: str, end: str) -> CalendarPeriod:
    return CalendarPeriod(
        id=period_id,
        interval_start=day_start(start),
        interval_end=day_end(end),
        granularity=Granularity.MONTHLY,
    )


def budget(
    period_id: str,
    start: str,
    end: str,
    *,
    budget_id: str = "b-groceries",
    owner_id: str | None = "u1",
) -> BudgetPeriod:
    return BudgetPeriod(
        id=period_id,
        interval_start=day_start(start),
        interval_end=day_end(end),
        budget_id=budget_id,
        owner_id=owner_id,
    )


def obligation(
    period_id: str,
    start: str = "2025-03-01",
    end: str = "2025-03-31",
    *,
    due: str | None = "2025-03-15",
    expected: str = "1200",
    obligation_id: str = "ob-rent",
    owner_id: str | None = "u1",
    merchant_hint: str | None = "ACME Property Mgmt",
    references: tuple[FragmentReference, ...] = (),
) -> ObligationPeriod:
    return ObligationPeriod(
        id=period_id,
        interval_start=day_start(start),
        interval_end=day_end(end),
        obligation_id=obligation_id,
        expected_amount=Decimal(expected),
        owner_id=owner_id,
        due_date=day_start(due) if due else None,
        merchant_hint=merchant_hint,
        references=references,
    )


def reference(
    tx_id: str,
    amount: str,
    when: datetime,
    *,
    fragment_id: str = "f1",
    classification: PaymentClassification = PaymentClassification.REGULAR,
) -> FragmentReference:
    return FragmentReference(
        transaction_id=tx_id,
        fragment_id=fragment_id,
        amount=Decimal(amount),
        timestamp=when,
        payment_classification=classification,
        matched_at=when,
    )


def transaction(
    tx_id: str,
    when: datetime,
    *amounts: str,
    merchant: str | None = "ACME PROPERTY MGMT",
    owner_id: str | None = "u1",
) -> Transaction:
    """A transaction with one fragment per amount (ids ``f1``, ``f2`` ...)."""

    frags = tuple(
        Fragment(id=f"f{i}", amount=Decimal(a)) for i, a in enumerate(amounts or ("1200",), 1)
    )
    return Transaction(
        id=tx_id, timestamp=when, fragments=frags, owner_id=owner_id, merchant_name=merchant
    )
