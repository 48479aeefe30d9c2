"""Data models for ``period_reconciliation``.

Periods are a tagged variant of three frozen dataclasses sharing the
``id``/``type``/``interval_start``/``interval_end`` surface so interval
queries can be written once. Transactions carry one or more independently
assignable fragments ("splits"). Obligation periods keep an append-only tuple
of :class:`FragmentReference` records from which every aggregate field is
derived.

All records are immutable; engine functions return updated copies built with
:func:`dataclasses.replace`. Money is :class:`~decimal.Decimal` and every
timestamp is timezone-aware (see :func:`ensure_aware`).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import ClassVar

# Budget/obligation fields hold this value once evaluated with no applicable
# period; ``None`` means "not yet evaluated".
UNASSIGNED = "unassigned"

_ZERO = Decimal("0")


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` with UTC attached when it is naive."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_assigned(value: str | None) -> bool:
    """True when a budget/obligation field holds a real id (not None/sentinel)."""

    return value is not None and value != UNASSIGNED


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PeriodType(StrEnum):
    CALENDAR = "calendar"
    BUDGET = "budget"
    OBLIGATION = "obligation"


class Granularity(StrEnum):
    """Calendar ("source") period granularities; not disjoint with each other."""

    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"


class PaymentClassification(StrEnum):
    REGULAR = "regular"
    CATCH_UP = "catch_up"
    ADVANCE = "advance"
    EXTRA_PRINCIPAL = "extra_principal"


class PeriodStatus(StrEnum):
    PENDING = "pending"
    DUE_SOON = "due_soon"
    PARTIAL = "partial"
    PAID = "paid"
    PAID_EARLY = "paid_early"
    OVERDUE = "overdue"


# ---------------------------------------------------------------------------
# References and fragments
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FragmentReference:
    """Immutable record attached to an obligation period on a successful match.

    ``(transaction_id, fragment_id)`` identifies the reference; a period never
    holds two references with the same key.
    """

    transaction_id: str
    fragment_id: str
    amount: Decimal
    timestamp: datetime
    payment_classification: PaymentClassification
    matched_at: datetime
    auto_matched: bool = True

    @property
    def key(self) -> tuple[str, str]:
        return (self.transaction_id, self.fragment_id)


@dataclass(frozen=True, slots=True)
class CalendarPeriodIds:
    """Calendar period ids per granularity; unmatched granularities stay ``None``."""

    monthly: str | None = None
    weekly: str | None = None
    bi_weekly: str | None = None

    def get(self, granularity: Granularity) -> str | None:
        return getattr(self, granularity.value)


@dataclass(frozen=True, slots=True)
class Fragment:
    """An independently assignable portion of a transaction's amount."""

    id: str
    amount: Decimal
    assigned_budget_id: str | None = None
    budget_period_id: str | None = None
    # Holds the obligation *period* id once matched.
    assigned_obligation_id: str | None = None
    payment_classification: PaymentClassification | None = None
    calendar_period_ids: CalendarPeriodIds = field(default_factory=CalendarPeriodIds)

    @property
    def has_obligation(self) -> bool:
        return is_assigned(self.assigned_obligation_id)


@dataclass(frozen=True, slots=True)
class Transaction:
    """An external bank event with one or more fragments."""

    id: str
    timestamp: datetime
    fragments: tuple[Fragment, ...]
    owner_id: str | None = None
    merchant_name: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_aware(self.timestamp))
        object.__setattr__(self, "fragments", tuple(self.fragments))
        ids = [f.id for f in self.fragments]
        if len(ids) != len(set(ids)):
            raise ValueError(f"transaction {self.id!r} has duplicate fragment ids")

    def fragment(self, fragment_id: str) -> Fragment | None:
        for frag in self.fragments:
            if frag.id == fragment_id:
                return frag
        return None

    def with_fragment(self, fragment: Fragment) -> Transaction:
        """Return a copy with the fragment of the same id replaced."""

        if self.fragment(fragment.id) is None:
            raise KeyError(f"fragment {fragment.id!r} not found in transaction {self.id!r}")
        return replace(
            self,
            fragments=tuple(fragment if f.id == fragment.id else f for f in self.fragments),
        )


# ---------------------------------------------------------------------------
# Periods (tagged variant)
# ---------------------------------------------------------------------------


def _check_interval(period_id: str, start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = ensure_aware(start), ensure_aware(end)
    if start > end:
        raise ValueError(f"period {period_id!r} starts after it ends")
    return start, end


@dataclass(frozen=True, slots=True)
class CalendarPeriod:
    """Generic weekly/monthly/bi-weekly bucket; app-wide unless ``owner_id`` is set."""

    type: ClassVar[PeriodType] = PeriodType.CALENDAR

    id: str
    interval_start: datetime
    interval_end: datetime
    granularity: Granularity
    owner_id: str | None = None

    def __post_init__(self) -> None:
        start, end = _check_interval(self.id, self.interval_start, self.interval_end)
        object.__setattr__(self, "interval_start", start)
        object.__setattr__(self, "interval_end", end)


@dataclass(frozen=True, slots=True)
class BudgetPeriod:
    """One period instance of a user-defined budget."""

    type: ClassVar[PeriodType] = PeriodType.BUDGET

    id: str
    interval_start: datetime
    interval_end: datetime
    budget_id: str
    owner_id: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        start, end = _check_interval(self.id, self.interval_start, self.interval_end)
        object.__setattr__(self, "interval_start", start)
        object.__setattr__(self, "interval_end", end)


@dataclass(frozen=True, slots=True)
class ObligationPeriod:
    """A time-bounded instance of a recurring bill or income stream.

    ``due_date`` is set only when a due event falls inside the interval. The
    aggregate fields (``status``, ``amount_paid``, ``amount_due``,
    ``progress_percent``) are derived from ``references`` by
    :func:`period_reconciliation.status.recompute_status` and are never
    authoritative.
    """

    type: ClassVar[PeriodType] = PeriodType.OBLIGATION

    id: str
    interval_start: datetime
    interval_end: datetime
    obligation_id: str
    expected_amount: Decimal
    owner_id: str | None = None
    due_date: datetime | None = None
    merchant_hint: str | None = None
    description: str | None = None
    references: tuple[FragmentReference, ...] = ()
    status: PeriodStatus = PeriodStatus.PENDING
    amount_paid: Decimal = _ZERO
    amount_due: Decimal | None = None
    progress_percent: Decimal = _ZERO

    def __post_init__(self) -> None:
        start, end = _check_interval(self.id, self.interval_start, self.interval_end)
        object.__setattr__(self, "interval_start", start)
        object.__setattr__(self, "interval_end", end)
        object.__setattr__(self, "references", tuple(self.references))
        if self.due_date is not None:
            object.__setattr__(self, "due_date", ensure_aware(self.due_date))
        if self.expected_amount < 0:
            raise ValueError(f"period {self.id!r} has a negative expected amount")
        if self.amount_due is None:
            object.__setattr__(self, "amount_due", self.expected_amount)

    @property
    def is_claimed(self) -> bool:
        """A period is claimed once it holds at least one reference."""

        return bool(self.references)

    def has_reference(self, transaction_id: str, fragment_id: str) -> bool:
        return any(ref.key == (transaction_id, fragment_id) for ref in self.references)


type Period = CalendarPeriod | BudgetPeriod | ObligationPeriod
"""Any of the three period variants, discriminated by ``type``."""


# ---------------------------------------------------------------------------
# Aggregates, mutations and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Output of the status aggregator; a pure function of the reference list."""

    status: PeriodStatus
    amount_paid: Decimal
    amount_due: Decimal
    progress_percent: Decimal


@dataclass(frozen=True, slots=True)
class FragmentUpdate:
    """Persist the fragment's assignment fields on its transaction."""

    transaction_id: str
    fragment: Fragment


@dataclass(frozen=True, slots=True)
class ReferenceAppend:
    """Append ``reference`` to the obligation period ``period_id``."""

    period_id: str
    reference: FragmentReference


@dataclass(frozen=True, slots=True)
class ReferenceRemoval:
    """Remove the reference keyed by ``(transaction_id, fragment_id)``."""

    period_id: str
    transaction_id: str
    fragment_id: str


@dataclass(frozen=True, slots=True)
class PeriodStatusUpdate:
    """Store the recomputed aggregate on the obligation period ``period_id``."""

    period_id: str
    snapshot: StatusSnapshot


type Mutation = FragmentUpdate | ReferenceAppend | ReferenceRemoval | PeriodStatusUpdate


@dataclass(slots=True)
class ReconciliationResult:
    """Summary returned by batch operations.

    ``errors`` holds one human-readable string per failed item; the caller
    decides whether partial success constitutes an overall failure.
    """

    processed: int = 0
    matched: int = 0
    repaired: int = 0
    periods_updated: int = 0
    errors: list[str] = field(default_factory=list)
    mutations: list[Mutation] = field(default_factory=list)
    # Updated in-memory copies, for callers that persist documents wholesale.
    transactions: list[Transaction] = field(default_factory=list)
    obligation_periods: list[ObligationPeriod] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "repaired": self.repaired,
            "periodsUpdated": self.periods_updated,
            "errors": list(self.errors),
        }


__all__ = [
    "UNASSIGNED",
    "BudgetPeriod",
    "CalendarPeriod",
    "CalendarPeriodIds",
    "Fragment",
    "FragmentReference",
    "FragmentUpdate",
    "Granularity",
    "Mutation",
    "ObligationPeriod",
    "PaymentClassification",
    "Period",
    "PeriodStatus",
    "PeriodStatusUpdate",
    "PeriodType",
    "ReconciliationResult",
    "ReferenceAppend",
    "ReferenceRemoval",
    "StatusSnapshot",
    "Transaction",
    "ensure_aware",
    "is_assigned",
]
