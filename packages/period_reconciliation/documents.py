"""JSON document boundary for periods and transactions.

The stored documents use camelCase keys (``intervalStart``,
``assignedObligationId``, ``matchedFragments`` ...). The models below validate
that shape with pydantic and convert to and from the frozen domain records in
:mod:`period_reconciliation.models`. Validation failures surface as
:class:`~period_reconciliation.errors.DocumentError` so callers only handle the
package's own exception hierarchy.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import DocumentError
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
    Transaction,
    ensure_aware,
)


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


def _aware(v: datetime | None) -> datetime | None:
    return ensure_aware(v) if v is not None else None


class FragmentReferenceDocument(_Document):
    transaction_id: str
    fragment_id: str
    amount: Decimal
    timestamp: datetime
    payment_classification: PaymentClassification
    matched_at: datetime
    auto_matched: bool = True

    def to_domain(self) -> FragmentReference:
        return FragmentReference(
            transaction_id=self.transaction_id,
            fragment_id=self.fragment_id,
            amount=self.amount,
            timestamp=ensure_aware(self.timestamp),
            payment_classification=self.payment_classification,
            matched_at=ensure_aware(self.matched_at),
            auto_matched=self.auto_matched,
        )

    @classmethod
    def from_domain(cls, ref: FragmentReference) -> FragmentReferenceDocument:
        return cls(
            transaction_id=ref.transaction_id,
            fragment_id=ref.fragment_id,
            amount=ref.amount,
            timestamp=ref.timestamp,
            payment_classification=ref.payment_classification,
            matched_at=ref.matched_at,
            auto_matched=ref.auto_matched,
        )


class PeriodDocument(_Document):
    """One period of any type; variant fields are checked against ``type``."""

    id: str
    type: PeriodType
    interval_start: datetime
    interval_end: datetime
    owner_id: str | None = None

    # calendar
    granularity: Granularity | None = None
    # budget
    budget_id: str | None = None
    name: str | None = None
    # obligation
    obligation_id: str | None = None
    expected_amount: Decimal | None = None
    due_date: datetime | None = None
    merchant_hint: str | None = None
    description: str | None = None
    matched_fragments: list[FragmentReferenceDocument] = []
    status: PeriodStatus = PeriodStatus.PENDING
    amount_paid: Decimal = Decimal("0")
    amount_due: Decimal | None = None
    progress_percent: Decimal = Decimal("0")

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("id must be non-empty")
        return v

    def to_domain(self) -> Period:
        start, end = ensure_aware(self.interval_start), ensure_aware(self.interval_end)
        if self.type == PeriodType.CALENDAR:
            if self.granularity is None:
                raise DocumentError(f"calendar period {self.id!r} has no granularity")
            return CalendarPeriod(
                id=self.id,
                interval_start=start,
                interval_end=end,
                granularity=self.granularity,
                owner_id=self.owner_id,
            )
        if self.type == PeriodType.BUDGET:
            if not self.budget_id:
                raise DocumentError(f"budget period {self.id!r} has no budgetId")
            return BudgetPeriod(
                id=self.id,
                interval_start=start,
                interval_end=end,
                budget_id=self.budget_id,
                owner_id=self.owner_id,
                name=self.name,
            )
        if not self.obligation_id or self.expected_amount is None:
            raise DocumentError(
                f"obligation period {self.id!r} requires obligationId and expectedAmount"
            )
        return ObligationPeriod(
            id=self.id,
            interval_start=start,
            interval_end=end,
            obligation_id=self.obligation_id,
            expected_amount=self.expected_amount,
            owner_id=self.owner_id,
            due_date=_aware(self.due_date),
            merchant_hint=self.merchant_hint,
            description=self.description,
            references=tuple(r.to_domain() for r in self.matched_fragments),
            status=self.status,
            amount_paid=self.amount_paid,
            amount_due=self.amount_due,
            progress_percent=self.progress_percent,
        )

    @classmethod
    def from_domain(cls, period: Period) -> PeriodDocument:
        base = {
            "id": period.id,
            "type": period.type,
            "interval_start": period.interval_start,
            "interval_end": period.interval_end,
            "owner_id": period.owner_id,
        }
        if isinstance(period, CalendarPeriod):
            return cls(**base, granularity=period.granularity)
        if isinstance(period, BudgetPeriod):
            return cls(**base, budget_id=period.budget_id, name=period.name)
        return cls(
            **base,
            obligation_id=period.obligation_id,
            expected_amount=period.expected_amount,
            due_date=period.due_date,
            merchant_hint=period.merchant_hint,
            description=period.description,
            matched_fragments=[FragmentReferenceDocument.from_domain(r) for r in period.references],
            status=period.status,
            amount_paid=period.amount_paid,
            amount_due=period.amount_due,
            progress_percent=period.progress_percent,
        )


class CalendarPeriodIdsDocument(_Document):
    monthly: str | None = None
    weekly: str | None = None
    bi_weekly: str | None = None


class FragmentDocument(_Document):
    id: str
    amount: Decimal
    assigned_budget_id: str | None = None
    budget_period_id: str | None = None
    assigned_obligation_id: str | None = None
    payment_classification: PaymentClassification | None = None
    calendar_period_ids: CalendarPeriodIdsDocument = CalendarPeriodIdsDocument()

    def to_domain(self) -> Fragment:
        ids = self.calendar_period_ids
        return Fragment(
            id=self.id,
            amount=self.amount,
            assigned_budget_id=self.assigned_budget_id,
            budget_period_id=self.budget_period_id,
            assigned_obligation_id=self.assigned_obligation_id,
            payment_classification=self.payment_classification,
            calendar_period_ids=CalendarPeriodIds(
                monthly=ids.monthly, weekly=ids.weekly, bi_weekly=ids.bi_weekly
            ),
        )

    @classmethod
    def from_domain(cls, fragment: Fragment) -> FragmentDocument:
        ids = fragment.calendar_period_ids
        return cls(
            id=fragment.id,
            amount=fragment.amount,
            assigned_budget_id=fragment.assigned_budget_id,
            budget_period_id=fragment.budget_period_id,
            assigned_obligation_id=fragment.assigned_obligation_id,
            payment_classification=fragment.payment_classification,
            calendar_period_ids=CalendarPeriodIdsDocument(
                monthly=ids.monthly, weekly=ids.weekly, bi_weekly=ids.bi_weekly
            ),
        )


class TransactionDocument(_Document):
    id: str
    timestamp: datetime
    owner_id: str | None = None
    merchant_name: str | None = None
    description: str | None = None
    fragments: list[FragmentDocument]

    @field_validator("fragments")
    @classmethod
    def _at_least_one_fragment(cls, v: list[FragmentDocument]) -> list[FragmentDocument]:
        if not v:
            raise ValueError("a transaction needs at least one fragment")
        return v

    def to_domain(self) -> Transaction:
        return Transaction(
            id=self.id,
            timestamp=ensure_aware(self.timestamp),
            fragments=tuple(f.to_domain() for f in self.fragments),
            owner_id=self.owner_id,
            merchant_name=self.merchant_name,
            description=self.description,
        )

    @classmethod
    def from_domain(cls, transaction: Transaction) -> TransactionDocument:
        return cls(
            id=transaction.id,
            timestamp=transaction.timestamp,
            owner_id=transaction.owner_id,
            merchant_name=transaction.merchant_name,
            description=transaction.description,
            fragments=[FragmentDocument.from_domain(f) for f in transaction.fragments],
        )


_PERIODS = TypeAdapter(list[PeriodDocument])
_TRANSACTIONS = TypeAdapter(list[TransactionDocument])


def _validation_message(label: str, exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid {label} document at {loc or '<root>'}: {first.get('msg', exc)}"


def parse_periods(raw: str | bytes) -> list[Period]:
    """Parse a JSON array of period documents into domain periods."""

    try:
        docs = _PERIODS.validate_json(raw)
    except ValidationError as exc:
        raise DocumentError(_validation_message("period", exc)) from exc
    try:
        return [d.to_domain() for d in docs]
    except ValueError as exc:
        raise DocumentError(str(exc)) from exc


def parse_transactions(raw: str | bytes) -> list[Transaction]:
    """Parse a JSON array of transaction documents into domain transactions."""

    try:
        docs = _TRANSACTIONS.validate_json(raw)
    except ValidationError as exc:
        raise DocumentError(_validation_message("transaction", exc)) from exc
    try:
        return [d.to_domain() for d in docs]
    except ValueError as exc:
        raise DocumentError(str(exc)) from exc


def dump_periods(periods: Iterable[Period], *, indent: int | None = 2) -> str:
    docs = [PeriodDocument.from_domain(p) for p in periods]
    return _PERIODS.dump_json(docs, by_alias=True, indent=indent).decode("utf-8")


def dump_transactions(transactions: Sequence[Transaction], *, indent: int | None = 2) -> str:
    docs = [TransactionDocument.from_domain(t) for t in transactions]
    return _TRANSACTIONS.dump_json(docs, by_alias=True, indent=indent).decode("utf-8")


__all__ = [
    "CalendarPeriodIdsDocument",
    "FragmentDocument",
    "FragmentReferenceDocument",
    "PeriodDocument",
    "TransactionDocument",
    "dump_periods",
    "dump_transactions",
    "parse_periods",
    "parse_transactions",
]
