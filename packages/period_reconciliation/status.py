"""Obligation period status aggregation.

:func:`recompute_status` is a pure, total function of a period's expected
amount, due date and reference list (plus the clock). Running it twice on the
same inputs yields the same snapshot, which is what makes retries after a
partial failure safe: references, not running totals, are authoritative.

Status rules
------------
- No payment and the due date is unset or more than ``due_soon_window`` away
  -> ``PENDING``.
- No payment and the due date is within ``due_soon_window`` and not past
  -> ``DUE_SOON``.
- No payment and the due date is past -> ``OVERDUE``.
- ``0 < paid < expected`` -> ``PARTIAL`` regardless of the due date.
- ``paid >= expected`` -> ``PAID_EARLY`` when a due date exists, every
  reference is on or before it and at least one strictly precedes it;
  otherwise ``PAID``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from .config import DEFAULT_SETTINGS, ReconciliationSettings
from .models import (
    FragmentReference,
    ObligationPeriod,
    PaymentClassification,
    PeriodStatus,
    StatusSnapshot,
    ensure_aware,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def _progress(paid: Decimal, expected: Decimal) -> Decimal:
    if expected <= 0:
        return _HUNDRED if paid > 0 else _ZERO
    pct = min(paid / expected * _HUNDRED, _HUNDRED)
    return max(pct, _ZERO).quantize(_CENT, rounding=ROUND_HALF_UP)


def recompute_status(
    period: ObligationPeriod,
    references: Sequence[FragmentReference] | None = None,
    *,
    now: datetime | None = None,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> StatusSnapshot:
    """Derive ``{status, amount_paid, amount_due, progress_percent}``.

    ``references`` defaults to the period's own reference list.
    """

    refs = period.references if references is None else tuple(references)
    now = ensure_aware(now) if now is not None else datetime.now(UTC)
    expected = period.expected_amount
    due = period.due_date

    paid = sum((ref.amount for ref in refs), _ZERO)
    amount_due = max(expected - paid, _ZERO)
    progress = _progress(paid, expected)

    if paid <= 0:
        if due is None:
            status = PeriodStatus.PENDING
        elif due < now:
            status = PeriodStatus.OVERDUE
        elif due - now <= settings.due_soon_window:
            status = PeriodStatus.DUE_SOON
        else:
            status = PeriodStatus.PENDING
    elif paid < expected:
        status = PeriodStatus.PARTIAL
    elif (
        due is not None
        and all(ensure_aware(ref.timestamp) <= due for ref in refs)
        and any(ensure_aware(ref.timestamp) < due for ref in refs)
    ):
        status = PeriodStatus.PAID_EARLY
    else:
        status = PeriodStatus.PAID

    return StatusSnapshot(
        status=status,
        amount_paid=paid,
        amount_due=amount_due,
        progress_percent=progress,
    )


def apply_status(period: ObligationPeriod, snapshot: StatusSnapshot) -> ObligationPeriod:
    """Return a copy of ``period`` carrying the aggregate from ``snapshot``."""

    return replace(
        period,
        status=snapshot.status,
        amount_paid=snapshot.amount_paid,
        amount_due=snapshot.amount_due,
        progress_percent=snapshot.progress_percent,
    )


def snapshot_of(period: ObligationPeriod) -> StatusSnapshot:
    """The aggregate currently stored on ``period`` (possibly stale)."""

    return StatusSnapshot(
        status=period.status,
        amount_paid=period.amount_paid,
        amount_due=period.amount_due if period.amount_due is not None else period.expected_amount,
        progress_percent=period.progress_percent,
    )


@dataclass(frozen=True, slots=True)
class PaymentBreakdown:
    """Totals of a reference list per payment classification."""

    regular: Decimal = _ZERO
    catch_up: Decimal = _ZERO
    advance: Decimal = _ZERO
    extra_principal: Decimal = _ZERO

    @property
    def total(self) -> Decimal:
        return self.regular + self.catch_up + self.advance + self.extra_principal


def payment_breakdown(references: Iterable[FragmentReference]) -> PaymentBreakdown:
    totals = {kind: _ZERO for kind in PaymentClassification}
    for ref in references:
        totals[ref.payment_classification] += ref.amount
    return PaymentBreakdown(
        regular=totals[PaymentClassification.REGULAR],
        catch_up=totals[PaymentClassification.CATCH_UP],
        advance=totals[PaymentClassification.ADVANCE],
        extra_principal=totals[PaymentClassification.EXTRA_PRINCIPAL],
    )


__all__ = [
    "PaymentBreakdown",
    "apply_status",
    "payment_breakdown",
    "recompute_status",
    "snapshot_of",
]
