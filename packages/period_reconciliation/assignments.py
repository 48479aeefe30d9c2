"""Reference bookkeeping and explicit fragment (un)assignment.

The automatic paths (orchestrator and backfill) and the manual operations
below share :func:`append_reference`, which deduplicates on
``(transaction_id, fragment_id)`` before appending. Duplicate delivery of the
same event therefore never double-counts a payment.

Manual assignment differs from fuzzy matching in two ways: it may attach a
fragment to a period that is already claimed, and the caller may force the
payment classification. A fragment holding an assignment to a different
period is refused; it must be unassigned explicitly first.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime

from .classifier import classify_payment
from .config import DEFAULT_SETTINGS, ReconciliationSettings
from .errors import AssignmentError
from .logging_setup import get_logger
from .models import (
    Fragment,
    FragmentReference,
    FragmentUpdate,
    Mutation,
    ObligationPeriod,
    PaymentClassification,
    PeriodStatusUpdate,
    ReferenceAppend,
    ReferenceRemoval,
    Transaction,
    ensure_aware,
)
from .status import apply_status, recompute_status

logger = get_logger("period_reconciliation.assignments")


def append_reference(period: ObligationPeriod, reference: FragmentReference) -> ObligationPeriod:
    """Return ``period`` with ``reference`` appended unless its key is present."""

    if period.has_reference(reference.transaction_id, reference.fragment_id):
        logger.info(
            "Reference %s/%s already on period %s; skipping duplicate",
            reference.transaction_id,
            reference.fragment_id,
            period.id,
        )
        return period
    return replace(period, references=(*period.references, reference))


def remove_reference(
    period: ObligationPeriod, transaction_id: str, fragment_id: str
) -> ObligationPeriod:
    kept = tuple(r for r in period.references if r.key != (transaction_id, fragment_id))
    if len(kept) == len(period.references):
        return period
    return replace(period, references=kept)


def build_reference(
    transaction: Transaction,
    fragment: Fragment,
    period: ObligationPeriod,
    *,
    classification: PaymentClassification | None = None,
    auto_matched: bool = True,
    now: datetime | None = None,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> FragmentReference:
    now = ensure_aware(now) if now is not None else datetime.now(UTC)
    if classification is None:
        classification = classify_payment(
            fragment.amount, transaction.timestamp, period, now=now, settings=settings
        )
    return FragmentReference(
        transaction_id=transaction.id,
        fragment_id=fragment.id,
        amount=fragment.amount,
        timestamp=transaction.timestamp,
        payment_classification=classification,
        matched_at=now,
        auto_matched=auto_matched,
    )


@dataclass(frozen=True, slots=True)
class AssignmentOutcome:
    """Updated copies plus the mutations a store must apply, in order."""

    period: ObligationPeriod
    transaction: Transaction
    mutations: tuple[Mutation, ...]


def _require_fragment(transaction: Transaction, fragment_id: str) -> Fragment:
    fragment = transaction.fragment(fragment_id)
    if fragment is None:
        raise AssignmentError(f"Split {fragment_id} not found in transaction {transaction.id}")
    return fragment


def assign_fragment(
    period: ObligationPeriod,
    transaction: Transaction,
    fragment_id: str,
    *,
    classification: PaymentClassification | None = None,
    auto_matched: bool = False,
    now: datetime | None = None,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> AssignmentOutcome:
    """Attach a fragment to ``period`` and recompute the period's status.

    Re-assigning a fragment to the period it already references is a no-op
    (no mutations). ``classification`` defaults to the payment classifier.
    """

    fragment = _require_fragment(transaction, fragment_id)
    if fragment.has_obligation and fragment.assigned_obligation_id != period.id:
        raise AssignmentError(
            f"Split {fragment_id} is already assigned to obligation period "
            f"{fragment.assigned_obligation_id}; unassign it first"
        )
    if fragment.assigned_obligation_id == period.id and period.has_reference(
        transaction.id, fragment_id
    ):
        return AssignmentOutcome(period=period, transaction=transaction, mutations=())

    now = ensure_aware(now) if now is not None else datetime.now(UTC)
    reference = build_reference(
        transaction,
        fragment,
        period,
        classification=classification,
        auto_matched=auto_matched,
        now=now,
        settings=settings,
    )
    updated_fragment = replace(
        fragment,
        assigned_obligation_id=period.id,
        payment_classification=reference.payment_classification,
    )
    updated_period = append_reference(period, reference)
    snapshot = recompute_status(updated_period, now=now, settings=settings)
    updated_period = apply_status(updated_period, snapshot)

    mutations: list[Mutation] = []
    if updated_period.references != period.references:
        mutations.append(ReferenceAppend(period_id=period.id, reference=reference))
    mutations.append(FragmentUpdate(transaction_id=transaction.id, fragment=updated_fragment))
    mutations.append(PeriodStatusUpdate(period_id=period.id, snapshot=snapshot))

    logger.info(
        "Assigned split %s of %s to period %s as %s",
        fragment_id,
        transaction.id,
        period.id,
        reference.payment_classification,
    )
    return AssignmentOutcome(
        period=updated_period,
        transaction=transaction.with_fragment(updated_fragment),
        mutations=tuple(mutations),
    )


def unassign_fragment(
    period: ObligationPeriod,
    transaction: Transaction,
    fragment_id: str,
    *,
    now: datetime | None = None,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> AssignmentOutcome:
    """Clear a fragment's obligation assignment and drop its reference.

    This is the only way an assignment is removed. The period's status is
    recomputed from the remaining references; a period left with no
    references becomes open for fuzzy matching again.
    """

    fragment = _require_fragment(transaction, fragment_id)
    if fragment.assigned_obligation_id != period.id:
        raise AssignmentError(
            f"Split {fragment_id} is not assigned to obligation period {period.id}"
        )

    updated_fragment = replace(fragment, assigned_obligation_id=None, payment_classification=None)
    updated_period = remove_reference(period, transaction.id, fragment_id)
    snapshot = recompute_status(updated_period, now=now, settings=settings)
    updated_period = apply_status(updated_period, snapshot)

    logger.info("Unassigned split %s of %s from period %s", fragment_id, transaction.id, period.id)
    return AssignmentOutcome(
        period=updated_period,
        transaction=transaction.with_fragment(updated_fragment),
        mutations=(
            ReferenceRemoval(
                period_id=period.id, transaction_id=transaction.id, fragment_id=fragment_id
            ),
            FragmentUpdate(transaction_id=transaction.id, fragment=updated_fragment),
            PeriodStatusUpdate(period_id=period.id, snapshot=snapshot),
        ),
    )


__all__ = [
    "AssignmentOutcome",
    "append_reference",
    "assign_fragment",
    "build_reference",
    "remove_reference",
    "unassign_fragment",
]
