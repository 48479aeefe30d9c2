"""Batch reconciliation: the imperative shell around the pure matching core.

:class:`ReconciliationOrchestrator` walks a batch of transactions strictly in
order (obligation claiming must observe earlier matches in the same batch),
produces the mutations each fragment requires and, when a store is attached,
applies them one by one. Every fragment, mutation and period recompute is
isolated: a failure is logged and appended to ``result.errors``, and the
batch moves on. Store writes are not rolled back; references are append-only
and statuses are recomputed from references, so a partially applied batch can
be re-run. A claim whose reference was not stored is dropped from the working
set so later transactions may still match that period.

Per fragment, in order:

1. calendar periods (monthly/weekly/bi-weekly) are always resolved;
2. the budget period is resolved when the fragment has not been evaluated;
3. an unassigned fragment is first repaired from an existing reference with
   the same ``(transaction_id, fragment_id)`` key (left behind by a partial
   failure), otherwise fuzzy-matched against open obligation periods and, on
   a match, classified and referenced.

After each transaction the status of every obligation period it touched is
recomputed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol

from .assignments import append_reference, build_reference, remove_reference
from .config import DEFAULT_SETTINGS, ReconciliationSettings
from .logging_setup import get_logger
from .models import (
    UNASSIGNED,
    Fragment,
    FragmentReference,
    FragmentUpdate,
    Mutation,
    ObligationPeriod,
    Period,
    PeriodStatusUpdate,
    ReconciliationResult,
    ReferenceAppend,
    ReferenceRemoval,
    StatusSnapshot,
    Transaction,
    ensure_aware,
)
from .obligation_matcher import match_obligation, merchant_matches
from .period_index import (
    PeriodIndex,
    match_budget_period,
    match_calendar_periods,
    match_obligation_period,
)
from .status import apply_status, recompute_status

logger = get_logger("period_reconciliation.orchestrator")


class ReconciliationStore(Protocol):
    """Write side of the document store, as seen by the orchestrator."""

    def update_fragment(self, transaction_id: str, fragment: Fragment) -> None: ...

    def append_reference(self, period_id: str, reference: FragmentReference) -> None: ...

    def remove_reference(self, period_id: str, transaction_id: str, fragment_id: str) -> None: ...

    def update_period_status(self, period_id: str, snapshot: StatusSnapshot) -> None: ...


def apply_mutation(store: ReconciliationStore, mutation: Mutation) -> None:
    match mutation:
        case FragmentUpdate(transaction_id=tx_id, fragment=fragment):
            store.update_fragment(tx_id, fragment)
        case ReferenceAppend(period_id=period_id, reference=reference):
            store.append_reference(period_id, reference)
        case ReferenceRemoval(period_id=period_id, transaction_id=tx_id, fragment_id=frag_id):
            store.remove_reference(period_id, tx_id, frag_id)
        case PeriodStatusUpdate(period_id=period_id, snapshot=snapshot):
            store.update_period_status(period_id, snapshot)
        case _:
            raise TypeError(f"unsupported mutation: {mutation!r}")


def _describe(mutation: Mutation) -> str:
    match mutation:
        case FragmentUpdate(transaction_id=tx_id, fragment=fragment):
            return f"update split {fragment.id} of transaction {tx_id}"
        case ReferenceAppend(period_id=period_id, reference=ref):
            return (
                f"append split {ref.fragment_id} of transaction {ref.transaction_id} "
                f"to {period_id}"
            )
        case ReferenceRemoval(period_id=period_id, fragment_id=frag_id):
            return f"remove split {frag_id} from {period_id}"
        case PeriodStatusUpdate(period_id=period_id):
            return f"update status of {period_id}"
    return repr(mutation)


@dataclass(slots=True)
class _FragmentPlan:
    """What one fragment needs: its new state, the writes and the period it feeds."""

    fragment: Fragment
    mutations: list[Mutation] = field(default_factory=list)
    target: str | None = None
    repaired: bool = False


class _Batch:
    """Working state for one orchestrator call."""

    def __init__(
        self,
        periods: Iterable[Period],
        *,
        store: ReconciliationStore | None,
        settings: ReconciliationSettings,
        now: datetime,
    ) -> None:
        self.index = PeriodIndex.build(periods)
        self.store = store
        self.settings = settings
        self.now = now
        self.result = ReconciliationResult()
        self.working: dict[str, ObligationPeriod] = {}
        self.claimed_by: dict[tuple[str, str], str] = {}
        for period in self.index:
            if not isinstance(period, ObligationPeriod):
                continue
            self.working[period.id] = period
            for ref in period.references:
                self.claimed_by.setdefault(ref.key, period.id)
        self.updated_periods: set[str] = set()

    def fail(self, msg: str) -> None:
        self.result.errors.append(msg)
        logger.error(msg)

    def candidates(self, owner_id: str | None) -> list[ObligationPeriod]:
        return [p for p in self.working.values() if p.owner_id == owner_id]

    def persist(self, mutations: Sequence[Mutation]) -> int:
        """Apply ``mutations`` in order and return how many succeeded.

        Stops at the first failure; the failed write is reported in
        ``result.errors`` and later writes for the same item are not attempted.
        """

        for applied, mutation in enumerate(mutations):
            if self.store is not None:
                try:
                    apply_mutation(self.store, mutation)
                except Exception as exc:
                    self.fail(f"Failed to {_describe(mutation)}: {exc}")
                    return applied
            self.result.mutations.append(mutation)
        return len(mutations)

    def attach(
        self, transaction: Transaction, fragment: Fragment, period: ObligationPeriod
    ) -> tuple[Fragment, ReferenceAppend | None]:
        """Reference ``fragment`` from ``period`` in the working set."""

        reference = build_reference(
            transaction, fragment, period, auto_matched=True, now=self.now, settings=self.settings
        )
        before = self.working[period.id]
        after = append_reference(before, reference)
        self.working[period.id] = after
        self.claimed_by[reference.key] = period.id
        updated = replace(
            fragment,
            assigned_obligation_id=period.id,
            payment_classification=reference.payment_classification,
        )
        if after is before:
            return updated, None
        return updated, ReferenceAppend(period_id=period.id, reference=reference)

    def detach(self, append: ReferenceAppend) -> None:
        """Undo :meth:`attach` in the working set after the store refused it."""

        ref = append.reference
        self.working[append.period_id] = remove_reference(
            self.working[append.period_id], ref.transaction_id, ref.fragment_id
        )
        self.claimed_by.pop(ref.key, None)

    def commit(self, plan: _FragmentPlan, touched: set[str]) -> bool:
        """Persist a fragment plan; keep the working set in step with the store."""

        applied = self.persist(plan.mutations)
        for mutation in plan.mutations[applied:]:
            if isinstance(mutation, ReferenceAppend):
                self.detach(mutation)
        stored_append = any(isinstance(m, ReferenceAppend) for m in plan.mutations[:applied])
        if plan.target is not None and (stored_append or applied == len(plan.mutations)):
            touched.add(plan.target)
        if applied < len(plan.mutations):
            return False
        if plan.repaired:
            self.result.repaired += 1
        elif plan.target is not None:
            self.result.matched += 1
        return True

    def recompute(self, period_ids: Iterable[str]) -> None:
        for period_id in sorted(period_ids):
            try:
                period = self.working[period_id]
                snapshot = recompute_status(period, now=self.now, settings=self.settings)
            except Exception as exc:
                self.fail(f"Failed to recompute status of period {period_id}: {exc}")
                continue
            if self.persist([PeriodStatusUpdate(period_id=period_id, snapshot=snapshot)]):
                self.working[period_id] = apply_status(period, snapshot)
                self.updated_periods.add(period_id)

    def finish(self, transactions: list[Transaction]) -> ReconciliationResult:
        self.result.periods_updated = len(self.updated_periods)
        self.result.transactions = transactions
        self.result.obligation_periods = list(self.working.values())
        return self.result


class ReconciliationOrchestrator:
    """Sequence period matching, classification and status recompute over a batch.

    Parameters
    ----------
    store:
        Optional write side of the document store. Without one the
        orchestrator is side-effect free and callers apply
        ``result.mutations`` themselves.
    settings:
        Engine tunables (see :mod:`period_reconciliation.config`).
    clock:
        Returns "now"; injected for deterministic classification/status.
    """

    def __init__(
        self,
        store: ReconciliationStore | None = None,
        *,
        settings: ReconciliationSettings = DEFAULT_SETTINGS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))

    def _batch(self, periods: Iterable[Period]) -> _Batch:
        return _Batch(
            periods, store=self._store, settings=self._settings, now=ensure_aware(self._clock())
        )

    def reconcile(
        self,
        transactions: Iterable[Transaction],
        periods: Iterable[Period],
        *,
        limit: int | None = None,
    ) -> ReconciliationResult:
        """Reconcile ``transactions`` against ``periods`` (all three types).

        ``limit`` truncates how many transactions are processed in this call;
        progress is durable per item, so the remainder can be handled later.
        """

        batch = self._batch(periods)
        out: list[Transaction] = []

        for position, transaction in enumerate(transactions):
            if limit is not None and position >= limit:
                logger.info("Batch limit %d reached; deferring remaining transactions", limit)
                break

            touched: set[str] = set()
            current = transaction
            for fragment in transaction.fragments:
                try:
                    plan = self._plan_fragment(batch, transaction, fragment)
                except Exception as exc:
                    batch.fail(
                        f"Failed to reconcile split {fragment.id} of transaction "
                        f"{transaction.id}: {exc}"
                    )
                    continue
                if batch.commit(plan, touched):
                    current = current.with_fragment(plan.fragment)

            batch.recompute(touched)
            batch.result.processed += 1
            out.append(current)

        result = batch.finish(out)
        logger.info(
            "Reconciled %d transactions: %d matched, %d repaired, %d periods updated, %d errors",
            result.processed,
            result.matched,
            result.repaired,
            result.periods_updated,
            len(result.errors),
        )
        return result

    def _plan_fragment(
        self, batch: _Batch, transaction: Transaction, fragment: Fragment
    ) -> _FragmentPlan:
        updated = replace(
            fragment,
            calendar_period_ids=match_calendar_periods(
                batch.index, transaction.timestamp, owner_id=transaction.owner_id
            ),
        )

        if updated.assigned_budget_id is None:
            budget = match_budget_period(
                batch.index, transaction.timestamp, owner_id=transaction.owner_id
            )
            updated = replace(
                updated,
                assigned_budget_id=budget.budget_id if budget is not None else UNASSIGNED,
                budget_period_id=budget.id if budget is not None else UNASSIGNED,
            )

        plan = _FragmentPlan(fragment=updated)
        key = (transaction.id, fragment.id)
        if updated.has_obligation:
            if updated.assigned_obligation_id not in batch.working:
                logger.warning(
                    "Data inconsistency: split %s of %s references obligation period %s "
                    "which is not in the loaded set; skipping",
                    fragment.id,
                    transaction.id,
                    updated.assigned_obligation_id,
                )
        elif key in batch.claimed_by:
            # A previous run stored the reference but not the fragment update.
            period = batch.working[batch.claimed_by[key]]
            reference = next(r for r in period.references if r.key == key)
            plan.fragment = replace(
                updated,
                assigned_obligation_id=period.id,
                payment_classification=reference.payment_classification,
            )
            plan.target = period.id
            plan.repaired = True
            logger.info(
                "Restoring assignment of split %s of %s to period %s from existing reference",
                fragment.id,
                transaction.id,
                period.id,
            )
        else:
            match = match_obligation(
                transaction,
                updated,
                batch.candidates(transaction.owner_id),
                settings=self._settings,
            )
            if match is not None:
                plan.fragment, append = batch.attach(transaction, updated, match)
                if append is not None:
                    plan.mutations.append(append)
                plan.target = match.id
            elif updated.assigned_obligation_id is None:
                plan.fragment = replace(updated, assigned_obligation_id=UNASSIGNED)

        if plan.fragment != fragment:
            plan.mutations.append(
                FragmentUpdate(transaction_id=transaction.id, fragment=plan.fragment)
            )
        return plan

    def backfill_obligation(
        self,
        obligation_id: str,
        transactions: Iterable[Transaction],
        periods: Iterable[Period],
        *,
        transaction_ids: Iterable[str] | None = None,
    ) -> ReconciliationResult:
        """Assign a newly registered obligation's historical transactions.

        Each transaction goes to the period of ``obligation_id`` whose interval
        contains its timestamp (interval match, not fuzzy match). Fragments
        that already hold an obligation assignment are skipped.

        ``transaction_ids`` names the obligation's own transactions; only those
        are considered. Without it a transaction must carry a merchant name
        matching the merchant hint of the obligation's periods. Transactions
        that are not considered are left out of the result.
        """

        batch = self._batch(
            p
            for p in periods
            if isinstance(p, ObligationPeriod) and p.obligation_id == obligation_id
        )
        wanted = set(transaction_ids) if transaction_ids is not None else None
        hints = {p.merchant_hint for p in batch.working.values() if p.merchant_hint}
        out: list[Transaction] = []

        for transaction in transactions:
            if wanted is not None:
                if transaction.id not in wanted:
                    continue
            elif not any(merchant_matches(transaction.merchant_name, h) for h in hints):
                logger.debug(
                    "Transaction %s does not match obligation %s by merchant, skipping",
                    transaction.id,
                    obligation_id,
                )
                continue

            touched: set[str] = set()
            current = transaction
            target = match_obligation_period(
                batch.index,
                transaction.timestamp,
                obligation_id=obligation_id,
                owner_id=transaction.owner_id,
            )
            if target is None:
                logger.warning(
                    "No period of obligation %s contains transaction %s dated %s",
                    obligation_id,
                    transaction.id,
                    transaction.timestamp.isoformat(),
                )

            for fragment in transaction.fragments if target is not None else ():
                if fragment.has_obligation:
                    logger.debug("Split %s already assigned, skipping", fragment.id)
                    continue
                claimed = batch.claimed_by.get((transaction.id, fragment.id))
                if claimed is not None and claimed != target.id:
                    logger.debug("Split %s already referenced by %s", fragment.id, claimed)
                    continue
                try:
                    updated, append = batch.attach(transaction, fragment, batch.working[target.id])
                except Exception as exc:
                    batch.fail(
                        f"Failed to assign split {fragment.id} of transaction "
                        f"{transaction.id}: {exc}"
                    )
                    continue
                plan = _FragmentPlan(fragment=updated, target=target.id)
                if append is not None:
                    plan.mutations.append(append)
                plan.mutations.append(
                    FragmentUpdate(transaction_id=transaction.id, fragment=updated)
                )
                if batch.commit(plan, touched):
                    current = current.with_fragment(updated)

            batch.recompute(touched)
            batch.result.processed += 1
            out.append(current)

        result = batch.finish(out)
        logger.info(
            "Backfilled obligation %s: %d splits assigned across %d periods, %d errors",
            obligation_id,
            result.matched,
            result.periods_updated,
            len(result.errors),
        )
        return result


__all__ = ["ReconciliationOrchestrator", "ReconciliationStore", "apply_mutation"]
