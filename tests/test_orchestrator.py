from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

import pytest

from period_reconciliation.models import (
    UNASSIGNED,
    FragmentUpdate,
    PaymentClassification,
    PeriodStatus,
    PeriodStatusUpdate,
    ReferenceAppend,
)
from period_reconciliation.orchestrator import ReconciliationOrchestrator, apply_mutation

from tests.helpers.factories import budget, monthly, obligation, reference, transaction, ts


class RecordingStore:
    """In-memory store that records writes and fails named methods once each."""

    def __init__(self, *, fail_on: tuple[str, ...] = ()) -> None:
        self.calls: list[tuple] = []
        self._fail_on = list(fail_on)

    def _record(self, name: str, *args) -> None:
        if name in self._fail_on:
            self._fail_on.remove(name)
            raise RuntimeError("boom")
        self.calls.append((name, *args))

    def update_fragment(self, transaction_id, fragment):
        self._record("update_fragment", transaction_id, fragment.id)

    def append_reference(self, period_id, reference):
        self._record("append_reference", period_id, reference.key)

    def remove_reference(self, period_id, transaction_id, fragment_id):
        self._record("remove_reference", period_id, transaction_id, fragment_id)

    def update_period_status(self, period_id, snapshot):
        self._record("update_period_status", period_id, snapshot.status)


def _periods(*obligations):
    return [
        monthly("cal-2025-03", "2025-03-01", "2025-03-31"),
        budget("bp-03", "2025-03-01", "2025-03-31"),
        *(obligations or (obligation("rent-03"),)),
    ]


def _orchestrator(now: str, store=None) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(store, clock=lambda: ts(now))


def _period(result, period_id):
    return next(p for p in result.obligation_periods if p.id == period_id)


def test_regular_payment_is_matched_and_marks_the_period_paid_early():
    store = RecordingStore()
    tx = transaction("t1", ts("2025-03-10"), "1200")

    result = _orchestrator("2025-03-11", store).reconcile([tx], _periods())

    assert result.ok
    assert (result.processed, result.matched, result.periods_updated) == (1, 1, 1)
    frag = result.transactions[0].fragments[0]
    assert frag.assigned_obligation_id == "rent-03"
    assert frag.payment_classification is PaymentClassification.REGULAR
    assert (frag.assigned_budget_id, frag.budget_period_id) == ("b-groceries", "bp-03")
    assert frag.calendar_period_ids.monthly == "cal-2025-03"
    period = _period(result, "rent-03")
    assert period.status is PeriodStatus.PAID_EARLY
    assert period.amount_due == Decimal("0")
    assert [c[0] for c in store.calls] == [
        "append_reference",
        "update_fragment",
        "update_period_status",
    ]


def test_oversized_payment_is_extra_principal():
    tx = transaction("t1", ts("2025-03-05"), "1500")

    result = _orchestrator("2025-03-06").reconcile([tx], _periods())

    frag = result.transactions[0].fragments[0]
    assert frag.payment_classification is PaymentClassification.EXTRA_PRINCIPAL
    assert _period(result, "rent-03").amount_paid == Decimal("1500")


def test_payment_reconciled_after_the_due_date_is_catch_up():
    tx = transaction("t1", ts("2025-03-10"), "1200")

    result = _orchestrator("2025-03-20").reconcile([tx], _periods())

    frag = result.transactions[0].fragments[0]
    assert frag.payment_classification is PaymentClassification.CATCH_UP


def test_mutations_are_returned_without_a_store():
    tx = transaction("t1", ts("2025-03-10"), "1200")

    result = _orchestrator("2025-03-11").reconcile([tx], _periods())

    assert [type(m) for m in result.mutations] == [
        ReferenceAppend,
        FragmentUpdate,
        PeriodStatusUpdate,
    ]


def test_a_period_is_claimed_once_per_batch():
    first = transaction("t1", ts("2025-03-10"), "1200")
    second = transaction("t2", ts("2025-03-12"), "1200")

    result = _orchestrator("2025-03-13").reconcile([first, second], _periods())

    assert result.matched == 1
    assert result.transactions[1].fragments[0].assigned_obligation_id == UNASSIGNED
    assert [r.transaction_id for r in _period(result, "rent-03").references] == ["t1"]


def test_second_fragment_of_a_split_does_not_reuse_the_claimed_period():
    tx = transaction("t1", ts("2025-03-10"), "1200", "45")

    result = _orchestrator("2025-03-11").reconcile([tx], _periods())

    f1, f2 = result.transactions[0].fragments
    assert f1.assigned_obligation_id == "rent-03"
    assert f2.assigned_obligation_id == UNASSIGNED


def test_next_open_period_takes_a_later_payment():
    march = obligation("rent-03")
    april = obligation("rent-04", "2025-04-01", "2025-04-30", due="2025-04-15")
    txs = [
        transaction("t1", ts("2025-03-10"), "1200"),
        transaction("t2", ts("2025-04-12"), "1200"),
    ]

    result = _orchestrator("2025-04-13").reconcile(txs, _periods(march, april))

    assert [t.fragments[0].assigned_obligation_id for t in result.transactions] == [
        "rent-03",
        "rent-04",
    ]


def test_rerun_over_reconciled_documents_changes_nothing():
    tx = transaction("t1", ts("2025-03-10"), "1200")
    orch = _orchestrator("2025-03-11")
    first = orch.reconcile([tx], _periods())

    again = orch.reconcile(first.transactions, _periods(*first.obligation_periods))

    assert again.ok
    assert (again.matched, again.repaired, again.periods_updated) == (0, 0, 0)
    assert again.mutations == []
    assert again.transactions == first.transactions


def test_fragment_is_repaired_from_an_existing_reference():
    claimed = obligation("rent-03", references=(reference("t1", "1200", ts("2025-03-10")),))
    tx = transaction("t1", ts("2025-03-10"), "1200")

    result = _orchestrator("2025-03-11").reconcile([tx], _periods(claimed))

    assert (result.matched, result.repaired) == (0, 1)
    frag = result.transactions[0].fragments[0]
    assert frag.assigned_obligation_id == "rent-03"
    assert frag.payment_classification is PaymentClassification.REGULAR
    assert [type(m) for m in result.mutations] == [FragmentUpdate, PeriodStatusUpdate]
    assert len(_period(result, "rent-03").references) == 1


def test_assignment_to_an_unloaded_period_is_left_alone(caplog: pytest.LogCaptureFixture):
    tx = transaction("t1", ts("2025-03-10"), "1200")
    frag = replace(tx.fragments[0], assigned_obligation_id="rent-99")
    tx = tx.with_fragment(frag)

    with caplog.at_level(logging.WARNING, logger="period_reconciliation"):
        result = _orchestrator("2025-03-11").reconcile([tx], _periods())

    assert result.ok
    assert result.transactions[0].fragments[0].assigned_obligation_id == "rent-99"
    assert not _period(result, "rent-03").is_claimed
    assert any("Data inconsistency" in r.getMessage() for r in caplog.records)


def test_failed_reference_write_releases_the_claim():
    store = RecordingStore(fail_on=("append_reference",))
    txs = [
        transaction("t1", ts("2025-03-10"), "1200"),
        transaction("t2", ts("2025-03-12"), "1200"),
    ]

    result = _orchestrator("2025-03-13", store).reconcile(txs, _periods())

    assert result.errors == ["Failed to append split f1 of transaction t1 to rent-03: boom"]
    assert result.processed == 2
    assert result.matched == 1
    assert result.transactions[0].fragments[0].assigned_obligation_id is None
    assert result.transactions[1].fragments[0].assigned_obligation_id == "rent-03"
    assert ("update_fragment", "t1", "f1") not in store.calls
    assert [r.transaction_id for r in _period(result, "rent-03").references] == ["t2"]


def test_failed_fragment_write_is_repaired_on_the_next_run():
    store = RecordingStore(fail_on=("update_fragment",))
    tx = transaction("t1", ts("2025-03-10"), "1200")
    orch = _orchestrator("2025-03-11", store)

    first = orch.reconcile([tx], _periods())

    assert len(first.errors) == 1
    assert first.errors[0].startswith("Failed to update split f1 of transaction t1")
    assert first.matched == 0
    # The stored reference still drives the period status.
    assert ("update_period_status", "rent-03", PeriodStatus.PAID_EARLY) in store.calls

    second = orch.reconcile([tx], _periods(*first.obligation_periods))

    assert second.ok
    assert second.repaired == 1
    assert second.transactions[0].fragments[0].assigned_obligation_id == "rent-03"


def test_failed_status_write_is_reported():
    store = RecordingStore(fail_on=("update_period_status",))
    tx = transaction("t1", ts("2025-03-10"), "1200")

    result = _orchestrator("2025-03-11", store).reconcile([tx], _periods())

    assert result.errors == ["Failed to update status of rent-03: boom"]
    assert result.matched == 1
    assert result.periods_updated == 0
    assert result.summary()["periodsUpdated"] == 0


def test_limit_defers_the_rest_of_the_batch(caplog: pytest.LogCaptureFixture):
    txs = [transaction(f"t{i}", ts("2025-03-10"), "10", merchant=None) for i in range(3)]

    with caplog.at_level(logging.INFO, logger="period_reconciliation"):
        result = _orchestrator("2025-03-11").reconcile(txs, _periods(), limit=2)

    assert result.processed == 2
    assert [t.id for t in result.transactions] == ["t0", "t1"]
    assert any("Batch limit 2 reached" in r.getMessage() for r in caplog.records)


def test_periods_of_other_owners_are_ignored():
    theirs = obligation("rent-03", owner_id="u2")
    tx = transaction("t1", ts("2025-03-10"), "1200", owner_id="u1")
    periods = [budget("bp-03", "2025-03-01", "2025-03-31", owner_id="u2"), theirs]

    result = _orchestrator("2025-03-11").reconcile([tx], periods)

    frag = result.transactions[0].fragments[0]
    assert frag.assigned_obligation_id == UNASSIGNED
    assert frag.assigned_budget_id == UNASSIGNED
    assert not _period(result, "rent-03").is_claimed


def test_transaction_outside_every_period_gets_sentinels():
    tx = transaction("t1", ts("2025-06-10"), "12", merchant="Corner Shop")

    result = _orchestrator("2025-06-11").reconcile([tx], _periods())

    frag = result.transactions[0].fragments[0]
    assert frag.assigned_budget_id == UNASSIGNED
    assert frag.budget_period_id == UNASSIGNED
    assert frag.assigned_obligation_id == UNASSIGNED
    assert frag.calendar_period_ids.monthly is None
    assert result.periods_updated == 0


def test_evaluated_budget_is_not_re_resolved():
    tx = transaction("t1", ts("2025-03-10"), "12", merchant=None)
    tx = tx.with_fragment(replace(tx.fragments[0], assigned_budget_id=UNASSIGNED))

    result = _orchestrator("2025-03-11").reconcile([tx], _periods())

    frag = result.transactions[0].fragments[0]
    assert frag.assigned_budget_id == UNASSIGNED
    assert frag.budget_period_id is None


def test_owner_calendar_periods_take_precedence_over_app_wide_ones():
    periods = [
        monthly("cal-2025-03", "2025-03-01", "2025-03-31"),
        replace(monthly("cal-u1-2025-03", "2025-03-01", "2025-03-31"), owner_id="u1"),
    ]
    mine = transaction("t1", ts("2025-03-10"), "12", merchant=None, owner_id="u1")
    theirs = transaction("t2", ts("2025-03-10"), "12", merchant=None, owner_id="u2")

    result = _orchestrator("2025-03-11").reconcile([mine, theirs], periods)

    assert [t.fragments[0].calendar_period_ids.monthly for t in result.transactions] == [
        "cal-u1-2025-03",
        "cal-2025-03",
    ]


def _gym_periods():
    gym = dict(obligation_id="ob-gym", expected="40", merchant_hint="City Gym")
    return [
        obligation("gym-02", "2025-02-01", "2025-02-28", due="2025-02-05", **gym),
        obligation("gym-03", "2025-03-01", "2025-03-31", due="2025-03-05", **gym),
        obligation("rent-03"),
    ]


def test_backfill_assigns_history_by_interval(caplog: pytest.LogCaptureFixture):
    txs = [
        transaction("t1", ts("2025-02-04"), "40", merchant=None),
        transaction("t2", ts("2025-03-04"), "40", merchant=None),
        transaction("t3", ts("2025-06-04"), "40", merchant=None),
    ]

    with caplog.at_level(logging.WARNING, logger="period_reconciliation"):
        result = _orchestrator("2025-06-10").backfill_obligation(
            "ob-gym", txs, _gym_periods(), transaction_ids=["t1", "t2", "t3"]
        )

    assert result.ok
    assert (result.processed, result.matched, result.periods_updated) == (3, 2, 2)
    assert [t.fragments[0].assigned_obligation_id for t in result.transactions] == [
        "gym-02",
        "gym-03",
        None,
    ]
    assert {p.id for p in result.obligation_periods} == {"gym-02", "gym-03"}
    assert all(p.status is PeriodStatus.PAID_EARLY for p in result.obligation_periods)
    assert any("No period of obligation ob-gym" in r.getMessage() for r in caplog.records)


def test_backfill_only_takes_the_listed_transactions():
    txs = [
        transaction("t1", ts("2025-03-04"), "40", merchant=None),
        transaction("t2", ts("2025-03-09"), "187.20", merchant="Whole Foods"),
    ]

    result = _orchestrator("2025-03-10").backfill_obligation(
        "ob-gym", txs, _gym_periods(), transaction_ids=["t1"]
    )

    assert [t.id for t in result.transactions] == ["t1"]
    gym = _period(result, "gym-03")
    assert [r.key for r in gym.references] == [("t1", "f1")]
    assert gym.amount_paid == Decimal("40")


def test_backfill_without_ids_matches_by_merchant():
    txs = [
        transaction("t1", ts("2025-03-04"), "40", merchant="CITY GYM #12"),
        transaction("t2", ts("2025-03-09"), "187.20", merchant="Whole Foods"),
        transaction("t3", ts("2025-03-10"), "1200"),
        transaction("t4", ts("2025-03-11"), "40", merchant=None),
    ]

    result = _orchestrator("2025-03-12").backfill_obligation("ob-gym", txs, _gym_periods())

    assert (result.processed, result.matched) == (1, 1)
    assert [t.id for t in result.transactions] == ["t1"]
    gym = _period(result, "gym-03")
    assert [r.key for r in gym.references] == [("t1", "f1")]
    assert gym.amount_paid == Decimal("40")


def test_backfill_skips_assigned_and_referenced_fragments():
    gym = dict(obligation_id="ob-gym", expected="40", merchant_hint="City Gym")
    feb = obligation(
        "gym-02",
        "2025-02-01",
        "2025-02-28",
        due="2025-02-05",
        references=(reference("t2", "40", ts("2025-03-01")),),
        **gym,
    )
    mar = obligation("gym-03", "2025-03-01", "2025-03-31", due="2025-03-05", **gym)
    assigned = transaction("t1", ts("2025-03-02"), "40", merchant=None)
    assigned = assigned.with_fragment(
        replace(assigned.fragments[0], assigned_obligation_id="other")
    )
    referenced = transaction("t2", ts("2025-03-01"), "40", merchant=None)

    result = _orchestrator("2025-03-10").backfill_obligation(
        "ob-gym", [assigned, referenced], [feb, mar], transaction_ids=["t1", "t2"]
    )

    assert result.processed == 2
    assert result.matched == 0
    assert result.mutations == []
    assert not _period(result, "gym-03").is_claimed


def test_apply_mutation_rejects_unknown_values():
    with pytest.raises(TypeError):
        apply_mutation(RecordingStore(), object())
