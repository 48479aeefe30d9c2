from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from period_reconciliation.models import PaymentClassification, PeriodStatus
from period_reconciliation.status import (
    apply_status,
    payment_breakdown,
    recompute_status,
    snapshot_of,
)

from tests.helpers.factories import day_start, obligation, reference, ts


def test_no_payment_far_from_due_is_pending():
    snap = recompute_status(obligation("rent-03"), now=ts("2025-03-01"))

    assert snap.status is PeriodStatus.PENDING
    assert snap.amount_paid == Decimal("0")
    assert snap.amount_due == Decimal("1200")
    assert snap.progress_percent == Decimal("0")


@pytest.mark.parametrize(
    "now",
    [
        day_start("2025-03-12"),  # exactly three days out
        ts("2025-03-13"),
        day_start("2025-03-15"),  # due right now
    ],
)
def test_no_payment_within_three_days_is_due_soon(now):
    snap = recompute_status(obligation("rent-03"), now=now)

    assert snap.status is PeriodStatus.DUE_SOON


def test_no_payment_past_due_is_overdue():
    snap = recompute_status(
        obligation("rent-03"), now=day_start("2025-03-15") + timedelta(seconds=1)
    )

    assert snap.status is PeriodStatus.OVERDUE


def test_no_due_date_and_no_payment_stays_pending():
    snap = recompute_status(obligation("var-03", due=None), now=ts("2025-06-01"))

    assert snap.status is PeriodStatus.PENDING


def test_full_payment_before_due_is_paid_early():
    period = obligation(
        "rent-03", references=(reference("t1", "1200", ts("2025-03-10")),)
    )

    snap = recompute_status(period, now=ts("2025-03-11"))

    assert snap.status is PeriodStatus.PAID_EARLY
    assert snap.amount_due == Decimal("0")
    assert snap.progress_percent == Decimal("100.00")


def test_half_payment_is_partial():
    period = obligation("rent-03", references=(reference("t1", "600", ts("2025-03-12")),))

    snap = recompute_status(period, now=ts("2025-03-20"))

    assert snap.status is PeriodStatus.PARTIAL
    assert snap.amount_due == Decimal("600")
    assert snap.progress_percent == Decimal("50.00")


def test_full_payment_on_or_after_due_is_paid():
    on_due = obligation("rent-03", references=(reference("t1", "1200", day_start("2025-03-15")),))
    late = obligation("rent-03", references=(reference("t1", "1200", ts("2025-03-18")),))

    assert recompute_status(on_due, now=ts("2025-03-20")).status is PeriodStatus.PAID
    assert recompute_status(late, now=ts("2025-03-20")).status is PeriodStatus.PAID


def test_any_payment_after_due_prevents_paid_early():
    period = obligation(
        "rent-03",
        references=(
            reference("t1", "600", ts("2025-03-10")),
            reference("t2", "600", ts("2025-03-16"), fragment_id="f1"),
        ),
    )

    assert recompute_status(period, now=ts("2025-03-20")).status is PeriodStatus.PAID


def test_full_payment_without_due_date_is_paid():
    period = obligation("var-03", due=None, references=(reference("t1", "1200", ts("2025-03-10")),))

    assert recompute_status(period, now=ts("2025-03-11")).status is PeriodStatus.PAID


def test_overpayment_caps_progress_and_due():
    period = obligation(
        "rent-03",
        references=(
            reference(
                "t1",
                "1400",
                ts("2025-03-05"),
                classification=PaymentClassification.EXTRA_PRINCIPAL,
            ),
        ),
    )

    snap = recompute_status(period, now=ts("2025-03-06"))

    assert snap.amount_paid == Decimal("1400")
    assert snap.amount_due == Decimal("0")
    assert snap.progress_percent == Decimal("100.00")
    assert snap.status is PeriodStatus.PAID_EARLY


def test_progress_rounds_to_two_places():
    period = obligation(
        "rent-03", expected="300", references=(reference("t1", "100", ts("2025-03-05")),)
    )

    assert recompute_status(period, now=ts("2025-03-06")).progress_percent == Decimal("33.33")


def test_zero_expected_with_payment_is_fully_paid():
    period = obligation(
        "tip-03", expected="0", references=(reference("t1", "5", ts("2025-03-05")),)
    )

    snap = recompute_status(period, now=ts("2025-03-06"))

    assert snap.progress_percent == Decimal("100")
    assert snap.amount_due == Decimal("0")


def test_recompute_is_idempotent():
    period = obligation("rent-03", references=(reference("t1", "600", ts("2025-03-12")),))
    now = ts("2025-03-20")

    first = recompute_status(period, now=now)
    again = recompute_status(apply_status(period, first), now=now)

    assert again == first
    assert snapshot_of(apply_status(period, first)) == first


def test_explicit_reference_list_overrides_the_periods_own():
    period = obligation("rent-03")
    refs = [reference("t1", "1200", ts("2025-03-10"))]

    snap = recompute_status(period, refs, now=ts("2025-03-11"))

    assert snap.status is PeriodStatus.PAID_EARLY


def test_payment_breakdown_groups_by_classification():
    refs = [
        reference("t1", "1200", ts("2025-03-10")),
        reference(
            "t2", "300", ts("2025-03-11"), classification=PaymentClassification.EXTRA_PRINCIPAL
        ),
        reference("t3", "50", ts("2025-03-12"), classification=PaymentClassification.CATCH_UP),
    ]

    breakdown = payment_breakdown(refs)

    assert breakdown.regular == Decimal("1200")
    assert breakdown.extra_principal == Decimal("300")
    assert breakdown.catch_up == Decimal("50")
    assert breakdown.advance == Decimal("0")
    assert breakdown.total == Decimal("1550")
