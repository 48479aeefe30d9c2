from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from period_reconciliation.classifier import classify_payment
from period_reconciliation.config import ReconciliationSettings
from period_reconciliation.models import PaymentClassification

from tests.helpers.factories import day_start, obligation, ts

# Before the 2025-03-15 due date, so lateness rules do not fire.
NOW = ts("2025-03-11")


def test_payment_a_few_days_before_due_is_regular():
    period = obligation("rent-03")

    got = classify_payment(Decimal("1200"), ts("2025-03-10"), period, now=NOW)

    assert got is PaymentClassification.REGULAR


def test_payment_more_than_a_week_before_due_is_advance():
    period = obligation("rent-03")

    got = classify_payment(Decimal("1200"), ts("2025-03-01"), period, now=ts("2025-03-02"))

    assert got is PaymentClassification.ADVANCE


def test_payment_exactly_seven_days_before_due_is_not_advance():
    period = obligation("rent-03")

    got = classify_payment(Decimal("1200"), day_start("2025-03-08"), period, now=NOW)

    assert got is PaymentClassification.REGULAR


def test_payment_dated_before_a_due_date_already_past_is_catch_up():
    period = obligation("rent-03")

    got = classify_payment(Decimal("1200"), ts("2025-03-10"), period, now=ts("2025-03-20"))

    assert got is PaymentClassification.CATCH_UP


def test_payment_after_due_date_is_regular():
    period = obligation("rent-03")

    got = classify_payment(Decimal("1200"), ts("2025-03-18"), period, now=ts("2025-03-20"))

    assert got is PaymentClassification.REGULAR


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        ("1320", PaymentClassification.REGULAR),  # exactly +10%: inside the band
        ("1320.01", PaymentClassification.EXTRA_PRINCIPAL),
        ("1500", PaymentClassification.EXTRA_PRINCIPAL),
    ],
)
def test_extra_principal_band(amount: str, expected: PaymentClassification):
    period = obligation("rent-03")

    assert classify_payment(Decimal(amount), ts("2025-03-10"), period, now=NOW) is expected


def test_extra_principal_wins_over_every_timing_rule():
    period = obligation("rent-03")

    # Would be CATCH_UP on timing alone (paid before a due date that is past).
    late = classify_payment(Decimal("1500"), ts("2025-03-10"), period, now=ts("2025-03-20"))
    # Would be ADVANCE on timing alone.
    early = classify_payment(Decimal("1500"), ts("2025-03-01"), period, now=ts("2025-03-02"))

    assert late is PaymentClassification.EXTRA_PRINCIPAL
    assert early is PaymentClassification.EXTRA_PRINCIPAL


def test_catch_up_is_checked_before_advance():
    period = obligation("rent-03")

    # Paid 14 days early, but the due date has since passed.
    got = classify_payment(Decimal("1200"), ts("2025-03-01"), period, now=ts("2025-03-20"))

    assert got is PaymentClassification.CATCH_UP


def test_period_without_due_date_is_regular_or_extra_principal_only():
    period = obligation("var-03", due=None)

    assert (
        classify_payment(Decimal("1200"), ts("2025-03-01"), period, now=ts("2025-04-20"))
        is PaymentClassification.REGULAR
    )
    assert (
        classify_payment(Decimal("2000"), ts("2025-03-01"), period, now=ts("2025-04-20"))
        is PaymentClassification.EXTRA_PRINCIPAL
    )


def test_tunables_change_the_bands():
    period = obligation("rent-03")
    settings = ReconciliationSettings(
        extra_principal_tolerance=Decimal("0.50"), advance_window=timedelta(days=2)
    )

    got_amount = classify_payment(
        Decimal("1500"), ts("2025-03-14"), period, now=NOW, settings=settings
    )
    got_timing = classify_payment(
        Decimal("1200"), ts("2025-03-10"), period, now=NOW, settings=settings
    )

    assert got_amount is PaymentClassification.REGULAR
    assert got_timing is PaymentClassification.ADVANCE
