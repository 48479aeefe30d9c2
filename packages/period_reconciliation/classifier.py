"""Payment-timing classification for matched obligation payments."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from .config import DEFAULT_SETTINGS, ReconciliationSettings
from .models import ObligationPeriod, PaymentClassification, ensure_aware


def classify_payment(
    amount: Decimal,
    payment_timestamp: datetime,
    period: ObligationPeriod,
    *,
    now: datetime | None = None,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> PaymentClassification:
    """Classify a payment against an obligation period; first matching rule wins.

    1. ``amount`` exceeds the expected amount by more than the tolerance band
       -> ``EXTRA_PRINCIPAL``.
    2. The period has a due date, the payment precedes it and the due date is
       already in the past -> ``CATCH_UP``.
    3. The period has a due date and the payment is more than the advance
       window ahead of it -> ``ADVANCE``.
    4. Otherwise -> ``REGULAR``.

    Periods without a due date can only classify as ``REGULAR`` or
    ``EXTRA_PRINCIPAL``.
    """

    now = ensure_aware(now) if now is not None else datetime.now(UTC)
    paid_at = ensure_aware(payment_timestamp)

    if amount > period.expected_amount * (1 + settings.extra_principal_tolerance):
        return PaymentClassification.EXTRA_PRINCIPAL

    due = period.due_date
    if due is not None:
        if paid_at < due and due < now:
            return PaymentClassification.CATCH_UP
        if due - paid_at > settings.advance_window:
            return PaymentClassification.ADVANCE

    return PaymentClassification.REGULAR


__all__ = ["classify_payment"]
