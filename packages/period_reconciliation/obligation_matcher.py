"""Fuzzy matching of unassigned fragments to open obligation periods.

Each candidate period earns an additive score from three independent signals:

- merchant: the transaction's merchant name and the period's merchant hint
  are case-insensitive substrings of one another;
- amount: the fragment amount is within the tolerance band of the period's
  expected amount;
- date: the period has a due date within the date window of the payment,
  scored linearly so that closer dates score higher.

With the default weights (50/30/20) and threshold (50) a match needs the
merchant signal, or the amount signal plus a near-exact date; date proximity
alone can never cross the floor.

Only *open* periods are candidates: a period holding any reference has been
claimed and is skipped, so one obligation period accepts at most one payment
through this path.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .config import DEFAULT_SETTINGS, ReconciliationSettings
from .logging_setup import get_logger
from .models import Fragment, ObligationPeriod, Transaction, ensure_aware

logger = get_logger("period_reconciliation.obligation_matcher")

_SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True, slots=True)
class CandidateScore:
    """Per-signal score breakdown for one candidate period."""

    period: ObligationPeriod
    merchant: float
    amount: float
    date: float

    @property
    def total(self) -> float:
        return self.merchant + self.amount + self.date

    def as_dict(self) -> dict[str, object]:
        return {
            "periodId": self.period.id,
            "obligationId": self.period.obligation_id,
            "merchant": self.merchant,
            "amount": self.amount,
            "date": self.date,
            "total": self.total,
        }


def _norm(value: str | None) -> str:
    return " ".join((value or "").split()).casefold()


def merchant_matches(fragment_hint: str | None, period_hint: str | None) -> bool:
    a, b = _norm(fragment_hint), _norm(period_hint)
    if not a or not b:
        return False
    return a in b or b in a


def amount_matches(
    amount: Decimal, expected: Decimal, *, settings: ReconciliationSettings = DEFAULT_SETTINGS
) -> bool:
    if expected <= 0:
        return False
    return abs(amount - expected) <= expected * settings.amount_tolerance


def date_score(
    payment_timestamp: datetime,
    due_date: datetime | None,
    *,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> float:
    if due_date is None:
        return 0.0
    distance = abs(ensure_aware(payment_timestamp) - due_date)
    if distance > settings.date_window:
        return 0.0
    days = distance.total_seconds() / _SECONDS_PER_DAY
    return max(settings.date_weight - settings.date_decay_per_day * days, 0.0)


def score_candidate(
    transaction: Transaction,
    fragment: Fragment,
    period: ObligationPeriod,
    *,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> CandidateScore:
    return CandidateScore(
        period=period,
        merchant=(
            settings.merchant_weight
            if merchant_matches(transaction.merchant_name, period.merchant_hint)
            else 0.0
        ),
        amount=(
            settings.amount_weight
            if amount_matches(fragment.amount, period.expected_amount, settings=settings)
            else 0.0
        ),
        date=date_score(transaction.timestamp, period.due_date, settings=settings),
    )


def score_candidates(
    transaction: Transaction,
    fragment: Fragment,
    candidates: Iterable[ObligationPeriod],
    *,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> list[CandidateScore]:
    """Score every open candidate, best first (ties: earliest start, then id).

    Claimed periods are omitted. Intended for diagnostics; matching goes
    through :func:`match_obligation`.
    """

    scores = [
        score_candidate(transaction, fragment, period, settings=settings)
        for period in candidates
        if not period.is_claimed
    ]
    scores.sort(key=lambda s: (-s.total, s.period.interval_start, s.period.id))
    return scores


def match_obligation(
    transaction: Transaction,
    fragment: Fragment,
    candidates: Iterable[ObligationPeriod],
    *,
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> ObligationPeriod | None:
    """Return the best open obligation period for ``fragment`` or ``None``.

    A candidate is accepted only when its score reaches
    ``settings.min_match_score``. No match is not an error: the fragment stays
    unassigned and is retried on a later pass.
    """

    ranked = score_candidates(transaction, fragment, candidates, settings=settings)
    if not ranked or ranked[0].total < settings.min_match_score:
        logger.debug(
            "No obligation match for %s/%s (best score %.2f)",
            transaction.id,
            fragment.id,
            ranked[0].total if ranked else 0.0,
        )
        return None

    best = ranked[0]
    logger.debug(
        "Matched %s/%s to obligation period %s (score %.2f)",
        transaction.id,
        fragment.id,
        best.period.id,
        best.total,
    )
    return best.period


__all__ = [
    "CandidateScore",
    "amount_matches",
    "date_score",
    "match_obligation",
    "merchant_matches",
    "score_candidate",
    "score_candidates",
]
