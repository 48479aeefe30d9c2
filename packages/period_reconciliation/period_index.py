"""In-memory interval index over period documents.

:class:`PeriodIndex` groups periods by ``(type, granularity, owner_id)`` and
keeps each group sorted by ``interval_start`` together with a running maximum
of ``interval_end``. A containment query bisects to the last period starting
at or before the timestamp and walks backwards only while an earlier period
could still reach the timestamp, so lookups stay ``O(log n + k)`` even when
malformed data leaves overlapping periods in a group.

The index is rebuilt fresh per call by the orchestrator and never assumes how
finely the caller batched its period queries.

Matching helpers
----------------
- :func:`match_calendar_periods`: one lookup per granularity; each result is
  stored in its own fragment field, ``None`` when nothing contains the
  timestamp.
- :func:`match_budget_period`: returns the budget period or ``None``; callers
  record :data:`~period_reconciliation.models.UNASSIGNED` for the latter.
- :func:`match_obligation_period`: interval match restricted to one
  obligation (used by the backfill flow).
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from .logging_setup import get_logger
from .models import (
    BudgetPeriod,
    CalendarPeriod,
    CalendarPeriodIds,
    Granularity,
    ObligationPeriod,
    Period,
    PeriodType,
    ensure_aware,
)

logger = get_logger("period_reconciliation.period_index")

type GroupKey = tuple[PeriodType, Granularity | None, str | None]


def _group_key(period: Period) -> GroupKey:
    granularity = period.granularity if isinstance(period, CalendarPeriod) else None
    return (period.type, granularity, period.owner_id)


@dataclass(slots=True)
class _Group:
    periods: list[Period] = field(default_factory=list)
    starts: list[datetime] = field(default_factory=list)
    # max_ends[i] = max(interval_end of periods[0..i])
    max_ends: list[datetime] = field(default_factory=list)

    def containing(self, ts: datetime) -> list[Period]:
        hits: list[Period] = []
        i = bisect.bisect_right(self.starts, ts) - 1
        while i >= 0 and self.max_ends[i] >= ts:
            period = self.periods[i]
            if period.interval_end >= ts:
                hits.append(period)
            i -= 1
        hits.reverse()
        return hits


class PeriodIndex:
    """Sorted-by-start index of periods for closed-interval containment queries.

    Use :meth:`build` to construct. Duplicate ids keep the last occurrence so a
    caller can pass freshly updated copies after stale ones.
    """

    def __init__(self, groups: dict[GroupKey, _Group], by_id: dict[str, Period]) -> None:
        self._groups = groups
        self._by_id = by_id

    @classmethod
    def build(cls, periods: Iterable[Period]) -> PeriodIndex:
        by_id: dict[str, Period] = {}
        for period in periods:
            by_id[period.id] = period

        buckets: dict[GroupKey, list[Period]] = {}
        for period in by_id.values():
            buckets.setdefault(_group_key(period), []).append(period)

        groups: dict[GroupKey, _Group] = {}
        for key, members in buckets.items():
            members.sort(key=lambda p: (p.interval_start, p.interval_end, p.id))
            group = _Group()
            running: datetime | None = None
            for period in members:
                if running is None or period.interval_end > running:
                    running = period.interval_end
                group.periods.append(period)
                group.starts.append(period.interval_start)
                group.max_ends.append(running)
            groups[key] = group

        logger.debug("Indexed %d periods in %d groups", len(by_id), len(groups))
        return cls(groups, by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, period_id: object) -> bool:
        return period_id in self._by_id

    def __iter__(self) -> Iterator[Period]:
        return iter(self._by_id.values())

    def get(self, period_id: str) -> Period | None:
        return self._by_id.get(period_id)

    def periods(
        self,
        period_type: PeriodType,
        *,
        owner_id: str | None = None,
        granularity: Granularity | None = None,
    ) -> Iterator[Period]:
        """Yield every period of a type/scope in ``interval_start`` order."""

        group = self._groups.get((period_type, granularity, owner_id))
        if group is not None:
            yield from group.periods

    def find(
        self,
        timestamp: datetime,
        period_type: PeriodType,
        *,
        granularity: Granularity | None = None,
        owner_id: str | None = None,
    ) -> list[Period]:
        """Return all periods of one type/scope whose ``[start, end]`` contains ``timestamp``.

        Both bounds are inclusive. Results are ordered by ``interval_start``.
        ``granularity`` is required for calendar periods and ignored otherwise.
        """

        period_type = PeriodType(period_type)
        if period_type == PeriodType.CALENDAR and granularity is None:
            raise ValueError("granularity is required for calendar period lookups")
        if period_type != PeriodType.CALENDAR:
            granularity = None
        group = self._groups.get((period_type, granularity, owner_id))
        if group is None:
            return []
        return group.containing(ensure_aware(timestamp))

    def find_one(
        self,
        timestamp: datetime,
        period_type: PeriodType,
        *,
        granularity: Granularity | None = None,
        owner_id: str | None = None,
    ) -> Period | None:
        """Return the single containing period; earliest start wins on overlap.

        Overlap within one type/scope violates the non-overlap invariant and is
        logged as a data inconsistency rather than raised.
        """

        hits = self.find(timestamp, period_type, granularity=granularity, owner_id=owner_id)
        if not hits:
            return None
        if len(hits) > 1:
            logger.warning(
                "Data inconsistency: %d overlapping %s periods contain %s (%s); using %s",
                len(hits),
                granularity or period_type,
                timestamp.isoformat(),
                ", ".join(p.id for p in hits),
                hits[0].id,
            )
        return hits[0]


def match_calendar_periods(
    index: PeriodIndex, timestamp: datetime, *, owner_id: str | None = None
) -> CalendarPeriodIds:
    """Resolve the monthly, weekly and bi-weekly calendar period ids independently.

    Periods scoped to ``owner_id`` take precedence; app-wide periods fill any
    granularity the owner has none for.
    """

    found: dict[str, str | None] = {}
    for granularity in Granularity:
        period = None
        if owner_id is not None:
            period = index.find_one(
                timestamp, PeriodType.CALENDAR, granularity=granularity, owner_id=owner_id
            )
        if period is None:
            period = index.find_one(timestamp, PeriodType.CALENDAR, granularity=granularity)
        found[granularity.value] = period.id if period is not None else None
    return CalendarPeriodIds(**found)


def match_budget_period(
    index: PeriodIndex, timestamp: datetime, *, owner_id: str | None = None
) -> BudgetPeriod | None:
    period = index.find_one(timestamp, PeriodType.BUDGET, owner_id=owner_id)
    if period is None or isinstance(period, BudgetPeriod):
        return period
    logger.warning(
        "Data inconsistency: period %s is indexed as a budget period but is a %s; ignoring",
        period.id,
        type(period).__name__,
    )
    return None


def match_obligation_period(
    index: PeriodIndex,
    timestamp: datetime,
    *,
    obligation_id: str,
    owner_id: str | None = None,
) -> ObligationPeriod | None:
    """Return the period of ``obligation_id`` containing ``timestamp``.

    Obligation periods of different obligations legitimately overlap, so the
    overlap check only considers periods of the requested obligation.
    """

    hits = [
        p
        for p in index.find(timestamp, PeriodType.OBLIGATION, owner_id=owner_id)
        if isinstance(p, ObligationPeriod) and p.obligation_id == obligation_id
    ]
    if not hits:
        return None
    if len(hits) > 1:
        logger.warning(
            "Data inconsistency: %d overlapping periods of obligation %s contain %s; using %s",
            len(hits),
            obligation_id,
            timestamp.isoformat(),
            hits[0].id,
        )
    return hits[0]


__all__ = [
    "PeriodIndex",
    "match_budget_period",
    "match_calendar_periods",
    "match_obligation_period",
]
