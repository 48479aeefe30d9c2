"""Public interface for the ``period_reconciliation`` package.

This module exposes the engine operations and public models/types as the
stable import surface. There is no runtime logic here, only symbol
re-exports. Persistence (``period_reconciliation.persistence``) and the CLI
(``period_reconciliation.cli``) are imported explicitly by callers that need
them.
"""

from .assignments import (
    AssignmentOutcome,
    append_reference,
    assign_fragment,
    build_reference,
    remove_reference,
    unassign_fragment,
)
from .classifier import classify_payment
from .config import DEFAULT_SETTINGS, ReconciliationSettings, load_settings
from .errors import AssignmentError, DocumentError, ReconciliationError
from .models import (
    UNASSIGNED,
    BudgetPeriod,
    CalendarPeriod,
    CalendarPeriodIds,
    Fragment,
    FragmentReference,
    FragmentUpdate,
    Granularity,
    Mutation,
    ObligationPeriod,
    PaymentClassification,
    Period,
    PeriodStatus,
    PeriodStatusUpdate,
    PeriodType,
    ReconciliationResult,
    ReferenceAppend,
    ReferenceRemoval,
    StatusSnapshot,
    Transaction,
)
from .obligation_matcher import CandidateScore, match_obligation, score_candidates
from .orchestrator import ReconciliationOrchestrator, ReconciliationStore, apply_mutation
from .period_index import (
    PeriodIndex,
    match_budget_period,
    match_calendar_periods,
    match_obligation_period,
)
from .status import PaymentBreakdown, payment_breakdown, recompute_status

__all__ = [
    # Engine
    "PeriodIndex",
    "match_calendar_periods",
    "match_budget_period",
    "match_obligation_period",
    "classify_payment",
    "CandidateScore",
    "match_obligation",
    "score_candidates",
    "recompute_status",
    "PaymentBreakdown",
    "payment_breakdown",
    "ReconciliationOrchestrator",
    "ReconciliationStore",
    "apply_mutation",
    "AssignmentOutcome",
    "append_reference",
    "remove_reference",
    "build_reference",
    "assign_fragment",
    "unassign_fragment",
    # Configuration and errors
    "ReconciliationSettings",
    "DEFAULT_SETTINGS",
    "load_settings",
    "ReconciliationError",
    "AssignmentError",
    "DocumentError",
    # Models
    "UNASSIGNED",
    "PeriodType",
    "Granularity",
    "PaymentClassification",
    "PeriodStatus",
    "CalendarPeriod",
    "BudgetPeriod",
    "ObligationPeriod",
    "Period",
    "Transaction",
    "Fragment",
    "CalendarPeriodIds",
    "FragmentReference",
    "StatusSnapshot",
    "FragmentUpdate",
    "ReferenceAppend",
    "ReferenceRemoval",
    "PeriodStatusUpdate",
    "Mutation",
    "ReconciliationResult",
]
