"""Exception types raised by ``period_reconciliation``.

Data inconsistencies and no-match outcomes are not exceptions: the engine logs
the former and returns ``None`` for the latter. These types cover refused
operations and malformed boundary input only.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for errors raised by this package."""


class AssignmentError(ReconciliationError):
    """A manual assign/unassign request conflicts with current state."""


class DocumentError(ReconciliationError):
    """A period or transaction document failed validation at the boundary."""


__all__ = ["AssignmentError", "DocumentError", "ReconciliationError"]
