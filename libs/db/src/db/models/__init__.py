"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the reconciliation models used by ``period_reconciliation``.
"""

from .reconciliation import Base, RcFragment, RcFragmentReference, RcPeriod, RcTransaction

__all__ = [
    "Base",
    "RcFragment",
    "RcFragmentReference",
    "RcPeriod",
    "RcTransaction",
]
