"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.reconciliation`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.reconciliation import (
    Base,
    RcFragment,
    RcFragmentReference,
    RcPeriod,
    RcTransaction,
)

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "RcFragment",
    "RcFragmentReference",
    "RcPeriod",
    "RcTransaction",
]
