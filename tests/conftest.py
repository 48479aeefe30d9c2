"""Pytest configuration for import paths and logging isolation.

The workspace keeps the engine under ``packages/`` and the shared database
library under ``libs/db/src``; both are put on ``sys.path`` so the suite runs
without an editable install.

The CLI calls ``configure_logging()``, which attaches a handler to the package
logger and stops propagation to the root logger. That state is process-wide,
so an autouse fixture restores library defaults after every test; otherwise
``caplog`` assertions in later tests would silently see nothing.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# Ensure local sources precede site-packages so the working tree is exercised.
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from period_reconciliation.logging_setup import reset_logging  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_package_logging() -> Iterator[None]:
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_recon_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer ``RECON_*`` overrides from leaking into assertions."""

    import os

    for key in list(os.environ):
        if key.startswith("RECON_"):
            monkeypatch.delenv(key, raising=False)
