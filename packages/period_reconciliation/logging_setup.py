"""Logging configuration for the ``period_reconciliation`` package.

Engine modules only ever call ``get_logger("period_reconciliation.<module>")``
and never attach handlers. Levels follow one convention across the package:

- WARNING: data inconsistencies (overlapping periods, dangling assignments);
- ERROR: a single fragment, mutation or recompute failed inside a batch;
- INFO: batch summaries and repairs;
- DEBUG: per-candidate scoring decisions.

Entrypoints (the CLI, scheduled jobs) call :func:`configure_logging` once.
Without it the package root carries a ``NullHandler`` and stays silent.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import IO

_PKG_LOGGER_NAME = "period_reconciliation"
_LEVEL_ENV_VAR = "PERIOD_RECONCILIATION_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    """Resolve ``level`` (int, name or numeric string); ``None`` reads the env var."""

    if level is None:
        level = os.getenv(_LEVEL_ENV_VAR)
    if isinstance(level, int):
        return level
    if level:
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Attach handlers to the package root logger; later calls are no-ops.

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` falls back to
        ``PERIOD_RECONCILIATION_LOG_LEVEL`` and then ``INFO``.
    fmt:
        Format string shared by all handlers.
    stream:
        Console stream, resolved at call time (``sys.stderr`` by default) so
        redirected streams are honoured.
    log_file:
        Optional path that also receives every record, for unattended runs
        such as ``reconcile-db`` from a scheduler.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    formatter = logging.Formatter(fmt or _DEFAULT_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(resolved)
    logger.propagate = False
    _CONFIGURED = True


def reset_logging() -> None:
    """Undo :func:`configure_logging`: close handlers and restore library defaults."""

    global _CONFIGURED
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    _CONFIGURED = False


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``; unconfigured, the package stays silent."""

    if not _CONFIGURED:
        pkg = logging.getLogger(_PKG_LOGGER_NAME)
        if not any(isinstance(h, logging.NullHandler) for h in pkg.handlers):
            pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "reset_logging"]
