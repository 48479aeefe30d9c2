"""Engine and session helpers for the reconciliation database.

One engine is shared per process and bound to ``DATABASE_URL`` (or the URL
passed on first use). Rebinding to another URL requires ``dispose_engine()``
first; tests do this between temporary SQLite files.

SQLite connections are opened with ``PRAGMA foreign_keys = ON`` so stored
fragment references cannot outlive the split they point at, as on Postgres.

Usage
-----
from db.client import session_scope

with session_scope() as s:
    s.execute(...)
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_SESSION_MAKER: sessionmaker[Session] | None = None
_DB_URL: str | None = None


def _resolve_url(override: str | None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - driver bridge
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the shared engine, creating it on first use.

    Raises ``RuntimeError`` when no URL is configured or when a different URL
    is requested while an engine is already bound.
    """

    global _ENGINE, _SESSION_MAKER, _DB_URL
    url = _resolve_url(database_url)
    if _ENGINE is not None:
        if url != _DB_URL:
            raise RuntimeError(
                "get_engine() already bound to a different DATABASE_URL; "
                "call dispose_engine() before switching databases"
            )
        return _ENGINE

    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_foreign_keys(engine)
    _ENGINE = engine
    _SESSION_MAKER = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    _DB_URL = url
    return engine


def dispose_engine() -> None:
    """Close pooled connections and forget the bound URL."""

    global _ENGINE, _SESSION_MAKER, _DB_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None
    _DB_URL = None


def get_session(*, database_url: str | None = None) -> Session:
    get_engine(database_url=database_url)
    assert _SESSION_MAKER is not None  # bound by get_engine
    return _SESSION_MAKER()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dialect_name(session: Session) -> str:
    """``"postgresql"``, ``"sqlite"`` ... for the engine behind ``session``."""

    return session.get_bind().dialect.name


__all__ = [
    "dialect_name",
    "dispose_engine",
    "get_engine",
    "get_session",
    "session_scope",
]
