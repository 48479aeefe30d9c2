# ruff: noqa: I001
"""CLI for the ``period_reconciliation`` package.

This module exposes callable command handlers (e.g., ``cmd_reconcile``) and a
Typer-based console interface. Environment variables (``DATABASE_URL``,
``RECON_*`` tunables, ``PERIOD_RECONCILIATION_LOG_LEVEL``) are loaded from a
local ``.env`` using ``python-dotenv`` before delegating to command logic.
Engine logic lives in :mod:`period_reconciliation.orchestrator` and the pure
modules it sequences.

Handlers print results to stdout, report failures as ``Error: ...`` on stderr
and return a process exit code.
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import load_settings
from .errors import ReconciliationError
from .logging_setup import configure_logging, get_logger

logger = get_logger("period_reconciliation.cli")


# ---- Small module-level helpers used by CLI commands -------------------------


def _parse_now(raw: str | None) -> datetime:
    """Parse an ISO-8601 ``--now`` override; naive values are taken as UTC."""

    if raw is None:
        return datetime.now(UTC)
    value = datetime.fromisoformat(raw)
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _read_text(path: Path) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
        f.write("\n")


def _load_inputs(periods_path: Path, transactions_path: Path | None):
    """Read and validate input documents; raises ``OSError``/``DocumentError``."""

    from .documents import parse_periods, parse_transactions

    periods = parse_periods(_read_text(periods_path))
    transactions = (
        parse_transactions(_read_text(transactions_path)) if transactions_path is not None else []
    )
    return periods, transactions


def _emit_result(result, output_dir: Path | None, periods, transactions) -> None:
    """Print the summary and optionally write the updated documents.

    Documents the batch did not touch (deferred by a limit, or outside a
    backfill) are written back unchanged.
    """

    from .documents import dump_periods, dump_transactions

    print(json.dumps(result.summary(), indent=2))
    if output_dir is None:
        return
    updated = {p.id: p for p in result.obligation_periods}
    merged = [updated.get(p.id, p) for p in periods]
    _write_text(output_dir / "periods.json", dump_periods(merged))
    processed = {t.id: t for t in result.transactions}
    merged_txs = [processed.get(t.id, t) for t in transactions]
    _write_text(output_dir / "transactions.json", dump_transactions(merged_txs))
    logger.info("Wrote updated documents to %s", output_dir)


# ---- Command handlers ---------------------------------------------------------


def cmd_reconcile(
    periods_path: str,
    transactions_path: str,
    *,
    now: str | None = None,
    limit: int | None = None,
    output_dir: str | None = None,
    strict: bool = False,
) -> int:
    """Reconcile transactions from a JSON file against periods from another.

    Prints the batch summary as JSON. With ``output_dir`` the updated period
    and transaction documents are written there as ``periods.json`` and
    ``transactions.json``. With ``strict`` any per-item error makes the exit
    code non-zero.
    """

    from .orchestrator import ReconciliationOrchestrator

    try:
        settings = load_settings()
        clock_now = _parse_now(now)
        periods, transactions = _load_inputs(Path(periods_path), Path(transactions_path))
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except (ReconciliationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    orchestrator = ReconciliationOrchestrator(settings=settings, clock=lambda: clock_now)
    result = orchestrator.reconcile(transactions, periods, limit=limit)

    try:
        _emit_result(result, Path(output_dir) if output_dir else None, periods, transactions)
    except OSError as e:
        print(f"Error: failed to write output: {e}", file=sys.stderr)
        return 1

    return 1 if strict and not result.ok else 0


def cmd_backfill(
    periods_path: str,
    transactions_path: str,
    obligation_id: str,
    *,
    transaction_ids: list[str] | None = None,
    now: str | None = None,
    output_dir: str | None = None,
) -> int:
    """Assign historical transactions to the periods of one obligation.

    ``transaction_ids`` restricts the backfill to the obligation's own
    transactions; otherwise they are picked by merchant.
    """

    from .orchestrator import ReconciliationOrchestrator

    try:
        settings = load_settings()
        clock_now = _parse_now(now)
        periods, transactions = _load_inputs(Path(periods_path), Path(transactions_path))
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except (ReconciliationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    orchestrator = ReconciliationOrchestrator(settings=settings, clock=lambda: clock_now)
    result = orchestrator.backfill_obligation(
        obligation_id, transactions, periods, transaction_ids=transaction_ids or None
    )
    try:
        _emit_result(result, Path(output_dir) if output_dir else None, periods, transactions)
    except OSError as e:
        print(f"Error: failed to write output: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_recompute_status(periods_path: str, *, now: str | None = None) -> int:
    """Recompute every obligation period's status from its references.

    Prints ``<period_id>\\t<status>\\t<amount_paid>\\t<amount_due>\\t<progress>``
    per obligation period.
    """

    from .models import ObligationPeriod
    from .status import recompute_status

    try:
        settings = load_settings()
        clock_now = _parse_now(now)
        periods, _ = _load_inputs(Path(periods_path), None)
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except (ReconciliationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for period in periods:
        if not isinstance(period, ObligationPeriod):
            continue
        snap = recompute_status(period, now=clock_now, settings=settings)
        print(
            f"{period.id}\t{snap.status}\t{snap.amount_paid}\t{snap.amount_due}\t"
            f"{snap.progress_percent}"
        )
    return 0


def cmd_score(
    periods_path: str,
    transactions_path: str,
    transaction_id: str,
    *,
    fragment_id: str | None = None,
) -> int:
    """Print candidate obligation scores for one split as JSON (best first)."""

    from .models import ObligationPeriod
    from .obligation_matcher import score_candidates

    try:
        settings = load_settings()
        periods, transactions = _load_inputs(Path(periods_path), Path(transactions_path))
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except (ReconciliationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tx = next((t for t in transactions if t.id == transaction_id), None)
    if tx is None:
        print(f"Error: transaction {transaction_id} not found", file=sys.stderr)
        return 1
    fragment = tx.fragment(fragment_id) if fragment_id else tx.fragments[0]
    if fragment is None:
        print(f"Error: split {fragment_id} not found in transaction {tx.id}", file=sys.stderr)
        return 1

    candidates = [
        p for p in periods if isinstance(p, ObligationPeriod) and p.owner_id == tx.owner_id
    ]
    scores = score_candidates(tx, fragment, candidates, settings=settings)
    print(
        json.dumps(
            {
                "transactionId": tx.id,
                "fragmentId": fragment.id,
                "threshold": settings.min_match_score,
                "candidates": [s.as_dict() for s in scores],
            },
            indent=2,
        )
    )
    return 0


def cmd_reconcile_db(
    *,
    database_url: str | None = None,
    owner_id: str | None = None,
    limit: int | None = None,
    now: str | None = None,
    strict: bool = False,
) -> int:
    """Reconcile stored transactions against stored periods in one DB transaction."""

    from db.client import session_scope
    from .orchestrator import ReconciliationOrchestrator
    from .persistence import SqlReconciliationStore, load_periods, load_transactions

    try:
        settings = load_settings()
        clock_now = _parse_now(now)
    except (ReconciliationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        with session_scope(database_url=database_url) as session:
            periods = load_periods(session, owner_id=owner_id)
            transactions = load_transactions(session, owner_id=owner_id)
            orchestrator = ReconciliationOrchestrator(
                SqlReconciliationStore(session), settings=settings, clock=lambda: clock_now
            )
            result = orchestrator.reconcile(transactions, periods, limit=limit)
    except Exception as e:
        print(f"Error: reconcile-db failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result.summary(), indent=2))
    return 1 if strict and not result.ok else 0


def cmd_init_db(*, database_url: str | None = None) -> int:
    """Create the reconciliation tables (development/SQLite; use Alembic elsewhere)."""

    from db import metadata
    from db.client import get_engine

    try:
        metadata.create_all(get_engine(database_url=database_url))
    except Exception as e:
        print(f"Error: init-db failed: {e}", file=sys.stderr)
        return 1
    print("Initialized reconciliation tables.")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile bank transactions against calendar, budget and obligation periods. "
        "Loads DATABASE_URL and RECON_* tunables from a local .env before running."
    ),
)


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect these when used as default values below.
PERIODS_OPTION: OptionInfo = typer.Option(
    ...,
    "--periods",
    help="Path to a JSON array of period documents",
    dir_okay=False,
    file_okay=True,
    exists=False,  # allow non-existent here; the handler will report nice errors
)
TRANSACTIONS_OPTION: OptionInfo = typer.Option(
    ...,
    "--transactions",
    help="Path to a JSON array of transaction documents",
    dir_okay=False,
    file_okay=True,
    exists=False,
)
NOW_OPTION: OptionInfo = typer.Option(
    ..., "--now", help="ISO-8601 timestamp used as 'now' (defaults to the current time)."
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    ..., "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


@app.command("reconcile")
def reconcile_cmd(
    periods: Annotated[Path, PERIODS_OPTION],
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    *,
    now: Annotated[str | None, NOW_OPTION] = None,
    limit: int | None = typer.Option(None, min=0, help="Process at most N transactions."),
    output_dir: Path | None = typer.Option(
        None, help="Write updated periods.json/transactions.json into this directory."
    ),
    strict: bool = typer.Option(False, help="Exit non-zero when any item failed."),
) -> None:
    """Reconcile JSON transaction documents against JSON period documents."""

    _exit(
        cmd_reconcile(
            str(periods),
            str(transactions),
            now=now,
            limit=limit,
            output_dir=str(output_dir) if output_dir else None,
            strict=strict,
        )
    )


@app.command("backfill")
def backfill_cmd(
    periods: Annotated[Path, PERIODS_OPTION],
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    obligation_id: str = typer.Option(..., help="Obligation whose periods receive the splits."),
    *,
    transaction_id: list[str] | None = typer.Option(
        None, help="Transaction belonging to the obligation (repeatable)."
    ),
    now: Annotated[str | None, NOW_OPTION] = None,
    output_dir: Path | None = typer.Option(
        None, help="Write updated periods.json/transactions.json into this directory."
    ),
) -> None:
    """Assign historical transactions to a newly registered obligation."""

    _exit(
        cmd_backfill(
            str(periods),
            str(transactions),
            obligation_id,
            transaction_ids=transaction_id,
            now=now,
            output_dir=str(output_dir) if output_dir else None,
        )
    )


@app.command("recompute-status")
def recompute_status_cmd(
    periods: Annotated[Path, PERIODS_OPTION],
    *,
    now: Annotated[str | None, NOW_OPTION] = None,
) -> None:
    """Recompute obligation period statuses from their references."""

    _exit(cmd_recompute_status(str(periods), now=now))


@app.command("score")
def score_cmd(
    periods: Annotated[Path, PERIODS_OPTION],
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    transaction_id: str = typer.Option(..., help="Transaction to score."),
    fragment_id: str | None = typer.Option(None, help="Split to score (default: first)."),
) -> None:
    """Show how each open obligation period scores against one split."""

    _exit(cmd_score(str(periods), str(transactions), transaction_id, fragment_id=fragment_id))


@app.command("reconcile-db")
def reconcile_db_cmd(
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
    owner_id: str | None = typer.Option(None, help="Restrict to one owner's data."),
    limit: int | None = typer.Option(None, min=0, help="Process at most N transactions."),
    now: Annotated[str | None, NOW_OPTION] = None,
    strict: bool = typer.Option(False, help="Exit non-zero when any item failed."),
) -> None:
    """Reconcile transactions stored in the database."""

    _exit(
        cmd_reconcile_db(
            database_url=database_url, owner_id=owner_id, limit=limit, now=now, strict=strict
        )
    )


@app.command("init-db")
def init_db_cmd(
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Create the reconciliation tables."""

    _exit(cmd_init_db(database_url=database_url))


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Log level (default: PERIOD_RECONCILIATION_LOG_LEVEL or INFO)."
    ),
    log_file: Path | None = typer.Option(None, help="Also append log records to this file."),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level, log_file=log_file)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m period_reconciliation.cli`
    main()
