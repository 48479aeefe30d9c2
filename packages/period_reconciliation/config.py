"""Tunable thresholds and weights for the reconciliation engine.

Every numeric policy knob used by the classifier, the obligation matcher and
the status aggregator lives on :class:`ReconciliationSettings`. Engine
functions accept a ``settings`` keyword and fall back to
:data:`DEFAULT_SETTINGS` so boundary cases can be tested precisely.

Environment overrides
---------------------
:func:`load_settings` overlays ``RECON_*`` environment variables on top of the
defaults (e.g. ``RECON_MIN_MATCH_SCORE=60``). The CLI loads a local ``.env``
with ``python-dotenv`` before calling it; library code never reads ``.env``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ReconciliationError

_ENV_PREFIX = "RECON_"


class ReconciliationSettings(BaseModel):
    """Frozen, validated set of engine tunables."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # PaymentClassifier
    extra_principal_tolerance: Decimal = Decimal("0.10")
    advance_window: timedelta = timedelta(days=7)

    # ObligationMatcher
    merchant_weight: float = 50.0
    amount_weight: float = 30.0
    date_weight: float = 20.0
    date_decay_per_day: float = 2.0
    amount_tolerance: Decimal = Decimal("0.10")
    date_window: timedelta = timedelta(days=7)
    min_match_score: float = 50.0

    # StatusAggregator
    due_soon_window: timedelta = timedelta(days=3)

    @field_validator("extra_principal_tolerance", "amount_tolerance")
    @classmethod
    def _non_negative_ratio(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("tolerance must be >= 0")
        return v

    @field_validator("advance_window", "date_window", "due_soon_window")
    @classmethod
    def _non_negative_window(cls, v: timedelta) -> timedelta:
        if v < timedelta(0):
            raise ValueError("window must not be negative")
        return v

    @field_validator(
        "merchant_weight", "amount_weight", "date_weight", "date_decay_per_day", "min_match_score"
    )
    @classmethod
    def _non_negative_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("weights and thresholds must be >= 0")
        return v


DEFAULT_SETTINGS = ReconciliationSettings()

# Env var suffix -> (field name, parser). Windows are given in (fractional) days.
_ENV_FIELDS: dict[str, tuple[str, type]] = {
    "EXTRA_PRINCIPAL_TOLERANCE": ("extra_principal_tolerance", Decimal),
    "ADVANCE_WINDOW_DAYS": ("advance_window", timedelta),
    "MERCHANT_WEIGHT": ("merchant_weight", float),
    "AMOUNT_WEIGHT": ("amount_weight", float),
    "DATE_WEIGHT": ("date_weight", float),
    "DATE_DECAY_PER_DAY": ("date_decay_per_day", float),
    "AMOUNT_TOLERANCE": ("amount_tolerance", Decimal),
    "DATE_WINDOW_DAYS": ("date_window", timedelta),
    "MIN_MATCH_SCORE": ("min_match_score", float),
    "DUE_SOON_WINDOW_DAYS": ("due_soon_window", timedelta),
}


def load_settings(environ: Mapping[str, str] | None = None) -> ReconciliationSettings:
    """Return settings with ``RECON_*`` overrides applied on top of the defaults.

    Raises :class:`~period_reconciliation.errors.ReconciliationError` with the
    offending variable name when a value cannot be parsed or fails validation.
    """

    env = os.environ if environ is None else environ
    overrides: dict[str, object] = {}
    for suffix, (field, kind) in _ENV_FIELDS.items():
        raw = env.get(_ENV_PREFIX + suffix)
        if raw is None or not raw.strip():
            continue
        try:
            if kind is timedelta:
                overrides[field] = timedelta(days=float(raw))
            elif kind is Decimal:
                overrides[field] = Decimal(raw.strip())
            else:
                overrides[field] = float(raw)
        except (ArithmeticError, ValueError) as exc:
            raise ReconciliationError(
                f"invalid value for {_ENV_PREFIX + suffix}: {raw!r}"
            ) from exc

    if not overrides:
        return DEFAULT_SETTINGS
    try:
        return ReconciliationSettings(**overrides)
    except ValidationError as exc:
        raise ReconciliationError(f"invalid reconciliation settings: {exc}") from exc


__all__ = ["DEFAULT_SETTINGS", "ReconciliationSettings", "load_settings"]
