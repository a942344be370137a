"""Data validation for the balance observation log."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import pandas as pd
import numpy as np
from loguru import logger

from ..core.custom_types import Diagnosis, ENTITY, PERIOD, BALANCE
from ..core.timeutils import to_period

@dataclass
class ValidationReport:
    ok: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    diagnoses: List[Diagnosis] = field(default_factory=list)

    def add_error(self, msg: str):
        self.errors.append(msg)
        self.ok = False

    def add_warning(self, msg: str):
        self.warnings.append(msg)

    def summary(self) -> Dict[str, Any]:
        return {"ok": self.ok, "errors": self.errors, "warnings": self.warnings, **self.stats}

_DEF_COLS = [ENTITY, PERIOD, BALANCE]


def find_order_violations(df: pd.DataFrame) -> pd.DataFrame:
    """Rows whose period does not strictly follow the previous row of the same entity.

    Works on the frame in its given (stream) order. A repeated period is a
    violation too, since two observations on one day cannot be ordered.
    Returns the offending rows with a `prior_period` column.
    """
    if df is None or len(df) == 0:
        return pd.DataFrame(columns=[ENTITY, PERIOD, 'prior_period'])
    prev = df.groupby(ENTITY, sort=False)[PERIOD].shift(1)
    bad = prev.notna() & (df[PERIOD] <= prev)
    out = df.loc[bad, [ENTITY, PERIOD]].copy()
    out['prior_period'] = prev[bad]
    return out


def validate_observations_df(df: pd.DataFrame, settings: dict, start_period=None, end_period=None) -> ValidationReport:
    """Check a canonical observation frame and collect errors, warnings and stats.

    With `aggregate_accounts` on (the default) the normalizer has already summed
    repeated (entity, period) rows, so `duplicate_observations` cannot fire; the
    number of merged rows is reported as the `merged_account_rows` stat instead.
    The duplicate check matters for frames normalized with aggregation off.
    """
    dq = (settings or {}).get("data_quality") or {}
    rep = ValidationReport(ok=True)
    if df is None or len(df) == 0:
        rep.add_warning("empty_df")
        rep.stats["rows"] = 0
        return rep
    missing = [c for c in _DEF_COLS if c not in df.columns]
    if missing:
        rep.add_error(f"missing_cols={missing}")
        return rep
    # Order is checked on the stream as delivered, BEFORE any sorting
    violations = find_order_violations(df)
    if not violations.empty:
        first = violations.drop_duplicates(subset=[ENTITY], keep='first')
        rep.add_error(f"out_of_order entities={len(first)} rows={len(violations)}")
        for row in first.itertuples(index=False):
            rep.diagnoses.append(Diagnosis(
                code="out_of_order",
                entity_id=getattr(row, ENTITY),
                period=getattr(row, PERIOD),
                message=f"period {getattr(row, PERIOD).date()} does not follow {row.prior_period.date()}",
            ))
    dups = df.duplicated(subset=[ENTITY, PERIOD], keep='first')
    if dups.any():
        rep.stats["duplicates"] = int(dups.sum())
        rep.add_error(f"duplicate_observations count={int(dups.sum())}")
    balances = df[BALANCE].to_numpy(dtype=float)
    if not np.isfinite(balances).all():
        rep.add_error(f"non_finite_balances count={int((~np.isfinite(balances)).sum())}")
    negative = df[df[BALANCE] < 0]
    if len(negative):
        rep.add_error(f"negative_balances count={len(negative)}")
        for row in negative.drop_duplicates(subset=[ENTITY]).itertuples(index=False):
            rep.diagnoses.append(Diagnosis(
                code="negative_balance",
                entity_id=getattr(row, ENTITY),
                period=getattr(row, PERIOD),
                message=f"balance {getattr(row, BALANCE)} < 0",
            ))
    if start_period is not None and end_period is not None:
        lo, hi = to_period(start_period), to_period(end_period)
        outside = (df[PERIOD] < lo) | (df[PERIOD] > hi)
        if outside.any():
            rep.stats["out_of_window"] = int(outside.sum())
            msg = f"out_of_window rows={int(outside.sum())} window={lo.date()}..{hi.date()}"
            if dq.get("strict_window", False):
                rep.add_error(msg)
            else:
                rep.add_warning(msg)
        # Coverage: share of window days carrying at least one observation
        days = (hi - lo).days + 1
        observed = df.loc[~outside, PERIOD].nunique()
        rep.stats["coverage_pct"] = (observed / max(1, days)) * 100.0
        min_cov = dq.get("min_day_coverage_pct", 0)
        if rep.stats["coverage_pct"] < min_cov:
            rep.add_warning(f"low_coverage coverage_pct={rep.stats['coverage_pct']:.2f} min={min_cov}")
    if "merged_account_rows" in df.attrs:
        rep.stats["merged_account_rows"] = int(df.attrs["merged_account_rows"])
    rep.stats["rows"] = len(df)
    rep.stats["entities"] = int(df[ENTITY].nunique())
    rep.stats["first_period"] = str(df[PERIOD].min().date())
    rep.stats["last_period"] = str(df[PERIOD].max().date())
    if not rep.ok:
        logger.warning(f"dq.observations_invalid errors={rep.errors}")
    return rep

__all__ = ["validate_observations_df", "find_order_violations", "ValidationReport"]
