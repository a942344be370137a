"""Cohort, supply-age and supply decomposition tables.

All three read the supply view of the reconstructed state (exit period
excluded) after normalization, so every period's buckets add up to the known
total quantity.

Cohort: share = normalized_balance / known_total; a wallet falls in the first
threshold whose max_share is strictly greater than its share.
Age: days since the current episode started; a wallet falls in the first
boundary with age <= max_days, otherwise in the overflow bucket.
"""
from __future__ import annotations
from typing import List, Optional, Sequence
import numpy as np
import pandas as pd
from loguru import logger

from ..core.custom_types import Significance, PERIOD, START_PERIOD, ENTITY
from ..core.timeutils import days_between
from .classifier import ROLE_ORDER


def _thresholds(cohorts) -> List[tuple]:
    return [(t.max_share, t.label) for t in cohorts.thresholds]


def _boundaries(ages) -> List[tuple]:
    return [(b.max_days, b.label) for b in ages.boundaries]


def _pivot(frame: pd.DataFrame, by: str, value: str, calendar: pd.DatetimeIndex,
           labels: Sequence[str], aggfunc: str = 'sum') -> pd.DataFrame:
    """Per-period aggregate of `value` per label of `by`, one column per label, zero filled."""
    if frame.empty:
        return pd.DataFrame(0.0, index=calendar, columns=list(labels))
    table = frame.pivot_table(index=PERIOD, columns=by, values=value, aggfunc=aggfunc, fill_value=0, observed=False)
    return table.reindex(index=calendar, columns=list(labels), fill_value=0)


def assign_cohorts(normalized_balance: pd.Series, known_total: float, thresholds: Sequence[tuple]) -> pd.Series:
    bounds = np.asarray([t[0] for t in thresholds], dtype=float)
    labels = np.asarray([t[1] for t in thresholds], dtype=object)
    share = normalized_balance.to_numpy(dtype=float) / float(known_total)
    idx = np.searchsorted(bounds, share, side='right')
    overflow = (idx >= len(bounds)) & ~np.isnan(share)
    if overflow.any():
        logger.warning(f"cohorts.share_above_last_bound rows={int(overflow.sum())} bound={bounds[-1]}")
    idx = np.minimum(idx, len(bounds) - 1)
    out = pd.Series(labels[idx], index=normalized_balance.index, name='cohort')
    return out.where(~np.isnan(share))


def cohort_distribution(state: pd.DataFrame, calendar: pd.DatetimeIndex, known_total: float, cohorts) -> pd.DataFrame:
    """Per period: `<label>_balance`, `<label>_supply_pct` and `<label>_wallets`."""
    thresholds = _thresholds(cohorts)
    labels = [t[1] for t in thresholds]
    df = state[[ENTITY, PERIOD, 'normalized_balance']].copy()
    df['cohort'] = assign_cohorts(df['normalized_balance'], known_total, thresholds)
    balances = _pivot(df, 'cohort', 'normalized_balance', calendar, labels)
    wallets = _pivot(df, 'cohort', ENTITY, calendar, labels, aggfunc='count')
    out = pd.DataFrame(index=calendar)
    for label in labels:
        out[f'{label}_balance'] = balances[label].astype(float)
        out[f'{label}_supply_pct'] = balances[label] / float(known_total) * 100.0
        out[f'{label}_wallets'] = wallets[label].astype('int64')
    out.index.name = PERIOD
    return out.reset_index()


def assign_age_buckets(periods: pd.Series, start_periods: pd.Series, boundaries: Sequence[tuple],
                       overflow_label: str, unknown_label: str) -> pd.Series:
    max_days = np.asarray([b[0] for b in boundaries], dtype=float)
    labels = np.asarray([b[1] for b in boundaries] + [overflow_label], dtype=object)
    age = days_between(periods, start_periods).to_numpy(dtype=float)
    idx = np.searchsorted(max_days, age, side='left')
    out = pd.Series(labels[np.minimum(idx, len(labels) - 1)], index=periods.index, name='age_bucket')
    return out.where(~np.isnan(age), unknown_label)


def age_labels(ages) -> List[str]:
    return [b.label for b in ages.boundaries] + [ages.overflow_label, ages.unknown_label]


def with_age_buckets(state: pd.DataFrame, ages) -> pd.DataFrame:
    out = state.copy()
    out['age_bucket'] = assign_age_buckets(out[PERIOD], out[START_PERIOD], _boundaries(ages),
                                           ages.overflow_label, ages.unknown_label)
    return out


def age_distribution(state: pd.DataFrame, calendar: pd.DatetimeIndex, ages,
                     known_total: Optional[float] = None) -> pd.DataFrame:
    """Normalized supply per age bucket per period, as `<label>_supply` (+ `_pct` with a known total)."""
    df = state if 'age_bucket' in state.columns else with_age_buckets(state, ages)
    labels = age_labels(ages)
    table = _pivot(df, 'age_bucket', 'normalized_balance', calendar, labels)
    out = pd.DataFrame(index=calendar)
    for label in labels:
        out[f'{label}_supply'] = table[label].astype(float)
        if known_total:
            out[f'{label}_supply_pct'] = table[label] / float(known_total) * 100.0
    out.index.name = PERIOD
    return out.reset_index()


def supply_decomposition(state: pd.DataFrame, calendar: pd.DatetimeIndex, ages) -> pd.DataFrame:
    """Per period: supply per role, aged (overflow bucket) supply per role, and the floor split.

    `state` must carry `role` and `significance` (classifier.attach_labels).
    """
    df = state if 'age_bucket' in state.columns else with_age_buckets(state, ages)
    by_role = _pivot(df, 'role', 'normalized_balance', calendar, ROLE_ORDER)
    aged = _pivot(df[df['age_bucket'] == ages.overflow_label], 'role', 'normalized_balance', calendar, ROLE_ORDER)
    sig = _pivot(df, 'significance', 'normalized_balance', calendar,
                 [Significance.ABOVE_FLOOR.value, Significance.BELOW_FLOOR.value])
    out = pd.DataFrame(index=calendar)
    for role in ROLE_ORDER:
        out[f'supply_{role}'] = by_role[role].astype(float)
    for role in ROLE_ORDER:
        out[f'aged_supply_{role}'] = aged[role].astype(float)
    out['above_floor_supply'] = sig[Significance.ABOVE_FLOOR.value].astype(float)
    out['below_floor_supply'] = sig[Significance.BELOW_FLOOR.value].astype(float)
    out['total_supply'] = out['above_floor_supply'] + out['below_floor_supply']
    out.index.name = PERIOD
    return out.reset_index()

__all__ = ['assign_cohorts', 'cohort_distribution', 'assign_age_buckets', 'age_labels',
           'with_age_buckets', 'age_distribution', 'supply_decomposition']
