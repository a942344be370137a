"""Canonicalization of raw balance snapshots into the observation schema.

Raw end-of-day snapshots arrive per token account; a single owner may control
several accounts, so balances are summed per (owner, day) to get the wallet
level observation. Group order follows first appearance so that the
per-entity ordering of the source stream is preserved for the order check.
"""
from __future__ import annotations
import pandas as pd
import numpy as np
from loguru import logger

from ..core.custom_types import ENTITY, PERIOD, BALANCE
from ..core.timeutils import to_periods

_CANON = [ENTITY, PERIOD, BALANCE]

# Source column names seen in snapshot exports, mapped to canonical names.
_ALIASES = {
    'owner': ENTITY,
    'token_balance_owner': ENTITY,
    'wallet': ENTITY,
    'address': ENTITY,
    'day': PERIOD,
    'date': PERIOD,
    'block_date': PERIOD,
    'eod_balance': BALANCE,
    'token_balance': BALANCE,
}


def to_canonical_observations(df: pd.DataFrame, settings: dict | None = None) -> pd.DataFrame:
    if df is None:
        return pd.DataFrame(columns=_CANON)
    dq = (settings or {}).get('data_quality') or {}
    rename_map = {}
    for col in df.columns:
        key = str(col).lower()
        if col not in _CANON and key in _ALIASES and _ALIASES[key] not in df.columns:
            rename_map[col] = _ALIASES[key]
    if rename_map:
        df = df.rename(columns=rename_map)
    missing = [c for c in _CANON if c not in df.columns]
    if missing:
        raise ValueError(f"observation frame missing columns {missing}")
    if len(df) == 0:
        return pd.DataFrame({ENTITY: pd.Series(dtype=object),
                             PERIOD: pd.Series(dtype='datetime64[ns]'),
                             BALANCE: pd.Series(dtype=float)})
    out = df[_CANON].copy()
    out[ENTITY] = out[ENTITY].astype(str)
    out[PERIOD] = to_periods(out[PERIOD])
    out[BALANCE] = pd.to_numeric(out[BALANCE], errors='coerce').astype(float)
    bad = ~np.isfinite(out[BALANCE]) | out[PERIOD].isna()
    if bad.any():
        logger.warning(f"normalizer.dropped_unparseable rows={int(bad.sum())}")
        out = out[~bad]
    merged = None
    if dq.get('aggregate_accounts', True):
        before = len(out)
        out = out.groupby([ENTITY, PERIOD], sort=False, as_index=False)[BALANCE].sum()
        merged = before - len(out)
        if merged:
            logger.info(f"normalizer.accounts_merged rows_in={before} rows_out={len(out)}")
    decimals = dq.get('balance_decimals_max')
    if decimals is not None:
        q = 10 ** int(decimals)
        out[BALANCE] = (out[BALANCE] * q).round().div(q)
    out = out.reset_index(drop=True)[_CANON]
    if merged is not None:
        out.attrs['merged_account_rows'] = int(merged)
    return out

__all__ = ['to_canonical_observations']
