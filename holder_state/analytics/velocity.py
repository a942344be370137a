"""Velocity normalization against a rolling median baseline.

baseline[t] = median(value[t-N] .. value[t-1])   (current period excluded)
normalized  = value / baseline                   (NaN when baseline is 0 or NaN)

The first N periods of the series have fewer than N prior values; they still
get a baseline from what exists but are flagged `low_confidence`.
"""
from __future__ import annotations
from typing import Iterable
import numpy as np
import pandas as pd

DEFAULT_COLUMNS = ('holder_velocity', 'gross_holder_velocity')


def rolling_baseline(values: pd.Series, window: int) -> pd.Series:
    return values.rolling(window=window, min_periods=1).median().shift(1)


def normalize_velocity(frame: pd.DataFrame, window: int, columns: Iterable[str] = DEFAULT_COLUMNS) -> pd.DataFrame:
    """Add `<col>_baseline` and `<col>_normalized` for each column, plus `low_confidence`.

    `frame` must be one row per period, sorted by period.
    """
    if window <= 0:
        raise ValueError(f"baseline window must be positive, got {window}")
    out = frame.copy()
    for col in columns:
        base = rolling_baseline(out[col].astype(float), window)
        out[f'{col}_baseline'] = base
        out[f'{col}_normalized'] = out[col] / base.where(base != 0)
    out['low_confidence'] = np.arange(len(out)) < window
    return out

__all__ = ['rolling_baseline', 'normalize_velocity']
