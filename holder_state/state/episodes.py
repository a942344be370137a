"""Episode bounds and per-episode calendar expansion.

An episode starts on its first transition and ends on its exit period, if it
has one. Open episodes are never given a persisted close; they are rendered
to the window end each time they are expanded.

Expansion generates days only inside each episode's own bounds, so the output
size is the sum of episode lengths rather than entities x calendar.
"""
from __future__ import annotations
from typing import List
import numpy as np
import pandas as pd

from ..core.custom_types import (
    BoundaryConvention, Episode, ONE_DAY,
    ENTITY, PERIOD, BALANCE, EPISODE_ID, START_PERIOD, END_PERIOD,
)
from ..core.timeutils import to_period

BOUNDS_COLUMNS = [ENTITY, EPISODE_ID, START_PERIOD, END_PERIOD, 'is_open', 'length_days', 'observed_sum', 'is_valid']


def episode_bounds(transitions: pd.DataFrame, window_end) -> pd.DataFrame:
    """One row per (entity, episode): start, exit (NaT while open) and length.

    `length_days` runs to the exit period, or to `window_end` for open episodes.
    `observed_sum` is the sum of actually observed balances in the episode.
    Episodes starting after `window_end` are left out.
    """
    if transitions is None or transitions.empty:
        return pd.DataFrame({
            ENTITY: pd.Series(dtype=object),
            EPISODE_ID: pd.Series(dtype='int64'),
            START_PERIOD: pd.Series(dtype='datetime64[ns]'),
            END_PERIOD: pd.Series(dtype='datetime64[ns]'),
            'is_open': pd.Series(dtype=bool),
            'length_days': pd.Series(dtype='int64'),
            'observed_sum': pd.Series(dtype=float),
            'is_valid': pd.Series(dtype=bool),
        })
    end = to_period(window_end)
    t = transitions[transitions[EPISODE_ID] > 0]
    g = t.groupby([ENTITY, EPISODE_ID], sort=True)
    bounds = g[PERIOD].min().rename(START_PERIOD).to_frame()
    bounds['observed_sum'] = g[BALANCE].sum()
    exits = t[t['is_exit']].groupby([ENTITY, EPISODE_ID])[PERIOD].min().rename(END_PERIOD)
    bounds = bounds.join(exits, how='left').reset_index()
    # episodes starting after the window have no active day in it
    bounds = bounds[bounds[START_PERIOD] <= end].reset_index(drop=True)
    bounds['is_open'] = bounds[END_PERIOD].isna()
    bounds['length_days'] = (bounds[END_PERIOD].fillna(end) - bounds[START_PERIOD]).dt.days.astype('int64')
    bounds['is_valid'] = bounds['observed_sum'] > 0
    return bounds[BOUNDS_COLUMNS]


def to_episodes(bounds: pd.DataFrame) -> List[Episode]:
    out = []
    for row in bounds.itertuples(index=False):
        end_p = getattr(row, END_PERIOD)
        out.append(Episode(
            entity_id=getattr(row, ENTITY),
            episode_id=int(getattr(row, EPISODE_ID)),
            start_period=getattr(row, START_PERIOD),
            end_period=None if pd.isna(end_p) else end_p,
            observed_sum=float(row.observed_sum),
        ))
    return out


def last_active_periods(bounds: pd.DataFrame, window_end, convention: BoundaryConvention) -> pd.Series:
    """Vectorized Episode.last_active_period over a bounds frame."""
    end = to_period(window_end)
    closes = bounds[END_PERIOD]
    if BoundaryConvention(convention) == BoundaryConvention.SUPPLY_DISTRIBUTION:
        closes = closes - ONE_DAY
    closes = closes.fillna(end)
    return closes.where(closes <= end, end)


def expand_episodes(bounds: pd.DataFrame, window_end, convention: BoundaryConvention) -> pd.DataFrame:
    """Expand each episode into one row per active day under `convention`.

    Rows carry entity_id, episode_id, period, start_period, end_period, is_open.
    Episodes with no active day (e.g. starting after the window) yield nothing.
    """
    cols = [ENTITY, EPISODE_ID, PERIOD, START_PERIOD, END_PERIOD, 'is_open']
    if bounds is None or bounds.empty:
        return pd.DataFrame({
            ENTITY: pd.Series(dtype=object),
            EPISODE_ID: pd.Series(dtype='int64'),
            PERIOD: pd.Series(dtype='datetime64[ns]'),
            START_PERIOD: pd.Series(dtype='datetime64[ns]'),
            END_PERIOD: pd.Series(dtype='datetime64[ns]'),
            'is_open': pd.Series(dtype=bool),
        })
    last = last_active_periods(bounds, window_end, convention)
    n_days = ((last - bounds[START_PERIOD]).dt.days + 1).clip(lower=0).to_numpy(dtype=np.int64)
    rows = np.repeat(np.arange(len(bounds)), n_days)
    # day offset of each generated row within its own episode
    offsets = np.arange(n_days.sum()) - np.repeat(np.cumsum(n_days) - n_days, n_days)
    out = bounds.iloc[rows][[ENTITY, EPISODE_ID, START_PERIOD, END_PERIOD, 'is_open']].reset_index(drop=True)
    out[PERIOD] = out[START_PERIOD] + pd.to_timedelta(offsets, unit='D')
    return out[cols]

__all__ = ['episode_bounds', 'to_episodes', 'last_active_periods', 'expand_episodes', 'BOUNDS_COLUMNS']
