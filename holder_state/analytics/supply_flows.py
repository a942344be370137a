"""Daily supply flows from the holder view of reconstructed state.

The holder view keeps an episode's exit period, so an exit shows as the
forward-filled balance dropping to zero on that day. Per entity:

    delta = filled_balance - previous filled_balance

The previous balance of an entity's first in-window row is its last balance
observed before the window (zero when it has none), so supply already held at
window start is not booked as inflow on the first day.

Per period the deltas are split into inflow (positive) and outflow (negative,
reported as a magnitude).
"""
from __future__ import annotations
from typing import Optional
import numpy as np
import pandas as pd

from ..core.custom_types import ENTITY, PERIOD, BALANCE
from ..core.timeutils import to_period

FLOW_COLUMNS = ['inflow', 'outflow', 'net_flow', 'gross_flow']


def opening_balances(transitions: pd.DataFrame, window_start) -> pd.Series:
    """Last observed balance per entity strictly before `window_start`."""
    if transitions is None or transitions.empty:
        return pd.Series(dtype=float)
    before = transitions[transitions[PERIOD] < to_period(window_start)]
    if before.empty:
        return pd.Series(dtype=float)
    return before.sort_values([ENTITY, PERIOD]).groupby(ENTITY)[BALANCE].last().astype(float)


def balance_deltas(holder_state: pd.DataFrame, opening: Optional[pd.Series] = None) -> pd.Series:
    s = holder_state.sort_values([ENTITY, PERIOD])
    filled = s['filled_balance'].fillna(0.0)
    prev = filled.groupby(s[ENTITY], sort=False).shift(1)
    if opening is not None and len(opening):
        prev = prev.fillna(s[ENTITY].map(opening))
    return (filled - prev).fillna(filled).reindex(holder_state.index)


def supply_flows(holder_state: pd.DataFrame, calendar: pd.DatetimeIndex, known_total: float,
                 window: int = 7, opening: Optional[pd.Series] = None) -> pd.DataFrame:
    """Per period inflow/outflow/net/gross, their share of supply and a trailing gross sum.

    `opening` (see `opening_balances`) carries balances held before the window.
    """
    if holder_state is None or holder_state.empty:
        out = pd.DataFrame(0.0, index=calendar, columns=FLOW_COLUMNS)
    else:
        delta = balance_deltas(holder_state, opening)
        frame = pd.DataFrame({
            'inflow': delta.clip(lower=0),
            'outflow': (-delta).clip(lower=0),
            'net_flow': delta,
        })
        out = frame.groupby(holder_state[PERIOD].to_numpy()).sum().reindex(calendar, fill_value=0.0)
        out['gross_flow'] = out['inflow'] + out['outflow']
    total = float(known_total) if known_total else np.nan
    out['net_flow_pct_supply'] = out['net_flow'] / total * 100.0
    out['gross_flow_pct_supply'] = out['gross_flow'] / total * 100.0
    out[f'gross_flow_{window}d'] = out['gross_flow'].rolling(window=window, min_periods=1).sum()
    out[f'gross_flow_{window}d_pct_supply'] = out[f'gross_flow_{window}d'] / total * 100.0
    out.index.name = PERIOD
    return out.reset_index()

__all__ = ['opening_balances', 'balance_deltas', 'supply_flows']
