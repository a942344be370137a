"""Holder counts and holder flows.

Independent of episode segmentation. Two granularities:

- Holder counts need the as-of balance of every entity on every calendar day.
  Instead of joining each day against each entity, every transition opens an
  interval [period, next observation of the same entity) carrying its holder
  indicators; per-day counts are the running sum of interval opens minus
  closes. One sort plus one cumulative sum, linear in rows + days.
- Flows only change on days with an observation, so they are read straight
  off the transitions: below->above is `acquired`, above->below is `churned`
  (reported as a negative count, so net_change = acquired + churned).

Velocity = flow / threshold holders; zero holders gives NaN, never inf or 0.
"""
from __future__ import annotations
from typing import Optional
import pandas as pd
from loguru import logger

from ..core.custom_types import Role, ENTITY, PERIOD, BALANCE, PRIOR_BALANCE
from .classifier import ROLE_ORDER, is_above_floor

COUNT_COLUMNS = ['all_holders', 'threshold_holders'] + [f'{r}_holders' for r in ROLE_ORDER]
FLOW_COLUMNS = ['acquired', 'churned'] + [f'{r}_{k}' for r in ROLE_ORDER for k in ('acquired', 'churned')]


def _roles(transitions: pd.DataFrame) -> pd.Series:
    if 'role' in transitions.columns:
        return transitions['role'].fillna(Role.PASSIVE_HOLDER.value)
    return pd.Series(Role.PASSIVE_HOLDER.value, index=transitions.index)


def _by_period(values: pd.DataFrame, periods: pd.Series, calendar: pd.DatetimeIndex) -> pd.DataFrame:
    summed = values.groupby(periods.to_numpy()).sum()
    return summed.reindex(calendar, fill_value=0)


def as_of_holder_counts(transitions: pd.DataFrame, calendar: pd.DatetimeIndex, floor: float) -> pd.DataFrame:
    """Per calendar day, how many entities hold as of that day (latest observation <= day)."""
    if transitions is None or transitions.empty:
        return pd.DataFrame(0, index=calendar, columns=COUNT_COLUMNS)
    t = transitions.sort_values([ENTITY, PERIOD])
    start, end = calendar[0], calendar[-1]
    above = is_above_floor(t[BALANCE], floor)
    roles = _roles(t)
    ind = pd.DataFrame({'all_holders': (t[BALANCE] > 0), 'threshold_holders': above}, index=t.index)
    for r in ROLE_ORDER:
        ind[f'{r}_holders'] = above & (roles == r)
    ind = ind.astype('int64')

    next_period = t.groupby(ENTITY, sort=False)[PERIOD].shift(-1)
    # facts older than the window take effect on its first day
    opens = t[PERIOD].where(t[PERIOD] >= start, start)
    closes = next_period.where(next_period >= start, start)
    open_in = opens <= end
    close_in = next_period.notna() & (closes <= end)
    plus = _by_period(ind[open_in], opens[open_in], calendar)
    minus = _by_period(ind[close_in], closes[close_in], calendar)
    counts = (plus - minus).cumsum()
    if (counts < 0).any().any():
        logger.error("holders.negative_count detected, transitions are not ordered per entity")
    return counts[COUNT_COLUMNS]


def holder_flows(transitions: pd.DataFrame, calendar: pd.DatetimeIndex, floor: float) -> pd.DataFrame:
    """Per calendar day, entities crossing the floor upward (acquired) and downward (churned, negative)."""
    if transitions is None or transitions.empty:
        return pd.DataFrame(0, index=calendar, columns=FLOW_COLUMNS)
    t = transitions[(transitions[PERIOD] >= calendar[0]) & (transitions[PERIOD] <= calendar[-1])]
    above = is_above_floor(t[BALANCE], floor)
    # first observation: no prior, counts as below
    prior_above = is_above_floor(t[PRIOR_BALANCE], floor)
    acquired = above & ~prior_above
    churned = prior_above & ~above
    roles = _roles(t)
    flows = pd.DataFrame({'acquired': acquired.astype('int64'), 'churned': -churned.astype('int64')}, index=t.index)
    for r in ROLE_ORDER:
        in_role = roles == r
        flows[f'{r}_acquired'] = flows['acquired'].where(in_role, 0)
        flows[f'{r}_churned'] = flows['churned'].where(in_role, 0)
    return _by_period(flows, t[PERIOD], calendar)[FLOW_COLUMNS]


def holder_summary(transitions: pd.DataFrame, calendar: pd.DatetimeIndex, floor: float) -> pd.DataFrame:
    """Daily holders, flows, net/gross change and holder velocity.

    `transitions` may carry a `role` column (see classifier.attach_labels);
    without it every entity counts as a passive holder.
    """
    counts = as_of_holder_counts(transitions, calendar, floor)
    flows = holder_flows(transitions, calendar, floor)
    out = counts.join(flows)
    out['net_change'] = out['acquired'] + out['churned']
    out['gross_turnover'] = out['acquired'].abs() + out['churned'].abs()
    holders = out['threshold_holders'].where(out['threshold_holders'] > 0).astype(float)
    out['holder_velocity'] = out['net_change'] / holders
    out['gross_holder_velocity'] = out['gross_turnover'] / holders
    out.index.name = PERIOD
    return out.reset_index()


def entity_net_change(transitions: pd.DataFrame, floor: float, entity_id: Optional[str] = None) -> pd.Series:
    """Σ (acquired + churned) per entity over all its transitions."""
    t = transitions if entity_id is None else transitions[transitions[ENTITY] == entity_id]
    above = is_above_floor(t[BALANCE], floor).astype('int64')
    prior_above = is_above_floor(t[PRIOR_BALANCE], floor).astype('int64')
    return (above - prior_above).groupby(t[ENTITY]).sum()

__all__ = ['as_of_holder_counts', 'holder_flows', 'holder_summary', 'entity_net_change',
           'COUNT_COLUMNS', 'FLOW_COLUMNS']
