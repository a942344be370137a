"""Transition detection.

Pairs every observation with the entity's previously observed balance and runs
the per-entity holding state machine over the result. This is the primitive
shared by the episode reconstruction path and the holder/flow path.

Output columns:
  entity_id, period, balance, prior_balance : the transition itself
  is_entry / is_exit                        : zero->positive / positive->zero
  episode_id                                : running count of entries (>= 1)
  transition                                : entry | added | partial_sell | exit | inactive
"""
from __future__ import annotations
from typing import Tuple
import numpy as np
import pandas as pd
from loguru import logger

from ..core.custom_types import (
    NOT_HOLDING, TransitionKind,
    ENTITY, PERIOD, BALANCE, PRIOR_BALANCE, EPISODE_ID,
)
from ..dq.validators import find_order_violations


class TransitionOrderError(ValueError):
    """Observations of one entity are not strictly increasing in period."""

    def __init__(self, entity_id, period, prior_period):
        self.entity_id = entity_id
        self.period = period
        self.prior_period = prior_period
        super().__init__(
            f"observations out of order for entity={entity_id}: "
            f"period {period} does not follow {prior_period}"
        )


def check_period_order(observations: pd.DataFrame) -> None:
    """Raise TransitionOrderError for the first entity whose stream is not strictly ordered."""
    violations = find_order_violations(observations)
    if not violations.empty:
        row = violations.iloc[0]
        raise TransitionOrderError(row[ENTITY], row[PERIOD], row['prior_period'])


def filter_stateful(observations: pd.DataFrame, floor: float) -> pd.DataFrame:
    """Keep entities whose lifetime peak balance exceeds `floor`.

    Wallets that only ever held dust are pure traders and carry no holding
    signal worth segmenting.
    """
    if observations.empty:
        return observations
    peak = observations.groupby(ENTITY, sort=False)[BALANCE].transform('max')
    keep = peak > floor
    dropped = observations.loc[~keep, ENTITY].nunique()
    if dropped:
        logger.info(f"transitions.pure_traders_dropped entities={dropped} floor={floor}")
    return observations[keep]


def assign_episode_ids(entity_ids: np.ndarray, balances: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Run the holding state machine over rows grouped by entity, ordered by period.

    Returns (episode_id, is_entry, is_exit) arrays aligned with the input.
    """
    n = len(balances)
    episode_ids = np.zeros(n, dtype=np.int64)
    entries = np.zeros(n, dtype=bool)
    exits = np.zeros(n, dtype=bool)
    state = NOT_HOLDING
    current = None
    for i in range(n):
        if entity_ids[i] != current:
            current = entity_ids[i]
            state = NOT_HOLDING
        b = balances[i]
        entries[i] = state.is_entry(b)
        exits[i] = state.is_exit(b)
        state = state.step(b)
        episode_ids[i] = state.episode_id
    return episode_ids, entries, exits


def label_transitions(balance: pd.Series, prior: pd.Series) -> np.ndarray:
    has_prior = prior.notna()
    prior_f = prior.fillna(0.0)
    conditions = [
        (balance > 0) & (~has_prior | (prior_f <= 0)),
        has_prior & (balance > prior_f),
        has_prior & (balance < prior_f) & (balance > 0),
        (balance <= 0) & (prior_f > 0),
    ]
    choices = [TransitionKind.ENTRY.value, TransitionKind.ADDED.value,
               TransitionKind.PARTIAL_SELL.value, TransitionKind.EXIT.value]
    return np.select(conditions, choices, default=TransitionKind.INACTIVE.value)


def empty_transitions() -> pd.DataFrame:
    return pd.DataFrame({
        ENTITY: pd.Series(dtype=object),
        PERIOD: pd.Series(dtype='datetime64[ns]'),
        BALANCE: pd.Series(dtype=float),
        PRIOR_BALANCE: pd.Series(dtype=float),
        'is_entry': pd.Series(dtype=bool),
        'is_exit': pd.Series(dtype=bool),
        EPISODE_ID: pd.Series(dtype='int64'),
        'transition': pd.Series(dtype=object),
    })


def build_transitions(observations: pd.DataFrame, drop_noise: bool = True) -> pd.DataFrame:
    """Turn an observation stream into ordered per-entity transitions.

    The stream must already be strictly ordered per entity; this is checked,
    not assumed (a violation raises TransitionOrderError). Rows where both the
    balance and the prior balance are zero or absent are noise and are dropped
    so they cannot seed spurious episodes.
    """
    cols = [ENTITY, PERIOD, BALANCE, PRIOR_BALANCE, 'is_entry', 'is_exit', EPISODE_ID, 'transition']
    if observations is None or observations.empty:
        return empty_transitions()
    check_period_order(observations)
    df = observations[[ENTITY, PERIOD, BALANCE]].sort_values([ENTITY, PERIOD]).reset_index(drop=True)
    df[PRIOR_BALANCE] = df.groupby(ENTITY, sort=False)[BALANCE].shift(1)
    if drop_noise:
        noise = (df[BALANCE] <= 0) & (df[PRIOR_BALANCE].isna() | (df[PRIOR_BALANCE] <= 0))
        if noise.any():
            logger.debug(f"transitions.noise_dropped rows={int(noise.sum())}")
            df = df[~noise].reset_index(drop=True)
    episode_ids, entries, exits = assign_episode_ids(df[ENTITY].to_numpy(), df[BALANCE].to_numpy(dtype=float))
    df['is_entry'] = entries
    df['is_exit'] = exits
    df[EPISODE_ID] = episode_ids
    df['transition'] = label_transitions(df[BALANCE], df[PRIOR_BALANCE])
    return df[cols]

__all__ = [
    'TransitionOrderError', 'check_period_order', 'filter_stateful',
    'assign_episode_ids', 'label_transitions', 'empty_transitions', 'build_transitions',
]
