"""Dense state reconstruction.

Turns the sparse observation log into one row per (entity, day) for every day
an entity's episode is active, under both boundary conventions:

  holder view (exit day included) -> holder counting, supply flows
  supply view (exit day excluded) -> distribution, cohorts, supply age

Per-entity phase (may run sharded in worker processes, no cross-entity state):
  1. order check + stateful filter
  2. transitions + episode ids          (state.transitions)
  3. episode bounds                     (state.episodes)
  4. calendar expansion per episode     (state.episodes)
  5. forward fill inside (entity, episode) only
  6. drop episodes without observed holdings
  7. dedupe (entity, period), most recent start_period wins

Per-period phase (after every shard has returned):
  8. pass 1: filled totals per period; pass 2: scale to the known total.
"""
from __future__ import annotations
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from ..core.custom_types import (
    BoundaryConvention, Diagnosis,
    ENTITY, PERIOD, BALANCE, EPISODE_ID, START_PERIOD, END_PERIOD,
)
from ..core.timeutils import to_period
from ..dq.validators import find_order_violations
from .transitions import build_transitions, check_period_order, filter_stateful
from .episodes import episode_bounds, expand_episodes

STATE_COLUMNS = [ENTITY, PERIOD, EPISODE_ID, START_PERIOD, END_PERIOD, 'is_open', 'raw_balance', 'filled_balance']


@dataclass
class ReconstructionResult:
    transitions: pd.DataFrame
    episodes: pd.DataFrame
    holder_state: pd.DataFrame
    supply_state: pd.DataFrame
    diagnoses: List[Diagnosis] = field(default_factory=list)


def render_state(transitions: pd.DataFrame, bounds: pd.DataFrame, window_start, window_end,
                 convention: BoundaryConvention) -> pd.DataFrame:
    """Expand, forward-fill, validate and dedupe episodes under one convention."""
    convention = BoundaryConvention(convention)
    spine = expand_episodes(bounds, window_end, convention)
    raw = transitions[[ENTITY, PERIOD, BALANCE]].rename(columns={BALANCE: 'raw_balance'})
    df = spine.merge(raw, on=[ENTITY, PERIOD], how='left')
    df = df.sort_values([ENTITY, EPISODE_ID, PERIOD]).reset_index(drop=True)
    keys = [df[ENTITY], df[EPISODE_ID]]
    # never crosses an episode boundary: the group key includes the episode
    df['filled_balance'] = df.groupby(keys, sort=False)['raw_balance'].ffill()
    observed = df.groupby(keys, sort=False)['raw_balance'].transform('sum')
    invalid = ~(observed > 0)
    if invalid.any():
        n_bad = df.loc[invalid, [ENTITY, EPISODE_ID]].drop_duplicates().shape[0]
        logger.debug(f"reconstruct.invalid_episodes dropped={n_bad} convention={convention.value}")
        df = df[~invalid]
    if convention == BoundaryConvention.SUPPLY_DISTRIBUTION:
        df = df[df['filled_balance'] > 0]
    df = df[df[PERIOD] >= to_period(window_start)]
    # extended exit bounds can put one (entity, period) in two episodes
    df = df.sort_values([ENTITY, PERIOD, START_PERIOD], ascending=[True, True, False])
    df = df.drop_duplicates(subset=[ENTITY, PERIOD], keep='first')
    return df.sort_values([ENTITY, PERIOD]).reset_index(drop=True)[STATE_COLUMNS]


def period_totals(state: pd.DataFrame, column: str = 'filled_balance') -> pd.Series:
    """Pass 1 of normalization: Σ column per period, computed once and not mutated."""
    return state.groupby(PERIOD)[column].sum()


def normalize_state(state: pd.DataFrame, known_total: float, totals: Optional[pd.Series] = None) -> pd.DataFrame:
    """Pass 2 of normalization: scale filled balances so each period sums to `known_total`.

    Periods whose filled total is zero get an undefined (NaN) scale.
    """
    if totals is None:
        totals = period_totals(state)
    zero = totals[~(totals > 0)]
    if len(zero):
        logger.warning(f"normalize.zero_total periods={len(zero)}")
    scale = float(known_total) / totals.where(totals > 0)
    out = state.copy()
    out['normalization_scale'] = out[PERIOD].map(scale).astype(float)
    out['normalized_balance'] = out['filled_balance'] * out['normalization_scale']
    return out


def _entity_phase(observations: pd.DataFrame, window_start, window_end) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    transitions = build_transitions(observations)
    bounds = episode_bounds(transitions, window_end)
    holder = render_state(transitions, bounds, window_start, window_end, BoundaryConvention.HOLDER_COUNT)
    supply = render_state(transitions, bounds, window_start, window_end, BoundaryConvention.SUPPLY_DISTRIBUTION)
    return transitions, bounds, holder, supply


def _shard(observations: pd.DataFrame, n: int) -> List[pd.DataFrame]:
    entities = np.sort(observations[ENTITY].unique())
    parts = [p for p in np.array_split(entities, n) if len(p)]
    return [observations[observations[ENTITY].isin(set(p))] for p in parts]


class StateReconstructor:
    """Builds holder and supply views of reconstructed daily state."""

    def __init__(self, start_period, end_period, significance_floor: float = 0.0,
                 known_total_quantity: Optional[float] = None, require_floor_crossing: bool = True,
                 max_workers: int = 1, fail_on_order_violation: bool = False):
        self.start_period = to_period(start_period)
        self.end_period = to_period(end_period)
        self.significance_floor = float(significance_floor)
        self.known_total_quantity = known_total_quantity
        self.require_floor_crossing = require_floor_crossing
        self.max_workers = max(1, int(max_workers))
        self.fail_on_order_violation = fail_on_order_violation

    @classmethod
    def from_settings(cls, settings) -> "StateReconstructor":
        return cls(
            start_period=settings.window.start_period,
            end_period=settings.window.end_period,
            significance_floor=settings.supply.significance_floor,
            known_total_quantity=settings.supply.known_total_quantity,
            require_floor_crossing=settings.reconstruction.require_floor_crossing,
            max_workers=settings.reconstruction.max_workers,
            fail_on_order_violation=settings.reconstruction.fail_on_order_violation,
        )

    def exclude_unordered(self, observations: pd.DataFrame) -> Tuple[pd.DataFrame, List[Diagnosis]]:
        """Drop entities whose stream is out of period order, one Diagnosis each.

        With `fail_on_order_violation` the first violation raises instead.
        """
        if self.fail_on_order_violation:
            check_period_order(observations)
            return observations, []
        violations = find_order_violations(observations)
        if violations.empty:
            return observations, []
        diagnoses = []
        for row in violations.drop_duplicates(subset=[ENTITY]).itertuples(index=False):
            entity = getattr(row, ENTITY)
            logger.error(f"reconstruct.order_violation entity={entity} period={getattr(row, PERIOD)} prior={row.prior_period}")
            diagnoses.append(Diagnosis(
                code="out_of_order",
                entity_id=entity,
                period=getattr(row, PERIOD),
                message="entity excluded from reconstruction",
            ))
        bad = {d.entity_id for d in diagnoses}
        return observations[~observations[ENTITY].isin(bad)], diagnoses

    def run(self, observations: pd.DataFrame) -> ReconstructionResult:
        observations, diagnoses = self.exclude_unordered(observations)
        if self.require_floor_crossing:
            observations = filter_stateful(observations, self.significance_floor)
        shards = _shard(observations, self.max_workers) if not observations.empty else []
        if len(shards) > 1:
            with ProcessPoolExecutor(max_workers=self.max_workers) as ex:
                futures = [ex.submit(_entity_phase, s, self.start_period, self.end_period) for s in shards]
                # barrier: every shard must finish before the per-period pass
                parts = [f.result() for f in futures]
        else:
            parts = [_entity_phase(observations, self.start_period, self.end_period)]
        transitions, episodes, holder, supply = (
            pd.concat([p[i] for p in parts], ignore_index=True) for i in range(4)
        )
        if self.known_total_quantity is not None:
            supply = normalize_state(supply, self.known_total_quantity)
        logger.info(
            f"reconstruct.done entities={episodes[ENTITY].nunique()} episodes={len(episodes)} "
            f"holder_rows={len(holder)} supply_rows={len(supply)} shards={len(parts)}"
        )
        return ReconstructionResult(transitions, episodes, holder, supply, diagnoses)

__all__ = ['StateReconstructor', 'ReconstructionResult', 'render_state', 'period_totals', 'normalize_state']
