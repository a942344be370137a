"""End-to-end holder state pipeline.

    raw snapshots -> normalizer -> validator
                  -> order check (entities out of order excluded, diagnosed)
                  -> reconstruction path: StateReconstructor -> labels -> cohorts/ages/decomposition
                                                                      -> supply flows (holder view)
                  -> holder path:        transitions -> labels -> holders/flows -> velocity

The two paths share only the transition primitive. The holder path sees every
order-valid entity; the reconstruction path additionally drops wallets whose
peak never exceeded the significance floor, which normalization compensates.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from .core.config import Settings
from .core.custom_types import Diagnosis, ENTITY, PERIOD, BALANCE
from .core.timeutils import daily_calendar
from .dq.normalizer import to_canonical_observations
from .dq.validators import ValidationReport, validate_observations_df
from .onchain.registry import RoleOracle, StaticRoleOracle, RegistryRoleOracle
from .state.transitions import build_transitions
from .state.reconstructor import StateReconstructor
from .analytics.classifier import attach_labels
from .analytics.holders import holder_summary
from .analytics.velocity import normalize_velocity
from .analytics.cohorts import with_age_buckets, cohort_distribution, age_distribution, supply_decomposition
from .analytics.supply_flows import supply_flows, opening_balances

DIAGNOSTIC_COLUMNS = ['code', ENTITY, PERIOD, 'message']


@dataclass
class PipelineResult:
    transitions: pd.DataFrame
    episodes: pd.DataFrame
    holder_state: pd.DataFrame
    supply_state: pd.DataFrame
    holders: pd.DataFrame
    cohorts: pd.DataFrame
    ages: pd.DataFrame
    supply: pd.DataFrame
    supply_flows: pd.DataFrame
    report: ValidationReport
    diagnoses: List[Diagnosis] = field(default_factory=list)

    @property
    def diagnostics(self) -> pd.DataFrame:
        if not self.diagnoses:
            return pd.DataFrame(columns=DIAGNOSTIC_COLUMNS)
        return pd.DataFrame([d.as_row() for d in self.diagnoses])[DIAGNOSTIC_COLUMNS]

    def tables(self) -> Dict[str, pd.DataFrame]:
        return {
            'transitions': self.transitions,
            'episodes': self.episodes,
            'holder_state': self.holder_state,
            'supply_state': self.supply_state,
            'holders': self.holders,
            'cohorts': self.cohorts,
            'ages': self.ages,
            'supply': self.supply,
            'supply_flows': self.supply_flows,
            'diagnostics': self.diagnostics,
        }


def default_oracle(settings: Settings) -> RoleOracle:
    if settings.registry.dir_path:
        return RegistryRoleOracle.from_settings(settings.registry)
    logger.warning("pipeline.no_registry every entity is a passive holder")
    return StaticRoleOracle()


def run_pipeline(observations: pd.DataFrame, settings: Settings, oracle: Optional[RoleOracle] = None) -> PipelineResult:
    """Run both analysis paths over one observation frame."""
    cfg = settings.model_dump()
    oracle = oracle or default_oracle(settings)
    start, end = settings.window.start_period, settings.window.end_period
    calendar = daily_calendar(start, end)
    floor = settings.supply.significance_floor
    known_total = settings.supply.known_total_quantity

    obs = to_canonical_observations(observations, cfg)
    report = validate_observations_df(obs, cfg, start, end)
    diagnoses = [d for d in report.diagnoses if d.code != 'out_of_order']

    reconstructor = StateReconstructor.from_settings(settings)
    ordered, order_diagnoses = reconstructor.exclude_unordered(obs)
    diagnoses.extend(order_diagnoses)

    # reconstruction path
    recon = reconstructor.run(ordered)
    supply_state = attach_labels(recon.supply_state, oracle, floor, 'filled_balance')
    supply_state = with_age_buckets(supply_state, settings.ages)
    cohorts = cohort_distribution(supply_state, calendar, known_total, settings.cohorts)
    ages = age_distribution(supply_state, calendar, settings.ages, known_total)
    supply = supply_decomposition(supply_state, calendar, settings.ages)
    flows = supply_flows(recon.holder_state, calendar, known_total, settings.velocity.supply_flow_window_days,
                         opening=opening_balances(recon.transitions, start))

    # holder path
    transitions = attach_labels(build_transitions(ordered), oracle, floor, BALANCE)
    holders = holder_summary(transitions, calendar, floor)
    holders = normalize_velocity(holders, settings.velocity.rolling_baseline_window_days)

    episodes = recon.episodes
    logger.success(
        f"pipeline.done periods={len(calendar)} entities={obs[ENTITY].nunique() if len(obs) else 0} "
        f"episodes={len(episodes)} diagnoses={len(diagnoses)}"
    )
    return PipelineResult(
        transitions=transitions,
        episodes=episodes,
        holder_state=recon.holder_state,
        supply_state=supply_state,
        holders=holders,
        cohorts=cohorts,
        ages=ages,
        supply=supply,
        supply_flows=flows,
        report=report,
        diagnoses=diagnoses,
    )

__all__ = ['run_pipeline', 'PipelineResult', 'default_oracle']
