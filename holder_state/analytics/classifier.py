"""Role and significance labeling.

Role precedence is fixed: infrastructure > active_participant > passive_holder.
A pool or program address that also shows up as a trader is always labeled
infrastructure, so it is never counted as an economic participant. Addresses
unknown to both registries fall through to passive_holder.
"""
from __future__ import annotations
import numpy as np
import pandas as pd

from ..core.custom_types import Role, Significance, ENTITY
from ..onchain.registry import RoleOracle

ROLE_ORDER = [Role.INFRASTRUCTURE.value, Role.ACTIVE_PARTICIPANT.value, Role.PASSIVE_HOLDER.value]


def is_above_floor(balance, floor: float):
    """Holder predicate shared by labels, holder counts and flow crossings.

    A balance is above the floor when it is positive and at least `floor`.
    Missing balances are treated as zero.
    """
    b = pd.Series(balance, dtype=float).fillna(0.0) if not np.isscalar(balance) else float(balance)
    return (b > 0) & (b >= floor)


def classify_roles(entity_ids: pd.Series, oracle: RoleOracle) -> pd.Series:
    infra = oracle.infrastructure_addresses()
    active = oracle.active_participant_addresses()
    ids = entity_ids.astype(str)
    roles = np.select(
        [ids.isin(infra), ids.isin(active)],
        [Role.INFRASTRUCTURE.value, Role.ACTIVE_PARTICIPANT.value],
        default=Role.PASSIVE_HOLDER.value,
    )
    return pd.Series(roles, index=entity_ids.index, name='role')


def significance_labels(balances: pd.Series, floor: float) -> pd.Series:
    above = is_above_floor(balances, floor).to_numpy()
    labels = np.where(above, Significance.ABOVE_FLOOR.value, Significance.BELOW_FLOOR.value)
    return pd.Series(labels, index=balances.index, name='significance')


def attach_labels(frame: pd.DataFrame, oracle: RoleOracle, floor: float, balance_col: str) -> pd.DataFrame:
    """Return a copy of `frame` with `role` and `significance` columns."""
    out = frame.copy()
    out['role'] = classify_roles(out[ENTITY], oracle) if len(out) else pd.Series(dtype=object)
    out['significance'] = significance_labels(out[balance_col], floor) if len(out) else pd.Series(dtype=object)
    return out

__all__ = ['ROLE_ORDER', 'is_above_floor', 'classify_roles', 'significance_labels', 'attach_labels']
