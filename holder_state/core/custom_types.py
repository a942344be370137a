"""
Custom Type Definitions
-----------------------

Centralized, reusable types shared by the reconstruction and analytics layers.

- EntityId / Period: aliases for a wallet owner address and a daily period.
- Role / Significance: the classification labels attached to state rows.
- BoundaryConvention: whether an episode's exit period counts as held.
- HoldingState: the per-entity episode state machine
  (NOT_HOLDING -> Holding(1) -> NotHolding(1) -> Holding(2) ...).
- Episode / Diagnosis: immutable records produced by a reconstruction run.
"""
from __future__ import annotations
from enum import Enum
from typing import Optional
from dataclasses import dataclass

import pandas as pd

# Wallet owner address (token accounts are already summed per owner).
EntityId = str

# A daily period, always a midnight pandas Timestamp.
Period = pd.Timestamp

ONE_DAY = pd.Timedelta(days=1)

# Canonical column names shared by every table.
ENTITY = "entity_id"
PERIOD = "period"
BALANCE = "balance"
PRIOR_BALANCE = "prior_balance"
EPISODE_ID = "episode_id"
START_PERIOD = "start_period"
END_PERIOD = "end_period"


class Role(str, Enum):
    """Mutually exclusive wallet roles, listed in precedence order."""
    INFRASTRUCTURE = "infrastructure"
    ACTIVE_PARTICIPANT = "active_participant"
    PASSIVE_HOLDER = "passive_holder"


class Significance(str, Enum):
    ABOVE_FLOOR = "above_floor"
    BELOW_FLOOR = "below_floor"


class BoundaryConvention(str, Enum):
    """How an episode's exit period is treated when expanding it to days.

    HOLDER_COUNT keeps the exit period (the wallet still held at the start of it);
    SUPPLY_DISTRIBUTION drops it (the supply has already left the wallet).
    """
    HOLDER_COUNT = "holder_count"
    SUPPLY_DISTRIBUTION = "supply_distribution"


class TransitionKind(str, Enum):
    ENTRY = "entry"
    ADDED = "added"
    PARTIAL_SELL = "partial_sell"
    EXIT = "exit"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class HoldingState:
    """Episode state of one entity after consuming its transitions so far.

    `episode_id` is 0 until the first entry and only ever increases by one on
    an entry, so ids are monotonic per entity by construction.
    """
    episode_id: int = 0
    holding: bool = False

    def step(self, balance: float) -> "HoldingState":
        if balance > 0 and not self.holding:
            return HoldingState(self.episode_id + 1, True)
        if balance <= 0 and self.holding:
            return HoldingState(self.episode_id, False)
        return self

    def is_entry(self, balance: float) -> bool:
        return balance > 0 and not self.holding

    def is_exit(self, balance: float) -> bool:
        return balance <= 0 and self.holding


NOT_HOLDING = HoldingState()


@dataclass(frozen=True)
class Observation:
    entity_id: EntityId
    period: Period
    balance: float


@dataclass(frozen=True)
class Episode:
    """A holding segment. `end_period` is the exit period, or None while open."""
    entity_id: EntityId
    episode_id: int
    start_period: Period
    end_period: Optional[Period] = None
    observed_sum: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.end_period is None

    @property
    def is_valid(self) -> bool:
        return self.observed_sum > 0

    def last_active_period(self, window_end: Period, convention: BoundaryConvention) -> Period:
        """Last period this episode renders to under `convention`.

        Open episodes run to the window end inclusive; closed ones stop at the
        exit period (holder counting) or the day before it (distribution).
        """
        if self.end_period is None:
            return window_end
        if convention == BoundaryConvention.HOLDER_COUNT:
            return min(self.end_period, window_end)
        return min(self.end_period - ONE_DAY, window_end)

    def covers(self, period: Period, window_end: Period, convention: BoundaryConvention) -> bool:
        return self.start_period <= period <= self.last_active_period(window_end, convention)


@dataclass(frozen=True)
class Diagnosis:
    """A locally recovered problem, pinned to the offending entity/period."""
    code: str
    entity_id: Optional[EntityId] = None
    period: Optional[Period] = None
    message: str = ""

    def as_row(self) -> dict:
        return {
            "code": self.code,
            ENTITY: self.entity_id,
            PERIOD: self.period,
            "message": self.message,
        }
