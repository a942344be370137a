import numpy as np
import pandas as pd
import pytest

from holder_state.core.config import CohortSettings, AgeSettings
from holder_state.core.timeutils import daily_calendar
from holder_state.analytics.cohorts import (
    assign_cohorts, cohort_distribution, assign_age_buckets, age_distribution, supply_decomposition,
)

TOTAL = 10_000.0


def _thresholds():
    return [(t.max_share, t.label) for t in CohortSettings().thresholds]


def _boundaries():
    return [(b.max_days, b.label) for b in AgeSettings().boundaries]


def test_cohort_boundaries_are_strict_upper_bounds():
    balances = pd.Series([0.5, 1.0, 50.0, 100.0, 5000.0])
    assert assign_cohorts(balances, TOTAL, _thresholds()).tolist() == [
        "krill", "fish", "dolphin", "whale", "whale",
    ]


def test_share_beyond_last_bound_goes_to_last_cohort():
    out = assign_cohorts(pd.Series([10_000.0, 20_000.0]), TOTAL, _thresholds())
    assert out.tolist() == ["whale", "whale"]


def test_cohort_distribution():
    state = pd.DataFrame({
        "entity_id": ["a", "b", "c", "a"],
        "period": pd.to_datetime(["2024-01-01", "2024-01-01", "2024-01-01", "2024-01-02"]),
        "normalized_balance": [0.5, 0.7, 9998.8, 10_000.0],
    })
    cal = daily_calendar("2024-01-01", "2024-01-03")
    out = cohort_distribution(state, cal, TOTAL, CohortSettings()).set_index("period")
    day1 = out.loc[pd.Timestamp("2024-01-01")]
    assert day1.krill_wallets == 2
    assert day1.krill_balance == pytest.approx(1.2)
    assert day1.whale_supply_pct == pytest.approx(99.988)
    assert out.loc[pd.Timestamp("2024-01-02"), "whale_wallets"] == 1
    # a period with no state is all zeros
    assert out.loc[pd.Timestamp("2024-01-03")].sum() == 0


def test_age_buckets():
    periods = pd.Series(pd.to_datetime(["2024-07-20"] * 7))
    starts = pd.Series(pd.to_datetime([
        "2024-07-20", "2024-07-19", "2024-06-20", "2024-06-19", "2024-04-21", "2024-01-02", None,
    ]))
    out = assign_age_buckets(periods, starts, _boundaries(), "m6_plus", "unknown")
    assert out.tolist() == ["active", "sub_1_month", "sub_1_month", "m1_3", "m1_3", "m6_plus", "unknown"]


def _labeled_state():
    return pd.DataFrame({
        "entity_id": ["a", "b", "c", "d"],
        "period": pd.to_datetime(["2024-07-20"] * 4),
        "start_period": pd.to_datetime(["2024-01-01", "2024-07-20", "2024-07-01", "2023-12-01"]),
        "normalized_balance": [4000.0, 3000.0, 2000.0, 1000.0],
        "role": ["passive_holder", "active_participant", "passive_holder", "infrastructure"],
        "significance": ["above_floor", "above_floor", "below_floor", "above_floor"],
    })


def test_age_distribution_sums_to_total():
    cal = daily_calendar("2024-07-20", "2024-07-20")
    out = age_distribution(_labeled_state(), cal, AgeSettings(), TOTAL).iloc[0]
    assert out.m6_plus_supply == 5000.0
    assert out.active_supply == 3000.0
    assert out.sub_1_month_supply == 2000.0
    supply_cols = [c for c in out.index if c.endswith("_supply")]
    assert out[supply_cols].sum() == pytest.approx(TOTAL)
    assert out.m6_plus_supply_pct == pytest.approx(50.0)


def test_supply_decomposition():
    cal = daily_calendar("2024-07-20", "2024-07-21")
    out = supply_decomposition(_labeled_state(), cal, AgeSettings()).set_index("period")
    day = out.loc[pd.Timestamp("2024-07-20")]
    assert day.supply_passive_holder == 6000.0
    assert day.supply_infrastructure == 1000.0
    assert day.aged_supply_passive_holder == 4000.0
    assert day.aged_supply_infrastructure == 1000.0
    assert day.aged_supply_active_participant == 0.0
    assert day.above_floor_supply == 8000.0
    assert day.below_floor_supply == 2000.0
    assert day.total_supply == pytest.approx(TOTAL)
    assert np.allclose(out.loc[pd.Timestamp("2024-07-21")].to_numpy(dtype=float), 0.0)
