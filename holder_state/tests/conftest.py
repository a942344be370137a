"""
Pytest Fixtures for the holder_state Test Suite

Shared settings and small deterministic observation logs. Every scenario is
built by hand so the expected reconstruction can be worked out on paper.

https://docs.pytest.org/en/latest/how-to/fixtures.html
"""
import pandas as pd
import pytest
from holder_state.core.config import Settings
from holder_state.onchain.registry import StaticRoleOracle

WINDOW_START = "2024-01-01"
WINDOW_END = "2024-02-15"


def make_observations(rows):
    """rows: iterable of (entity_id, 'YYYY-MM-DD', balance) in stream order."""
    return pd.DataFrame(
        [{"entity_id": e, "period": pd.Timestamp(p), "balance": float(b)} for e, p, b in rows]
    )


@pytest.fixture(scope="session")
def settings_fixture() -> Settings:
    """
    A minimal but valid Settings object, independent of any settings.yaml.
    """
    test_config = {
        "window": {"start_period": WINDOW_START, "end_period": WINDOW_END},
        "supply": {"significance_floor": 100.0, "known_total_quantity": 10_000.0},
        "velocity": {"rolling_baseline_window_days": 5, "supply_flow_window_days": 7},
        "reconstruction": {"require_floor_crossing": True, "max_workers": 1},
    }
    return Settings.model_validate(test_config)


@pytest.fixture(scope="session")
def make_obs():
    return make_observations


@pytest.fixture(scope="session")
def oracle_fixture() -> StaticRoleOracle:
    return StaticRoleOracle.from_iterables(
        infrastructure=["pool_1", "both_1"],
        active_participants=["trader_1", "both_1"],
    )


@pytest.fixture
def exit_reentry_observations() -> pd.DataFrame:
    """Wallet E holds 500 from day 1, fully exits on day 15, re-enters with 250 on day 33."""
    return make_observations([
        ("E", "2024-01-01", 500),
        ("E", "2024-01-15", 0),
        ("E", "2024-02-02", 250),
    ])


@pytest.fixture
def mixed_observations() -> pd.DataFrame:
    """A handful of wallets covering entries, adds, partial sells, exits and dust."""
    return make_observations([
        ("A", "2024-01-01", 1000),
        ("B", "2024-01-01", 400),
        ("pool_1", "2024-01-01", 5000),
        ("A", "2024-01-05", 1500),
        ("trader_1", "2024-01-05", 300),
        ("dust_1", "2024-01-06", 5),
        ("B", "2024-01-10", 0),
        ("A", "2024-01-12", 600),
        ("trader_1", "2024-01-12", 50),
        ("dust_1", "2024-01-14", 0),
        ("B", "2024-01-20", 200),
        ("pool_1", "2024-01-25", 4800),
    ])
