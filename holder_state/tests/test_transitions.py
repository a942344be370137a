import numpy as np
import pandas as pd
import pytest

from holder_state.core.custom_types import NOT_HOLDING, HoldingState
from holder_state.state.transitions import (
    build_transitions, TransitionOrderError, filter_stateful, assign_episode_ids,
)


def test_state_machine_counts_entries():
    s = NOT_HOLDING
    ids = []
    for b in [0, 5, 7, 0, 0, 3, 0]:
        s = s.step(b)
        ids.append(s.episode_id)
    assert ids == [0, 1, 1, 1, 1, 2, 2]
    assert s == HoldingState(2, False)


def test_assign_episode_ids_resets_per_entity():
    ents = np.array(["a", "a", "a", "b", "b"], dtype=object)
    bals = np.array([1.0, 0.0, 2.0, 3.0, 0.0])
    ids, entries, exits = assign_episode_ids(ents, bals)
    assert ids.tolist() == [1, 1, 2, 1, 1]
    assert entries.tolist() == [True, False, True, True, False]
    assert exits.tolist() == [False, True, False, False, True]


def test_build_transitions_exit_reentry(exit_reentry_observations):
    t = build_transitions(exit_reentry_observations)
    assert t.balance.tolist() == [500.0, 0.0, 250.0]
    assert np.isnan(t.prior_balance.iloc[0])
    assert t.prior_balance.iloc[1:].tolist() == [500.0, 0.0]
    assert t.episode_id.tolist() == [1, 1, 2]
    assert t.transition.tolist() == ["entry", "exit", "entry"]


def test_noise_rows_never_seed_episodes(make_obs):
    obs = make_obs([
        ("z", "2024-01-01", 0),
        ("z", "2024-01-02", 0),
        ("a", "2024-01-01", 10),
        ("a", "2024-01-02", 0),
        ("a", "2024-01-03", 0),
    ])
    t = build_transitions(obs)
    assert "z" not in set(t.entity_id)
    # the second zero after an exit has prior 0 and is dropped too
    assert t[t.entity_id == "a"].period.dt.day.tolist() == [1, 2]


def test_transition_labels(make_obs):
    obs = make_obs([("a", "2024-01-01", 10), ("a", "2024-01-02", 20), ("a", "2024-01-03", 5), ("a", "2024-01-04", 0)])
    t = build_transitions(obs)
    assert t.transition.tolist() == ["entry", "added", "partial_sell", "exit"]


def test_out_of_order_raises(make_obs):
    obs = make_obs([("a", "2024-01-05", 10), ("a", "2024-01-02", 5)])
    with pytest.raises(TransitionOrderError) as exc:
        build_transitions(obs)
    assert exc.value.entity_id == "a"
    assert exc.value.prior_period == pd.Timestamp("2024-01-05")


def test_filter_stateful_drops_dust_wallets(make_obs):
    obs = make_obs([("a", "2024-01-01", 50), ("a", "2024-01-02", 150), ("d", "2024-01-01", 100)])
    out = filter_stateful(obs, 100.0)
    # peak must exceed the floor strictly
    assert set(out.entity_id) == {"a"}
    assert len(out) == 2


def test_empty_input():
    t = build_transitions(pd.DataFrame(columns=["entity_id", "period", "balance"]))
    assert t.empty
    assert "episode_id" in t.columns
