import numpy as np
import pandas as pd
import pytest

from holder_state.analytics.velocity import rolling_baseline, normalize_velocity


def test_baseline_excludes_current_period():
    base = rolling_baseline(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0, 6.0]), 3)
    assert np.isnan(base.iloc[0])
    assert base.iloc[1:].tolist() == [1.0, 1.5, 2.0, 3.0, 4.0]


def test_normalized_velocity_and_low_confidence():
    frame = pd.DataFrame({"holder_velocity": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]})
    out = normalize_velocity(frame, 3, columns=["holder_velocity"])
    assert np.isnan(out.holder_velocity_normalized.iloc[0])
    assert out.holder_velocity_normalized.iloc[1:].tolist() == pytest.approx([2.0, 2.0, 2.0, 5 / 3, 1.5])
    assert out.low_confidence.tolist() == [True, True, True, False, False, False]


def test_zero_baseline_gives_null():
    frame = pd.DataFrame({"holder_velocity": [0.0, 0.0, 0.0, 5.0]})
    out = normalize_velocity(frame, 2, columns=["holder_velocity"])
    assert out.holder_velocity_normalized.isna().all()


def test_missing_velocity_values_are_skipped_by_median():
    frame = pd.DataFrame({"gross_holder_velocity": [np.nan, 2.0, 4.0, 3.0]})
    out = normalize_velocity(frame, 3, columns=["gross_holder_velocity"])
    assert out.gross_holder_velocity_baseline.tolist()[2:] == [2.0, 3.0]
    assert out.gross_holder_velocity_normalized.iloc[3] == pytest.approx(1.0)


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        normalize_velocity(pd.DataFrame({"holder_velocity": [1.0]}), 0, columns=["holder_velocity"])
