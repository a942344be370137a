"""
Time-Related Utilities
----------------------

Helpers for the fixed daily calendar every table is keyed on. Periods are
midnight timestamps; anything finer than a day is truncated, since the model
only ever sees one observation per entity per day.
"""

from datetime import date, datetime
from typing import Union

import pandas as pd

PeriodLike = Union[str, date, datetime, pd.Timestamp]


def to_period(value: PeriodLike) -> pd.Timestamp:
    """
    Converts a date-like value into a daily period (tz-naive midnight Timestamp).
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.normalize()


def to_periods(values: pd.Series) -> pd.Series:
    """Vectorized `to_period` for a column of dates, timestamps or strings."""
    ts = pd.to_datetime(values, utc=True)
    return ts.dt.tz_localize(None).dt.normalize()


def daily_calendar(start: PeriodLike, end: PeriodLike) -> pd.DatetimeIndex:
    """
    Returns every day in [start, end], both inclusive, named `period`.
    """
    start_p, end_p = to_period(start), to_period(end)
    if end_p < start_p:
        raise ValueError(f"calendar end {end_p.date()} precedes start {start_p.date()}")
    return pd.date_range(start_p, end_p, freq="D", name="period")


def days_between(later: pd.Series, earlier: pd.Series) -> pd.Series:
    """Whole days from `earlier` to `later` (NaN where either side is missing)."""
    return (later - earlier).dt.days
