"""File observation sources: CSV/Parquet snapshot exports read into a frame.

Files hold one row per (owner or token account, day) with at least an owner,
a day and an end-of-day balance column. Column aliasing and per-owner
aggregation happen in dq.normalizer; this module only reads.
"""
from __future__ import annotations
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd
from loguru import logger

from ..core.custom_types import Observation, ENTITY, PERIOD, BALANCE
from ..dq.normalizer import to_canonical_observations


def _infer_format(path: str) -> str:
    return 'parquet' if path.lower().endswith(('.parquet', '.pq')) else 'csv'


def load_observations(path: str, format: Optional[str] = None) -> pd.DataFrame:
    """Read a raw observation export, keeping the stream order of the file."""
    fmt = format or _infer_format(path)
    if not Path(path).is_file():
        raise FileNotFoundError(f"observation file not found: {path}")
    if fmt == 'csv':
        df = pd.read_csv(path)
    elif fmt == 'parquet':
        df = pd.read_parquet(path, engine='pyarrow')
    else:
        raise ValueError(f"unsupported format {fmt}")
    logger.info(f"observations.loaded path={path} format={fmt} rows={len(df)}")
    return df


class FileObservationSource:
    """Iterable view over an observation file, yielding per-owner observations."""

    def __init__(self, path: str, format: Optional[str] = None):
        self.path = path
        self.format = format or _infer_format(path)

    def frame(self) -> pd.DataFrame:
        return load_observations(self.path, self.format)

    def __iter__(self) -> Iterator[Observation]:
        df = to_canonical_observations(self.frame())
        for row in df[[ENTITY, PERIOD, BALANCE]].itertuples(index=False):
            yield Observation(str(row[0]), pd.Timestamp(row[1]).normalize(), float(row[2]))


def write_table(df: pd.DataFrame, out_dir: str, name: str, format: str = 'csv') -> Path:
    """Write one output table as `<out_dir>/<name>.<format>`."""
    Path(out_dir).mkdir(parents=True, exist_ok=True)
    path = Path(out_dir) / f"{name}.{format}"
    if format == 'parquet':
        df.to_parquet(path, index=False, engine='pyarrow')
    elif format == 'csv':
        df.to_csv(path, index=False)
    else:
        raise ValueError(f"unsupported format {format}")
    logger.debug(f"output.written table={name} rows={len(df)} path={path}")
    return path

__all__ = ['load_observations', 'FileObservationSource', 'write_table']
