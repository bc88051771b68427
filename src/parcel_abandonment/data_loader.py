"""
Data loading utilities for parcel probability series.

This module handles:
- Observation validation (range clamping, timestamp ordering)
- Per-parcel series storage
- Loading from long/wide tables and xarray datacubes
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
import xarray as xr

from .exceptions import InvalidObservationError
from .series import ParcelSeries, parse_timestamps, to_time_axis

logger = logging.getLogger(__name__)


def validate_observations(
    parcel_id: Any,
    timestamps: Iterable,
    values: Iterable,
    strict: bool = False
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Clean raw observations into a valid series.

    - Infinite values become missing (NaN)
    - Values outside [0, 1] are clamped
    - Observations whose timestamp does not increase are dropped
    - String timestamps are read as numbers or dates

    Parameters
    ----------
    parcel_id : hashable
        Parcel identifier (for messages)
    timestamps : array-like
        Ordinal or datetime timestamps, in acquisition order
    values : array-like
        Probability values
    strict : bool
        Raise instead of correcting

    Returns
    -------
    tuple
        (timestamps, values) as numpy arrays

    Raises
    ------
    InvalidObservationError
        When strict is set, or when the timestamps are neither numbers
        nor dates
    """
    try:
        timestamps = parse_timestamps(timestamps)
    except ValueError as e:
        raise InvalidObservationError(parcel_id, None, str(e)) from e
    values = np.asarray(values, dtype=float)

    if timestamps.shape != values.shape or timestamps.ndim != 1:
        raise InvalidObservationError(
            parcel_id, 0, "timestamps and values must be 1D and of equal length"
        )

    values = values.copy()
    t = to_time_axis(timestamps)
    keep = np.ones(len(values), dtype=bool)
    last_t = None

    for i in range(len(values)):
        if np.isnan(t[i]):
            _reject(parcel_id, i, "missing timestamp", strict)
            keep[i] = False
            continue
        if last_t is not None and t[i] <= last_t:
            _reject(parcel_id, i, f"timestamp {timestamps[i]} not after previous", strict)
            keep[i] = False
            continue
        last_t = t[i]

        v = values[i]
        if np.isnan(v):
            continue
        if np.isinf(v):
            _reject(parcel_id, i, "infinite value treated as missing", strict)
            values[i] = np.nan
        elif v < 0 or v > 1:
            _reject(parcel_id, i, f"value {v:.4f} outside [0, 1], clamped", strict)
            values[i] = min(max(v, 0.0), 1.0)

    return timestamps[keep], values[keep]


def _time_column(times: pd.Series) -> pd.Series:
    """Parse a text time column as dates so it sorts chronologically."""
    if pd.api.types.is_numeric_dtype(times) or pd.api.types.is_datetime64_any_dtype(times):
        return times
    try:
        return pd.to_datetime(times)
    except (ValueError, TypeError) as e:
        raise InvalidObservationError(
            None, None, f"time column '{times.name}' holds values that are neither numbers nor dates: {e}"
        ) from e


def _reject(parcel_id, position: int, reason: str, strict: bool):
    error = InvalidObservationError(parcel_id, position, reason)
    if strict:
        raise error
    logger.warning(str(error))


class SeriesStore:
    """Parcel id -> probability series, in insertion order."""

    def __init__(self, strict: bool = False):
        """
        Parameters
        ----------
        strict : bool
            Raise InvalidObservationError instead of correcting observations
        """
        self.strict = strict
        self._series: 'OrderedDict[Any, ParcelSeries]' = OrderedDict()

    def add(self, parcel_id: Any, timestamps: Iterable, values: Iterable) -> ParcelSeries:
        """Validate and store one parcel's observations."""
        if parcel_id in self._series:
            raise ValueError(f"Parcel {parcel_id!r} already loaded")
        t, v = validate_observations(parcel_id, timestamps, values, strict=self.strict)
        series = ParcelSeries(parcel_id, t, v)
        self._series[parcel_id] = series
        return series

    def __len__(self) -> int:
        return len(self._series)

    def __contains__(self, parcel_id) -> bool:
        return parcel_id in self._series

    def __getitem__(self, parcel_id) -> ParcelSeries:
        return self._series[parcel_id]

    def __iter__(self) -> Iterator[ParcelSeries]:
        return iter(self._series.values())

    @property
    def parcel_ids(self) -> List[Any]:
        return list(self._series.keys())

    @classmethod
    def from_dict(
        cls,
        data: Dict[Any, Tuple[Iterable, Iterable]],
        strict: bool = False
    ) -> 'SeriesStore':
        """Build from ``{parcel_id: (timestamps, values)}``."""
        store = cls(strict=strict)
        for parcel_id, (timestamps, values) in data.items():
            store.add(parcel_id, timestamps, values)
        return store

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        parcel_col: str = 'parcel_id',
        time_col: str = 'time',
        value_col: str = 'probability',
        strict: bool = False
    ) -> 'SeriesStore':
        """
        Build from a long table (one row per parcel and time step).

        Parameters
        ----------
        df : pd.DataFrame
            Long-format observations
        parcel_col, time_col, value_col : str
            Column names
        strict : bool
            Raise on invalid observations

        Returns
        -------
        SeriesStore
        """
        missing = [c for c in (parcel_col, time_col, value_col) if c not in df.columns]
        if missing:
            raise ValueError(f"Columns not found in table: {missing}")

        df = df.assign(**{time_col: _time_column(df[time_col])})
        store = cls(strict=strict)
        # Stable sort keeps the first row of duplicated timestamps
        ordered = df.sort_values([parcel_col, time_col], kind='mergesort')
        for parcel_id, group in ordered.groupby(parcel_col, sort=False):
            store.add(parcel_id, group[time_col].to_numpy(), group[value_col].to_numpy())
        return store

    @classmethod
    def from_wide_dataframe(cls, df: pd.DataFrame, strict: bool = False) -> 'SeriesStore':
        """Build from a table with one row per parcel and one column per time step."""
        timestamps = np.asarray(df.columns)
        store = cls(strict=strict)
        for parcel_id, row in df.iterrows():
            store.add(parcel_id, timestamps, row.to_numpy(dtype=float))
        return store

    @classmethod
    def from_dataarray(
        cls,
        da: xr.DataArray,
        parcel_dim: str = 'parcel',
        time_dim: str = 'time',
        strict: bool = False
    ) -> 'SeriesStore':
        """
        Build from a (parcel, time) probability datacube.

        Parameters
        ----------
        da : xr.DataArray
            Probability values with parcel and time dimensions
        parcel_dim, time_dim : str
            Dimension names

        Returns
        -------
        SeriesStore
        """
        for dim in (parcel_dim, time_dim):
            if dim not in da.dims:
                raise ValueError(f"Dimension '{dim}' not found in DataArray {da.dims}")

        da = da.transpose(parcel_dim, time_dim).sortby(time_dim)
        timestamps = da[time_dim].values
        values = da.values
        store = cls(strict=strict)
        for i, parcel_id in enumerate(da[parcel_dim].values.tolist()):
            store.add(parcel_id, timestamps, values[i])
        return store

    @classmethod
    def read_csv(
        cls,
        path: str,
        parcel_col: str = 'parcel_id',
        time_col: str = 'time',
        value_col: str = 'probability',
        parse_dates: bool = False,
        strict: bool = False
    ) -> 'SeriesStore':
        """Load a long-format CSV file."""
        df = pd.read_csv(path, parse_dates=[time_col] if parse_dates else None)
        return cls.from_dataframe(df, parcel_col, time_col, value_col, strict=strict)

    def to_dataframe(
        self,
        parcel_col: str = 'parcel_id',
        time_col: str = 'time',
        value_col: str = 'probability'
    ) -> pd.DataFrame:
        """Export all series as a long table."""
        frames = [
            pd.DataFrame({
                parcel_col: [s.parcel_id] * len(s),
                time_col: s.timestamps,
                value_col: s.values,
            })
            for s in self
        ]
        if not frames:
            return pd.DataFrame(columns=[parcel_col, time_col, value_col])
        return pd.concat(frames, ignore_index=True)


def describe_store(store: SeriesStore, min_observations: Optional[int] = None) -> pd.DataFrame:
    """
    Summarize the loaded series.

    Parameters
    ----------
    store : SeriesStore
        Loaded series
    min_observations : int, optional
        If given, adds an 'eligible' column

    Returns
    -------
    pd.DataFrame
        One row per parcel with counts, time range and value statistics
    """
    rows = []
    for s in store:
        valid = s.values[s.valid_mask]
        rows.append({
            'parcel_id': s.parcel_id,
            'n_observations': len(s),
            'n_valid': s.n_valid,
            'first_time': s.timestamps[0] if len(s) else None,
            'last_time': s.timestamps[-1] if len(s) else None,
            'mean': float(valid.mean()) if len(valid) else np.nan,
            'min': float(valid.min()) if len(valid) else np.nan,
            'max': float(valid.max()) if len(valid) else np.nan,
        })

    summary = pd.DataFrame(rows)
    if min_observations is not None and len(summary):
        summary['eligible'] = summary['n_valid'] >= min_observations
    return summary
