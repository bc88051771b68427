"""
Value objects for parcel time series and fitted trend models.

This module handles:
- Parcel probability series (immutable, time-ordered)
- Vertices and piecewise-linear trend models
- Fit results and abandonment verdicts
"""

from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd


STATUS_FITTED = 'fitted'
STATUS_INSUFFICIENT = 'insufficient-data'


class Observation(NamedTuple):
    """Single probability observation (NaN value = missing)."""
    timestamp: Any
    value: float


class Vertex(NamedTuple):
    """Breakpoint of a trend model; ``value`` is a fitted parameter."""
    timestamp: float
    value: float


def _readonly(values: np.ndarray) -> np.ndarray:
    values = np.array(values, copy=True)
    values.setflags(write=False)
    return values


def parse_timestamps(timestamps) -> np.ndarray:
    """
    Ordinal or datetime64 array from raw timestamps.

    Raises
    ------
    ValueError
        Values that are neither numbers nor dates
    """
    timestamps = np.asarray(timestamps)
    if timestamps.dtype.kind not in 'OUS':
        return timestamps
    try:
        return timestamps.astype(float)
    except (ValueError, TypeError):
        pass
    try:
        return pd.to_datetime(timestamps).to_numpy()
    except (ValueError, TypeError) as e:
        raise ValueError(f"timestamps are neither numbers nor dates: {e}") from e


def to_time_axis(timestamps: np.ndarray) -> np.ndarray:
    """
    Convert timestamps to a numeric axis.

    Ordinal timestamps are used as-is. Dates become fractional days
    since the first timestamp. Strings are read as numbers if they can
    be, else parsed as dates.

    Parameters
    ----------
    timestamps : np.ndarray
        Ordinal numbers, datetime64 values or their string forms

    Returns
    -------
    np.ndarray
        float64 time axis
    """
    timestamps = parse_timestamps(timestamps)
    if np.issubdtype(timestamps.dtype, np.datetime64):
        if len(timestamps) == 0:
            return np.zeros(0)
        delta = timestamps - timestamps[0]
        return delta / np.timedelta64(1, 'D')
    return timestamps.astype(float)


@dataclass(frozen=True, eq=False)
class ParcelSeries:
    """
    Ordered probability observations for one parcel.

    Construct through ``SeriesStore`` to get validation; the constructor
    itself only checks shapes and timestamp order.
    """
    parcel_id: Any
    timestamps: np.ndarray
    values: np.ndarray

    def __post_init__(self):
        timestamps = np.asarray(self.timestamps)
        values = np.asarray(self.values, dtype=float)
        if timestamps.ndim != 1 or values.shape != timestamps.shape:
            raise ValueError(
                f"Parcel {self.parcel_id!r}: timestamps and values must be "
                f"1D arrays of equal length"
            )
        t = to_time_axis(timestamps)
        if len(t) > 1 and np.any(np.diff(t) <= 0):
            raise ValueError(
                f"Parcel {self.parcel_id!r}: timestamps must be strictly increasing"
            )
        object.__setattr__(self, 'timestamps', _readonly(timestamps))
        object.__setattr__(self, 'values', _readonly(values))

    def __len__(self) -> int:
        return len(self.values)

    @property
    def time_axis(self) -> np.ndarray:
        return to_time_axis(self.timestamps)

    @property
    def observations(self) -> List[Observation]:
        return [Observation(t, float(v)) for t, v in zip(self.timestamps, self.values)]

    @property
    def valid_mask(self) -> np.ndarray:
        return ~np.isnan(self.values)

    @property
    def n_valid(self) -> int:
        return int(self.valid_mask.sum())

    @property
    def sampling_interval(self) -> float:
        """Median spacing between valid observations (1.0 if undefined)."""
        t = self.time_axis[self.valid_mask]
        if len(t) < 2:
            return 1.0
        return float(np.median(np.diff(t)))

    def with_values(self, values: np.ndarray) -> 'ParcelSeries':
        """Return a copy of this series carrying new values."""
        return ParcelSeries(self.parcel_id, self.timestamps, values)


@dataclass(frozen=True)
class TrendModel:
    """
    Piecewise-linear trend defined by its vertices.

    Vertices are sorted by timestamp without duplicates; the model
    interpolates linearly between the two vertices bracketing a time.
    """
    vertices: Tuple[Vertex, ...]

    def __post_init__(self):
        vertices = tuple(Vertex(float(t), float(v)) for t, v in self.vertices)
        if len(vertices) < 2:
            raise ValueError("A trend model needs at least 2 vertices")
        times = [v.timestamp for v in vertices]
        if any(b <= a for a, b in zip(times[:-1], times[1:])):
            raise ValueError("Vertex timestamps must be strictly increasing")
        object.__setattr__(self, 'vertices', vertices)

    @property
    def n_segments(self) -> int:
        return len(self.vertices) - 1

    @property
    def vertex_times(self) -> np.ndarray:
        return np.array([v.timestamp for v in self.vertices])

    @property
    def vertex_values(self) -> np.ndarray:
        return np.array([v.value for v in self.vertices])

    def predict(self, t: np.ndarray) -> np.ndarray:
        """Evaluate the trend at the given times."""
        return np.interp(np.asarray(t, dtype=float), self.vertex_times, self.vertex_values)

    def segments(self) -> pd.DataFrame:
        """
        Describe each segment of the model.

        Returns
        -------
        pd.DataFrame
            start_time, end_time, start_value, end_value, delta, duration
        """
        times = self.vertex_times
        values = self.vertex_values
        return pd.DataFrame({
            'start_time': times[:-1],
            'end_time': times[1:],
            'start_value': values[:-1],
            'end_value': values[1:],
            'delta': np.diff(values),
            'duration': np.diff(times),
        })


@dataclass(frozen=True)
class CandidateModel:
    """One model of the elimination trace, with its goodness of fit."""
    model: TrendModel
    rss: float
    n_obs: int

    @property
    def n_segments(self) -> int:
        return self.model.n_segments

    @property
    def n_params(self) -> int:
        # One free value per vertex
        return len(self.model.vertices)


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Outcome of fitting one parcel.

    ``fitted`` holds one value per original observation, including
    missing ones. For insufficient-data results the model is None and
    ``fitted`` is all NaN.

    The model spans the valid observations only: when the first or last
    observations are missing, the end vertices sit at the first and last
    valid timestamps, and ``fitted`` holds the end vertex values constant
    over the missing leading or trailing observations.
    """
    parcel_id: Any
    status: str
    model: Optional[TrendModel]
    fitted: np.ndarray
    rss: float
    p_value: float
    candidates: Tuple[CandidateModel, ...] = ()
    candidate_p_values: Tuple[float, ...] = ()
    candidate_model_p_values: Tuple[float, ...] = ()
    despiked: Optional[ParcelSeries] = None
    error: Optional[Exception] = None

    def __post_init__(self):
        object.__setattr__(self, 'fitted', _readonly(np.asarray(self.fitted, dtype=float)))

    @property
    def is_fitted(self) -> bool:
        return self.status == STATUS_FITTED

    @property
    def n_segments(self) -> int:
        return self.model.n_segments if self.model is not None else 0

    @classmethod
    def insufficient(cls, series: ParcelSeries, error: Exception) -> 'FitResult':
        return cls(
            parcel_id=series.parcel_id,
            status=STATUS_INSUFFICIENT,
            model=None,
            fitted=np.full(len(series), np.nan),
            rss=np.nan,
            p_value=np.nan,
            error=error,
        )

    def selection_table(self) -> pd.DataFrame:
        """
        Tabulate every candidate model considered during selection.

        Returns
        -------
        pd.DataFrame
            n_segments, rss, improvement_p_value, model_p_value, selected;
            p-values are corrected for the vertex placement search
        """
        model_p_values = self.candidate_model_p_values or (np.nan,) * len(self.candidates)
        rows = []
        for cand, p, p_model in zip(self.candidates, self.candidate_p_values, model_p_values):
            rows.append({
                'n_segments': cand.n_segments,
                'rss': cand.rss,
                'improvement_p_value': p,
                'model_p_value': p_model,
                'selected': self.model is not None and cand.model == self.model,
            })
        return pd.DataFrame(rows, columns=['n_segments', 'rss', 'improvement_p_value', 'model_p_value', 'selected'])


@dataclass(frozen=True)
class AbandonmentVerdict:
    """Terminal per-parcel output of an abandonment rule."""
    parcel_id: Any
    abandoned: bool
    trigger_index: Optional[int]
    magnitude: float

    def to_record(self, fitted: Optional[np.ndarray] = None) -> Dict:
        """Export record consumed by the tabular/raster export step."""
        return {
            'parcel_id': self.parcel_id,
            'abandoned': bool(self.abandoned),
            'trigger_index': self.trigger_index,
            'magnitude': float(self.magnitude),
            'fitted_series': [] if fitted is None else [float(v) for v in fitted],
        }
