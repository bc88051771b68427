"""
Temporal segmentation of probability trajectories.

This module handles:
- Candidate vertex identification (initial over-fit)
- Continuous piecewise-linear least-squares fitting
- Recovery constraint on short rebounds
- Greedy backward vertex elimination
- Fitting a parcel end to end (despike -> segment -> select)

The elimination is greedy: each step removes the vertex whose removal
raises the RSS least. It does not search for the globally optimal
vertex set.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from .config import SegmentationParams
from .exceptions import InsufficientDataError
from .preprocessing import SpikeFilter, spike_scores
from .selection import ModelSelector
from .series import (
    STATUS_FITTED,
    CandidateModel,
    FitResult,
    ParcelSeries,
    TrendModel,
)

logger = logging.getLogger(__name__)

# Local amplitudes below this are treated as a straight run
AMPLITUDE_TOLERANCE = 1e-9


def check_observations(series: ParcelSeries, min_observations: int):
    """
    Raise if the series is too short to segment.

    Raises
    ------
    InsufficientDataError
        Fewer than ``min_observations`` valid (non-missing) values
    """
    if series.n_valid < min_observations:
        raise InsufficientDataError(series.parcel_id, series.n_valid, min_observations)


def initial_vertices(t: np.ndarray, y: np.ndarray, max_vertices: int) -> List[int]:
    """
    Over-fitted starting vertex set.

    Every interior observation where the trajectory bends (local extrema
    and shoulders) is a candidate, ranked by its local amplitude: the
    distance to the chord between its two neighbors. Both endpoints are
    always kept.

    Parameters
    ----------
    t, y : np.ndarray
        Time axis and values of valid observations
    max_vertices : int
        Cap on the number of vertices, endpoints included

    Returns
    -------
    list
        Sorted observation positions
    """
    n = len(y)
    if n <= 2:
        return list(range(n))

    _, chord = spike_scores(t, y)
    amplitude = np.abs(y - chord)
    interior = [i for i in range(1, n - 1) if amplitude[i] > AMPLITUDE_TOLERANCE]

    n_interior = max(min(max_vertices, n) - 2, 0)
    ranked = sorted(interior, key=lambda i: (-amplitude[i], i))[:n_interior]
    return [0] + sorted(ranked) + [n - 1]


def fit_vertex_values(
    t: np.ndarray,
    y: np.ndarray,
    vertex_idx: List[int]
) -> Tuple[np.ndarray, float]:
    """
    Least-squares vertex values for a fixed set of vertex positions.

    The trend is continuous, so each observation is a combination of the
    two bracketing vertex values (hat basis).

    Returns
    -------
    tuple
        (vertex values, residual sum of squares)
    """
    knots = t[vertex_idx]
    basis = np.eye(len(knots))
    design = np.column_stack([np.interp(t, knots, basis[j]) for j in range(len(knots))])
    coef, *_ = np.linalg.lstsq(design, y, rcond=None)
    residuals = y - design @ coef
    return coef, float(residuals @ residuals)


def find_recovery_violation(
    vertex_times: np.ndarray,
    vertex_values: np.ndarray,
    sampling_interval: float,
    recovery_threshold: float
) -> Optional[int]:
    """
    First vertex at the bottom of a short rebound, if any.

    A rebound is a decline followed by a rise lasting at most one
    sampling interval whose magnitude exceeds ``recovery_threshold``
    times the decline.

    Returns
    -------
    int or None
        Position of the offending vertex in the vertex list
    """
    for j in range(1, len(vertex_values) - 1):
        decline = vertex_values[j - 1] - vertex_values[j]
        rise = vertex_values[j + 1] - vertex_values[j]
        duration = vertex_times[j + 1] - vertex_times[j]
        if (
            decline > 0
            and rise > 0
            and duration <= sampling_interval * (1 + 1e-9)
            and rise > recovery_threshold * decline
        ):
            return j
    return None


class VertexFitter:
    """
    Vertex-based piecewise-linear trend fitter.

    Parameters
    ----------
    params : SegmentationParams, optional
        Defaults to ``SegmentationParams()``
    selector : ModelSelector, optional
        Defaults to a selector built from ``params``
    """

    def __init__(
        self,
        params: Optional[SegmentationParams] = None,
        selector: Optional[ModelSelector] = None
    ):
        self.params = (params or SegmentationParams()).validate()
        self.spike_filter = SpikeFilter(self.params.spike_threshold)
        self.selector = selector or ModelSelector(
            self.params.pval_threshold, self.params.best_model_proportion
        )

    def fit(self, series: ParcelSeries) -> FitResult:
        """
        Despike, segment and select the trend model for one parcel.

        Never raises for short series: those come back with status
        ``insufficient-data``.
        """
        try:
            check_observations(series, self.params.min_observations_needed)
        except InsufficientDataError as e:
            logger.debug(str(e))
            return FitResult.insufficient(series, e)

        despiked = self.spike_filter.filter(series)
        mask = despiked.valid_mask
        t = despiked.time_axis[mask]
        y = despiked.values[mask]

        trace = self.elimination_trace(t, y, despiked.sampling_interval)
        tss = float(np.sum((y - y.mean()) ** 2))
        selection = self.selector.select(trace, tss=tss)
        model = selection.candidate.model

        logger.debug(
            f"Parcel {series.parcel_id!r}: {model.n_segments} segment(s) "
            f"selected from {len(trace)} candidates"
        )

        return FitResult(
            parcel_id=series.parcel_id,
            status=STATUS_FITTED,
            model=model,
            fitted=model.predict(series.time_axis),
            rss=selection.candidate.rss,
            p_value=selection.p_value,
            candidates=selection.candidates,
            candidate_p_values=selection.improvement_p_values,
            candidate_model_p_values=selection.model_p_values,
            despiked=despiked,
        )

    def elimination_trace(
        self,
        t: np.ndarray,
        y: np.ndarray,
        sampling_interval: float = 1.0
    ) -> List[CandidateModel]:
        """
        Models from ``max_segments`` segments down to one.

        Parameters
        ----------
        t, y : np.ndarray
            Time axis and values of valid observations
        sampling_interval : float
            Nominal spacing, used by the recovery constraint

        Returns
        -------
        list of CandidateModel
            Most complex first
        """
        n = len(y)
        vertex_idx = initial_vertices(t, y, self.params.max_vertices)
        values, rss = fit_vertex_values(t, y, vertex_idx)
        vertex_idx, values, rss = self._enforce_recovery(t, y, vertex_idx, values, rss, sampling_interval)

        while len(vertex_idx) > self.params.max_segments + 1:
            vertex_idx, values, rss = self._remove_weakest(t, y, vertex_idx, sampling_interval)

        trace = [self._candidate(t, vertex_idx, values, rss, n)]
        while len(vertex_idx) > 2:
            vertex_idx, values, rss = self._remove_weakest(t, y, vertex_idx, sampling_interval)
            trace.append(self._candidate(t, vertex_idx, values, rss, n))
        return trace

    def _remove_weakest(self, t, y, vertex_idx, sampling_interval):
        best = None
        for j in range(1, len(vertex_idx) - 1):
            trial = vertex_idx[:j] + vertex_idx[j + 1:]
            values, rss = fit_vertex_values(t, y, trial)
            # Strict comparison keeps the earliest vertex removal on ties
            if best is None or rss < best[2] - 1e-15:
                best = (trial, values, rss)
        return self._enforce_recovery(t, y, *best, sampling_interval)

    def _enforce_recovery(self, t, y, vertex_idx, values, rss, sampling_interval):
        if not self.params.prevent_one_year_recovery:
            return vertex_idx, values, rss

        while len(vertex_idx) > 2:
            j = find_recovery_violation(
                t[vertex_idx], values, sampling_interval, self.params.recovery_threshold
            )
            if j is None:
                break
            vertex_idx = vertex_idx[:j] + vertex_idx[j + 1:]
            values, rss = fit_vertex_values(t, y, vertex_idx)
        return vertex_idx, values, rss

    @staticmethod
    def _candidate(t, vertex_idx, values, rss, n_obs) -> CandidateModel:
        model = TrendModel(tuple(zip(t[vertex_idx], values)))
        return CandidateModel(model=model, rss=rss, n_obs=n_obs)


def fit_series(series: ParcelSeries, params: Optional[SegmentationParams] = None) -> FitResult:
    """Convenience wrapper around ``VertexFitter(params).fit(series)``."""
    return VertexFitter(params).fit(series)
