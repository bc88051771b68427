"""
Preprocessing utilities for probability series.

This module handles:
- Spike scoring (deviation from neighbor interpolation)
- Spike dampening (replacement by the interpolated value)
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from .series import ParcelSeries

logger = logging.getLogger(__name__)


def spike_scores(
    t: np.ndarray,
    y: np.ndarray,
    window: int = 1
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Score every observation by how much it sticks out of its neighborhood.

    score = |y_i - interp(y_{i-1}, y_{i+1})| / (max - min over the window)

    Endpoints always score 0. A flat window scores 0.

    Parameters
    ----------
    t : np.ndarray
        Numeric time axis (no missing values)
    y : np.ndarray
        Values (no missing values)
    window : int
        Half-width of the amplitude window, in observations

    Returns
    -------
    tuple
        (scores, expected) where expected is the neighbor-interpolated
        value of each observation
    """
    n = len(y)
    scores = np.zeros(n)
    expected = y.astype(float).copy()
    if n < 3:
        return scores, expected

    t_prev, t_next = t[:-2], t[2:]
    y_prev, y_next = y[:-2], y[2:]
    weight = (t[1:-1] - t_prev) / (t_next - t_prev)
    expected[1:-1] = y_prev + (y_next - y_prev) * weight
    deviation = np.abs(y[1:-1] - expected[1:-1])

    for i in range(1, n - 1):
        lo, hi = max(0, i - window), min(n, i + window + 1)
        amplitude = y[lo:hi].max() - y[lo:hi].min()
        if amplitude > 0:
            scores[i] = deviation[i - 1] / amplitude

    return scores, expected


def despike_values(
    t: np.ndarray,
    y: np.ndarray,
    spike_threshold: float,
    window: int = 1,
    max_iterations: Optional[int] = None
) -> Tuple[np.ndarray, List[int]]:
    """
    Dampen spikes until no observation scores above the threshold.

    The worst spike is replaced by its neighbor interpolation first,
    then scores are recomputed. Missing values (NaN) are skipped and left
    untouched; first/last valid observations are never modified.

    Parameters
    ----------
    t : np.ndarray
        Numeric time axis
    y : np.ndarray
        Values, NaN for missing
    spike_threshold : float
        Normalized deviation above which an observation is a spike.
        Values >= 1 disable dampening for window=1.
    window : int
        Half-width of the amplitude window
    max_iterations : int, optional
        Safety cap, defaults to 10 x number of observations

    Returns
    -------
    tuple
        (despiked values, sorted positions that were replaced)
    """
    y = np.asarray(y, dtype=float).copy()
    t = np.asarray(t, dtype=float)
    valid_idx = np.flatnonzero(~np.isnan(y))
    tv, yv = t[valid_idx], y[valid_idx]

    if max_iterations is None:
        max_iterations = 10 * max(len(yv), 1)

    replaced = set()
    for _ in range(max_iterations):
        scores, expected = spike_scores(tv, yv, window)
        worst = int(np.argmax(scores)) if len(scores) else 0
        if len(scores) == 0 or scores[worst] <= spike_threshold:
            break
        yv[worst] = expected[worst]
        replaced.add(int(valid_idx[worst]))
    else:
        logger.warning(
            f"Spike filter did not converge after {max_iterations} iterations"
        )

    y[valid_idx] = yv
    return y, sorted(replaced)


def find_spikes(
    series: ParcelSeries,
    spike_threshold: float,
    window: int = 1
) -> List[int]:
    """Positions the spike filter would replace in ``series``."""
    _, replaced = despike_values(series.time_axis, series.values, spike_threshold, window)
    return replaced


class SpikeFilter:
    """Suppress single-observation outliers before fitting.

    Policy: a spike is replaced by the linear interpolation of its two
    valid neighbors (no down-weighting). The output has no observation
    scoring above the threshold, so filtering is idempotent.
    """

    def __init__(self, spike_threshold: float, window: int = 1):
        if spike_threshold <= 0:
            raise ValueError(f"spike_threshold must be > 0, got {spike_threshold}")
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self.spike_threshold = spike_threshold
        self.window = window

    def filter(self, series: ParcelSeries) -> ParcelSeries:
        """Return a despiked copy of ``series``."""
        values, replaced = despike_values(
            series.time_axis, series.values, self.spike_threshold, self.window
        )
        if replaced:
            logger.debug(f"Parcel {series.parcel_id!r}: dampened spikes at {replaced}")
        return series.with_values(values)
