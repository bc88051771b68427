"""
Abandonment rules applied to fitted trends.

This module handles:
- The default drop rule (any large decline between consecutive steps)
- A stricter rule requiring non-recovery after the drop
- Verdict summaries

Rules only read ``FitResult.fitted``, so a different decision function
can be dropped in without touching the segmentation engine.
"""

from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .exceptions import InsufficientDataError
from .series import AbandonmentVerdict, FitResult

# Drops closer than this to the steepest one count as equally steep
DROP_TOLERANCE = 1e-9


def qualifying_drops(fitted: np.ndarray, drop_threshold: float) -> np.ndarray:
    """Positions i where fitted[i + 1] - fitted[i] <= -drop_threshold."""
    diffs = np.diff(np.asarray(fitted, dtype=float))
    return np.flatnonzero(diffs <= -drop_threshold)


def steepest_drop(
    fitted: np.ndarray,
    drop_threshold: float
) -> Tuple[Optional[int], float]:
    """
    Locate the steepest qualifying decline of a fitted trajectory.

    Parameters
    ----------
    fitted : np.ndarray
        Fitted value per time step
    drop_threshold : float
        Minimum decline (positive number) between consecutive steps

    Returns
    -------
    tuple
        (trigger index or None, magnitude). Index i refers to the step
        from fitted[i] to fitted[i + 1]. Without a qualifying drop the
        magnitude is the largest decline seen (0.0 if none).
    """
    diffs = np.diff(np.asarray(fitted, dtype=float))
    if len(diffs) == 0 or np.all(np.isnan(diffs)):
        return None, 0.0

    steepest = np.nanmin(diffs)
    magnitude = float(max(-steepest, 0.0))
    if steepest > -drop_threshold:
        return None, magnitude

    trigger = int(np.flatnonzero(diffs <= steepest + DROP_TOLERANCE)[0])
    return trigger, magnitude


class AbandonmentRule:
    """
    Base class for per-parcel abandonment decisions.

    Subclasses implement ``decide(fit_result)`` and return
    ``(abandoned, trigger_index, magnitude)``.
    """

    def evaluate(self, fit_result: FitResult) -> AbandonmentVerdict:
        """
        Score one fitted parcel.

        Raises
        ------
        InsufficientDataError
            The parcel was never fitted and cannot be scored
        """
        if not fit_result.is_fitted:
            if isinstance(fit_result.error, InsufficientDataError):
                raise fit_result.error
            raise InsufficientDataError(fit_result.parcel_id, 0, 0)

        abandoned, trigger, magnitude = self.decide(fit_result)
        return AbandonmentVerdict(
            parcel_id=fit_result.parcel_id,
            abandoned=bool(abandoned),
            trigger_index=trigger,
            magnitude=float(magnitude),
        )

    def decide(self, fit_result: FitResult) -> Tuple[bool, Optional[int], float]:
        raise NotImplementedError


class DropRule(AbandonmentRule):
    """
    Abandoned if any step of the fitted trend falls by ``drop_threshold``.

    Default policy: a single qualifying drop is enough, recovery
    afterwards is not checked.
    """

    def __init__(self, drop_threshold: float = 0.35):
        if drop_threshold <= 0:
            raise ValueError(f"drop_threshold must be > 0, got {drop_threshold}")
        self.drop_threshold = drop_threshold

    def decide(self, fit_result):
        trigger, magnitude = steepest_drop(fit_result.fitted, self.drop_threshold)
        return trigger is not None, trigger, magnitude

    def __repr__(self):
        return f"DropRule(drop_threshold={self.drop_threshold})"


class SustainedDropRule(DropRule):
    """
    Drop rule that also requires the trend not to recover.

    A qualifying drop at step i counts only if, over the following
    ``recovery_window`` steps, the fitted value never climbs back above
    fitted[i + 1] + ``max_recovery`` x drop. The steepest counting drop
    (earliest on ties) triggers the verdict.
    """

    def __init__(
        self,
        drop_threshold: float = 0.35,
        recovery_window: int = 6,
        max_recovery: float = 0.5
    ):
        super().__init__(drop_threshold)
        if recovery_window < 1:
            raise ValueError(f"recovery_window must be >= 1, got {recovery_window}")
        if not 0 <= max_recovery <= 1:
            raise ValueError(f"max_recovery must be in [0, 1], got {max_recovery}")
        self.recovery_window = recovery_window
        self.max_recovery = max_recovery

    def decide(self, fit_result):
        fitted = np.asarray(fit_result.fitted, dtype=float)
        diffs = np.diff(fitted)
        _, largest = steepest_drop(fitted, self.drop_threshold)

        sustained = []
        for i in qualifying_drops(fitted, self.drop_threshold):
            drop = -diffs[i]
            after = fitted[i + 2:i + 2 + self.recovery_window]
            ceiling = fitted[i + 1] + self.max_recovery * drop
            if len(after) == 0 or np.all(after <= ceiling):
                sustained.append((diffs[i], int(i)))

        if not sustained:
            return False, None, largest

        steepest = min(d for d, _ in sustained)
        trigger = min(i for d, i in sustained if d <= steepest + DROP_TOLERANCE)
        return True, trigger, float(-steepest)

    def __repr__(self):
        return (
            f"SustainedDropRule(drop_threshold={self.drop_threshold}, "
            f"recovery_window={self.recovery_window}, max_recovery={self.max_recovery})"
        )


def summarize_verdicts(verdicts: Iterable[AbandonmentVerdict]) -> Dict:
    """
    Summarize a set of verdicts.

    Parameters
    ----------
    verdicts : iterable of AbandonmentVerdict
        Scored parcels (insufficient-data parcels excluded)

    Returns
    -------
    dict
        Parcel counts, abandonment share and drop magnitude statistics
    """
    verdicts = list(verdicts)
    n_total = len(verdicts)
    abandoned = [v for v in verdicts if v.abandoned]
    magnitudes = np.array([v.magnitude for v in abandoned])

    return {
        'n_parcels': n_total,
        'n_abandoned': len(abandoned),
        'n_not_abandoned': n_total - len(abandoned),
        'abandoned_pct': 100 * len(abandoned) / n_total if n_total else 0.0,
        'mean_drop': float(magnitudes.mean()) if len(magnitudes) else np.nan,
        'max_drop': float(magnitudes.max()) if len(magnitudes) else np.nan,
    }
