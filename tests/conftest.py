import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from parcel_abandonment import FitResult, ParcelSeries, TrendModel


@pytest.fixture
def scenarios():
    """Monthly probability series with known outcomes."""
    return {
        "A": [0.9] * 6 + [0.3] * 18,
        "B": list(0.85 + np.random.default_rng(0).uniform(-0.05, 0.05, 24)),
        "C": [0.9] * 10 + [0.1] + [0.9] * 13,
        "D": [0.9, 0.8, 0.85, 0.9],
    }


@pytest.fixture
def make_series():
    def _make(values, parcel_id="p1", timestamps=None):
        values = np.asarray(values, dtype=float)
        if timestamps is None:
            timestamps = np.arange(len(values))
        return ParcelSeries(parcel_id, timestamps, values)
    return _make


@pytest.fixture
def make_fit():
    def _make(fitted, parcel_id="p1"):
        fitted = np.asarray(fitted, dtype=float)
        model = TrendModel(((0, fitted[0]), (len(fitted) - 1, fitted[-1])))
        return FitResult(
            parcel_id=parcel_id,
            status="fitted",
            model=model,
            fitted=fitted,
            rss=0.0,
            p_value=0.0,
        )
    return _make


@pytest.fixture
def noisy_values():
    rng = np.random.default_rng(42)
    trend = np.concatenate([np.full(15, 0.85), np.linspace(0.85, 0.25, 5), np.full(16, 0.25)])
    return np.clip(trend + rng.normal(0, 0.04, len(trend)), 0, 1)


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by ``setup_logging``."""
    import logging

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
