import numpy as np
import pytest

from parcel_abandonment import SpikeFilter, despike_values, find_spikes
from parcel_abandonment.preprocessing import spike_scores


def test_isolated_dip_is_replaced(make_series, scenarios):
    s = make_series(scenarios["C"])
    assert find_spikes(s, 0.8) == [10]

    filtered = SpikeFilter(0.8).filter(s)
    np.testing.assert_allclose(filtered.values, 0.9)


def test_oscillation_is_flattened(make_series):
    filtered = SpikeFilter(0.8).filter(make_series([0.85, 0.9, 0.85, 0.85, 0.8, 0.85] * 4))
    np.testing.assert_allclose(filtered.values, 0.85)


def test_filter_is_idempotent(make_series, noisy_values):
    values = noisy_values.copy()
    values[[5, 25]] = [0.05, 0.95]
    once = SpikeFilter(0.8).filter(make_series(values))
    twice = SpikeFilter(0.8).filter(once)
    np.testing.assert_array_equal(once.values, twice.values)


def test_no_score_above_threshold_after_filtering(make_series, noisy_values):
    filtered = SpikeFilter(0.8).filter(make_series(noisy_values))
    scores, _ = spike_scores(filtered.time_axis, filtered.values)
    assert scores.max() <= 0.8


def test_threshold_of_one_disables_filter(make_series):
    values = [0.9, 0.1, 0.9, 0.1, 0.9, 0.1]
    filtered = SpikeFilter(1.0).filter(make_series(values))
    np.testing.assert_array_equal(filtered.values, values)


def test_endpoints_never_modified(make_series):
    values = [0.1, 0.9, 0.9, 0.9, 0.9, 0.9, 0.1]
    filtered = SpikeFilter(0.5).filter(make_series(values))
    assert filtered.values[0] == 0.1
    assert filtered.values[-1] == 0.1


def test_missing_values_are_skipped():
    t = np.arange(8, dtype=float)
    y = np.array([0.9, 0.9, 0.9, np.nan, 0.9, 0.1, 0.9, 0.9])
    out, replaced = despike_values(t, y, 0.8)
    assert replaced == [5]
    assert np.isnan(out[3])
    assert out[5] == pytest.approx(0.9)


def test_uneven_spacing_uses_time_weights():
    t = np.array([0.0, 1.0, 4.0])
    y = np.array([0.0, 0.9, 0.8])
    _, expected = spike_scores(t, y)
    # interpolated between (0, 0.0) and (4, 0.8) at t=1
    assert expected[1] == pytest.approx(0.2)


def test_invalid_threshold():
    with pytest.raises(ValueError):
        SpikeFilter(0)
