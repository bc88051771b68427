import logging

import numpy as np
import pandas as pd
import pytest
import xarray as xr

from parcel_abandonment import (
    InvalidObservationError,
    SeriesStore,
    describe_store,
    validate_observations,
)


def test_out_of_range_values_are_clamped(caplog):
    with caplog.at_level(logging.WARNING):
        t, v = validate_observations("p", [0, 1, 2], [1.2, -0.1, 0.5])
    np.testing.assert_array_equal(t, [0, 1, 2])
    np.testing.assert_array_equal(v, [1.0, 0.0, 0.5])
    assert "clamped" in caplog.text


def test_infinite_values_become_missing():
    _, v = validate_observations("p", [0, 1, 2], [0.5, np.inf, 0.4])
    assert np.isnan(v[1])
    assert v[0] == 0.5


def test_repeated_and_backward_timestamps_are_dropped():
    t, v = validate_observations("p", [0, 1, 1, 3, 2, 4], [0.1, 0.2, 0.9, 0.3, 0.9, 0.4])
    np.testing.assert_array_equal(t, [0, 1, 3, 4])
    np.testing.assert_array_equal(v, [0.1, 0.2, 0.3, 0.4])


def test_strict_mode_raises():
    with pytest.raises(InvalidObservationError) as excinfo:
        validate_observations("p", [0, 1, 2], [0.5, 1.5, 0.5], strict=True)
    assert excinfo.value.position == 1


def test_missing_values_are_kept():
    store = SeriesStore()
    s = store.add("p", [0, 1, 2], [0.5, np.nan, 0.4])
    assert len(s) == 3
    assert s.n_valid == 2


def test_duplicate_parcel_rejected():
    store = SeriesStore()
    store.add("p", [0, 1], [0.5, 0.5])
    with pytest.raises(ValueError):
        store.add("p", [0, 1], [0.5, 0.5])


def test_from_dataframe_sorts_and_groups():
    df = pd.DataFrame({
        "parcel_id": ["b", "a", "a", "b", "a"],
        "time": [1, 2, 0, 0, 1],
        "probability": [0.2, 0.3, 0.1, 0.4, 0.2],
    })
    store = SeriesStore.from_dataframe(df)
    assert sorted(store.parcel_ids) == ["a", "b"]
    np.testing.assert_array_equal(store["a"].values, [0.1, 0.2, 0.3])
    np.testing.assert_array_equal(store["b"].timestamps, [0, 1])


def test_from_dataframe_missing_column():
    df = pd.DataFrame({"parcel_id": [1], "time": [0]})
    with pytest.raises(ValueError):
        SeriesStore.from_dataframe(df)


def test_from_wide_dataframe():
    df = pd.DataFrame([[0.9, 0.8, 0.2], [0.5, 0.5, 0.5]], index=["x", "y"], columns=[0, 1, 2])
    store = SeriesStore.from_wide_dataframe(df)
    assert store.parcel_ids == ["x", "y"]
    np.testing.assert_array_equal(store["x"].values, [0.9, 0.8, 0.2])


def test_from_dataarray():
    values = np.array([[0.9, 0.9, 0.3], [0.6, 0.7, 0.8]])
    da = xr.DataArray(
        values.T,
        dims=("time", "parcel"),
        coords={"time": [0, 1, 2], "parcel": [10, 20]},
    )
    store = SeriesStore.from_dataarray(da)
    assert store.parcel_ids == [10, 20]
    np.testing.assert_array_equal(store[20].values, [0.6, 0.7, 0.8])


def test_from_dataarray_unknown_dim():
    da = xr.DataArray(np.zeros((2, 3)), dims=("field", "time"))
    with pytest.raises(ValueError):
        SeriesStore.from_dataarray(da)


def test_csv_round_trip(tmp_path):
    store = SeriesStore.from_dict({
        "a": ([0, 1, 2], [0.9, 0.8, 0.1]),
        "b": ([0, 1], [0.5, 0.6]),
    })
    path = tmp_path / "series.csv"
    store.to_dataframe().to_csv(path, index=False)

    loaded = SeriesStore.read_csv(path)
    assert loaded.parcel_ids == ["a", "b"]
    np.testing.assert_allclose(loaded["a"].values, [0.9, 0.8, 0.1])


def test_string_months_read_as_dates(tmp_path):
    path = tmp_path / "months.csv"
    pd.DataFrame({
        "parcel_id": ["a", "a", "a"],
        "time": ["2023-03", "2023-01", "2023-02"],
        "probability": [0.3, 0.9, 0.8],
    }).to_csv(path, index=False)

    store = SeriesStore.read_csv(path)
    series = store["a"]
    assert np.issubdtype(series.timestamps.dtype, np.datetime64)
    np.testing.assert_array_equal(series.time_axis, [0, 31, 59])
    np.testing.assert_array_equal(series.values, [0.9, 0.8, 0.3])


def test_unreadable_time_column_is_named(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({
        "parcel_id": ["a", "a"],
        "when": ["soon", "later"],
        "probability": [0.3, 0.9],
    }).to_csv(path, index=False)

    with pytest.raises(InvalidObservationError) as excinfo:
        SeriesStore.read_csv(path, time_col="when")
    assert "'when'" in str(excinfo.value)


def test_string_timestamps_are_parsed():
    t, _ = validate_observations("p", ["2023-01-01", "2023-01-11"], [0.5, 0.6])
    assert np.issubdtype(t.dtype, np.datetime64)

    t, _ = validate_observations("p", np.array(["0", "1"], dtype=object), [0.5, 0.6])
    np.testing.assert_array_equal(t, [0.0, 1.0])

    # unusable even when not strict
    with pytest.raises(InvalidObservationError) as excinfo:
        validate_observations("p", ["x", "y"], [0.5, 0.6])
    assert excinfo.value.parcel_id == "p"


def test_describe_store_flags_short_series():
    store = SeriesStore.from_dict({
        "long": (range(8), [0.5] * 8),
        "short": (range(3), [0.5] * 3),
    })
    summary = describe_store(store, min_observations=6)
    assert list(summary["eligible"]) == [True, False]
    assert list(summary["n_valid"]) == [8, 3]
