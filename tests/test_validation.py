import numpy as np
import pandas as pd
import pytest

from parcel_abandonment import compare_with_reference, compute_detection_metrics


def test_perfect_agreement():
    flags = np.array([True, False, True, False])
    metrics = compute_detection_metrics(flags, flags)
    assert metrics["accuracy"] == 1.0
    assert metrics["f1"] == 1.0
    assert metrics["kappa"] == pytest.approx(1.0)


def test_confusion_counts():
    pred = [True, True, False, False, True]
    ref = [True, False, True, False, True]
    metrics = compute_detection_metrics(pred, ref)
    assert (metrics["tp"], metrics["fp"], metrics["fn"], metrics["tn"]) == (2, 1, 1, 1)
    assert metrics["precision"] == pytest.approx(2 / 3)
    assert metrics["recall"] == pytest.approx(2 / 3)
    assert metrics["accuracy"] == pytest.approx(0.6)
    # chance agreement (2 * 2 + 3 * 3) / 25
    assert metrics["kappa"] == pytest.approx((0.6 - 0.52) / 0.48)


def test_no_abandonment_anywhere():
    metrics = compute_detection_metrics([False] * 4, [False] * 4)
    assert metrics["precision"] == 0.0
    assert metrics["recall"] == 0.0
    assert metrics["f1"] == 0.0
    assert metrics["accuracy"] == 1.0
    assert metrics["kappa"] == 1.0
    assert metrics["tn"] == 4


def test_shape_mismatch():
    with pytest.raises(ValueError):
        compute_detection_metrics([True, False], [True])


def test_compare_with_reference(tmp_path):
    results = pd.DataFrame({
        "parcel_id": [1, 2, 3, 4],
        "status": ["abandoned", "not-abandoned", "insufficient-data", "abandoned"],
        "abandoned": [True, False, None, True],
    })
    reference = pd.DataFrame({
        "parcel_id": [1, 2, 3, 4, 5],
        "label": [True, True, False, True, False],
    })
    report = compare_with_reference(results, reference, reference_col="label", output_dir=str(tmp_path))

    metrics = report["metrics"]
    assert metrics["n_compared"] == 3
    assert report["n_unscored"] == 1
    assert metrics["tp"] == 2
    assert metrics["fn"] == 1
    assert list(report["comparison"]["agreement"]) == [True, False, True]
    assert (tmp_path / "reference_comparison.csv").exists()
    assert (tmp_path / "detection_metrics.csv").exists()


def test_missing_reference_column():
    with pytest.raises(ValueError):
        compare_with_reference(pd.DataFrame({"parcel_id": [1]}), pd.DataFrame({"parcel_id": [1]}))
