import logging
from pathlib import Path

import pytest

from parcel_abandonment import (
    AbandonmentParams,
    ConfigurationError,
    ProcessingParams,
    RunConfig,
    SegmentationParams,
    config_from_dict,
    load_config,
    setup_logging,
)

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config.example.yaml"


def test_defaults_are_valid():
    params = SegmentationParams().validate()
    assert params.max_segments == 5
    assert params.max_vertices == 8
    assert RunConfig().validate().abandonment.drop_threshold == 0.35


@pytest.mark.parametrize("kwargs", [
    {"max_segments": 0},
    {"max_segments": 2.5},
    {"spike_threshold": 0},
    {"vertex_count_overshoot": -1},
    {"recovery_threshold": 1.5},
    {"pval_threshold": 1.0},
    {"best_model_proportion": 0},
    {"min_observations_needed": 1},
    {"prevent_one_year_recovery": "yes"},
])
def test_out_of_range_parameters(kwargs):
    with pytest.raises(ConfigurationError):
        SegmentationParams(**kwargs).validate()


def test_other_sections_validate():
    with pytest.raises(ConfigurationError):
        AbandonmentParams(drop_threshold=0).validate()
    with pytest.raises(ConfigurationError):
        ProcessingParams(scheduler="gpu").validate()
    with pytest.raises(ConfigurationError):
        RunConfig(log_level="VERBOSE").validate()


def test_configuration_error_is_value_error():
    assert issubclass(ConfigurationError, ValueError)


def test_load_camel_case_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "segmentation:\n"
        "  maxSegments: 4\n"
        "  preventOneYearRecovery: true\n"
        "abandonment:\n"
        "  drop_threshold: 0.4\n"
        "logging:\n"
        "  level: DEBUG\n"
    )
    config = load_config(path)
    assert config.segmentation.max_segments == 4
    assert config.segmentation.prevent_one_year_recovery is True
    assert config.segmentation.spike_threshold == 0.8
    assert config.abandonment.drop_threshold == 0.4
    assert config.log_level == "DEBUG"


def test_example_config_loads():
    config = load_config(EXAMPLE_CONFIG)
    assert config == RunConfig()


def test_unknown_option_rejected():
    with pytest.raises(ConfigurationError):
        config_from_dict({"segmentation": {"maxSegmentz": 3}})
    with pytest.raises(ConfigurationError):
        config_from_dict({"fitting": {}})


def test_invalid_value_rejected_on_load(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("segmentation:\n  pvalThreshold: 2\n")
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_missing_file():
    with pytest.raises(ConfigurationError):
        load_config("does/not/exist.yaml")


def test_environment_placeholders(monkeypatch):
    monkeypatch.setenv("PA_MAX_SEGMENTS", "3")
    config = config_from_dict({"segmentation": {"maxSegments": "${PA_MAX_SEGMENTS}"}})
    assert config.segmentation.max_segments == 3

    monkeypatch.delenv("PA_MAX_SEGMENTS")
    with pytest.raises(ConfigurationError):
        config_from_dict({"segmentation": {"maxSegments": "${PA_MAX_SEGMENTS}"}})


def test_round_trip_through_dict():
    config = RunConfig(segmentation=SegmentationParams(max_segments=3, spike_threshold=0.9))
    assert config_from_dict(config.to_dict()) == config


def test_setup_logging_writes_file(tmp_path, restore_logging):
    log_file = tmp_path / "logs" / "run.log"
    setup_logging("DEBUG", str(log_file))
    logging.getLogger("parcel_abandonment.test").debug("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "hello" in log_file.read_text()
