"""
Configuration utilities.

This module handles:
- Segmentation, abandonment and processing parameters
- Parameter domain validation (fails fast before any parcel runs)
- YAML loading with ${VAR} environment placeholders
- Logging setup
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigurationError


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _snake_case(key: str) -> str:
    """Map ``maxSegments`` style keys to ``max_segments``."""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


@dataclass(frozen=True)
class SegmentationParams:
    """Parameters of the spike filter, vertex fitter and model selector.

    Defaults follow the monthly cultivation-probability runs.
    """
    max_segments: int = 5
    spike_threshold: float = 0.8
    vertex_count_overshoot: int = 2
    prevent_one_year_recovery: bool = False
    recovery_threshold: float = 0.2
    pval_threshold: float = 0.1
    best_model_proportion: float = 0.75
    min_observations_needed: int = 6

    @property
    def max_vertices(self) -> int:
        """Vertex cap of the initial over-fitted model."""
        return self.max_segments + self.vertex_count_overshoot + 1

    def validate(self) -> 'SegmentationParams':
        """
        Check every parameter against its documented domain.

        Raises
        ------
        ConfigurationError
            On the first parameter out of range
        """
        _check_int(self.max_segments, 'max_segments', minimum=1)
        _check_int(self.vertex_count_overshoot, 'vertex_count_overshoot', minimum=0)
        _check_int(self.min_observations_needed, 'min_observations_needed', minimum=2)
        if not isinstance(self.prevent_one_year_recovery, bool):
            raise ConfigurationError(
                f"prevent_one_year_recovery must be a boolean, got {self.prevent_one_year_recovery!r}"
            )
        if not _is_number(self.spike_threshold) or self.spike_threshold <= 0:
            raise ConfigurationError(f"spike_threshold must be > 0, got {self.spike_threshold!r}")
        if not _is_number(self.recovery_threshold) or not 0 <= self.recovery_threshold <= 1:
            raise ConfigurationError(
                f"recovery_threshold must be in [0, 1], got {self.recovery_threshold!r}"
            )
        if not _is_number(self.pval_threshold) or not 0 < self.pval_threshold < 1:
            raise ConfigurationError(f"pval_threshold must be in (0, 1), got {self.pval_threshold!r}")
        if not _is_number(self.best_model_proportion) or not 0 < self.best_model_proportion <= 1:
            raise ConfigurationError(
                f"best_model_proportion must be in (0, 1], got {self.best_model_proportion!r}"
            )
        return self


@dataclass(frozen=True)
class AbandonmentParams:
    """Parameters of the default drop rule."""
    drop_threshold: float = 0.35

    def validate(self) -> 'AbandonmentParams':
        if not _is_number(self.drop_threshold) or self.drop_threshold <= 0:
            raise ConfigurationError(f"drop_threshold must be > 0, got {self.drop_threshold!r}")
        return self


@dataclass(frozen=True)
class ProcessingParams:
    """How the batch is executed."""
    parallel: bool = True
    scheduler: str = 'threads'
    n_workers: Optional[int] = None
    show_progress: bool = True

    def validate(self) -> 'ProcessingParams':
        if self.scheduler not in ('threads', 'processes', 'synchronous'):
            raise ConfigurationError(
                f"scheduler must be 'threads', 'processes' or 'synchronous', got {self.scheduler!r}"
            )
        if self.n_workers is not None:
            _check_int(self.n_workers, 'n_workers', minimum=1)
        return self


@dataclass(frozen=True)
class RunConfig:
    """Complete run configuration as read from YAML."""
    segmentation: SegmentationParams = field(default_factory=SegmentationParams)
    abandonment: AbandonmentParams = field(default_factory=AbandonmentParams)
    processing: ProcessingParams = field(default_factory=ProcessingParams)
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    def validate(self) -> 'RunConfig':
        self.segmentation.validate()
        self.abandonment.validate()
        self.processing.validate()
        if logging.getLevelName(str(self.log_level).upper()) == f"Level {str(self.log_level).upper()}":
            raise ConfigurationError(f"Unknown log level: {self.log_level!r}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segmentation': asdict(self.segmentation),
            'abandonment': asdict(self.abandonment),
            'processing': asdict(self.processing),
            'logging': {'level': self.log_level, 'file': self.log_file},
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_int(value: Any, name: str, minimum: int):
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise ConfigurationError(f"{name} must be an integer >= {minimum}, got {value!r}")


def _build(cls, section: Optional[Dict[str, Any]], section_name: str):
    """Instantiate a params dataclass from a (possibly camelCase) mapping."""
    if section is None:
        return cls()
    if not isinstance(section, dict):
        raise ConfigurationError(f"Section '{section_name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in section.items():
        name = _snake_case(str(key))
        if name not in known:
            raise ConfigurationError(f"Unknown option '{key}' in section '{section_name}'")
        kwargs[name] = value
    return cls(**kwargs)


def _resolve_env(obj):
    """Replace ${VAR} placeholders with environment variables."""
    if isinstance(obj, dict):
        return {k: _resolve_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_env(item) for item in obj]
    if isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
        var_name = obj[2:-1]
        value = os.getenv(var_name)
        if value is None:
            raise ConfigurationError(f"Environment variable '{var_name}' not set")
        return yaml.safe_load(value)
    return obj


def config_from_dict(data: Optional[Dict[str, Any]]) -> RunConfig:
    """
    Build and validate a run configuration from a plain mapping.

    Parameters
    ----------
    data : dict
        Mapping with optional 'segmentation', 'abandonment', 'processing'
        and 'logging' sections

    Returns
    -------
    RunConfig
        Validated configuration

    Raises
    ------
    ConfigurationError
        Unknown sections/options or values out of range
    """
    data = _resolve_env(data or {})
    unknown = set(data) - {'segmentation', 'abandonment', 'processing', 'logging'}
    if unknown:
        raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

    log_section = data.get('logging') or {}
    if not isinstance(log_section, dict):
        raise ConfigurationError("Section 'logging' must be a mapping")

    config = RunConfig(
        segmentation=_build(SegmentationParams, data.get('segmentation'), 'segmentation'),
        abandonment=_build(AbandonmentParams, data.get('abandonment'), 'abandonment'),
        processing=_build(ProcessingParams, data.get('processing'), 'processing'),
        log_level=log_section.get('level', 'INFO'),
        log_file=log_section.get('file'),
    )
    return config.validate()


def load_config(path: Union[str, Path]) -> RunConfig:
    """
    Load a run configuration from YAML.

    Parameters
    ----------
    path : str or Path
        YAML file path

    Returns
    -------
    RunConfig
        Validated configuration
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    with path.open('r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected YAML mapping at {path}")
    return config_from_dict(data)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None):
    """Configure root logging for CLI runs."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
