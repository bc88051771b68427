"""
Parcel Abandonment: Cropland Abandonment from Cultivation Probability Series
============================================================================

Modules:
    series: Parcel series, trend models, fit results and verdicts
    data_loader: Observation validation and series storage
    preprocessing: Spike scoring and dampening
    segmentation: Vertex-based piecewise-linear trend fitting
    selection: F-test model selection
    abandonment: Drop-based abandonment rules
    pipeline: Batch processing and result export
    config: Parameters, YAML loading and logging setup
    validation: Accuracy against reference labels
    visualization: Plotting utilities
"""

from .exceptions import (
    ParcelAbandonmentError,
    InsufficientDataError,
    InvalidObservationError,
    ConfigurationError,
    ModelSelectionDegenerateError,
)

from .series import (
    Observation,
    ParcelSeries,
    Vertex,
    TrendModel,
    CandidateModel,
    FitResult,
    AbandonmentVerdict,
)

from .config import (
    SegmentationParams,
    AbandonmentParams,
    ProcessingParams,
    RunConfig,
    load_config,
    config_from_dict,
    setup_logging,
)

from .data_loader import SeriesStore, validate_observations, describe_store

from .preprocessing import SpikeFilter, despike_values, find_spikes

from .segmentation import VertexFitter, fit_series

from .selection import ModelSelector, improvement_p_value

from .abandonment import (
    AbandonmentRule,
    DropRule,
    SustainedDropRule,
    summarize_verdicts,
)

from .pipeline import (
    BatchResult,
    process_parcel,
    run_batch,
    save_results,
    load_results,
)

from .validation import compute_detection_metrics, compare_with_reference

from .visualization import plot_trajectory, plot_abandonment_summary

__version__ = "0.1.0"
