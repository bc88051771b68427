"""
Batch processing of parcels.

This module handles:
- The one-shot per-parcel pipeline (despike -> fit -> score)
- Parallel fan-out over parcels with Dask
- Collecting verdicts, insufficient-data and failed parcels
- Tabular export of results
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import dask
import numpy as np
import pandas as pd
from tqdm import tqdm

from .abandonment import AbandonmentRule, DropRule, summarize_verdicts
from .config import ProcessingParams, SegmentationParams
from .data_loader import SeriesStore
from .segmentation import VertexFitter
from .series import AbandonmentVerdict, FitResult, ParcelSeries

logger = logging.getLogger(__name__)

STATE_INSUFFICIENT = 'insufficient-data'
STATE_ABANDONED = 'abandoned'
STATE_NOT_ABANDONED = 'not-abandoned'
STATE_FAILED = 'failed'

RESULT_COLUMNS = ['parcel_id', 'status', 'abandoned', 'trigger_index', 'magnitude', 'n_segments']


@dataclass(frozen=True)
class ParcelOutcome:
    """Terminal state of one parcel's pipeline."""
    parcel_id: Any
    status: str
    fit: Optional[FitResult] = None
    verdict: Optional[AbandonmentVerdict] = None
    error: Optional[str] = None


def process_parcel(
    series: ParcelSeries,
    fitter: VertexFitter,
    rule: AbandonmentRule
) -> ParcelOutcome:
    """
    Run one parcel through fitting and scoring.

    Unexpected errors are captured in the outcome so one parcel never
    aborts the batch.
    """
    try:
        fit = fitter.fit(series)
        if not fit.is_fitted:
            return ParcelOutcome(series.parcel_id, STATE_INSUFFICIENT, fit=fit, error=str(fit.error))
        verdict = rule.evaluate(fit)
    except Exception as e:
        logger.exception(f"Parcel {series.parcel_id!r} failed")
        return ParcelOutcome(series.parcel_id, STATE_FAILED, error=f"{type(e).__name__}: {e}")

    status = STATE_ABANDONED if verdict.abandoned else STATE_NOT_ABANDONED
    return ParcelOutcome(series.parcel_id, status, fit=fit, verdict=verdict)


class BatchResult:
    """Outcomes of a batch run, keyed by parcel id in input order."""

    def __init__(self, outcomes: List[ParcelOutcome]):
        self.outcomes: Dict[Any, ParcelOutcome] = {o.parcel_id: o for o in outcomes}

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, parcel_id) -> ParcelOutcome:
        return self.outcomes[parcel_id]

    @property
    def verdicts(self) -> Dict[Any, AbandonmentVerdict]:
        """Abandonment output set (insufficient-data and failed parcels excluded)."""
        return {
            pid: o.verdict for pid, o in self.outcomes.items() if o.verdict is not None
        }

    @property
    def insufficient(self) -> List[Any]:
        return [pid for pid, o in self.outcomes.items() if o.status == STATE_INSUFFICIENT]

    @property
    def failed(self) -> Dict[Any, str]:
        return {pid: o.error for pid, o in self.outcomes.items() if o.status == STATE_FAILED}

    def records(self) -> List[Dict]:
        """Export records ``{parcel_id, abandoned, trigger_index, magnitude, fitted_series}``."""
        return [
            o.verdict.to_record(o.fit.fitted)
            for o in self.outcomes.values()
            if o.verdict is not None
        ]

    def to_dataframe(self) -> pd.DataFrame:
        """
        One row per parcel, including non-scored ones.

        Returns
        -------
        pd.DataFrame
            parcel_id, status, abandoned, trigger_index, magnitude, n_segments
        """
        rows = []
        for pid, o in self.outcomes.items():
            v = o.verdict
            rows.append({
                'parcel_id': pid,
                'status': o.status,
                'abandoned': v.abandoned if v is not None else None,
                'trigger_index': v.trigger_index if v is not None else None,
                'magnitude': v.magnitude if v is not None else np.nan,
                'n_segments': o.fit.n_segments if o.fit is not None else 0,
            })
        df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
        df['trigger_index'] = pd.array(df['trigger_index'].tolist(), dtype='Int64')
        return df

    def fitted_dataframe(self) -> pd.DataFrame:
        """Fitted trajectories of scored parcels in long format."""
        frames = []
        for pid, o in self.outcomes.items():
            if o.verdict is None:
                continue
            series = o.fit.despiked
            frames.append(pd.DataFrame({
                'parcel_id': pid,
                'step': np.arange(len(o.fit.fitted)),
                'time': series.timestamps if series is not None else np.arange(len(o.fit.fitted)),
                'fitted': o.fit.fitted,
            }))
        if not frames:
            return pd.DataFrame(columns=['parcel_id', 'step', 'time', 'fitted'])
        return pd.concat(frames, ignore_index=True)

    def summary(self) -> Dict:
        """Status counts plus verdict statistics."""
        counts = pd.Series([o.status for o in self.outcomes.values()]).value_counts()
        summary = {
            'n_total': len(self.outcomes),
            'n_insufficient': int(counts.get(STATE_INSUFFICIENT, 0)),
            'n_failed': int(counts.get(STATE_FAILED, 0)),
        }
        summary.update(summarize_verdicts(self.verdicts.values()))
        return summary


def run_batch(
    store: SeriesStore,
    params: Optional[SegmentationParams] = None,
    rule: Optional[AbandonmentRule] = None,
    processing: Optional[ProcessingParams] = None
) -> BatchResult:
    """
    Fit and score every parcel of a store.

    Parameters
    ----------
    store : SeriesStore
        Loaded series
    params : SegmentationParams, optional
        Segmentation parameters (validated before any parcel runs)
    rule : AbandonmentRule, optional
        Defaults to ``DropRule()``
    processing : ProcessingParams, optional
        Parallelism and progress options

    Returns
    -------
    BatchResult

    Raises
    ------
    ConfigurationError
        Invalid parameters; nothing is processed
    """
    params = (params or SegmentationParams()).validate()
    processing = (processing or ProcessingParams()).validate()
    fitter = VertexFitter(params)
    rule = rule or DropRule()

    logger.info(f"Processing {len(store)} parcels with {rule!r}")

    if processing.parallel and len(store) > 1:
        delayed_results = [
            dask.delayed(process_parcel)(series, fitter, rule)
            for series in store
        ]
        compute_kwargs = {'scheduler': processing.scheduler}
        if processing.n_workers is not None and processing.scheduler != 'synchronous':
            compute_kwargs['num_workers'] = processing.n_workers
        outcomes = list(dask.compute(*delayed_results, **compute_kwargs))
    else:
        iterator = store
        if processing.show_progress:
            iterator = tqdm(store, desc="Parcels", total=len(store))
        outcomes = [process_parcel(series, fitter, rule) for series in iterator]

    result = BatchResult(outcomes)
    summary = result.summary()
    logger.info(
        f"Done: {summary['n_abandoned']} abandoned / {summary['n_parcels']} scored, "
        f"{summary['n_insufficient']} insufficient, {summary['n_failed']} failed"
    )
    return result


def save_results(result: BatchResult, output_dir: str) -> Dict[str, str]:
    """
    Write verdicts and fitted trajectories as CSV.

    Returns
    -------
    dict
        {'verdicts': path, 'fitted': path}
    """
    os.makedirs(output_dir, exist_ok=True)
    paths = {
        'verdicts': os.path.join(output_dir, 'verdicts.csv'),
        'fitted': os.path.join(output_dir, 'fitted.csv'),
    }
    result.to_dataframe().to_csv(paths['verdicts'], index=False)
    result.fitted_dataframe().to_csv(paths['fitted'], index=False)
    logger.info(f"Saved results to {output_dir}")
    return paths


def load_results(output_dir: str) -> Dict[str, pd.DataFrame]:
    """
    Load previously saved results.

    Returns
    -------
    dict
        {'verdicts': DataFrame, 'fitted': DataFrame}
    """
    verdicts = pd.read_csv(os.path.join(output_dir, 'verdicts.csv'))
    verdicts['trigger_index'] = verdicts['trigger_index'].astype('Int64')
    fitted = pd.read_csv(os.path.join(output_dir, 'fitted.csv'))
    return {'verdicts': verdicts, 'fitted': fitted}
