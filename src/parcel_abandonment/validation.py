"""
Validation utilities for comparing abandonment verdicts against reference labels.

Provides parcel-level accuracy metrics and a per-parcel comparison table
for field-surveyed or visually interpreted abandonment samples.
"""

import os
from typing import Dict, Optional

import numpy as np
import pandas as pd


def _ratio(numerator, denominator) -> float:
    return float(numerator / denominator) if denominator else 0.0


def compute_detection_metrics(
    predicted: np.ndarray,
    reference: np.ndarray,
) -> Dict:
    """
    Parcel-level agreement between predicted and reference abandonment flags.

    Parameters
    ----------
    predicted : np.ndarray
        Predicted abandonment flags.
    reference : np.ndarray
        Reference abandonment flags.

    Returns
    -------
    dict
        precision, recall, f1, accuracy and Cohen's kappa, plus the
        tp / fp / fn / tn counts. Ratios with an empty denominator are 0.
    """
    flagged = np.asarray(predicted).astype(bool).ravel()
    truth = np.asarray(reference).astype(bool).ravel()
    if flagged.shape != truth.shape:
        raise ValueError(f"Shape mismatch: {flagged.shape} vs {truth.shape}")
    if flagged.size == 0:
        raise ValueError("No parcels to compare")

    # rows: reference (kept, abandoned); columns: prediction
    confusion = np.bincount(2 * truth + flagged, minlength=4).reshape(2, 2)
    (tn, fp), (fn, tp) = confusion
    n = confusion.sum()

    observed = np.trace(confusion) / n
    chance = confusion.sum(axis=1) @ confusion.sum(axis=0) / n ** 2
    if chance == 1.0:
        kappa = 1.0 if observed == 1.0 else 0.0
    else:
        kappa = (observed - chance) / (1.0 - chance)

    return {
        'precision': _ratio(tp, tp + fp),
        'recall': _ratio(tp, tp + fn),
        'f1': _ratio(2 * tp, 2 * tp + fp + fn),
        'accuracy': float(observed),
        'kappa': float(kappa),
        'tp': int(tp),
        'fp': int(fp),
        'fn': int(fn),
        'tn': int(tn),
    }


def compare_with_reference(
    result_df: pd.DataFrame,
    reference_df: pd.DataFrame,
    reference_col: str = 'abandoned',
    output_dir: Optional[str] = None,
) -> Dict:
    """
    Join batch verdicts with reference labels and score them.

    Parcels without a verdict (insufficient data, failed) or without a
    reference label are left out of the metrics and counted separately.

    Parameters
    ----------
    result_df : pd.DataFrame
        Output of BatchResult.to_dataframe().
    reference_df : pd.DataFrame
        Must contain 'parcel_id' and ``reference_col``.
    reference_col : str
        Boolean reference column.
    output_dir : str, optional
        Directory to save the comparison table and metrics as CSV.

    Returns
    -------
    dict
        'metrics': detection metrics,
        'comparison': per-parcel table with an 'agreement' column,
        'n_unscored': reference parcels without a verdict
    """
    if reference_col not in reference_df.columns:
        raise ValueError(f"Column '{reference_col}' not found in reference table")

    reference = reference_df[['parcel_id', reference_col]].rename(
        columns={reference_col: 'reference'}
    )
    merged = result_df.merge(reference, on='parcel_id', how='inner')
    scored = merged[merged['abandoned'].notna() & merged['reference'].notna()].copy()

    scored['abandoned'] = scored['abandoned'].astype(bool)
    scored['reference'] = scored['reference'].astype(bool)
    scored['agreement'] = scored['abandoned'] == scored['reference']

    metrics = compute_detection_metrics(scored['abandoned'].values, scored['reference'].values)
    metrics['n_compared'] = int(len(scored))

    report = {
        'metrics': metrics,
        'comparison': scored.reset_index(drop=True),
        'n_unscored': int(len(merged) - len(scored)),
    }

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        report['comparison'].to_csv(os.path.join(output_dir, 'reference_comparison.csv'), index=False)
        pd.DataFrame([metrics]).to_csv(os.path.join(output_dir, 'detection_metrics.csv'), index=False)

    return report
