"""
Visualization utilities for fitted trajectories and batch results.

This module handles:
- Raw vs despiked vs fitted trajectory plots
- Batch summary figures (status counts, drop magnitudes)
"""

import os
from typing import Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .series import AbandonmentVerdict, FitResult, ParcelSeries


STATUS_COLORS = {
    'abandoned': '#DC143C',       # Crimson
    'not-abandoned': '#228B22',   # Forest green
    'insufficient-data': '#808080',
    'failed': '#2F2F2F',
}


def _save(fig: plt.Figure, output_path: Optional[str]):
    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        fig.savefig(output_path, dpi=300, bbox_inches='tight')
        print(f"Saved: {output_path}")


def plot_trajectory(
    series: ParcelSeries,
    fit_result: FitResult,
    verdict: Optional[AbandonmentVerdict] = None,
    title: Optional[str] = None,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 4)
) -> plt.Figure:
    """
    Plot one parcel's probability series with its fitted trend.

    Parameters
    ----------
    series : ParcelSeries
        Raw observations
    fit_result : FitResult
        Output of VertexFitter.fit()
    verdict : AbandonmentVerdict, optional
        If abandoned, the triggering step is highlighted
    title : str, optional
        Plot title (defaults to the parcel id)
    output_path : str, optional
        Path to save figure
    figsize : tuple
        Figure size (width, height)

    Returns
    -------
    plt.Figure
        The generated figure
    """
    fig, ax = plt.subplots(figsize=figsize)
    x = np.arange(len(series))

    ax.plot(x, series.values, 'o', color='#1E90FF', alpha=0.6, label='Observed')

    if fit_result.despiked is not None:
        changed = ~np.isclose(fit_result.despiked.values, series.values, equal_nan=True)
        if changed.any():
            ax.plot(x[changed], fit_result.despiked.values[changed], 'x',
                    color='#FFD700', markersize=9, label='Despiked')

    if fit_result.is_fitted:
        ax.plot(x, fit_result.fitted, '-', color='black', linewidth=2,
                label=f'Fitted ({fit_result.n_segments} segments)')

        # Vertices sit on the numeric time axis; map them to step positions
        t = series.time_axis
        vx = np.interp(fit_result.model.vertex_times, t, x)
        ax.plot(vx, fit_result.model.vertex_values, 's', color='black', markersize=6)

    if verdict is not None and verdict.abandoned:
        i = verdict.trigger_index
        ax.axvspan(i, i + 1, color=STATUS_COLORS['abandoned'], alpha=0.2,
                   label=f'Drop {verdict.magnitude:.2f}')

    ax.set_ylim(-0.05, 1.05)
    ax.set_xlabel('Time step', fontsize=10)
    ax.set_ylabel('Cultivation probability', fontsize=10)
    ax.set_title(title or f"Parcel {series.parcel_id}", fontsize=12, fontweight='bold')
    ax.legend(fontsize=9, loc='lower left')
    ax.grid(alpha=0.3)

    plt.tight_layout()
    _save(fig, output_path)
    return fig


def plot_abandonment_summary(
    result_df: pd.DataFrame,
    title: str = "Abandonment Detection Summary",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (12, 5)
) -> plt.Figure:
    """
    Plot parcel status counts and the distribution of drop magnitudes.

    Parameters
    ----------
    result_df : pd.DataFrame
        Output of BatchResult.to_dataframe()
    title : str
        Figure title
    output_path : str, optional
        Path to save figure
    figsize : tuple
        Figure size

    Returns
    -------
    plt.Figure
        The generated figure
    """
    if len(result_df) == 0:
        raise ValueError("Empty result dataframe")

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)

    counts = result_df['status'].value_counts()
    colors = [STATUS_COLORS.get(s, '#1E90FF') for s in counts.index]
    ax1.bar(counts.index, counts.values, color=colors)
    ax1.set_ylabel('Parcels', fontsize=10)
    ax1.set_title('Parcel status', fontsize=11)
    ax1.grid(axis='y', alpha=0.3)

    scored = result_df.dropna(subset=['magnitude'])
    for status, group in scored.groupby('status'):
        ax2.hist(group['magnitude'], bins=20, range=(0, 1), alpha=0.6,
                 color=STATUS_COLORS.get(status, '#1E90FF'), label=status)
    ax2.set_xlabel('Largest fitted decline', fontsize=10)
    ax2.set_ylabel('Parcels', fontsize=10)
    ax2.set_title('Drop magnitude', fontsize=11)
    if len(scored):
        ax2.legend(fontsize=9)
    ax2.grid(axis='y', alpha=0.3)

    fig.suptitle(title, fontsize=12, fontweight='bold')
    plt.tight_layout()
    _save(fig, output_path)
    return fig
