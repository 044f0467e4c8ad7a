"""
Figures for the risk mapping pipeline.

Maps of prediction, quantile, threshold, uncertainty and spartial grids with
optional point overlays, variable importance bars, the importance diagnostic,
the stepwise RMSE trace, ROC and fitted-probability diagnostics, and
partial-dependence curves and heatmaps. Purely presentational: every
function takes computed results and returns a figure.

Author: Diego Bengochea
"""

import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.colors import ListedColormap
from pathlib import Path
from rasterio.transform import array_bounds
from sklearn.metrics import roc_curve
from typing import Any, Dict, List, Optional, Sequence, Union

from shared_utils import get_logger
from .interpretation import PartialDependenceCurve, PartialDependence2D

logger = get_logger('plotting')

BINARY_CMAP = ListedColormap(['#F5F5F5', '#B2182B'])


def apply_style_config(output_config: Dict[str, Any]) -> None:
    """
    Apply matplotlib style configuration.

    Args:
        output_config: Output section, optionally holding a 'style' mapping of rcParams
    """
    if output_config.get('style'):
        plt.rcParams.update(output_config['style'])


def save_figure_multiple_formats(
    fig: plt.Figure,
    output_path: Union[str, Path],
    export_config: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> List[str]:
    """
    Save figure in multiple formats specified in config.

    Args:
        fig: Matplotlib figure object
        output_path: Base output path (without extension)
        export_config: Export settings ('formats', 'dpi', 'bbox_inches')
        logger: Optional logger for output messages

    Returns:
        List of saved file paths
    """
    if logger is None:
        logger = get_logger('plotting')

    base_path = Path(output_path).with_suffix('')
    base_path.parent.mkdir(parents=True, exist_ok=True)
    saved_files = []

    for fmt in export_config.get('formats', ['png']):
        save_kwargs = {
            'format': fmt,
            'dpi': export_config.get('dpi', 300),
            'bbox_inches': export_config.get('bbox_inches', 'tight'),
        }
        output_file = f"{base_path}.{fmt}"
        fig.savefig(output_file, **save_kwargs)
        saved_files.append(output_file)
        logger.info(f"Saved figure: {output_file}")

    return saved_files


def _extent(shape, transform):
    west, south, east, north = array_bounds(shape[0], shape[1], transform)
    return (west, east, south, north)


def plot_raster_map(
    grid: np.ndarray,
    transform,
    title: str = '',
    ax: Optional[plt.Axes] = None,
    cmap: str = 'viridis',
    vmin: Optional[float] = None,
    vmax: Optional[float] = None,
    colorbar_label: str = '',
    points: Optional[pd.DataFrame] = None,
    point_kwargs: Optional[Dict[str, Any]] = None
) -> plt.Figure:
    """
    Plot a grid as a map, optionally overlaying points (``x``/``y`` columns).

    Boolean grids are drawn with a two-colour legend instead of a colorbar.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 5))
    else:
        fig = ax.figure

    extent = _extent(grid.shape, transform)
    if grid.dtype == bool:
        ax.imshow(grid.astype(float), extent=extent, cmap=BINARY_CMAP, vmin=0, vmax=1,
                  interpolation='nearest')
        handles = [plt.Rectangle((0, 0), 1, 1, color=BINARY_CMAP(i)) for i in (0, 1)]
        ax.legend(handles, ['Below threshold', 'Above threshold'], loc='lower left', fontsize=8)
    else:
        img = ax.imshow(grid, extent=extent, cmap=cmap, vmin=vmin, vmax=vmax, interpolation='nearest')
        cbar = fig.colorbar(img, ax=ax, shrink=0.8)
        cbar.set_label(colorbar_label, fontsize=9)
        cbar.ax.tick_params(labelsize=8)

    if points is not None and len(points):
        kwargs = {'s': 6, 'c': 'black', 'marker': 'o', 'linewidths': 0}
        kwargs.update(point_kwargs or {})
        ax.scatter(points['x'], points['y'], **kwargs)

    ax.set_title(title, fontsize=10)
    ax.set_xlabel('x', fontsize=9)
    ax.set_ylabel('y', fontsize=9)
    ax.tick_params(labelsize=8)
    return fig


def plot_prediction_panels(grids: Dict[str, np.ndarray], transform, title_prefix: str = '',
                           cmap: str = 'viridis', vmin: Optional[float] = 0.0,
                           vmax: Optional[float] = 1.0) -> plt.Figure:
    """One map per grid (mean and quantiles, or their thresholded versions) side by side."""
    n = len(grids)
    fig, axes = plt.subplots(1, n, figsize=(5 * n, 4.5), squeeze=False)
    for ax, (label, grid) in zip(axes[0], grids.items()):
        plot_raster_map(grid, transform, title=f"{title_prefix}{label}", ax=ax, cmap=cmap,
                        vmin=vmin, vmax=vmax, colorbar_label='Probability')
    fig.tight_layout()
    return fig


def plot_variable_importance(importance: pd.DataFrame, title: str = 'Variable importance') -> plt.Figure:
    """Horizontal bars of inclusion proportion, most important on top."""
    ranking = importance.sort_values('importance', ascending=True)
    fig, ax = plt.subplots(figsize=(5, 0.35 * len(ranking) + 1.2))
    ax.barh(ranking['variable'], ranking['importance'], color='#4C72B0')
    ax.set_xlabel('Inclusion proportion', fontsize=9)
    ax.set_title(title, fontsize=10)
    ax.tick_params(labelsize=8)
    ax.grid(axis='x', linestyle='--', alpha=0.3)
    sns.despine(ax=ax)
    fig.tight_layout()
    return fig


def plot_importance_diagnostic(diagnostic: pd.DataFrame) -> plt.Figure:
    """Inclusion proportion of each predictor against the number of trees."""
    fig, ax = plt.subplots(figsize=(6, 4))
    tree_counts = [int(c) for c in diagnostic.columns]
    palette = sns.color_palette('tab20', n_colors=len(diagnostic))
    for color, (variable, row) in zip(palette, diagnostic.iterrows()):
        ax.plot(tree_counts, row.values, marker='o', markersize=3, color=color, label=variable)
    ax.set_xlabel('Number of trees', fontsize=9)
    ax.set_ylabel('Inclusion proportion', fontsize=9)
    ax.set_title('Variable importance diagnostic', fontsize=10)
    ax.legend(fontsize=7, frameon=False, bbox_to_anchor=(1.02, 1), loc='upper left')
    sns.despine(ax=ax)
    fig.tight_layout()
    return fig


def plot_stepwise_history(history: pd.DataFrame) -> plt.Figure:
    """Average replicate RMSE at each reduction step."""
    fig, ax = plt.subplots(figsize=(5, 3.5))
    ax.plot(history['n_predictors'], history['rmse'], marker='o', color='black')
    best = history.loc[history['rmse'].idxmin()]
    ax.scatter([best['n_predictors']], [best['rmse']], color='#B2182B', zorder=3, label='Retained set')
    ax.invert_xaxis()
    ax.set_xlabel('Number of predictors', fontsize=9)
    ax.set_ylabel('RMSE', fontsize=9)
    ax.set_title('Stepwise variable reduction', fontsize=10)
    ax.legend(fontsize=8, frameon=False)
    sns.despine(ax=ax)
    fig.tight_layout()
    return fig


def plot_partial_dependence(
    curves: Sequence[PartialDependenceCurve],
    n_cols: int = 3,
    trace: bool = False,
    n_traces: int = 50
) -> plt.Figure:
    """
    Partial-dependence panels with credible bands.

    Args:
        curves: Curves to draw, one panel each
        n_cols: Panels per row
        trace: Draw individual posterior curves behind the summary
        n_traces: Maximum number of posterior curves drawn
    """
    n = len(curves)
    n_cols = max(1, min(n_cols, n))
    n_rows = int(np.ceil(n / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(3.5 * n_cols, 3 * n_rows), squeeze=False)

    for ax, curve in zip(axes.ravel(), curves):
        if trace:
            step = max(1, curve.draws.shape[0] // n_traces)
            for draw in curve.draws[::step]:
                ax.plot(curve.values, draw, color='grey', alpha=0.15, linewidth=0.5)
        ax.fill_between(curve.values, curve.lower, curve.upper, color='#4C72B0', alpha=0.25,
                        label=f"{curve.ci[0]:g}-{curve.ci[1]:g}")
        ax.plot(curve.values, curve.mean, color='#4C72B0', linewidth=1.5, label='Mean')
        if curve.smoothed is not None:
            ax.plot(curve.values, curve.smoothed, color='black', linestyle='--', linewidth=1.0,
                    label='Smoothed')
        if curve.lowess is not None:
            ax.plot(curve.values, curve.lowess, color='#B2182B', linestyle=':', linewidth=1.0,
                    label='LOWESS')
        ax.set_title(curve.variable, fontsize=10)
        ax.set_ylabel('Probability', fontsize=9)
        ax.tick_params(labelsize=8)
        sns.despine(ax=ax)

    for ax in axes.ravel()[n:]:
        ax.set_visible(False)

    axes.ravel()[0].legend(fontsize=7, frameon=False)
    fig.tight_layout()
    return fig


def plot_partial_dependence_2d(pd2d: PartialDependence2D, cmap: str = 'magma_r') -> plt.Figure:
    """Heatmap of the 2-D partial dependence mean."""
    fig, ax = plt.subplots(figsize=(5, 4))
    frame = pd.DataFrame(
        pd2d.mean.T,
        index=np.round(pd2d.values_y, 2),
        columns=np.round(pd2d.values_x, 2)
    ).iloc[::-1]
    sns.heatmap(frame, ax=ax, cmap=cmap, cbar_kws={'label': 'Probability'})
    ax.set_xlabel(pd2d.variables[0], fontsize=9)
    ax.set_ylabel(pd2d.variables[1], fontsize=9)
    ax.set_title(f"{pd2d.variables[0]} x {pd2d.variables[1]}", fontsize=10)
    ax.tick_params(labelsize=7)
    fig.tight_layout()
    return fig


def plot_fit_diagnostics(y: Sequence[int], probabilities: Sequence[float], summary) -> plt.Figure:
    """
    ROC curve and the distribution of fitted probabilities per class.

    Args:
        y: Training labels
        probabilities: Posterior mean fitted probabilities
        summary: ModelSummary of the fit (AUC and threshold annotate the panels)
    """
    y = np.asarray(y, dtype=int)
    probabilities = np.asarray(probabilities, dtype=float)
    fpr, tpr, _ = roc_curve(y, probabilities)

    fig, (ax_roc, ax_hist) = plt.subplots(1, 2, figsize=(9, 3.8))
    ax_roc.plot(fpr, tpr, color='black', linewidth=1.5)
    ax_roc.plot([0, 1], [0, 1], color='grey', linestyle='--', linewidth=0.8)
    ax_roc.scatter([summary.type_i_error], [summary.sensitivity], color='#B2182B', zorder=3,
                   label=f"Threshold {summary.threshold:.3f}")
    ax_roc.set_xlabel('False positive rate', fontsize=9)
    ax_roc.set_ylabel('True positive rate', fontsize=9)
    ax_roc.set_title(f"AUC = {summary.auc:.3f}", fontsize=10)
    ax_roc.legend(fontsize=8, frameon=False, loc='lower right')

    bins = np.linspace(0.0, 1.0, 21)
    ax_hist.hist(probabilities[y == 0], bins=bins, color='#4C72B0', alpha=0.6, label='Pseudo-absence')
    ax_hist.hist(probabilities[y == 1], bins=bins, color='#B2182B', alpha=0.6, label='Presence')
    ax_hist.axvline(summary.threshold, color='black', linestyle='--', linewidth=1.0)
    ax_hist.set_xlabel('Fitted probability', fontsize=9)
    ax_hist.set_ylabel('Count', fontsize=9)
    ax_hist.set_title(f"TSS = {summary.tss:.3f}", fontsize=10)
    ax_hist.legend(fontsize=8, frameon=False)

    for ax in (ax_roc, ax_hist):
        ax.tick_params(labelsize=8)
        sns.despine(ax=ax)
    fig.tight_layout()
    return fig
