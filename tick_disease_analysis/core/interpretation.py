"""
Model interpretation: variable importance, partial dependence, spatial
partial dependence, thresholded risk maps and posterior uncertainty maps.

Partial dependence is computed over the model's training rows: for each level
of the target predictor every row gets that level, the posterior draws of the
predicted probability are averaged over rows, and the resulting per-draw
curves give the mean and a credible band.

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
from collections import OrderedDict
from dataclasses import dataclass
from statsmodels.nonparametric.smoothers_lowess import lowess
from typing import Dict, Optional, Sequence, Tuple

from shared_utils import get_logger
from .covariates import CovariateStack
from .exceptions import DataError
from .model_selection import FittedModel
from .spatial_prediction import PredictionRaster

logger = get_logger('interpretation')

DEFAULT_CI = (0.025, 0.975)

# Rows sent to the ensemble per partial-dependence batch
DEFAULT_PD_BATCH_ROWS = 50_000


@dataclass(frozen=True)
class PartialDependenceCurve:
    """Partial dependence of the presence probability on one predictor."""
    variable: str
    values: np.ndarray
    draws: np.ndarray
    mean: np.ndarray
    median: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    ci: Tuple[float, float]
    smoothed: Optional[np.ndarray] = None
    lowess: Optional[np.ndarray] = None

    @property
    def effect(self) -> np.ndarray:
        """Smoothed curve when available, posterior mean otherwise."""
        if self.smoothed is not None:
            return self.smoothed
        if self.lowess is not None:
            return self.lowess
        return self.mean

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({
            self.variable: self.values,
            'mean': self.mean,
            'median': self.median,
            'lower': self.lower,
            'upper': self.upper,
        })
        if self.smoothed is not None:
            frame['smoothed'] = self.smoothed
        if self.lowess is not None:
            frame['lowess'] = self.lowess
        return frame


@dataclass(frozen=True)
class PartialDependence2D:
    """Partial dependence on two predictors over the grid of their levels."""
    variables: Tuple[str, str]
    values_x: np.ndarray
    values_y: np.ndarray
    mean: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    ci: Tuple[float, float]

    def to_frame(self) -> pd.DataFrame:
        """Long format: one row per (x level, y level) pair."""
        xx, yy = np.meshgrid(self.values_x, self.values_y, indexing='ij')
        return pd.DataFrame({
            self.variables[0]: xx.ravel(),
            self.variables[1]: yy.ravel(),
            'mean': self.mean.ravel(),
            'lower': self.lower.ravel(),
            'upper': self.upper.ravel(),
        })


# ---------------------------------------------------------------------- #
# Importance
# ---------------------------------------------------------------------- #
def variable_importance(model: FittedModel, top_n: Optional[int] = None) -> pd.DataFrame:
    """Predictors ranked by posterior inclusion proportion (most important first)."""
    ranking = model.importance.sort_values('importance', ascending=False, kind='stable').reset_index(drop=True)
    ranking['rank'] = np.arange(1, len(ranking) + 1)
    return ranking.head(top_n) if top_n else ranking


# ---------------------------------------------------------------------- #
# Partial dependence
# ---------------------------------------------------------------------- #
def pd_levels(values: Sequence[float], levels: int = 10, equal: bool = False) -> np.ndarray:
    """
    Grid of predictor values for partial dependence.

    Args:
        values: Observed values of the predictor
        levels: Number of grid points
        equal: Equally spaced between min and max instead of empirical quantiles
    """
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        raise DataError("Cannot build partial dependence levels from an empty column")
    if levels < 2:
        raise DataError(f"Partial dependence needs at least 2 levels, got {levels}")
    if equal:
        grid = np.linspace(values.min(), values.max(), levels)
    else:
        grid = np.quantile(values, np.linspace(0.0, 1.0, levels))
    return np.unique(grid)


def moving_average(values: Sequence[float], window: int) -> np.ndarray:
    """Centred moving average; windows shrink at both ends."""
    if window < 1:
        raise DataError(f"Smoothing window must be positive, got {window}")
    series = pd.Series(np.asarray(values, dtype=float))
    return series.rolling(window, center=True, min_periods=1).mean().to_numpy()


def _check_variable(model: FittedModel, variable: str) -> None:
    if variable not in model.predictors:
        raise DataError(f"'{variable}' is not a predictor of the model: {model.predictors}")


def _grid_draws(
    model: FittedModel,
    assignments: Sequence[Dict[str, float]],
    max_rows: Optional[int] = DEFAULT_PD_BATCH_ROWS
) -> np.ndarray:
    """
    Posterior draws of the row-averaged probability for each assignment.

    Assignments are predicted in batches of at most ``max_rows`` rows (and at
    least one assignment), so memory stays bounded on large grids.

    Returns:
        Array of shape (n_draws, len(assignments))
    """
    training = model.training[model.predictors]
    n_rows = len(training)
    per_batch = len(assignments) if not max_rows else max(1, max_rows // max(n_rows, 1))

    averaged = []
    for start in range(0, len(assignments), per_batch):
        batch = assignments[start:start + per_batch]
        frames = [training.assign(**assignment) for assignment in batch]
        draws = model.ensemble.predict_draws(pd.concat(frames, ignore_index=True)[model.predictors])
        averaged.append(draws.reshape(draws.shape[0], len(batch), n_rows).mean(axis=2))
    return np.concatenate(averaged, axis=1)


def partial_dependence(
    model: FittedModel,
    variable: str,
    levels: int = 10,
    equal: bool = False,
    ci: Tuple[float, float] = DEFAULT_CI,
    smooth_window: Optional[int] = None,
    lowess_frac: Optional[float] = None,
    max_rows: Optional[int] = DEFAULT_PD_BATCH_ROWS
) -> PartialDependenceCurve:
    """
    1-D partial dependence of the presence probability on ``variable``.

    Args:
        model: Fitted model
        variable: Predictor name
        levels: Number of grid values
        equal: Equally spaced grid instead of empirical quantiles
        ci: Lower and upper posterior quantiles of the credible band
        smooth_window: Moving-average window applied to the mean curve
        lowess_frac: LOWESS span applied to the mean curve
        max_rows: Rows predicted per batch (one batch if None)

    Returns:
        PartialDependenceCurve
    """
    _check_variable(model, variable)
    values = pd_levels(model.training[variable], levels, equal)
    draws = _grid_draws(model, [{variable: v} for v in values], max_rows=max_rows)

    mean = draws.mean(axis=0)
    smoothed = moving_average(mean, smooth_window) if smooth_window and smooth_window > 1 else None
    smoothed_lowess = None
    if lowess_frac and len(values) > 2:
        smoothed_lowess = lowess(mean, values, frac=lowess_frac, return_sorted=False)

    logger.debug(f"Partial dependence for {variable} over {len(values)} levels")
    return PartialDependenceCurve(
        variable=variable,
        values=values,
        draws=draws,
        mean=mean,
        median=np.median(draws, axis=0),
        lower=np.quantile(draws, ci[0], axis=0),
        upper=np.quantile(draws, ci[1], axis=0),
        ci=tuple(ci),
        smoothed=smoothed,
        lowess=smoothed_lowess
    )


def partial_dependence_2d(
    model: FittedModel,
    variable_x: str,
    variable_y: str,
    levels: int = 10,
    equal: bool = False,
    ci: Tuple[float, float] = DEFAULT_CI,
    max_rows: Optional[int] = DEFAULT_PD_BATCH_ROWS
) -> PartialDependence2D:
    """2-D partial dependence over the cartesian grid of two predictors' levels."""
    _check_variable(model, variable_x)
    _check_variable(model, variable_y)
    if variable_x == variable_y:
        raise DataError("2-D partial dependence needs two different predictors")

    values_x = pd_levels(model.training[variable_x], levels, equal)
    values_y = pd_levels(model.training[variable_y], levels, equal)
    assignments = [{variable_x: vx, variable_y: vy} for vx in values_x for vy in values_y]
    draws = _grid_draws(model, assignments, max_rows=max_rows).reshape(-1, len(values_x), len(values_y))

    return PartialDependence2D(
        variables=(variable_x, variable_y),
        values_x=values_x,
        values_y=values_y,
        mean=draws.mean(axis=0),
        lower=np.quantile(draws, ci[0], axis=0),
        upper=np.quantile(draws, ci[1], axis=0),
        ci=tuple(ci)
    )


def spartial(
    model: FittedModel,
    stack: CovariateStack,
    variable: str,
    curve: Optional[PartialDependenceCurve] = None,
    **pd_kwargs
) -> np.ndarray:
    """
    Spatial partial dependence: the marginal effect of ``variable`` mapped
    onto the grid.

    Each cell's covariate value is replaced by the partial-dependence value of
    the nearest grid level. Cells where the covariate is missing stay NaN.

    Args:
        model: Fitted model
        stack: Covariate stack holding ``variable``
        variable: Predictor name
        curve: Precomputed curve; computed with ``pd_kwargs`` if omitted

    Returns:
        Grid with the stack's shape
    """
    _check_variable(model, variable)
    if curve is None:
        curve = partial_dependence(model, variable, **pd_kwargs)
    elif curve.variable != variable:
        raise DataError(f"Curve is for '{curve.variable}', not '{variable}'")

    cells = stack[variable]
    finite = np.isfinite(cells)
    effect = curve.effect

    edges = (curve.values[:-1] + curve.values[1:]) / 2.0
    index = np.searchsorted(edges, cells[finite], side='right')

    out = np.full(stack.shape, np.nan)
    out[finite] = effect[index]
    return out


# ---------------------------------------------------------------------- #
# Risk and uncertainty maps
# ---------------------------------------------------------------------- #
def threshold_map(grid: np.ndarray, threshold: float) -> np.ndarray:
    """Boolean grid of cells strictly above ``threshold`` (missing cells are False)."""
    with np.errstate(invalid='ignore'):
        return np.greater(grid, threshold)


def threshold_maps(prediction: PredictionRaster, threshold: float) -> Dict[str, np.ndarray]:
    """Apply one threshold to the mean and to every quantile grid."""
    maps = OrderedDict()
    for label, grid in prediction.grids().items():
        maps[label] = threshold_map(grid, threshold)
    return maps


def uncertainty_map(
    prediction: PredictionRaster,
    lower_q: Optional[float] = None,
    upper_q: Optional[float] = None
) -> np.ndarray:
    """Width of the posterior interval (upper minus lower quantile) per cell."""
    lower = prediction.lower if lower_q is None else prediction.quantile(lower_q)
    upper = prediction.upper if upper_q is None else prediction.quantile(upper_q)
    return upper - lower


def high_uncertainty_mask(width: np.ndarray, quantile: float = 0.75) -> Tuple[np.ndarray, float]:
    """
    Cells whose interval width exceeds an empirical quantile of the widths.

    Returns:
        Tuple of (boolean mask, width cutoff)
    """
    if not 0.0 <= quantile <= 1.0:
        raise DataError(f"Quantile must lie in [0, 1], got {quantile}")
    finite = width[np.isfinite(width)]
    if finite.size == 0:
        raise DataError("Uncertainty map has no finite cells")
    cutoff = float(np.quantile(finite, quantile))
    return threshold_map(width, cutoff), cutoff


def summarize_risk(prediction: PredictionRaster, threshold: float) -> pd.DataFrame:
    """Number and share of valid cells classified as presence per grid."""
    rows = []
    for label, grid in prediction.grids().items():
        valid = np.isfinite(grid)
        above = threshold_map(grid, threshold)
        n_valid = int(valid.sum())
        rows.append({
            'grid': label,
            'n_valid': n_valid,
            'n_above_threshold': int(above.sum()),
            'fraction_above_threshold': float(above.sum() / n_valid) if n_valid else np.nan,
        })
    return pd.DataFrame(rows)

