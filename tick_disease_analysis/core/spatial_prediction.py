"""
Spatial prediction of a fitted model over a covariate stack.

The posterior predictive distribution is evaluated for every cell whose
predictors are all present, and reduced to a mean probability grid plus one
grid per requested posterior quantile. Large grids are processed in bands of
raster rows; each band is predicted independently and written back into its
own rows, so the batch size only bounds memory.

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
import rasterio
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from tqdm import tqdm
from typing import Dict, Iterator, List, Optional, Sequence, Union

from shared_utils import get_logger, ensure_directory
from .covariates import CovariateStack
from .exceptions import DataError
from .model_selection import FittedModel

logger = get_logger('spatial_prediction')

DEFAULT_QUANTILES = (0.025, 0.975)


@dataclass(frozen=True)
class RowChunking:
    """
    Split a grid into bands of raster rows.

    Attributes:
        rows_per_batch: Raster rows per batch; None predicts the grid at once
    """
    rows_per_batch: Optional[int] = None

    def batches(self, n_rows: int) -> Iterator[slice]:
        if self.rows_per_batch is not None and self.rows_per_batch < 1:
            raise DataError(f"rows_per_batch must be positive, got {self.rows_per_batch}")
        step = n_rows if not self.rows_per_batch else self.rows_per_batch
        for start in range(0, n_rows, max(step, 1)):
            yield slice(start, min(start + step, n_rows))

    def n_batches(self, n_rows: int) -> int:
        return len(list(self.batches(n_rows)))


def quantile_label(q: float) -> str:
    """Band label of a quantile grid, e.g. 0.025 -> 'q0.025'."""
    return f"q{q:g}"


class PredictionRaster:
    """
    Mean and quantile probability grids aligned with a covariate stack.

    Args:
        mean: Posterior mean probability grid
        quantiles: Mapping of quantile to grid
        transform: Affine transform of the source stack
        crs: CRS of the source stack
    """

    def __init__(self, mean: np.ndarray, quantiles: Dict[float, np.ndarray], transform, crs):
        self._mean = np.array(mean, dtype=np.float64)
        self._mean.setflags(write=False)
        self._quantiles = OrderedDict()
        for q in sorted(quantiles):
            grid = np.array(quantiles[q], dtype=np.float64)
            grid.setflags(write=False)
            self._quantiles[float(q)] = grid
        self.transform = transform
        self.crs = crs

    @property
    def mean(self) -> np.ndarray:
        return self._mean

    @property
    def quantiles(self) -> Dict[float, np.ndarray]:
        return dict(self._quantiles)

    @property
    def shape(self):
        return self._mean.shape

    def quantile(self, q: float) -> np.ndarray:
        for key, grid in self._quantiles.items():
            if np.isclose(key, q):
                return grid
        raise DataError(f"Quantile {q} was not predicted; available: {list(self._quantiles)}")

    @property
    def lower(self) -> np.ndarray:
        """Grid of the smallest predicted quantile."""
        if not self._quantiles:
            raise DataError("No quantiles were predicted")
        return next(iter(self._quantiles.values()))

    @property
    def upper(self) -> np.ndarray:
        """Grid of the largest predicted quantile."""
        if not self._quantiles:
            raise DataError("No quantiles were predicted")
        return next(reversed(self._quantiles.values()))

    def grids(self) -> Dict[str, np.ndarray]:
        """All grids keyed by band label ('mean', 'q0.025', ...)."""
        grids = OrderedDict([('mean', self._mean)])
        for q, grid in self._quantiles.items():
            grids[quantile_label(q)] = grid
        return grids

    def as_stack(self) -> CovariateStack:
        return CovariateStack(list(self.grids().items()), self.transform, self.crs)

    def write(self, output_dir: Union[str, Path], prefix: str = 'prediction') -> List[Path]:
        """Write one single-band float32 GeoTIFF per grid."""
        output_dir = ensure_directory(output_dir)
        height, width = self.shape
        profile = {
            'driver': 'GTiff',
            'height': height,
            'width': width,
            'count': 1,
            'dtype': 'float32',
            'crs': self.crs,
            'transform': self.transform,
            'nodata': np.nan,
            'compress': 'lzw',
        }
        paths = []
        for label, grid in self.grids().items():
            path = output_dir / f"{prefix}_{label}.tif"
            with rasterio.open(path, 'w', **profile) as dst:
                dst.write(grid.astype('float32'), 1)
                dst.set_band_description(1, label)
            paths.append(path)
        logger.info(f"Wrote {len(paths)} prediction rasters to {output_dir}")
        return paths


def predict_raster(
    model: FittedModel,
    stack: CovariateStack,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    chunking: RowChunking = RowChunking(),
    show_progress: bool = False
) -> PredictionRaster:
    """
    Predict presence probability for every cell of a covariate stack.

    Args:
        model: Fitted model
        stack: Covariate stack holding at least the model's predictors
        quantiles: Posterior quantiles to map in addition to the mean
        chunking: Row batching strategy
        show_progress: Show a progress bar over batches

    Returns:
        PredictionRaster with the stack's geometry; cells missing any
        predictor are NaN in every grid

    Raises:
        DataError: The stack lacks a predictor, or a quantile is outside [0, 1]
    """
    missing = [name for name in model.predictors if name not in stack]
    if missing:
        raise DataError(f"Covariate stack lacks model predictors {missing}; bands: {stack.band_names}")
    quantiles = [float(q) for q in quantiles]
    bad = [q for q in quantiles if not 0.0 <= q <= 1.0]
    if bad:
        raise DataError(f"Quantiles must lie in [0, 1], got {bad}")

    height, width = stack.shape
    mean = np.full(stack.shape, np.nan)
    quantile_grids = {q: np.full(stack.shape, np.nan) for q in quantiles}
    bands = [stack[name] for name in model.predictors]

    batches = list(chunking.batches(height))
    logger.info(f"Predicting {height}x{width} cells in {len(batches)} batch(es) "
                f"with quantiles {quantiles}")

    n_predicted = 0
    for rows in tqdm(batches, desc='Predicting', disable=not show_progress):
        X = np.column_stack([band[rows].ravel() for band in bands])
        valid = np.isfinite(X).all(axis=1)
        if not valid.any():
            continue

        draws = model.ensemble.predict_draws(pd.DataFrame(X[valid], columns=model.predictors))
        n_batch_rows = rows.stop - rows.start

        batch_mean = np.full(n_batch_rows * width, np.nan)
        batch_mean[valid] = draws.mean(axis=0)
        mean[rows] = batch_mean.reshape(n_batch_rows, width)

        for q in quantiles:
            batch_q = np.full(n_batch_rows * width, np.nan)
            batch_q[valid] = np.quantile(draws, q, axis=0)
            quantile_grids[q][rows] = batch_q.reshape(n_batch_rows, width)

        n_predicted += int(valid.sum())

    logger.info(f"Predicted {n_predicted} cells ({height * width - n_predicted} missing)")
    return PredictionRaster(mean, quantile_grids, stack.transform, stack.crs)
