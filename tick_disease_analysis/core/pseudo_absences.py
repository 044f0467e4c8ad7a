"""
Pseudo-absence (background) sampling.

Author: Diego Bengochea
"""

import numpy as np
import geopandas as gpd
from typing import Iterable, Optional

from shared_utils import get_logger
from .covariates import CovariateStack
from .exceptions import CardinalityError, DataError

logger = get_logger('pseudo_absences')

EXCESS_POLICIES = ('error', 'cap')


def sample_pseudo_absences(
    stack: CovariateStack,
    n: int,
    seed: int,
    names: Optional[Iterable[str]] = None,
    excess_policy: str = 'error'
) -> gpd.GeoDataFrame:
    """
    Draw ``n`` background points uniformly from valid cells.

    A cell is valid when every band in ``names`` (all bands by default) holds a
    finite value. Cells are drawn without replacement, so no point is
    duplicated; no minimum distance from presences is enforced.

    Args:
        stack: Covariate stack
        n: Number of points to draw
        seed: Seed of the random generator
        names: Bands that must be non-missing for a cell to be eligible
        excess_policy: 'error' raises when ``n`` exceeds the valid cells,
            'cap' returns every valid cell instead

    Returns:
        GeoDataFrame with ``x``, ``y``, ``row``, ``col`` and point geometry

    Raises:
        CardinalityError: ``n`` exceeds the valid cells under the 'error' policy
    """
    if excess_policy not in EXCESS_POLICIES:
        raise DataError(f"excess_policy must be one of {EXCESS_POLICIES}, got {excess_policy!r}")
    if n < 0:
        raise DataError(f"Cannot sample a negative number of pseudo-absences ({n})")

    valid_cells = np.flatnonzero(stack.valid_mask(names))
    available = len(valid_cells)

    if n > available:
        if excess_policy == 'error':
            raise CardinalityError(
                f"Requested {n} pseudo-absences but only {available} valid cells exist",
                requested=n,
                available=available
            )
        logger.warning(f"Requested {n} pseudo-absences but only {available} valid cells exist; "
                       f"returning all of them")
        n = available

    rng = np.random.default_rng(seed)
    chosen = rng.choice(valid_cells, size=n, replace=False)
    rows, cols = np.unravel_index(chosen, stack.shape)
    xs, ys = stack.cell_xy(rows, cols)

    logger.info(f"Sampled {n} pseudo-absences from {available} valid cells (seed={seed})")

    return gpd.GeoDataFrame(
        {'x': xs, 'y': ys, 'row': rows, 'col': cols},
        geometry=gpd.points_from_xy(xs, ys),
        crs=stack.crs
    )
