"""
Occurrence loading, spatial thinning and covariate extraction.

Occurrence records (tick collections, disease cases) are read from a table of
longitude/latitude pairs, burned onto the covariate grid so that every
occupied cell contributes exactly one presence at its centre, and finally
sampled against the covariate stack.

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
import geopandas as gpd
from rasterio.features import rasterize
from rasterio.enums import MergeAlg
from pathlib import Path
from typing import Iterable, Optional, Union

from shared_utils import get_logger
from .covariates import CovariateStack
from .exceptions import DataError

logger = get_logger('occurrences')

DEFAULT_CRS = 'EPSG:4326'


def occurrences_from_xy(
    xs: Iterable[float],
    ys: Iterable[float],
    crs: Optional[str] = DEFAULT_CRS
) -> gpd.GeoDataFrame:
    """Build an occurrence set from coordinate sequences."""
    xs = np.asarray(list(xs), dtype=float)
    ys = np.asarray(list(ys), dtype=float)
    if xs.shape != ys.shape:
        raise DataError(f"Got {xs.size} x coordinates and {ys.size} y coordinates")
    return gpd.GeoDataFrame(
        {'x': xs, 'y': ys},
        geometry=gpd.points_from_xy(xs, ys),
        crs=crs
    )


def load_occurrences(
    path: Union[str, Path],
    lon_col: str = 'longitude',
    lat_col: str = 'latitude',
    label_col: Optional[str] = None,
    label_value: Optional[str] = None,
    crs: Optional[str] = DEFAULT_CRS
) -> gpd.GeoDataFrame:
    """
    Read occurrence records from a CSV file.

    Args:
        path: CSV file with one row per record
        lon_col: Longitude (x) column
        lat_col: Latitude (y) column
        label_col: Optional column identifying the record type
        label_value: Keep only rows where ``label_col`` equals this value
        crs: CRS of the coordinates

    Returns:
        GeoDataFrame with ``x``, ``y`` and point geometry

    Raises:
        DataError: Missing file, missing columns or unusable coordinates
    """
    path = Path(path)
    if not path.exists():
        raise DataError(f"Occurrence file not found: {path}")

    df = pd.read_csv(path)

    required = [lon_col, lat_col] + ([label_col] if label_col else [])
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise DataError(f"Occurrence file {path} lacks columns {missing}")

    if label_col and label_value is not None:
        df = df[df[label_col].astype(str) == str(label_value)]
        logger.info(f"Kept {len(df)} records with {label_col} == {label_value!r}")

    xs = pd.to_numeric(df[lon_col], errors='coerce')
    ys = pd.to_numeric(df[lat_col], errors='coerce')
    usable = xs.notna() & ys.notna()
    if (~usable).any():
        logger.warning(f"Dropping {int((~usable).sum())} records with missing or non-numeric coordinates")

    occurrences = occurrences_from_xy(xs[usable], ys[usable], crs=crs)
    if occurrences.empty:
        raise DataError(f"No usable occurrence records in {path}")

    logger.info(f"Loaded {len(occurrences)} occurrence records from {path}")
    return occurrences


def _to_stack_crs(points: gpd.GeoDataFrame, stack: CovariateStack) -> gpd.GeoDataFrame:
    if points.crs is not None and stack.crs is not None and points.crs != stack.crs:
        logger.info(f"Reprojecting {len(points)} points from {points.crs} to {stack.crs}")
        points = points.to_crs(stack.crs)
        points = points.assign(x=points.geometry.x, y=points.geometry.y)
    return points


def presence_grid(points: gpd.GeoDataFrame, stack: CovariateStack) -> np.ndarray:
    """
    Burn presences onto the stack's grid.

    Every cell touched by at least one point holds 1, every other cell 0. All
    points burn the same value, so the per-cell minimum of the presence flags
    is 1 no matter how many points share the cell.
    """
    points = _to_stack_crs(points, stack)
    grid = np.zeros(stack.shape, dtype='uint8')
    if points.empty:
        return grid

    _, _, inside = stack.cell_index(points['x'].values, points['y'].values)
    if not inside.any():
        return grid

    shapes = ((geom, 1) for geom in points.geometry[inside])
    return rasterize(
        shapes,
        out_shape=stack.shape,
        transform=stack.transform,
        fill=0,
        dtype='uint8',
        merge_alg=MergeAlg.replace
    )


def thin_occurrences(points: gpd.GeoDataFrame, stack: CovariateStack) -> gpd.GeoDataFrame:
    """
    Keep at most one occurrence per grid cell.

    Points are rasterized on the covariate grid and every occupied cell is
    returned once, at its centre, in row-major cell order. Points outside the
    grid are dropped. Thinning an already thinned set returns the same set.

    Args:
        points: Occurrence set
        stack: Covariate stack providing the grid geometry

    Returns:
        GeoDataFrame with ``x``, ``y``, ``row``, ``col`` and point geometry
    """
    grid = presence_grid(points, stack)
    rows, cols = np.nonzero(grid > 0)
    xs, ys = stack.cell_xy(rows, cols)

    thinned = gpd.GeoDataFrame(
        {'x': xs, 'y': ys, 'row': rows, 'col': cols},
        geometry=gpd.points_from_xy(xs, ys),
        crs=stack.crs if stack.crs is not None else points.crs
    )

    logger.info(f"Thinned {len(points)} occurrences to {len(thinned)} occupied cells")
    return thinned


def extract_covariates(
    points: gpd.GeoDataFrame,
    stack: CovariateStack,
    names: Optional[Iterable[str]] = None
) -> pd.DataFrame:
    """
    Sample covariate values at each point.

    Returns:
        DataFrame with ``x``, ``y`` and one column per band; points on missing
        cells or outside the grid carry NaN
    """
    points = _to_stack_crs(points, stack)
    values = stack.values_at(points['x'].values, points['y'].values, names)
    values.insert(0, 'y', points['y'].values)
    values.insert(0, 'x', points['x'].values)
    return values
