"""
Covariate raster stack.

A ``CovariateStack`` is an ordered set of named, co-registered 2-D grids
(climate, vegetation, land use) sharing one affine transform and CRS. Stacks
are never modified in place: appending a band (for example a first-stage
suitability prediction) or selecting a subset returns a new stack, so a stack
handed to one stage cannot change under another.

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import Affine, array_bounds, rowcol, xy
from rasterio.warp import reproject
from collections import OrderedDict
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from shared_utils import get_logger, find_raster_files
from .exceptions import DataError

logger = get_logger('covariates')


def _frozen_grid(grid: np.ndarray) -> np.ndarray:
    """Return a float64 read-only copy of a grid."""
    array = np.array(grid, dtype=np.float64, copy=True)
    array.setflags(write=False)
    return array


def _same_transform(a: Affine, b: Affine) -> bool:
    return np.allclose(tuple(a)[:6], tuple(b)[:6])


class CovariateStack:
    """
    Ordered mapping from band name to a co-registered 2-D grid.

    Args:
        bands: Mapping (or sequence of pairs) of band name to 2-D array
        transform: Affine transform shared by every band
        crs: Coordinate reference system (anything rasterio's CRS accepts)
    """

    def __init__(
        self,
        bands: Union[Mapping[str, np.ndarray], Sequence[Tuple[str, np.ndarray]]],
        transform: Affine,
        crs: Optional[Union[str, CRS]] = None
    ):
        pairs = list(bands.items()) if isinstance(bands, Mapping) else list(bands)
        if not pairs:
            raise DataError("A covariate stack needs at least one band")

        names = [name for name, _ in pairs]
        duplicated = sorted({name for name in names if names.count(name) > 1})
        if duplicated:
            raise DataError(f"Duplicated band names: {duplicated}")

        self._bands = OrderedDict()
        shape = None
        for name, grid in pairs:
            grid = _frozen_grid(grid)
            if grid.ndim != 2:
                raise DataError(f"Band '{name}' must be 2-D, got shape {grid.shape}")
            if shape is None:
                shape = grid.shape
            elif grid.shape != shape:
                raise DataError(
                    f"Band '{name}' has shape {grid.shape}, expected {shape}: bands must be co-registered"
                )
            self._bands[str(name)] = grid

        self._shape = shape
        self._transform = transform
        self._crs = CRS.from_user_input(crs) if crs is not None else None

    # ------------------------------------------------------------------ #
    # Geometry
    # ------------------------------------------------------------------ #
    @property
    def band_names(self) -> List[str]:
        return list(self._bands)

    @property
    def n_bands(self) -> int:
        return len(self._bands)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def transform(self) -> Affine:
        return self._transform

    @property
    def crs(self) -> Optional[CRS]:
        return self._crs

    @property
    def res(self) -> Tuple[float, float]:
        return abs(self._transform.a), abs(self._transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) of the grid."""
        height, width = self._shape
        return array_bounds(height, width, self._transform)

    def same_grid(self, other: 'CovariateStack') -> bool:
        """True when both stacks share dimensions, transform and CRS."""
        return (
            self.shape == other.shape
            and _same_transform(self.transform, other.transform)
            and self.crs == other.crs
        )

    def __len__(self) -> int:
        return len(self._bands)

    def __contains__(self, name: str) -> bool:
        return name in self._bands

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self._bands[name]
        except KeyError:
            raise DataError(f"Unknown band '{name}'. Available bands: {self.band_names}")

    def __repr__(self) -> str:
        return f"CovariateStack(bands={self.band_names}, shape={self.shape}, crs={self.crs})"

    # ------------------------------------------------------------------ #
    # Derived stacks
    # ------------------------------------------------------------------ #
    def with_band(self, name: str, grid: np.ndarray) -> 'CovariateStack':
        """
        Return a new stack with ``grid`` appended as band ``name``.

        Raises:
            DataError: If the name is taken or the grid shape differs
        """
        if name in self._bands:
            raise DataError(f"Band '{name}' already exists in the stack")
        grid = np.asarray(grid)
        if grid.shape != self._shape:
            raise DataError(f"Band '{name}' has shape {grid.shape}, expected {self._shape}")
        return CovariateStack(list(self._bands.items()) + [(name, grid)], self._transform, self._crs)

    def select(self, names: Iterable[str]) -> 'CovariateStack':
        """Return a new stack holding only ``names``, in that order."""
        names = list(names)
        missing = [name for name in names if name not in self._bands]
        if missing:
            raise DataError(f"Bands not found in stack: {missing}. Available bands: {self.band_names}")
        return CovariateStack([(name, self._bands[name]) for name in names], self._transform, self._crs)

    def with_crs(self, crs: Union[str, CRS]) -> 'CovariateStack':
        """Return the same grids with ``crs`` assigned (no reprojection)."""
        return CovariateStack(list(self._bands.items()), self._transform, crs)

    # ------------------------------------------------------------------ #
    # Cell access
    # ------------------------------------------------------------------ #
    def _names(self, names: Optional[Iterable[str]]) -> List[str]:
        if names is None:
            return self.band_names
        names = list(names)
        missing = [name for name in names if name not in self._bands]
        if missing:
            raise DataError(f"Bands not found in stack: {missing}. Available bands: {self.band_names}")
        return names

    def valid_mask(self, names: Optional[Iterable[str]] = None) -> np.ndarray:
        """Boolean grid, True where every selected band has a finite value."""
        names = self._names(names)
        mask = np.ones(self._shape, dtype=bool)
        for name in names:
            mask &= np.isfinite(self._bands[name])
        return mask

    def to_matrix(self, names: Optional[Iterable[str]] = None) -> np.ndarray:
        """Cells x bands matrix in row-major cell order."""
        names = self._names(names)
        return np.column_stack([self._bands[name].ravel() for name in names])

    def to_frame(self, names: Optional[Iterable[str]] = None, dropna: bool = False) -> pd.DataFrame:
        """Cells as rows with cell-centre ``x``/``y`` plus one column per band."""
        names = self._names(names)
        rows, cols = np.indices(self._shape)
        xs, ys = self.cell_xy(rows.ravel(), cols.ravel())
        df = pd.DataFrame(self.to_matrix(names), columns=names)
        df.insert(0, 'y', ys)
        df.insert(0, 'x', xs)
        if dropna:
            df = df.dropna(subset=names).reset_index(drop=True)
        return df

    def cell_xy(self, rows: Sequence[int], cols: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
        """Cell-centre coordinates of the given cells."""
        rows = np.asarray(rows, dtype=int)
        cols = np.asarray(cols, dtype=int)
        if rows.size == 0:
            return np.empty(0), np.empty(0)
        xs, ys = xy(self._transform, rows, cols, offset='center')
        return np.asarray(xs, dtype=float).reshape(-1), np.asarray(ys, dtype=float).reshape(-1)

    def cell_index(self, xs: Sequence[float], ys: Sequence[float]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Row/column of the cell holding each point.

        Returns:
            Tuple of (rows, cols, inside) where ``inside`` flags points on the grid
        """
        xs = np.asarray(xs, dtype=float)
        ys = np.asarray(ys, dtype=float)
        if xs.size == 0:
            empty = np.empty(0, dtype=int)
            return empty, empty, np.empty(0, dtype=bool)
        rows, cols = rowcol(self._transform, xs, ys)
        rows = np.asarray(rows, dtype=int).reshape(-1)
        cols = np.asarray(cols, dtype=int).reshape(-1)
        height, width = self._shape
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        return rows, cols, inside

    def values_at(
        self,
        xs: Sequence[float],
        ys: Sequence[float],
        names: Optional[Iterable[str]] = None
    ) -> pd.DataFrame:
        """
        Sample band values at point locations.

        Points falling outside the grid get NaN in every column.
        """
        names = self._names(names)
        rows, cols, inside = self.cell_index(xs, ys)
        values = np.full((len(rows), len(names)), np.nan)
        for j, name in enumerate(names):
            values[inside, j] = self._bands[name][rows[inside], cols[inside]]
        return pd.DataFrame(values, columns=names)

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #
    def write(self, path: Union[str, Path], nodata: float = np.nan) -> Path:
        """Write the stack as a multi-band float32 GeoTIFF with band descriptions."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        height, width = self._shape
        profile = {
            'driver': 'GTiff',
            'height': height,
            'width': width,
            'count': self.n_bands,
            'dtype': 'float32',
            'crs': self._crs,
            'transform': self._transform,
            'nodata': nodata,
        }
        with rasterio.open(path, 'w', **profile) as dst:
            for i, (name, grid) in enumerate(self._bands.items(), start=1):
                dst.write(np.where(np.isfinite(grid), grid, nodata).astype('float32'), i)
                dst.set_band_description(i, name)
        logger.debug(f"Wrote {self.n_bands}-band stack to {path}")
        return path


# ---------------------------------------------------------------------- #
# Loading
# ---------------------------------------------------------------------- #
def _read_band(src, index: int) -> np.ndarray:
    data = src.read(index).astype(np.float64)
    if src.nodata is not None and not np.isnan(src.nodata):
        data[data == src.nodata] = np.nan
    return data


def _harmonize_band(
    src,
    reference_shape: Tuple[int, int],
    reference_transform: Affine,
    reference_crs: CRS,
    resampling: str
) -> np.ndarray:
    """Reproject band 1 of ``src`` onto the reference grid."""
    harmonized = np.full(reference_shape, np.nan, dtype=np.float64)
    reproject(
        source=_read_band(src, 1),
        destination=harmonized,
        src_transform=src.transform,
        src_crs=src.crs,
        src_nodata=np.nan,
        dst_transform=reference_transform,
        dst_crs=reference_crs,
        dst_nodata=np.nan,
        resampling=getattr(Resampling, resampling.lower())
    )
    return harmonized


def load_covariate_stack(
    source: Union[str, Path, Sequence[Union[str, Path]]],
    band_names: Optional[Sequence[str]] = None,
    crs: Optional[Union[str, CRS]] = None,
    harmonize: bool = False,
    resampling: str = 'bilinear'
) -> CovariateStack:
    """
    Read covariates into a ``CovariateStack``.

    ``source`` is either a multi-band raster file, a directory of single-band
    rasters, or a list of single-band raster files. Band names come from
    ``band_names`` if given, otherwise from the band descriptions of a
    multi-band file or the file stems of single-band files.

    Args:
        source: Raster file, directory or list of files
        band_names: Optional explicit band names
        crs: CRS to assign to the stack (overrides the file's CRS)
        harmonize: Reproject single-band files that do not match the first one
        resampling: Resampling method name used when harmonizing

    Returns:
        CovariateStack

    Raises:
        DataError: Missing files, wrong number of names, mismatched grids
    """
    if isinstance(source, (str, Path)) and Path(source).is_dir():
        files = find_raster_files(source)
        if not files:
            raise DataError(f"No raster files found in {source}")
    elif isinstance(source, (str, Path)):
        files = [Path(source)]
    else:
        files = [Path(f) for f in source]

    missing = [str(f) for f in files if not f.exists()]
    if missing:
        raise DataError(f"Covariate raster(s) not found: {missing}")

    if len(files) == 1:
        stack = _load_multiband(files[0], band_names)
    else:
        stack = _load_singlebands(files, band_names, harmonize, resampling)

    if crs is not None:
        stack = stack.with_crs(crs)

    logger.info(f"Loaded covariate stack with {stack.n_bands} bands {stack.band_names}, "
                f"grid {stack.shape[0]}x{stack.shape[1]}, CRS {stack.crs}")
    return stack


def _load_multiband(path: Path, band_names: Optional[Sequence[str]]) -> CovariateStack:
    with rasterio.open(path) as src:
        if band_names is not None and len(band_names) != src.count:
            raise DataError(f"{path} has {src.count} bands but {len(band_names)} names were given")
        if band_names is None:
            if src.count == 1:
                band_names = [path.stem]
            else:
                band_names = [desc or f"band_{i}" for i, desc in enumerate(src.descriptions, start=1)]
        bands = [(name, _read_band(src, i)) for i, name in enumerate(band_names, start=1)]
        return CovariateStack(bands, src.transform, src.crs)


def _load_singlebands(
    files: List[Path],
    band_names: Optional[Sequence[str]],
    harmonize: bool,
    resampling: str
) -> CovariateStack:
    if band_names is not None and len(band_names) != len(files):
        raise DataError(f"{len(files)} raster files but {len(band_names)} band names were given")
    names = list(band_names) if band_names is not None else [f.stem for f in files]

    with rasterio.open(files[0]) as ref:
        ref_shape = (ref.height, ref.width)
        ref_transform = ref.transform
        ref_crs = ref.crs
        bands = [(names[0], _read_band(ref, 1))]

    for name, path in zip(names[1:], files[1:]):
        with rasterio.open(path) as src:
            aligned = (
                (src.height, src.width) == ref_shape
                and _same_transform(src.transform, ref_transform)
                and src.crs == ref_crs
            )
            if aligned:
                bands.append((name, _read_band(src, 1)))
            elif harmonize:
                logger.info(f"Harmonizing {path.name} onto the reference grid of {files[0].name}")
                bands.append((name, _harmonize_band(src, ref_shape, ref_transform, ref_crs, resampling)))
            else:
                raise DataError(
                    f"Raster {path} is not co-registered with {files[0]} "
                    f"(shape {(src.height, src.width)} vs {ref_shape})"
                )

    return CovariateStack(bands, ref_transform, ref_crs)
