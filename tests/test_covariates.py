import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from tick_disease_analysis.core.covariates import CovariateStack, load_covariate_stack
from tick_disease_analysis.core.exceptions import DataError

from conftest import CRS, GRID_SHAPE, TRANSFORM


def test_stack_geometry(stack):
    assert stack.band_names == ['bio1', 'bio12', 'noise']
    assert stack.n_bands == 3
    assert stack.shape == GRID_SHAPE
    assert stack.res == (1.0, 1.0)
    assert stack.bounds == pytest.approx((0.0, 0.0, 12.0, 10.0))


def test_duplicate_band_names_rejected():
    grid = np.zeros(GRID_SHAPE)
    with pytest.raises(DataError):
        CovariateStack([('a', grid), ('a', grid)], TRANSFORM, CRS)


def test_mismatched_band_shapes_rejected():
    with pytest.raises(DataError):
        CovariateStack({'a': np.zeros((3, 3)), 'b': np.zeros((3, 4))}, TRANSFORM, CRS)


def test_grids_are_read_only(stack):
    with pytest.raises(ValueError):
        stack['bio1'][0, 0] = 99.0


def test_unknown_band_raises(stack):
    with pytest.raises(DataError):
        stack['bio99']
    with pytest.raises(DataError):
        stack.select(['bio1', 'bio99'])


def test_with_band_returns_new_stack(stack):
    extra = np.full(GRID_SHAPE, 0.5)
    extended = stack.with_band('tick_suitability', extra)
    assert extended.n_bands == stack.n_bands + 1
    assert extended.band_names[-1] == 'tick_suitability'
    assert 'tick_suitability' not in stack
    assert extended.same_grid(stack)


def test_with_band_rejects_taken_name_and_wrong_shape(stack):
    with pytest.raises(DataError):
        stack.with_band('bio1', np.zeros(GRID_SHAPE))
    with pytest.raises(DataError):
        stack.with_band('other', np.zeros((2, 2)))


def test_select_keeps_requested_order(stack):
    subset = stack.select(['noise', 'bio1'])
    assert subset.band_names == ['noise', 'bio1']
    np.testing.assert_array_equal(subset['bio1'], stack['bio1'])


def test_valid_mask_excludes_missing_cells(stack):
    mask = stack.valid_mask()
    assert mask.sum() == GRID_SHAPE[0] * GRID_SHAPE[1] - 2
    assert not mask[0, 0]
    assert stack.valid_mask(['bio1']).all()


def test_values_at_samples_cells_and_gives_nan_outside(stack):
    values = stack.values_at([0.5, 5.5, 50.0], [9.5, 4.5, 50.0], names=['bio1'])
    assert values['bio1'].iloc[0] == 1.0
    assert values['bio1'].iloc[1] == stack['bio1'][5, 5]
    assert np.isnan(values['bio1'].iloc[2])


def test_cell_xy_returns_cell_centres(stack):
    xs, ys = stack.cell_xy([0, 9], [0, 11])
    np.testing.assert_allclose(xs, [0.5, 11.5])
    np.testing.assert_allclose(ys, [9.5, 0.5])


def test_to_frame_and_matrix(stack):
    frame = stack.to_frame(dropna=True)
    assert list(frame.columns) == ['x', 'y', 'bio1', 'bio12', 'noise']
    assert len(frame) == stack.valid_mask().sum()
    assert stack.to_matrix().shape == (GRID_SHAPE[0] * GRID_SHAPE[1], 3)


def test_load_multiband_uses_band_descriptions(covariate_tif, stack):
    loaded = load_covariate_stack(covariate_tif)
    assert loaded.band_names == stack.band_names
    assert loaded.same_grid(stack)
    np.testing.assert_allclose(loaded['bio1'], stack['bio1'])
    assert np.isnan(loaded['bio12'][0, 0])


def test_load_assigns_names_and_crs(covariate_tif):
    loaded = load_covariate_stack(covariate_tif, band_names=['a', 'b', 'c'], crs='EPSG:3035')
    assert loaded.band_names == ['a', 'b', 'c']
    assert loaded.crs.to_epsg() == 3035


def test_load_rejects_wrong_number_of_names(covariate_tif):
    with pytest.raises(DataError):
        load_covariate_stack(covariate_tif, band_names=['a'])


def test_load_directory_of_single_band_files(singleband_dir, stack):
    loaded = load_covariate_stack(singleband_dir)
    assert sorted(loaded.band_names) == sorted(stack.band_names)
    np.testing.assert_allclose(loaded['noise'], stack['noise'], rtol=1e-6)


def test_missing_file_raises(tmp_path):
    with pytest.raises(DataError):
        load_covariate_stack(tmp_path / 'nope.tif')


def _write_offset_raster(path):
    profile = {
        'driver': 'GTiff', 'height': 5, 'width': 6, 'count': 1, 'dtype': 'float32',
        'crs': CRS, 'transform': from_origin(0.0, 10.0, 2.0, 2.0),
    }
    with rasterio.open(path, 'w', **profile) as dst:
        dst.write(np.ones((5, 6), dtype='float32'), 1)


def test_misaligned_single_band_files(singleband_dir):
    _write_offset_raster(singleband_dir / 'zcoarse.tif')
    with pytest.raises(DataError):
        load_covariate_stack(singleband_dir)

    harmonized = load_covariate_stack(singleband_dir, harmonize=True, resampling='nearest')
    assert harmonized.shape == GRID_SHAPE
    assert np.nanmax(harmonized['zcoarse']) == 1.0
