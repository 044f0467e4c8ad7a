import numpy as np
import pytest
import rasterio

from tick_disease_analysis.core.exceptions import DataError
from tick_disease_analysis.core.spatial_prediction import (
    RowChunking, predict_raster, quantile_label
)


def test_row_chunking_covers_every_row():
    batches = list(RowChunking(4).batches(10))
    assert [(b.start, b.stop) for b in batches] == [(0, 4), (4, 8), (8, 10)]
    assert RowChunking().n_batches(10) == 1
    with pytest.raises(DataError):
        list(RowChunking(0).batches(10))


def test_quantile_label():
    assert quantile_label(0.025) == 'q0.025'
    assert quantile_label(0.5) == 'q0.5'


def test_prediction_geometry_and_range(fitted_model, stack):
    prediction = predict_raster(fitted_model, stack, quantiles=[0.025, 0.5, 0.975])

    assert prediction.shape == stack.shape
    assert prediction.transform == stack.transform
    assert prediction.crs == stack.crs
    for grid in prediction.grids().values():
        finite = grid[np.isfinite(grid)]
        assert ((finite >= 0.0) & (finite <= 1.0)).all()
    assert np.all(prediction.lower[np.isfinite(prediction.lower)]
                  <= prediction.upper[np.isfinite(prediction.upper)])


def test_missing_cells_propagate(fitted_model, stack):
    prediction = predict_raster(fitted_model, stack)
    missing = ~stack.valid_mask(fitted_model.predictors)
    for grid in prediction.grids().values():
        assert np.isnan(grid[missing]).all()
        assert np.isfinite(grid[~missing]).all()


def test_batched_equals_unbatched(fitted_model, stack):
    whole = predict_raster(fitted_model, stack)
    batched = predict_raster(fitted_model, stack, chunking=RowChunking(3))
    for label, grid in whole.grids().items():
        np.testing.assert_array_equal(grid, batched.grids()[label])


def test_suitability_follows_informative_covariate(fitted_model, stack):
    prediction = predict_raster(fitted_model, stack)
    west = np.nanmean(prediction.mean[:, :3])
    east = np.nanmean(prediction.mean[:, -3:])
    assert east > west


def test_missing_predictor_raises(fitted_model, stack):
    with pytest.raises(DataError):
        predict_raster(fitted_model, stack.select(['bio1']))


def test_bad_quantile_raises(fitted_model, stack):
    with pytest.raises(DataError):
        predict_raster(fitted_model, stack, quantiles=[1.5])


def test_prediction_raster_is_read_only(fitted_model, stack):
    prediction = predict_raster(fitted_model, stack)
    with pytest.raises(ValueError):
        prediction.mean[0, 0] = 0.0
    with pytest.raises(DataError):
        prediction.quantile(0.3)
    np.testing.assert_array_equal(prediction.quantile(0.025), prediction.lower)


def test_prediction_as_stack_and_write(fitted_model, stack, tmp_path):
    prediction = predict_raster(fitted_model, stack)
    assert prediction.as_stack().band_names == ['mean', 'q0.025', 'q0.975']

    paths = prediction.write(tmp_path, prefix='tick')
    assert [p.name for p in paths] == ['tick_mean.tif', 'tick_q0.025.tif', 'tick_q0.975.tif']
    with rasterio.open(paths[0]) as src:
        assert (src.height, src.width) == stack.shape
        np.testing.assert_allclose(src.read(1), prediction.mean.astype('float32'), equal_nan=True)


def test_prediction_without_quantiles(fitted_model, stack):
    prediction = predict_raster(fitted_model, stack, quantiles=[])
    assert list(prediction.grids()) == ['mean']
    with pytest.raises(DataError):
        prediction.lower
