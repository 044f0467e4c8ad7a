import numpy as np
import pytest

from tick_disease_analysis.core.exceptions import DataError
from tick_disease_analysis.core.interpretation import (
    high_uncertainty_mask, moving_average, partial_dependence, partial_dependence_2d, pd_levels,
    spartial, summarize_risk, threshold_map, threshold_maps, uncertainty_map, variable_importance
)
from tick_disease_analysis.core.spatial_prediction import predict_raster


@pytest.fixture
def prediction(fitted_model, stack):
    return predict_raster(fitted_model, stack)


def test_variable_importance_ranking(fitted_model):
    ranking = variable_importance(fitted_model)
    assert list(ranking['variable']) == ['bio1', 'bio12']
    assert list(ranking['rank']) == [1, 2]
    assert ranking['importance'].is_monotonic_decreasing
    assert len(variable_importance(fitted_model, top_n=1)) == 1


def test_pd_levels():
    values = np.arange(101, dtype=float)
    np.testing.assert_allclose(pd_levels(values, 5), [0, 25, 50, 75, 100])
    np.testing.assert_allclose(pd_levels([0.0, 1.0, 10.0], 3, equal=True), [0.0, 5.0, 10.0])
    assert len(pd_levels([1.0, 1.0, 2.0], 10)) <= 10
    with pytest.raises(DataError):
        pd_levels(values, 1)
    with pytest.raises(DataError):
        pd_levels([np.nan], 5)


def test_moving_average():
    np.testing.assert_allclose(moving_average([0.0, 3.0, 0.0, 3.0], 3), [1.5, 1.0, 2.0, 1.5])
    np.testing.assert_allclose(moving_average([1.0, 2.0], 1), [1.0, 2.0])
    with pytest.raises(DataError):
        moving_average([1.0], 0)


def test_partial_dependence_curve(fitted_model):
    curve = partial_dependence(fitted_model, 'bio1', levels=8, smooth_window=3, lowess_frac=0.8)

    n_levels = len(curve.values)
    assert curve.draws.shape[1] == n_levels
    assert curve.mean.shape == curve.median.shape == curve.lower.shape == (n_levels,)
    assert np.all(curve.lower <= curve.upper)
    assert curve.mean[-1] > curve.mean[0]
    assert curve.smoothed is not None and curve.lowess is not None
    np.testing.assert_allclose(curve.effect, curve.smoothed)

    frame = curve.to_frame()
    assert list(frame.columns) == ['bio1', 'mean', 'median', 'lower', 'upper', 'smoothed', 'lowess']


def test_partial_dependence_equal_spacing(fitted_model):
    curve = partial_dependence(fitted_model, 'bio12', levels=4, equal=True)
    assert np.allclose(np.diff(curve.values), np.diff(curve.values)[0])
    assert curve.smoothed is None
    np.testing.assert_array_equal(curve.effect, curve.mean)


def test_partial_dependence_unknown_variable(fitted_model):
    with pytest.raises(DataError):
        partial_dependence(fitted_model, 'noise')


def test_partial_dependence_2d(fitted_model):
    pd2d = partial_dependence_2d(fitted_model, 'bio1', 'bio12', levels=4)
    assert pd2d.mean.shape == (len(pd2d.values_x), len(pd2d.values_y))
    assert np.all(pd2d.lower <= pd2d.upper)
    # effect of bio1 holds at every bio12 level
    assert np.all(pd2d.mean[-1, :] > pd2d.mean[0, :])
    assert len(pd2d.to_frame()) == pd2d.mean.size
    with pytest.raises(DataError):
        partial_dependence_2d(fitted_model, 'bio1', 'bio1')


def test_partial_dependence_batches_bound_rows(fitted_model, monkeypatch):
    whole_1d = partial_dependence(fitted_model, 'bio1', levels=8, max_rows=None)
    whole_2d = partial_dependence_2d(fitted_model, 'bio1', 'bio12', levels=4, max_rows=None)

    ensemble = fitted_model.ensemble
    predict_draws = ensemble.predict_draws
    batch_sizes = []

    def recording_predict_draws(X):
        batch_sizes.append(len(X))
        return predict_draws(X)

    monkeypatch.setattr(ensemble, 'predict_draws', recording_predict_draws)
    n_rows = len(fitted_model.training)
    batched_1d = partial_dependence(fitted_model, 'bio1', levels=8, max_rows=2 * n_rows)
    batched_2d = partial_dependence_2d(fitted_model, 'bio1', 'bio12', levels=4, max_rows=3 * n_rows + 1)

    assert len(batch_sizes) > 2
    assert max(batch_sizes) <= 3 * n_rows
    np.testing.assert_allclose(batched_1d.draws, whole_1d.draws)
    np.testing.assert_allclose(batched_2d.mean, whole_2d.mean)
    np.testing.assert_allclose(batched_2d.upper, whole_2d.upper)

    # a budget below one assignment still predicts one assignment per call
    batch_sizes.clear()
    tiny = partial_dependence(fitted_model, 'bio1', levels=8, max_rows=1)
    assert set(batch_sizes) == {n_rows}
    np.testing.assert_allclose(tiny.mean, whole_1d.mean)


def test_spartial_maps_nearest_level(fitted_model, stack):
    curve = partial_dependence(fitted_model, 'bio12', levels=5)
    grid = spartial(fitted_model, stack, 'bio12', curve=curve)

    assert grid.shape == stack.shape
    missing = ~np.isfinite(stack['bio12'])
    assert np.isnan(grid[missing]).all()
    assert set(np.unique(grid[~missing])) <= set(curve.effect)

    nearest = np.argmin(np.abs(curve.values - stack['bio12'][5, 5]))
    assert grid[5, 5] == curve.effect[nearest]


def test_spartial_rejects_curve_of_other_variable(fitted_model, stack):
    curve = partial_dependence(fitted_model, 'bio1', levels=5)
    with pytest.raises(DataError):
        spartial(fitted_model, stack, 'bio12', curve=curve)


def test_threshold_maps_match_prediction(fitted_model, prediction):
    maps = threshold_maps(prediction, fitted_model.threshold)
    assert list(maps) == ['mean', 'q0.025', 'q0.975']
    for label, grid in prediction.grids().items():
        with np.errstate(invalid='ignore'):
            expected = grid > fitted_model.threshold
        np.testing.assert_array_equal(maps[label], expected)
        assert maps[label].dtype == bool
        assert not maps[label][np.isnan(grid)].any()


def test_threshold_map_is_strict():
    np.testing.assert_array_equal(threshold_map(np.array([0.4, 0.5, 0.6]), 0.5), [False, False, True])


def test_uncertainty_map(prediction):
    width = uncertainty_map(prediction)
    np.testing.assert_array_equal(width, prediction.upper - prediction.lower)
    assert np.nanmin(width) >= 0.0
    np.testing.assert_array_equal(uncertainty_map(prediction, 0.025, 0.975), width)


def test_high_uncertainty_mask():
    width = np.array([[0.1, 0.2], [0.3, np.nan]])
    mask, cutoff = high_uncertainty_mask(width, quantile=0.5)
    assert cutoff == pytest.approx(0.2)
    np.testing.assert_array_equal(mask, [[False, False], [True, False]])
    with pytest.raises(DataError):
        high_uncertainty_mask(width, quantile=2.0)


def test_summarize_risk(prediction, fitted_model):
    summary = summarize_risk(prediction, fitted_model.threshold)
    assert list(summary['grid']) == ['mean', 'q0.025', 'q0.975']
    mean_row = summary.iloc[0]
    assert mean_row['n_valid'] == int(np.isfinite(prediction.mean).sum())
    assert 0.0 <= mean_row['fraction_above_threshold'] <= 1.0
