"""
End-to-end checks with real BART fits. These sample with pymc-bart and take a
while; run them with ``pytest -m slow``.
"""

import numpy as np
import pandas as pd
import pymc as pm
import pytest
from rasterio.transform import from_origin

from tick_disease_analysis.core.bart_engine import BartEnsemble, fit_bart
from tick_disease_analysis.core.covariates import CovariateStack
from tick_disease_analysis.core.dataset import LABEL_COL, assemble_training_set
from tick_disease_analysis.core.exceptions import FitError
from tick_disease_analysis.core.model_selection import ModelSelector, SamplerSettings
from tick_disease_analysis.core.occurrences import extract_covariates, occurrences_from_xy
from tick_disease_analysis.core.pseudo_absences import sample_pseudo_absences
from tick_disease_analysis.core.spatial_prediction import RowChunking, predict_raster

pytestmark = pytest.mark.slow

TINY = SamplerSettings(draws=100, tune=100)


@pytest.fixture(scope='module')
def separable_training():
    """Presences at bio1 = 20, absences at bio1 = 5, bio12 uninformative."""
    rng = np.random.default_rng(0)
    n = 40
    return pd.DataFrame({
        'bio1': np.r_[np.full(n, 20.0), np.full(n, 5.0)] + rng.normal(0, 0.5, 2 * n),
        'bio12': rng.normal(100.0, 10.0, 2 * n),
        LABEL_COL: np.r_[np.ones(n, dtype=int), np.zeros(n, dtype=int)],
    })


@pytest.fixture(scope='module')
def model(separable_training):
    selector = ModelSelector(fit_fn=fit_bart, sampler=TINY, final_trees=20, seed=1)
    return selector.fit(separable_training, ['bio1', 'bio12'], full=False)


def test_direction_of_effect(model):
    assert isinstance(model.ensemble, BartEnsemble)
    query = pd.DataFrame({'bio1': [20.0, 5.0], 'bio12': [100.0, 100.0]})
    high, low = model.ensemble.predict_proba(query)
    assert high > low
    assert model.summary.auc > 0.9


def test_draws_shape_and_range(model):
    draws = model.ensemble.predict_draws(model.training[model.predictors])
    assert draws.shape == (model.ensemble.n_draws, len(model.training))
    assert draws.min() >= 0.0 and draws.max() <= 1.0
    assert model.ensemble.predict_draws(model.training[model.predictors].iloc[:0]).shape[1] == 0


def test_variable_inclusion_sums_to_one(model):
    inclusion = model.ensemble.variable_inclusion()
    assert list(inclusion.index) == ['bio1', 'bio12']
    assert inclusion.sum() == pytest.approx(1.0)
    assert inclusion['bio1'] > inclusion['bio12']


def test_batched_prediction_matches_whole_grid(model):
    rows, cols = np.indices((6, 5))
    stack = CovariateStack(
        {'bio1': 3.0 * cols + 5.0, 'bio12': 100.0 + rows.astype(float)},
        from_origin(0.0, 6.0, 1.0, 1.0), 'EPSG:4326'
    )
    whole = predict_raster(model, stack)
    batched = predict_raster(model, stack, chunking=RowChunking(2))
    for label, grid in whole.grids().items():
        np.testing.assert_allclose(grid, batched.grids()[label])


def test_sampler_failure_is_wrapped(monkeypatch):
    def diverging_sampler(*args, **kwargs):
        raise ValueError("Initial evaluation of model at starting point failed")

    monkeypatch.setattr(pm, 'sample', diverging_sampler)
    X = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0]})
    with pytest.raises(FitError, match='BART sampling failed'):
        fit_bart(X, [0, 1, 0, 1], n_trees=5, draws=5, tune=5)


def test_end_to_end_learns_direction_of_effect():
    rows, cols = np.indices((10, 10))
    east = cols >= 5
    bio1 = np.where(east, 20.0, 5.0)
    bio12 = 100.0 + np.random.default_rng(3).normal(0.0, 5.0, (10, 10))
    transform = from_origin(0.0, 10.0, 1.0, 1.0)
    stack = CovariateStack({'bio1': bio1, 'bio12': bio12}, transform, 'EPSG:4326')

    presence_cells = np.flatnonzero(east.ravel())[:10]
    xs, ys = stack.cell_xy(*np.unravel_index(presence_cells, stack.shape))
    presences = extract_covariates(occurrences_from_xy(xs, ys), stack, ['bio1', 'bio12'])

    west_only = CovariateStack({'bio1': np.where(east, np.nan, bio1)}, transform, 'EPSG:4326')
    background = sample_pseudo_absences(west_only, 10, seed=5)
    absences = extract_covariates(background, stack, ['bio1', 'bio12'])

    training = assemble_training_set(presences, absences, ['bio1', 'bio12'])
    model = ModelSelector(fit_fn=fit_bart, sampler=TINY, final_trees=20, seed=2).fit(
        training, ['bio1', 'bio12'], full=False
    )
    prediction = predict_raster(model, stack)

    # held-out cells: east cells not used as presences, west cells not drawn as absences
    held_out_east = east.copy().ravel()
    held_out_east[presence_cells] = False
    held_out_west = ~east.ravel()
    held_out_west[np.ravel_multi_index((background['row'].values, background['col'].values), stack.shape)] = False
    mean = prediction.mean.ravel()
    assert mean[held_out_east].mean() > mean[held_out_west].mean()
