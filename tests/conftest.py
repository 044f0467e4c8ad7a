"""
Shared fixtures: a small synthetic covariate grid, occurrence records and a
deterministic stand-in for the BART ensemble.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
import rasterio
import yaml
from rasterio.transform import from_origin

from tick_disease_analysis.core.covariates import CovariateStack
from tick_disease_analysis.core.dataset import build_training_set
from tick_disease_analysis.core.model_selection import ModelSelector
from tick_disease_analysis.core.occurrences import occurrences_from_xy

GRID_SHAPE = (10, 12)
TRANSFORM = from_origin(0.0, 10.0, 1.0, 1.0)
CRS = 'EPSG:4326'


def make_bands():
    """bio1 increases west to east, bio12 north to south, two cells missing."""
    rows, cols = np.indices(GRID_SHAPE)
    bio1 = 2.0 * cols + 1.0
    bio12 = 100.0 + 10.0 * rows + 3.0 * np.sin(cols)
    noise = np.random.default_rng(7).normal(size=GRID_SHAPE)
    bio12[0, 0] = np.nan
    bio12[9, 11] = np.nan
    return {'bio1': bio1, 'bio12': bio12, 'noise': noise}


@pytest.fixture
def stack():
    return CovariateStack(make_bands(), TRANSFORM, CRS)


@pytest.fixture
def presence_points():
    """Records in the eastern (high bio1) columns, with duplicates per cell."""
    xs = [8.5, 8.2, 9.5, 10.5, 11.5, 9.4, 10.1, 11.7, 8.6, 10.6]
    ys = [9.5, 9.6, 8.5, 7.5, 6.5, 5.5, 4.5, 3.5, 2.5, 1.5]
    return occurrences_from_xy(xs, ys, crs=CRS)


@pytest.fixture
def covariate_tif(tmp_path, stack):
    return stack.write(tmp_path / 'covariates.tif')


@pytest.fixture
def singleband_dir(tmp_path, stack):
    directory = tmp_path / 'singleband'
    directory.mkdir()
    profile = {
        'driver': 'GTiff', 'height': GRID_SHAPE[0], 'width': GRID_SHAPE[1], 'count': 1,
        'dtype': 'float32', 'crs': CRS, 'transform': TRANSFORM, 'nodata': np.nan,
    }
    for name in stack.band_names:
        with rasterio.open(directory / f"{name}.tif", 'w', **profile) as dst:
            dst.write(stack[name].astype('float32'), 1)
    return directory


@pytest.fixture
def occurrence_csv(tmp_path, presence_points):
    df = pd.DataFrame({
        'longitude': presence_points['x'].values,
        'latitude': presence_points['y'].values,
        'kind': ['tick'] * 8 + ['disease'] * 2,
    })
    path = tmp_path / 'occurrences.csv'
    df.to_csv(path, index=False)
    return path


class FakeEnsemble:
    """
    Deterministic ensemble: logistic of a weighted sum of standardized
    predictors, with a fixed spread of offsets playing the posterior draws.
    """

    def __init__(self, X, y, weights, n_draws=21, spread=0.05, n_trees=10, seed=0):
        self.predictor_names = list(X.columns)
        self.n_trees = n_trees
        self.seed = seed
        self._X = X.copy()
        self._mean = X.mean()
        self._std = X.std(ddof=0).replace(0.0, 1.0)
        self.weights = {name: float(weights.get(name, 0.0)) for name in self.predictor_names}
        self._offsets = np.linspace(-spread, spread, n_draws)

    @property
    def n_draws(self):
        return len(self._offsets)

    def predict_draws(self, X):
        if not isinstance(X, pd.DataFrame):
            X = pd.DataFrame(np.asarray(X, dtype=float), columns=self.predictor_names)
        X = X[self.predictor_names]
        linear = np.zeros(len(X))
        for name, weight in self.weights.items():
            linear += weight * ((X[name] - self._mean[name]) / self._std[name]).to_numpy()
        p = 1.0 / (1.0 + np.exp(-linear))
        return np.clip(p[None, :] + self._offsets[:, None], 0.0, 1.0)

    def predict_proba(self, X):
        return self.predict_draws(X).mean(axis=0)

    def fitted_probabilities(self):
        return self.predict_proba(self._X)

    def variable_inclusion(self):
        raw = pd.Series({name: abs(w) for name, w in self.weights.items()}, dtype=float)
        if raw.sum() == 0:
            raw[:] = 1.0
        return raw / raw.sum()


class FakeFit:
    """Callable with the ``fit_bart`` signature that records every call."""

    def __init__(self, weights=None):
        self.weights = weights or {'bio1': 3.0, 'bio12': 0.5, 'noise': 0.1}
        self.calls = []

    def __call__(self, X, y, n_trees=200, seed=0, **kwargs):
        self.calls.append({'predictors': list(X.columns), 'n_trees': n_trees, 'seed': seed, **kwargs})
        return FakeEnsemble(X, y, self.weights, n_trees=n_trees, seed=seed)


@pytest.fixture
def fake_fit():
    return FakeFit()


@pytest.fixture
def fitted_model(presence_points, stack):
    predictors = ['bio1', 'bio12']
    training = build_training_set(presence_points, stack, predictors, seed=2)
    return ModelSelector(fit_fn=FakeFit()).fit(training, predictors, full=False)


def write_config(path, covariates=None, occurrences=None, full_selection=True):
    """Small pipeline config; both targets read the same occurrence file, split by its 'kind' column."""
    config = {
        'logging': {'level': 'INFO', 'log_file': None},
        'data': {
            'covariates': str(covariates) if covariates else None,
            'crs': None,
            'occurrences': {'lon_col': 'longitude', 'lat_col': 'latitude', 'crs': 'EPSG:4326'},
            'tick': {'occurrences': str(occurrences) if occurrences else None,
                     'label_col': 'kind', 'label_value': 'tick'},
            'disease': {'occurrences': str(occurrences) if occurrences else None,
                        'label_col': 'kind', 'label_value': 'disease',
                        'suitability_band': 'tick_suitability'},
        },
        'sampling': {'seed': 3, 'excess_policy': 'error'},
        'model': {
            'full_selection': full_selection,
            'final_trees': 20,
            'diagnostic_trees': [5, 10],
            'sampler': {'draws': 10, 'tune': 10},
            'stepwise': {'n_trees': 5, 'iterations': 1, 'min_predictors': 2},
        },
        'prediction': {'quantiles': [0.025, 0.975], 'rows_per_batch': 4, 'show_progress': False},
        'interpretation': {'top_variables': 2, 'pd_levels': 4, 'smooth_window': 3,
                           'pd_2d_pairs': None, 'spartial': True, 'uncertainty_quantile': 0.75},
        'output': {'save_figures': True, 'save_training_data': True, 'formats': ['png'], 'dpi': 40},
    }
    path.write_text(yaml.safe_dump(config))
    return path
