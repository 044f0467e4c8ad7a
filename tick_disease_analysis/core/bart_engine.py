"""
BART classifier fitting and posterior prediction.

Thin layer over pymc-bart. A presence/absence model is a BART sum-of-trees
``mu`` pushed through the inverse logit into a Bernoulli likelihood. After
sampling, the posterior trees stay attached to the model, so predictions for
new covariate rows are obtained by swapping the ``X`` data container and
drawing the probability node again from the posterior.

Everything downstream (model selection, spatial prediction, partial
dependence) talks to the fitted ensemble through three members:

- ``predictor_names``: ordered predictor columns
- ``predict_draws(X)``: posterior draws x rows matrix of probabilities
- ``variable_inclusion()``: Series of inclusion proportions per predictor

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
import pymc as pm
import pymc_bart as pmb
from typing import List, Optional, Sequence, Union

from shared_utils import get_logger
from .exceptions import CardinalityError, DataError, FitError

logger = get_logger('bart_engine')

ArrayLike = Union[np.ndarray, pd.DataFrame]


class BartEnsemble:
    """
    Posterior sample of a fitted BART presence/absence classifier.

    Instances are created by ``fit_bart``; they are read-only afterwards.
    """

    def __init__(
        self,
        model: pm.Model,
        idata,
        predictor_names: Sequence[str],
        n_trees: int,
        seed: int,
        X_train: Optional[np.ndarray] = None
    ):
        self._model = model
        self._idata = idata
        self.predictor_names: List[str] = list(predictor_names)
        self.n_trees = n_trees
        self.seed = seed
        self._X_train = X_train

    @property
    def idata(self):
        """ArviZ InferenceData returned by the sampler."""
        return self._idata

    @property
    def n_draws(self) -> int:
        posterior = self._idata.posterior
        return int(posterior.sizes['chain'] * posterior.sizes['draw'])

    def _as_matrix(self, X: ArrayLike) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            missing = [name for name in self.predictor_names if name not in X.columns]
            if missing:
                raise DataError(f"Prediction data lacks predictors {missing}")
            X = X[self.predictor_names]
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(self.predictor_names):
            raise DataError(
                f"Expected a matrix with {len(self.predictor_names)} columns, got shape {X.shape}"
            )
        return X

    def fitted_probabilities(self) -> np.ndarray:
        """Posterior mean probability for each training row."""
        p = self._idata.posterior['p']
        return p.mean(dim=('chain', 'draw')).values

    def predict_draws(self, X: ArrayLike) -> np.ndarray:
        """
        Posterior draws of presence probability for new rows.

        The random generator is re-seeded with the ensemble's seed on every
        call, so the same posterior tree draws are applied to every call;
        predicting rows in batches gives the same numbers as predicting them
        all at once.

        Args:
            X: Rows x predictors (DataFrame columns are matched by name)

        Returns:
            Array of shape (n_draws, n_rows) with values in [0, 1]
        """
        X = self._as_matrix(X)
        if X.shape[0] == 0:
            return np.empty((self.n_draws, 0))

        with self._model:
            pm.set_data({'X': X})
            ppc = pm.sample_posterior_predictive(
                self._idata,
                var_names=['p'],
                random_seed=self.seed,
                progressbar=False
            )

        draws = np.asarray(ppc.posterior_predictive['p'].values, dtype=float)
        return np.clip(draws.reshape(-1, X.shape[0]), 0.0, 1.0)

    def predict_proba(self, X: ArrayLike) -> np.ndarray:
        """Posterior mean probability for new rows."""
        return self.predict_draws(X).mean(axis=0)

    def variable_inclusion(self) -> pd.Series:
        """
        Proportion of splitting rules using each predictor.

        Returns:
            Series indexed by predictor name, summing to one
        """
        X = self._X_train if self._X_train is not None else np.empty((0, len(self.predictor_names)))
        values, labels = pmb.get_variable_inclusion(self._idata, X, labels=self.predictor_names)
        inclusion = pd.Series(np.asarray(values, dtype=float), index=[str(label) for label in labels])
        inclusion = inclusion.reindex(self.predictor_names).fillna(0.0)
        total = inclusion.sum()
        if total > 0:
            inclusion = inclusion / total
        return inclusion


def check_training_data(X: pd.DataFrame, y: Sequence[int]) -> None:
    """
    Validate a predictor frame and label vector before sampling.

    Raises:
        DataError: No predictors, missing values, mismatched lengths or
            labels other than 0 and 1
        CardinalityError: Fewer than two classes
        FitError: A predictor with zero variance
    """
    if X.shape[1] == 0:
        raise DataError("Cannot fit a model without predictors")
    y = np.asarray(y)
    if len(y) != len(X):
        raise DataError(f"{len(X)} predictor rows but {len(y)} labels")
    if X.isna().any().any():
        raise DataError("Predictor frame contains missing values")
    classes = np.unique(y)
    unexpected = [label for label in classes.tolist() if label not in (0, 1)]
    if unexpected:
        raise DataError(f"Labels must be 0 (pseudo-absence) or 1 (presence), got {unexpected}")
    if len(classes) < 2:
        raise CardinalityError(f"Need presences and absences to fit, got classes {classes.tolist()}")
    constant = [col for col in X.columns if X[col].nunique() < 2]
    if constant:
        raise FitError(f"Predictors with zero variance: {constant}")


def fit_bart(
    X: pd.DataFrame,
    y: Sequence[int],
    n_trees: int = 200,
    draws: int = 1000,
    tune: int = 1000,
    chains: int = 1,
    seed: int = 0,
    alpha: float = 0.95,
    beta: float = 2.0
) -> BartEnsemble:
    """
    Fit a BART presence/absence classifier.

    Args:
        X: Predictor frame (columns are the predictor names)
        y: Binary labels (1 presence, 0 pseudo-absence)
        n_trees: Number of trees in the sum
        draws: Posterior draws kept per chain
        tune: Tuning iterations per chain
        chains: Number of chains, run sequentially in this process
        seed: Sampler seed
        alpha: Tree depth prior base
        beta: Tree depth prior power

    Returns:
        BartEnsemble

    Raises:
        DataError, CardinalityError: Invalid inputs
        FitError: The sampler failed
    """
    check_training_data(X, y)
    names = [str(col) for col in X.columns]
    X_values = X.to_numpy(dtype=float)
    y_values = np.asarray(y, dtype=int)

    logger.debug(f"Fitting BART with {n_trees} trees on {X_values.shape[0]} rows, "
                 f"{len(names)} predictors (draws={draws}, tune={tune}, chains={chains}, seed={seed})")

    try:
        with pm.Model() as model:
            X_data = pm.Data('X', X_values)
            mu = pmb.BART('mu', X_data, y_values, m=n_trees, alpha=alpha, beta=beta)
            p = pm.Deterministic('p', pm.math.invlogit(mu))
            pm.Bernoulli('y', p=p, observed=y_values, shape=mu.shape)
            idata = pm.sample(
                draws=draws,
                tune=tune,
                chains=chains,
                cores=1,
                random_seed=seed,
                progressbar=False,
                compute_convergence_checks=False
            )
    except Exception as e:
        raise FitError(f"BART sampling failed: {e}") from e

    return BartEnsemble(model, idata, names, n_trees, seed, X_train=X_values)
