"""
Model fitting with stepwise predictor reduction.

The selector follows the usual BART-SDM recipe:

1. Importance diagnostic: fit the full predictor set with increasing numbers
   of trees and record each predictor's inclusion proportion. Uninformative
   predictors lose inclusion as trees are added.
2. Stepwise reduction: with a small ensemble, repeatedly fit replicates,
   average their importance and in-sample RMSE, and drop the least important
   predictor. The predictor set with the lowest RMSE is kept.
3. Final fit on the retained predictors.
4. Final variable importance.
5. Fit summary: AUC, the probability threshold maximizing the true skill
   statistic and the sensitivity/specificity it gives.

Seeds for every fit are derived from a single base seed, so a selector run is
reproducible end to end.

Author: Diego Bengochea
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, asdict
from sklearn.metrics import roc_auc_score
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from shared_utils import get_logger
from .bart_engine import fit_bart, check_training_data
from .dataset import LABEL_COL
from .exceptions import CardinalityError, DataError

logger = get_logger('model_selection')

DEFAULT_DIAGNOSTIC_TREES = (10, 20, 50, 100, 150, 200)


@dataclass(frozen=True)
class SamplerSettings:
    """MCMC settings passed to every BART fit."""
    draws: int = 1000
    tune: int = 1000
    chains: int = 1
    alpha: float = 0.95
    beta: float = 2.0

    def as_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StepwisePolicy:
    """
    Stepwise reduction settings.

    Attributes:
        n_trees: Trees per replicate model
        iterations: Replicate fits averaged at each step
        drop_per_step: Predictors removed per step
        min_predictors: Reduction stops when this many predictors remain
        importance_threshold: Stop early once every remaining predictor has
            at least this inclusion proportion
        draws: Posterior draws per replicate (overrides the sampler setting)
        tune: Tuning iterations per replicate (overrides the sampler setting)
    """
    n_trees: int = 10
    iterations: int = 10
    drop_per_step: int = 1
    min_predictors: int = 2
    importance_threshold: Optional[float] = None
    draws: Optional[int] = None
    tune: Optional[int] = None

    def validate(self) -> None:
        if self.min_predictors < 1:
            raise DataError("Stepwise reduction must keep at least one predictor")
        if self.drop_per_step < 1:
            raise DataError("Stepwise reduction must drop at least one predictor per step")
        if self.iterations < 1:
            raise DataError("Stepwise reduction needs at least one replicate per step")


@dataclass(frozen=True)
class ModelSummary:
    """In-sample classification diagnostics of a fitted model."""
    auc: float
    threshold: float
    tss: float
    sensitivity: float
    specificity: float
    type_i_error: float
    type_ii_error: float
    n_presence: int
    n_absence: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class StepwiseResult:
    """Outcome of the stepwise reduction."""
    selected: List[str]
    dropped: List[str]
    history: pd.DataFrame


@dataclass(frozen=True)
class FittedModel:
    """
    A fitted BART classifier with its predictors, threshold and diagnostics.

    ``training`` holds the predictor columns and labels the final model was
    fitted on; partial dependence averages over these rows.
    """
    ensemble: Any
    predictors: List[str]
    threshold: float
    summary: ModelSummary
    importance: pd.DataFrame
    training: pd.DataFrame
    importance_diagnostic: Optional[pd.DataFrame] = None
    stepwise: Optional[StepwiseResult] = None
    seed: int = 0

    def predict_draws(self, X: pd.DataFrame) -> np.ndarray:
        """Posterior draws x rows probabilities for a frame holding the predictors."""
        return self.ensemble.predict_draws(X[self.predictors])


# ---------------------------------------------------------------------- #
# Diagnostics
# ---------------------------------------------------------------------- #
def rmse(y: Sequence[int], probabilities: Sequence[float]) -> float:
    y = np.asarray(y, dtype=float)
    probabilities = np.asarray(probabilities, dtype=float)
    return float(np.sqrt(np.mean((y - probabilities) ** 2)))


def tss_threshold(y: Sequence[int], probabilities: Sequence[float]) -> Tuple[float, float, float, float]:
    """
    Threshold maximizing the true skill statistic.

    A row is classified as presence when its probability is strictly greater
    than the threshold. Candidate thresholds are 0 and every distinct
    predicted probability; ties go to the lowest threshold.

    Returns:
        Tuple of (threshold, tss, sensitivity, specificity)
    """
    y = np.asarray(y, dtype=int)
    probabilities = np.asarray(probabilities, dtype=float)
    positives = probabilities[y == 1]
    negatives = probabilities[y == 0]
    if positives.size == 0 or negatives.size == 0:
        raise CardinalityError("TSS needs both presences and absences")

    candidates = np.unique(np.concatenate(([0.0], probabilities)))
    sensitivity = (positives[None, :] > candidates[:, None]).mean(axis=1)
    specificity = (negatives[None, :] <= candidates[:, None]).mean(axis=1)
    tss = sensitivity + specificity - 1.0

    best = int(np.argmax(tss))
    return float(candidates[best]), float(tss[best]), float(sensitivity[best]), float(specificity[best])


def summarize_fit(y: Sequence[int], probabilities: Sequence[float]) -> ModelSummary:
    """AUC, TSS-optimal threshold and error rates of in-sample predictions."""
    y = np.asarray(y, dtype=int)
    threshold, tss, sensitivity, specificity = tss_threshold(y, probabilities)
    auc = float(roc_auc_score(y, probabilities))
    return ModelSummary(
        auc=auc,
        threshold=threshold,
        tss=tss,
        sensitivity=sensitivity,
        specificity=specificity,
        type_i_error=1.0 - specificity,
        type_ii_error=1.0 - sensitivity,
        n_presence=int((y == 1).sum()),
        n_absence=int((y == 0).sum())
    )


def importance_table(inclusion: pd.Series) -> pd.DataFrame:
    """Variable importance as a frame sorted from most to least important."""
    table = pd.DataFrame({'variable': inclusion.index, 'importance': inclusion.values})
    return table.sort_values('importance', ascending=False, kind='stable').reset_index(drop=True)


# ---------------------------------------------------------------------- #
# Selector
# ---------------------------------------------------------------------- #
class ModelSelector:
    """
    Fits BART presence/absence models with optional stepwise reduction.

    Args:
        fit_fn: Callable ``fit_fn(X, y, n_trees=..., seed=..., **sampler)``
            returning an ensemble (``fit_bart`` by default)
        sampler: MCMC settings for the diagnostic and final fits
        policy: Stepwise reduction settings
        final_trees: Trees in the final model
        diagnostic_trees: Tree counts tried by the importance diagnostic
        seed: Base seed
    """

    def __init__(
        self,
        fit_fn: Callable[..., Any] = fit_bart,
        sampler: SamplerSettings = SamplerSettings(),
        policy: StepwisePolicy = StepwisePolicy(),
        final_trees: int = 200,
        diagnostic_trees: Sequence[int] = DEFAULT_DIAGNOSTIC_TREES,
        seed: int = 0
    ):
        policy.validate()
        self.fit_fn = fit_fn
        self.sampler = sampler
        self.policy = policy
        self.final_trees = final_trees
        self.diagnostic_trees = list(diagnostic_trees)
        self.seed = seed

    def _fit(self, X: pd.DataFrame, y: np.ndarray, n_trees: int, seed: int, **overrides):
        kwargs = self.sampler.as_kwargs()
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return self.fit_fn(X, y, n_trees=n_trees, seed=seed, **kwargs)

    def importance_diagnostic(self, X: pd.DataFrame, y: np.ndarray) -> pd.DataFrame:
        """
        Inclusion proportion of every predictor for each diagnostic tree count.

        Returns:
            DataFrame indexed by predictor with one column per tree count
        """
        columns = {}
        for i, n_trees in enumerate(self.diagnostic_trees):
            ensemble = self._fit(X, y, n_trees, seed=self.seed + 1000 * (i + 1))
            columns[n_trees] = ensemble.variable_inclusion().reindex(X.columns)
            logger.debug(f"Importance diagnostic with {n_trees} trees done")
        diagnostic = pd.DataFrame(columns)
        diagnostic.index.name = 'variable'
        diagnostic.columns.name = 'n_trees'
        return diagnostic

    def stepwise_reduction(self, X: pd.DataFrame, y: np.ndarray) -> StepwiseResult:
        """
        Drop the least important predictors step by step and keep the set with
        the lowest in-sample RMSE.
        """
        policy = self.policy
        current = list(X.columns)
        if not current:
            raise DataError("Stepwise reduction needs at least one predictor")

        history = []
        dropped_order: List[str] = []
        step = 0
        while True:
            inclusions = []
            errors = []
            for i in range(policy.iterations):
                seed = self.seed + 100000 + 1000 * step + i
                ensemble = self._fit(X[current], y, policy.n_trees, seed, draws=policy.draws, tune=policy.tune)
                inclusions.append(ensemble.variable_inclusion().reindex(current))
                errors.append(rmse(y, ensemble.fitted_probabilities()))

            mean_importance = pd.concat(inclusions, axis=1).mean(axis=1)
            step_rmse = float(np.mean(errors))
            history.append({
                'step': step,
                'n_predictors': len(current),
                'predictors': list(current),
                'rmse': step_rmse,
                'least_important': mean_importance.idxmin(),
            })
            logger.info(f"Step {step}: {len(current)} predictors, RMSE={step_rmse:.4f}")

            if len(current) <= policy.min_predictors:
                break
            if (policy.importance_threshold is not None
                    and mean_importance.min() >= policy.importance_threshold):
                logger.info(f"All predictors reach importance {policy.importance_threshold}; stopping")
                break

            n_drop = min(policy.drop_per_step, len(current) - policy.min_predictors)
            to_drop = list(mean_importance.sort_values(kind='stable').index[:n_drop])
            dropped_order.extend(to_drop)
            current = [name for name in current if name not in to_drop]
            logger.info(f"Dropping {to_drop}")
            step += 1

        history_df = pd.DataFrame(history)
        best = int(history_df['rmse'].idxmin())
        selected = history_df.loc[best, 'predictors']
        dropped = [name for name in X.columns if name not in selected]
        logger.info(f"Retained {len(selected)} predictors: {selected}")
        return StepwiseResult(selected=list(selected), dropped=dropped, history=history_df)

    def fit(self, training: pd.DataFrame, predictors: Sequence[str], full: bool = True) -> FittedModel:
        """
        Fit a model on a training set.

        Args:
            training: Frame with predictor columns and the ``presence`` label
            predictors: Candidate predictor names
            full: Run the importance diagnostic and stepwise reduction first

        Returns:
            FittedModel
        """
        predictors = list(predictors)
        if not predictors:
            raise DataError("At least one predictor is required")
        missing = [name for name in predictors + [LABEL_COL] if name not in training.columns]
        if missing:
            raise DataError(f"Training set lacks columns {missing}")

        X = training[predictors]
        y = training[LABEL_COL].to_numpy(dtype=int)
        check_training_data(X, y)

        diagnostic = None
        stepwise = None
        selected = predictors
        if full:
            logger.info("Running variable importance diagnostic")
            diagnostic = self.importance_diagnostic(X, y)
            logger.info("Running stepwise variable reduction")
            stepwise = self.stepwise_reduction(X, y)
            selected = stepwise.selected

        logger.info(f"Fitting final model with {self.final_trees} trees on {selected}")
        ensemble = self._fit(X[selected], y, self.final_trees, seed=self.seed)

        importance = importance_table(ensemble.variable_inclusion().reindex(selected))
        summary = summarize_fit(y, ensemble.fitted_probabilities())
        logger.info(f"AUC={summary.auc:.3f}, threshold={summary.threshold:.3f}, TSS={summary.tss:.3f}, "
                    f"sensitivity={summary.sensitivity:.3f}, specificity={summary.specificity:.3f}")

        return FittedModel(
            ensemble=ensemble,
            predictors=list(selected),
            threshold=summary.threshold,
            summary=summary,
            importance=importance,
            training=training[list(selected) + [LABEL_COL]].reset_index(drop=True),
            importance_diagnostic=diagnostic,
            stepwise=stepwise,
            seed=self.seed
        )
