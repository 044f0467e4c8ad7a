"""
Core processing modules for tick and disease risk mapping.

Modules:
    covariates: Covariate raster stack loading and cell sampling
    occurrences: Occurrence loading, thinning and covariate extraction
    pseudo_absences: Random background point sampling
    dataset: Training set assembly
    bart_engine: BART fitting and posterior prediction (pymc-bart)
    model_selection: Importance diagnostic, stepwise reduction, final fit and summary
    spatial_prediction: Row-batched posterior prediction over the grid
    interpretation: Partial dependence, spartial, threshold and uncertainty maps
    plotting: Maps and diagnostic figures
    risk_pipeline: End-to-end tick and disease pipeline

Author: Diego Bengochea
"""

from .exceptions import SDMError, DataError, CardinalityError, FitError
from .covariates import CovariateStack, load_covariate_stack
from .occurrences import load_occurrences, occurrences_from_xy, thin_occurrences, extract_covariates
from .pseudo_absences import sample_pseudo_absences
from .dataset import assemble_training_set, build_training_set
from .bart_engine import BartEnsemble, fit_bart
from .model_selection import (
    ModelSelector, FittedModel, ModelSummary, SamplerSettings, StepwisePolicy, StepwiseResult
)
from .spatial_prediction import PredictionRaster, RowChunking, predict_raster
from .interpretation import (
    variable_importance, partial_dependence, partial_dependence_2d, spartial,
    threshold_map, threshold_maps, uncertainty_map, high_uncertainty_mask
)
from .risk_pipeline import RiskModelPipeline, RiskModelResult

__all__ = [
    "SDMError",
    "DataError",
    "CardinalityError",
    "FitError",
    "CovariateStack",
    "load_covariate_stack",
    "load_occurrences",
    "occurrences_from_xy",
    "thin_occurrences",
    "extract_covariates",
    "sample_pseudo_absences",
    "assemble_training_set",
    "build_training_set",
    "BartEnsemble",
    "fit_bart",
    "ModelSelector",
    "FittedModel",
    "ModelSummary",
    "SamplerSettings",
    "StepwisePolicy",
    "StepwiseResult",
    "PredictionRaster",
    "RowChunking",
    "predict_raster",
    "variable_importance",
    "partial_dependence",
    "partial_dependence_2d",
    "spartial",
    "threshold_map",
    "threshold_maps",
    "uncertainty_map",
    "high_uncertainty_mask",
    "RiskModelPipeline",
    "RiskModelResult"
]
