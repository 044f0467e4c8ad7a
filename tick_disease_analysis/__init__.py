"""
Tick and Disease Risk Mapping Component

Presence/pseudo-absence species distribution models fitted with Bayesian
additive regression trees (BART):

- Covariate raster stacks and occurrence thinning on the grid
- Balanced pseudo-absence sampling
- Importance diagnostic and stepwise predictor reduction
- Posterior mean and quantile suitability maps
- Partial dependence, spartial, threshold and uncertainty maps

Pipeline Workflow:
    1. Tick model: fit on climatic covariates, map suitability
    2. Disease model: fit on the covariates plus tick suitability

Components:
    core/: Core processing modules
    scripts/: Executable entry points
    config.yaml: Component configuration

Author: Diego Bengochea
"""

from .core.risk_pipeline import RiskModelPipeline, RiskModelResult
from .core.covariates import CovariateStack, load_covariate_stack
from .core.exceptions import SDMError, DataError, CardinalityError, FitError

__version__ = "1.0.0"
__component__ = "tick_disease_analysis"

__all__ = [
    "RiskModelPipeline",
    "RiskModelResult",
    "CovariateStack",
    "load_covariate_stack",
    "SDMError",
    "DataError",
    "CardinalityError",
    "FitError"
]
