"""
Training set assembly.

Presence rows (label 1) and pseudo-absence rows (label 0) are stacked into
one frame with a ``presence`` label column. Rows with any missing predictor
are dropped before the frame reaches the model fitter.

Author: Diego Bengochea
"""

import pandas as pd
import geopandas as gpd
from typing import List, Sequence

from shared_utils import get_logger
from .covariates import CovariateStack
from .exceptions import CardinalityError, DataError
from .occurrences import thin_occurrences, extract_covariates
from .pseudo_absences import sample_pseudo_absences

logger = get_logger('dataset')

LABEL_COL = 'presence'
COORD_COLS = ['x', 'y']


def assemble_training_set(
    presences: pd.DataFrame,
    absences: pd.DataFrame,
    predictors: Sequence[str]
) -> pd.DataFrame:
    """
    Combine presence and pseudo-absence covariate rows.

    Args:
        presences: Covariate rows at presence points
        absences: Covariate rows at pseudo-absence points
        predictors: Predictor columns that must be complete

    Returns:
        DataFrame with the predictor columns, any coordinate columns and
        ``presence`` (1/0); no row has a missing predictor

    Raises:
        DataError: A predictor column is missing
        CardinalityError: One of the classes is empty after dropping rows
    """
    predictors = list(predictors)
    if not predictors:
        raise DataError("At least one predictor is required")

    for label, frame in (('presence', presences), ('pseudo-absence', absences)):
        missing = [col for col in predictors if col not in frame.columns]
        if missing:
            raise DataError(f"{label} rows lack predictor columns {missing}")

    keep = [col for col in COORD_COLS if col in presences.columns and col in absences.columns] + predictors
    combined = pd.concat(
        [presences[keep].assign(**{LABEL_COL: 1}), absences[keep].assign(**{LABEL_COL: 0})],
        ignore_index=True
    )

    complete = combined.dropna(subset=predictors).reset_index(drop=True)
    dropped = len(combined) - len(complete)
    if dropped:
        logger.info(f"Dropped {dropped} rows with missing covariate values")

    complete[LABEL_COL] = complete[LABEL_COL].astype(int)
    counts = complete[LABEL_COL].value_counts()
    n_presence = int(counts.get(1, 0))
    n_absence = int(counts.get(0, 0))
    if n_presence == 0 or n_absence == 0:
        raise CardinalityError(
            f"Training set needs both classes, got {n_presence} presences and {n_absence} pseudo-absences"
        )

    logger.info(f"Training set: {n_presence} presences, {n_absence} pseudo-absences, "
                f"{len(predictors)} predictors")
    return complete


def build_training_set(
    occurrences: gpd.GeoDataFrame,
    stack: CovariateStack,
    predictors: Sequence[str],
    seed: int,
    excess_policy: str = 'error'
) -> pd.DataFrame:
    """
    Thin occurrences, extract covariates and add a balanced pseudo-absence set.

    Presences on cells with missing covariates are discarded first, and as
    many pseudo-absences are then drawn from valid cells as there are usable
    presences, so both classes end up with the same size.
    """
    predictors: List[str] = list(predictors)
    thinned = thin_occurrences(occurrences, stack)
    presence_rows = extract_covariates(thinned, stack, predictors)

    usable = presence_rows.dropna(subset=predictors)
    if len(usable) < len(presence_rows):
        logger.info(f"{len(presence_rows) - len(usable)} thinned presences fall on missing covariate cells")
    if usable.empty:
        raise DataError("No presence falls on a cell with complete covariates")

    background = sample_pseudo_absences(stack, len(usable), seed, names=predictors, excess_policy=excess_policy)
    absence_rows = extract_covariates(background, stack, predictors)

    return assemble_training_set(usable, absence_rows, predictors)
