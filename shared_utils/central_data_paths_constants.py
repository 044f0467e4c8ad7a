"""
Central Data Paths - Constants

Centralized path management for the tick and disease risk mapping repository.
All components should import paths from this module instead of defining their own.

Usage:
    from shared_utils.central_data_paths_constants import COVARIATES_DIR, TICK_MODEL_DIR

    covariate_files = list(COVARIATES_DIR.glob("*.tif"))

Author: Diego Bengochea
"""

from pathlib import Path

# Root directories
DATA_ROOT = Path("data")

RAW_DIR = DATA_ROOT / "raw"
PROCESSED_DIR = DATA_ROOT / "processed"
RESULTS_DIR = DATA_ROOT / "results"

# Covariates (climate, vegetation, land use)
COVARIATES_DIR = RAW_DIR / "covariates"
COVARIATE_STACK_FILE = COVARIATES_DIR / "covariate_stack.tif"

# Occurrence records
OCCURRENCES_DIR = RAW_DIR / "occurrences"
TICK_OCCURRENCES_FILE = OCCURRENCES_DIR / "tick_occurrences.csv"
DISEASE_OCCURRENCES_FILE = OCCURRENCES_DIR / "disease_occurrences.csv"

# Training datasets
TRAINING_DATA_DIR = PROCESSED_DIR / "training_data"
TICK_TRAINING_FILE = TRAINING_DATA_DIR / "tick_training_rows.csv"
DISEASE_TRAINING_FILE = TRAINING_DATA_DIR / "disease_training_rows.csv"

# Model results
TICK_MODEL_DIR = RESULTS_DIR / "tick_model"
DISEASE_MODEL_DIR = RESULTS_DIR / "disease_model"
TICK_SUITABILITY_FILE = TICK_MODEL_DIR / "prediction_mean.tif"

# Figures
FIGURE_DIR = DATA_ROOT / 'figures'
TICK_FIGURE_DIR = FIGURE_DIR / 'tick_model'
DISEASE_FIGURE_DIR = FIGURE_DIR / 'disease_model'


def create_all_directories():
    """Create all necessary directories in the data structure."""
    directories = [
        COVARIATES_DIR,
        OCCURRENCES_DIR,
        TRAINING_DATA_DIR,
        TICK_MODEL_DIR,
        DISEASE_MODEL_DIR,
        TICK_FIGURE_DIR,
        DISEASE_FIGURE_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)
