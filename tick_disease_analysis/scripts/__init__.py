"""
Executable scripts for the tick and disease risk mapping component.

Scripts:
    run_tick_model.py: Tick suitability model
    run_disease_model.py: Disease model on covariates plus tick suitability
    run_full_pipeline.py: Tick model followed by the disease model

Author: Diego Bengochea
"""

from .run_tick_model import main as run_tick_model
from .run_disease_model import main as run_disease_model
from .run_full_pipeline import main as run_full_pipeline

__all__ = [
    "run_tick_model",
    "run_disease_model",
    "run_full_pipeline"
]
