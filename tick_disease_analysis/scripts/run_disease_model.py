#!/usr/bin/env python3
"""
Disease risk model script.

Fits the BART model for disease occurrences on the covariate stack extended
with the tick suitability raster written by run_tick_model.py.

Usage:
    python run_disease_model.py [--config CONFIG] [--covariates PATH]

Author: Diego Bengochea
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tick_disease_analysis.core.risk_pipeline import RiskModelPipeline
from tick_disease_analysis.core.exceptions import SDMError


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Fit the disease BART model using tick suitability as a covariate",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration file (default: component config.yaml)'
    )
    parser.add_argument(
        '--covariates',
        type=str,
        help='Covariate raster file or directory (default: from config)'
    )

    return parser.parse_args()


def main():
    """Main entry point for the disease model script."""
    args = parse_arguments()

    pipeline = RiskModelPipeline(args.config)
    try:
        stack = pipeline.load_covariates(args.covariates)
        result = pipeline.run_disease_model(stack)
    except SDMError as e:
        pipeline.logger.error(f"Disease model failed: {e}")
        return False

    pipeline.logger.info(f"Disease model done: AUC={result.model.summary.auc:.3f}, "
                         f"predictors={result.model.predictors}")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
