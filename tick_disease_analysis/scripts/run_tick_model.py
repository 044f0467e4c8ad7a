#!/usr/bin/env python3
"""
Tick suitability model script.

Fits the BART presence/pseudo-absence model for the tick on the covariate
stack and writes the suitability rasters, tables and figures.

Usage:
    python run_tick_model.py [--config CONFIG] [--covariates PATH]

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
        description="Fit the tick suitability BART model and map it",
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
    """Main entry point for the tick model script."""
    args = parse_arguments()

    pipeline = RiskModelPipeline(args.config)
    try:
        stack = pipeline.load_covariates(args.covariates)
        result = pipeline.run_tick_model(stack)
    except SDMError as e:
        pipeline.logger.error(f"Tick model failed: {e}")
        return False

    pipeline.logger.info(f"Tick model done: AUC={result.model.summary.auc:.3f}, "
                         f"threshold={result.model.threshold:.3f}")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
