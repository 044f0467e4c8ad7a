#!/usr/bin/env python3
"""
Complete tick and disease risk mapping pipeline.

Runs the tick suitability model and then the disease model on the covariates
extended with the tick suitability map.

Usage:
    python run_full_pipeline.py [--config CONFIG] [--stages tick disease]

Author: Diego Bengochea
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tick_disease_analysis.core.risk_pipeline import RiskModelPipeline
from shared_utils.central_data_paths_constants import create_all_directories


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the complete tick and disease risk mapping pipeline",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration file (default: component config.yaml)'
    )
    parser.add_argument(
        '--stages',
        nargs='+',
        choices=['tick', 'disease'],
        default=['tick', 'disease'],
        help='Models to run'
    )

    return parser.parse_args()


def main():
    """Main entry point for complete pipeline script."""
    args = parse_arguments()

    create_all_directories()
    pipeline = RiskModelPipeline(args.config)
    return pipeline.run_full_pipeline(targets=args.stages)


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
