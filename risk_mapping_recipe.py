#!/usr/bin/env python3
"""
Recipe: Tick and Disease Risk Mapping

Reproduces the risk maps from the covariate rasters and occurrence records:
1. Tick suitability model (BART presence/pseudo-absence, posterior maps)
2. Disease model on the covariates extended with tick suitability

Stages whose model summary already exists are reused unless --force is given.

Usage:
    python risk_mapping_recipe.py [OPTIONS]

Examples:
    # Run both models
    python risk_mapping_recipe.py

    # Refit only the disease model on an existing tick map
    python risk_mapping_recipe.py --stages disease --force

    # Custom configuration
    python risk_mapping_recipe.py --config my_config.yaml

Author: Diego Bengochea
"""

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

# Add repo root to path for absolute imports
sys.path.insert(0, str(Path(__file__).parent))

from shared_utils import get_logger, validate_file_exists, find_raster_files
from shared_utils.central_data_paths_constants import (
    COVARIATE_STACK_FILE, TICK_SUITABILITY_FILE, create_all_directories
)
from tick_disease_analysis.core.bart_engine import fit_bart
from tick_disease_analysis.core.exceptions import SDMError
from tick_disease_analysis.core.risk_pipeline import TARGETS, RiskModelPipeline


class RiskMappingRecipe:
    """
    Recipe for complete risk map reproduction.

    Checks inputs, prepares the data tree and runs the tick and disease
    models in order, keeping the tick map in memory for the disease stage.
    """

    def __init__(self, config_path: Optional[str] = None, fit_fn: Callable[..., Any] = fit_bart):
        self.pipeline = RiskModelPipeline(config_path, fit_fn=fit_fn)
        self.logger = get_logger('risk_mapping_recipe')

        # Track stage results
        self.stage_results: Dict[str, Dict[str, Any]] = {}
        self.stack = None
        self.tick_suitability = None
        # Targets fitted by this recipe; a fresh tick map invalidates stored disease outputs
        self.refitted = set()

        self.logger.info("Initialized Risk Mapping Recipe")

    def validate_prerequisites(self, stages: Sequence[str]) -> bool:
        """
        Validate that required input data exists.

        Returns:
            bool: True if prerequisites are met
        """
        self.logger.info("Validating prerequisites for risk mapping...")
        data_config = self.pipeline.data_config

        covariates = data_config.get('covariates') or COVARIATE_STACK_FILE
        sources = covariates if isinstance(covariates, (list, tuple)) else [covariates]
        for source in sources:
            source = Path(source)
            if source.is_dir():
                if not find_raster_files(source):
                    self.logger.error(f"No raster files in covariate directory: {source}")
                    return False
                continue
            try:
                validate_file_exists(source, "covariates")
            except (FileNotFoundError, ValueError) as e:
                self.logger.error(str(e))
                return False
        self.logger.info(f"✅ Covariates found: {', '.join(str(s) for s in sources)}")

        for target in stages:
            path = (data_config.get(target) or {}).get('occurrences') or TARGETS[target]['occurrences']
            try:
                validate_file_exists(path, f"{target} occurrences")
            except (FileNotFoundError, ValueError) as e:
                self.logger.error(str(e))
                return False
            self.logger.info(f"✅ {target} occurrences found: {path}")

        if 'disease' in stages and 'tick' not in stages and not TICK_SUITABILITY_FILE.exists():
            self.logger.error(f"Tick suitability raster not found: {TICK_SUITABILITY_FILE}")
            self.logger.error("Please run the tick stage first")
            return False

        return True

    def create_output_structure(self) -> None:
        """Create necessary output directories."""
        self.logger.info("Creating output directory structure...")
        create_all_directories()
        self.logger.info("✅ Output directory structure created")

    def run_stage(self, target: str, force: bool = False) -> bool:
        """
        Run one model stage.

        Args:
            target: 'tick' or 'disease'
            force: Refit even when the stage's model summary already exists. The
                disease stage is always refit after a tick refit by this recipe

        Returns:
            bool: True if successful
        """
        stage_name = f"{target.capitalize()} Model"
        self.logger.info(f"\n{'='*60}")
        self.logger.info(f"Starting {stage_name}")
        self.logger.info(f"{'='*60}")

        stage_start = time.time()

        summary_file = TARGETS[target]['model_dir'] / 'model_summary.json'
        stale = target == 'disease' and 'tick' in self.refitted
        if stale and summary_file.exists():
            self.logger.info(f"Tick model was refit, refitting {stage_name} as well")
        if summary_file.exists() and not force and not stale:
            self.logger.info(f"✅ {stage_name} - Found existing outputs: {summary_file}")
            self.stage_results[stage_name] = {
                'success': True,
                'duration_minutes': 0,
                'result': 'existing_outputs_used'
            }
            return True

        try:
            if self.stack is None:
                self.stack = self.pipeline.load_covariates()

            if target == 'tick':
                result = self.pipeline.run_tick_model(self.stack)
                self.tick_suitability = result.prediction.mean
            else:
                result = self.pipeline.run_disease_model(self.stack, tick_suitability=self.tick_suitability)
            self.refitted.add(target)

            stage_time = time.time() - stage_start
            self.stage_results[stage_name] = {
                'success': True,
                'duration_minutes': stage_time / 60,
                'result': f"AUC={result.model.summary.auc:.3f}"
            }
            self.logger.info(f"{stage_name} completed successfully in {stage_time/60:.2f} minutes")
            return True

        except (SDMError, OSError) as e:
            stage_time = time.time() - stage_start
            self.stage_results[stage_name] = {
                'success': False,
                'duration_minutes': stage_time / 60,
                'error': str(e)
            }
            self.logger.error(f"{stage_name} failed with error: {str(e)}")
            return False

    def log_summary(self) -> None:
        """Log the outcome of every stage that ran."""
        self.logger.info(f"\n{'='*60}")
        self.logger.info("RECIPE SUMMARY")
        self.logger.info(f"{'='*60}")
        for stage_name, outcome in self.stage_results.items():
            status = "✅" if outcome['success'] else "❌"
            detail = outcome.get('result', outcome.get('error', ''))
            self.logger.info(f"{status} {stage_name}: {detail} ({outcome['duration_minutes']:.2f} min)")


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Reproduce tick suitability and disease risk maps",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('--stages', nargs='+', choices=['tick', 'disease'],
                        default=['tick', 'disease'], help='Models to run')
    parser.add_argument('--force', action='store_true', help='Refit stages with existing outputs')
    return parser.parse_args()


def run_recipe(stages: Sequence[str], config_path: Optional[str] = None, force: bool = False,
               fit_fn: Callable[..., Any] = fit_bart) -> bool:
    """Validate, prepare and run the requested stages in order."""
    start_time = time.time()
    recipe = RiskMappingRecipe(config_path, fit_fn=fit_fn)

    if not recipe.validate_prerequisites(stages):
        recipe.logger.error("Prerequisites validation failed")
        return False

    recipe.create_output_structure()

    # disease always follows tick
    overall_success = True
    for target in ('tick', 'disease'):
        if target in stages:
            overall_success = recipe.run_stage(target, force=force) and overall_success
            if not overall_success:
                break

    recipe.log_summary()
    elapsed_time = time.time() - start_time
    if overall_success:
        recipe.logger.info(f"Risk mapping recipe completed successfully in {elapsed_time/60:.2f} minutes!")
    else:
        recipe.logger.error("Risk mapping recipe failed")
    return overall_success


def main():
    """Main entry point for the risk mapping recipe."""
    args = parse_arguments()
    success = run_recipe(args.stages, config_path=args.config, force=args.force)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
