"""
Risk mapping pipeline.

Chains the stages of a presence/pseudo-absence BART model for one target
(tick or disease): thinning, covariate extraction, pseudo-absence sampling,
model selection, spatial prediction and interpretation. The disease model
reuses the same chain on a covariate stack extended with the tick's
predicted suitability.

Author: Diego Bengochea
"""

import json
import time
import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
import matplotlib.pyplot as plt
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from shared_utils import (
    setup_logging, load_config, validate_config, get_config_value, save_config,
    ensure_directory, log_pipeline_start, log_pipeline_end, log_section
)
from shared_utils.central_data_paths_constants import (
    COVARIATE_STACK_FILE, TICK_OCCURRENCES_FILE, DISEASE_OCCURRENCES_FILE,
    TICK_TRAINING_FILE, DISEASE_TRAINING_FILE, TICK_MODEL_DIR, DISEASE_MODEL_DIR,
    TICK_SUITABILITY_FILE, TICK_FIGURE_DIR, DISEASE_FIGURE_DIR
)
from .bart_engine import fit_bart
from .covariates import CovariateStack, load_covariate_stack
from .dataset import LABEL_COL, build_training_set
from .exceptions import DataError, SDMError
from .interpretation import (
    DEFAULT_PD_BATCH_ROWS, PartialDependenceCurve, PartialDependence2D, variable_importance,
    partial_dependence, partial_dependence_2d, spartial, threshold_maps, uncertainty_map,
    high_uncertainty_mask, summarize_risk
)
from .model_selection import FittedModel, ModelSelector, SamplerSettings, StepwisePolicy
from .occurrences import load_occurrences
from .spatial_prediction import PredictionRaster, RowChunking, predict_raster
from . import plotting

REQUIRED_SECTIONS = ['logging', 'data', 'sampling', 'model', 'prediction', 'interpretation', 'output']

TARGETS = {
    'tick': {
        'occurrences': TICK_OCCURRENCES_FILE,
        'training_file': TICK_TRAINING_FILE,
        'model_dir': TICK_MODEL_DIR,
        'figure_dir': TICK_FIGURE_DIR,
    },
    'disease': {
        'occurrences': DISEASE_OCCURRENCES_FILE,
        'training_file': DISEASE_TRAINING_FILE,
        'model_dir': DISEASE_MODEL_DIR,
        'figure_dir': DISEASE_FIGURE_DIR,
    },
}


@dataclass
class RiskModelResult:
    """Everything one run of the chain produces for a target."""
    target: str
    stack: CovariateStack
    training: pd.DataFrame
    model: FittedModel
    prediction: PredictionRaster
    importance: pd.DataFrame
    threshold_maps: Dict[str, np.ndarray]
    risk_summary: pd.DataFrame
    uncertainty: Optional[np.ndarray] = None
    high_uncertainty: Optional[np.ndarray] = None
    uncertainty_cutoff: Optional[float] = None
    curves: List[PartialDependenceCurve] = field(default_factory=list)
    curves_2d: List[PartialDependence2D] = field(default_factory=list)
    spartial_maps: Dict[str, np.ndarray] = field(default_factory=dict)


class RiskModelPipeline:
    """
    Tick and disease risk mapping pipeline.

    Args:
        config_path: Path to configuration file. If None, uses component default.
        fit_fn: BART fitting function handed to the model selector
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        fit_fn: Callable[..., Any] = fit_bart
    ):
        self.config = load_config(config_path, component_name="tick_disease_analysis")
        validate_config(self.config, REQUIRED_SECTIONS)

        self.logger = setup_logging(
            level=self.config['logging']['level'],
            component_name='risk_pipeline',
            log_file=self.config['logging'].get('log_file'),
            format_style=self.config['logging'].get('format_style', 'standard'),
            sampler_level=self.config['logging'].get('sampler_level', 'WARNING')
        )

        self.fit_fn = fit_fn
        self.data_config = self.config['data']
        self.model_config = self.config['model']
        self.prediction_config = self.config['prediction']
        self.interpretation_config = self.config['interpretation']
        self.output_config = self.config['output']
        self.seed = int(get_config_value(self.config, 'sampling.seed', 0))
        self.excess_policy = get_config_value(self.config, 'sampling.excess_policy', 'error')

        self.logger.info("Initialized RiskModelPipeline")

    # ------------------------------------------------------------------ #
    # Inputs
    # ------------------------------------------------------------------ #
    def load_covariates(self, source: Optional[Union[str, Path, Sequence]] = None) -> CovariateStack:
        """Stage 1: covariate stack from the configured raster(s)."""
        source = source or self.data_config.get('covariates') or COVARIATE_STACK_FILE
        return load_covariate_stack(
            source,
            band_names=self.data_config.get('band_names'),
            crs=self.data_config.get('crs'),
            harmonize=self.data_config.get('harmonize', False),
            resampling=self.data_config.get('resampling', 'bilinear')
        )

    def load_target_occurrences(self, target: str, path: Optional[Union[str, Path]] = None) -> gpd.GeoDataFrame:
        """Occurrence records of ``target`` ('tick' or 'disease')."""
        target_config = self._target_config(target)
        columns = self.data_config.get('occurrences', {})
        path = path or target_config.get('occurrences') or TARGETS[target]['occurrences']
        return load_occurrences(
            path,
            lon_col=columns.get('lon_col', 'longitude'),
            lat_col=columns.get('lat_col', 'latitude'),
            label_col=target_config.get('label_col'),
            label_value=target_config.get('label_value'),
            crs=columns.get('crs', 'EPSG:4326')
        )

    def _target_config(self, target: str) -> Dict[str, Any]:
        if target not in TARGETS:
            raise DataError(f"Unknown target {target!r}; expected one of {list(TARGETS)}")
        return self.data_config.get(target) or {}

    def build_selector(self) -> ModelSelector:
        """Model selector configured from the ``model`` section."""
        sampler = SamplerSettings(**self.model_config.get('sampler', {}))
        policy = StepwisePolicy(**self.model_config.get('stepwise', {}))
        return ModelSelector(
            fit_fn=self.fit_fn,
            sampler=sampler,
            policy=policy,
            final_trees=self.model_config.get('final_trees', 200),
            diagnostic_trees=self.model_config.get('diagnostic_trees', (10, 20, 50, 100, 150, 200)),
            seed=self.seed
        )

    # ------------------------------------------------------------------ #
    # Stages 2-8
    # ------------------------------------------------------------------ #
    def run(
        self,
        occurrences: gpd.GeoDataFrame,
        stack: CovariateStack,
        target: str = 'tick',
        predictors: Optional[Sequence[str]] = None,
        extra_bands: Optional[Mapping[str, np.ndarray]] = None,
        output_dir: Optional[Union[str, Path]] = None,
        figure_dir: Optional[Union[str, Path]] = None,
        training_file: Optional[Union[str, Path]] = None
    ) -> RiskModelResult:
        """
        Fit, predict and interpret one target.

        Args:
            occurrences: Presence records
            stack: Covariate stack
            target: Label used in logs and output names
            predictors: Candidate predictors (all bands, extra bands included, if None)
            extra_bands: Grids appended to the stack before anything else runs
            output_dir: Where tables and rasters are written (nothing written if None)
            figure_dir: Where figures are written (no figures if None)
            training_file: Where the training rows are written (skipped if None)

        Returns:
            RiskModelResult
        """
        for name, grid in (extra_bands or {}).items():
            stack = stack.with_band(name, grid)
            self.logger.info(f"Added band '{name}' to the covariate stack ({stack.n_bands} bands)")

        predictors = list(predictors) if predictors else stack.band_names
        for name in (extra_bands or {}):
            if name not in predictors:
                predictors.append(name)

        log_section(self.logger, f"{target} training data")
        training = build_training_set(occurrences, stack, predictors, self.seed, self.excess_policy)

        log_section(self.logger, f"{target} model selection")
        model = self.build_selector().fit(
            training, predictors, full=self.model_config.get('full_selection', True)
        )

        log_section(self.logger, f"{target} spatial prediction")
        prediction = predict_raster(
            model,
            stack,
            quantiles=self.prediction_config.get('quantiles', [0.025, 0.975]),
            chunking=RowChunking(self.prediction_config.get('rows_per_batch')),
            show_progress=self.prediction_config.get('show_progress', False)
        )

        log_section(self.logger, f"{target} interpretation")
        result = self.interpret(target, stack, training, model, prediction)

        # Figures are rendered first so a plotting failure leaves nothing on disk
        figures = self.render_figures(result) if figure_dir is not None else []
        try:
            if training_file is not None:
                ensure_directory(Path(training_file).parent)
                training.to_csv(training_file, index=False)
                self.logger.info(f"Saved training rows to {training_file}")
            if output_dir is not None:
                self.save_results(result, output_dir)
            if figure_dir is not None:
                self.save_figures(result, figure_dir, figures=figures)
        finally:
            for _, fig in figures:
                plt.close(fig)

        return result

    def interpret(
        self,
        target: str,
        stack: CovariateStack,
        training: pd.DataFrame,
        model: FittedModel,
        prediction: PredictionRaster
    ) -> RiskModelResult:
        """Stage 8: importance, partial dependence, spartial, threshold and uncertainty maps."""
        cfg = self.interpretation_config
        levels = cfg.get('pd_levels', 10)
        equal = cfg.get('pd_equal', False)
        ci = tuple(cfg.get('ci', (0.025, 0.975)))
        max_rows = cfg.get('pd_batch_rows', DEFAULT_PD_BATCH_ROWS)

        importance = variable_importance(model)
        top = list(importance['variable'].head(cfg.get('top_variables') or len(importance)))

        curves = [
            partial_dependence(
                model, name, levels=levels, equal=equal, ci=ci,
                smooth_window=cfg.get('smooth_window'),
                lowess_frac=cfg.get('lowess_frac'),
                max_rows=max_rows
            )
            for name in top
        ]

        pairs = cfg.get('pd_2d_pairs')
        if pairs is None:
            pairs = [top[:2]] if len(top) >= 2 else []
        curves_2d = [partial_dependence_2d(model, x, y, levels=levels, equal=equal, ci=ci, max_rows=max_rows)
                     for x, y in pairs]

        spartial_maps = {}
        if cfg.get('spartial', True):
            for curve in curves:
                spartial_maps[curve.variable] = spartial(model, stack, curve.variable, curve=curve)

        maps = threshold_maps(prediction, model.threshold)
        risk = summarize_risk(prediction, model.threshold)
        for _, row in risk.iterrows():
            self.logger.info(f"{target} {row['grid']}: {row['n_above_threshold']} of {row['n_valid']} "
                             f"cells above threshold {model.threshold:.3f}")

        width = mask = cutoff = None
        if prediction.quantiles:
            width = uncertainty_map(prediction)
            mask, cutoff = high_uncertainty_mask(width, cfg.get('uncertainty_quantile', 0.75))
            self.logger.info(f"{target} high-uncertainty cells: {int(mask.sum())} (width > {cutoff:.3f})")

        return RiskModelResult(
            target=target,
            stack=stack,
            training=training,
            model=model,
            prediction=prediction,
            importance=importance,
            threshold_maps=maps,
            risk_summary=risk,
            uncertainty=width,
            high_uncertainty=mask,
            uncertainty_cutoff=cutoff,
            curves=curves,
            curves_2d=curves_2d,
            spartial_maps=spartial_maps
        )

    # ------------------------------------------------------------------ #
    # Outputs
    # ------------------------------------------------------------------ #
    def save_results(self, result: RiskModelResult, output_dir: Union[str, Path]) -> Path:
        """Write tables, rasters and the run configuration of a result."""
        output_dir = ensure_directory(output_dir)
        model = result.model

        summary = model.summary.to_dict()
        summary.update({
            'target': result.target,
            'predictors': model.predictors,
            'dropped_predictors': model.stepwise.dropped if model.stepwise else [],
            'seed': model.seed,
            'uncertainty_cutoff': result.uncertainty_cutoff,
        })
        with open(output_dir / 'model_summary.json', 'w') as f:
            json.dump(summary, f, indent=2)

        result.importance.to_csv(output_dir / 'variable_importance.csv', index=False)
        result.risk_summary.to_csv(output_dir / 'risk_summary.csv', index=False)
        if model.importance_diagnostic is not None:
            model.importance_diagnostic.to_csv(output_dir / 'importance_diagnostic.csv')
        if model.stepwise is not None:
            history = model.stepwise.history.copy()
            history['predictors'] = history['predictors'].apply(';'.join)
            history.to_csv(output_dir / 'stepwise_history.csv', index=False)
        for curve in result.curves:
            curve.to_frame().to_csv(output_dir / f"partial_dependence_{curve.variable}.csv", index=False)
        for pd2d in result.curves_2d:
            pd2d.to_frame().to_csv(
                output_dir / f"partial_dependence_{pd2d.variables[0]}_{pd2d.variables[1]}.csv", index=False
            )

        result.prediction.write(output_dir, prefix='prediction')
        self._write_masks(result.threshold_maps, result.prediction, output_dir, prefix='threshold')
        if result.uncertainty is not None:
            self._write_grid(result.uncertainty, result.prediction, output_dir / 'uncertainty_width.tif')
            self._write_masks({'high': result.high_uncertainty}, result.prediction, output_dir,
                              prefix='uncertainty')
        for name, grid in result.spartial_maps.items():
            self._write_grid(grid, result.prediction, output_dir / f"spartial_{name}.tif")

        save_config(self.config, output_dir / 'run_config.yaml')
        self.logger.info(f"Saved {result.target} results to {output_dir}")
        return output_dir

    def _write_grid(self, grid: np.ndarray, prediction: PredictionRaster, path: Path) -> None:
        profile = {
            'driver': 'GTiff', 'height': grid.shape[0], 'width': grid.shape[1], 'count': 1,
            'dtype': 'float32', 'crs': prediction.crs, 'transform': prediction.transform,
            'nodata': np.nan, 'compress': 'lzw',
        }
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(grid.astype('float32'), 1)

    def _write_masks(self, masks: Mapping[str, np.ndarray], prediction: PredictionRaster,
                     output_dir: Path, prefix: str) -> None:
        for label, mask in masks.items():
            profile = {
                'driver': 'GTiff', 'height': mask.shape[0], 'width': mask.shape[1], 'count': 1,
                'dtype': 'uint8', 'crs': prediction.crs, 'transform': prediction.transform,
                'compress': 'lzw',
            }
            with rasterio.open(output_dir / f"{prefix}_{label}.tif", 'w', **profile) as dst:
                dst.write(mask.astype('uint8'), 1)

    def render_figures(self, result: RiskModelResult) -> List[Tuple[str, plt.Figure]]:
        """
        Build every figure of a result without writing anything.

        Figures already built are closed if a later one fails.

        Returns:
            List of (file stem, figure) pairs
        """
        plotting.apply_style_config(self.output_config)
        model = result.model
        transform = result.prediction.transform
        presences = result.training[result.training[LABEL_COL] == 1]

        figures: List[Tuple[str, plt.Figure]] = []
        try:
            figures.append(('prediction', plotting.plot_prediction_panels(
                result.prediction.grids(), transform, title_prefix=f"{result.target} ")))
            figures.append(('threshold', plotting.plot_prediction_panels(
                result.threshold_maps, transform, title_prefix=f"{result.target} > threshold ")))
            figures.append(('presences', plotting.plot_raster_map(
                result.prediction.mean, transform, title=f"{result.target} suitability and presences",
                vmin=0.0, vmax=1.0, colorbar_label='Probability', points=presences)))
            figures.append(('fit_diagnostics', plotting.plot_fit_diagnostics(
                model.training[LABEL_COL], model.ensemble.fitted_probabilities(), model.summary)))
            figures.append(('variable_importance', plotting.plot_variable_importance(result.importance)))
            if model.importance_diagnostic is not None:
                figures.append(('importance_diagnostic',
                                plotting.plot_importance_diagnostic(model.importance_diagnostic)))
            if model.stepwise is not None:
                figures.append(('stepwise_history', plotting.plot_stepwise_history(model.stepwise.history)))
            if result.curves:
                figures.append(('partial_dependence', plotting.plot_partial_dependence(result.curves)))
            for pd2d in result.curves_2d:
                figures.append((f"partial_dependence_{pd2d.variables[0]}_{pd2d.variables[1]}",
                                plotting.plot_partial_dependence_2d(pd2d)))
            if result.uncertainty is not None:
                figures.append(('uncertainty', plotting.plot_raster_map(
                    result.uncertainty, transform, title=f"{result.target} posterior interval width",
                    cmap='magma', colorbar_label='Upper - lower quantile')))
                figures.append(('high_uncertainty', plotting.plot_raster_map(
                    result.high_uncertainty, transform,
                    title=f"{result.target} width > {result.uncertainty_cutoff:.3f}")))
            for name, grid in result.spartial_maps.items():
                figures.append((f"spartial_{name}", plotting.plot_raster_map(
                    grid, transform, title=f"Spartial effect of {name}", cmap='RdYlBu_r',
                    colorbar_label='Partial dependence')))
        except Exception:
            for _, fig in figures:
                plt.close(fig)
            raise

        return figures

    def save_figures(
        self,
        result: RiskModelResult,
        figure_dir: Union[str, Path],
        figures: Optional[List[Tuple[str, plt.Figure]]] = None
    ) -> List[str]:
        """
        Write the figures of a result in the configured formats.

        Args:
            result: Result to plot
            figure_dir: Output directory
            figures: Figures from ``render_figures``; rendered here and closed
                after writing if None

        Returns:
            Paths of the written files
        """
        owned = figures is None
        if owned:
            figures = self.render_figures(result)
        figure_dir = ensure_directory(figure_dir)
        saved = []
        try:
            for name, fig in figures:
                saved.extend(plotting.save_figure_multiple_formats(fig, figure_dir / name,
                                                                   self.output_config, self.logger))
        finally:
            if owned:
                for _, fig in figures:
                    plt.close(fig)

        return saved

    # ------------------------------------------------------------------ #
    # Targets
    # ------------------------------------------------------------------ #
    def run_tick_model(self, stack: Optional[CovariateStack] = None) -> RiskModelResult:
        """Tick suitability model on the covariate stack."""
        stack = stack if stack is not None else self.load_covariates()
        return self.run(
            self.load_target_occurrences('tick'),
            stack,
            target='tick',
            predictors=self._target_config('tick').get('predictors'),
            **self._output_locations('tick')
        )

    def run_disease_model(
        self,
        stack: Optional[CovariateStack] = None,
        tick_suitability: Optional[np.ndarray] = None
    ) -> RiskModelResult:
        """
        Disease model on the covariate stack extended with tick suitability.

        Args:
            stack: Covariate stack (loaded from config if None)
            tick_suitability: Tick mean prediction grid; read from the tick
                model's output raster if None
        """
        stack = stack if stack is not None else self.load_covariates()
        target_config = self._target_config('disease')
        band = target_config.get('suitability_band', 'tick_suitability')

        if tick_suitability is None:
            if not TICK_SUITABILITY_FILE.exists():
                raise DataError(f"Tick suitability raster not found: {TICK_SUITABILITY_FILE}; "
                                f"run the tick model first")
            suitability_stack = load_covariate_stack(TICK_SUITABILITY_FILE, band_names=[band])
            if not suitability_stack.same_grid(stack):
                raise DataError("Tick suitability raster is not on the covariate grid")
            tick_suitability = suitability_stack[band]

        return self.run(
            self.load_target_occurrences('disease'),
            stack,
            target='disease',
            predictors=target_config.get('predictors'),
            extra_bands={band: tick_suitability},
            **self._output_locations('disease')
        )

    def _output_locations(self, target: str) -> Dict[str, Optional[Path]]:
        locations = {
            'output_dir': TARGETS[target]['model_dir'],
            'figure_dir': TARGETS[target]['figure_dir'] if self.output_config.get('save_figures', True) else None,
            'training_file': TARGETS[target]['training_file'] if self.output_config.get('save_training_data', True) else None,
        }
        return locations

    def run_full_pipeline(self, targets: Sequence[str] = ('tick', 'disease')) -> bool:
        """
        Run the tick model and then the disease model on its suitability.

        Returns:
            bool: True if every requested target completed
        """
        start_time = time.time()
        log_pipeline_start(self.logger, "tick and disease risk mapping", self.config)

        try:
            stack = self.load_covariates()
            tick_result = None
            if 'tick' in targets:
                tick_result = self.run_tick_model(stack)
            if 'disease' in targets:
                suitability = tick_result.prediction.mean if tick_result is not None else None
                self.run_disease_model(stack, tick_suitability=suitability)
            success = True
        except (SDMError, FileNotFoundError) as e:
            self.logger.error(f"Pipeline failed: {e}")
            success = False

        log_pipeline_end(self.logger, "tick and disease risk mapping", success, time.time() - start_time)
        return success
