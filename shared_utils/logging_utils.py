"""
Standardized logging utilities for the tick and disease risk mapping pipeline.

Every component logs under the ``tick_disease`` namespace so a single call to
``setup_logging`` controls the console and file output of the whole run. The
sampler stack (pymc, pytensor, arviz) is chatty at INFO level, so its loggers
are lowered separately.

Author: Diego Bengochea
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .config_utils import get_config_value

ROOT_LOGGER_NAME = 'tick_disease'

# Third-party loggers that flood the console during BART sampling
SAMPLER_LOGGERS = ('pymc', 'pymc_bart', 'pytensor', 'arviz')

LOG_FORMATS = {
    'standard': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'detailed': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    'simple': '%(levelname)s: %(message)s'
}

# Settings echoed when a run starts, as dotted config keys
RUN_SETTINGS = (
    'sampling.seed',
    'sampling.excess_policy',
    'model.full_selection',
    'model.final_trees',
    'prediction.quantiles',
    'prediction.rows_per_batch',
)


def _as_level(level: Union[str, int]) -> int:
    return getattr(logging, level.upper()) if isinstance(level, str) else level


def _attach(root: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def setup_logging(
    level: Union[str, int] = 'INFO',
    component_name: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    format_style: str = 'standard',
    sampler_level: Union[str, int] = 'WARNING'
) -> logging.Logger:
    """
    Setup standardized logging configuration for pipeline components.

    Calling it again replaces the handlers of the previous call, so a
    pipeline built after another one does not duplicate console lines.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        component_name: Name of the component (for logger identification)
        log_file: Optional file path for logging output
        format_style: One of LOG_FORMATS ('standard', 'detailed', 'simple')
        sampler_level: Level applied to the pymc/pytensor loggers

    Returns:
        logging.Logger: Configured logger instance

    Examples:
        >>> logger = setup_logging('INFO', 'tick_model')
        >>> logger = setup_logging('DEBUG', 'disease_model', 'disease_run.log')
    """
    level = _as_level(level)
    formatter = logging.Formatter(LOG_FORMATS.get(format_style, LOG_FORMATS['standard']),
                                  datefmt='%Y-%m-%d %H:%M:%S')

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    _attach(root, logging.StreamHandler(sys.stdout), level, formatter)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _attach(root, logging.FileHandler(log_path), level, formatter)

    quiet_library_loggers(SAMPLER_LOGGERS, sampler_level)

    return get_logger(component_name) if component_name else logging.getLogger(ROOT_LOGGER_NAME)


def quiet_library_loggers(names: Iterable[str], level: Union[str, int] = 'WARNING') -> None:
    """Raise the threshold of third-party loggers to ``level``."""
    level = _as_level(level)
    for name in names:
        logging.getLogger(name).setLevel(level)


def get_logger(component_name: str) -> logging.Logger:
    """
    Logger of one component, e.g. ``get_logger('occurrences')`` gives
    ``tick_disease.occurrences``.
    """
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{component_name}')


def format_elapsed(seconds: float) -> str:
    """Seconds as HH:MM:SS."""
    seconds = int(seconds)
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


def log_pipeline_start(logger: logging.Logger, pipeline_name: str, config: Optional[Dict[str, Any]] = None) -> None:
    """
    Log the opening banner of a run.

    Args:
        logger: Logger instance
        pipeline_name: Name of the pipeline being started
        config: Loaded configuration; the RUN_SETTINGS found in it are echoed
    """
    logger.info("=" * 80)
    logger.info(f"STARTING PIPELINE: {pipeline_name.upper()}")
    logger.info("=" * 80)

    if not config:
        return
    source = config.get('_meta', {}).get('config_file')
    if source:
        logger.info(f"Configuration: {source}")
    for key in RUN_SETTINGS:
        value = get_config_value(config, key)
        if value is not None:
            logger.info(f"  {key}: {value}")


def log_pipeline_end(
    logger: logging.Logger,
    pipeline_name: str,
    success: bool = True,
    elapsed_time: Optional[float] = None
) -> None:
    """Log the closing banner of a run with its outcome and duration."""
    logger.info("=" * 80)
    outcome = "COMPLETED SUCCESSFULLY" if success else "FAILED"
    logger.info(f"PIPELINE {outcome}: {pipeline_name.upper()}")
    if elapsed_time is not None:
        logger.info(f"Total execution time: {format_elapsed(elapsed_time)}")
    logger.info("=" * 80)


def log_section(logger: logging.Logger, section_name: str) -> None:
    """Log a standardized section header."""
    logger.info(f"{'='*20} {section_name.upper()} {'='*20}")
