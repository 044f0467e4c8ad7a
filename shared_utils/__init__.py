"""
Shared utilities for the tick and disease risk mapping pipeline.

This package provides common functionality used across all components:
- Standardized logging configuration
- Configuration file loading utilities
- Path handling utilities
- Central data path constants

Author: Diego Bengochea
"""

from .logging_utils import (
    setup_logging, get_logger, format_elapsed, log_pipeline_start, log_pipeline_end, log_section
)
from .config_utils import load_config, validate_config, get_config_value, save_config
from .path_utils import ensure_directory, find_files, find_raster_files, validate_file_exists

__version__ = "1.0.0"

__all__ = [
    "setup_logging",
    "get_logger",
    "format_elapsed",
    "log_pipeline_start",
    "log_pipeline_end",
    "log_section",
    "load_config",
    "validate_config",
    "get_config_value",
    "save_config",
    "ensure_directory",
    "find_files",
    "find_raster_files",
    "validate_file_exists"
]
