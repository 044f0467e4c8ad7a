"""
Path utilities for the tick and disease risk mapping pipeline.

Directory creation, file discovery for covariate rasters and validation of
input files.

Author: Diego Bengochea
"""

from pathlib import Path
from typing import List, Union, Optional
import logging

RASTER_SUFFIXES = ['.tif', '.tiff', '.vrt', '.img', '.nc']


def ensure_directory(path: Union[str, Path], parents: bool = True) -> Path:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to create
        parents: Whether to create parent directories

    Returns:
        Path: Created directory path

    Examples:
        >>> output_dir = ensure_directory("results/tick_model")
    """
    path = Path(path)
    path.mkdir(parents=parents, exist_ok=True)
    return path


def find_files(
    directory: Union[str, Path],
    pattern: str = "*",
    recursive: bool = True,
    file_types: Optional[List[str]] = None
) -> List[Path]:
    """
    Find files matching pattern in directory.

    Args:
        directory: Directory to search in
        pattern: Glob pattern to match
        recursive: Whether to search recursively
        file_types: List of file extensions to filter by (e.g., ['.tif', '.tiff'])

    Returns:
        List[Path]: Sorted list of matching file paths

    Examples:
        >>> covariate_files = find_files("data/raw/covariates", "*.tif", recursive=False)
    """
    directory = Path(directory)

    if not directory.exists():
        logging.getLogger(__name__).warning(f"Directory does not exist: {directory}")
        return []

    if recursive:
        files = list(directory.rglob(pattern))
    else:
        files = list(directory.glob(pattern))

    if file_types:
        file_types = [ext.lower() for ext in file_types]
        files = [f for f in files if f.suffix.lower() in file_types]

    files = [f for f in files if f.is_file()]

    return sorted(files)


def find_raster_files(directory: Union[str, Path], recursive: bool = False) -> List[Path]:
    """Find raster files (GeoTIFF, VRT, ...) in a directory, sorted by name."""
    return find_files(directory, "*", recursive=recursive, file_types=RASTER_SUFFIXES)


def validate_file_exists(path: Union[str, Path], description: str = "") -> Path:
    """
    Validate that file exists and return Path object.

    Args:
        path: File path to validate
        description: Description for error messages

    Returns:
        Path: Validated file path

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the path exists but is not a file

    Examples:
        >>> points_file = validate_file_exists("ticks.csv", "Tick occurrences")
    """
    path = Path(path)
    desc = f" ({description})" if description else ""

    if not path.exists():
        raise FileNotFoundError(f"File not found{desc}: {path}")

    if not path.is_file():
        raise ValueError(f"Path is not a file{desc}: {path}")

    return path
