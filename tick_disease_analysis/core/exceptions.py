"""
Exception types raised by the risk mapping pipeline.

Author: Diego Bengochea
"""


class SDMError(Exception):
    """Base class for pipeline errors."""


class DataError(SDMError, ValueError):
    """Missing or malformed inputs, mismatched raster geometry, unknown bands."""


class CardinalityError(DataError):
    """Too few cells to sample from, or a class missing from the labels."""

    def __init__(self, message: str, requested: int = None, available: int = None):
        super().__init__(message)
        self.requested = requested
        self.available = available


class FitError(SDMError, RuntimeError):
    """The BART sampler failed or received degenerate input."""
