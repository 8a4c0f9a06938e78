"""
BasinScope — Shared Python Package
===================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so individual tools can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import EmptyCollectionError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandResolutionError,
    BasinScopeError,
    EmptyCollectionError,
    ExportFailure,
    InputValidationError,
    OutputWriteError,
    RasterError,
    SpectralIndexError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "BasinScopeError",
    "InputValidationError",
    "RasterError",
    "BandResolutionError",
    "EmptyCollectionError",
    "SpectralIndexError",
    "OutputWriteError",
    "ExportFailure",
]
