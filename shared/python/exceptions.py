"""
BasinScope — Custom Exception Hierarchy
========================================
Every BasinScope tool raises exceptions from this module so callers can
catch them at the right level of granularity.

Hierarchy::

    BasinScopeError                      ← catch-all base
    ├── InputValidationError             ← bad files, malformed config, bad dates
    ├── RasterError                      ← xarray / numpy raster issues
    │   └── BandResolutionError          ← band role or band id cannot be resolved
    ├── EmptyCollectionError             ← a filtered scene collection has no members
    ├── SpectralIndexError               ← unsupported index or missing input roles
    └── OutputWriteError                 ← cannot write to output path
        └── ExportFailure                ← one export task failed (isolated)

Construction-time problems (an incomplete band profile, a band missing
from a stack, an unknown index) are fatal and raised immediately.
Data-availability problems are surfaced as explicit results by the
pipeline; :class:`EmptyCollectionError` is the one raised form, and the
pipeline converts it into an "unavailable" outcome for the epoch.

Usage::

    from shared.python.exceptions import EmptyCollectionError

    raise EmptyCollectionError("landsat-c2-l2", "1995-01-01", "1996-01-01")
"""

from __future__ import annotations

from typing import Iterable


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class BasinScopeError(Exception):
    """Base exception for all BasinScope tools.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(BasinScopeError):
    """Raised when a tool's inputs fail pre-processing validation."""


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(BasinScopeError):
    """Raised for general raster processing failures (xarray / numpy).

    Subclass this for more specific raster errors.
    """


class BandResolutionError(RasterError):
    """Raised when a semantic band role or a band id cannot be resolved.

    Args:
        profile: Name of the band profile (or stage) doing the lookup.
        band: The role (``"swir1"``) or band id (``"SR_B5"``) that failed.
        available: Roles or band ids that ARE present, used to build a
                   helpful error message.

    Example::

        raise BandResolutionError("Landsat 8 OLI", "SR_B6", ["SR_B2", "SR_B3"])
    """

    def __init__(
        self,
        profile: str,
        band: str,
        available: Iterable[str] = (),
    ) -> None:
        available_list = [str(a) for a in available]
        available_str = ", ".join(f"'{a}'" for a in available_list) or "none"
        super().__init__(
            f"{profile}: cannot resolve band '{band}'. "
            f"Available: {available_str}"
        )
        self.profile: str = profile
        self.band: str = band
        self.available: list[str] = available_list


# ---------------------------------------------------------------------------
# Data availability
# ---------------------------------------------------------------------------


class EmptyCollectionError(BasinScopeError):
    """Raised when a filtered scene collection has zero members.

    Args:
        collection: Catalog collection id (or a descriptive label).
        start: Inclusive ISO start date of the filter window.
        end: Exclusive ISO end date of the filter window.
    """

    def __init__(self, collection: str, start: str, end: str) -> None:
        super().__init__(
            f"No scenes in '{collection}' between {start} and {end}."
        )
        self.collection: str = collection
        self.start: str = start
        self.end: str = end


# ---------------------------------------------------------------------------
# Spectral index
# ---------------------------------------------------------------------------


class SpectralIndexError(BasinScopeError):
    """Raised when a spectral index cannot be calculated.

    Args:
        index_name: The name of the index that failed (e.g. ``"MNDWI"``).
        reason: Short explanation of why calculation failed.

    Example::

        raise SpectralIndexError("BSI", "band role 'blue' not provided")
    """

    def __init__(self, index_name: str, reason: str) -> None:
        super().__init__(f"Cannot calculate {index_name}: {reason}")
        self.index_name: str = index_name
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(BasinScopeError):
    """Raised when a tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason


class ExportFailure(OutputWriteError):
    """Raised (and recorded) when a single export task fails.

    Export failures are isolated per task: the queue records them and
    keeps going, so sibling exports and the analysis are unaffected.

    Args:
        description: The export task's key (its output name).
        output_path: Destination the task was writing to.
        reason: Underlying error message.
        attempts: How many attempts were made before giving up.
    """

    def __init__(
        self,
        description: str,
        output_path: str,
        reason: str,
        attempts: int = 1,
    ) -> None:
        super().__init__(output_path, reason)
        self.message = (
            f"Export '{description}' failed after {attempts} attempt(s): {reason}"
        )
        self.args = (self.message,)
        self.description: str = description
        self.attempts: int = attempts
