"""
Spectral Index Engine
=====================
Per-scene water, vegetation and soil indices computed on semantic band
roles, plus the acquisition-month band used by the peak detector.

Each index is an :class:`IndexStrategy` subclass (Strategy pattern);
:func:`add_index_bands` runs a list of strategies over a masked scene
stack in one pass.

Supported indices:
    - MNDWI  Modified Normalized Difference Water Index
    - NDVI   Normalized Difference Vegetation Index
    - BSI    Bare Soil Index

No-data policy:
    A zero denominator yields NaN, never zero and never an error.  NaN
    inputs (masked pixels) propagate to NaN.

Usage::

    from epoch_compositor.bands import LANDSAT_TM_ETM
    from epoch_compositor.indices import add_index_bands

    enriched = add_index_bands(masked_stack, LANDSAT_TM_ETM)
    enriched.sel(band="MNDWI")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np
import xarray as xr

from shared.python.exceptions import SpectralIndexError

from .bands import ROLES, BandProfile
from .raster import as_band, drop_band_coords, single_band

logger = logging.getLogger("basinscope.epoch_compositor.indices")

MONTH_BAND = "month"


def normalized_difference(a, b):
    """``(a - b) / (a + b)``, NaN where ``a + b == 0``.

    Accepts numpy arrays or xarray DataArrays and returns the same kind.
    """
    numerator = a - b
    denominator = a + b
    with np.errstate(invalid="ignore", divide="ignore"):
        ratio = numerator / denominator
    return xr.where(denominator == 0, np.nan, ratio)


# ---------------------------------------------------------------------------
# Index strategy ABC + concrete implementations
# ---------------------------------------------------------------------------


class IndexStrategy(ABC):
    """Abstract base for a single spectral index computation."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Band name the index is stored under (e.g. ``"MNDWI"``)."""

    @property
    @abstractmethod
    def required_roles(self) -> List[str]:
        """Semantic band roles the formula reads, e.g. ``["green", "swir1"]``."""

    @abstractmethod
    def compute(self, bands: Dict[str, xr.DataArray]) -> xr.DataArray:
        """Compute the index from a role → reflectance mapping."""

    def check_roles(self, bands: Dict[str, xr.DataArray]) -> None:
        for role in self.required_roles:
            if role not in bands:
                raise SpectralIndexError(
                    self.name, f"band role '{role}' not provided"
                )


class MNDWIStrategy(IndexStrategy):
    """MNDWI = (Green - SWIR1) / (Green + SWIR1)

    Higher values indicate open water.  Used as the peak-selection criterion.
    """

    @property
    def name(self) -> str:
        return "MNDWI"

    @property
    def required_roles(self) -> List[str]:
        return ["green", "swir1"]

    def compute(self, bands: Dict[str, xr.DataArray]) -> xr.DataArray:
        self.check_roles(bands)
        return normalized_difference(bands["green"], bands["swir1"])


class NDVIStrategy(IndexStrategy):
    """NDVI = (NIR - Red) / (NIR + Red)"""

    @property
    def name(self) -> str:
        return "NDVI"

    @property
    def required_roles(self) -> List[str]:
        return ["red", "nir"]

    def compute(self, bands: Dict[str, xr.DataArray]) -> xr.DataArray:
        self.check_roles(bands)
        return normalized_difference(bands["nir"], bands["red"])


class BSIStrategy(IndexStrategy):
    """BSI = ((SWIR1 + Red) - (NIR + Blue)) / ((SWIR1 + Red) + (NIR + Blue))

    Bounded to [-1, 1] for non-negative reflectance.
    """

    @property
    def name(self) -> str:
        return "BSI"

    @property
    def required_roles(self) -> List[str]:
        return ["blue", "red", "nir", "swir1"]

    def compute(self, bands: Dict[str, xr.DataArray]) -> xr.DataArray:
        self.check_roles(bands)
        return normalized_difference(
            bands["swir1"] + bands["red"],
            bands["nir"] + bands["blue"],
        )


ALL_STRATEGIES: List[IndexStrategy] = [
    MNDWIStrategy(),
    NDVIStrategy(),
    BSIStrategy(),
]


def get_strategy(name: str) -> IndexStrategy:
    """Look up a built-in strategy by (case-insensitive) name."""
    for strategy in ALL_STRATEGIES:
        if strategy.name.upper() == name.upper():
            return strategy
    raise SpectralIndexError(
        name,
        "unsupported index. Supported: "
        + ", ".join(s.name for s in ALL_STRATEGIES),
    )


# ---------------------------------------------------------------------------
# Stack-level entry point
# ---------------------------------------------------------------------------


def role_bands(stack: xr.DataArray, profile: BandProfile) -> Dict[str, xr.DataArray]:
    """Map each role in :data:`ROLES` to its ``(time, y, x)`` reflectance."""
    profile.require(stack["band"].values)
    return {role: single_band(stack, profile.resolve(role)) for role in ROLES}


def month_band(stack: xr.DataArray) -> xr.DataArray:
    """Acquisition month (1-12) of each scene, broadcast over its pixels."""
    template = single_band(stack, stack["band"].values[0])
    months = stack["time"].dt.month.astype("float32")
    return (xr.zeros_like(template, dtype="float32") + months).astype("float32")


def add_index_bands(
    stack: xr.DataArray,
    profile: BandProfile,
    strategies: Optional[Sequence[IndexStrategy]] = None,
) -> xr.DataArray:
    """Return *stack* with one float32 band per strategy plus ``month``.

    *stack* must already be masked and rescaled to reflectance.
    """
    strategies = list(strategies) if strategies is not None else ALL_STRATEGIES
    bands = role_bands(stack, profile)

    layers = [drop_band_coords(stack)]
    for strategy in strategies:
        layers.append(as_band(strategy.compute(bands).astype("float32"), strategy.name))
    layers.append(as_band(month_band(stack), MONTH_BAND))

    enriched = xr.concat(layers, dim="band")
    enriched.attrs.update(stack.attrs)
    logger.debug(
        "%s: added %s to %d scene(s)",
        profile.name,
        ", ".join([s.name for s in strategies] + [MONTH_BAND]),
        stack.sizes.get("time", 0),
    )
    return enriched
