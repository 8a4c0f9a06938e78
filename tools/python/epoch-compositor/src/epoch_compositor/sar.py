"""
sar.py
======
Speckle-filtered Sentinel-1 backscatter composites.

For a date window the builder keeps the scenes acquired in VV
polarisation and Interferometric Wide swath mode, converts linear
backscatter to dB, runs a circular focal median (30 m radius) over each
scene, clips to the region and takes the pixel-wise temporal median.

An empty filtered collection does not produce a composite; the result
is flagged unavailable instead.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
import xarray as xr
from scipy.ndimage import generic_filter, median_filter

from shared.python.validators import Validators

from .aoi import RegionOfInterest, clip_to_roi
from .raster import as_band, drop_band_coords, grid_resolution

logger = logging.getLogger("basinscope.epoch_compositor.sar")

SAR_BAND = "VV"


class SARSceneSource(Protocol):
    def sar_scenes(self, roi: RegionOfInterest, start: str, end: str) -> xr.DataArray:
        ...


@dataclass(frozen=True)
class SARComposite:
    """VV backscatter composite (dB) for one window, or an unavailable marker."""

    label: str
    start: str
    end: str
    image: Optional[xr.DataArray]
    scene_count: int

    @property
    def available(self) -> bool:
        return self.image is not None

    def __repr__(self) -> str:  # noqa: D105
        state = f"scenes={self.scene_count}" if self.available else "unavailable"
        return f"<SARComposite {self.label} {self.start}..{self.end} {state}>"


def circular_footprint(radius_m: float, resolution_m: float) -> np.ndarray:
    """Boolean disk of *radius_m* on a grid of *resolution_m* pixels."""
    r = int(np.floor(radius_m / resolution_m))
    yy, xx = np.mgrid[-r:r + 1, -r:r + 1]
    return (xx * resolution_m) ** 2 + (yy * resolution_m) ** 2 <= radius_m ** 2


def focal_median(arr: np.ndarray, footprint: np.ndarray) -> np.ndarray:
    """2-D median filter over *footprint*, ignoring NaN neighbours.

    Edges repeat the nearest pixel whether or not the scene has gaps.
    """
    if not np.isnan(arr).any():
        return median_filter(arr, footprint=footprint, mode="nearest")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return generic_filter(
            arr, np.nanmedian, footprint=footprint, mode="nearest"
        )


def to_db(linear: xr.DataArray) -> xr.DataArray:
    """``10 * log10(x)``; non-positive power becomes NaN."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return 10.0 * np.log10(linear.where(linear > 0))


def select_scenes(
    stack: xr.DataArray,
    polarization: str = SAR_BAND,
    instrument_mode: str = "IW",
) -> xr.DataArray:
    """Keep scenes whose ``polarizations`` contain *polarization* and whose
    ``instrument_mode`` equals *instrument_mode*.

    A stack without one of those coordinates is not filtered on it.
    """
    keep = np.ones(stack.sizes.get("time", 0), dtype=bool)
    if "polarizations" in stack.coords:
        pols = stack["polarizations"].values
        keep &= np.array(
            [polarization in str(p).upper().replace(" ", "").split(",") for p in pols],
            dtype=bool,
        )
    if "instrument_mode" in stack.coords:
        modes = stack["instrument_mode"].values
        keep &= np.array([str(m).upper() == instrument_mode for m in modes], dtype=bool)
    return stack.isel(time=np.flatnonzero(keep))


class SARCompositeBuilder:
    """Build :class:`SARComposite` values for date windows.

    Parameters
    ----------
    roi:
        Region to clip to.
    source:
        Anything with a ``sar_scenes(roi, start, end)`` method returning a
        ``(time, band, y, x)`` stack of linear backscatter.
    polarization, instrument_mode:
        Scene filters (defaults ``VV`` and ``IW``).
    smoothing_radius_m:
        Radius of the circular focal-median kernel.
    """

    def __init__(
        self,
        roi: RegionOfInterest,
        source: Optional[SARSceneSource] = None,
        polarization: str = SAR_BAND,
        instrument_mode: str = "IW",
        smoothing_radius_m: float = 30.0,
    ) -> None:
        self.roi = roi
        self.source = source
        self.polarization = polarization.upper()
        self.instrument_mode = instrument_mode.upper()
        self.smoothing_radius_m = smoothing_radius_m

    def build(self, label: str, start: str, end: str) -> SARComposite:
        """Fetch the window from the source and composite it."""
        Validators.assert_date_range(start, end)
        if self.source is None:
            raise ValueError("SARCompositeBuilder.build() needs a source; use composite().")
        stack = self.source.sar_scenes(self.roi, start, end)
        return self.composite(label, start, end, stack)

    def composite(
        self, label: str, start: str, end: str, stack: xr.DataArray
    ) -> SARComposite:
        """Filter, speckle-smooth, clip and median an already-loaded stack."""
        selected = select_scenes(stack, self.polarization, self.instrument_mode)
        count = int(selected.sizes.get("time", 0))
        if count == 0:
            logger.warning(
                "%s: no %s/%s SAR scenes between %s and %s -- composite unavailable",
                label, self.polarization, self.instrument_mode, start, end,
            )
            return SARComposite(label=label, start=start, end=end, image=None, scene_count=0)

        bands = [str(b) for b in selected["band"].values]
        Validators.assert_bands_present(bands, [self.polarization], "SAR composite")
        scenes = drop_band_coords(selected).sel(band=self.polarization).drop_vars("band")
        scenes = to_db(scenes.transpose("time", "y", "x")).compute(scheduler="synchronous")

        res_x, res_y = grid_resolution(scenes)
        footprint = circular_footprint(self.smoothing_radius_m, min(res_x, res_y))
        smoothed = scenes.copy(
            data=np.stack([focal_median(s, footprint) for s in scenes.values])
        )
        smoothed = clip_to_roi(smoothed, self.roi)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            median = smoothed.median(dim="time", skipna=True)
        image = as_band(median.astype("float32"), self.polarization)
        image.attrs.update({"units": "dB", "long_name": f"{self.polarization} backscatter"})

        logger.info("%s: SAR median of %d scene(s) %s..%s", label, count, start, end)
        return SARComposite(label=label, start=start, end=end, image=image, scene_count=count)
