"""
masking.py
==========
QA-bitmask cloud/shadow masking and radiometric rescaling.

Landsat Collection-2 Level-2 (QA_PIXEL)
    A pixel is invalid when any of bit 1 (dilated cloud), bit 3 (cloud)
    or bit 4 (cloud shadow) is set, or when the QA value is missing.
    Valid reflectance is rescaled ``DN * 0.0000275 - 0.2``.

Sentinel-2 L2A (QA60)
    A pixel is invalid when bit 10 (opaque cloud) or bit 11 (cirrus) is
    set.  Valid reflectance is ``DN / 10000``.

Both variants clip to the region of interest.  Invalid pixels become NaN
in every band (never zero) so they drop out of every later reduction.
The QA band is carried through unscaled (NaN where invalid), which keeps
the valid-pixel set stable if the mask is applied again.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Optional

import xarray as xr

from .aoi import RegionOfInterest, clip_to_roi
from .bands import BandProfile
from .raster import drop_band_coords, single_band

logger = logging.getLogger("basinscope.epoch_compositor.masking")

LANDSAT_QA_BITS = (1, 3, 4)
LANDSAT_SCALE = 0.0000275
LANDSAT_OFFSET = -0.2

SENTINEL2_QA_BITS = (10, 11)
SENTINEL2_SCALE = 1.0 / 10000.0


def qa_clear(qa: xr.DataArray, bits: Iterable[int]) -> xr.DataArray:
    """``True`` where *qa* is present and none of *bits* is set."""
    flags = 0
    for bit in bits:
        flags |= 1 << bit
    packed = qa.fillna(0).astype("int64")
    return qa.notnull() & ((packed & flags) == 0)


def _mask_and_scale(
    stack: xr.DataArray,
    profile: BandProfile,
    bits: Iterable[int],
    scale: float,
    offset: float,
    roi: Optional[RegionOfInterest],
) -> xr.DataArray:
    profile.require(stack["band"].values)
    stack = drop_band_coords(stack)

    qa = single_band(stack, profile.qa_band)
    valid = qa_clear(qa, bits)

    others = [b for b in stack["band"].values if b != profile.qa_band]
    scaled = stack.sel(band=others) * scale + offset
    out = xr.concat([scaled, stack.sel(band=[profile.qa_band])], dim="band")
    out = out.where(valid).astype("float32")
    out.attrs.update(stack.attrs)

    if roi is not None:
        out = clip_to_roi(out, roi)

    logger.debug(
        "%s: masked %d scene(s) on QA bits %s",
        profile.name, stack.sizes.get("time", 0), tuple(bits),
    )
    return out


def mask_landsat(
    stack: xr.DataArray,
    profile: BandProfile,
    roi: Optional[RegionOfInterest] = None,
) -> xr.DataArray:
    """Apply the QA_PIXEL cloud/shadow mask and Collection-2 SR scaling."""
    return _mask_and_scale(
        stack, profile, LANDSAT_QA_BITS, LANDSAT_SCALE, LANDSAT_OFFSET, roi
    )


def mask_sentinel2(
    stack: xr.DataArray,
    profile: BandProfile,
    roi: Optional[RegionOfInterest] = None,
) -> xr.DataArray:
    """Apply the QA60 cloud/cirrus mask and the 1/10000 reflectance scale."""
    return _mask_and_scale(
        stack, profile, SENTINEL2_QA_BITS, SENTINEL2_SCALE, 0.0, roi
    )


MASKERS: Dict[str, Callable[..., xr.DataArray]] = {
    "landsat": mask_landsat,
    "sentinel2": mask_sentinel2,
}


def apply_quality_mask(
    stack: xr.DataArray,
    profile: BandProfile,
    roi: Optional[RegionOfInterest] = None,
) -> xr.DataArray:
    """Mask and rescale *stack* with the variant for ``profile.sensor_family``."""
    return MASKERS[profile.sensor_family](stack, profile, roi)
