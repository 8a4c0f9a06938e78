"""
raster.py
=========
Small grid helpers shared by the masking, mosaicking and export code.

Scene stacks are ``xarray.DataArray`` objects with dims
``(time, band, y, x)`` on a north-up grid: ``x`` ascending, ``y``
descending, coordinates at pixel centres (the layout stackstac produces).
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
import xarray as xr
from rasterio.transform import Affine, from_origin

from shared.python.exceptions import RasterError

STACK_DIMS = ("time", "band", "y", "x")


def grid_resolution(da: xr.DataArray) -> Tuple[float, float]:
    """Return ``(res_x, res_y)`` in CRS units, both positive.

    Falls back to the ``resolution`` attribute stackstac attaches when a
    dimension is a single pixel wide.
    """
    x = da["x"].values
    y = da["y"].values
    attr = da.attrs.get("resolution")
    if np.ndim(attr) == 1 and len(attr) == 2:
        fallback = (float(attr[0]), float(attr[1]))
    elif attr is not None:
        fallback = (float(attr), float(attr))
    else:
        fallback = None

    if len(x) > 1:
        res_x = abs(float(x[1] - x[0]))
    elif fallback is not None:
        res_x = fallback[0]
    else:
        raise RasterError("Cannot infer pixel width from a one-column grid.")

    if len(y) > 1:
        res_y = abs(float(y[0] - y[1]))
    elif fallback is not None:
        res_y = fallback[1]
    else:
        raise RasterError("Cannot infer pixel height from a one-row grid.")

    return res_x, res_y


def grid_transform(da: xr.DataArray) -> Affine:
    """Affine transform of the pixel grid, derived from centre coordinates."""
    res_x, res_y = grid_resolution(da)
    x_min = float(da["x"].values[0]) - res_x / 2.0
    y_max = float(da["y"].values[0]) + res_y / 2.0
    return from_origin(x_min, y_max, res_x, res_y)


def drop_band_coords(da: xr.DataArray) -> xr.DataArray:
    """Drop non-index coordinates that vary along ``band``.

    stackstac attaches per-asset metadata (``title``, ``gsd`` ...) as
    band-aligned coordinates; they must go before bands from different
    sources are concatenated.
    """
    extra = [
        name for name, coord in da.coords.items()
        if name != "band" and "band" in coord.dims
    ]
    return da.drop_vars(extra) if extra else da


def single_band(stack: xr.DataArray, band_id: str) -> xr.DataArray:
    """Select one band and drop the scalar ``band`` coordinate left behind."""
    return drop_band_coords(stack).sel(band=band_id).drop_vars("band")


def as_band(da: xr.DataArray, name: str) -> xr.DataArray:
    """Give a band-less array a length-1 ``band`` dimension called *name*.

    The new axis is placed where :data:`STACK_DIMS` (or ``band, y, x``)
    expects it.
    """
    out = da.expand_dims(band=[name])
    order = [d for d in STACK_DIMS if d in out.dims]
    return out.transpose(*order)
