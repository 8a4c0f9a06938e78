"""
Shared fixtures for the epoch compositor tests.

Everything runs offline on a synthetic 9 x 9 grid of 30 m pixels in UTM
zone 37N (EPSG:32637).  The region of interest covers the grid exactly,
so every pixel centre is inside it and the bounding-box centre falls on
the centre pixel.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import pytest
import xarray as xr
from shapely.geometry import box

from epoch_compositor.aoi import RegionOfInterest
from epoch_compositor.bands import LANDSAT_TM_ETM, BandProfile
from epoch_compositor.fetcher import empty_stack
from epoch_compositor.masking import LANDSAT_OFFSET, LANDSAT_SCALE, SENTINEL2_SCALE
from epoch_compositor.raster import STACK_DIMS

GRID = 9
PIXEL = 30.0
X0, Y1 = 500000.0, 1700270.0
UTM = "EPSG:32637"


def grid_coords():
    xs = X0 + PIXEL * (np.arange(GRID) + 0.5)
    ys = Y1 - PIXEL * (np.arange(GRID) + 0.5)
    return xs, ys


def build_stack(scenes: Sequence[Mapping[str, object]], times: Sequence[str]) -> xr.DataArray:
    """``(time, band, y, x)`` stack; each band value is a scalar or a 9 x 9 array."""
    xs, ys = grid_coords()
    bands = list(scenes[0])
    data = np.empty((len(scenes), len(bands), GRID, GRID), dtype="float32")
    for t, scene in enumerate(scenes):
        for b, name in enumerate(bands):
            data[t, b] = np.broadcast_to(np.asarray(scene[name], dtype="float32"), (GRID, GRID))
    return xr.DataArray(
        data,
        dims=STACK_DIMS,
        coords={"time": pd.to_datetime(list(times)), "band": bands, "y": ys, "x": xs},
        attrs={"resolution": PIXEL},
    )


def landsat_scene(
    blue, green, red, nir, swir1, qa=0, profile: BandProfile = LANDSAT_TM_ETM
) -> Dict[str, object]:
    """Landsat Collection-2 DN values that rescale to the given reflectances."""
    refl = {"blue": blue, "green": green, "red": red, "nir": nir, "swir1": swir1}
    scene = {
        profile.resolve(role): (np.asarray(v, dtype="float64") - LANDSAT_OFFSET) / LANDSAT_SCALE
        for role, v in refl.items()
    }
    scene[profile.qa_band] = qa
    return scene


def sentinel2_scene(blue, green, red, nir, swir1, qa=0) -> Dict[str, object]:
    refl = {"B2": blue, "B3": green, "B4": red, "B8": nir, "B11": swir1}
    scene = {k: np.asarray(v, dtype="float64") / SENTINEL2_SCALE for k, v in refl.items()}
    scene["QA60"] = qa
    return scene


def scene_with_mndwi(mndwi: float, ndvi: float = 0.2, bsi_target: float = 0.22 / 0.9) -> Dict[str, object]:
    """Landsat 5 scene whose reflectances give the requested MNDWI and NDVI.

    SWIR1 and red are fixed at 0.1; *bsi_target* is ``nir + blue``
    (0.2444 gives BSI = -0.10).
    """
    swir1 = red = 0.1
    green = swir1 * (1 + mndwi) / (1 - mndwi)
    nir = red * (1 + ndvi) / (1 - ndvi)
    blue = bsi_target - nir
    return landsat_scene(blue, green, red, nir, swir1)


class FakeSource:
    """In-memory :class:`~epoch_compositor.fetcher.RasterSource`.

    ``optical`` maps epoch labels to full stacks; each request returns the
    scenes inside ``[start, end)``.  Unknown labels yield an empty stack.
    """

    def __init__(
        self,
        optical: Optional[Dict[str, xr.DataArray]] = None,
        sar: Optional[xr.DataArray] = None,
        dem: Optional[xr.DataArray] = None,
    ) -> None:
        self.optical = optical or {}
        self.sar = sar
        self.dem = dem
        self.requests = []

    @staticmethod
    def _window(stack: xr.DataArray, start: str, end: str) -> xr.DataArray:
        t = stack["time"].values
        keep = (t >= np.datetime64(start)) & (t < np.datetime64(end))
        return stack.isel(time=np.flatnonzero(keep))

    def optical_scenes(self, epoch, roi, start, end):
        self.requests.append((epoch.label, start, end))
        stack = self.optical.get(epoch.label)
        if stack is None:
            return empty_stack(epoch.profile.all_band_ids)
        return self._window(stack, start, end)

    def sar_scenes(self, roi, start, end):
        if self.sar is None:
            return empty_stack(["VV"])
        return self._window(self.sar, start, end)

    def elevation(self, roi):
        return self.dem


@pytest.fixture
def roi() -> RegionOfInterest:
    geom = box(X0, Y1 - GRID * PIXEL, X0 + GRID * PIXEL, Y1)
    return RegionOfInterest.from_geometry(geom, crs=UTM, label="Test basin")


@pytest.fixture
def west_roi() -> RegionOfInterest:
    """The four western pixel columns of the grid."""
    geom = box(X0, Y1 - GRID * PIXEL, X0 + 4 * PIXEL, Y1)
    return RegionOfInterest.from_geometry(geom, crs=UTM, label="West strip")


@pytest.fixture
def roi_file(tmp_path, roi):
    path = tmp_path / "basin.geojson"
    roi.gdf_wgs84.to_file(path, driver="GeoJSON")
    return path


@pytest.fixture
def scenario_1995() -> xr.DataArray:
    """Three 1995 Landsat 5 scenes with MNDWI 0.05, 0.42 (July) and 0.18."""
    return build_stack(
        [
            scene_with_mndwi(0.05, ndvi=0.10),
            scene_with_mndwi(0.42, ndvi=0.35),
            scene_with_mndwi(0.18, ndvi=0.15),
        ],
        ["1995-03-14", "1995-07-21", "1995-10-09"],
    )
