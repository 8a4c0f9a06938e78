"""
fetcher.py
==========
Query and lazy-stream imagery from Microsoft Planetary Computer via the
STAC API.  No full-scene downloads -- stackstac reads only the window
covered by the region's bounding box, on the region's UTM grid.

Collections used
----------------
landsat-c2-l2      -- Landsat 5/7/8 Collection-2 Level-2 surface reflectance
sentinel-2-l2a     -- Sentinel-2 Level-2A surface reflectance (0-10000 DN)
sentinel-1-rtc     -- Sentinel-1 IW GRD, RTC-processed linear backscatter
nasadem            -- NASADEM (reprocessed SRTM) elevation, 30 m

Every stack is a dask-backed ``(time, band, y, x)`` DataArray whose band
coordinate holds the profile's band ids (``SR_B3``, ``B4``, ``QA60`` ...)
rather than catalog asset keys.  A search with no hits returns an empty
stack; deciding what an empty collection means is the caller's job.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional, Protocol, Sequence

import numpy as np
import planetary_computer
import pystac_client
import stackstac
import xarray as xr

from .aoi import RegionOfInterest
from .bands import BandProfile
from .config import EpochConfig
from .raster import STACK_DIMS, as_band, drop_band_coords, single_band

logger = logging.getLogger("basinscope.epoch_compositor.fetcher")

PLANETARY_COMPUTER_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"

SAR_COLLECTION = "sentinel-1-rtc"
DEM_COLLECTION = "nasadem"

# SCL classes folded into the QA60 bitfield
_SCL_OPAQUE_CLOUD = (8, 9)    # cloud medium / high probability -> bit 10
_SCL_CIRRUS = (10,)           # thin cirrus                      -> bit 11

# Processing baseline 04.00 (Jan 2022) added +1000 DN to L2A reflectance
_S2_OFFSET_BASELINE = (4, 0)
_S2_BOA_OFFSET = 1000.0


class RasterSource(Protocol):
    """What the pipeline needs from an imagery backend."""

    def optical_scenes(
        self, epoch: EpochConfig, roi: RegionOfInterest, start: str, end: str
    ) -> xr.DataArray:
        ...

    def sar_scenes(self, roi: RegionOfInterest, start: str, end: str) -> xr.DataArray:
        ...

    def elevation(self, roi: RegionOfInterest) -> Optional[xr.DataArray]:
        ...


def empty_stack(bands: Sequence[str]) -> xr.DataArray:
    """A zero-scene ``(time, band, y, x)`` stack with the given band ids."""
    return xr.DataArray(
        np.empty((0, len(bands), 0, 0), dtype="float32"),
        dims=STACK_DIMS,
        coords={
            "time": np.array([], dtype="datetime64[ns]"),
            "band": list(bands),
            "y": np.array([], dtype="float64"),
            "x": np.array([], dtype="float64"),
        },
    )


def stac_interval(start: str, end: str) -> str:
    """STAC datetime interval for the half-open window ``[start, end)``."""
    last = date.fromisoformat(end) - timedelta(days=1)
    return f"{start}T00:00:00Z/{last.isoformat()}T23:59:59Z"


def _processing_baseline(item) -> tuple:
    raw = str(item.properties.get("s2:processing_baseline", "0.0"))
    try:
        return tuple(int(p) for p in raw.split("."))
    except ValueError:
        return (0, 0)


class PlanetaryComputerSource:
    """Streams optical, SAR and elevation rasters from Planetary Computer.

    Parameters
    ----------
    landsat_resolution, sentinel2_resolution, sar_resolution:
        Output pixel size (m) per sensor.
    max_cloud_cover:
        Optional scene-level ``eo:cloud_cover`` ceiling (0-100).  Pixel
        masking still happens downstream; ``None`` keeps every scene.
    chunk_size:
        Dask chunk size in pixels for x and y.
    """

    def __init__(
        self,
        landsat_resolution: float = 30.0,
        sentinel2_resolution: float = 10.0,
        sar_resolution: float = 10.0,
        max_cloud_cover: Optional[float] = None,
        chunk_size: int = 1024,
    ) -> None:
        self.landsat_resolution = landsat_resolution
        self.sentinel2_resolution = sentinel2_resolution
        self.sar_resolution = sar_resolution
        self.max_cloud_cover = max_cloud_cover
        self.chunk_size = chunk_size

        # sign_inplace adds SAS tokens to asset hrefs
        self._catalog = pystac_client.Client.open(
            PLANETARY_COMPUTER_URL,
            modifier=planetary_computer.sign_inplace,
        )

    # ------------------------------------------------------------------
    # RasterSource
    # ------------------------------------------------------------------

    def optical_scenes(
        self, epoch: EpochConfig, roi: RegionOfInterest, start: str, end: str
    ) -> xr.DataArray:
        """Landsat or Sentinel-2 scenes of *epoch* within ``[start, end)``."""
        profile = epoch.profile
        query = {}
        if epoch.platforms:
            query["platform"] = {"in": list(epoch.platforms)}
        if self.max_cloud_cover is not None:
            query["eo:cloud_cover"] = {"lte": self.max_cloud_cover}

        items = self._search(epoch.collection_id, roi, start, end, query or None)
        logger.info(
            "%s: %d %s scene(s) %s..%s", epoch.label, len(items), profile.name, start, end
        )
        if not items:
            return empty_stack(profile.all_band_ids)

        resolution = (
            self.sentinel2_resolution
            if profile.sensor_family == "sentinel2"
            else self.landsat_resolution
        )
        stack = self._stack(
            items, [profile.asset_key(b) for b in profile.all_band_ids], roi, resolution
        )
        stack = stack.assign_coords(band=profile.all_band_ids)

        if profile.sensor_family == "sentinel2":
            stack = self._harmonize_sentinel2(stack, items, profile)
        return self._merge_duplicate_times(stack)

    def sar_scenes(self, roi: RegionOfInterest, start: str, end: str) -> xr.DataArray:
        """Sentinel-1 RTC VV scenes with per-scene polarisation and mode coords."""
        items = self._search(SAR_COLLECTION, roi, start, end)
        logger.info("SAR: %d scene(s) %s..%s", len(items), start, end)
        if not items:
            return empty_stack(["VV"])

        stack = self._stack(items, ["vv"], roi, self.sar_resolution)
        stack = stack.assign_coords(
            band=["VV"],
            polarizations=(
                "time",
                [",".join(i.properties.get("sar:polarizations", [])) for i in items],
            ),
            instrument_mode=(
                "time",
                [str(i.properties.get("sar:instrument_mode", "")) for i in items],
            ),
        )
        return self._merge_duplicate_times(stack)

    def elevation(self, roi: RegionOfInterest) -> Optional[xr.DataArray]:
        """NASADEM elevation mosaic as a ``(band, y, x)`` array, or ``None``."""
        items = list(self._catalog.search(
            collections=[DEM_COLLECTION], bbox=roi.bbox_wgs84
        ).items())
        if not items:
            logger.warning("No %s tiles cover %s.", DEM_COLLECTION, roi.label)
            return None

        stack = self._stack(items, ["elevation"], roi, self.landsat_resolution)
        dem = stack.isel(band=0).median(dim="time", skipna=True)
        dem = as_band(dem.drop_vars("band", errors="ignore"), "elevation")
        dem.attrs.update({"units": "metres", "long_name": "Elevation (m)"})
        return dem

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _search(
        self,
        collection: str,
        roi: RegionOfInterest,
        start: str,
        end: str,
        query: Optional[dict] = None,
    ) -> List:
        search = self._catalog.search(
            collections=[collection],
            bbox=roi.bbox_wgs84,
            datetime=stac_interval(start, end),
            query=query,
        )
        return sorted(search.items(), key=lambda item: item.datetime)

    def _stack(
        self,
        items: Sequence,
        assets: Sequence[str],
        roi: RegionOfInterest,
        resolution: float,
    ) -> xr.DataArray:
        stack = stackstac.stack(
            items,
            assets=list(assets),
            bounds_latlon=roi.bbox_wgs84,
            epsg=roi.epsg,
            resolution=resolution,
            dtype="float32",  # type: ignore[arg-type]
            fill_value=np.float32("nan"),  # type: ignore[arg-type]
            rescale=False,   # masking.py applies the collection's own scale
            sortby_date=False,
            chunksize={"x": self.chunk_size, "y": self.chunk_size},  # type: ignore[arg-type]
        )
        return drop_band_coords(stack)

    @staticmethod
    def _harmonize_sentinel2(
        stack: xr.DataArray, items: Sequence, profile: BandProfile
    ) -> xr.DataArray:
        """Rebuild QA60 from SCL and remove the baseline-04.00 DN offset."""
        offsets = np.array(
            [
                _S2_BOA_OFFSET if _processing_baseline(i) >= _S2_OFFSET_BASELINE else 0.0
                for i in items
            ],
            dtype="float32",
        )
        refl = stack.sel(band=profile.band_ids)
        refl = (refl - xr.DataArray(offsets, dims="time")).clip(min=0)

        scl = single_band(stack, profile.qa_band)
        qa60 = (
            xr.where(scl.isin(_SCL_OPAQUE_CLOUD), 1 << 10, 0)
            + xr.where(scl.isin(_SCL_CIRRUS), 1 << 11, 0)
        ).where(scl.notnull()).astype("float32")

        out = xr.concat([refl, as_band(qa60, profile.qa_band)], dim="band")
        out.attrs.update(stack.attrs)
        return out

    @staticmethod
    def _merge_duplicate_times(da: xr.DataArray) -> xr.DataArray:
        """Mosaic granules that share a timestamp into one scene.

        Tiles of one pass carry the same acquisition time. Each pixel is
        taken whole from the first granule with any finite band there,
        so a pixel never mixes bands from two tiles.
        """
        times = da["time"].values
        _, first = np.unique(times, return_index=True)
        first = np.sort(first)
        if len(first) == len(times):
            return da

        ordered = da.transpose("time", ...)
        band_axis = ordered.dims.index("band") - 1
        merged = []
        for i in first:
            same = np.flatnonzero(times == times[i])
            data = ordered.data[same[0]]
            for j in same[1:]:
                hole = np.isnan(data).all(axis=band_axis, keepdims=True)
                data = np.where(hole, ordered.data[j], data)
            merged.append(data)
        logger.debug("Merged %d granule(s) into %d scene(s).", len(times), len(first))
        return ordered.isel(time=first).copy(data=np.stack(merged))
