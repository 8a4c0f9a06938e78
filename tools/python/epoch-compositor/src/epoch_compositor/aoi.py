"""
aoi.py
======
Define the basin region of interest from multiple input types:
  - Vector file (GeoJSON, Shapefile, GeoPackage)
  - Bounding box [min_lon, min_lat, max_lon, max_lat]
  - Polygon as a list of (lon, lat) coordinate pairs
  - A shapely geometry in any CRS

Every loader returns an immutable ``RegionOfInterest`` that is passed
explicitly to each pipeline stage.  ``clip_to_roi`` masks a raster grid
to the region geometry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Tuple

import geopandas as gpd
import numpy as np
import xarray as xr
from pyproj import CRS
from rasterio.features import geometry_mask
from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from .raster import grid_transform

logger = logging.getLogger("basinscope.epoch_compositor.aoi")

VECTOR_EXTENSIONS = (".geojson", ".json", ".shp", ".gpkg")


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegionOfInterest:
    """The analysis region in the representations the pipeline needs."""

    # Dissolved geometry in WGS84 (EPSG:4326)
    gdf_wgs84: gpd.GeoDataFrame

    # (min_lon, min_lat, max_lon, max_lat) for STAC queries
    bbox_wgs84: Tuple[float, float, float, float]

    # Best-fit UTM zone from the region centroid
    utm_crs: CRS

    # Dissolved geometry reprojected to UTM
    gdf_utm: gpd.GeoDataFrame

    # (minx, miny, maxx, maxy) in UTM metres; the statistics and export region
    bbox_utm: Tuple[float, float, float, float]

    label: str

    @property
    def epsg(self) -> int:
        return int(self.utm_crs.to_epsg())

    @property
    def geometry_utm(self) -> BaseGeometry:
        return self.gdf_utm.geometry.iloc[0]

    @property
    def area_km2(self) -> float:
        return float(self.gdf_utm.area.sum()) / 1e6

    def __repr__(self) -> str:  # noqa: D105
        b = self.bbox_wgs84
        return (
            f"<RegionOfInterest '{self.label}' "
            f"bbox=({b[0]:.4f},{b[1]:.4f},{b[2]:.4f},{b[3]:.4f}) "
            f"epsg={self.epsg}>"
        )

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    @classmethod
    def from_file(cls, path: Path, layer: str | None = None) -> "RegionOfInterest":
        """Read and dissolve every feature of a vector file.

        Raises:
            InputValidationError: If the file is missing, has an
                unsupported extension, cannot be read, or is empty.
        """
        path = Path(path)
        Validators.assert_file_exists(path)
        Validators.assert_supported_extension(path, VECTOR_EXTENSIONS)
        try:
            gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
        except Exception as exc:
            raise InputValidationError(
                f"Failed to read region file '{path}': {exc}"
            ) from exc
        if gdf.empty:
            raise InputValidationError(f"Region file '{path}' has no features.")
        return _build_region(gdf, label=layer or path.stem)

    @classmethod
    def from_bbox(
        cls,
        min_lon: float,
        min_lat: float,
        max_lon: float,
        max_lat: float,
    ) -> "RegionOfInterest":
        geom = box(min_lon, min_lat, max_lon, max_lat)
        gdf = gpd.GeoDataFrame(geometry=[geom], crs="EPSG:4326")
        label = f"bbox({min_lon:.3f},{min_lat:.3f},{max_lon:.3f},{max_lat:.3f})"
        return _build_region(gdf, label=label)

    @classmethod
    def from_polygon(
        cls, coordinates: Sequence[Tuple[float, float]]
    ) -> "RegionOfInterest":
        """Region from ``(lon, lat)`` pairs; the ring is closed automatically."""
        coords = list(coordinates)
        if len(coords) < 3:
            raise InputValidationError(
                f"A polygon needs at least 3 vertices, got {len(coords)}."
            )
        if coords[0] != coords[-1]:
            coords.append(coords[0])
        gdf = gpd.GeoDataFrame(geometry=[Polygon(coords)], crs="EPSG:4326")
        return _build_region(gdf, label="User-defined polygon")

    @classmethod
    def from_geometry(
        cls,
        geometry: BaseGeometry,
        crs: str | CRS = "EPSG:4326",
        label: str = "Geometry",
    ) -> "RegionOfInterest":
        gdf = gpd.GeoDataFrame(geometry=[geometry], crs=crs)
        return _build_region(gdf, label=label)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utm_crs_from_lonlat(lon: float, lat: float) -> CRS:
    zone = int((lon + 180) / 6) + 1
    base = 32600 if lat >= 0 else 32700
    return CRS.from_epsg(base + zone)


def _build_region(gdf: gpd.GeoDataFrame, label: str) -> RegionOfInterest:
    """Dissolve, reproject, and package a GeoDataFrame."""
    if gdf.crs is None:
        logger.warning("Region '%s' has no CRS -- assuming WGS84 (EPSG:4326).", label)
        gdf = gdf.set_crs("EPSG:4326")
    gdf_wgs84 = gdf.to_crs("EPSG:4326")

    dissolved = gpd.GeoDataFrame(
        geometry=[unary_union(gdf_wgs84.geometry)], crs="EPSG:4326"
    )
    b = dissolved.total_bounds
    bbox_wgs84 = (float(b[0]), float(b[1]), float(b[2]), float(b[3]))

    utm = _utm_crs_from_lonlat((b[0] + b[2]) / 2.0, (b[1] + b[3]) / 2.0)
    gdf_utm = dissolved.to_crs(utm)
    u = gdf_utm.total_bounds
    bbox_utm = (float(u[0]), float(u[1]), float(u[2]), float(u[3]))

    region = RegionOfInterest(
        gdf_wgs84=dissolved,
        bbox_wgs84=bbox_wgs84,
        utm_crs=utm,
        gdf_utm=gdf_utm,
        bbox_utm=bbox_utm,
        label=label,
    )
    logger.debug("Resolved %r (%.2f km2)", region, region.area_km2)
    return region


# ---------------------------------------------------------------------------
# Clipping
# ---------------------------------------------------------------------------

def roi_mask(da: xr.DataArray, roi: RegionOfInterest) -> xr.DataArray:
    """Boolean ``(y, x)`` array, ``True`` where the pixel centre is inside *roi*.

    *da* must be on the region's UTM grid.
    """
    inside = geometry_mask(
        [roi.geometry_utm],
        out_shape=(da.sizes["y"], da.sizes["x"]),
        transform=grid_transform(da),
        invert=True,
    )
    return xr.DataArray(
        inside,
        dims=("y", "x"),
        coords={"y": da["y"].values, "x": da["x"].values},
    )


def clip_to_roi(da: xr.DataArray, roi: RegionOfInterest) -> xr.DataArray:
    """Return *da* with every pixel outside *roi* set to NaN."""
    out = da.where(roi_mask(da, roi))
    out.attrs.update(da.attrs)
    return out
