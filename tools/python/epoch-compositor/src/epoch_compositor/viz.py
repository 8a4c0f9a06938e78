"""
viz.py
======
Interactive folium map of the basin epochs.

``LayerRenderer.render(raster, style, name, visible)`` turns any
``(band, y, x)`` raster on the region's UTM grid into a toggleable
Leaflet image overlay.  ``build_basin_map`` assembles the standard
layer stack:

  - Topography (elevation, hidden)
  - Optical baseline mosaics (true colour; false colour for Sentinel-2)
  - SAR backscatter composites (hidden)
  - Per-epoch peak water (MNDWI > 0.2), vegetation (NDVI > 0.3, hidden)
    and soil (BSI > 0.1, hidden)
  - Region boundary, a "Peak Water Years" legend and an elevation legend
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import matplotlib
matplotlib.use("Agg")  # non-interactive backend safe for headless execution
import matplotlib.colors as mcolors
import rioxarray  # noqa: F401 -- activates the .rio accessor
import xarray as xr
from PIL import Image
import folium
import folium.raster_layers
from branca.element import Element

from shared.python.exceptions import OutputWriteError

from .aoi import RegionOfInterest
from .config import EpochConfig
from .peak import BaselineMosaic, EpochComposite
from .sar import SARComposite

logger = logging.getLogger("basinscope.epoch_compositor.viz")

WATER_COLORS = ("#FF0000", "#FFA500", "#FFFF00", "#00FF00", "#00FFFF")
VEGETATION_PALETTE = ("#edf8e9", "#bae4b3", "#74c476", "#238b45")
SOIL_PALETTE = ("#fee391", "#fec44f", "#fe9929", "#cc4c02")
ELEVATION_PALETTE = ("#1a9850", "#91cf60", "#d9ef8b", "#fee08b", "#fc8d59", "#d73027")
ELEVATION_CLASSES = ("400 - 500", "500 - 650", "650 - 800", "800 - 950", "950 - 1100", "> 1100")

WATER_THRESHOLD = 0.2
VEGETATION_THRESHOLD = 0.3
SOIL_THRESHOLD = 0.1


@dataclass(frozen=True)
class LayerStyle:
    """How a raster is drawn.

    One band is coloured through *palette* between *vmin* and *vmax*;
    three bands are drawn as RGB stretched over the same range.  With a
    *threshold*, single-band pixels at or below it are transparent.
    """

    bands: Tuple[str, ...]
    vmin: float = 0.0
    vmax: float = 1.0
    palette: Tuple[str, ...] = ()
    threshold: Optional[float] = None
    opacity: float = 0.8


def _colormap(palette: Sequence[str]) -> mcolors.Colormap:
    if len(palette) == 1:
        return mcolors.ListedColormap(list(palette))
    return mcolors.LinearSegmentedColormap.from_list("layer", list(palette))


def _png_b64(rgba: np.ndarray) -> str:
    img = Image.fromarray(rgba)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def style_to_rgba(data: np.ndarray, style: LayerStyle) -> np.ndarray:
    """Colour a ``(band, y, x)`` array; NaN (and sub-threshold) pixels are transparent."""
    span = (style.vmax - style.vmin) or 1.0
    if data.shape[0] == 3:
        scaled = np.clip((data - style.vmin) / span, 0.0, 1.0)
        rgb = np.nan_to_num(scaled, nan=0.0)
        rgba = np.zeros((*data.shape[1:], 4), dtype=np.uint8)
        rgba[..., :3] = (np.moveaxis(rgb, 0, -1) * 255).astype(np.uint8)
        rgba[..., 3] = np.where(np.isnan(data).any(axis=0), 0, 255)
        return rgba

    arr = data[0]
    hidden = np.isnan(arr)
    if style.threshold is not None:
        with np.errstate(invalid="ignore"):
            hidden |= ~(arr > style.threshold)
    norm = mcolors.Normalize(vmin=style.vmin, vmax=style.vmax, clip=True)
    cmap = _colormap(style.palette or ("#000000", "#ffffff"))
    rgba = np.array(cmap(norm(np.nan_to_num(arr, nan=style.vmin)), bytes=True), dtype=np.uint8)
    rgba[hidden, 3] = 0
    return rgba


class LayerRenderer:
    """Adds styled raster overlays to a folium map.

    Parameters
    ----------
    fmap:
        Target map.
    crs:
        CRS of every raster handed to :meth:`render`.
    """

    def __init__(self, fmap: folium.Map, crs: str) -> None:
        self.fmap = fmap
        self.crs = crs
        self.layer_names: List[str] = []

    def render(
        self,
        raster: xr.DataArray,
        style: LayerStyle,
        name: str,
        visible: bool,
    ) -> folium.FeatureGroup:
        """Reproject *raster* to WGS84, colour it and add it as layer *name*."""
        data = raster.sel(band=list(style.bands))
        geo = data.rio.write_crs(self.crs).rio.reproject("EPSG:4326")
        values = np.asarray(geo.transpose("band", "y", "x").values, dtype="float64")

        x = geo["x"].values
        y = geo["y"].values
        half_x = abs(float(x[1] - x[0])) / 2.0 if len(x) > 1 else 0.0
        half_y = abs(float(y[0] - y[1])) / 2.0 if len(y) > 1 else 0.0
        bounds = [
            [float(y.min()) - half_y, float(x.min()) - half_x],
            [float(y.max()) + half_y, float(x.max()) + half_x],
        ]

        url = f"data:image/png;base64,{_png_b64(style_to_rgba(values, style))}"
        group = folium.FeatureGroup(name=name, show=visible)
        folium.raster_layers.ImageOverlay(
            image=url, bounds=bounds, opacity=style.opacity, name=name
        ).add_to(group)
        group.add_to(self.fmap)
        self.layer_names.append(name)
        logger.debug("Rendered layer '%s' (visible=%s)", name, visible)
        return group


def legend_html(title: str, rows: Sequence[Tuple[str, str]], position: str) -> str:
    """Fixed-position HTML legend; *position* is e.g. ``"bottom: 30px; left: 30px"``."""
    items = "".join(
        f'<div style="margin:2px 0"><span style="display:inline-block;width:16px;'
        f'height:16px;background:{color};border:1px solid #000;'
        f'vertical-align:middle"></span>'
        f'<span style="margin-left:6px">{text}</span></div>'
        for color, text in rows
    )
    return (
        f'<div style="position:fixed;{position};z-index:9999;background:white;'
        f'padding:10px;border:1px solid grey;font-size:12px">'
        f'<b style="font-size:14px">{title}</b>{items}</div>'
    )


def build_basin_map(
    roi: RegionOfInterest,
    peaks: Sequence[EpochComposite],
    baselines: Sequence[Tuple[EpochConfig, BaselineMosaic]] = (),
    sar: Sequence[SARComposite] = (),
    elevation: Optional[xr.DataArray] = None,
    tiles: str = "CartoDB positron",
    epoch_labels: Optional[Sequence[str]] = None,
) -> folium.Map:
    """Assemble the basin map from whichever products are available.

    Water colours follow each label's slot in *epoch_labels* (the full
    epoch table), so an unavailable year does not shift later colours.
    """
    slots = list(epoch_labels) if epoch_labels is not None else [p.label for p in peaks]
    b = roi.bbox_wgs84
    centre = [(b[1] + b[3]) / 2.0, (b[0] + b[2]) / 2.0]
    fmap = folium.Map(location=centre, tiles=tiles, zoom_start=10)
    renderer = LayerRenderer(fmap, f"EPSG:{roi.epsg}")

    if elevation is not None:
        renderer.render(
            elevation,
            LayerStyle(("elevation",), vmin=400, vmax=1200, palette=ELEVATION_PALETTE),
            "Topography (Elevation)",
            visible=False,
        )

    for i, (epoch, mosaic) in enumerate(baselines):
        p = epoch.profile
        tag = f" ({epoch.short_name})" if epoch.short_name else ""
        renderer.render(
            mosaic.image,
            LayerStyle((p.resolve("red"), p.resolve("green"), p.resolve("blue")), 0.0, 0.3),
            f"Optical {epoch.label}{tag}",
            visible=i in (0, len(baselines) - 1),
        )
        if p.sensor_family == "sentinel2":
            renderer.render(
                mosaic.image,
                LayerStyle((p.resolve("nir"), p.resolve("red"), p.resolve("green")), 0.0, 0.4),
                f"False Color {epoch.label} (Veg Focus)",
                visible=False,
            )

    for composite in sar:
        if composite.available:
            renderer.render(
                composite.image,
                LayerStyle(("VV",), vmin=-25, vmax=0, palette=("#000000", "#ffffff")),
                f"SAR {composite.label} (S1)",
                visible=False,
            )

    legend_rows = []
    for i, peak in enumerate(peaks):
        slot = slots.index(peak.label) if peak.label in slots else i
        color = WATER_COLORS[slot % len(WATER_COLORS)]
        legend_rows.append((color, peak.label))
        renderer.render(
            peak.image,
            LayerStyle(("MNDWI",), palette=(color,), threshold=WATER_THRESHOLD, opacity=1.0),
            f"Peak Water {peak.label}",
            visible=True,
        )
        renderer.render(
            peak.image,
            LayerStyle(("NDVI",), palette=VEGETATION_PALETTE, threshold=VEGETATION_THRESHOLD),
            f"Vegetation {peak.label}",
            visible=False,
        )
        renderer.render(
            peak.image,
            LayerStyle(("BSI",), palette=SOIL_PALETTE, threshold=SOIL_THRESHOLD),
            f"Soil Index {peak.label}",
            visible=False,
        )

    boundary = folium.FeatureGroup(name="ROI Boundary", show=True)
    folium.GeoJson(
        roi.gdf_wgs84.__geo_interface__,
        style_function=lambda _: {"fillColor": "none", "color": "red", "weight": 2},
    ).add_to(boundary)
    boundary.add_to(fmap)

    root = fmap.get_root()
    if legend_rows:
        root.html.add_child(Element(
            legend_html("Peak Water Years", legend_rows, "bottom: 30px; left: 30px")
        ))
    if elevation is not None:
        root.html.add_child(Element(legend_html(
            "Elevation (m)",
            list(zip(ELEVATION_PALETTE, ELEVATION_CLASSES)),
            "bottom: 30px; right: 30px",
        )))

    folium.LayerControl(collapsed=False).add_to(fmap)
    return fmap


def save_map(fmap: folium.Map, path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fmap.save(str(path))
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Map written to %s", path)
    return path
