"""
peak.py
=======
Temporal reductions over a scene stack: the per-pixel quality mosaic
that finds each epoch year's flood-peak scene, the plain median
baseline mosaic, and the region-median statistics reported per epoch.

Quality mosaic ("argmax-and-carry")
-----------------------------------
For every pixel independently, the scene with the largest criterion
value (MNDWI by default) wins and *all* of its bands are carried into
the composite, so NDVI, BSI and month describe the same acquisition as
the peak water value.  NaN criterion values never win.  Ties go to the
lowest time index.  A pixel with no valid criterion in any scene is NaN
in every band.

Region statistics
-----------------
The composite is sampled at the centres of an ``analysis_scale`` metre
grid laid over the region's UTM bounding box (nearest pixel), and the
NaN-aware median of the samples is taken per band.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import xarray as xr

from shared.python.exceptions import EmptyCollectionError, RasterError
from shared.python.validators import Validators

from .aoi import RegionOfInterest
from .bands import BandProfile
from .indices import MONTH_BAND, IndexStrategy, add_index_bands
from .masking import apply_quality_mask
from .raster import STACK_DIMS, drop_band_coords, grid_resolution

logger = logging.getLogger("basinscope.epoch_compositor.peak")

PEAK_BANDS = ("MNDWI", "NDVI", "BSI", MONTH_BAND)

DEFAULT_ANALYSIS_SCALE = 1000.0
DEFAULT_MAX_PIXELS = 1e9


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> Optional[int]:
    """Nearest integer with halves rounded up; ``None`` for NaN."""
    if value is None or math.isnan(value):
        return None
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class EpochStatistics:
    """Region medians of one epoch composite."""

    year: str
    mndwi: float
    ndvi: float
    bsi: float
    month: float
    peak_month: Optional[int]

    @classmethod
    def from_medians(cls, year: str, medians: Dict[str, float]) -> "EpochStatistics":
        month = medians.get(MONTH_BAND, float("nan"))
        return cls(
            year=str(year),
            mndwi=medians.get("MNDWI", float("nan")),
            ndvi=medians.get("NDVI", float("nan")),
            bsi=medians.get("BSI", float("nan")),
            month=month,
            peak_month=round_half_up(month),
        )

    def as_properties(self) -> Dict[str, object]:
        """The composite's summary properties, keyed as they are exported."""
        return {
            "year_label": self.year,
            "MNDWI_v": self.mndwi,
            "NDVI_v": self.ndvi,
            "BSI_v": self.bsi,
            "peak_month": self.peak_month,
        }


@dataclass(frozen=True)
class EpochComposite:
    """Flood-peak composite for one epoch year.

    ``image`` has dims ``(band, y, x)`` and carries every scene band
    plus MNDWI, NDVI, BSI and month from the winning scene of each pixel.
    """

    label: str
    year: int
    image: xr.DataArray
    statistics: EpochStatistics
    scene_count: int
    sensor: str
    date_range: Tuple[str, str]

    @property
    def index_image(self) -> xr.DataArray:
        return self.image.sel(band=list(PEAK_BANDS))

    def __repr__(self) -> str:  # noqa: D105
        s = self.statistics
        return (
            f"<EpochComposite {self.label} ({self.sensor}) scenes={self.scene_count} "
            f"MNDWI={s.mndwi:.3f} NDVI={s.ndvi:.3f} BSI={s.bsi:.3f} "
            f"peak_month={s.peak_month}>"
        )


@dataclass(frozen=True)
class BaselineMosaic:
    """Per-pixel temporal median over a multi-year baseline window."""

    label: str
    image: xr.DataArray
    scene_count: int
    sensor: str
    date_range: Tuple[str, str]


# ---------------------------------------------------------------------------
# Reductions
# ---------------------------------------------------------------------------

def quality_mosaic(stack: xr.DataArray, criterion: str = "MNDWI") -> xr.DataArray:
    """Per-pixel argmax-and-carry composite of a ``(time, band, y, x)`` stack.

    Raises:
        BandResolutionError: If *criterion* is not a band of *stack*.
        RasterError: If *stack* has no scenes.
    """
    Validators.assert_bands_present(stack["band"].values, [criterion], "quality mosaic")
    if stack.sizes.get("time", 0) == 0:
        raise RasterError("Cannot build a quality mosaic from zero scenes.")

    ordered = drop_band_coords(stack).transpose(*STACK_DIMS)
    per_scene = [n for n, c in ordered.coords.items() if "time" in c.dims]
    ordered = ordered.drop_vars(per_scene)

    crit = ordered.sel(band=criterion, drop=True)
    has_valid = crit.notnull().any("time")
    winner = crit.fillna(-np.inf).argmax("time")
    chosen = xr.DataArray(np.arange(ordered.sizes["time"]), dims="time") == winner

    # Lazy: only the winning scene survives the mask, so the max is its value
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        picked = ordered.where(chosen).max("time", skipna=True)
    mosaic = picked.where(has_valid).transpose("band", "y", "x").astype("float32")
    mosaic.attrs.update(stack.attrs)
    return mosaic


def median_composite(stack: xr.DataArray) -> xr.DataArray:
    """Pixel-wise temporal median, skipping NaN."""
    if stack.sizes.get("time", 0) == 0:
        raise RasterError("Cannot build a median composite from zero scenes.")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        med = drop_band_coords(stack).median(dim="time", skipna=True)
        med = med.compute(scheduler="synchronous")
    med.attrs.update(stack.attrs)
    return med.astype("float32")


def _sample_centres(lo: float, hi: float, scale: float) -> np.ndarray:
    """Centres of the *scale*-sized cells tiling ``[lo, hi]``; the last may be partial."""
    n = max(1, int(math.ceil((hi - lo) / scale - 1e-6)))
    starts = lo + scale * np.arange(n)
    ends = np.minimum(starts + scale, hi)
    return (starts + ends) / 2.0


def region_statistics(
    image: xr.DataArray,
    roi: RegionOfInterest,
    scale: float = DEFAULT_ANALYSIS_SCALE,
    max_pixels: float = DEFAULT_MAX_PIXELS,
    bands: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """Median of each band over the region's bounding box at *scale* metres.

    Raises:
        RasterError: If the sample grid exceeds *max_pixels* cells.
    """
    if scale <= 0:
        raise RasterError(f"Analysis scale must be positive, got {scale}.")
    minx, miny, maxx, maxy = roi.bbox_utm
    xs = _sample_centres(minx, maxx, scale)
    ys = _sample_centres(miny, maxy, scale)[::-1]
    if len(xs) * len(ys) > max_pixels:
        raise RasterError(
            f"Region statistics need {len(xs) * len(ys):,} cells at {scale} m, "
            f"more than max_pixels={max_pixels:,.0f}."
        )

    if bands is not None:
        image = image.sel(band=list(bands))
    res_x, res_y = grid_resolution(image)
    sampled = image.reindex(
        x=xs, y=ys, method="nearest", tolerance=max(res_x, res_y)
    ).compute(scheduler="synchronous")

    flat = np.asarray(sampled.transpose("band", "y", "x").values, dtype="float64")
    flat = flat.reshape(flat.shape[0], -1)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        medians = np.nanmedian(flat, axis=1)

    return {str(b): float(m) for b, m in zip(sampled["band"].values, medians)}


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

def year_window(year: int) -> Tuple[str, str]:
    """Calendar-year filter window ``[Jan 1, Jan 1 next year)``."""
    return f"{year:04d}-01-01", f"{year + 1:04d}-01-01"


class YearlyPeakDetector:
    """Builds the flood-peak :class:`EpochComposite` for one epoch year.

    Parameters
    ----------
    roi:
        Region every stage is clipped to and summarised over.
    criterion:
        Band whose per-pixel maximum selects the winning scene.
    analysis_scale:
        Sample spacing (metres) of the region statistics.
    max_pixels:
        Upper bound on region-statistics sample cells.
    strategies:
        Index strategies to compute; defaults to MNDWI, NDVI and BSI.
    """

    def __init__(
        self,
        roi: RegionOfInterest,
        criterion: str = "MNDWI",
        analysis_scale: float = DEFAULT_ANALYSIS_SCALE,
        max_pixels: float = DEFAULT_MAX_PIXELS,
        strategies: Optional[Sequence[IndexStrategy]] = None,
    ) -> None:
        self.roi = roi
        self.criterion = criterion
        self.analysis_scale = analysis_scale
        self.max_pixels = max_pixels
        self.strategies = strategies

    def detect(
        self,
        label: str,
        year: int,
        stack: xr.DataArray,
        profile: BandProfile,
    ) -> EpochComposite:
        """Mask, index, mosaic and summarise the scenes of *year*.

        Scenes outside the calendar year are ignored.

        Raises:
            EmptyCollectionError: If no scene falls in *year*; raised
                before any reduction runs.
            BandResolutionError: If the stack lacks a profile band.
        """
        start, end = year_window(year)
        if stack.sizes.get("time", 0):
            in_year = np.flatnonzero(stack["time"].dt.year.values == year)
            stack = stack.isel(time=in_year)
        scene_count = int(stack.sizes.get("time", 0))
        if scene_count == 0:
            raise EmptyCollectionError(profile.name, start, end)

        logger.info("%s: peak detection over %d %s scene(s)", label, scene_count, profile.name)
        masked = apply_quality_mask(stack, profile, self.roi)
        enriched = add_index_bands(masked, profile, self.strategies)
        image = quality_mosaic(enriched, self.criterion)

        summary_bands = [b for b in PEAK_BANDS if b in image["band"].values]
        medians = region_statistics(
            image, self.roi, self.analysis_scale, self.max_pixels, bands=summary_bands
        )
        statistics = EpochStatistics.from_medians(label, medians)

        return EpochComposite(
            label=label,
            year=year,
            image=image,
            statistics=statistics,
            scene_count=scene_count,
            sensor=profile.name,
            date_range=(start, end),
        )


def build_baseline(
    label: str,
    window: Tuple[str, str],
    stack: xr.DataArray,
    profile: BandProfile,
    roi: RegionOfInterest,
) -> BaselineMosaic:
    """Masked median mosaic over a multi-year *window*.

    Raises:
        EmptyCollectionError: If *stack* has no scenes.
    """
    scene_count = int(stack.sizes.get("time", 0))
    if scene_count == 0:
        raise EmptyCollectionError(profile.name, window[0], window[1])
    masked = apply_quality_mask(stack, profile, roi)
    image = median_composite(masked.sel(band=profile.band_ids))
    logger.info("%s: baseline median of %d scene(s) %s..%s", label, scene_count, *window)
    return BaselineMosaic(
        label=label,
        image=image,
        scene_count=scene_count,
        sensor=profile.name,
        date_range=tuple(window),
    )
