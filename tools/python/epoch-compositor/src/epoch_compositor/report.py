"""
Epoch Compositor — Statistics & Reporting
=========================================
Read-only projections of epoch composites: the flat per-epoch record,
the console report, JSON/CSV report files and the comparative
spectral-trend chart.

Classes:
    EpochRecord    One row ``{year, MNDWI_value, NDVI_value, BSI_value, peak_month}``.

Functions:
    log_epoch_report      Log the yearly peak summary of one composite.
    write_report          Serialise records to JSON or CSV.
    plot_spectral_trends  Line chart of water / vegetation / soil by year.
"""

from __future__ import annotations

import csv
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Optional, Sequence

import matplotlib
matplotlib.use("Agg")  # non-interactive backend safe for headless execution
import matplotlib.pyplot as plt

from shared.python.exceptions import InputValidationError, OutputWriteError

from .peak import EpochComposite

logger = logging.getLogger("basinscope.epoch_compositor.report")

TREND_SERIES = (
    ("mndwi", "Water (MNDWI)", "#2563eb"),
    ("ndvi", "Veg (NDVI)", "#16a34a"),
    ("bsi", "Soil (BSI)", "#92400e"),
)

RECORD_FIELDS = [
    "year", "MNDWI_value", "NDVI_value", "BSI_value", "peak_month",
    "sensor", "scene_count", "status",
]


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or math.isnan(value):
        return None
    return float(value)


@dataclass(frozen=True)
class EpochRecord:
    """Flat summary of one epoch.

    ``status`` is ``"ok"`` for a computed composite; otherwise it says why
    the epoch has no values (e.g. ``"unavailable: no scenes"``).
    """

    year: str
    mndwi: Optional[float]
    ndvi: Optional[float]
    bsi: Optional[float]
    peak_month: Optional[int]
    sensor: str = ""
    scene_count: int = 0
    status: str = "ok"

    @classmethod
    def from_composite(cls, composite: EpochComposite) -> "EpochRecord":
        s = composite.statistics
        return cls(
            year=s.year,
            mndwi=_finite(s.mndwi),
            ndvi=_finite(s.ndvi),
            bsi=_finite(s.bsi),
            peak_month=s.peak_month,
            sensor=composite.sensor,
            scene_count=composite.scene_count,
        )

    @classmethod
    def unavailable(cls, year: str, sensor: str, reason: str) -> "EpochRecord":
        return cls(
            year=str(year), mndwi=None, ndvi=None, bsi=None, peak_month=None,
            sensor=sensor, status=f"unavailable: {reason}",
        )

    @property
    def available(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "MNDWI_value": self.mndwi,
            "NDVI_value": self.ndvi,
            "BSI_value": self.bsi,
            "peak_month": self.peak_month,
            "sensor": self.sensor,
            "scene_count": self.scene_count,
            "status": self.status,
        }


def _fmt(value: Optional[float]) -> str:
    return "no data" if value is None or math.isnan(value) else f"{value:.4f}"


def log_epoch_report(composite: EpochComposite) -> None:
    """Log the yearly peak summary (peak water value, month, vegetation)."""
    s = composite.statistics
    logger.info("--- Yearly Analysis: %s ---", composite.label)
    logger.info("Peak Water Value (MNDWI): %s", _fmt(s.mndwi))
    logger.info(
        "Peak Occurrence Month: %s",
        s.peak_month if s.peak_month is not None else "no data",
    )
    logger.info("Vegetation at Peak (NDVI): %s", _fmt(s.ndvi))


def write_report(
    records: Sequence[EpochRecord],
    path: Path,
    fmt: Literal["json", "csv"] = "json",
    indent: int = 2,
) -> Path:
    """Write *records* to *path* as JSON or CSV.

    Raises:
        InputValidationError: On an unknown *fmt*.
        OutputWriteError: If the file cannot be written.
    """
    if fmt not in ("json", "csv"):
        raise InputValidationError(f"Unsupported report format '{fmt}'. Use 'json' or 'csv'.")
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "json":
            with open(path, "w", encoding="utf-8") as fh:
                json.dump({"epochs": [r.to_dict() for r in records]}, fh, indent=indent)
        else:
            with open(path, "w", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=RECORD_FIELDS)
                writer.writeheader()
                for record in records:
                    writer.writerow(record.to_dict())
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Report written to %s", path)
    return path


def plot_spectral_trends(
    records: Sequence[EpochRecord],
    path: Path,
    basin_name: str = "Al Gash Basin",
    figsize=(10, 5),
) -> Path:
    """Save a line chart of the three index medians keyed by year.

    Unavailable epochs are left out of the series.
    """
    rows = [r for r in records if r.available]
    years = [r.year for r in rows]
    title = f"{basin_name}: Spectral Trends"
    if years:
        title += f" ({years[0]}-{years[-1]})"

    fig, ax = plt.subplots(figsize=figsize)
    for attr, label, color in TREND_SERIES:
        values = [getattr(r, attr) if getattr(r, attr) is not None else float("nan") for r in rows]
        ax.plot(years, values, color=color, linewidth=3, marker="o", markersize=7, label=label)
    ax.axhline(0.0, color="#9ca3af", linewidth=0.8)
    ax.set_xlabel("Year")
    ax.set_ylabel("Region median")
    ax.set_title(title)
    ax.legend(fontsize=9)
    ax.grid(axis="y", alpha=0.3)
    fig.tight_layout()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=150)
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    finally:
        plt.close(fig)
    logger.info("Trend chart written to %s", path)
    return path
