"""
Epoch Compositor — Configuration
================================
The epoch table and run settings, as dataclasses, plus the JSON loader.

Each epoch is one row of ``{label, year, profile, collection, platforms,
baseline window, SAR window, export scale}``; the pipeline iterates the
table generically, so adding an epoch is a config change.

JSON layout::

    {
      "analysis_scale": 1000,
      "max_workers": 4,
      "prefix": "AlGash",
      "epochs": [
        {"label": "1995", "year": 1995, "profile": "landsat_tm_etm",
         "collection_id": "landsat-c2-l2", "platforms": ["landsat-5"],
         "baseline_window": ["1994-01-01", "1996-12-31"]}
      ]
    }

Every key is optional; omitted keys keep their defaults and an omitted
``epochs`` list keeps :data:`DEFAULT_EPOCHS`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from shared.python.exceptions import BandResolutionError, InputValidationError
from shared.python.validators import Validators

from .bands import LANDSAT_OLI, LANDSAT_TM_ETM, SENTINEL2, BandProfile, get_profile
from .peak import year_window

logger = logging.getLogger("basinscope.epoch_compositor.config")

LANDSAT_COLLECTION = "landsat-c2-l2"
SENTINEL2_COLLECTION = "sentinel-2-l2a"


# ---------------------------------------------------------------------------
# Epoch table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EpochConfig:
    """One analysis epoch.

    Attributes:
        label: Epoch label used in layer names, exports and reports.
        year: Calendar year searched for the flood-peak scene.
        profile: Band profile of the sensor generation.
        collection_id: Catalog collection searched for optical scenes.
        platforms: Platform names to keep (e.g. ``("landsat-5",)``);
            empty keeps every platform of the collection.
        baseline_window: ``(start, end)`` of the multi-year median
            baseline, end exclusive; ``None`` skips the baseline.
        sar_window: ``(start, end)`` of the SAR composite; ``None`` when
            the epoch predates Sentinel-1.
        export_scale: Pixel size (m) of the baseline mosaic export.
        short_name: Sensor tag shown in layer names (``"L5"``).
    """

    label: str
    year: int
    profile: BandProfile
    collection_id: str
    platforms: Tuple[str, ...] = ()
    baseline_window: Optional[Tuple[str, str]] = None
    sar_window: Optional[Tuple[str, str]] = None
    export_scale: float = 30.0
    short_name: str = ""

    @property
    def peak_window(self) -> Tuple[str, str]:
        return year_window(self.year)

    @property
    def sensor(self) -> str:
        return self.profile.name

    def validate(self) -> None:
        """Raise :class:`InputValidationError` on an unusable window or scale."""
        for window in (self.peak_window, self.baseline_window, self.sar_window):
            if window is not None:
                Validators.assert_date_range(*window)
        if self.export_scale <= 0:
            raise InputValidationError(
                f"Epoch {self.label}: export_scale must be > 0, got {self.export_scale}."
            )


DEFAULT_EPOCHS: Tuple[EpochConfig, ...] = (
    EpochConfig(
        label="1985", year=1985, profile=LANDSAT_TM_ETM,
        collection_id=LANDSAT_COLLECTION, platforms=("landsat-5",),
        baseline_window=("1984-01-01", "1987-12-31"), short_name="L5",
    ),
    EpochConfig(
        label="1995", year=1995, profile=LANDSAT_TM_ETM,
        collection_id=LANDSAT_COLLECTION, platforms=("landsat-5",),
        baseline_window=("1994-01-01", "1996-12-31"), short_name="L5",
    ),
    EpochConfig(
        label="2005", year=2005, profile=LANDSAT_TM_ETM,
        collection_id=LANDSAT_COLLECTION, platforms=("landsat-7",),
        baseline_window=("2004-01-01", "2006-12-31"), short_name="L7",
    ),
    EpochConfig(
        label="2015", year=2015, profile=LANDSAT_OLI,
        collection_id=LANDSAT_COLLECTION, platforms=("landsat-8",),
        baseline_window=("2014-01-01", "2016-12-31"),
        sar_window=("2014-10-01", "2016-12-31"), short_name="L8",
    ),
    EpochConfig(
        label="2025", year=2025, profile=SENTINEL2,
        collection_id=SENTINEL2_COLLECTION,
        baseline_window=("2024-01-01", "2025-12-31"),
        sar_window=("2024-01-01", "2025-12-31"),
        export_scale=10.0, short_name="S2",
    ),
)


# ---------------------------------------------------------------------------
# Run settings
# ---------------------------------------------------------------------------


@dataclass
class CompositorConfig:
    """Settings for one compositor run.

    Attributes:
        epochs: The epoch table.
        analysis_scale: Sample spacing (m) of the per-epoch region medians.
        stats_max_pixels: Cell budget of the region medians.
        max_workers: Thread pool size for per-epoch work and exports.
        smoothing_radius_m: SAR focal-median radius.
        prefix: Prefix of baseline and SAR export names
            (``<prefix>_Optical_Mosaic_1995``).
        analysis_prefix: Prefix of peak-composite export names
            (``<analysis_prefix>_Analysis_1995``).
        baseline_folder: Export folder for baseline and SAR mosaics.
        analysis_folder: Export folder for peak composites.
        analysis_export_scale: Pixel size (m) of peak-composite exports.
        analysis_max_pixels: Pixel budget of a peak-composite export.
        baseline_max_pixels: Pixel budget of a baseline export.
        sar_export_scale: Pixel size (m) of SAR exports.
        export_retries: Extra attempts per failing export task.
        include_baseline: Build the multi-year baseline mosaics.
        include_sar: Build SAR composites for epochs with a SAR window.
        include_map: Write the interactive HTML map.
        include_exports: Queue GeoTIFF exports.
    """

    epochs: List[EpochConfig] = field(default_factory=lambda: list(DEFAULT_EPOCHS))
    analysis_scale: float = 1000.0
    stats_max_pixels: float = 1e9
    max_workers: int = 4
    smoothing_radius_m: float = 30.0
    prefix: str = "AlGash"
    analysis_prefix: str = "Gash"
    baseline_folder: str = "AlGash_Project"
    analysis_folder: str = "Gash_Basin_Project"
    analysis_export_scale: float = 30.0
    analysis_max_pixels: float = 1e9
    baseline_max_pixels: float = 1e13
    sar_export_scale: float = 10.0
    export_retries: int = 1
    include_baseline: bool = True
    include_sar: bool = True
    include_map: bool = True
    include_exports: bool = True

    def select(self, labels: Sequence[str]) -> None:
        """Keep only the epochs whose label is in *labels* (in table order)."""
        known = [e.label for e in self.epochs]
        unknown = [label for label in labels if label not in known]
        if unknown:
            raise InputValidationError(
                f"Unknown epoch(s): {', '.join(unknown)}. "
                f"Configured epochs: {', '.join(known)}"
            )
        self.epochs = [e for e in self.epochs if e.label in labels]

    def validate(self) -> None:
        if not self.epochs:
            raise InputValidationError("At least one epoch must be configured.")
        labels = [e.label for e in self.epochs]
        if len(set(labels)) != len(labels):
            raise InputValidationError(f"Duplicate epoch labels: {labels}")
        for epoch in self.epochs:
            epoch.validate()
        if self.max_workers < 1:
            raise InputValidationError(
                f"'max_workers' must be >= 1, got {self.max_workers}."
            )
        if self.analysis_scale <= 0:
            raise InputValidationError(
                f"'analysis_scale' must be > 0, got {self.analysis_scale}."
            )
        if self.export_retries < 0:
            raise InputValidationError(
                f"'export_retries' must be >= 0, got {self.export_retries}."
            )


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def _window(raw: Any, key: str, label: str) -> Optional[Tuple[str, str]]:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise InputValidationError(
            f"Epoch {label}: '{key}' must be a [start, end] pair, got {raw!r}."
        )
    return str(raw[0]), str(raw[1])


def parse_epoch(raw: dict[str, Any]) -> EpochConfig:
    """Build an :class:`EpochConfig` from one JSON object."""
    try:
        label = str(raw["label"])
        year = int(raw.get("year", label))
        profile = get_profile(raw["profile"])
    except KeyError as exc:
        raise InputValidationError(f"Epoch entry missing key {exc}: {raw!r}") from exc
    except (TypeError, ValueError, BandResolutionError) as exc:
        raise InputValidationError(f"Invalid epoch entry {raw!r}: {exc}") from exc

    default_collection = (
        SENTINEL2_COLLECTION if profile.sensor_family == "sentinel2" else LANDSAT_COLLECTION
    )
    return EpochConfig(
        label=label,
        year=year,
        profile=profile,
        collection_id=raw.get("collection_id", default_collection),
        platforms=tuple(raw.get("platforms", ())),
        baseline_window=_window(raw.get("baseline_window"), "baseline_window", label),
        sar_window=_window(raw.get("sar_window"), "sar_window", label),
        export_scale=float(raw.get("export_scale", 30.0)),
        short_name=raw.get("short_name", ""),
    )


def _read_json(path: Path) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise InputValidationError(
            f"Failed to read config file '{path}': {exc}"
        ) from exc


def load_epoch_table(path: Path) -> List[EpochConfig]:
    """Parse a JSON list of epoch objects (or ``{"epochs": [...]}``).

    Raises:
        InputValidationError: If the file cannot be read or an entry is
            malformed.
    """
    raw = _read_json(path)
    if isinstance(raw, dict):
        raw = raw.get("epochs")
    if not isinstance(raw, list):
        raise InputValidationError(f"'{path}' does not contain a list of epochs.")
    return [parse_epoch(entry) for entry in raw]


def load_config(config_path: Path) -> CompositorConfig:
    """Parse a JSON configuration file into a :class:`CompositorConfig`.

    Raises:
        InputValidationError: If the file cannot be read, is not a JSON
            object, or holds an unknown key.
    """
    raw = _read_json(config_path)
    if not isinstance(raw, dict):
        raise InputValidationError(f"'{config_path}' must hold a JSON object.")

    known = {f.name for f in fields(CompositorConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InputValidationError(
            f"Unknown config key(s) in '{config_path}': {', '.join(unknown)}"
        )

    settings = {k: v for k, v in raw.items() if k != "epochs"}
    config = CompositorConfig(**settings)
    if "epochs" in raw:
        config.epochs = [parse_epoch(entry) for entry in raw["epochs"]]
    logger.debug("Loaded config from %s: %d epoch(s)", config_path, len(config.epochs))
    return config
