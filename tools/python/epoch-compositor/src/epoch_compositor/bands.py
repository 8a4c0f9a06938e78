"""
bands.py
========
Per-sensor band profiles: which band id plays which semantic role.

Every spectral formula in this package is written against the five roles
``blue, green, red, nir, swir1``.  A :class:`BandProfile` resolves those
roles to the band ids a sensor generation actually carries, names the
packed quality band, and maps band ids to Planetary Computer asset keys
so the fetcher can request them.

Profiles
--------
landsat_tm_etm   -- Landsat 5 TM / Landsat 7 ETM+ Collection-2 L2  (SR_B1..SR_B5)
landsat_oli      -- Landsat 8 OLI Collection-2 L2                   (SR_B2..SR_B6)
sentinel2        -- Sentinel-2 MSI L2A                              (B2, B3, B4, B8, B11)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping

from shared.python.exceptions import BandResolutionError, InputValidationError
from shared.python.validators import Validators

ROLES = ("blue", "green", "red", "nir", "swir1")

SENSOR_FAMILIES = ("landsat", "sentinel2")


@dataclass(frozen=True)
class BandProfile:
    """Role → band id mapping for one sensor generation.

    Attributes:
        name: Display name (``"Landsat 8 OLI"``).
        sensor_family: ``"landsat"`` or ``"sentinel2"``; selects the
            quality mask and radiometric rescale.
        bands: Mapping of every role in :data:`ROLES` to a band id.
        qa_band: Band id of the packed QA bitfield.
        asset_keys: Band id → STAC asset key in the source catalog.

    Raises:
        BandResolutionError: If any of the five roles is not mapped.
        InputValidationError: If *sensor_family* is unknown.
    """

    name: str
    sensor_family: str
    bands: Mapping[str, str]
    qa_band: str
    asset_keys: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for role in ROLES:
            if role not in self.bands:
                raise BandResolutionError(self.name, role, self.bands.keys())
        if self.sensor_family not in SENSOR_FAMILIES:
            raise InputValidationError(
                f"Unknown sensor family '{self.sensor_family}' for profile "
                f"'{self.name}'. Expected one of: {', '.join(SENSOR_FAMILIES)}"
            )

    def resolve(self, role: str) -> str:
        """Return the band id for *role*."""
        try:
            return self.bands[role]
        except KeyError as exc:
            raise BandResolutionError(self.name, role, self.bands.keys()) from exc

    @property
    def band_ids(self) -> List[str]:
        """Reflectance band ids in role order."""
        return [self.bands[role] for role in ROLES]

    @property
    def all_band_ids(self) -> List[str]:
        """Reflectance band ids followed by the QA band."""
        return self.band_ids + [self.qa_band]

    def asset_key(self, band_id: str) -> str:
        """Catalog asset key for *band_id* (the band id itself when unmapped)."""
        return self.asset_keys.get(band_id, band_id)

    def require(self, available: Iterable[str]) -> None:
        """Raise :class:`BandResolutionError` if a stack lacks any profile band."""
        Validators.assert_bands_present(available, self.all_band_ids, self.name)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

LANDSAT_TM_ETM = BandProfile(
    name="Landsat 5/7 TM/ETM+",
    sensor_family="landsat",
    bands={
        "blue": "SR_B1",
        "green": "SR_B2",
        "red": "SR_B3",
        "nir": "SR_B4",
        "swir1": "SR_B5",
    },
    qa_band="QA_PIXEL",
    asset_keys={
        "SR_B1": "blue",
        "SR_B2": "green",
        "SR_B3": "red",
        "SR_B4": "nir08",
        "SR_B5": "swir16",
        "QA_PIXEL": "qa_pixel",
    },
)

LANDSAT_OLI = BandProfile(
    name="Landsat 8 OLI",
    sensor_family="landsat",
    bands={
        "blue": "SR_B2",
        "green": "SR_B3",
        "red": "SR_B4",
        "nir": "SR_B5",
        "swir1": "SR_B6",
    },
    qa_band="QA_PIXEL",
    asset_keys={
        "SR_B2": "blue",
        "SR_B3": "green",
        "SR_B4": "red",
        "SR_B5": "nir08",
        "SR_B6": "swir16",
        "QA_PIXEL": "qa_pixel",
    },
)

# QA60 is not distributed by Planetary Computer; the fetcher rebuilds the
# bitfield from the SCL asset.
SENTINEL2 = BandProfile(
    name="Sentinel-2 MSI",
    sensor_family="sentinel2",
    bands={
        "blue": "B2",
        "green": "B3",
        "red": "B4",
        "nir": "B8",
        "swir1": "B11",
    },
    qa_band="QA60",
    asset_keys={
        "B2": "B02",
        "B3": "B03",
        "B4": "B04",
        "B8": "B08",
        "B11": "B11",
        "QA60": "SCL",
    },
)

PROFILES: Dict[str, BandProfile] = {
    "landsat_tm_etm": LANDSAT_TM_ETM,
    "landsat_oli": LANDSAT_OLI,
    "sentinel2": SENTINEL2,
}


def get_profile(key: str) -> BandProfile:
    """Look up a registered profile by key.

    Raises:
        BandResolutionError: If *key* is not registered.
    """
    try:
        return PROFILES[key]
    except KeyError as exc:
        raise BandResolutionError("profile registry", key, PROFILES) from exc
