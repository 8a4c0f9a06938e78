"""
epoch_compositor
================
Multi-epoch compositing and flood-peak detection for a river basin.

Streams Landsat 5/7/8, Sentinel-2 L2A and Sentinel-1 RTC imagery from
Microsoft Planetary Computer, masks it, computes MNDWI / NDVI / BSI,
picks each pixel's wettest scene per epoch year and summarises the
result over the region, all in-process with xarray, rioxarray, scipy
and geopandas.

Submodules
----------
bands      -- Band profiles per sensor generation
masking    -- QA bit masks and reflectance scaling
indices    -- MNDWI, NDVI and BSI strategies
peak       -- Quality mosaic, baseline median and region statistics
sar        -- Speckle-filtered Sentinel-1 VV composites
aoi        -- Region of interest loading and clipping
fetcher    -- Query and stack imagery from Planetary Computer
config     -- Epoch table and run settings
report     -- Epoch records, JSON/CSV report and trend chart
viz        -- Interactive folium map
export     -- GeoTIFF export queue
pipeline   -- End-to-end orchestrator
"""

from .aoi import RegionOfInterest
from .bands import PROFILES, BandProfile, get_profile
from .config import CompositorConfig, EpochConfig, load_config, load_epoch_table
from .export import ExportQueue, ExportTask
from .fetcher import PlanetaryComputerSource
from .peak import EpochComposite, YearlyPeakDetector, quality_mosaic
from .pipeline import EpochCompositor, EpochOutcome
from .report import EpochRecord
from .sar import SARComposite, SARCompositeBuilder

__version__ = "1.0.0"
__all__ = [
    "BandProfile",
    "PROFILES",
    "get_profile",
    "RegionOfInterest",
    "EpochConfig",
    "CompositorConfig",
    "load_config",
    "load_epoch_table",
    "PlanetaryComputerSource",
    "YearlyPeakDetector",
    "EpochComposite",
    "quality_mosaic",
    "SARCompositeBuilder",
    "SARComposite",
    "EpochRecord",
    "ExportQueue",
    "ExportTask",
    "EpochCompositor",
    "EpochOutcome",
]
