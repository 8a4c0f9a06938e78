"""
Epoch Compositor — Pipeline Orchestrator
========================================
Main pipeline class that runs every configured epoch end to end.
Inherits from :class:`~shared.python.base_tool.GeoTool` and implements
the Template Method pattern.

Per epoch, three independent jobs run on a shared thread pool:

  - the flood-peak composite of the epoch year (quality mosaic on MNDWI)
  - the multi-year median baseline mosaic
  - the Sentinel-1 VV composite, for epochs with a SAR window

Empty optical or SAR collections do not abort the run; they are
recorded on the epoch's :class:`EpochOutcome`.  After the pool drains,
the pipeline writes the JSON/CSV report, the trend chart, the HTML map
and the GeoTIFF exports.

Usage::

    from pathlib import Path
    from epoch_compositor.pipeline import EpochCompositor

    tool = EpochCompositor(
        input_path=Path("gash_basin.geojson"),
        output_path=Path("output/"),
        verbose=True,
    )
    run = tool.run()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from shared.python.base_tool import GeoTool
from shared.python.exceptions import EmptyCollectionError
from shared.python.validators import Validators

from .aoi import VECTOR_EXTENSIONS, RegionOfInterest
from .config import CompositorConfig, EpochConfig
from .export import ExportOutcome, ExportQueue, ExportTask
from .fetcher import PlanetaryComputerSource, RasterSource
from .peak import PEAK_BANDS, BaselineMosaic, EpochComposite, YearlyPeakDetector, build_baseline
from .report import EpochRecord, log_epoch_report, plot_spectral_trends, write_report
from .sar import SARComposite, SARCompositeBuilder
from .viz import build_basin_map, save_map

logger = logging.getLogger("basinscope.epoch_compositor.pipeline")

REPORT_JSON = "epoch_report.json"
REPORT_CSV = "epoch_report.csv"
TREND_CHART = "spectral_trends.png"
BASIN_MAP = "basin_map.html"
EXPORT_DIR = "exports"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class EpochOutcome:
    """Everything produced for one epoch.

    Attributes:
        epoch: The epoch table row.
        peak: Flood-peak composite, or ``None`` when the year had no scenes.
        baseline: Baseline median mosaic, or ``None`` when skipped or empty.
        sar: SAR composite (possibly flagged unavailable), or ``None``
            when the epoch has no SAR window or SAR is disabled.
        problems: Data-availability messages collected along the way.
    """

    epoch: EpochConfig
    peak: Optional[EpochComposite] = None
    baseline: Optional[BaselineMosaic] = None
    sar: Optional[SARComposite] = None
    problems: List[str] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return self.peak is not None

    @property
    def record(self) -> EpochRecord:
        if self.peak is not None:
            return EpochRecord.from_composite(self.peak)
        return EpochRecord.unavailable(self.epoch.label, self.epoch.sensor, "no scenes")


@dataclass
class CompositorRun:
    """Result of :meth:`EpochCompositor.process`."""

    outcomes: List[EpochOutcome]
    exports: Dict[str, ExportOutcome] = field(default_factory=dict)
    report_paths: List[Path] = field(default_factory=list)
    chart_path: Optional[Path] = None
    map_path: Optional[Path] = None

    @property
    def records(self) -> List[EpochRecord]:
        return [o.record for o in self.outcomes]

    @property
    def failed_exports(self) -> List[ExportOutcome]:
        return [o for o in self.exports.values() if not o.ok]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class EpochCompositor(GeoTool):
    """Multi-epoch compositing and flood-peak detection for one basin.

    Attributes:
        config: Run settings and the epoch table.
        source: Imagery backend; a :class:`PlanetaryComputerSource` is
            created on first use when none is given.
        roi: The region, loaded by :meth:`validate_inputs`.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        config: Optional[CompositorConfig] = None,
        source: Optional[RasterSource] = None,
        verbose: bool = False,
    ) -> None:
        """Initialise the pipeline.

        Args:
            input_path: Vector file with the region of interest.
            output_path: Directory for reports, chart, map and exports.
            config: Run settings; defaults to :class:`CompositorConfig`.
            source: Imagery backend.
            verbose: Enable debug-level logging.
        """
        super().__init__(input_path=input_path, output_path=output_path, verbose=verbose)
        self.config = config or CompositorConfig()
        self.source = source
        self.roi: Optional[RegionOfInterest] = None

    # ------------------------------------------------------------------
    # GeoTool interface
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Check the region file, the epoch table and the output directory.

        Raises:
            InputValidationError: On a missing or unreadable region file,
                an invalid epoch table or an unwritable output directory.
        """
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, VECTOR_EXTENSIONS)
        self.config.validate()
        Validators.assert_output_dir_writable(self.output_path / REPORT_JSON)

        self.roi = RegionOfInterest.from_file(self.input_path)
        logger.info(
            "Configuration validated — %d epoch(s) over %s.",
            len(self.config.epochs), self.roi,
        )

    def process(self) -> CompositorRun:
        """Run every epoch, then write reports, chart, map and exports."""
        assert self.roi is not None, "Call validate_inputs() first."
        if self.source is None:
            self.source = PlanetaryComputerSource()

        outcomes = self._run_epochs()
        for outcome in outcomes:
            if outcome.peak is not None:
                log_epoch_report(outcome.peak)
            for problem in outcome.problems:
                logger.warning("%s: %s", outcome.epoch.label, problem)

        run = CompositorRun(outcomes=outcomes)
        records = run.records
        run.report_paths = [
            write_report(records, self.output_path / REPORT_JSON, fmt="json"),
            write_report(records, self.output_path / REPORT_CSV, fmt="csv"),
        ]
        run.chart_path = plot_spectral_trends(records, self.output_path / TREND_CHART)

        if self.config.include_map:
            run.map_path = self._write_map(outcomes)
        if self.config.include_exports:
            run.exports = self._export(outcomes)
            for failed in run.failed_exports:
                if failed.error is not None:
                    logger.error(failed.error.message)

        available = sum(o.available for o in outcomes)
        logger.info("Pipeline complete — %d/%d epoch(s) composited.", available, len(outcomes))
        return run

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _run_epochs(self) -> List[EpochOutcome]:
        """Submit the peak, baseline and SAR jobs of every epoch to one pool."""
        assert self.roi is not None
        outcomes = {e.label: EpochOutcome(epoch=e) for e in self.config.epochs}

        jobs: List[Tuple[str, EpochConfig]] = []
        for epoch in self.config.epochs:
            jobs.append(("peak", epoch))
            if self.config.include_baseline and epoch.baseline_window is not None:
                jobs.append(("baseline", epoch))
            if self.config.include_sar and epoch.sar_window is not None:
                jobs.append(("sar", epoch))

        handlers = {"peak": self._peak, "baseline": self._baseline, "sar": self._sar}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = {
                pool.submit(handlers[kind], epoch, outcomes[epoch.label]): (kind, epoch)
                for kind, epoch in jobs
            }
            for future in as_completed(futures):
                kind, epoch = futures[future]
                future.result()
                logger.debug("%s: %s job finished", epoch.label, kind)

        return [outcomes[e.label] for e in self.config.epochs]

    def _peak(self, epoch: EpochConfig, outcome: EpochOutcome) -> None:
        assert self.roi is not None and self.source is not None
        start, end = epoch.peak_window
        stack = self.source.optical_scenes(epoch, self.roi, start, end)
        detector = YearlyPeakDetector(
            self.roi,
            analysis_scale=self.config.analysis_scale,
            max_pixels=self.config.stats_max_pixels,
        )
        try:
            outcome.peak = detector.detect(epoch.label, epoch.year, stack, epoch.profile)
        except EmptyCollectionError as exc:
            outcome.problems.append(exc.message)

    def _baseline(self, epoch: EpochConfig, outcome: EpochOutcome) -> None:
        assert self.roi is not None and self.source is not None
        assert epoch.baseline_window is not None
        start, end = epoch.baseline_window
        stack = self.source.optical_scenes(epoch, self.roi, start, end)
        logger.info(
            "Metadata %s: sensor=%s scenes=%d range=%s..%s",
            epoch.label, epoch.sensor, int(stack.sizes.get("time", 0)), start, end,
        )
        try:
            outcome.baseline = build_baseline(
                epoch.label, epoch.baseline_window, stack, epoch.profile, self.roi
            )
        except EmptyCollectionError as exc:
            outcome.problems.append(exc.message)

    def _sar(self, epoch: EpochConfig, outcome: EpochOutcome) -> None:
        assert self.roi is not None and epoch.sar_window is not None
        builder = SARCompositeBuilder(
            self.roi, self.source, smoothing_radius_m=self.config.smoothing_radius_m
        )
        outcome.sar = builder.build(epoch.label, *epoch.sar_window)
        if not outcome.sar.available:
            outcome.problems.append(
                f"no SAR scenes between {epoch.sar_window[0]} and {epoch.sar_window[1]}"
            )

    def _write_map(self, outcomes: List[EpochOutcome]) -> Path:
        assert self.roi is not None and self.source is not None
        fmap = build_basin_map(
            self.roi,
            peaks=[o.peak for o in outcomes if o.peak is not None],
            baselines=[(o.epoch, o.baseline) for o in outcomes if o.baseline is not None],
            sar=[o.sar for o in outcomes if o.sar is not None],
            elevation=self.source.elevation(self.roi),
            epoch_labels=[e.label for e in self.config.epochs],
        )
        return save_map(fmap, self.output_path / BASIN_MAP)

    def export_tasks(self, outcomes: List[EpochOutcome]) -> List[ExportTask]:
        """The standard export set for the products present in *outcomes*."""
        assert self.roi is not None
        cfg = self.config
        crs = f"EPSG:{self.roi.epsg}"
        region = self.roi.bbox_utm
        tasks: List[ExportTask] = []
        for o in outcomes:
            label = o.epoch.label
            if o.baseline is not None:
                tasks.append(ExportTask(
                    description=f"{cfg.prefix}_Optical_Mosaic_{label}",
                    folder=cfg.baseline_folder,
                    image=o.baseline.image,
                    region=region,
                    scale=o.epoch.export_scale,
                    max_pixels=cfg.baseline_max_pixels,
                    crs=crs,
                ))
            if o.peak is not None:
                tasks.append(ExportTask(
                    description=f"{cfg.analysis_prefix}_Analysis_{label}",
                    folder=cfg.analysis_folder,
                    image=o.peak.image,
                    region=region,
                    scale=cfg.analysis_export_scale,
                    max_pixels=cfg.analysis_max_pixels,
                    crs=crs,
                    bands=PEAK_BANDS,
                ))
            if o.sar is not None and o.sar.image is not None:
                tasks.append(ExportTask(
                    description=f"{cfg.prefix}_SAR_{label}",
                    folder=cfg.baseline_folder,
                    image=o.sar.image,
                    region=region,
                    scale=cfg.sar_export_scale,
                    max_pixels=cfg.baseline_max_pixels,
                    crs=crs,
                ))
        return tasks

    def _export(self, outcomes: List[EpochOutcome]) -> Dict[str, ExportOutcome]:
        tasks = self.export_tasks(outcomes)
        with ExportQueue(
            self.output_path / EXPORT_DIR,
            max_workers=self.config.max_workers,
            max_retries=self.config.export_retries,
        ) as queue:
            for task in tasks:
                queue.submit(task)
            results = queue.wait()
        logger.info(
            "%d/%d export(s) written.", sum(r.ok for r in results.values()), len(results)
        )
        return results
