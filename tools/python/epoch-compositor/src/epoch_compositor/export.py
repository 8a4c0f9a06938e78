"""
export.py
=========
Fire-and-forget GeoTIFF export tasks.

Each :class:`ExportTask` is keyed by its ``description`` (the output
name) and is parameterised by ``{image, description, folder, region,
scale, max_pixels}``.  :class:`ExportQueue` runs tasks on a thread pool;
every task is independently cancellable and retryable, and a failing
task is recorded as an :class:`~shared.python.exceptions.ExportFailure`
outcome without touching its siblings.

Output layout::

    <output_dir>/<folder>/<description>.tif
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import rasterio
import rioxarray  # noqa: F401 -- activates the .rio accessor
import xarray as xr
from rasterio.crs import CRS
from rasterio.enums import Resampling

from shared.python.exceptions import ExportFailure, InputValidationError, RasterError

from .raster import grid_resolution, grid_transform

logger = logging.getLogger("basinscope.epoch_compositor.export")

NODATA = -9999.0


@dataclass(frozen=True)
class ExportTask:
    """One raster export request.

    Attributes:
        description: Output name, also the task key (``Gash_Analysis_1995``).
        folder: Sub-directory of the queue's output directory.
        image: ``(band, y, x)`` raster on a projected grid.
        region: ``(minx, miny, maxx, maxy)`` in the image CRS.
        scale: Output pixel size in CRS units.
        max_pixels: Largest allowed ``rows * cols`` of the output.
        crs: CRS of *image* (``"EPSG:32636"``).
        bands: Optional subset of bands to write, in order.
    """

    description: str
    folder: str
    image: xr.DataArray
    region: Tuple[float, float, float, float]
    scale: float
    max_pixels: float
    crs: str
    bands: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ExportOutcome:
    """Result of one export task."""

    description: str
    path: Optional[Path]
    attempts: int
    error: Optional[ExportFailure] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled and self.path is not None


# ---------------------------------------------------------------------------
# GeoTIFF writer
# ---------------------------------------------------------------------------


def prepare_export_image(task: ExportTask) -> xr.DataArray:
    """Subset, crop to the region and resample *task.image* to *task.scale*.

    Raises:
        RasterError: If the region misses the image or the result exceeds
            ``task.max_pixels``.
    """
    image = task.image
    if task.bands is not None:
        image = image.sel(band=list(task.bands))

    minx, miny, maxx, maxy = task.region
    image = image.sel(x=slice(minx, maxx), y=slice(maxy, miny))
    if image.sizes["x"] == 0 or image.sizes["y"] == 0:
        raise RasterError(f"Export region {task.region} does not overlap the image.")

    res_x, res_y = grid_resolution(image)
    if not (np.isclose(res_x, task.scale) and np.isclose(res_y, task.scale)):
        image = (
            image.rio.write_crs(task.crs)
            .rio.write_nodata(np.nan)
            .rio.reproject(task.crs, resolution=task.scale, resampling=Resampling.nearest)
        )

    n_pixels = image.sizes["x"] * image.sizes["y"]
    if n_pixels > task.max_pixels:
        raise RasterError(
            f"Export '{task.description}' needs {n_pixels:,} pixels at {task.scale} m; "
            f"max_pixels is {task.max_pixels:,.0f}."
        )
    return image


def write_geotiff(task: ExportTask, path: Path) -> Path:
    """Write *task* as a multi-band float32 GeoTIFF at *path*."""
    image = prepare_export_image(task)
    data = np.asarray(image.transpose("band", "y", "x").values, dtype="float32")
    out = np.where(np.isnan(data), NODATA, data).astype(np.float32)

    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=out.shape[1],
        width=out.shape[2],
        count=out.shape[0],
        dtype="float32",
        crs=CRS.from_user_input(task.crs),
        transform=grid_transform(image),
        nodata=NODATA,
        compress="lzw",
    ) as dst:
        dst.write(out)
        for i, name in enumerate(image["band"].values, start=1):
            dst.set_band_description(i, str(name))
        dst.update_tags(
            description=task.description,
            folder=task.folder,
            scale=str(task.scale),
            generator="epoch-compositor",
        )
    return path


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class ExportQueue:
    """Runs export tasks in the background, keyed by description.

    Args:
        output_dir: Root directory; each task writes to
            ``output_dir / task.folder / f"{task.description}.tif"``.
        max_workers: Thread pool size.
        max_retries: Extra attempts after a failed write.
        retry_delay: Seconds to wait between attempts.
        writer: ``(task, path) -> Path`` callable; defaults to
            :func:`write_geotiff`.

    Example::

        with ExportQueue(Path("out")) as queue:
            queue.submit(task)
            outcomes = queue.wait()
    """

    def __init__(
        self,
        output_dir: Path,
        max_workers: int = 4,
        max_retries: int = 1,
        retry_delay: float = 0.0,
        writer: Optional[Callable[[ExportTask, Path], Path]] = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._writer = writer or write_geotiff
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="export"
        )
        self._lock = threading.Lock()
        self._tasks: Dict[str, ExportTask] = {}
        self._futures: Dict[str, Future] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, task: ExportTask) -> Future:
        """Queue *task*.  A description that is still pending is rejected."""
        with self._lock:
            current = self._futures.get(task.description)
            if current is not None and not current.done():
                raise InputValidationError(
                    f"Export '{task.description}' is already queued."
                )
            self._tasks[task.description] = task
            future = self._pool.submit(self._run, task)
            self._futures[task.description] = future
        logger.debug("Queued export %s", task.description)
        return future

    def cancel(self, description: str) -> bool:
        """Cancel a task that has not started.  Returns ``True`` on success."""
        with self._lock:
            future = self._futures.get(description)
        cancelled = future.cancel() if future is not None else False
        if cancelled:
            logger.info("Cancelled export %s", description)
        return cancelled

    def retry(self, description: str) -> Future:
        """Re-run a finished (failed or cancelled) task."""
        with self._lock:
            task = self._tasks.get(description)
        if task is None:
            raise InputValidationError(f"No export task named '{description}'.")
        return self.submit(task)

    def wait(self, timeout: Optional[float] = None) -> Dict[str, ExportOutcome]:
        """Block until every queued task finishes; return outcomes by description."""
        with self._lock:
            futures = dict(self._futures)

        outcomes: Dict[str, ExportOutcome] = {}
        pending = {f: d for d, f in futures.items() if not f.cancelled()}
        for description, future in futures.items():
            if future.cancelled():
                outcomes[description] = ExportOutcome(
                    description=description, path=None, attempts=0, cancelled=True
                )
        for future in as_completed(pending, timeout=timeout):
            outcomes[pending[future]] = future.result()

        return {d: outcomes[d] for d in futures}

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> "ExportQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def path_for(self, task: ExportTask) -> Path:
        return self.output_dir / task.folder / f"{task.description}.tif"

    def _run(self, task: ExportTask) -> ExportOutcome:
        path = self.path_for(task)
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                written = self._writer(task, path)
                logger.info("Exported %s → %s", task.description, written)
                return ExportOutcome(task.description, written, attempt)
            except Exception as exc:
                logger.warning(
                    "Export %s attempt %d/%d failed: %s",
                    task.description, attempt, attempts, exc,
                )
                if attempt < attempts:
                    time.sleep(self.retry_delay)
                else:
                    failure = ExportFailure(task.description, str(path), str(exc), attempt)
                    logger.error(failure.message)
                    return ExportOutcome(task.description, None, attempt, error=failure)

        return ExportOutcome(task.description, None, 0)  # unreachable
