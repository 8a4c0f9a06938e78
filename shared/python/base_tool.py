"""
BasinScope — Shared Base Tool
==============================
Abstract base class that every BasinScope Python tool inherits from.

Design Pattern:
    Template Method — the public ``run()`` method defines a fixed
    pipeline (validate → process → report) that subclasses fill in by
    implementing ``validate_inputs`` and ``process``.

Usage::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> MyResult:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

# Each tool module logs through a child of this logger, e.g.
#   logging.getLogger("basinscope.epoch_compositor.peak")
logger = logging.getLogger("basinscope")


class GeoTool(ABC):
    """Abstract base class for all BasinScope geospatial tools.

    Attributes:
        input_path: Path to the primary input (an ROI vector file for
            the epoch compositor).
        output_path: Directory or file where output will be written.
        verbose: When ``True`` the tool logs DEBUG-level messages.
        elapsed: Seconds taken by the last :meth:`run`, or ``None``
            before the first run.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.elapsed: float | None = None

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If an input file is missing or a
                configuration value is out of range.
        """

    @abstractmethod
    def process(self) -> Any:
        """Execute the core processing and return its result.

        Called by :meth:`run` after :meth:`validate_inputs` succeeded.
        Exceptions propagate unchanged through :meth:`run`.
        """

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> Any:
        """Validate, process, and report.

        Returns:
            Whatever :meth:`process` returns.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        result = self.process()

        self.elapsed = time.perf_counter() - start
        self._report_success(self.elapsed)
        return result

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s completed in %.2fs → %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach a console handler to the ``basinscope`` logger once.

        Uses DEBUG level when ``self.verbose`` is ``True``, otherwise INFO.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                fmt="[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
                datefmt="%H:%M:%S",
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
