"""
BasinScope — Shared Input Validators
=====================================
Static precondition checks used by every BasinScope tool before (and
during) processing.

All methods raise an exception from :mod:`shared.python.exceptions`
rather than returning booleans, so ``validate_inputs`` implementations
stay flat and readable::

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_supported_extension(self.input_path, [".geojson"])
            Validators.assert_date_range("1995-01-01", "1996-01-01")
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Iterable, Sequence

from shared.python.exceptions import (
    BandResolutionError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks shared across all tools.

    All methods are ``@staticmethod`` — this class is never instantiated.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a
                directory rather than a file.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Assert that the parent directory of *output_path* is writable.

        The parent directory (and any missing parents) is created when
        absent.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Allowed extensions, each starting with a dot
                        (e.g. ``[".shp", ".geojson", ".gpkg"]``).

        Raises:
            InputValidationError: If the extension is not allowed.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_bands_present(
        available: Iterable[str],
        required: Iterable[str],
        context: str = "scene stack",
    ) -> None:
        """Assert that every band id in *required* is in *available*.

        Args:
            available: Band ids carried by the stack (its ``band`` coordinate).
            required: Band ids the caller is about to select.
            context: Name used in the error message, usually the band
                     profile name.

        Raises:
            BandResolutionError: On the first missing band.

        Example::

            Validators.assert_bands_present(
                stack.band.values, ["SR_B3", "SR_B6"], "Landsat 8 OLI"
            )
        """
        present = [str(b) for b in available]
        for band in required:
            if band not in present:
                raise BandResolutionError(context, band, present)

    # ------------------------------------------------------------------
    # Temporal checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_date_range(start: str, end: str) -> None:
        """Assert that *start* and *end* are ISO dates with ``start < end``.

        Raises:
            InputValidationError: If either date does not parse, or the
                window is empty.
        """
        try:
            start_d = date.fromisoformat(start)
            end_d = date.fromisoformat(end)
        except (TypeError, ValueError) as exc:
            raise InputValidationError(
                f"Invalid date window {start!r}..{end!r}: {exc}"
            ) from exc
        if start_d >= end_d:
            raise InputValidationError(
                f"Date window is empty: start {start} is not before end {end}."
            )
