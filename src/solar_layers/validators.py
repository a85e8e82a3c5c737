"""
Solar Data Layers — Input Validators
=====================================
Static precondition checks used across the pipeline before any raster
work begins.

All methods raise an appropriate exception from
:mod:`solar_layers.exceptions` rather than returning booleans, so call
sites stay short::

    Validators.assert_day_hour_valid(day, hour)
    Validators.assert_band_index_valid(band_index, grid.band_count)
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np

from .exceptions import (
    BandIndexError,
    DecodeError,
    InputValidationError,
    InsufficientInputError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod`` — this class is never instantiated.
    It exists purely as a logical namespace.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Args:
            path: Path object to check.

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

        Creates the parent directory (and any missing parents) if it does
        not yet exist.

        Args:
            output_path: Intended output file path.

        Raises:
            OutputWriteError: If the parent directory cannot be created.
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
            extensions: Allowed extensions, each starting with a dot.

        Raises:
            InputValidationError: If the suffix is not in *extensions*.
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
    def assert_band_index_valid(band_index: int, total_bands: int) -> None:
        """Assert that *band_index* is within ``[0, total_bands)``.

        Raises:
            BandIndexError: If the index is out of range.
        """
        if band_index < 0 or band_index >= total_bands:
            raise BandIndexError(band_index, total_bands)

    @staticmethod
    def assert_band_lengths(
        bands: Sequence[np.ndarray],
        width: int,
        height: int,
    ) -> None:
        """Assert that every band holds exactly ``width * height`` samples.

        Args:
            bands: Flattened band arrays.
            width: Declared raster width in pixels.
            height: Declared raster height in pixels.

        Raises:
            DecodeError: If there are no bands, the dimensions are not
                positive, or any band has the wrong length.
        """
        if width <= 0 or height <= 0:
            raise DecodeError(f"Invalid raster dimensions {width}x{height}.")
        if not bands:
            raise DecodeError("Raster contains no bands.")
        expected = width * height
        for index, band in enumerate(bands):
            if band.size != expected:
                raise DecodeError(
                    f"Band {index} has {band.size} samples; "
                    f"expected {expected} ({width}x{height})."
                )

    # ------------------------------------------------------------------
    # Temporal checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_day_hour_valid(day: int, hour: int) -> None:
        """Assert that *day* is a day-of-month and *hour* an hour-of-day.

        Raises:
            InputValidationError: If ``day`` is outside 1..31 or ``hour``
                outside 0..23.
        """
        if not 1 <= day <= 31:
            raise InputValidationError(f"Day must be in 1..31, got {day}.")
        if not 0 <= hour <= 23:
            raise InputValidationError(f"Hour must be in 0..23, got {hour}.")

    @staticmethod
    def assert_month_available(month: int, available: int) -> None:
        """Assert that a 0-based *month* index has a shade URL.

        Raises:
            InputValidationError: If ``month`` is outside 0..11.
            InsufficientInputError: If fewer than ``month + 1`` URLs exist.
        """
        if not 0 <= month <= 11:
            raise InputValidationError(f"Month must be in 0..11, got {month}.")
        if month >= available:
            raise InsufficientInputError("hourly shade URL", month, available)
