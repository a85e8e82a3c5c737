"""
Solar Data Layers — Custom Exception Hierarchy
===============================================
Every module in :mod:`solar_layers` raises exceptions from this module so
callers can catch them at the right level of granularity.

Hierarchy::

    SolarLayersError                     ← catch-all base
    ├── InputValidationError             ← bad layer ids, day/hour, colours
    │   └── InsufficientInputError       ← e.g. month beyond shade URL list
    ├── RasterError                      ← rasterio / numpy raster issues
    │   ├── DownloadError                ← transport failure / non-2xx
    │   ├── DecodeError                  ← payload is not a valid raster
    │   └── BandIndexError               ← requested band does not exist
    ├── GeocodeUnavailable               ← upstream geocoder problem
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from solar_layers.exceptions import DownloadError

    raise DownloadError(url, "HTTP 403 Forbidden")
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class SolarLayersError(Exception):
    """Base exception for the solar data layers pipeline.

    Catch this to handle any pipeline error without caring about the exact
    subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(SolarLayersError):
    """Raised when a caller passes arguments that fail validation.

    This is the parent class for more specific input problems.
    """


class InsufficientInputError(InputValidationError):
    """Raised when the upstream record does not carry the data requested.

    Args:
        what: Short name of the missing input (e.g. ``"hourly shade URL"``).
        requested: The index or key that was asked for.
        available: How many entries are actually available.

    Example::

        raise InsufficientInputError("hourly shade URL", requested=11, available=6)
    """

    def __init__(self, what: str, requested: int, available: int) -> None:
        super().__init__(
            f"No {what} for index {requested}: only {available} available."
        )
        self.what: str = what
        self.requested: int = requested
        self.available: int = available


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(SolarLayersError):
    """Raised for general raster processing failures (rasterio / numpy).

    Subclass this for more specific raster errors.
    """


class DownloadError(RasterError):
    """Raised when a raster payload cannot be fetched from its source.

    Args:
        url: The URL that was requested (without the auth key).
        reason: HTTP status line or transport error message.

    Example::

        raise DownloadError("https://solar.googleapis.com/v1/geoTiff:get?id=x", "HTTP 404")
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to download raster '{url}': {reason}")
        self.url: str = url
        self.reason: str = reason


class DecodeError(RasterError):
    """Raised when a payload is not a valid multi-band geo-raster.

    Also raised when decoded band arrays do not match the declared
    ``width * height``.
    """


class BandIndexError(RasterError):
    """Raised when a requested raster band index does not exist.

    Args:
        band_index: The 0-based band number that was requested.
        total_bands: Total number of bands in the grid.

    Example::

        raise BandIndexError(band_index=5, total_bands=4)
    """

    def __init__(self, band_index: int, total_bands: int) -> None:
        super().__init__(
            f"Band {band_index} does not exist. "
            f"This raster has {total_bands} band(s) (0-indexed)."
        )
        self.band_index: int = band_index
        self.total_bands: int = total_bands


# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------


class GeocodeUnavailable(SolarLayersError):
    """Raised when the address-to-coordinate collaborator cannot answer.

    The pipeline itself never geocodes; this exists so the application
    layer can report the condition through the same hierarchy.
    """


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(SolarLayersError):
    """Raised when a tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/shade.json", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
