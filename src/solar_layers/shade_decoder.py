"""
shade_decoder.py
================
Decode bit-packed hourly shade rasters into binary shade masks.

Each monthly shade raster stores integer bitfields as floating-point
samples.  Bit ``day - 1`` marks the day of the month and bit ``hour`` the
hour of the day; a pixel is shaded at ``(day, hour)`` when the relevant
bits are set.  Two layouts are handled:

* **Packed** (fewer than 24 bands): a single band carries both the day
  and the hour bits, so both must be set.
* **Per-hour** (24 or more bands): band ``hour`` holds the day bits for
  that hour, so only the day bit is tested.

Floats are never used in bitwise operations directly: :func:`to_bitfield`
performs the explicit truncating cast first.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, Optional

import numpy as np
import numpy.typing as npt

from .models import RasterGrid
from .validators import Validators

logger = logging.getLogger("solar_layers.shade_decoder")

HOURS_PER_DAY = 24
_UINT32_MODULUS = float(2 ** 32)


def to_bitfield(values: npt.ArrayLike) -> np.ndarray:
    """Cast float samples to the ``uint32`` bitfields they encode.

    Non-finite samples become 0.  Finite samples are truncated toward zero
    and wrapped modulo 2**32, so a negative value maps to its
    two's-complement pattern and a value beyond the 32-bit range keeps its
    low 32 bits.

    Args:
        values: Samples of any shape.

    Returns:
        ``uint32`` array of the same shape.
    """
    data = np.asarray(values, dtype=np.float64)
    data = np.where(np.isfinite(data), np.trunc(data), 0.0)
    return np.mod(data, _UINT32_MODULUS).astype(np.uint32)


def decode(
    grid: RasterGrid,
    day: int,
    hour: int,
    band_index: Optional[int] = None,
) -> np.ndarray:
    """Decode the shade state of every pixel for one day and hour.

    Args:
        grid: Monthly hourly-shade raster.
        day: Day of month, 1..31.
        hour: Hour of day, 0..23.
        band_index: Band to read in the packed layout.  Ignored for
            per-hour rasters unless given explicitly.

    Returns:
        ``(height, width)`` uint8 array, 1 = shaded, 0 = lit.  Samples equal
        to the grid's no-data value decode as lit.

    Raises:
        InputValidationError: If *day* or *hour* is out of range.
        BandIndexError: If *band_index* does not exist.
    """
    Validators.assert_day_hour_valid(day, hour)
    day_bit = np.uint32(1 << (day - 1))

    if band_index is None and grid.band_count >= HOURS_PER_DAY:
        samples = grid.band(hour)
        required = day_bit
    else:
        samples = grid.band(band_index or 0)
        required = day_bit | np.uint32(1 << hour)

    bits = to_bitfield(samples)
    shaded = (bits & required) == required
    if grid.no_data_value is not None:
        shaded &= samples != np.float32(grid.no_data_value)
    return shaded.astype(np.uint8)


def shade_percentage(binary: npt.ArrayLike) -> float:
    """Share of shaded pixels in *binary*, 0..100.  Empty input yields 0.0."""
    data = np.asarray(binary)
    if data.size == 0:
        return 0.0
    return float(np.count_nonzero(data)) / data.size * 100.0


def decode_day(
    grid: RasterGrid,
    day: int,
    hours: Iterable[int] = range(HOURS_PER_DAY),
    max_workers: Optional[int] = None,
) -> Dict[int, np.ndarray]:
    """Decode several hours of one day in parallel.

    Each hour is independent and only reads the (immutable) grid, so the
    decodes run on a thread pool.

    Returns:
        ``{hour: binary_mask}`` ordered by hour.

    Raises:
        InputValidationError: If *day* or any hour is out of range.
    """
    hour_list = sorted(set(hours))
    for hour in hour_list:
        Validators.assert_day_hour_valid(day, hour)

    results: Dict[int, np.ndarray] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(decode, grid, day, hour): hour for hour in hour_list}
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    logger.debug("Decoded %d hour(s) for day %d", len(results), day)
    return {hour: results[hour] for hour in hour_list}
