"""
regions.py
==========
Connected-component extraction over binary and continuous rasters.

The flood fill is iterative with an explicit stack, so region size is
bounded by memory rather than by the interpreter's recursion limit.
Connectivity is 4-neighbour (no diagonals).

Usage::

    from solar_layers.regions import extract_regions

    regions = extract_regions(shade_mask, min_region_size=10)
    for region in regions:
        print(region.bounding_box, region.pixel_count)
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
import numpy.typing as npt

from .exceptions import InputValidationError
from .models import Region

logger = logging.getLogger("solar_layers.regions")

DEFAULT_MIN_REGION_SIZE = 10

_NEIGHBOURS = ((1, 0), (-1, 0), (0, 1), (0, -1))


def _as_2d(array: npt.ArrayLike, name: str) -> np.ndarray:
    data = np.asarray(array)
    if data.ndim != 2:
        raise InputValidationError(
            f"{name} must be a 2-D array, got shape {data.shape}."
        )
    return data


def extract_regions(
    binary: npt.ArrayLike,
    min_region_size: int = DEFAULT_MIN_REGION_SIZE,
    intensity: Optional[npt.ArrayLike] = None,
) -> List[Region]:
    """Find 4-connected regions of non-zero pixels.

    Seeds are visited in row-major order, so the output is ordered by the
    top-left-most pixel of each region.

    Args:
        binary: 2-D array; any non-zero sample is "set".
        min_region_size: Regions with fewer pixels are dropped.
        intensity: Optional 2-D array of the same shape used for
            :attr:`Region.mean_intensity`.  Defaults to *binary* itself.

    Returns:
        List of :class:`~solar_layers.models.Region`.  An all-zero input
        yields an empty list.

    Raises:
        InputValidationError: If the inputs are not 2-D or their shapes
            differ.
    """
    mask = _as_2d(binary, "binary") != 0
    values = mask.astype(np.float64) if intensity is None else _as_2d(intensity, "intensity")
    if values.shape != mask.shape:
        raise InputValidationError(
            f"intensity shape {values.shape} does not match {mask.shape}."
        )

    height, width = mask.shape
    visited = np.zeros_like(mask)
    regions: List[Region] = []
    discarded = 0

    for seed_y, seed_x in zip(*np.nonzero(mask)):
        if visited[seed_y, seed_x]:
            continue

        members = []
        total = 0.0
        stack = [(int(seed_x), int(seed_y))]
        visited[seed_y, seed_x] = True
        while stack:
            x, y = stack.pop()
            members.append((x, y))
            total += float(values[y, x])
            for dx, dy in _NEIGHBOURS:
                nx, ny = x + dx, y + dy
                if 0 <= nx < width and 0 <= ny < height and mask[ny, nx] and not visited[ny, nx]:
                    visited[ny, nx] = True
                    stack.append((nx, ny))

        if len(members) < min_region_size:
            discarded += 1
            continue
        regions.append(Region(frozenset(members), total / len(members)))

    logger.debug(
        "Extracted %d region(s) (%d below %d px discarded)",
        len(regions), discarded, min_region_size,
    )
    return regions


def extract_regions_above(
    values: npt.ArrayLike,
    threshold: float,
    min_region_size: int = DEFAULT_MIN_REGION_SIZE,
) -> List[Region]:
    """Regions of a continuous raster where ``value > threshold``.

    Mean intensity is taken from the continuous values.  NaN samples are
    never above the threshold.
    """
    data = _as_2d(values, "values").astype(np.float64)
    with np.errstate(invalid="ignore"):
        above = data > threshold
    return extract_regions(above, min_region_size, intensity=data)
