"""
palette.py
==========
Map raster bands to RGBA pixel buffers.

* :func:`render_palette`: single band through a piecewise-linear colour
  ramp, optionally constrained by a binary mask raster.
* :func:`render_rgb`: three bands read directly as R/G/B.

Every call returns a freshly allocated ``(height, width, 4)`` uint8 array;
nothing is drawn into shared state.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import BandIndexError, InputValidationError
from .models import RasterGrid

Color = Union[str, Tuple[int, int, int]]

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")


# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------


def hex_to_rgb(color: Color) -> Tuple[int, int, int]:
    """Convert ``"#RRGGBB"`` (or an ``(r, g, b)`` tuple) to an int triple.

    Raises:
        InputValidationError: If the string is not a 6-digit hex colour or
            a tuple channel is outside 0..255.
    """
    if isinstance(color, str):
        match = _HEX_RE.match(color.strip())
        if match is None:
            raise InputValidationError(f"Invalid hex colour: {color!r}")
        return tuple(int(part, 16) for part in match.groups())  # type: ignore[return-value]

    r, g, b = (int(c) for c in color)
    if not all(0 <= c <= 255 for c in (r, g, b)):
        raise InputValidationError(f"RGB channels must be in 0..255, got {color!r}")
    return r, g, b


def _stops(colors: Sequence[Color]) -> np.ndarray:
    if len(colors) == 0:
        raise InputValidationError("A colour ramp needs at least one colour.")
    return np.array([hex_to_rgb(c) for c in colors], dtype=np.float64)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def interpolate_colors(colors: Sequence[Color], scaled: np.ndarray) -> np.ndarray:
    """Map normalised values in [0, 1] onto the colour ramp.

    ``pos = scaled * (N - 1)``; the lower stop is ``floor(pos)`` and the
    blend fraction is ``pos mod 1``.  Values at the top of the range take
    the last stop.  A single-colour ramp returns that colour everywhere.

    Returns:
        ``scaled.shape + (3,)`` uint8 array.
    """
    stops = _stops(colors)
    scaled = np.asarray(scaled, dtype=np.float64)
    if len(stops) == 1:
        return np.broadcast_to(stops[0], scaled.shape + (3,)).astype(np.uint8)

    last = len(stops) - 1
    position = scaled * last
    lower = np.floor(position).astype(np.int64)
    fraction = position - lower
    at_top = lower >= last
    lower = np.clip(lower, 0, last - 1)

    c1 = stops[lower]
    c2 = stops[lower + 1]
    blended = _round_half_up(c1 + (c2 - c1) * fraction[..., np.newaxis])
    blended[at_top] = stops[last]
    return np.clip(blended, 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------------
# Mask handling
# ---------------------------------------------------------------------------


def align_mask(mask: RasterGrid, width: int, height: int) -> np.ndarray:
    """Return the mask's first band as a boolean ``(height, width)`` array.

    Masks delivered at a different resolution from the data raster are
    resampled with nearest-neighbour index mapping.  ``True`` means the
    pixel is inside the area of interest (mask value != 0).
    """
    band = mask.band(0)
    if band.shape == (height, width):
        return band != 0
    rows = (np.arange(height) * mask.height // height).clip(0, mask.height - 1)
    cols = (np.arange(width) * mask.width // width).clip(0, mask.width - 1)
    return band[np.ix_(rows, cols)] != 0


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def render_palette(
    grid: RasterGrid,
    band_index: int = 0,
    mask: Optional[RasterGrid] = None,
    colors: Sequence[Color] = ("#000000", "#FFFFFF"),
    vmin: float = 0.0,
    vmax: float = 1.0,
) -> np.ndarray:
    """Render one band through a colour ramp.

    Pixels outside the mask, equal to the grid's no-data value, or NaN are
    fully transparent.  Everything else is normalised with
    ``(value - vmin) / (vmax - vmin)`` clamped to [0, 1] and coloured by
    :func:`interpolate_colors` at alpha 255.

    Args:
        grid: Source raster.
        band_index: 0-based band to render.
        mask: Optional binary raster; pixels where it is 0 are hidden.
        colors: Ordered colour stops.
        vmin: Value mapped to the first stop.
        vmax: Value mapped to the last stop.

    Returns:
        ``(height, width, 4)`` uint8 RGBA array.

    Raises:
        BandIndexError: If *band_index* does not exist.
        InputValidationError: If *colors* is empty or malformed.
    """
    values = grid.band(band_index).astype(np.float64)
    visible = grid.valid_mask(band_index)
    if mask is not None:
        visible &= align_mask(mask, grid.width, grid.height)

    span = vmax - vmin
    if span == 0:
        scaled = np.zeros_like(values)
    else:
        with np.errstate(invalid="ignore"):
            scaled = np.clip((values - vmin) / span, 0.0, 1.0)
    scaled = np.where(visible, scaled, 0.0)

    rgba = np.zeros((grid.height, grid.width, 4), dtype=np.uint8)
    rgba[..., :3] = interpolate_colors(colors, scaled)
    rgba[..., 3] = 255
    rgba[~visible] = 0
    return rgba


def render_rgb(grid: RasterGrid, mask: Optional[RasterGrid] = None) -> np.ndarray:
    """Render bands 0/1/2 directly as R/G/B.

    Channels are clamped to [0, 255] without normalisation; alpha is 255
    except where the mask is 0.

    Raises:
        BandIndexError: If the grid has fewer than three bands.
    """
    if grid.band_count < 3:
        raise BandIndexError(2, grid.band_count)

    rgba = np.zeros((grid.height, grid.width, 4), dtype=np.uint8)
    for channel in range(3):
        band = np.nan_to_num(grid.band(channel), nan=0.0)
        rgba[..., channel] = np.clip(band, 0, 255).astype(np.uint8)
    rgba[..., 3] = 255

    if mask is not None:
        rgba[~align_mask(mask, grid.width, grid.height)] = 0
    return rgba

