"""
statistics.py
=============
Summary statistics for one raster band, used to auto-scale palettes.

Classes:
    RasterStats     Immutable min / max / mean / std / count record.

Usage::

    from solar_layers.statistics import compute_stats

    stats = compute_stats(grid.bands[0], grid.no_data_value)
    print(stats)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, Union

import numpy as np
import numpy.typing as npt


@dataclass(frozen=True)
class RasterStats:
    """Immutable statistics for one raster band.

    Attributes:
        min: Minimum valid sample.
        max: Maximum valid sample.
        mean: Arithmetic mean of valid samples.
        std: Population standard deviation of valid samples.
        count: Number of valid samples.  ``0`` means every other field is
            ``0.0`` as well.
    """

    min: float
    max: float
    mean: float
    std: float
    count: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @property
    def span(self) -> float:
        return self.max - self.min

    def __str__(self) -> str:
        return (
            f"min={self.min:.4f} max={self.max:.4f} "
            f"mean={self.mean:.4f} std={self.std:.4f} "
            f"count={self.count:,}"
        )


EMPTY_STATS = RasterStats(min=0.0, max=0.0, mean=0.0, std=0.0, count=0)


def compute_stats(
    band: Union[npt.NDArray, Sequence[float]],
    no_data_value: Optional[float] = None,
) -> RasterStats:
    """Compute statistics over the samples that are finite and not no-data.

    Args:
        band: Band samples, any shape.
        no_data_value: Sentinel to exclude, if the raster declares one.

    Returns:
        A :class:`RasterStats`.  Empty input, or input with no valid
        samples, yields all-zero statistics with ``count=0``.
    """
    values = np.asarray(band, dtype=np.float64).ravel()
    valid = np.isfinite(values)
    if no_data_value is not None:
        # Compare in the storage precision so float32 sentinels match
        valid &= values.astype(np.float32) != np.float32(no_data_value)
    values = values[valid]

    if values.size == 0:
        return EMPTY_STATS

    return RasterStats(
        min=float(values.min()),
        max=float(values.max()),
        mean=float(values.mean()),
        std=float(values.std()),
        count=int(values.size),
    )
