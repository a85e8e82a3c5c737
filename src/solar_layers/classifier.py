"""
classifier.py
=============
Turn extracted shade regions into classified, de-duplicated shade sources.

Pipeline
--------
1. :meth:`RegionFeatures.from_region` reduces each region to a fixed
   feature record (aspect ratio, density, area, extent, centre).
2. :func:`classify_features` applies the threshold rules below and
   returns ``(kind, confidence, estimated_height)``.
3. :func:`merge_shade_sources` collapses same-kind detections that sit
   close together.  A single object usually shows up once per sampled
   hour with slightly different outlines; merging reduces those to one.
4. Low-confidence survivors are dropped and the rest receive stable ids.

Classification rules (first match wins)::

    0.7 <= aspect <= 1.3 and density > 0.8   building   0.9  15 + area/100*10
    density < 0.6 and area > 50              tree       0.8  20 + U[0, 30)
    width > 2 * height                       terrain    0.6   5 + U[0, 10)
    otherwise                                structure  0.7  10

Height jitter is drawn from an injected :class:`numpy.random.Generator`
so results are reproducible for a given seed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import DEFAULT_PARAMS
from .exceptions import InputValidationError
from .models import Region, ShadeSource, ShadeSourceKind

logger = logging.getLogger("solar_layers.classifier")

FRAME_CENTRE = 50.0


# ---------------------------------------------------------------------------
# Stage 1: per-region classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegionFeatures:
    """Shape features of one region, computed once.

    Attributes:
        aspect_ratio: ``width / height`` of the bounding box.
        density: ``area / (width * height)``, in (0, 1].
        area: Member pixel count.
        width: Inclusive bounding-box width in pixels.
        height: Inclusive bounding-box height in pixels.
        center_x: Bounding-box centre column.
        center_y: Bounding-box centre row.
    """

    aspect_ratio: float
    density: float
    area: int
    width: int
    height: int
    center_x: float
    center_y: float

    @classmethod
    def from_region(cls, region: Region) -> "RegionFeatures":
        width, height = region.width, region.height
        center_x, center_y = region.center
        return cls(
            aspect_ratio=width / height,
            density=region.pixel_count / (width * height),
            area=region.pixel_count,
            width=width,
            height=height,
            center_x=center_x,
            center_y=center_y,
        )


def classify_features(
    features: RegionFeatures,
    rng: np.random.Generator,
) -> Tuple[ShadeSourceKind, float, float]:
    """Apply the threshold rules to one region's features.

    Returns:
        ``(kind, confidence, estimated_height_ft)``.
    """
    if 0.7 <= features.aspect_ratio <= 1.3 and features.density > 0.8:
        return ShadeSourceKind.BUILDING, 0.9, 15.0 + features.area / 100.0 * 10.0
    if features.density < 0.6 and features.area > 50:
        return ShadeSourceKind.TREE, 0.8, 20.0 + float(rng.random()) * 30.0
    if features.width > 2 * features.height:
        return ShadeSourceKind.TERRAIN, 0.6, 5.0 + float(rng.random()) * 10.0
    return ShadeSourceKind.STRUCTURE, 0.7, 10.0


def _shadow_geometry(position: Tuple[float, float]) -> Tuple[float, float]:
    dx, dy = position[0] - FRAME_CENTRE, position[1] - FRAME_CENTRE
    return math.degrees(math.atan2(dy, dx)), math.hypot(dx, dy)


def display_name(kind: ShadeSourceKind, confidence: float) -> str:
    prefix = "Detected" if confidence > 0.8 else "Possible"
    return f"{prefix} {kind.label}"


# ---------------------------------------------------------------------------
# Stage 2: merging
# ---------------------------------------------------------------------------


def _distance(a: ShadeSource, b: ShadeSource, aspect: float = 1.0) -> float:
    # y is a percentage of frame height; rescale it to width units
    dx = a.position[0] - b.position[0]
    dy = (a.position[1] - b.position[1]) * aspect
    return math.hypot(dx, dy)


def _combine(group: Sequence[ShadeSource]) -> ShadeSource:
    if len(group) == 1:
        return group[0]

    weights = np.array([s.support for s in group], dtype=np.float64)
    total = float(weights.sum())

    def wavg(values: Iterable[float]) -> float:
        return float(np.dot(weights, np.fromiter(values, dtype=np.float64))) / total

    position = (wavg(s.position[0] for s in group), wavg(s.position[1] for s in group))
    direction, length = _shadow_geometry(position)
    confidence = wavg(s.confidence for s in group)
    head = group[0]
    return replace(
        head,
        position=position,
        size=(wavg(s.size[0] for s in group), wavg(s.size[1] for s in group)),
        estimated_height=wavg(s.estimated_height for s in group),
        confidence=confidence,
        support=int(total),
        name=display_name(head.kind, confidence),
        shadow_direction_deg=direction,
        shadow_length=length,
    )


def _merge_pass(
    sources: Sequence[ShadeSource],
    threshold: float,
    aspect: float,
) -> List[ShadeSource]:
    used = [False] * len(sources)
    merged: List[ShadeSource] = []
    for i, seed in enumerate(sources):
        if used[i]:
            continue
        used[i] = True
        group = [seed]
        for j in range(i + 1, len(sources)):
            other = sources[j]
            if used[j] or other.kind is not seed.kind:
                continue
            if _distance(seed, other, aspect) < threshold:
                group.append(other)
                used[j] = True
        merged.append(_combine(group))
    return merged


def merge_shade_sources(
    sources: Sequence[ShadeSource],
    distance_threshold: float = DEFAULT_PARAMS["merge_distance"],
    aspect: float = 1.0,
) -> List[ShadeSource]:
    """Merge same-kind sources whose centres are closer than the threshold.

    Distances are measured in percent of the frame width, so the default
    of 20 means 20 % of the width.  Positions store ``y`` as a percentage
    of the frame height; *aspect* (``frame_height / frame_width``)
    converts it, and the default of 1.0 assumes a square frame.  Position, size, height and
    confidence of a merge group are averaged, weighted by each member's
    :attr:`~solar_layers.models.ShadeSource.support`.  Passes repeat until
    nothing merges, so the result is stable under a second call.
    """
    current = list(sources)
    while True:
        merged = _merge_pass(current, distance_threshold, aspect)
        if len(merged) == len(current):
            return merged
        current = merged


# ---------------------------------------------------------------------------
# Orchestrating class
# ---------------------------------------------------------------------------


class ShadeSourceClassifier:
    """Classify regions from one or more shade masks into shade sources.

    Args:
        frame_width: Width in pixels of the rasters the regions came from.
        frame_height: Height in pixels of those rasters.
        rng: Generator for height jitter.  Built from *seed* when omitted.
        seed: Seed used when *rng* is not supplied.
        merge_distance: Merge threshold in frame-percentage units.
        min_confidence: Merged sources at or below this are dropped.
        display_frame_size: Display units the full frame width maps to.

    Example::

        classifier = ShadeSourceClassifier(grid.width, grid.height, seed=7)
        sources = classifier.detect([extract_regions(m) for m in masks])
    """

    def __init__(
        self,
        frame_width: int,
        frame_height: int,
        *,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = DEFAULT_PARAMS["jitter_seed"],
        merge_distance: float = DEFAULT_PARAMS["merge_distance"],
        min_confidence: float = DEFAULT_PARAMS["min_confidence"],
        display_frame_size: float = DEFAULT_PARAMS["display_frame_size"],
    ) -> None:
        if frame_width <= 0 or frame_height <= 0:
            raise InputValidationError(
                f"Frame dimensions must be positive, got {frame_width}x{frame_height}."
            )
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.merge_distance = merge_distance
        self.min_confidence = min_confidence
        self.display_frame_size = display_frame_size

    def _to_source(self, index: int, features: RegionFeatures) -> ShadeSource:
        kind, confidence, height = classify_features(features, self.rng)
        position = (
            features.center_x / self.frame_width * 100.0,
            features.center_y / self.frame_height * 100.0,
        )
        size = (
            features.width / self.frame_width * self.display_frame_size,
            features.height / self.frame_height * self.display_frame_size,
        )
        direction, length = _shadow_geometry(position)
        return ShadeSource(
            id=f"candidate-{index}",
            kind=kind,
            position=position,
            size=size,
            estimated_height=height,
            confidence=confidence,
            name=display_name(kind, confidence),
            color=kind.color,
            shadow_direction_deg=direction,
            shadow_length=length,
        )

    def classify(self, regions: Sequence[Region]) -> List[ShadeSource]:
        """Classify each region independently (no merging or filtering)."""
        return [
            self._to_source(i, RegionFeatures.from_region(region))
            for i, region in enumerate(regions)
        ]

    def detect(self, region_groups: Iterable[Sequence[Region]]) -> List[ShadeSource]:
        """Classify the union of several region lists, merge and filter.

        Args:
            region_groups: One region list per sampled hour (or any other
                grouping); groups are processed in order.

        Returns:
            Merged sources with confidence above :attr:`min_confidence`,
            with ids ``detected-shade-0``, ``detected-shade-1`` …
        """
        candidates: List[ShadeSource] = []
        for regions in region_groups:
            candidates.extend(self.classify(regions))

        merged = merge_shade_sources(
            candidates, self.merge_distance, aspect=self.frame_height / self.frame_width,
        )
        kept = [s for s in merged if s.confidence > self.min_confidence]
        logger.info(
            "Shade detection: %d candidate(s) → %d merged → %d kept",
            len(candidates), len(merged), len(kept),
        )
        return [replace(s, id=f"detected-shade-{i}") for i, s in enumerate(kept)]
