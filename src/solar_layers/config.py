"""
config.py
=========
Pipeline configuration and the named colour ramps used for each layer.

``DEFAULT_PARAMS`` holds every tunable value; :class:`LayerPipelineConfig`
is the typed bundle the orchestrator and tools actually consume.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Tuple

from .exceptions import InputValidationError

logger = logging.getLogger("solar_layers.config")


# ---------------------------------------------------------------------------
# Colour ramps
# ---------------------------------------------------------------------------

BINARY_MASK: Tuple[str, ...] = ("#212121", "#B3E5FC")   # no roof → roof
HEIGHT: Tuple[str, ...] = ("#3949AB", "#81D4FA", "#66BB6A", "#FFE082", "#E53935")
IRON: Tuple[str, ...] = ("#00000A", "#91009C", "#E64616", "#FEB400", "#FFFFF6")
SHADE: Tuple[str, ...] = ("#212121", "#FFCA28")         # shade → sun
GREY: Tuple[str, ...] = ("#000000", "#FFFFFF")

MONTH_NAMES: Tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


# ---------------------------------------------------------------------------
# Default parameters
# ---------------------------------------------------------------------------

DEFAULT_PARAMS: Dict[str, Any] = {
    # Temporal defaults (month is 0-based, June)
    "default_month": 5,
    "default_day": 15,
    "sample_hours": tuple(range(24)),

    # Region extraction / classification
    "min_region_size": 10,
    "merge_distance": 20.0,
    "min_confidence": 0.6,
    "display_frame_size": 200.0,
    "jitter_seed": 0,

    # Raster store
    "fallback_seed": 0,
    "fallback_size": 256,
    "use_fallback": True,

    # Concurrency
    "max_workers": 8,
}


@dataclass
class LayerPipelineConfig:
    """Configuration for :class:`~solar_layers.orchestrator.LayerOrchestrator`.

    Attributes:
        default_month: 0-based month used when render options omit one.
        default_day: Day-of-month used when render options omit one.
        sample_hours: Hours decoded for shade-source detection.
        min_region_size: Smallest region (pixels) kept by the extractor.
        merge_distance: Same-kind detections closer than this (percent of
            frame width) are merged.
        min_confidence: Merged sources at or below this are dropped.
        display_frame_size: Frame units that the full raster width maps to
            when reporting source sizes.
        jitter_seed: Seed for the height jitter generator; ``None`` draws
            fresh entropy.
        fallback_seed: Seed for the synthetic fallback raster.
        fallback_size: Edge length of the synthetic fallback raster.
        use_fallback: When ``False`` failed fetches raise instead of
            returning the synthetic raster.
        max_workers: Thread pool size for downloads and per-hour decoding.
    """

    default_month: int = DEFAULT_PARAMS["default_month"]
    default_day: int = DEFAULT_PARAMS["default_day"]
    sample_hours: Tuple[int, ...] = field(
        default_factory=lambda: tuple(DEFAULT_PARAMS["sample_hours"])
    )
    min_region_size: int = DEFAULT_PARAMS["min_region_size"]
    merge_distance: float = DEFAULT_PARAMS["merge_distance"]
    min_confidence: float = DEFAULT_PARAMS["min_confidence"]
    display_frame_size: float = DEFAULT_PARAMS["display_frame_size"]
    jitter_seed: int | None = DEFAULT_PARAMS["jitter_seed"]
    fallback_seed: int = DEFAULT_PARAMS["fallback_seed"]
    fallback_size: int = DEFAULT_PARAMS["fallback_size"]
    use_fallback: bool = DEFAULT_PARAMS["use_fallback"]
    max_workers: int = DEFAULT_PARAMS["max_workers"]

    def __post_init__(self) -> None:
        if self.min_region_size < 1:
            raise InputValidationError(
                f"min_region_size must be >= 1, got {self.min_region_size}"
            )
        if self.max_workers < 1:
            raise InputValidationError(
                f"max_workers must be >= 1, got {self.max_workers}"
            )
        if self.fallback_size < 2:
            raise InputValidationError(
                f"fallback_size must be >= 2, got {self.fallback_size}"
            )
        if not self.sample_hours:
            raise InputValidationError("sample_hours must contain at least one hour.")
        bad_hours = [h for h in self.sample_hours if not 0 <= h <= 23]
        if bad_hours:
            raise InputValidationError(f"sample_hours out of range: {bad_hours}")
        self.sample_hours = tuple(self.sample_hours)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LayerPipelineConfig":
        """Build a config from a plain dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, path: Path) -> "LayerPipelineConfig":
        """Load a config from a JSON file.

        Raises:
            InputValidationError: If the file is not a JSON object.
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise InputValidationError(f"Cannot read config '{path}': {exc}") from exc
        if not isinstance(data, dict):
            raise InputValidationError(f"Config '{path}' must contain a JSON object.")
        return cls.from_dict(data)
