"""
models.py
=========
Value types shared by every stage of the pipeline.

Classes:
    GeoBounds           Geographic bounding rectangle in degrees.
    RasterGrid          Immutable decoded multi-band raster.
    Region              Connected set of pixels from the region extractor.
    ShadeSourceKind     Building / tree / terrain / structure.
    ShadeSource         Classified, merged shade-casting object.
    PaletteLegend       Colour stops plus min/max labels for a rendered layer.
    LayerVisualization  Rendered RGBA buffer ready for display.
    DataLayerUrls       Named URLs for one building's data layers.
    RoofSegment         Per-segment statistics from building insights.
    BuildingInsights    Building centre plus its roof segments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np

from .exceptions import InputValidationError
from .validators import Validators


# ---------------------------------------------------------------------------
# Rasters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeoBounds:
    """Geographic bounding rectangle (degrees)."""

    north: float
    south: float
    east: float
    west: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "north": self.north,
            "south": self.south,
            "east": self.east,
            "west": self.west,
        }


@dataclass(frozen=True, eq=False)
class RasterGrid:
    """A decoded multi-band raster plus its geographic metadata.

    Bands are stored as flattened, row-major ``float32`` arrays of length
    ``width * height``.  The arrays are copied and marked read-only on
    construction, so a grid can be shared between threads and cache
    entries without copying.

    Attributes:
        width: Pixel columns.
        height: Pixel rows.
        bands: One flattened array per spectral / temporal band.
        bounds: Bounding rectangle in degrees (best effort).
        pixel_scale: ``(x, y)`` ground units per pixel, signed as in the
            affine transform (``y`` is negative for north-up rasters).
        origin: Ground coordinate of pixel (0, 0).
        no_data_value: Sentinel marking invalid samples, if declared.
        crs_wkt: Coordinate reference system as WKT, if declared.
        is_fallback: ``True`` only for the synthetic fallback raster.

    Raises:
        DecodeError: If any band does not hold ``width * height`` samples.
    """

    width: int
    height: int
    bands: Tuple[np.ndarray, ...]
    bounds: GeoBounds
    pixel_scale: Tuple[float, float] = (1.0, 1.0)
    origin: Tuple[float, float] = (0.0, 0.0)
    no_data_value: Optional[float] = None
    crs_wkt: Optional[str] = field(default=None, repr=False)
    is_fallback: bool = False

    def __post_init__(self) -> None:
        owned = tuple(
            np.array(band, dtype=np.float32).ravel() for band in self.bands
        )
        Validators.assert_band_lengths(owned, self.width, self.height)
        for band in owned:
            band.flags.writeable = False
        object.__setattr__(self, "bands", owned)

    @property
    def band_count(self) -> int:
        return len(self.bands)

    def band(self, index: int = 0) -> np.ndarray:
        """Return band *index* as a read-only ``(height, width)`` view."""
        Validators.assert_band_index_valid(index, self.band_count)
        return self.bands[index].reshape(self.height, self.width)

    def valid_mask(self, index: int = 0) -> np.ndarray:
        """Boolean ``(height, width)`` mask of finite, non-no-data samples."""
        data = self.band(index)
        valid = np.isfinite(data)
        if self.no_data_value is not None:
            valid &= data != np.float32(self.no_data_value)
        return valid

    # ------------------------------------------------------------------
    # Coordinate helpers
    # ------------------------------------------------------------------

    def pixel_to_geo(self, pixel_x: float, pixel_y: float) -> Tuple[float, float]:
        """Map a pixel position to ground coordinates via origin + scale."""
        scale_x, scale_y = self.pixel_scale
        origin_x, origin_y = self.origin
        return origin_x + pixel_x * scale_x, origin_y + pixel_y * scale_y

    def geo_to_pixel(self, geo_x: float, geo_y: float) -> Tuple[float, float]:
        """Inverse of :meth:`pixel_to_geo`."""
        scale_x, scale_y = self.pixel_scale
        origin_x, origin_y = self.origin
        return (geo_x - origin_x) / scale_x, (geo_y - origin_y) / scale_y

    def latlon_to_pixel(self, lat: float, lon: float) -> Tuple[float, float]:
        """Map a WGS84 coordinate to a (fractional) pixel via :attr:`bounds`."""
        b = self.bounds
        span_x = (b.east - b.west) or 1.0
        span_y = (b.north - b.south) or 1.0
        return (
            (lon - b.west) / span_x * self.width,
            (b.north - lat) / span_y * self.height,
        )


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Region:
    """A 4-connected set of pixels produced by the region extractor.

    Attributes:
        pixels: Member ``(x, y)`` coordinates; never empty.
        mean_intensity: Average source value over the member pixels.
    """

    pixels: FrozenSet[Tuple[int, int]]
    mean_intensity: float
    min_x: int = field(init=False)
    min_y: int = field(init=False)
    max_x: int = field(init=False)
    max_y: int = field(init=False)

    def __post_init__(self) -> None:
        if not self.pixels:
            raise InputValidationError("A region must contain at least one pixel.")
        xs = [p[0] for p in self.pixels]
        ys = [p[1] for p in self.pixels]
        object.__setattr__(self, "min_x", min(xs))
        object.__setattr__(self, "min_y", min(ys))
        object.__setattr__(self, "max_x", max(xs))
        object.__setattr__(self, "max_y", max(ys))

    @property
    def pixel_count(self) -> int:
        return len(self.pixels)

    @property
    def bounding_box(self) -> Tuple[int, int, int, int]:
        """``(min_x, min_y, max_x, max_y)``, inclusive."""
        return self.min_x, self.min_y, self.max_x, self.max_y

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def center(self) -> Tuple[float, float]:
        return (self.min_x + self.max_x) / 2.0, (self.min_y + self.max_y) / 2.0


# ---------------------------------------------------------------------------
# Shade sources
# ---------------------------------------------------------------------------


class ShadeSourceKind(str, Enum):
    BUILDING = "building"
    TREE = "tree"
    TERRAIN = "terrain"
    STRUCTURE = "structure"

    @property
    def label(self) -> str:
        return "Terrain Feature" if self is ShadeSourceKind.TERRAIN else self.value.title()

    @property
    def color(self) -> str:
        return _KIND_COLORS[self]


_KIND_COLORS = {
    ShadeSourceKind.BUILDING: "#6B7280",
    ShadeSourceKind.TREE: "#059669",
    ShadeSourceKind.TERRAIN: "#92400E",
    ShadeSourceKind.STRUCTURE: "#7C3AED",
}


@dataclass(frozen=True)
class ShadeSource:
    """A classified shade-casting object inside the analysed frame.

    Attributes:
        id: Caller-assigned sequence id (``"detected-shade-0"``, …).
        kind: Building, tree, terrain or structure.
        position: ``(x, y)`` centre as percentages (0–100) of the frame.
        size: ``(width, height)`` in display-frame units.
        estimated_height: Height estimate in feet.
        confidence: Classification confidence, 0.0–1.0.
        support: Number of per-hour detections merged into this source.
        name: Display name (``"Detected Building"``, ``"Possible Tree"``).
        color: Display colour for the kind.
        shadow_direction_deg: Bearing of the centre from the frame centre.
        shadow_length: Distance of the centre from the frame centre (%).
    """

    id: str
    kind: ShadeSourceKind
    position: Tuple[float, float]
    size: Tuple[float, float]
    estimated_height: float
    confidence: float
    support: int = 1
    name: str = ""
    color: str = ""
    shadow_direction_deg: float = 0.0
    shadow_length: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Flat, JSON-serialisable record."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "x": round(self.position[0], 4),
            "y": round(self.position[1], 4),
            "width": round(self.size[0], 4),
            "height_px": round(self.size[1], 4),
            "estimated_height": round(self.estimated_height, 4),
            "confidence": round(self.confidence, 4),
            "support": self.support,
            "color": self.color,
            "shadow_direction_deg": round(self.shadow_direction_deg, 4),
            "shadow_length": round(self.shadow_length, 4),
        }


# ---------------------------------------------------------------------------
# Visualisations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaletteLegend:
    colors: Tuple[str, ...]
    min_label: str
    max_label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"colors": list(self.colors), "min": self.min_label, "max": self.max_label}


@dataclass(frozen=True, eq=False)
class LayerVisualization:
    """A rendered layer: RGBA pixels plus legend and geographic frame.

    Attributes:
        id: Stable layer id (``"dsm"``, ``"monthlyFlux_3"``, …).
        name: Human label.
        pixels: ``(height, width, 4)`` uint8 RGBA buffer.
        bounds: Bounds of the source raster.
        legend: Colour ramp and min/max labels, when the layer has one.
    """

    id: str
    name: str
    pixels: np.ndarray = field(repr=False)
    bounds: GeoBounds
    legend: Optional[PaletteLegend] = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


# ---------------------------------------------------------------------------
# Upstream records
# ---------------------------------------------------------------------------


def _latlng(d: Optional[Dict[str, Any]]) -> Tuple[float, float]:
    d = d or {}
    return float(d.get("latitude", 0.0)), float(d.get("longitude", 0.0))


@dataclass(frozen=True)
class DataLayerUrls:
    """URLs for one building's data layers.

    ``hourly_shade_urls`` holds one URL per month, January first.
    """

    mask_url: Optional[str] = None
    dsm_url: Optional[str] = None
    rgb_url: Optional[str] = None
    annual_flux_url: Optional[str] = None
    monthly_flux_url: Optional[str] = None
    hourly_shade_urls: Tuple[str, ...] = ()
    imagery_date: Optional[Tuple[int, int, int]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataLayerUrls":
        """Parse the upstream camelCase data-layers record."""
        date = data.get("imageryDate")
        return cls(
            mask_url=data.get("maskUrl"),
            dsm_url=data.get("dsmUrl"),
            rgb_url=data.get("rgbUrl"),
            annual_flux_url=data.get("annualFluxUrl"),
            monthly_flux_url=data.get("monthlyFluxUrl"),
            hourly_shade_urls=tuple(data.get("hourlyShadeUrls") or ()),
            imagery_date=(
                (int(date["year"]), int(date["month"]), int(date["day"]))
                if date else None
            ),
        )


@dataclass(frozen=True)
class RoofSegment:
    pitch_degrees: float
    azimuth_degrees: float
    area_m2: float
    sunshine_quantiles: Tuple[float, ...]
    center: Tuple[float, float]
    sw: Tuple[float, float]
    ne: Tuple[float, float]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoofSegment":
        stats = data.get("stats") or {}
        bbox = data.get("boundingBox") or {}
        return cls(
            pitch_degrees=float(data.get("pitchDegrees", 0.0)),
            azimuth_degrees=float(data.get("azimuthDegrees", 0.0)),
            area_m2=float(stats.get("areaMeters2", 0.0)),
            sunshine_quantiles=tuple(float(q) for q in stats.get("sunshineQuantiles", ())),
            center=_latlng(data.get("center")),
            sw=_latlng(bbox.get("sw")),
            ne=_latlng(bbox.get("ne")),
        )


@dataclass(frozen=True)
class BuildingInsights:
    """The subset of the building-insights record this pipeline reads."""

    center: Tuple[float, float]
    roof_segments: Tuple[RoofSegment, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildingInsights":
        potential = data.get("solarPotential") or {}
        segments: Sequence[Dict[str, Any]] = potential.get("roofSegmentStats") or []
        return cls(
            center=_latlng(data.get("center")),
            roof_segments=tuple(RoofSegment.from_dict(s) for s in segments),
        )

    @property
    def total_roof_area_m2(self) -> float:
        return float(sum(s.area_m2 for s in self.roof_segments))
