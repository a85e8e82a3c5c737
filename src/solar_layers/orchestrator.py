"""
orchestrator.py
===============
Assemble named layer visualisations and shade analyses for one building.

Classes:
    LayerRenderOptions    Month / day / roof-only context for a request.
    ShadeArea             One shaded region of one hour, in frame units.
    HourlyShadeSummary    Shade percentage and areas for one hour.
    BatchLoadResult       Partial results plus per-layer failures.
    LayerOrchestrator     Public entry point.

Usage::

    from solar_layers import DataLayerUrls, LayerOrchestrator, LayerRenderOptions

    urls = DataLayerUrls.from_dict(data_layers_response)
    orchestrator = LayerOrchestrator(urls, api_key)

    for viz in orchestrator.render_layer("annualFlux"):
        print(viz.id, viz.width, viz.height)

    sources = orchestrator.get_shade_sources(LayerRenderOptions(month=6, day=21))
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .classifier import ShadeSourceClassifier
from .config import BINARY_MASK, GREY, HEIGHT, IRON, MONTH_NAMES, SHADE, LayerPipelineConfig
from .exceptions import InputValidationError, SolarLayersError
from .models import (
    BuildingInsights,
    DataLayerUrls,
    LayerVisualization,
    PaletteLegend,
    RasterGrid,
    Region,
    ShadeSource,
)
from .palette import render_palette, render_rgb
from .raster_store import HttpRasterSource, RasterStore
from .regions import extract_regions
from .shade_decoder import HOURS_PER_DAY, decode_day, shade_percentage
from .statistics import compute_stats
from .validators import Validators

logger = logging.getLogger("solar_layers.orchestrator")

Rendered = Tuple[RasterGrid, List[LayerVisualization]]

LAYER_IDS: Tuple[str, ...] = (
    "mask", "dsm", "rgb", "annualFlux", "monthlyFlux", "hourlyShade",
)

_URL_FIELDS: Dict[str, str] = {
    "mask": "mask_url",
    "dsm": "dsm_url",
    "rgb": "rgb_url",
    "annualFlux": "annual_flux_url",
    "monthlyFlux": "monthly_flux_url",
}


# ---------------------------------------------------------------------------
# Request / result records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LayerRenderOptions:
    """Context for a render or analysis request.

    Attributes:
        show_roof_only: Hide pixels outside the roof mask.
        month: 0-based month; ``None`` uses the configured default.
        day: Day of month; ``None`` uses the configured default.
    """

    show_roof_only: bool = False
    month: Optional[int] = None
    day: Optional[int] = None


@dataclass(frozen=True)
class ShadeArea:
    """A shaded region in frame units.

    ``position`` is the centre in percent of the frame; ``size`` is in
    display-frame units.  ``intensity`` is ``"full"``, ``"partial"`` or
    ``"light"`` depending on how often the region's pixels are shaded
    across the day.
    """

    position: Tuple[float, float]
    size: Tuple[float, float]
    intensity: str
    pixel_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": {"x": self.position[0], "y": self.position[1]},
            "size": {"width": self.size[0], "height": self.size[1]},
            "intensity": self.intensity,
            "pixel_count": self.pixel_count,
        }


@dataclass(frozen=True)
class HourlyShadeSummary:
    hour: int
    shade_percentage: float
    shade_areas: Tuple[ShadeArea, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": self.hour,
            "shade_percentage": self.shade_percentage,
            "shade_areas": [a.to_dict() for a in self.shade_areas],
        }


@dataclass
class BatchLoadResult:
    """Outcome of :meth:`LayerOrchestrator.batch_load`.

    Attributes:
        layers: Successfully loaded grids keyed by layer id.
        failures: Error message per layer id that could not be loaded.
    """

    layers: Dict[str, RasterGrid] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def fallbacks(self) -> List[str]:
        """Ids whose grid is the synthetic stand-in rather than real data."""
        return sorted(k for k, g in self.layers.items() if g.is_fallback)

    @property
    def ok(self) -> bool:
        return not self.failures


def _clamp(value: float, upper: int) -> int:
    return max(0, min(upper, int(value)))


def intensity_label(mean_intensity: float) -> str:
    if mean_intensity > 0.8:
        return "full"
    if mean_intensity > 0.4:
        return "partial"
    return "light"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class LayerOrchestrator:
    """Render layers and analyse shade for one building's data layers.

    Raster downloads go through a :class:`~solar_layers.raster_store.RasterStore`
    (shared cache); rendered visualisations are cached here, keyed by the
    layer id and the request options.

    Args:
        layers: URLs for the building's data layers.
        auth_key: API key forwarded to the raster transport.
        store: Raster store to use.  Defaults to an HTTP-backed store.
        config: Pipeline configuration.  Defaults to
            :class:`~solar_layers.config.LayerPipelineConfig`.
    """

    def __init__(
        self,
        layers: DataLayerUrls,
        auth_key: str,
        *,
        store: Optional[RasterStore] = None,
        config: Optional[LayerPipelineConfig] = None,
    ) -> None:
        self.layers = layers
        self.auth_key = auth_key
        self.config = config or LayerPipelineConfig()
        self.store = store or RasterStore(
            HttpRasterSource(),
            fallback_seed=self.config.fallback_seed,
            fallback_size=self.config.fallback_size,
        )
        self._viz_cache: Dict[Tuple[Any, ...], Tuple[LayerVisualization, ...]] = {}
        self._viz_lock = threading.Lock()

        self._renderers: Dict[str, Callable[..., Rendered]] = {
            "mask": self._render_mask,
            "dsm": self._render_dsm,
            "rgb": self._render_rgb,
            "annualFlux": self._render_annual_flux,
            "monthlyFlux": self._render_monthly_flux,
            "hourlyShade": self._render_hourly_shade,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_available_layers(self) -> List[str]:
        """Layer ids that have a URL in :attr:`layers`, in canonical order."""
        available = [lid for lid, attr in _URL_FIELDS.items() if getattr(self.layers, attr)]
        if self.layers.hourly_shade_urls:
            available.append("hourlyShade")
        return available

    def render_layer(
        self,
        layer_id: str,
        options: Optional[LayerRenderOptions] = None,
    ) -> List[LayerVisualization]:
        """Render one named layer.

        ``monthlyFlux`` yields one visualisation per month band and
        ``hourlyShade`` one per hour; every other layer yields one.

        Raises:
            InputValidationError: Unknown layer id, or the layer has no URL.
            InsufficientInputError: Month beyond the hourly-shade URL list.
        """
        if layer_id not in self._renderers:
            raise InputValidationError(
                f"Unknown layer '{layer_id}'. Valid layers: {', '.join(LAYER_IDS)}"
            )
        if layer_id not in self.get_available_layers():
            raise InputValidationError(f"Layer '{layer_id}' has no URL for this building.")

        options = options or LayerRenderOptions()
        month, day = self.resolve_date(options)
        key = (layer_id, options.show_roof_only, month, day)

        with self._viz_lock:
            cached = self._viz_cache.get(key)
        if cached is not None:
            logger.debug("Using cached visualisation %s", layer_id)
            return list(cached)

        mask = self._roof_mask() if options.show_roof_only else None
        grid, visualizations = self._renderers[layer_id](mask=mask, month=month, day=day)

        if grid.is_fallback or (mask is not None and mask.is_fallback):
            # Not cached so the next call retries the real raster
            logger.info(
                "Rendered %d fallback visualisation(s) for %s", len(visualizations), layer_id,
            )
            return visualizations

        with self._viz_lock:
            stored = self._viz_cache.setdefault(key, tuple(visualizations))
        logger.info("Rendered %d visualisation(s) for %s", len(stored), layer_id)
        return list(stored)

    def get_shade_sources(
        self,
        options: Optional[LayerRenderOptions] = None,
    ) -> List[ShadeSource]:
        """Detect shade sources from every sampled hour of the requested day.

        Regions are extracted per hour and classified as one pool, so a
        source only visible at some hours is still found.

        Raises:
            InsufficientInputError: No shade URL for the requested month.
        """
        grid, masks = self._decode_requested_day(options or LayerRenderOptions())
        groups = self._extract_per_hour(masks)

        classifier = ShadeSourceClassifier(
            grid.width,
            grid.height,
            seed=self.config.jitter_seed,
            merge_distance=self.config.merge_distance,
            min_confidence=self.config.min_confidence,
            display_frame_size=self.config.display_frame_size,
        )
        return classifier.detect(groups[hour] for hour in sorted(groups))

    def get_shade_analysis(
        self,
        options: Optional[LayerRenderOptions] = None,
    ) -> List[HourlyShadeSummary]:
        """Per-hour shade percentage and shade areas for one day.

        Area intensity is the mean share of sampled hours in which the
        area's pixels are shaded.
        """
        grid, masks = self._decode_requested_day(options or LayerRenderOptions())
        frequency = np.mean(np.stack(list(masks.values())), axis=0)
        groups = self._extract_per_hour(masks, intensity=frequency)

        summaries = []
        for hour, binary in masks.items():
            areas = tuple(self._shade_area(r, grid) for r in groups[hour])
            summaries.append(HourlyShadeSummary(hour, shade_percentage(binary), areas))
        return summaries

    def segment_shade_percentages(
        self,
        insights: BuildingInsights,
        options: Optional[LayerRenderOptions] = None,
    ) -> Dict[int, float]:
        """Mean hourly shade percentage inside each roof segment's box.

        Segments whose bounding box falls outside the raster get ``0.0``.

        Returns:
            ``{segment_index: percent}``.
        """
        grid, masks = self._decode_requested_day(options or LayerRenderOptions())
        stack = np.stack(list(masks.values()))

        result: Dict[int, float] = {}
        for index, segment in enumerate(insights.roof_segments):
            x0, y0 = grid.latlon_to_pixel(segment.ne[0], segment.sw[1])
            x1, y1 = grid.latlon_to_pixel(segment.sw[0], segment.ne[1])
            cols = slice(_clamp(np.floor(x0), grid.width), _clamp(np.ceil(x1), grid.width))
            rows = slice(_clamp(np.floor(y0), grid.height), _clamp(np.ceil(y1), grid.height))
            window = stack[:, rows, cols]
            result[index] = float(window.mean() * 100.0) if window.size else 0.0
        return result

    def batch_load(
        self,
        layer_list: Union[Mapping[str, str], Sequence[Tuple[str, str]]],
    ) -> BatchLoadResult:
        """Fetch several layers concurrently.

        Args:
            layer_list: ``(layer_id, url)`` pairs or an id → url mapping.

        Returns:
            A :class:`BatchLoadResult`; one layer failing never cancels
            the others.
        """
        items = list(layer_list.items()) if isinstance(layer_list, Mapping) else list(layer_list)
        logger.info("Batch loading %d layer(s)…", len(items))
        result = BatchLoadResult()
        if not items:
            return result

        with ThreadPoolExecutor(max_workers=min(self.config.max_workers, len(items))) as pool:
            futures = {pool.submit(self._load, lid, url): lid for lid, url in items}
            for future in as_completed(futures):
                layer_id = futures[future]
                try:
                    result.layers[layer_id] = future.result()
                except SolarLayersError as exc:
                    logger.error("Failed to load layer %s: %s", layer_id, exc.message)
                    result.failures[layer_id] = exc.message

        logger.info(
            "Batch load complete: %d/%d layer(s) loaded", len(result.layers), len(items),
        )
        return result

    def clear_cache(self) -> None:
        """Drop cached rasters and visualisations."""
        self.store.clear_cache()
        with self._viz_lock:
            self._viz_cache.clear()
        logger.info("Layer caches cleared")

    def cache_stats(self) -> Dict[str, int]:
        with self._viz_lock:
            visualizations = sum(len(v) for v in self._viz_cache.values())
        return {"layers": self.store.cached_count, "visualizations": visualizations}

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------

    def _load(self, layer_id: str, url: str) -> RasterGrid:
        return self.store.fetch(
            url, self.auth_key, layer_id=layer_id, fallback=self.config.use_fallback,
        )

    def _url(self, layer_id: str) -> str:
        return getattr(self.layers, _URL_FIELDS[layer_id])

    def _roof_mask(self) -> Optional[RasterGrid]:
        if not self.layers.mask_url:
            logger.warning("Roof-only view requested but no mask URL is available.")
            return None
        return self._load("mask", self.layers.mask_url)

    def resolve_date(self, options: LayerRenderOptions) -> Tuple[int, int]:
        month = self.config.default_month if options.month is None else options.month
        day = self.config.default_day if options.day is None else options.day
        return month, day

    def _shade_grid(self, month: int) -> RasterGrid:
        Validators.assert_month_available(month, len(self.layers.hourly_shade_urls))
        return self._load(f"hourlyShade_{month}", self.layers.hourly_shade_urls[month])

    def _decode_requested_day(
        self,
        options: LayerRenderOptions,
    ) -> Tuple[RasterGrid, Dict[int, np.ndarray]]:
        month, day = self.resolve_date(options)
        grid = self._shade_grid(month)
        masks = decode_day(
            grid, day, self.config.sample_hours,
            max_workers=self.config.max_workers,
        )
        return grid, masks

    def _extract_per_hour(
        self,
        masks: Mapping[int, np.ndarray],
        intensity: Optional[np.ndarray] = None,
    ) -> Dict[int, List[Region]]:
        groups: Dict[int, List[Region]] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = {
                pool.submit(extract_regions, binary, self.config.min_region_size, intensity): hour
                for hour, binary in masks.items()
            }
            for future in as_completed(futures):
                groups[futures[future]] = future.result()
        return groups

    def _shade_area(self, region: Region, grid: RasterGrid) -> ShadeArea:
        cx, cy = region.center
        frame = self.config.display_frame_size
        return ShadeArea(
            position=(cx / grid.width * 100.0, cy / grid.height * 100.0),
            size=(region.width / grid.width * frame, region.height / grid.height * frame),
            intensity=intensity_label(region.mean_intensity),
            pixel_count=region.pixel_count,
        )

    # ------------------------------------------------------------------
    # Layer renderers
    # ------------------------------------------------------------------

    def _render_mask(self, *, mask: Optional[RasterGrid], **_: Any) -> Rendered:
        grid = self._load("mask", self._url("mask"))
        pixels = render_palette(grid, 0, mask, BINARY_MASK, 0.0, 1.0)
        return grid, [
            LayerVisualization(
                id="mask",
                name="Roof Mask",
                pixels=pixels,
                bounds=grid.bounds,
                legend=PaletteLegend(BINARY_MASK, "No roof", "Roof area"),
            )
        ]

    def _render_dsm(self, *, mask: Optional[RasterGrid], **_: Any) -> Rendered:
        grid = self._load("dsm", self._url("dsm"))
        stats = compute_stats(grid.bands[0], grid.no_data_value)
        pixels = render_palette(grid, 0, mask, HEIGHT, stats.min, stats.max)
        return grid, [
            LayerVisualization(
                id="dsm",
                name="Digital Surface Model",
                pixels=pixels,
                bounds=grid.bounds,
                legend=PaletteLegend(HEIGHT, f"{stats.min:.1f} m", f"{stats.max:.1f} m"),
            )
        ]

    def _render_rgb(self, *, mask: Optional[RasterGrid], **_: Any) -> Rendered:
        grid = self._load("rgb", self._url("rgb"))
        if grid.band_count >= 3:
            pixels = render_rgb(grid, mask)
        else:
            logger.warning("RGB layer has %d band(s); drawing band 0 in grey.", grid.band_count)
            stats = compute_stats(grid.bands[0], grid.no_data_value)
            pixels = render_palette(grid, 0, mask, GREY, stats.min, stats.max)
        return grid, [
            LayerVisualization(
                id="rgb", name="RGB Satellite Imagery", pixels=pixels, bounds=grid.bounds,
            )
        ]

    def _render_annual_flux(
        self, *, mask: Optional[RasterGrid], **_: Any,
    ) -> Rendered:
        grid = self._load("annualFlux", self._url("annualFlux"))
        stats = compute_stats(grid.bands[0], grid.no_data_value)
        pixels = render_palette(grid, 0, mask, IRON, stats.min, stats.max)
        return grid, [
            LayerVisualization(
                id="annualFlux",
                name="Annual Solar Flux",
                pixels=pixels,
                bounds=grid.bounds,
                legend=PaletteLegend(IRON, "Low irradiance", "High irradiance"),
            )
        ]

    def _render_monthly_flux(
        self, *, mask: Optional[RasterGrid], **_: Any,
    ) -> Rendered:
        grid = self._load("monthlyFlux", self._url("monthlyFlux"))
        legend = PaletteLegend(IRON, "Low irradiance", "High irradiance")

        visualizations = []
        for month in range(min(grid.band_count, len(MONTH_NAMES))):
            stats = compute_stats(grid.bands[month], grid.no_data_value)
            visualizations.append(
                LayerVisualization(
                    id=f"monthlyFlux_{month}",
                    name=f"Monthly Flux - {MONTH_NAMES[month]}",
                    pixels=render_palette(grid, month, mask, IRON, stats.min, stats.max),
                    bounds=grid.bounds,
                    legend=legend,
                )
            )
        return grid, visualizations

    def _render_hourly_shade(
        self, *, mask: Optional[RasterGrid], month: int, day: int,
    ) -> Rendered:
        grid = self._shade_grid(month)
        masks = decode_day(grid, day, max_workers=self.config.max_workers)
        legend = PaletteLegend(SHADE, "Shade", "Sunlight")

        visualizations = []
        for hour, binary in masks.items():
            # 1 = sunlight so the bright end of the ramp marks lit pixels; NaN hides no-data
            source_band = hour if grid.band_count >= HOURS_PER_DAY else 0
            values = np.where(grid.valid_mask(source_band), 1.0 - binary, np.nan)
            lit = replace(grid, bands=(values.ravel(),), no_data_value=None)
            visualizations.append(
                LayerVisualization(
                    id=f"hourlyShade_{month}_{day}_{hour}",
                    name=f"Shade Pattern - {hour}:00",
                    pixels=render_palette(lit, 0, mask, SHADE, 0.0, 1.0),
                    bounds=grid.bounds,
                    legend=legend,
                )
            )
        return grid, visualizations
