"""
Solar Data Layers
=================
Render a building's solar data-layer rasters and detect the objects that
shade its roof.

Quick start::

    from solar_layers import DataLayerUrls, LayerOrchestrator

    orchestrator = LayerOrchestrator(DataLayerUrls.from_dict(record), api_key)
    layers = orchestrator.render_layer("dsm")
    sources = orchestrator.get_shade_sources()
"""

from .classifier import RegionFeatures, ShadeSourceClassifier, classify_features, merge_shade_sources
from .config import DEFAULT_PARAMS, LayerPipelineConfig
from .exceptions import (
    BandIndexError,
    DecodeError,
    DownloadError,
    GeocodeUnavailable,
    InputValidationError,
    InsufficientInputError,
    OutputWriteError,
    RasterError,
    SolarLayersError,
)
from .models import (
    BuildingInsights,
    DataLayerUrls,
    GeoBounds,
    LayerVisualization,
    PaletteLegend,
    RasterGrid,
    Region,
    RoofSegment,
    ShadeSource,
    ShadeSourceKind,
)
from .orchestrator import (
    BatchLoadResult,
    HourlyShadeSummary,
    LayerOrchestrator,
    LayerRenderOptions,
    ShadeArea,
)
from .palette import hex_to_rgb, interpolate_colors, render_palette, render_rgb
from .raster_store import HttpRasterSource, RasterSource, RasterStore, decode_geotiff
from .regions import extract_regions, extract_regions_above
from .shade_decoder import decode, decode_day, shade_percentage, to_bitfield
from .statistics import RasterStats, compute_stats

__version__ = "1.0.0"

__all__ = [
    "BandIndexError",
    "BatchLoadResult",
    "BuildingInsights",
    "DEFAULT_PARAMS",
    "DataLayerUrls",
    "DecodeError",
    "DownloadError",
    "GeoBounds",
    "GeocodeUnavailable",
    "HourlyShadeSummary",
    "HttpRasterSource",
    "InputValidationError",
    "InsufficientInputError",
    "LayerOrchestrator",
    "LayerPipelineConfig",
    "LayerRenderOptions",
    "LayerVisualization",
    "OutputWriteError",
    "PaletteLegend",
    "RasterError",
    "RasterGrid",
    "RasterSource",
    "RasterStats",
    "RasterStore",
    "Region",
    "RegionFeatures",
    "RoofSegment",
    "ShadeArea",
    "ShadeSource",
    "ShadeSourceClassifier",
    "ShadeSourceKind",
    "SolarLayersError",
    "classify_features",
    "compute_stats",
    "decode",
    "decode_day",
    "decode_geotiff",
    "extract_regions",
    "extract_regions_above",
    "hex_to_rgb",
    "interpolate_colors",
    "merge_shade_sources",
    "render_palette",
    "render_rgb",
    "shade_percentage",
    "to_bitfield",
]
