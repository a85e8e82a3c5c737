"""
Tests — Layer Orchestrator
==========================
Integration tests for :class:`~solar_layers.orchestrator.LayerOrchestrator`
backed by an in-memory raster source serving synthetic GeoTIFFs.

Every raster is 20 x 20 px.  The hourly-shade raster for January marks a
10 x 10 block in the top-left corner as shaded on day 15 between 10:00
and 14:00.
"""

from __future__ import annotations

import numpy as np
import pytest

from solar_layers.config import LayerPipelineConfig
from solar_layers.exceptions import InputValidationError, InsufficientInputError
from solar_layers.models import BuildingInsights, DataLayerUrls, ShadeSourceKind
from solar_layers.orchestrator import LayerOrchestrator, LayerRenderOptions, intensity_label
from solar_layers.raster_store import RasterStore

BASE = "https://solar.example.com/layers"
URLS = {
    "maskUrl": f"{BASE}/mask.tif",
    "dsmUrl": f"{BASE}/dsm.tif",
    "rgbUrl": f"{BASE}/rgb.tif",
    "annualFluxUrl": f"{BASE}/annual.tif",
    "monthlyFluxUrl": f"{BASE}/monthly.tif",
    "hourlyShadeUrls": [f"{BASE}/shade_0.tif", f"{BASE}/shade_1.tif"],
    "imageryDate": {"year": 2023, "month": 6, "day": 2},
}

SHADED_HOURS = range(10, 15)


def _shade_raster() -> np.ndarray:
    # Bit 14 is the day-15 bit and also the hour-14 bit
    raw = (1 << 14) | sum(1 << h for h in SHADED_HOURS)
    data = np.zeros((20, 20), dtype=np.float32)
    data[:10, :10] = raw
    return data


def _insights(*boxes) -> BuildingInsights:
    segments = []
    for (s, w), (n, e) in boxes:
        segments.append({
            "pitchDegrees": 20.0,
            "azimuthDegrees": 180.0,
            "stats": {"areaMeters2": 40.0, "sunshineQuantiles": [800, 1200]},
            "center": {"latitude": (s + n) / 2, "longitude": (w + e) / 2},
            "boundingBox": {
                "sw": {"latitude": s, "longitude": w},
                "ne": {"latitude": n, "longitude": e},
            },
        })
    return BuildingInsights.from_dict({
        "center": {"latitude": 40.749, "longitude": -73.999},
        "solarPotential": {"roofSegmentStats": segments},
    })


@pytest.fixture()
def source(memory_source, geotiff_bytes):
    mask = np.zeros((20, 20))
    mask[:, :10] = 1
    rng = np.random.default_rng(0)
    memory_source.payloads.update({
        URLS["maskUrl"]: geotiff_bytes(mask),
        URLS["dsmUrl"]: geotiff_bytes(np.arange(400).reshape(20, 20) / 10.0),
        URLS["rgbUrl"]: geotiff_bytes(rng.integers(0, 256, (3, 20, 20)).astype(np.float32)),
        URLS["annualFluxUrl"]: geotiff_bytes(rng.uniform(800, 1600, (20, 20))),
        URLS["monthlyFluxUrl"]: geotiff_bytes(rng.uniform(0, 200, (12, 20, 20))),
        URLS["hourlyShadeUrls"][0]: geotiff_bytes(_shade_raster()),
        URLS["hourlyShadeUrls"][1]: geotiff_bytes(np.zeros((20, 20))),
    })
    return memory_source


def _orchestrator(source, urls=None, **config) -> LayerOrchestrator:
    cfg = LayerPipelineConfig(fallback_size=16, max_workers=4, **config)
    store = RasterStore(source, fallback_size=cfg.fallback_size)
    return LayerOrchestrator(
        DataLayerUrls.from_dict(urls or URLS), "test-key", store=store, config=cfg,
    )


JANUARY_15 = LayerRenderOptions(month=0, day=15)


# ---------------------------------------------------------------------------
# Layer listing and rendering
# ---------------------------------------------------------------------------


class TestAvailableLayers:
    def test_all_layers(self, source) -> None:
        assert _orchestrator(source).get_available_layers() == [
            "mask", "dsm", "rgb", "annualFlux", "monthlyFlux", "hourlyShade",
        ]

    def test_missing_urls_are_omitted(self, source) -> None:
        urls = {"dsmUrl": URLS["dsmUrl"], "annualFluxUrl": URLS["annualFluxUrl"]}
        assert _orchestrator(source, urls).get_available_layers() == ["dsm", "annualFlux"]


class TestRenderLayer:
    def test_mask_layer(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("mask")
        assert viz.id == "mask"
        assert (viz.width, viz.height) == (20, 20)
        assert viz.legend.min_label == "No roof"
        assert viz.legend.max_label == "Roof area"
        assert viz.pixels[0, 0].tolist() == [179, 229, 252, 255]
        assert viz.pixels[0, 19].tolist() == [33, 33, 33, 255]

    def test_dsm_legend_uses_metres(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("dsm")
        assert (viz.legend.min_label, viz.legend.max_label) == ("0.0 m", "39.9 m")
        assert viz.bounds.north == pytest.approx(40.75)

    def test_roof_only_hides_pixels_outside_mask(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("dsm", LayerRenderOptions(show_roof_only=True))
        assert (viz.pixels[:, :10, 3] == 255).all()
        assert (viz.pixels[:, 10:, 3] == 0).all()

    def test_mask_not_applied_by_default(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("dsm")
        assert (viz.pixels[..., 3] == 255).all()

    def test_rgb_layer(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("rgb")
        assert viz.id == "rgb"
        assert viz.legend is None
        assert (viz.pixels[..., 3] == 255).all()

    def test_rgb_fallback_is_drawn_in_grey(self, source) -> None:
        del source.payloads[URLS["rgbUrl"]]
        [viz] = _orchestrator(source).render_layer("rgb")
        assert (viz.width, viz.height) == (16, 16)
        assert (viz.pixels[..., 0] == viz.pixels[..., 1]).all()

    def test_annual_flux_legend(self, source) -> None:
        [viz] = _orchestrator(source).render_layer("annualFlux")
        assert viz.legend.min_label == "Low irradiance"
        assert viz.legend.max_label == "High irradiance"

    def test_monthly_flux_has_one_layer_per_month(self, source) -> None:
        visualizations = _orchestrator(source).render_layer("monthlyFlux")
        assert [v.id for v in visualizations] == [f"monthlyFlux_{m}" for m in range(12)]
        assert visualizations[0].name == "Monthly Flux - January"
        assert visualizations[11].name == "Monthly Flux - December"

    def test_hourly_shade_has_24_layers(self, source) -> None:
        visualizations = _orchestrator(source).render_layer("hourlyShade", JANUARY_15)
        assert len(visualizations) == 24
        assert visualizations[12].id == "hourlyShade_0_15_12"
        assert visualizations[12].name == "Shade Pattern - 12:00"
        assert visualizations[12].legend.min_label == "Shade"

        noon, dawn = visualizations[12].pixels, visualizations[3].pixels
        assert noon[0, 0].tolist() == [33, 33, 33, 255]      # shaded
        assert noon[15, 15].tolist() == [255, 202, 40, 255]  # sunlit
        assert dawn[0, 0].tolist() == [255, 202, 40, 255]

    def test_hourly_shade_hides_no_data(self, source, geotiff_bytes) -> None:
        data = _shade_raster()
        data[0, 0] = -9999.0
        data[19, 19] = -9999.0
        source.payloads[URLS["hourlyShadeUrls"][0]] = geotiff_bytes(data, nodata=-9999.0)

        visualizations = _orchestrator(source).render_layer("hourlyShade", JANUARY_15)
        for viz in (visualizations[3], visualizations[12]):
            assert viz.pixels[0, 0].tolist() == [0, 0, 0, 0]
            assert viz.pixels[19, 19].tolist() == [0, 0, 0, 0]
        assert visualizations[12].pixels[1, 1].tolist() == [33, 33, 33, 255]
        assert visualizations[12].pixels[15, 15].tolist() == [255, 202, 40, 255]

    def test_per_hour_layout_hides_no_data_of_that_hour(self, source, geotiff_bytes) -> None:
        bands = np.zeros((24, 20, 20))
        bands[12, 0, 0] = -1.0
        source.payloads[URLS["hourlyShadeUrls"][0]] = geotiff_bytes(bands, nodata=-1.0)

        visualizations = _orchestrator(source).render_layer("hourlyShade", JANUARY_15)
        assert visualizations[12].pixels[0, 0, 3] == 0
        assert visualizations[11].pixels[0, 0].tolist() == [255, 202, 40, 255]

    def test_hourly_shade_uses_default_month(self, source) -> None:
        orchestrator = _orchestrator(source, default_month=1)
        visualizations = orchestrator.render_layer("hourlyShade")
        assert visualizations[0].id == "hourlyShade_1_15_0"

    def test_unknown_layer_raises(self, source) -> None:
        with pytest.raises(InputValidationError, match="Unknown layer"):
            _orchestrator(source).render_layer("ndvi")

    def test_layer_without_url_raises(self, source) -> None:
        with pytest.raises(InputValidationError, match="no URL"):
            _orchestrator(source, {"dsmUrl": URLS["dsmUrl"]}).render_layer("rgb")

    def test_month_beyond_shade_urls_raises(self, source) -> None:
        with pytest.raises(InsufficientInputError):
            _orchestrator(source).render_layer("hourlyShade", LayerRenderOptions(month=5))


class TestCaching:
    def test_visualisations_are_cached(self, source) -> None:
        orchestrator = _orchestrator(source)
        first = orchestrator.render_layer("dsm")
        second = orchestrator.render_layer("dsm")
        assert first[0] is second[0]
        assert source.calls.count(URLS["dsmUrl"]) == 1
        assert orchestrator.cache_stats() == {"layers": 1, "visualizations": 1}

    def test_options_are_part_of_the_key(self, source) -> None:
        orchestrator = _orchestrator(source)
        orchestrator.render_layer("dsm")
        orchestrator.render_layer("dsm", LayerRenderOptions(show_roof_only=True))
        assert orchestrator.cache_stats()["visualizations"] == 2

    def test_fallback_visualisations_are_not_cached(self, source) -> None:
        payload = source.payloads.pop(URLS["dsmUrl"])
        orchestrator = _orchestrator(source)

        [first] = orchestrator.render_layer("dsm")
        assert first.width == 16
        assert orchestrator.cache_stats()["visualizations"] == 0

        source.payloads[URLS["dsmUrl"]] = payload
        [second] = orchestrator.render_layer("dsm")
        assert second.width == 20
        assert orchestrator.cache_stats()["visualizations"] == 1

    def test_fallback_roof_mask_is_not_cached(self, source) -> None:
        del source.payloads[URLS["maskUrl"]]
        orchestrator = _orchestrator(source)
        orchestrator.render_layer("dsm", LayerRenderOptions(show_roof_only=True))
        assert orchestrator.cache_stats()["visualizations"] == 0

    def test_clear_cache(self, source) -> None:
        orchestrator = _orchestrator(source)
        orchestrator.render_layer("monthlyFlux")
        orchestrator.clear_cache()
        assert orchestrator.cache_stats() == {"layers": 0, "visualizations": 0}


# ---------------------------------------------------------------------------
# Shade analysis
# ---------------------------------------------------------------------------


class TestShadeSources:
    def test_block_is_one_merged_building(self, source) -> None:
        sources = _orchestrator(source).get_shade_sources(JANUARY_15)
        assert len(sources) == 1
        building = sources[0]
        assert building.id == "detected-shade-0"
        assert building.kind is ShadeSourceKind.BUILDING
        assert building.support == len(SHADED_HOURS)
        assert building.position == (pytest.approx(22.5), pytest.approx(22.5))
        assert building.size == (pytest.approx(100.0), pytest.approx(100.0))

    def test_other_day_has_no_sources(self, source) -> None:
        assert _orchestrator(source).get_shade_sources(LayerRenderOptions(month=0, day=3)) == []

    def test_missing_month_raises(self, source) -> None:
        with pytest.raises(InsufficientInputError):
            _orchestrator(source).get_shade_sources(LayerRenderOptions(month=7))


class TestShadeAnalysis:
    def test_hourly_percentages(self, source) -> None:
        summaries = _orchestrator(source).get_shade_analysis(JANUARY_15)
        assert [s.hour for s in summaries] == list(range(24))
        assert summaries[12].shade_percentage == pytest.approx(25.0)
        assert summaries[3].shade_percentage == 0.0
        assert summaries[3].shade_areas == ()
        # Shaded in 5 of 24 hours
        assert summaries[12].shade_areas[0].intensity == "light"

    def test_intensity_over_sampled_hours(self, source) -> None:
        orchestrator = _orchestrator(source, sample_hours=tuple(SHADED_HOURS))
        summaries = orchestrator.get_shade_analysis(JANUARY_15)
        assert len(summaries) == 5
        area = summaries[0].shade_areas[0]
        assert area.intensity == "full"
        assert area.pixel_count == 100
        assert area.to_dict()["position"] == {"x": 22.5, "y": 22.5}

    @pytest.mark.parametrize("value,label", [(0.9, "full"), (0.8, "partial"), (0.41, "partial"), (0.4, "light")])
    def test_intensity_labels(self, value: float, label: str) -> None:
        assert intensity_label(value) == label


class TestSegmentShade:
    def test_segment_percentages(self, source) -> None:
        insights = _insights(
            ((40.7492, -73.9998), (40.7498, -73.9992)),   # inside the shaded block
            ((40.7482, -73.9988), (40.7488, -73.9982)),   # sunlit corner
            ((10.0, 10.0), (10.001, 10.001)),             # off the raster
        )
        orchestrator = _orchestrator(source, sample_hours=tuple(SHADED_HOURS))
        result = orchestrator.segment_shade_percentages(insights, JANUARY_15)
        assert result == {0: pytest.approx(100.0), 1: 0.0, 2: 0.0}

    def test_segments_just_outside_the_frame(self, source) -> None:
        insights = _insights(
            ((40.7492, -74.0010), (40.7498, -74.0005)),   # just west
            ((40.7505, -73.9998), (40.7510, -73.9992)),   # just north
            ((40.7492, -74.0005), (40.7498, -73.9995)),   # straddles the west edge
        )
        orchestrator = _orchestrator(source, sample_hours=tuple(SHADED_HOURS))
        result = orchestrator.segment_shade_percentages(insights, JANUARY_15)
        assert result == {0: 0.0, 1: 0.0, 2: pytest.approx(100.0)}


# ---------------------------------------------------------------------------
# Batch loading
# ---------------------------------------------------------------------------


class TestBatchLoad:
    def test_partial_failure_is_reported(self, source) -> None:
        orchestrator = _orchestrator(source, use_fallback=False)
        result = orchestrator.batch_load([
            ("mask", URLS["maskUrl"]),
            ("dsm", URLS["dsmUrl"]),
            ("extra", f"{BASE}/missing.tif"),
        ])
        assert sorted(result.layers) == ["dsm", "mask"]
        assert list(result.failures) == ["extra"]
        assert "404" in result.failures["extra"]
        assert not result.ok

    def test_fallback_counts_as_loaded(self, source) -> None:
        result = _orchestrator(source).batch_load({
            "dsm": URLS["dsmUrl"],
            "extra": f"{BASE}/missing.tif",
        })
        assert result.ok
        assert result.fallbacks == ["extra"]

    def test_all_items_fetched(self, source) -> None:
        items = {f"month_{m}": url for m, url in enumerate(URLS["hourlyShadeUrls"])}
        result = _orchestrator(source).batch_load(items)
        assert sorted(result.layers) == ["month_0", "month_1"]
        assert sorted(source.calls) == sorted(items.values())

    def test_empty_batch(self, source) -> None:
        result = _orchestrator(source).batch_load([])
        assert result.layers == {} and result.failures == {}
