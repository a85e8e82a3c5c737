"""
Tests — Raster Store
====================
Unit tests for :mod:`solar_layers.raster_store` and
:class:`~solar_layers.models.RasterGrid`.

HTTP calls are mocked via the ``responses`` library; everything else uses
GeoTIFFs written into ``tmp_path``.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
import requests
import responses as rsps_lib

from solar_layers.exceptions import (
    DecodeError,
    DownloadError,
    GeocodeUnavailable,
    InsufficientInputError,
    InputValidationError,
    RasterError,
    SolarLayersError,
)
from solar_layers.models import GeoBounds, RasterGrid
from solar_layers.raster_store import (
    FALLBACK_BOUNDS,
    HttpRasterSource,
    RasterStore,
    decode_geotiff,
    geo_to_pixel,
    pixel_to_geo,
    project_coordinates,
    synthetic_fallback_grid,
)

from conftest import EAST, NORTH, SOUTH, WEST

LAYER_URL = "https://solar.example.com/v1/geoTiff/abc123.tif"


# ---------------------------------------------------------------------------
# RasterGrid
# ---------------------------------------------------------------------------


class TestRasterGrid:
    def test_band_length_mismatch_raises(self) -> None:
        with pytest.raises(DecodeError, match="expected 16"):
            RasterGrid(
                width=4, height=4,
                bands=(np.zeros(16), np.zeros(15)),
                bounds=GeoBounds(1, 0, 1, 0),
            )

    def test_no_bands_raises(self) -> None:
        with pytest.raises(DecodeError):
            RasterGrid(width=2, height=2, bands=(), bounds=GeoBounds(1, 0, 1, 0))

    def test_bands_are_copied_and_read_only(self) -> None:
        source = np.arange(4, dtype=np.float32)
        grid = RasterGrid(width=2, height=2, bands=(source,), bounds=GeoBounds(1, 0, 1, 0))
        source[0] = 99.0
        assert grid.bands[0][0] == 0.0
        with pytest.raises(ValueError):
            grid.bands[0][1] = 5.0

    def test_band_view_is_row_major(self) -> None:
        grid = RasterGrid(
            width=3, height=2, bands=(np.arange(6),), bounds=GeoBounds(1, 0, 1, 0),
        )
        assert grid.band(0).shape == (2, 3)
        assert grid.band(0)[1, 0] == 3.0

    def test_pixel_geo_round_trip(self, grid_factory) -> None:
        grid = grid_factory(np.zeros((20, 20)))
        gx, gy = pixel_to_geo(5, 10, grid)
        assert gx == pytest.approx(WEST + 5 * 0.0001)
        assert gy == pytest.approx(NORTH - 10 * 0.0001)
        px, py = geo_to_pixel(gx, gy, grid)
        assert (px, py) == (pytest.approx(5.0), pytest.approx(10.0))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeGeotiff:
    def test_every_band_has_width_times_height_samples(self, geotiff_bytes) -> None:
        data = np.random.default_rng(1).random((3, 7, 11)).astype(np.float32)
        grid = decode_geotiff(geotiff_bytes(data))
        assert (grid.width, grid.height, grid.band_count) == (11, 7, 3)
        assert all(band.size == 77 for band in grid.bands)
        np.testing.assert_allclose(grid.band(2), data[2])

    def test_geographic_metadata(self, geotiff_bytes) -> None:
        grid = decode_geotiff(geotiff_bytes(np.ones((20, 20)), nodata=-9999.0))
        assert grid.bounds.north == pytest.approx(NORTH)
        assert grid.bounds.south == pytest.approx(SOUTH)
        assert grid.bounds.east == pytest.approx(EAST)
        assert grid.bounds.west == pytest.approx(WEST)
        assert grid.pixel_scale[0] == pytest.approx(0.0001)
        assert grid.pixel_scale[1] == pytest.approx(-0.0001)
        assert grid.origin == (pytest.approx(WEST), pytest.approx(NORTH))
        assert grid.no_data_value == -9999.0
        assert grid.crs_wkt and "WGS" in grid.crs_wkt
        assert grid.is_fallback is False

    def test_projected_bounds_converted_to_degrees(self, geotiff_bytes) -> None:
        # UTM zone 18N, a 100 m square in Manhattan
        payload = geotiff_bytes(
            np.ones((10, 10)),
            crs="EPSG:32618",
            bounds=(585000.0, 4511000.0, 585100.0, 4511100.0),
        )
        grid = decode_geotiff(payload)
        assert -75.0 < grid.bounds.west < grid.bounds.east < -73.0
        assert 40.0 < grid.bounds.south < grid.bounds.north < 41.5
        # Affine metadata stays in native units
        assert grid.pixel_scale[0] == pytest.approx(10.0)

    def test_empty_payload_raises(self) -> None:
        with pytest.raises(DecodeError, match="empty"):
            decode_geotiff(b"")

    def test_garbage_payload_raises(self) -> None:
        with pytest.raises(DecodeError):
            decode_geotiff(b"<html>quota exceeded</html>")


# ---------------------------------------------------------------------------
# Fallback raster
# ---------------------------------------------------------------------------


class TestSyntheticFallback:
    def test_same_seed_is_identical(self) -> None:
        a = synthetic_fallback_grid(seed=3, size=32)
        b = synthetic_fallback_grid(seed=3, size=32)
        assert a.bands[0].tobytes() == b.bands[0].tobytes()
        assert a.bounds == b.bounds == FALLBACK_BOUNDS

    def test_different_seed_differs(self) -> None:
        a = synthetic_fallback_grid(seed=1, size=32)
        b = synthetic_fallback_grid(seed=2, size=32)
        assert a.bands[0].tobytes() != b.bands[0].tobytes()

    def test_pattern_peaks_at_centre(self) -> None:
        grid = synthetic_fallback_grid(size=64)
        band = grid.band(0)
        assert grid.is_fallback
        assert band.min() >= 0.0
        assert band[32, 32] > band[24, 24] > band[2, 2]


# ---------------------------------------------------------------------------
# HTTP transport
# ---------------------------------------------------------------------------


class TestHttpRasterSource:
    @rsps_lib.activate
    def test_returns_payload_and_sends_key(self) -> None:
        rsps_lib.add(rsps_lib.GET, LAYER_URL, body=b"tiff-bytes", status=200)
        payload = HttpRasterSource(timeout=5).fetch_bytes(LAYER_URL, "secret")
        assert payload == b"tiff-bytes"
        assert "key=secret" in rsps_lib.calls[0].request.url

    @rsps_lib.activate
    def test_non_2xx_raises_download_error(self) -> None:
        rsps_lib.add(rsps_lib.GET, LAYER_URL, body=b"denied", status=403)
        with pytest.raises(DownloadError, match="403"):
            HttpRasterSource().fetch_bytes(LAYER_URL, "secret")

    @rsps_lib.activate
    def test_connection_error_raises_download_error(self) -> None:
        rsps_lib.add(rsps_lib.GET, LAYER_URL, body=requests.ConnectionError("reset"))
        with pytest.raises(DownloadError, match="reset"):
            HttpRasterSource().fetch_bytes(LAYER_URL, "secret")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestRasterStore:
    def test_cache_hit_skips_source(self, memory_source, geotiff_bytes) -> None:
        memory_source.payloads[LAYER_URL] = geotiff_bytes(np.ones((4, 4)))
        store = RasterStore(memory_source)

        first = store.fetch(LAYER_URL, "k", layer_id="dsm")
        second = store.fetch(LAYER_URL, "k", layer_id="dsm")

        assert first is second
        assert memory_source.calls == [LAYER_URL]
        assert store.is_cached(LAYER_URL, "dsm")
        assert store.cached_count == 1

    def test_cache_key_includes_layer_id(self, memory_source, geotiff_bytes) -> None:
        memory_source.payloads[LAYER_URL] = geotiff_bytes(np.ones((4, 4)))
        store = RasterStore(memory_source)
        store.fetch(LAYER_URL, "k", layer_id="a")
        store.fetch(LAYER_URL, "k", layer_id="b")
        assert store.cached_count == 2
        assert len(memory_source.calls) == 2

    def test_failed_fetches_return_identical_fallbacks(self, memory_source) -> None:
        store = RasterStore(memory_source, fallback_size=32)

        first = store.fetch(LAYER_URL, "k")
        second = store.fetch(LAYER_URL, "k")

        assert first.is_fallback and second.is_fallback
        assert (first.width, first.height) == (second.width, second.height) == (32, 32)
        assert first.bounds == second.bounds
        assert first.bands[0].tobytes() == second.bands[0].tobytes()
        # Fallbacks are never cached, so the source is retried
        assert store.cached_count == 0
        assert len(memory_source.calls) == 2

    def test_decode_failure_falls_back(self, memory_source) -> None:
        memory_source.payloads[LAYER_URL] = b"not a tiff"
        grid = RasterStore(memory_source, fallback_size=16).fetch(LAYER_URL, "k")
        assert grid.is_fallback

    def test_fallback_disabled_reraises(self, memory_source) -> None:
        store = RasterStore(memory_source)
        with pytest.raises(DownloadError):
            store.fetch(LAYER_URL, "k", fallback=False)

    def test_fallback_logs_warning(self, memory_source, caplog) -> None:
        with caplog.at_level("WARNING", logger="solar_layers.raster_store"):
            RasterStore(memory_source, fallback_size=16).fetch(LAYER_URL, "k", layer_id="rgb")
        assert "synthetic fallback" in caplog.text

    def test_clear_cache(self, memory_source, geotiff_bytes) -> None:
        memory_source.payloads[LAYER_URL] = geotiff_bytes(np.ones((4, 4)))
        store = RasterStore(memory_source)
        store.fetch(LAYER_URL, "k")
        store.clear_cache()
        assert store.cached_count == 0
        store.fetch(LAYER_URL, "k")
        assert len(memory_source.calls) == 2

    def test_concurrent_first_fetch_keeps_one_grid(self, memory_source, geotiff_bytes) -> None:
        memory_source.payloads[LAYER_URL] = geotiff_bytes(np.arange(64).reshape(8, 8))
        store = RasterStore(memory_source)

        with ThreadPoolExecutor(max_workers=8) as pool:
            grids = list(pool.map(lambda _: store.fetch(LAYER_URL, "k"), range(16)))

        assert store.cached_count == 1
        assert all(g is grids[0] for g in grids)
        assert grids[0].band(0)[7, 7] == 63.0


# ---------------------------------------------------------------------------
# Projection helper
# ---------------------------------------------------------------------------


class TestProjectCoordinates:
    def test_wgs84_to_web_mercator(self) -> None:
        x, y = project_coordinates((0.0, 0.0), "EPSG:4326", "EPSG:3857")
        assert x == pytest.approx(0.0, abs=1e-6)
        assert y == pytest.approx(0.0, abs=1e-6)

    def test_lon_lat_order_is_preserved(self) -> None:
        x, _ = project_coordinates((-74.0, 40.75), "EPSG:4326", "EPSG:3857")
        assert x == pytest.approx(-8237642.3, abs=1.0)

    def test_invalid_crs_returns_input(self) -> None:
        assert project_coordinates((1.5, 2.5), "EPSG:999999") == (1.5, 2.5)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class TestErrorHierarchy:
    def test_transport_errors_are_raster_errors(self) -> None:
        exc = DownloadError(LAYER_URL, "HTTP 500 Server Error")
        assert isinstance(exc, RasterError)
        assert LAYER_URL in exc.message and "500" in exc.message

    def test_insufficient_input_is_a_validation_error(self) -> None:
        exc = InsufficientInputError("hourly shade URL", 7, 2)
        assert isinstance(exc, InputValidationError)

    def test_everything_shares_one_base(self) -> None:
        for exc in (DecodeError("bad"), GeocodeUnavailable("no answer")):
            assert isinstance(exc, SolarLayersError)
            assert exc.message
