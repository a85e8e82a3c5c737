"""
raster_store.py
===============
Data acquisition layer: download raster payloads, decode them into
:class:`~solar_layers.models.RasterGrid` objects, and cache the results.

Architecture
------------
* :class:`RasterSource` is an abstract transport strategy — swap
  :class:`HttpRasterSource` for an in-memory or signed-URL source without
  touching :class:`RasterStore`.
* :func:`decode_geotiff` turns a GeoTIFF byte payload into a grid using
  :class:`rasterio.io.MemoryFile`.
* :class:`RasterStore` owns the cache.  Failed downloads or decodes are
  logged and answered with :func:`synthetic_fallback_grid` so every
  requested layer still renders something.

Usage::

    store = RasterStore(HttpRasterSource(timeout=30))
    dsm = store.fetch(urls.dsm_url, api_key, layer_id="dsm")
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import requests
from pyproj import Transformer
from pyproj.exceptions import ProjError
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile
from rasterio.warp import transform_bounds

from .exceptions import DecodeError, DownloadError
from .models import GeoBounds, RasterGrid

logger = logging.getLogger("solar_layers.raster_store")

CacheKey = Tuple[str, str]

# Frame used by the synthetic fallback raster (lower Manhattan)
FALLBACK_BOUNDS = GeoBounds(
    north=40.7589, south=40.7489, east=-73.9741, west=-73.9841,
)


# ---------------------------------------------------------------------------
# Transport strategies
# ---------------------------------------------------------------------------


class RasterSource(ABC):
    """Abstract transport for raw raster payloads.

    Implementations own any timeout / retry / cancellation policy and
    signal failure per fetch by raising :class:`DownloadError`.
    """

    @abstractmethod
    def fetch_bytes(self, url: str, auth_key: str) -> bytes:
        """Return the raw payload for *url*.

        Raises:
            DownloadError: On any transport failure or non-2xx response.
        """


class HttpRasterSource(RasterSource):
    """Fetch payloads over HTTP(S) with :mod:`requests`.

    The auth key is sent as the ``key`` query parameter, which is how the
    Solar API ``geoTiff:get`` endpoint expects it.

    Args:
        timeout: Per-request timeout in seconds.
        session: Optional pre-configured :class:`requests.Session`.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["Accept"] = "image/tiff, application/octet-stream"

    def fetch_bytes(self, url: str, auth_key: str) -> bytes:
        logger.debug("Downloading raster from %s", url[:100])
        try:
            response = self._session.get(
                url, params={"key": auth_key}, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DownloadError(url, str(exc)) from exc

        if not response.ok:
            raise DownloadError(url, f"HTTP {response.status_code} {response.reason}")

        logger.debug("Downloaded %d bytes", len(response.content))
        return response.content


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_geotiff(payload: bytes) -> RasterGrid:
    """Decode a (multi-band) GeoTIFF payload into a :class:`RasterGrid`.

    Bounds are reported in degrees: rasters in a projected CRS are
    converted with :func:`rasterio.warp.transform_bounds`.  If that fails,
    or the CRS is missing, the native bounds are kept.

    Raises:
        DecodeError: If the payload is empty, is not a readable raster,
            or yields bands of the wrong length.
    """
    if not payload:
        raise DecodeError("Raster payload is empty.")

    try:
        with MemoryFile(payload) as memfile:
            with memfile.open() as src:
                width, height = src.width, src.height
                data = src.read().astype(np.float32)
                transform = src.transform
                nodata = src.nodata
                crs = src.crs
                left, bottom, right, top = src.bounds
    except (RasterioError, ValueError) as exc:
        raise DecodeError(f"Payload is not a valid geo-raster: {exc}") from exc

    crs_wkt: Optional[str] = None
    if crs is not None:
        try:
            crs_wkt = crs.to_wkt()
            if not crs.is_geographic:
                left, bottom, right, top = transform_bounds(
                    crs, "EPSG:4326", left, bottom, right, top,
                )
        except RasterioError as exc:
            logger.warning("Could not convert raster bounds to EPSG:4326: %s", exc)
    else:
        logger.debug("Raster has no CRS; keeping native bounds.")

    grid = RasterGrid(
        width=width,
        height=height,
        bands=tuple(data[i].ravel() for i in range(data.shape[0])),
        bounds=GeoBounds(north=top, south=bottom, east=right, west=left),
        pixel_scale=(float(transform.a), float(transform.e)),
        origin=(float(transform.c), float(transform.f)),
        no_data_value=None if nodata is None else float(nodata),
        crs_wkt=crs_wkt,
    )
    logger.debug(
        "Decoded raster %dx%d, %d band(s), nodata=%s",
        width, height, grid.band_count, nodata,
    )
    return grid


def synthetic_fallback_grid(seed: int = 0, size: int = 256) -> RasterGrid:
    """Deterministic single-band stand-in for a raster that failed to load.

    Values decay radially from the frame centre, ``max(0, 1 - d/(size/3))``,
    with uniform noise in [-0.1, 0.1) drawn from a generator seeded with
    *seed*; the outer 10 % frame is damped to 30 %.  The same seed always
    yields the same grid.
    """
    rng = np.random.default_rng(seed)
    y, x = np.mgrid[0:size, 0:size].astype(np.float32)
    centre = size / 2.0
    distance = np.sqrt((x - centre) ** 2 + (y - centre) ** 2)
    noise = (rng.random((size, size), dtype=np.float32) - 0.5) * 0.2
    values = np.maximum(0.0, 1.0 - distance / (size / 3.0) + noise)

    edge = (x < size * 0.1) | (x > size * 0.9) | (y < size * 0.1) | (y > size * 0.9)
    values = np.where(edge, values * 0.3, values).astype(np.float32)

    return RasterGrid(
        width=size,
        height=size,
        bands=(values.ravel(),),
        bounds=FALLBACK_BOUNDS,
        pixel_scale=(1.0, 1.0),
        origin=(0.0, 0.0),
        is_fallback=True,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class RasterStore:
    """Fetch, decode and cache rasters keyed by ``(layer_id, url)``.

    Entries are never evicted automatically; call :meth:`clear_cache`.
    The cache lock is only held around dictionary access, never while
    downloading or decoding, so two callers racing on the same new key may
    both decode it; the first insert wins and both receive that grid.

    Args:
        source: Transport used for downloads (HTTP by default).
        fallback_seed: Seed for :func:`synthetic_fallback_grid`.
        fallback_size: Edge length of the fallback grid.
    """

    def __init__(
        self,
        source: Optional[RasterSource] = None,
        *,
        fallback_seed: int = 0,
        fallback_size: int = 256,
    ) -> None:
        self.source = source or HttpRasterSource()
        self.fallback_seed = fallback_seed
        self.fallback_size = fallback_size
        self._cache: Dict[CacheKey, RasterGrid] = {}
        self._lock = threading.Lock()

    def fetch(
        self,
        url: str,
        auth_key: str,
        *,
        layer_id: str = "",
        fallback: bool = True,
    ) -> RasterGrid:
        """Return the decoded raster for *url*, from cache when possible.

        Args:
            url: Raster URL.
            auth_key: API key passed to the transport.
            layer_id: Logical layer name, part of the cache key.
            fallback: When ``True`` (default) download / decode failures
                return the synthetic fallback grid instead of raising.

        Raises:
            DownloadError: Only when ``fallback`` is ``False``.
            DecodeError: Only when ``fallback`` is ``False``.
        """
        key: CacheKey = (layer_id, url)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Using cached layer %s", layer_id or url[:60])
            return cached

        try:
            payload = self.source.fetch_bytes(url, auth_key)
            grid = decode_geotiff(payload)
        except (DownloadError, DecodeError) as exc:
            if not fallback:
                raise
            logger.warning(
                "Layer %s unavailable (%s); using synthetic fallback raster.",
                layer_id or url[:60], exc.message,
            )
            return self.fallback_grid()

        with self._lock:
            grid = self._cache.setdefault(key, grid)
        logger.info("Layer %s loaded and cached", layer_id or url[:60])
        return grid

    def fallback_grid(self) -> RasterGrid:
        return synthetic_fallback_grid(self.fallback_seed, self.fallback_size)

    def is_cached(self, url: str, layer_id: str = "") -> bool:
        with self._lock:
            return (layer_id, url) in self._cache

    @property
    def cached_count(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("Raster cache cleared")


# ---------------------------------------------------------------------------
# Coordinate helpers
# ---------------------------------------------------------------------------


def pixel_to_geo(pixel_x: float, pixel_y: float, grid: RasterGrid) -> Tuple[float, float]:
    return grid.pixel_to_geo(pixel_x, pixel_y)


def geo_to_pixel(geo_x: float, geo_y: float, grid: RasterGrid) -> Tuple[float, float]:
    return grid.geo_to_pixel(geo_x, geo_y)


def project_coordinates(
    coords: Sequence[float],
    from_crs: str,
    to_crs: str = "EPSG:4326",
) -> Tuple[float, float]:
    """Reproject an ``(x, y)`` pair between coordinate systems.

    Best effort: if either CRS cannot be parsed or the transform fails,
    a warning is logged and the input coordinates are returned unchanged.
    """
    x, y = float(coords[0]), float(coords[1])
    try:
        transformer = Transformer.from_crs(from_crs, to_crs, always_xy=True)
        out_x, out_y = transformer.transform(x, y)
    except ProjError as exc:
        logger.warning("Coordinate projection %s -> %s failed: %s", from_crs, to_crs, exc)
        return x, y
    if not (np.isfinite(out_x) and np.isfinite(out_y)):
        logger.warning("Coordinate projection %s -> %s produced non-finite output", from_crs, to_crs)
        return x, y
    return float(out_x), float(out_y)
