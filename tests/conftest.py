"""
Shared fixtures — synthetic rasters and an in-memory raster source.

GeoTIFFs are written with rasterio into ``tmp_path`` and read back as
bytes, so the decode path under test is the same one used for downloads.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_bounds

from solar_layers.exceptions import DownloadError
from solar_layers.models import GeoBounds, RasterGrid
from solar_layers.raster_store import RasterSource

# 20 x 20 px frame, 0.0001 degrees per pixel
WEST, SOUTH, EAST, NORTH = -74.0, 40.748, -73.998, 40.75


class InMemorySource(RasterSource):
    """Serve payloads from a dict; unknown URLs raise DownloadError."""

    def __init__(self, payloads: Optional[Dict[str, bytes]] = None) -> None:
        self.payloads: Dict[str, bytes] = dict(payloads or {})
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch_bytes(self, url: str, auth_key: str) -> bytes:
        with self._lock:
            self.calls.append(url)
        if url not in self.payloads:
            raise DownloadError(url, "HTTP 404 Not Found")
        return self.payloads[url]


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop console handlers attached by tools so later tests start clean."""
    yield
    logger = logging.getLogger("solar_layers")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def geotiff_bytes(tmp_path: Path) -> Callable[..., bytes]:
    """Factory: write ``(bands, height, width)`` data as a GeoTIFF, return its bytes."""
    counter = {"n": 0}

    def _make(
        data: Union[np.ndarray, Sequence[np.ndarray]],
        *,
        nodata: Optional[float] = None,
        crs: str = "EPSG:4326",
        bounds: Sequence[float] = (WEST, SOUTH, EAST, NORTH),
        dtype: str = "float32",
    ) -> bytes:
        array = np.asarray(data, dtype=dtype)
        if array.ndim == 2:
            array = array[np.newaxis, ...]
        count, height, width = array.shape
        counter["n"] += 1
        path = tmp_path / f"raster_{counter['n']}.tif"
        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=height,
            width=width,
            count=count,
            dtype=dtype,
            crs=crs,
            transform=from_bounds(*bounds, width, height),
            nodata=nodata,
        ) as dst:
            dst.write(array)
        return path.read_bytes()

    return _make


@pytest.fixture()
def grid_factory() -> Callable[..., RasterGrid]:
    """Factory: build a RasterGrid directly from 2-D band arrays."""

    def _make(
        *bands: np.ndarray,
        no_data_value: Optional[float] = None,
    ) -> RasterGrid:
        arrays = [np.asarray(b, dtype=np.float32) for b in bands]
        height, width = arrays[0].shape
        return RasterGrid(
            width=width,
            height=height,
            bands=tuple(a.ravel() for a in arrays),
            bounds=GeoBounds(north=NORTH, south=SOUTH, east=EAST, west=WEST),
            pixel_scale=((EAST - WEST) / width, -(NORTH - SOUTH) / height),
            origin=(WEST, NORTH),
            no_data_value=no_data_value,
        )

    return _make


@pytest.fixture()
def memory_source() -> InMemorySource:
    return InMemorySource()
