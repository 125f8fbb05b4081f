"""Shared test fixtures for the nightlighthub test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from rasterio.transform import Affine, from_origin

from nightlighthub._types import Raster
from nightlighthub.config import Config
from nightlighthub.region import Region, region

# 10 x 10 grid of 0.1 degree cells covering (0, 0) - (1, 1)
GRID_TRANSFORM: Affine = from_origin(0.0, 1.0, 0.1, 0.1)


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Return a Config with an isolated cache directory."""
    return Config(cache_dir=tmp_path / "cache", max_workers=2)


@pytest.fixture
def unit_region() -> Region:
    """Return a region exactly covering the 10 x 10 test grid."""
    return region((0.0, 0.0, 1.0, 1.0), name="Unit square")


@pytest.fixture
def make_raster() -> Callable[..., Raster]:
    """Factory for rasters on the shared 10 x 10 grid."""

    def _make(fill: Any = 10.0, dtype: Any = np.float64, shape: tuple[int, int] = (10, 10)) -> Raster:
        return Raster(data=np.full(shape, fill, dtype=dtype), transform=GRID_TRANSFORM)

    return _make
