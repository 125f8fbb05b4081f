"""Tests for fill-value and quality-flag pixel filtering."""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest
from rasterio.transform import from_origin

from nightlighthub._types import Granularity, Raster
from nightlighthub.analysis.filtering import apply_scale, filter_pixels
from nightlighthub.exceptions import (
    ConfigurationError,
    InvalidQualityCodeError,
    RasterMismatchError,
)
from nightlighthub.products import BLACK_MARBLE_FILL_VALUE

RasterFactory = Callable[..., Raster]


@pytest.mark.unit
class TestFillSentinel:
    def test_empty_exclusion_only_drops_sentinel(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=10.0)
        value.data[0, 0] = BLACK_MARBLE_FILL_VALUE
        quality = make_raster(fill=2, dtype=np.uint8)

        result = filter_pixels(value, quality)

        missing = np.isnan(result.data)
        assert missing.sum() == 1
        assert missing[0, 0]
        assert np.all(result.data[~missing] == 10.0)

    def test_sentinel_dropped_even_with_good_quality(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=BLACK_MARBLE_FILL_VALUE, dtype=np.uint16)
        quality = make_raster(fill=0, dtype=np.uint8)
        result = filter_pixels(value, quality, {2})
        assert np.all(np.isnan(result.data))

    def test_custom_sentinel(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=-999.0)
        result = filter_pixels(value, None, fill_sentinel=-999.0)
        assert np.all(np.isnan(result.data))

    def test_existing_nan_stays_missing(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=np.nan)
        result = filter_pixels(value, make_raster(fill=0, dtype=np.uint8))
        assert np.all(np.isnan(result.data))


@pytest.mark.unit
class TestQualityExclusion:
    def test_excluded_code_becomes_missing(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=5.0)
        quality = make_raster(fill=0, dtype=np.uint8)
        quality.data[:4, :] = 2

        result = filter_pixels(value, quality, {2})

        assert np.isnan(result.data[:4, :]).all()
        assert (result.data[4:, :] == 5.0).all()

    def test_multiple_codes(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=5.0)
        quality = Raster(
            np.tile(np.array([0, 1, 2, 0, 1, 2, 0, 1, 2, 0], dtype=np.uint8), (10, 1)),
            transform=value.transform,
        )
        result = filter_pixels(value, quality, {1, 2})
        assert int(np.count_nonzero(~np.isnan(result.data))) == 40

    def test_monthly_codes_use_monthly_domain(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=5.0)
        quality = make_raster(fill=2, dtype=np.uint8)
        result = filter_pixels(value, quality, {2}, granularity=Granularity.MONTHLY_ANNUAL)
        assert np.isnan(result.data).all()

    def test_nan_quality_cells_are_not_excluded(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=5.0)
        quality = make_raster(fill=np.nan)
        result = filter_pixels(value, quality, {0})
        assert not np.isnan(result.data).any()

    def test_invalid_code_raises_before_filtering(self, make_raster: RasterFactory) -> None:
        with pytest.raises(InvalidQualityCodeError):
            filter_pixels(make_raster(), make_raster(fill=0), {3})

    def test_codes_without_quality_layer_raise(self, make_raster: RasterFactory) -> None:
        with pytest.raises(ConfigurationError, match="no quality layer"):
            filter_pixels(make_raster(), None, {2})


@pytest.mark.unit
class TestAlignment:
    def test_shape_mismatch(self, make_raster: RasterFactory) -> None:
        with pytest.raises(RasterMismatchError, match="shapes"):
            filter_pixels(make_raster(), make_raster(fill=0, shape=(10, 12)))

    def test_transform_mismatch(self, make_raster: RasterFactory) -> None:
        value = make_raster()
        quality = Raster(np.zeros((10, 10)), transform=from_origin(0.5, 1.0, 0.1, 0.1))
        with pytest.raises(RasterMismatchError, match="extents"):
            filter_pixels(value, quality)

    def test_crs_mismatch(self, make_raster: RasterFactory) -> None:
        value = make_raster()
        quality = Raster(np.zeros((10, 10)), transform=value.transform, crs="EPSG:3857")
        with pytest.raises(RasterMismatchError, match="CRS"):
            filter_pixels(value, quality)


@pytest.mark.unit
class TestPurity:
    def test_inputs_untouched(self, make_raster: RasterFactory) -> None:
        value = make_raster(fill=BLACK_MARBLE_FILL_VALUE)
        quality = make_raster(fill=2, dtype=np.uint8)
        before_v, before_q = value.data.copy(), quality.data.copy()

        filter_pixels(value, quality, {2})

        np.testing.assert_array_equal(value.data, before_v)
        np.testing.assert_array_equal(quality.data, before_q)

    def test_idempotent(self, make_raster: RasterFactory) -> None:
        rng = np.random.default_rng(7)
        value = make_raster()
        value.data[:] = rng.integers(0, 500, size=(10, 10))
        value.data[rng.random((10, 10)) < 0.2] = BLACK_MARBLE_FILL_VALUE
        quality = Raster(
            rng.integers(0, 3, size=(10, 10)).astype(np.uint8),
            transform=value.transform,
        )

        once = filter_pixels(value, quality, {2})
        twice = filter_pixels(once, quality, {2})

        np.testing.assert_array_equal(once.data, twice.data)

    def test_integer_input_becomes_float(self, make_raster: RasterFactory) -> None:
        result = filter_pixels(make_raster(fill=7, dtype=np.uint16), None)
        assert np.issubdtype(result.data.dtype, np.floating)
        assert result.transform == make_raster().transform


@pytest.mark.unit
class TestApplyScale:
    def test_scales_and_keeps_nan(self) -> None:
        r = Raster(np.array([[10.0, np.nan]]))
        np.testing.assert_allclose(apply_scale(r, 0.1).data, [[1.0, np.nan]])

    def test_does_not_modify_input(self) -> None:
        r = Raster(np.array([[10.0]]))
        apply_scale(r, 0.1)
        assert r.data[0, 0] == 10.0
