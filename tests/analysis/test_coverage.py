"""Tests for per-date coverage statistics."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import date

import numpy as np
import pytest
from shapely.geometry import box

from nightlighthub._types import Raster
from nightlighthub.analysis.coverage import region_mask, summarize, summarize_raster
from nightlighthub.analysis.filtering import filter_pixels
from nightlighthub.region import Region, region
from nightlighthub.results import CoverageStatus

RasterFactory = Callable[..., Raster]

DAY = date(2023, 1, 5)


@pytest.mark.unit
class TestRegionMask:
    def test_full_grid(self, unit_region: Region, make_raster: RasterFactory) -> None:
        assert region_mask(unit_region, make_raster()).sum() == 100

    def test_quarter_grid(self, make_raster: RasterFactory) -> None:
        assert region_mask(region((0.0, 0.0, 0.5, 0.5)), make_raster()).sum() == 25

    def test_centre_convention_vs_all_touched(self, make_raster: RasterFactory) -> None:
        # Covers 0.02..0.28 on each axis: centres 0.05, 0.15, 0.25 inside
        small = region((0.02, 0.02, 0.28, 0.28))
        raster = make_raster()
        assert region_mask(small, raster).sum() == 9
        assert region_mask(small, raster, all_touched=True).sum() == 9

        # Covers 0.06..0.14: no centre inside, one cell touched
        tiny = region((0.06, 0.06, 0.14, 0.14))
        assert region_mask(tiny, raster).sum() == 0
        assert region_mask(tiny, raster, all_touched=True).sum() >= 1

    def test_empty_raster(self, unit_region: Region) -> None:
        assert region_mask(unit_region, Raster(np.zeros((0, 0)))).size == 0


@pytest.mark.unit
class TestSummarizeRaster:
    def test_all_good_pixels(self, unit_region: Region, make_raster: RasterFactory) -> None:
        record = summarize_raster(unit_region, DAY, make_raster(fill=4.0))
        assert record.total_pixel_count == 100
        assert record.non_missing_pixel_count == 100
        assert record.coverage_ratio == 1.0
        assert record.mean_value == pytest.approx(4.0)
        assert record.status is CoverageStatus.OK

    def test_forty_excluded_pixels(self, unit_region: Region, make_raster: RasterFactory) -> None:
        value = make_raster(fill=3.0)
        quality = make_raster(fill=0, dtype=np.uint8)
        quality.data[:4, :] = 2
        filtered = filter_pixels(value, quality, {2})

        record = summarize_raster(unit_region, DAY, filtered)

        assert record.total_pixel_count == 100
        assert record.non_missing_pixel_count == 60
        assert record.coverage_ratio == pytest.approx(0.6)
        assert record.mean_value == pytest.approx(3.0)

    def test_all_missing(self, unit_region: Region, make_raster: RasterFactory) -> None:
        record = summarize_raster(unit_region, DAY, make_raster(fill=np.nan))
        assert record.total_pixel_count == 100
        assert record.non_missing_pixel_count == 0
        assert record.coverage_ratio == 0.0
        assert math.isnan(record.mean_value)
        assert record.status is CoverageStatus.OK

    def test_region_outside_raster(self, make_raster: RasterFactory) -> None:
        far = Region(box(50.0, 50.0, 51.0, 51.0))
        record = summarize_raster(far, DAY, make_raster())
        assert record.total_pixel_count == 0
        assert record.non_missing_pixel_count == 0
        assert math.isnan(record.coverage_ratio)
        assert record.status is CoverageStatus.EMPTY_REGION

    def test_cells_outside_region_ignored(self, make_raster: RasterFactory) -> None:
        raster = make_raster(fill=1.0)
        raster.data[:, 5:] = np.nan
        record = summarize_raster(region((0.0, 0.0, 0.5, 1.0)), DAY, raster)
        assert record.total_pixel_count == 50
        assert record.coverage_ratio == 1.0


@pytest.mark.unit
class TestSummarize:
    def test_empty_input(self, unit_region: Region) -> None:
        assert summarize(unit_region, []) == []

    def test_sorted_by_date(self, unit_region: Region, make_raster: RasterFactory) -> None:
        days = [date(2023, 1, 3), date(2023, 1, 1), date(2023, 1, 2)]
        records = summarize(unit_region, [(d, make_raster()) for d in days])
        assert [r.date for r in records] == sorted(days)

    def test_one_record_per_input(self, unit_region: Region, make_raster: RasterFactory) -> None:
        rasters = [
            (date(2023, 1, 1), make_raster(fill=np.nan)),
            (date(2023, 1, 2), make_raster(fill=2.0)),
        ]
        records = summarize(unit_region, rasters)
        assert len(records) == 2
        for record in records:
            assert 0 <= record.non_missing_pixel_count <= record.total_pixel_count
            assert 0.0 <= record.coverage_ratio <= 1.0
