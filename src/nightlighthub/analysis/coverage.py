"""Per-date coverage statistics over a region boundary.

Pure computation module. A cell is "under" the region when its centre
falls inside the boundary; pass ``all_touched=True`` to count every
cell the boundary touches instead.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date

import numpy as np
import numpy.typing as npt
from rasterio.features import geometry_mask

from nightlighthub._types import Raster
from nightlighthub.region import Region
from nightlighthub.results import CoverageRecord, CoverageStatus


def region_mask(
    region: Region,
    raster: Raster,
    all_touched: bool = False,
) -> npt.NDArray[np.bool_]:
    """Return a mask that is ``True`` for cells under *region*.

    Example:
        >>> import numpy as np
        >>> from rasterio.transform import from_origin
        >>> from nightlighthub.region import region
        >>> r = Raster(np.zeros((4, 4)), from_origin(0.0, 4.0, 1.0, 1.0))
        >>> int(region_mask(region((0, 0, 2, 2)), r).sum())
        4
    """
    if raster.data.size == 0:
        return np.zeros(raster.data.shape, dtype=bool)
    outside: npt.NDArray[np.bool_] = geometry_mask(
        [region.geometry],
        out_shape=raster.shape,
        transform=raster.transform,
        all_touched=all_touched,
    )
    return ~outside


def summarize_raster(
    region: Region,
    day: date,
    raster: Raster,
    all_touched: bool = False,
) -> CoverageRecord:
    """Compute pixel counts, coverage ratio and mean for one date.

    Returns an ``EMPTY_REGION`` record with a ``NaN`` ratio when no cell
    falls under the region.
    """
    inside = region_mask(region, raster, all_touched=all_touched)
    total = int(np.count_nonzero(inside))
    if total == 0:
        return CoverageRecord(
            date=day,
            total_pixel_count=0,
            non_missing_pixel_count=0,
            coverage_ratio=math.nan,
            mean_value=math.nan,
            status=CoverageStatus.EMPTY_REGION,
        )

    values = raster.data[inside].astype(np.float64)
    present = values[~np.isnan(values)]
    non_missing = int(present.size)
    mean_value = float(present.mean()) if non_missing else math.nan

    return CoverageRecord(
        date=day,
        total_pixel_count=total,
        non_missing_pixel_count=non_missing,
        coverage_ratio=non_missing / total,
        mean_value=mean_value,
        status=CoverageStatus.OK,
    )


def summarize(
    region: Region,
    rasters: Iterable[tuple[date, Raster]],
    all_touched: bool = False,
) -> list[CoverageRecord]:
    """Summarize a sequence of ``(date, raster)`` pairs.

    One record is emitted per input pair, even when a raster is entirely
    missing. The result is sorted by ascending date; an empty input
    yields an empty list.

    Example:
        >>> summarize(region((0, 0, 1, 1)), [])
        []
    """
    records = [
        summarize_raster(region, day, raster, all_touched=all_touched)
        for day, raster in rasters
    ]
    return sorted(records, key=lambda record: record.date)
