"""Quality-flag and fill-value pixel filtering.

Pure computation module: takes rasters in, returns new rasters out.
Inputs are never modified.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import numpy as np
import numpy.typing as npt

from nightlighthub._types import Granularity, Raster
from nightlighthub.analysis.quality import validate_codes
from nightlighthub.exceptions import ConfigurationError, RasterMismatchError
from nightlighthub.products import BLACK_MARBLE_FILL_VALUE


def _check_alignment(value: Raster, quality: Raster) -> None:
    if value.data.shape != quality.data.shape:
        raise RasterMismatchError(
            what="Value and quality rasters have different shapes",
            cause=f"{value.data.shape} vs {quality.data.shape}",
            fix="Read both layers from the same granule mosaic",
        )
    if value.crs != quality.crs:
        raise RasterMismatchError(
            what="Value and quality rasters have different CRS",
            cause=f"{value.crs} vs {quality.crs}",
            fix="Read both layers from the same granule mosaic",
        )
    if not value.is_aligned_with(quality):
        raise RasterMismatchError(
            what="Value and quality rasters cover different extents",
            cause=f"bounds {value.bounds} vs {quality.bounds}",
            fix="Read both layers from the same granule mosaic",
        )


def filter_pixels(
    value: Raster,
    quality: Raster | None,
    excluded_codes: Iterable[int] = frozenset(),
    fill_sentinel: float = BLACK_MARBLE_FILL_VALUE,
    granularity: Granularity = Granularity.DAILY,
) -> Raster:
    """Set fill-value and excluded-quality pixels to missing.

    A cell becomes ``NaN`` when its raw value equals *fill_sentinel*,
    when it is already ``NaN``, or when its quality code is in
    *excluded_codes*. Every other cell keeps its value. The fill value
    is removed even when *excluded_codes* is empty.

    Args:
        value: Raw (unscaled) values.
        quality: Co-registered quality flags, or ``None`` when the
            product has no quality layer.
        excluded_codes: Quality codes to drop.
        fill_sentinel: Raw value meaning "no data collected".
        granularity: Granularity used to validate *excluded_codes*.

    Returns:
        A new float ``Raster`` on the same grid as *value*.

    Raises:
        InvalidQualityCodeError: If a code is outside the granularity's
            domain.
        RasterMismatchError: If the rasters are not co-registered.
        ConfigurationError: If codes are given but *quality* is ``None``.

    Example:
        >>> import numpy as np
        >>> v = Raster(np.array([[5.0, 65535.0], [7.0, 9.0]]))
        >>> q = Raster(np.array([[0, 0], [2, 1]]))
        >>> filter_pixels(v, q, {2}).data.tolist()
        [[5.0, nan], [nan, 9.0]]
    """
    codes = validate_codes(excluded_codes, granularity)

    if quality is None and codes:
        raise ConfigurationError(
            what="Cannot drop pixels by quality flag",
            cause="The product has no quality layer for this variable",
            fix="Pass an empty excluded_codes set for this product",
        )
    if quality is not None:
        _check_alignment(value, quality)

    out_dtype = (
        value.data.dtype if np.issubdtype(value.data.dtype, np.floating) else np.float64
    )
    data: npt.NDArray[Any] = value.data.astype(out_dtype, copy=True)

    # NaN never compares equal, so already-missing cells stay missing
    drop = data == fill_sentinel
    if quality is not None and codes:
        flags = np.asarray(quality.data)
        if np.issubdtype(flags.dtype, np.floating):
            flags = np.where(np.isnan(flags), -1, flags)
        drop |= np.isin(flags.astype(np.int64), sorted(codes))
    data[drop] = np.nan

    return Raster(data=data, transform=value.transform, crs=value.crs)


def apply_scale(raster: Raster, scale_factor: float) -> Raster:
    """Return a copy of *raster* multiplied by *scale_factor*.

    Missing cells stay missing.

    Example:
        >>> import numpy as np
        >>> apply_scale(Raster(np.array([[10.0, np.nan]])), 0.1).data.tolist()
        [[1.0, nan]]
    """
    data = raster.data.astype(np.float64) * scale_factor
    return Raster(data=data, transform=raster.transform, crs=raster.crs)
