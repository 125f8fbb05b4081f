"""Internal shared types for cross-boundary data contracts.

These types define the data shapes passed between provider, pipeline,
and analysis components.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt
from rasterio.transform import Affine, array_bounds

RegionHash = str
"""Hex digest uniquely identifying a region boundary for cache keys."""

Bounds = tuple[float, float, float, float]
"""``(minx, miny, maxx, maxy)`` in the raster CRS."""

_TRANSFORM_PRECISION = 1e-9


class Granularity(str, enum.Enum):
    """Temporal granularity of a Black Marble product.

    Daily and composite products reuse the integer range 0-2 for their
    quality flags with different meanings, so every quality lookup is
    keyed on granularity.
    """

    DAILY = "daily"
    MONTHLY_ANNUAL = "monthly_annual"


class QualityCategory(str, enum.Enum):
    """Semantic meaning of a Black Marble quality flag value."""

    HIGH_QUALITY_PERSISTENT = "high_quality_persistent"
    HIGH_QUALITY_EPHEMERAL = "high_quality_ephemeral"
    POOR_QUALITY = "poor_quality"
    GOOD_QUALITY = "good_quality"
    POOR_QUALITY_FEW_OBSERVATIONS = "poor_quality_few_observations"
    GAP_FILLED = "gap_filled"

    @property
    def description(self) -> str:
        """Human-readable description of the category."""
        return _CATEGORY_DESCRIPTIONS[self]


_CATEGORY_DESCRIPTIONS: dict[QualityCategory, str] = {
    QualityCategory.HIGH_QUALITY_PERSISTENT: "High-quality, persistent nighttime lights",
    QualityCategory.HIGH_QUALITY_EPHEMERAL: "High-quality, ephemeral nighttime lights",
    QualityCategory.POOR_QUALITY: (
        "Poor-quality, outlier, potential cloud contamination or other issues"
    ),
    QualityCategory.GOOD_QUALITY: "Good-quality, more than 3 observations in composite",
    QualityCategory.POOR_QUALITY_FEW_OBSERVATIONS: (
        "Poor-quality, 3 or fewer observations in composite"
    ),
    QualityCategory.GAP_FILLED: "Gap-filled from historical data",
}


@dataclass(frozen=True, eq=False)
class Raster:
    """A single-band grid of samples over a fixed extent.

    ``NaN`` marks a missing cell. Instances are treated as immutable:
    filtering and scaling always return a new ``Raster``.

    Args:
        data: 2-D array of samples, shape ``(height, width)``.
        transform: Affine geotransform mapping cell indices to CRS
            coordinates.
        crs: Coordinate reference system identifier.

    Example:
        >>> import numpy as np
        >>> from rasterio.transform import from_origin
        >>> r = Raster(np.zeros((2, 3)), from_origin(10.0, 50.0, 0.5, 0.5))
        >>> r.shape
        (2, 3)
    """

    data: npt.NDArray[Any]
    transform: Affine = field(default_factory=Affine.identity)
    crs: str = "EPSG:4326"

    @property
    def shape(self) -> tuple[int, int]:
        height, width = self.data.shape
        return (int(height), int(width))

    @property
    def bounds(self) -> Bounds:
        """Spatial extent as ``(minx, miny, maxx, maxy)``."""
        height, width = self.shape
        west, south, east, north = array_bounds(height, width, self.transform)
        return (float(west), float(south), float(east), float(north))

    @property
    def missing_mask(self) -> npt.NDArray[np.bool_]:
        """Boolean mask where ``True`` marks a missing cell."""
        if not np.issubdtype(self.data.dtype, np.floating):
            return np.zeros(self.data.shape, dtype=bool)
        return np.isnan(self.data)

    def is_aligned_with(self, other: Raster) -> bool:
        """Return ``True`` if both rasters share shape, transform and CRS."""
        return (
            self.data.shape == other.data.shape
            and self.crs == other.crs
            and self.transform.almost_equals(
                other.transform, precision=_TRANSFORM_PRECISION
            )
        )


@dataclass
class FetchedRasters:
    """Co-registered rasters returned by a provider for one date.

    Args:
        value: Raw (unscaled) values of the requested variable.
        quality: Quality flag raster, or ``None`` if the product has none.
        metadata: Provider metadata (product, variable, granule ids,
            scale factor).
    """

    value: Raster
    quality: Raster | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
