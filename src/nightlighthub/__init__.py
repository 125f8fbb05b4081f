"""nightlighthub — NASA Black Marble nighttime lights with quality filtering.

Example:
    >>> import nightlighthub as nh
    >>>
    >>> # One quality-filtered raster
    >>> r = nh.nightlight_raster((36.6, -1.45, 37.1, -1.15), "VNP46A2",
    ...                          "2023-01-05", excluded_codes={2})
    >>>
    >>> # Coverage over a month of daily acquisitions
    >>> days = nh.date_sequence("2023-01-01", "2023-01-31", "VNP46A2")
    >>> series = nh.nightlight_coverage(nh.region((36.6, -1.45, 37.1, -1.15)),
    ...                                 "VNP46A2", days, excluded_codes={2})
    >>> series.to_csv("coverage.csv")
"""

from nightlighthub.__about__ import __version__
from nightlighthub._types import Granularity, QualityCategory, Raster
from nightlighthub.analysis import classify, filter_pixels, summarize
from nightlighthub.api import date_sequence, nightlight_coverage, nightlight_raster
from nightlighthub.config import Config, configure
from nightlighthub.exceptions import (
    ConfigurationError,
    FetchError,
    InvalidQualityCodeError,
    NightlightHubError,
    RasterMismatchError,
)
from nightlighthub.products import get_product, list_products
from nightlighthub.region import Region, region
from nightlighthub.results import (
    CoverageRecord,
    CoverageSeries,
    CoverageStatus,
    FilteredRaster,
    ResultMetadata,
)

__all__ = [
    # Version
    "__version__",
    # Top-level API
    "date_sequence",
    "nightlight_coverage",
    "nightlight_raster",
    # Pure components
    "classify",
    "filter_pixels",
    "summarize",
    # Types
    "Granularity",
    "QualityCategory",
    "Raster",
    # Region
    "Region",
    "region",
    # Products
    "get_product",
    "list_products",
    # Configuration
    "Config",
    "configure",
    # Results
    "CoverageRecord",
    "CoverageSeries",
    "CoverageStatus",
    "FilteredRaster",
    "ResultMetadata",
    # Exceptions
    "ConfigurationError",
    "FetchError",
    "InvalidQualityCodeError",
    "NightlightHubError",
    "RasterMismatchError",
]
