"""Pure raster analysis: quality classification, filtering, coverage."""

from nightlighthub.analysis.coverage import region_mask, summarize, summarize_raster
from nightlighthub.analysis.filtering import apply_scale, filter_pixels
from nightlighthub.analysis.quality import (
    classify,
    quality_breakdown,
    valid_codes,
    validate_codes,
)

__all__ = [
    "apply_scale",
    "classify",
    "filter_pixels",
    "quality_breakdown",
    "region_mask",
    "summarize",
    "summarize_raster",
    "valid_codes",
    "validate_codes",
]
