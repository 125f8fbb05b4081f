"""Black Marble quality flag interpretation.

Pure computation module: no HTTP, no caching, no provider interaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import numpy as np

from nightlighthub._types import Granularity, QualityCategory, Raster
from nightlighthub.exceptions import InvalidQualityCodeError
from nightlighthub.products import QUALITY_FILL_FLAG

logger = logging.getLogger(__name__)

NO_RETRIEVAL = "no_retrieval"
UNKNOWN = "unknown"

_QUALITY_TABLES: dict[Granularity, dict[int, QualityCategory]] = {
    Granularity.DAILY: {
        0: QualityCategory.HIGH_QUALITY_PERSISTENT,
        1: QualityCategory.HIGH_QUALITY_EPHEMERAL,
        2: QualityCategory.POOR_QUALITY,
    },
    Granularity.MONTHLY_ANNUAL: {
        0: QualityCategory.GOOD_QUALITY,
        1: QualityCategory.POOR_QUALITY_FEW_OBSERVATIONS,
        2: QualityCategory.GAP_FILLED,
    },
}


def _as_code(raw_code: Any, granularity: Granularity) -> int:
    # bool is an int subclass but never a quality flag
    if isinstance(raw_code, (bool, np.bool_)):
        raise InvalidQualityCodeError(raw_code, granularity)
    if isinstance(raw_code, (int, np.integer)):
        return int(raw_code)
    if isinstance(raw_code, (float, np.floating)) and float(raw_code).is_integer():
        return int(raw_code)
    raise InvalidQualityCodeError(raw_code, granularity)


def classify(raw_code: int, granularity: Granularity) -> QualityCategory:
    """Map a raw quality flag to its semantic category.

    Args:
        raw_code: Quality flag value read from the product.
        granularity: Temporal granularity of the product the flag
            belongs to.

    Returns:
        The ``QualityCategory`` for *raw_code*.

    Raises:
        InvalidQualityCodeError: If *raw_code* is not 0, 1 or 2.

    Example:
        >>> classify(2, Granularity.DAILY)
        <QualityCategory.POOR_QUALITY: 'poor_quality'>
        >>> classify(2, Granularity.MONTHLY_ANNUAL)
        <QualityCategory.GAP_FILLED: 'gap_filled'>
    """
    granularity = Granularity(granularity)
    code = _as_code(raw_code, granularity)
    table = _QUALITY_TABLES[granularity]
    if code not in table:
        raise InvalidQualityCodeError(raw_code, granularity)
    return table[code]


def validate_codes(codes: Iterable[int], granularity: Granularity) -> frozenset[int]:
    """Check that every code is valid for *granularity*.

    Returns:
        The codes as a ``frozenset``.

    Raises:
        InvalidQualityCodeError: On the first code outside the domain.
    """
    granularity = Granularity(granularity)
    validated: set[int] = set()
    for code in codes:
        classify(code, granularity)
        validated.add(int(code))
    return frozenset(validated)


def valid_codes(granularity: Granularity) -> tuple[int, ...]:
    """Return the quality codes defined for *granularity*."""
    return tuple(sorted(_QUALITY_TABLES[Granularity(granularity)]))


def quality_breakdown(
    quality: Raster,
    granularity: Granularity,
) -> dict[QualityCategory | str, int]:
    """Count cells per quality category.

    Cells carrying the upstream fill flag (255) are reported under
    ``"no_retrieval"``; ``NaN`` cells (outside the mosaic) are skipped.
    Any other code is counted under ``"unknown"`` and logged as a
    warning.

    Example:
        >>> import numpy as np
        >>> q = Raster(np.array([[0, 0], [2, 255]], dtype=np.float32))
        >>> quality_breakdown(q, Granularity.DAILY)[QualityCategory.HIGH_QUALITY_PERSISTENT]
        2
    """
    granularity = Granularity(granularity)
    values = np.asarray(quality.data)
    if np.issubdtype(values.dtype, np.floating):
        values = values[~np.isnan(values)]
    codes, counts = np.unique(values.astype(np.int64), return_counts=True)

    table = _QUALITY_TABLES[granularity]
    breakdown: dict[QualityCategory | str, int] = {category: 0 for category in table.values()}
    breakdown[NO_RETRIEVAL] = 0
    for code, count in zip(codes.tolist(), counts.tolist()):
        if code == QUALITY_FILL_FLAG:
            breakdown[NO_RETRIEVAL] += count
        elif code in table:
            breakdown[table[code]] += count
        else:
            logger.warning(
                "Quality flag %d is not a %s code; counting %d cells as unknown",
                code,
                granularity.value,
                count,
            )
            breakdown[UNKNOWN] = breakdown.get(UNKNOWN, 0) + count
    return breakdown
