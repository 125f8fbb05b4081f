"""Top-level API functions for nightlighthub.

``nightlight_raster`` returns one quality-filtered raster;
``nightlight_coverage`` summarizes coverage and mean radiance over a
series of dates. Both accept a ``Region`` or anything
:func:`nightlighthub.region` accepts (bbox tuple, shapely geometry,
GeoJSON mapping, GeoDataFrame).

Example:
    >>> import nightlighthub as nh
    >>> series = nh.nightlight_coverage(
    ...     (36.6, -1.45, 37.1, -1.15),
    ...     "VNP46A2",
    ...     nh.date_sequence("2023-01-01", "2023-01-10", "VNP46A2"),
    ...     excluded_codes={2},
    ... )
    >>> series.to_dataframe()[["date", "coverage_ratio"]]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any

from nightlighthub._pipeline import build_context, normalize_dates, process_date, run_batch
from nightlighthub._types import Granularity
from nightlighthub.config import Config, get_default_config
from nightlighthub.exceptions import ConfigurationError
from nightlighthub.products import ProductSpec, get_product
from nightlighthub.providers import get_provider
from nightlighthub.providers.base import ProviderCredentials, RasterProvider
from nightlighthub.region import Region, region as create_region
from nightlighthub.results import CoverageSeries, FilteredRaster

logger = logging.getLogger(__name__)


def _to_date(value: date | str) -> date:
    """Coerce an ISO string or datetime to a ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ConfigurationError(
            what=f"Invalid date: {value!r}",
            cause=str(exc),
            fix="Use YYYY-MM-DD format, e.g. '2023-01-05'",
        ) from exc


def date_sequence(
    start: date | str,
    end: date | str,
    granularity_or_product: Granularity | str = Granularity.DAILY,
) -> list[date]:
    """Return the acquisition dates between *start* and *end*, inclusive.

    Daily products step one day at a time. Monthly composites use month
    starts and annual composites use year starts; a ``MONTHLY_ANNUAL``
    granularity with no product steps monthly.

    Args:
        start: First date (``date`` or ISO string).
        end: Last date (``date`` or ISO string).
        granularity_or_product: A ``Granularity`` or product id.

    Returns:
        Ascending list of dates; empty if *end* precedes *start*.

    Example:
        >>> date_sequence("2023-01-30", "2023-02-01")
        [datetime.date(2023, 1, 30), datetime.date(2023, 1, 31), datetime.date(2023, 2, 1)]
        >>> date_sequence("2022-11-15", "2023-01-01", "VNP46A3")
        [datetime.date(2022, 12, 1), datetime.date(2023, 1, 1)]
    """
    first, last = _to_date(start), _to_date(end)

    if isinstance(granularity_or_product, Granularity):
        cadence = "daily" if granularity_or_product is Granularity.DAILY else "monthly"
    elif granularity_or_product in {g.value for g in Granularity}:
        cadence = "daily" if granularity_or_product == Granularity.DAILY.value else "monthly"
    else:
        cadence = get_product(granularity_or_product).cadence

    days: list[date] = []
    if cadence == "daily":
        current = first
        while current <= last:
            days.append(current)
            current += timedelta(days=1)
        return days

    if cadence == "annual":
        year = first.year if (first.month, first.day) == (1, 1) else first.year + 1
        while date(year, 1, 1) <= last:
            days.append(date(year, 1, 1))
            year += 1
        return days

    year, month = first.year, first.month
    if first.day != 1:
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    while date(year, month, 1) <= last:
        days.append(date(year, month, 1))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return days


def _resolve_config(
    config: Config | None,
    excluded_codes: Iterable[int] | None,
    strict: bool | None,
) -> Config:
    config = config or get_default_config()
    overrides: dict[str, Any] = {}
    if excluded_codes is not None:
        overrides["excluded_codes"] = excluded_codes
    if strict is not None:
        overrides["strict"] = strict
    if not overrides:
        return config
    return Config.model_validate({**config.model_dump(), **overrides})


def _resolve_provider(
    provider: RasterProvider | None,
    config: Config,
    bearer: str | None,
) -> RasterProvider:
    provider = provider or get_provider("blackmarble", config)
    if bearer:
        provider.authenticate(ProviderCredentials(bearer=bearer))
    return provider


def _resolve_region(source: Any) -> Region:
    return source if isinstance(source, Region) else create_region(source)


def _resolve_product(product_id: str | ProductSpec) -> ProductSpec:
    return product_id if isinstance(product_id, ProductSpec) else get_product(product_id)


def nightlight_raster(
    region: Any,
    product_id: str | ProductSpec,
    day: date | str,
    *,
    variable: str | None = None,
    excluded_codes: Iterable[int] | None = None,
    config: Config | None = None,
    provider: RasterProvider | None = None,
    bearer: str | None = None,
) -> FilteredRaster:
    """Fetch and quality-filter the nighttime-lights raster for one date.

    Fill cells and cells whose quality code is in *excluded_codes* are
    set to ``NaN``; remaining values are scaled to radiance.

    Args:
        region: Region of interest (``Region``, bbox, geometry, GeoJSON).
        product_id: Black Marble product, e.g. ``"VNP46A2"``.
        day: Acquisition date (month or year start for composites).
        variable: Layer to read; defaults to the product's main layer.
        excluded_codes: Quality codes to drop; overrides ``config``.
        config: Optional configuration; defaults to the global config.
        provider: Optional provider instance (Black Marble by default).
        bearer: NASA Earthdata bearer token for this call.

    Returns:
        FilteredRaster with values, quality breakdown and metadata.

    Raises:
        InvalidQualityCodeError: If an excluded code is outside the
            product's quality domain. Raised before any download.
        FetchError: If the raster cannot be retrieved.
        ConfigurationError: On unknown products or missing credentials.

    Example:
        >>> import nightlighthub as nh
        >>> r = nh.nightlight_raster((36.6, -1.45, 37.1, -1.15), "VNP46A2",
        ...                          "2023-01-05", excluded_codes={2})
        >>> r.to_geotiff("nairobi_2023-01-05.tif")
    """
    cfg = _resolve_config(config, excluded_codes, strict=True)
    target = _resolve_region(region)
    product = _resolve_product(product_id)
    ctx = build_context(
        target, product, cfg, _resolve_provider(provider, cfg, bearer), variable
    )
    return process_date(ctx, _to_date(day))


def nightlight_coverage(
    region: Any,
    product_id: str | ProductSpec,
    dates: Iterable[date | str],
    *,
    variable: str | None = None,
    excluded_codes: Iterable[int] | None = None,
    strict: bool | None = None,
    config: Config | None = None,
    provider: RasterProvider | None = None,
    bearer: str | None = None,
) -> CoverageSeries:
    """Summarize pixel coverage and mean radiance for each date.

    Dates are processed concurrently and returned in ascending order.
    In non-strict mode a date that cannot be fetched is kept as a
    zero-count ``FETCH_FAILED`` record and listed in ``warnings``.

    Args:
        region: Region of interest (``Region``, bbox, geometry, GeoJSON).
        product_id: Black Marble product, e.g. ``"VNP46A3"``.
        dates: Dates to summarize (see :func:`date_sequence`).
        variable: Layer to read; defaults to the product's main layer.
        excluded_codes: Quality codes to drop; overrides ``config``.
        strict: Abort on the first failed date; overrides ``config``.
        config: Optional configuration; defaults to the global config.
        provider: Optional provider instance (Black Marble by default).
        bearer: NASA Earthdata bearer token for this call.

    Returns:
        CoverageSeries with one record per distinct date.

    Raises:
        InvalidQualityCodeError: If an excluded code is outside the
            product's quality domain. Raised before any download.
        FetchError: In strict mode, for the first date that fails.
    """
    cfg = _resolve_config(config, excluded_codes, strict)
    target = _resolve_region(region)
    product = _resolve_product(product_id)
    ctx = build_context(
        target, product, cfg, _resolve_provider(provider, cfg, bearer), variable
    )

    days = normalize_dates(_to_date(d) for d in dates)
    logger.info(
        "Summarizing %s coverage for %d dates (strict=%s)",
        product.product_id,
        len(days),
        cfg.strict,
    )
    records = run_batch(ctx, days)

    warnings: list[str] = []
    failed = [r.date.isoformat() for r in records if r.error]
    if failed:
        warnings.append(
            f"Retrieval failed for {len(failed)} of {len(records)} dates: "
            f"{', '.join(failed)}"
        )
    return CoverageSeries(records=records, metadata=ctx.metadata(), warnings=warnings)
