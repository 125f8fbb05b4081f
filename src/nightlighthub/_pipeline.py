"""Pipeline helpers: fetch, filter and summarize dates.

``run_batch`` is the central driver used by the public API. Each date
goes through cache lookup → provider fetch → cache store → pixel
filter → scaling → coverage statistics, independently of every other
date, so dates are dispatched to a thread pool and re-sorted at the end.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import struct
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import numpy as np
from rasterio.transform import Affine

from nightlighthub._types import FetchedRasters, Granularity, Raster
from nightlighthub.analysis.coverage import summarize_raster
from nightlighthub.analysis.filtering import apply_scale, filter_pixels
from nightlighthub.analysis.quality import quality_breakdown, validate_codes
from nightlighthub.cache import RasterCache, build_cache_key
from nightlighthub.config import Config
from nightlighthub.exceptions import ConfigurationError, FetchError
from nightlighthub.products import ProductSpec
from nightlighthub.providers.base import RasterProvider
from nightlighthub.region import Region
from nightlighthub.results import CoverageRecord, FilteredRaster, ResultMetadata

logger = logging.getLogger(__name__)


# ── Serialization helpers ──────────────────────────────────────────


def _raster_header(raster: Raster) -> dict[str, Any]:
    return {
        "shape": list(raster.data.shape),
        "dtype": str(raster.data.dtype),
        "transform": list(raster.transform)[:6],
        "crs": raster.crs,
        "nbytes": int(raster.data.nbytes),
    }


def _serialize_fetched(fetched: FetchedRasters) -> bytes:
    """Serialize ``FetchedRasters`` for cache storage.

    Format: 4-byte header length (uint32 big-endian) + JSON header +
    value array bytes + quality array bytes (if any).
    """
    header: dict[str, Any] = {
        "value": _raster_header(fetched.value),
        "quality": _raster_header(fetched.quality) if fetched.quality is not None else None,
        "metadata": fetched.metadata,
    }
    header_bytes = json.dumps(header, ensure_ascii=False).encode("utf-8")
    body = np.ascontiguousarray(fetched.value.data).tobytes()
    if fetched.quality is not None:
        body += np.ascontiguousarray(fetched.quality.data).tobytes()
    return struct.pack(">I", len(header_bytes)) + header_bytes + body


def _raster_from(header: dict[str, Any], buffer: bytes, offset: int) -> Raster:
    end = offset + header["nbytes"]
    array = np.frombuffer(buffer[offset:end], dtype=np.dtype(header["dtype"]))
    return Raster(
        data=array.reshape(tuple(header["shape"])).copy(),
        transform=Affine(*header["transform"]),
        crs=header["crs"],
    )


def _deserialize_fetched(data: bytes) -> FetchedRasters:
    """Inverse of ``_serialize_fetched``."""
    (header_len,) = struct.unpack(">I", data[:4])
    header: dict[str, Any] = json.loads(data[4 : 4 + header_len].decode("utf-8"))
    offset = 4 + header_len

    value = _raster_from(header["value"], data, offset)
    quality = None
    if header["quality"] is not None:
        quality = _raster_from(header["quality"], data, offset + header["value"]["nbytes"])
    return FetchedRasters(value=value, quality=quality, metadata=header["metadata"])


# ── Per-date processing ────────────────────────────────────────────


@dataclass
class BatchContext:
    """Everything needed to process one date, shared across a batch.

    Build it with :func:`build_context` so exclusion codes are validated
    before any network access.
    """

    region: Region
    product: ProductSpec
    variable: str
    granularity: Granularity
    excluded_codes: frozenset[int]
    fill_sentinel: float
    config: Config
    provider: RasterProvider
    cache: RasterCache | None = None

    def metadata(self) -> ResultMetadata:
        minx, miny, maxx, maxy = self.region.bounds
        return ResultMetadata(
            product_id=self.product.product_id,
            variable=self.variable,
            granularity=self.granularity.value,
            excluded_codes=sorted(self.excluded_codes),
            fill_sentinel=self.fill_sentinel,
            scale_factor=self.product.scale_factor,
            region_name=self.region.name,
            bounds={"minx": minx, "miny": miny, "maxx": maxx, "maxy": maxy},
        )


def build_context(
    region: Region,
    product: ProductSpec,
    config: Config,
    provider: RasterProvider,
    variable: str | None = None,
) -> BatchContext:
    """Resolve product defaults against *config* and validate codes.

    Raises:
        InvalidQualityCodeError: If an excluded code is outside the
            granularity's domain.
        ConfigurationError: If codes are given for a variable without a
            quality layer.
    """
    granularity = config.granularity or product.granularity
    codes = validate_codes(config.excluded_codes, granularity)
    variable = variable or product.default_variable
    if codes and product.quality_layer_for(variable) is None:
        raise ConfigurationError(
            what="Cannot drop pixels by quality flag",
            cause=f"{product.product_id} has no quality layer for {variable}",
            fix="Pass an empty excluded_codes set for this product",
        )
    fill = config.fill_sentinel if config.fill_sentinel is not None else product.fill_value
    cache = RasterCache(config) if config.cache_enabled else None
    return BatchContext(
        region=region,
        product=product,
        variable=variable,
        granularity=granularity,
        excluded_codes=codes,
        fill_sentinel=fill,
        config=config,
        provider=provider,
        cache=cache,
    )


def _fetch(ctx: BatchContext, day: date) -> FetchedRasters:
    """Return rasters for *day*, from the cache when possible."""
    cache_key = build_cache_key(
        product=ctx.product.product_id,
        variable=ctx.variable,
        region_hash=ctx.region.region_hash,
        day=day,
        params={"provider": ctx.provider.name},
    )
    if ctx.cache is not None:
        cached = ctx.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return _deserialize_fetched(cached)
        logger.debug("Cache miss for %s, fetching from provider", cache_key)

    fetched = ctx.provider.fetch(ctx.region, ctx.product, day, ctx.variable)

    if ctx.cache is not None:
        ctx.cache.store(cache_key, ctx.product.product_id, day, _serialize_fetched(fetched))
    return fetched


def process_date(ctx: BatchContext, day: date) -> FilteredRaster:
    """Fetch, filter and scale the raster for one date.

    Raises:
        FetchError: If retrieval fails.
        RasterMismatchError: If the provider returns misaligned layers.
    """
    fetched = _fetch(ctx, day)
    filtered = filter_pixels(
        fetched.value,
        fetched.quality,
        ctx.excluded_codes,
        fill_sentinel=ctx.fill_sentinel,
        granularity=ctx.granularity,
    )
    scale = float(fetched.metadata.get("scale_factor", ctx.product.scale_factor))
    if scale != 1.0:
        filtered = apply_scale(filtered, scale)

    breakdown = (
        quality_breakdown(fetched.quality, ctx.granularity)
        if fetched.quality is not None
        else {}
    )
    metadata = ctx.metadata()
    metadata.granule_ids = list(fetched.metadata.get("granule_ids", []))
    return FilteredRaster(raster=filtered, date=day, quality=breakdown, metadata=metadata)


def summarize_date(ctx: BatchContext, day: date) -> CoverageRecord:
    """Process one date into its coverage record."""
    result = process_date(ctx, day)
    return summarize_raster(
        ctx.region, day, result.raster, all_touched=ctx.config.all_touched
    )


def normalize_dates(dates: Iterable[date]) -> list[date]:
    """Sort and de-duplicate dates, dropping any time-of-day part."""
    days = {d.date() if isinstance(d, datetime) else d for d in dates}
    return sorted(days)


def run_batch(ctx: BatchContext, dates: Iterable[date]) -> list[CoverageRecord]:
    """Summarize every date concurrently and return records by date.

    In non-strict mode a ``FetchError`` for one date becomes a
    ``FETCH_FAILED`` record and the other dates continue. In strict
    mode the first failure cancels pending dates and is re-raised with
    its date attached. Configuration and raster errors always propagate.
    """
    days = normalize_dates(dates)
    if not days:
        return []

    strict = ctx.config.strict
    workers = min(ctx.config.max_workers, len(days))
    records: list[CoverageRecord] = []

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    try:
        futures = {executor.submit(summarize_date, ctx, day): day for day in days}
        for future in concurrent.futures.as_completed(futures):
            day = futures[future]
            try:
                records.append(future.result())
            except FetchError as exc:
                if strict:
                    logger.error("Fetch failed for %s in strict mode, aborting", day)
                    if exc.date is None:
                        raise FetchError(
                            what=exc.what, cause=exc.cause, fix=exc.fix, date=day
                        ) from exc
                    raise
                logger.warning("Fetch failed for %s, recording zero coverage: %s", day, exc.what)
                records.append(CoverageRecord.fetch_failed(day, str(exc)))
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    records.sort(key=lambda record: record.date)
    logger.info(
        "Processed %d dates for %s (%d failed)",
        len(records),
        ctx.product.product_id,
        sum(1 for r in records if r.error),
    )
    return records
