"""Result object model for filtered rasters and coverage series."""

from __future__ import annotations

import enum
import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from pydantic import BaseModel, Field

from nightlighthub._types import QualityCategory, Raster

if TYPE_CHECKING:
    import pandas as pd
    import xarray as xr

# ── Coverage interpretation thresholds ─────────────────────────────
_COVERAGE_GOOD_THRESHOLD: float = 0.9
_COVERAGE_PARTIAL_THRESHOLD: float = 0.5


def _interpret_coverage(ratio: float) -> str:
    """Return plain-language interpretation of a coverage ratio.

    Example:
        >>> _interpret_coverage(0.95)
        'good coverage'
    """
    if math.isnan(ratio):
        return "no data"
    if ratio >= _COVERAGE_GOOD_THRESHOLD:
        return "good coverage"
    if ratio >= _COVERAGE_PARTIAL_THRESHOLD:
        return "partial coverage"
    return "poor coverage"


class CoverageStatus(str, enum.Enum):
    """Why a coverage record holds the numbers it holds."""

    OK = "ok"
    EMPTY_REGION = "empty_region"
    FETCH_FAILED = "fetch_failed"


@dataclass
class CoverageRecord:
    """Pixel coverage summary for one region and date.

    Always ``0 <= non_missing_pixel_count <= total_pixel_count``.
    ``coverage_ratio`` and ``mean_value`` are ``NaN`` when undefined.

    Attributes:
        date: Acquisition date (month or year start for composites).
        total_pixel_count: Cells under the region, missing or not.
        non_missing_pixel_count: Cells under the region with a value.
        coverage_ratio: ``non_missing / total`` (NaN if total is 0).
        mean_value: Mean over non-missing cells (NaN if there are none).
        status: ``OK``, ``EMPTY_REGION`` or ``FETCH_FAILED``.
        error: Failure message for ``FETCH_FAILED`` records.

    Example:
        >>> from datetime import date
        >>> rec = CoverageRecord(date(2023, 1, 1), 100, 60, 0.6)
        >>> rec.is_degraded
        False
    """

    date: date
    total_pixel_count: int = 0
    non_missing_pixel_count: int = 0
    coverage_ratio: float = math.nan
    mean_value: float = math.nan
    status: CoverageStatus = CoverageStatus.OK
    error: str = ""

    @classmethod
    def fetch_failed(cls, day: date, error: str) -> CoverageRecord:
        """Build the zero-count record used when retrieval fails."""
        return cls(
            date=day,
            total_pixel_count=0,
            non_missing_pixel_count=0,
            coverage_ratio=math.nan,
            mean_value=math.nan,
            status=CoverageStatus.FETCH_FAILED,
            error=error,
        )

    @property
    def is_degraded(self) -> bool:
        """``True`` if the record does not reflect a real raster."""
        return self.status is not CoverageStatus.OK

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total_pixel_count": self.total_pixel_count,
            "non_missing_pixel_count": self.non_missing_pixel_count,
            "coverage_ratio": self.coverage_ratio,
            "mean_value": self.mean_value,
            "status": self.status.value,
            "error": self.error,
        }


class ResultMetadata(BaseModel):
    """Metadata shared by raster and coverage results.

    Pydantic so it can be dumped straight into CSV headers and JSON.

    Attributes:
        product_id: Black Marble product (e.g. ``"VNP46A2"``).
        variable: Layer the values were read from.
        granularity: ``"daily"`` or ``"monthly_annual"``.
        excluded_codes: Quality codes that were dropped.
        fill_sentinel: Raw value treated as missing.
        scale_factor: Multiplier applied after filtering.
        region_name: Label of the region, if any.
        bounds: Region bounding box ``{"minx", "miny", "maxx", "maxy"}``.
        crs: Raster CRS.
        granule_ids: Granules mosaicked into the raster(s).

    Example:
        >>> meta = ResultMetadata(product_id="VNP46A2")
        >>> meta.crs
        'EPSG:4326'
    """

    product_id: str = ""
    variable: str = ""
    granularity: str = ""
    excluded_codes: list[int] = Field(default_factory=list)
    fill_sentinel: float | None = None
    scale_factor: float = 1.0
    region_name: str = ""
    bounds: dict[str, float] = Field(default_factory=dict)
    crs: str = "EPSG:4326"
    granule_ids: list[str] = Field(default_factory=list)


def _title_prefix(metadata: ResultMetadata) -> str:
    parts = [metadata.product_id or "Nighttime lights"]
    if metadata.region_name:
        parts.append(f"- {metadata.region_name}")
    return " ".join(parts)


@dataclass
class CoverageSeries:
    """Date-ordered coverage records for one region.

    The ``__repr__`` gives a narrative summary (period, dates, coverage,
    degraded dates) and never dumps every record.

    Attributes:
        records: One ``CoverageRecord`` per requested date, ascending.
        metadata: Product and region metadata.
        warnings: Human-readable warnings (e.g. failed dates).
    """

    records: list[CoverageRecord] = field(default_factory=list)
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
    warnings: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CoverageRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> CoverageRecord:
        return self.records[index]

    @property
    def dates(self) -> list[date]:
        return [record.date for record in self.records]

    @property
    def degraded_dates(self) -> list[date]:
        """Dates whose record is not backed by a real raster."""
        return [record.date for record in self.records if record.is_degraded]

    @property
    def failed_dates(self) -> list[date]:
        """Dates whose retrieval failed."""
        return [
            record.date
            for record in self.records
            if record.status is CoverageStatus.FETCH_FAILED
        ]

    @property
    def mean_coverage(self) -> float:
        """Mean coverage ratio over dates where it is defined."""
        ratios = [
            record.coverage_ratio
            for record in self.records
            if not math.isnan(record.coverage_ratio)
        ]
        if not ratios:
            return math.nan
        return float(np.mean(ratios))

    def __repr__(self) -> str:
        lines: list[str] = [f"{type(self).__name__}("]
        if self.metadata.product_id:
            lines.append(
                f"  product: {self.metadata.product_id} ({self.metadata.variable})"
            )
        if self.metadata.region_name:
            lines.append(f"  region: {self.metadata.region_name}")
        if self.records:
            first, last = self.records[0].date, self.records[-1].date
            lines.append(f"  period: {first.isoformat()} → {last.isoformat()}")
        lines.append(f"  dates: {len(self.records)}")

        mean_cov = self.mean_coverage
        if math.isnan(mean_cov):
            lines.append("  mean_coverage: N/A (no valid data)")
        else:
            lines.append(
                f"  mean_coverage: {mean_cov:.2f} — {_interpret_coverage(mean_cov)}"
            )

        failed = self.failed_dates
        if failed:
            shown = ", ".join(d.isoformat() for d in failed[:5])
            more = f" (+{len(failed) - 5} more)" if len(failed) > 5 else ""
            lines.append(f"  failed: {shown}{more}")

        for w in self.warnings:
            lines.append(f"  ⚠ {w}")

        lines.append(")")
        return "\n".join(lines)

    def to_dataframe(self) -> pd.DataFrame:
        """Export one row per date to a pandas DataFrame.

        Columns: ``date``, pixel counts, ``coverage_ratio``, ``mean_value``,
        ``status``, ``error``, plus ``product_id``, ``variable`` and
        ``region_name`` from the metadata.
        """
        import pandas as pd

        columns = [
            "date",
            "total_pixel_count",
            "non_missing_pixel_count",
            "coverage_ratio",
            "mean_value",
            "status",
            "error",
        ]
        df = pd.DataFrame([r.as_dict() for r in self.records], columns=columns)
        df["date"] = pd.to_datetime(df["date"])
        df["product_id"] = self.metadata.product_id
        df["variable"] = self.metadata.variable
        df["region_name"] = self.metadata.region_name
        return df

    def to_csv(self, path: str | Path) -> Path:
        """Write :meth:`to_dataframe` to a CSV file."""
        path = Path(path)
        self.to_dataframe().to_csv(path, index=False)
        return path

    def to_png(self, path: str | Path) -> Path:
        """Export a two-panel chart: mean value and coverage ratio by date.

        Failed dates are marked so a gap is not mistaken for zero
        coverage.
        """
        import matplotlib

        matplotlib.use("Agg")  # Non-interactive backend for file output
        import matplotlib.pyplot as plt

        path = Path(path)
        fig, (ax_value, ax_cov) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)
        ax_value.set_title(f"{_title_prefix(self.metadata)}\nNighttime lights over time")

        if not self.records:
            ax_value.text(
                0.5,
                0.5,
                "No data available",
                ha="center",
                va="center",
                fontsize=14,
                transform=ax_value.transAxes,
            )
        else:
            dates = self.dates
            ax_value.plot(dates, [r.mean_value for r in self.records], marker="o")
            ax_value.set_ylabel("Mean radiance")
            ax_cov.plot(
                dates, [r.coverage_ratio for r in self.records], marker="o", color="gray"
            )
            ax_cov.set_ylabel("Proportion non-missing")
            ax_cov.set_ylim(0, 1.05)
            for failed in self.failed_dates:
                ax_cov.axvline(failed, color="red", linestyle=":", alpha=0.6)

        fig.autofmt_xdate()
        plt.tight_layout()
        plt.savefig(path, dpi=150, bbox_inches="tight")
        plt.close(fig)

        return path


@dataclass
class FilteredRaster:
    """A quality-filtered nighttime-lights raster for one date.

    Attributes:
        raster: Filtered (and scaled) values; ``NaN`` marks missing.
        date: Acquisition date.
        quality: Cell counts per quality category before filtering
            (empty when the product has no quality layer).
        metadata: Product and region metadata.
    """

    raster: Raster
    date: date
    quality: dict[QualityCategory | str, int] = field(default_factory=dict)
    metadata: ResultMetadata = field(default_factory=ResultMetadata)

    @property
    def data(self) -> np.ndarray:
        return self.raster.data

    @property
    def coverage_ratio(self) -> float:
        """Fraction of cells in the grid that are not missing."""
        if self.raster.data.size == 0:
            return math.nan
        return float(np.count_nonzero(~self.raster.missing_mask)) / self.raster.data.size

    def __repr__(self) -> str:
        height, width = self.raster.shape
        ratio = self.coverage_ratio
        ratio_str = "N/A" if math.isnan(ratio) else f"{ratio:.2f}"
        return (
            f"{type(self).__name__}(date={self.date.isoformat()}, "
            f"shape={height}x{width}, non_missing={ratio_str})"
        )

    def to_xarray(self) -> xr.DataArray:
        """Return the raster as an ``xarray.DataArray`` with cell-centre coords."""
        import xarray as xr

        height, width = self.raster.shape
        transform = self.raster.transform
        xs = transform.c + (np.arange(width) + 0.5) * transform.a
        ys = transform.f + (np.arange(height) + 0.5) * transform.e
        return xr.DataArray(
            self.raster.data,
            dims=("y", "x"),
            coords={"y": ys, "x": xs, "time": np.datetime64(self.date.isoformat())},
            name=self.metadata.variable or "ntl",
            attrs={
                "crs": self.raster.crs,
                "product_id": self.metadata.product_id,
                "excluded_codes": list(self.metadata.excluded_codes),
            },
        )

    def to_geotiff(self, path: str | Path) -> Path:
        """Write the filtered raster to a single-band float32 GeoTIFF.

        Raises:
            ValueError: If the raster is empty.
        """
        import rasterio

        path = Path(path)
        if self.raster.data.size == 0:
            msg = "Cannot export empty raster to GeoTIFF"
            raise ValueError(msg)

        height, width = self.raster.shape
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=height,
            width=width,
            count=1,
            dtype="float32",
            crs=self.raster.crs,
            transform=self.raster.transform,
            nodata=np.nan,
        ) as dst:
            dst.write(self.raster.data.astype(np.float32), 1)
            dst.update_tags(
                date=self.date.isoformat(),
                product_id=self.metadata.product_id,
                variable=self.metadata.variable,
            )

        return path

    def to_png(self, path: str | Path) -> Path:
        """Export a quick-look map of the filtered raster."""
        import matplotlib

        matplotlib.use("Agg")  # Non-interactive backend for file output
        import matplotlib.pyplot as plt

        path = Path(path)
        fig, ax = plt.subplots(figsize=(10, 8))
        ax.set_title(f"{_title_prefix(self.metadata)}\n{self.date.isoformat()}")

        if self.raster.data.size == 0 or bool(np.all(self.raster.missing_mask)):
            ax.text(
                0.5,
                0.5,
                "No data available",
                ha="center",
                va="center",
                fontsize=14,
                transform=ax.transAxes,
            )
            ax.set_xlim(0, 1)
            ax.set_ylim(0, 1)
        else:
            minx, miny, maxx, maxy = self.raster.bounds
            im = ax.imshow(
                np.log1p(np.clip(self.raster.data, 0, None)),
                cmap="inferno",
                extent=(minx, maxx, miny, maxy),
            )
            plt.colorbar(im, ax=ax, label="log(1 + radiance)")

        plt.tight_layout()
        plt.savefig(path, dpi=150, bbox_inches="tight")
        plt.close(fig)

        return path
