#!/usr/bin/env python3
"""Generate a nighttime-lights coverage report for a region.

Writes a CSV with one row per date (pixel counts, coverage ratio, mean
radiance, status) and a PNG chart of mean radiance and coverage.

Usage:
    python run_coverage.py --bbox 36.6 -1.45 37.1 -1.15 --product VNP46A2 \
        --start 2023-01-01 --end 2023-01-31 --exclude 2 --output nairobi

Example:
    python run_coverage.py --geojson kenya.geojson --product VNP46A3 \
        --start 2022-01-01 --end 2022-12-01 --output kenya_monthly
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import nightlighthub as nh
from nightlighthub.exceptions import NightlightHubError


def generate_coverage_report(
    source: object,
    product: str,
    start: str,
    end: str,
    output_stem: Path,
    excluded_codes: list[int],
    strict: bool = False,
    name: str = "",
) -> nh.CoverageSeries:
    """Run ``nightlight_coverage`` and write ``<stem>.csv`` and ``<stem>.png``.

    Args:
        source: Region source (bbox tuple or GeoJSON mapping).
        product: Black Marble product id.
        start: First date (ISO).
        end: Last date (ISO).
        output_stem: Output path without suffix.
        excluded_codes: Quality codes to drop.
        strict: Abort on the first failed date.
        name: Human-readable region name.
    """
    target = nh.region(source, name=name)
    dates = nh.date_sequence(start, end, product)
    print(f"Summarizing {product} for {target.name or 'region'} {target.bounds}...")
    print(f"  Dates: {len(dates)} ({start} → {end})")
    print(f"  Excluded quality codes: {sorted(excluded_codes) or 'none'}")

    series = nh.nightlight_coverage(
        target,
        product,
        dates,
        excluded_codes=excluded_codes,
        strict=strict,
    )

    csv_path = series.to_csv(output_stem.with_suffix(".csv"))
    png_path = series.to_png(output_stem.with_suffix(".png"))
    print(f"  CSV:   {csv_path}")
    print(f"  Chart: {png_path}")
    return series


def main() -> None:
    """Parse arguments and run the coverage report."""
    parser = argparse.ArgumentParser(
        description="Generate a Black Marble coverage report (CSV + PNG).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_coverage.py --bbox 36.6 -1.45 37.1 -1.15 --start 2023-01-01 --end 2023-01-31
  python run_coverage.py --geojson region.geojson --product VNP46A4 --start 2015-01-01 --end 2023-01-01
        """,
    )
    area = parser.add_mutually_exclusive_group(required=True)
    area.add_argument(
        "--bbox",
        type=float,
        nargs=4,
        metavar=("MINX", "MINY", "MAXX", "MAXY"),
        help="Bounding box in WGS84 degrees",
    )
    area.add_argument(
        "--geojson",
        type=Path,
        help="GeoJSON file with the region boundary",
    )
    parser.add_argument(
        "--product",
        default="VNP46A2",
        choices=nh.list_products(),
        help="Black Marble product (default: VNP46A2)",
    )
    parser.add_argument("--start", required=True, help="First date, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="Last date, YYYY-MM-DD")
    parser.add_argument(
        "--exclude",
        type=int,
        nargs="*",
        default=[],
        help="Quality codes to drop (0, 1 or 2)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail if any date cannot be retrieved",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default="coverage",
        help="Output path without suffix (default: coverage)",
    )
    parser.add_argument("--name", type=str, default="", help="Region name (optional)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.geojson is not None:
        if not args.geojson.exists():
            print(f"Error: GeoJSON file not found: {args.geojson}")
            sys.exit(1)
        source: object = json.loads(args.geojson.read_text(encoding="utf-8"))
    else:
        source = tuple(args.bbox)

    try:
        series = generate_coverage_report(
            source=source,
            product=args.product,
            start=args.start,
            end=args.end,
            output_stem=Path(args.output),
            excluded_codes=args.exclude,
            strict=args.strict,
            name=args.name,
        )
    except NightlightHubError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(series)


if __name__ == "__main__":
    main()
