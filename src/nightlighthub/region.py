"""Region model: the area of interest for every query.

Implements the region entry point with WGS84 bounds validation and a
stable hash used to build cache keys.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import shapely
from shapely.geometry import box, shape
from shapely.geometry.base import BaseGeometry

from nightlighthub._types import Bounds, RegionHash
from nightlighthub.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_MIN_LAT = -90.0
_MAX_LAT = 90.0
_MIN_LON = -180.0
_MAX_LON = 180.0
_POLYGONAL_TYPES = frozenset({"Polygon", "MultiPolygon"})


class Region:
    """A polygon or multi-polygon boundary in WGS84.

    Use :func:`region` to build one from GeoJSON, a bbox or a shapely
    geometry; the constructor expects an already-valid geometry.

    Args:
        geometry: Polygonal shapely geometry in EPSG:4326.
        name: Optional human-readable label used in reports.

    Example:
        >>> r = region((35.4, 33.8, 35.6, 34.0), name="Beirut")
        >>> r.bounds
        (35.4, 33.8, 35.6, 34.0)
    """

    def __init__(self, geometry: BaseGeometry, name: str = "") -> None:
        self._geometry = geometry
        self._name = name
        self._region_hash: RegionHash | None = None

    @property
    def geometry(self) -> BaseGeometry:
        return self._geometry

    @property
    def name(self) -> str:
        return self._name

    @property
    def bounds(self) -> Bounds:
        """Bounding box as ``(minx, miny, maxx, maxy)``."""
        minx, miny, maxx, maxy = self._geometry.bounds
        return (float(minx), float(miny), float(maxx), float(maxy))

    @property
    def region_hash(self) -> RegionHash:
        """SHA-256 of the normalized geometry WKB, for cache keys."""
        if self._region_hash is None:
            wkb = shapely.to_wkb(shapely.normalize(self._geometry))
            self._region_hash = hashlib.sha256(wkb).hexdigest()
        return self._region_hash

    def __repr__(self) -> str:
        minx, miny, maxx, maxy = self.bounds
        label = f"{self._name!r}, " if self._name else ""
        return (
            f"Region({label}bounds=({minx:.4f}, {miny:.4f}, "
            f"{maxx:.4f}, {maxy:.4f}))"
        )


def _to_geometry(source: Any) -> BaseGeometry:
    """Coerce the accepted region inputs into a shapely geometry."""
    if isinstance(source, BaseGeometry):
        return source
    if isinstance(source, Region):
        return source.geometry
    if hasattr(source, "union_all"):
        # GeoDataFrame / GeoSeries: dissolve all features into one boundary
        return source.union_all()
    if isinstance(source, Mapping):
        if source.get("type") == "FeatureCollection":
            geoms = [shape(f["geometry"]) for f in source.get("features", [])]
            return shapely.union_all(geoms)
        if source.get("type") == "Feature":
            return shape(source["geometry"])
        return shape(source)
    if hasattr(source, "__geo_interface__"):
        return shape(source.__geo_interface__)
    if isinstance(source, Sequence) and not isinstance(source, str) and len(source) == 4:
        minx, miny, maxx, maxy = (float(v) for v in source)
        if minx >= maxx or miny >= maxy:
            raise ConfigurationError(
                what=f"Invalid bounding box: {tuple(source)}",
                cause="Expected (minx, miny, maxx, maxy) with min < max",
                fix="Check the order of the bbox coordinates",
            )
        return box(minx, miny, maxx, maxy)
    raise ConfigurationError(
        what=f"Cannot build a region from {type(source).__name__}",
        cause="Unsupported region type",
        fix=(
            "Pass a shapely geometry, a GeoJSON mapping, a GeoDataFrame "
            "or a (minx, miny, maxx, maxy) bbox"
        ),
    )


def region(source: Any, name: str = "") -> Region:
    """Create a validated region of interest.

    Args:
        source: Shapely geometry, GeoJSON geometry/Feature/FeatureCollection,
            any object exposing ``__geo_interface__``, a GeoDataFrame, an
            existing ``Region`` or a ``(minx, miny, maxx, maxy)`` bbox.
        name: Optional label used in reports and plots.

    Returns:
        A ``Region`` ready for queries.

    Raises:
        ConfigurationError: If the geometry is empty, not polygonal or
            outside WGS84 bounds.

    Example:
        >>> r = region({"type": "Polygon", "coordinates": [[
        ...     [0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]})
        >>> r.bounds
        (0.0, 0.0, 1.0, 1.0)
    """
    if isinstance(source, Region) and not name:
        return source

    geometry = _to_geometry(source)

    if geometry.is_empty:
        raise ConfigurationError(
            what="Region geometry is empty",
            cause="The boundary contains no area",
            fix="Provide a non-empty polygon",
        )
    if geometry.geom_type not in _POLYGONAL_TYPES:
        raise ConfigurationError(
            what=f"Region must be polygonal, got {geometry.geom_type}",
            cause="Coverage is computed over an area",
            fix="Buffer points or lines before using them as a region",
        )

    minx, miny, maxx, maxy = geometry.bounds
    if not (_MIN_LON <= minx and maxx <= _MAX_LON):
        raise ConfigurationError(
            what=f"Invalid longitude range: {minx} to {maxx}",
            cause=f"Longitude must be between {_MIN_LON} and {_MAX_LON}",
            fix="Provide the boundary in WGS84 (EPSG:4326)",
        )
    if not (_MIN_LAT <= miny and maxy <= _MAX_LAT):
        raise ConfigurationError(
            what=f"Invalid latitude range: {miny} to {maxy}",
            cause=f"Latitude must be between {_MIN_LAT} and {_MAX_LAT}",
            fix="Provide the boundary in WGS84 (EPSG:4326)",
        )

    if not geometry.is_valid:
        logger.debug("Repairing invalid region geometry with make_valid")
        geometry = shapely.make_valid(geometry)

    label = name or (source.name if isinstance(source, Region) else "")
    return Region(geometry=geometry, name=label)
