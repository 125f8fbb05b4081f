"""Provider interface contract and shared types.

Defines the ``RasterProvider`` abstract base class and the tile
mosaicking used by every gridded provider.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt
import requests
from pydantic import BaseModel, ConfigDict
from rasterio.transform import Affine, from_bounds

from nightlighthub._types import Bounds, FetchedRasters, Raster
from nightlighthub.config import Config
from nightlighthub.exceptions import FetchError
from nightlighthub.products import QUALITY_FILL_FLAG, ProductSpec

if TYPE_CHECKING:
    from nightlighthub.region import Region

logger = logging.getLogger(__name__)


class ProviderCredentials(BaseModel):
    """Credentials for authenticating with a data provider.

    Example:
        >>> creds = ProviderCredentials(bearer="placeholder")
        >>> creds.bearer
        'placeholder'
    """

    model_config = ConfigDict(frozen=True)

    bearer: str = ""


@dataclass
class GranuleEntry:
    """One downloadable tile returned by ``RasterProvider.search()``.

    Args:
        provider: Provider name.
        granule_id: Provider-specific granule identifier.
        tile_id: Grid tile identifier (e.g. ``"h20v05"``).
        url: Download URL.
        bounds: Tile extent ``(minx, miny, maxx, maxy)`` in EPSG:4326.
        timestamp: ISO-8601 start of the granule's temporal coverage.
        metadata: Additional provider-specific metadata.

    Example:
        >>> entry = GranuleEntry(
        ...     provider="blackmarble",
        ...     granule_id="VNP46A2.A2023005.h20v05.002.h5",
        ...     tile_id="h20v05",
        ...     bounds=(20.0, 30.0, 30.0, 40.0),
        ... )
    """

    provider: str = ""
    granule_id: str = ""
    tile_id: str = ""
    url: str = ""
    bounds: Bounds = (0.0, 0.0, 0.0, 0.0)
    timestamp: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    """Operational status of a data provider.

    Example:
        >>> ProviderStatus(available=True).message
        ''
    """

    available: bool = False
    message: str = ""


# Tolerance for snapping coordinates onto the tile grid
_GRID_EPSILON = 1e-6


def _snap_to_grid(bounds: Bounds, origin_x: float, origin_y: float, res: float) -> Bounds:
    """Expand *bounds* outwards to whole cells of a grid anchored at the origin."""
    minx, miny, maxx, maxy = bounds
    return (
        origin_x + math.floor((minx - origin_x) / res + _GRID_EPSILON) * res,
        origin_y + math.floor((miny - origin_y) / res + _GRID_EPSILON) * res,
        origin_x + math.ceil((maxx - origin_x) / res - _GRID_EPSILON) * res,
        origin_y + math.ceil((maxy - origin_y) / res - _GRID_EPSILON) * res,
    )


def mosaic_tiles(
    tiles: list[tuple[Bounds, npt.NDArray[Any]]],
    fill_value: float,
    bounds: Bounds | None = None,
) -> tuple[npt.NDArray[Any], Affine]:
    """Place equally-gridded tiles onto one array covering all of them.

    When *bounds* is given the mosaic also covers it, snapped outwards to
    the tiles' grid, so an area with no tile is still represented. Cells
    not covered by any tile get *fill_value*.

    Returns:
        ``(array, transform)`` for the mosaic.
    """
    if not tiles:
        msg = "Cannot mosaic an empty list of tiles"
        raise ValueError(msg)

    (minx0, _, maxx0, maxy0), first = tiles[0]
    res = (maxx0 - minx0) / first.shape[1]

    extents = [b for b, _ in tiles]
    if bounds is not None:
        extents.append(_snap_to_grid(bounds, minx0, maxy0, res))
    minx = min(b[0] for b in extents)
    miny = min(b[1] for b in extents)
    maxx = max(b[2] for b in extents)
    maxy = max(b[3] for b in extents)
    width = int(round((maxx - minx) / res))
    height = int(round((maxy - miny) / res))

    dtype = np.result_type(first.dtype, np.min_scalar_type(fill_value))
    mosaic = np.full((height, width), fill_value, dtype=dtype)
    for (tminx, _, _, tmaxy), array in tiles:
        col = int(round((tminx - minx) / res))
        row = int(round((maxy - tmaxy) / res))
        rows, cols = array.shape
        mosaic[row : row + rows, col : col + cols] = array

    return mosaic, from_bounds(minx, miny, maxx, maxy, width, height)


def crop_to_bounds(
    array: npt.NDArray[Any],
    transform: Affine,
    bounds: Bounds,
) -> tuple[npt.NDArray[Any], Affine]:
    """Crop *array* to the cells intersecting *bounds*.

    The crop snaps outwards to whole cells, so the region is never
    clipped.
    """
    minx, miny, maxx, maxy = bounds
    height, width = array.shape
    col_start = max(math.floor((minx - transform.c) / transform.a + _GRID_EPSILON), 0)
    col_stop = min(math.ceil((maxx - transform.c) / transform.a - _GRID_EPSILON), width)
    row_start = max(math.floor((maxy - transform.f) / transform.e + _GRID_EPSILON), 0)
    row_stop = min(math.ceil((miny - transform.f) / transform.e - _GRID_EPSILON), height)

    if col_start >= col_stop or row_start >= row_stop:
        return array[0:0, 0:0], transform

    cropped = array[row_start:row_stop, col_start:col_stop]
    return cropped, transform * Affine.translation(col_start, row_start)


class RasterProvider(ABC):
    """Abstract base class for nighttime-lights raster providers.

    Subclasses implement authentication, catalog search, tile download
    and status checks; :meth:`fetch` combines them into co-registered
    value and quality rasters for one date.

    Args:
        config: Frozen configuration snapshot for this provider instance.

    Example:
        >>> from nightlighthub.providers.blackmarble import BlackMarbleProvider
        >>> BlackMarbleProvider(config=Config()).name
        'blackmarble'
    """

    _name: str = ""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._session: requests.Session | None = None

    @property
    def name(self) -> str:
        """Provider identifier used in registry and cache keys."""
        return self._name

    @abstractmethod
    def authenticate(self, credentials: ProviderCredentials) -> None:
        """Validate and store provider credentials.

        Raises:
            ConfigurationError: If credentials are missing or rejected.
        """
        ...

    @abstractmethod
    def search(
        self,
        region: Region,
        product: ProductSpec,
        day: date,
    ) -> list[GranuleEntry]:
        """List the tiles covering *region* for *day*.

        Returns an empty list when no data matches; raises only on
        infrastructure failures.
        """
        ...

    @abstractmethod
    def download(
        self,
        entry: GranuleEntry,
        variables: list[str],
    ) -> dict[str, npt.NDArray[Any]]:
        """Download one tile and return the requested layers.

        Raises:
            FetchError: If the tile cannot be downloaded or lacks a layer.
        """
        ...

    @abstractmethod
    def check_status(self) -> ProviderStatus:
        """Check provider operational status. Never raises."""
        ...

    def fetch(
        self,
        region: Region,
        product: ProductSpec,
        day: date,
        variable: str | None = None,
    ) -> FetchedRasters:
        """Return value and quality rasters for *region* on *day*.

        Tiles are mosaicked onto a grid spanning the region's bounding
        box and cropped to it. Cells of the box with no tile are ``NaN``
        in the value raster and carry the quality fill flag, so they
        count as missing.

        Raises:
            FetchError: If no tiles exist or a download fails; ``date``
                is always set.
        """
        variable = variable or product.default_variable
        quality_layer = product.quality_layer_for(variable)
        layers = [variable] if quality_layer is None else [variable, quality_layer]

        try:
            entries = self.search(region, product, day)
            if not entries:
                raise FetchError(
                    what=f"No {product.product_id} granules found",
                    cause=f"The archive has no tiles covering {region.bounds}",
                    fix="Check the date against the product's availability",
                )

            value_tiles: list[tuple[Bounds, npt.NDArray[Any]]] = []
            quality_tiles: list[tuple[Bounds, npt.NDArray[Any]]] = []
            for entry in entries:
                arrays = self.download(entry, layers)
                value_tiles.append((entry.bounds, arrays[variable]))
                if quality_layer is not None:
                    quality_tiles.append((entry.bounds, arrays[quality_layer]))
        except FetchError as exc:
            if exc.date is not None:
                raise
            raise FetchError(
                what=exc.what, cause=exc.cause, fix=exc.fix, date=day
            ) from exc

        value_array, transform = mosaic_tiles(value_tiles, np.nan, region.bounds)
        value_array, cropped_transform = crop_to_bounds(
            value_array, transform, region.bounds
        )
        value = Raster(data=value_array, transform=cropped_transform)

        quality: Raster | None = None
        if quality_tiles:
            quality_array, q_transform = mosaic_tiles(
                quality_tiles, QUALITY_FILL_FLAG, region.bounds
            )
            quality_array, q_cropped = crop_to_bounds(
                quality_array, q_transform, region.bounds
            )
            quality = Raster(data=quality_array, transform=q_cropped)

        logger.debug(
            "Fetched %s %s for %s: %d tiles, shape %s",
            product.product_id,
            variable,
            day,
            len(entries),
            value.shape,
        )
        return FetchedRasters(
            value=value,
            quality=quality,
            metadata={
                "product_id": product.product_id,
                "variable": variable,
                "quality_variable": quality_layer or "",
                "granule_ids": [entry.granule_id for entry in entries],
                "scale_factor": product.scale_factor,
            },
        )
