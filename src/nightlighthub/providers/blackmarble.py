"""NASA Black Marble (VNP46) access via CMR search and LAADS downloads."""

from __future__ import annotations

import io
import logging
import random
import re
import time
from datetime import date
from typing import TYPE_CHECKING, Any

import h5py
import numpy as np
import numpy.typing as npt
import requests

from nightlighthub._types import Bounds
from nightlighthub.config import Config, resolve_bearer_token
from nightlighthub.exceptions import ConfigurationError, FetchError
from nightlighthub.providers.base import (
    GranuleEntry,
    ProviderCredentials,
    ProviderStatus,
    RasterProvider,
)

if TYPE_CHECKING:
    from nightlighthub.products import ProductSpec
    from nightlighthub.region import Region

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# NASA CMR constants
# ---------------------------------------------------------------------------

_CMR_GRANULES_URL = "https://cmr.earthdata.nasa.gov/search/granules.json"
_CMR_HEALTH_URL = "https://cmr.earthdata.nasa.gov/search/health"
_PAGE_SIZE = 100

# ---------------------------------------------------------------------------
# Timeout and retry constants
# ---------------------------------------------------------------------------

_DEFAULT_TIMEOUT = 30
_STATUS_TIMEOUT = 10
_READ_TIMEOUT = 300

_MAX_RETRIES = 3
_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 60.0
_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
_AUTH_STATUS_CODES = frozenset({401, 403})

# ---------------------------------------------------------------------------
# Black Marble linear lat/lon tile grid (10 x 10 degree tiles)
# ---------------------------------------------------------------------------

_TILE_SIZE_DEG = 10.0
_TILE_ID_PATTERN = re.compile(r"h(\d{2})v(\d{2})")


def tile_bounds(tile_id: str) -> Bounds:
    """Return the ``(minx, miny, maxx, maxy)`` extent of a grid tile.

    Example:
        >>> tile_bounds("h20v05")
        (20.0, 30.0, 30.0, 40.0)
    """
    match = _TILE_ID_PATTERN.search(tile_id)
    if match is None:
        msg = f"Not a Black Marble tile id: {tile_id!r}"
        raise ValueError(msg)
    h, v = int(match.group(1)), int(match.group(2))
    minx = -180.0 + h * _TILE_SIZE_DEG
    maxy = 90.0 - v * _TILE_SIZE_DEG
    return (minx, maxy - _TILE_SIZE_DEG, minx + _TILE_SIZE_DEG, maxy)


class BlackMarbleProvider(RasterProvider):
    """Black Marble provider backed by NASA CMR and LAADS DAAC.

    Catalog searches are public. Downloads need a NASA Earthdata bearer
    token, either passed to :meth:`authenticate` or resolved from the
    environment on first download.

    Args:
        config: Frozen configuration snapshot.

    Example:
        >>> provider = BlackMarbleProvider(config=Config())
        >>> provider.name
        'blackmarble'
    """

    _name: str = "blackmarble"

    def __init__(self, config: Config) -> None:
        super().__init__(config)
        self._session: requests.Session = requests.Session()
        self._bearer: str = ""

    def authenticate(self, credentials: ProviderCredentials) -> None:
        """Store the bearer token used for downloads.

        Raises:
            ConfigurationError: If the token is empty.
        """
        if not credentials.bearer:
            raise ConfigurationError(
                what="Black Marble authentication failed",
                cause="Empty bearer token",
                fix="Generate a token at https://urs.earthdata.nasa.gov",
            )
        self._bearer = credentials.bearer
        self._session.headers["Authorization"] = f"Bearer {self._bearer}"
        logger.debug("Black Marble bearer token configured")

    def _ensure_authenticated(self) -> None:
        if not self._bearer:
            token = resolve_bearer_token(config=self._config)
            self.authenticate(ProviderCredentials(bearer=token))

    def search(
        self,
        region: Region,
        product: ProductSpec,
        day: date,
    ) -> list[GranuleEntry]:
        """Search CMR for tiles of *product* covering *region* on *day*.

        Composite granules span their whole month or year, so the
        one-day temporal window matches them through its first day.

        Raises:
            FetchError: If CMR is unreachable or returns an error.
        """
        minx, miny, maxx, maxy = region.bounds
        iso = day.isoformat()
        params: dict[str, Any] = {
            "short_name": product.product_id,
            "version": product.version,
            "temporal": f"{iso}T00:00:00Z,{iso}T23:59:59Z",
            "bounding_box": f"{minx},{miny},{maxx},{maxy}",
            "page_size": _PAGE_SIZE,
        }
        logger.debug("Searching CMR: %s", params)

        resp = self._retry_request(
            "get", _CMR_GRANULES_URL, params=params, timeout=_DEFAULT_TIMEOUT
        )
        try:
            body = resp.json()
        except ValueError as exc:
            raise FetchError(
                what="CMR returned invalid JSON",
                cause=str(exc),
                fix="Try again; check https://cmr.earthdata.nasa.gov status",
            ) from exc

        entries: dict[str, GranuleEntry] = {}
        for granule in body.get("feed", {}).get("entry", []):
            entry = self._parse_granule(granule)
            if entry is not None and entry.tile_id not in entries:
                entries[entry.tile_id] = entry

        logger.debug("Found %d %s tiles for %s", len(entries), product.product_id, iso)
        return [entries[tile] for tile in sorted(entries)]

    @staticmethod
    def _parse_granule(granule: dict[str, Any]) -> GranuleEntry | None:
        """Turn a CMR granule record into a ``GranuleEntry``.

        Returns ``None`` if the record has no HDF5 download link.
        """
        url = next(
            (
                link.get("href", "")
                for link in granule.get("links", [])
                if link.get("href", "").startswith("https")
                and link.get("href", "").endswith(".h5")
            ),
            "",
        )
        if not url:
            return None

        granule_id = url.rsplit("/", 1)[-1]
        match = _TILE_ID_PATTERN.search(granule_id)
        if match is None:
            logger.warning("Could not determine tile id from %s", granule_id)
            return None
        tile_id = match.group(0)

        return GranuleEntry(
            provider="blackmarble",
            granule_id=granule_id,
            tile_id=tile_id,
            url=url,
            bounds=tile_bounds(tile_id),
            timestamp=granule.get("time_start", ""),
            metadata={"concept_id": str(granule.get("id", ""))},
        )

    def download(
        self,
        entry: GranuleEntry,
        variables: list[str],
    ) -> dict[str, npt.NDArray[Any]]:
        """Download an HDF5 tile and read the requested layers.

        Raises:
            ConfigurationError: If no bearer token is available or it is
                rejected.
            FetchError: If the download fails after retries or a layer is
                missing from the file.
        """
        if not entry.url:
            raise FetchError(
                what="Invalid granule entry",
                cause="url is empty",
                fix="Ensure search() returned valid entries",
            )
        self._ensure_authenticated()

        logger.info("Downloading Black Marble tile %s...", entry.granule_id)
        resp = self._retry_request(
            "get", entry.url, timeout=(_DEFAULT_TIMEOUT, _READ_TIMEOUT)
        )
        return _read_layers(resp.content, entry.granule_id, variables)

    def _retry_request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Execute an HTTP request with exponential backoff.

        Raises:
            ConfigurationError: On HTTP 401/403.
            FetchError: If retries are exhausted or the status is not
                retryable.
        """
        kwargs.setdefault("allow_redirects", True)
        last_cause = ""

        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._session.request(method, url, **kwargs)
            except requests.RequestException as exc:
                last_cause = f"{type(exc).__name__}: {exc}"
            else:
                if resp.status_code == 200:
                    return resp
                if resp.status_code in _AUTH_STATUS_CODES:
                    raise ConfigurationError(
                        what="NASA Earthdata rejected the request",
                        cause=f"HTTP {resp.status_code} for {url}",
                        fix="Check that the bearer token is valid and not expired",
                    )
                if resp.status_code not in _RETRYABLE_STATUS_CODES:
                    raise FetchError(
                        what="Black Marble request failed",
                        cause=f"HTTP {resp.status_code} for {url}",
                        fix="Check https://ladsweb.modaps.eosdis.nasa.gov status",
                    )
                last_cause = f"HTTP {resp.status_code}"

            if attempt < _MAX_RETRIES - 1:
                backoff = self._compute_backoff(attempt)
                logger.warning(
                    "Black Marble request failed (%s, attempt %d/%d), "
                    "retrying in %.1fs...",
                    last_cause,
                    attempt + 1,
                    _MAX_RETRIES,
                    backoff,
                )
                time.sleep(backoff)

        raise FetchError(
            what="Black Marble request failed after retries",
            cause=f"{last_cause} after {_MAX_RETRIES} attempts",
            fix="Check internet connection and try again",
        )

    @staticmethod
    def _compute_backoff(attempt: int) -> float:
        """Exponential backoff with up to 10% jitter."""
        base_delay = min(_INITIAL_BACKOFF * (2**attempt), _MAX_BACKOFF)
        return base_delay + random.uniform(0, base_delay * 0.1)  # noqa: S311

    def check_status(self) -> ProviderStatus:
        """Check that the CMR search API answers. Never raises."""
        try:
            resp = self._session.get(_CMR_HEALTH_URL, timeout=_STATUS_TIMEOUT)
        except requests.RequestException as exc:
            return ProviderStatus(
                available=False,
                message=f"NASA CMR unreachable: {exc}",
            )
        if resp.status_code == 200:
            return ProviderStatus(available=True)
        return ProviderStatus(
            available=False,
            message=f"NASA CMR returned HTTP {resp.status_code}",
        )


def _read_layers(
    content: bytes,
    granule_id: str,
    variables: list[str],
) -> dict[str, npt.NDArray[Any]]:
    """Read named datasets from an in-memory HDF5 granule.

    Layers are matched by dataset name anywhere in the HDFEOS tree, so
    the grid group name (which differs between collections) does not
    matter.
    """
    try:
        with h5py.File(io.BytesIO(content), "r") as h5:
            paths: dict[str, str] = {}

            def _collect(name: str, obj: Any) -> None:
                if isinstance(obj, h5py.Dataset):
                    paths.setdefault(name.rsplit("/", 1)[-1], name)

            h5.visititems(_collect)

            layers: dict[str, npt.NDArray[Any]] = {}
            for variable in variables:
                if variable not in paths:
                    raise FetchError(
                        what=f"Layer {variable!r} not found in {granule_id}",
                        cause=f"Available layers: {', '.join(sorted(paths))}",
                        fix="Pick a variable listed in the product user guide",
                    )
                layers[variable] = np.asarray(h5[paths[variable]][...])
            return layers
    except OSError as exc:
        raise FetchError(
            what=f"Could not read granule {granule_id}",
            cause=str(exc),
            fix="The download may be truncated; try again",
        ) from exc
