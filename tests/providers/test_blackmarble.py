"""Tests for the Black Marble provider (CMR search, download, HDF5 reading)."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import h5py
import numpy as np
import pytest
import requests

from nightlighthub.config import Config
from nightlighthub.exceptions import ConfigurationError, FetchError
from nightlighthub.products import get_product
from nightlighthub.providers.base import GranuleEntry, ProviderCredentials
from nightlighthub.providers.blackmarble import (
    _CMR_GRANULES_URL,
    _MAX_RETRIES,
    BlackMarbleProvider,
    _read_layers,
    tile_bounds,
)
from nightlighthub.region import region

DAY = date(2023, 1, 5)
_NTL = "Gap_Filled_DNB_BRDF-Corrected_NTL"
_QA = "Mandatory_Quality_Flag"


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip retry backoff delays."""
    monkeypatch.setattr("nightlighthub.providers.blackmarble.time.sleep", lambda _: None)


@pytest.fixture(autouse=True)
def _no_env_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NIGHTLIGHTHUB_BEARER", raising=False)


@pytest.fixture
def provider(tmp_path: Path) -> BlackMarbleProvider:
    p = BlackMarbleProvider(Config(credentials=tmp_path / "missing.json"))
    p._session = MagicMock()
    return p


def _response(status: int = 200, body: Any = None, content: bytes = b"") -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.json.return_value = body if body is not None else {}
    resp.content = content
    return resp


def _granule(tile: str, suffix: str = ".h5") -> dict[str, Any]:
    name = f"VNP46A2.A2023005.{tile}.002.2023010123456{suffix}"
    return {
        "id": f"G-{tile}",
        "time_start": "2023-01-05T00:00:00.000Z",
        "links": [
            {"href": f"s3://bucket/{name}"},
            {"href": f"https://ladsweb.modaps.eosdis.nasa.gov/archive/{name}"},
        ],
    }


def _h5_bytes(tmp_path: Path, layers: dict[str, np.ndarray]) -> bytes:
    path = tmp_path / "granule.h5"
    with h5py.File(path, "w") as h5:
        fields = h5.create_group("HDFEOS/GRIDS/VNP_Grid_DNB/Data Fields")
        for name, array in layers.items():
            fields.create_dataset(name, data=array)
    return path.read_bytes()


# ---------------------------------------------------------------------------
# Tile grid
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTileBounds:
    @pytest.mark.parametrize(
        ("tile", "expected"),
        [
            ("h00v00", (-180.0, 80.0, -170.0, 90.0)),
            ("h20v05", (20.0, 30.0, 30.0, 40.0)),
            ("VNP46A2.A2023005.h35v17.002.h5", (170.0, -90.0, 180.0, -80.0)),
        ],
    )
    def test_bounds(self, tile: str, expected: tuple[float, ...]) -> None:
        assert tile_bounds(tile) == expected

    def test_invalid_tile_raises(self) -> None:
        with pytest.raises(ValueError, match="tile id"):
            tile_bounds("nope")


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestAuthentication:
    def test_sets_bearer_header(self) -> None:
        p = BlackMarbleProvider(Config())
        p.authenticate(ProviderCredentials(bearer="tok"))
        assert p._session.headers["Authorization"] == "Bearer tok"

    def test_empty_token_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="authentication failed"):
            BlackMarbleProvider(Config()).authenticate(ProviderCredentials(bearer=""))

    def test_download_without_token_raises(self, provider: BlackMarbleProvider) -> None:
        entry = GranuleEntry(granule_id="g.h5", url="https://example.test/g.h5")
        with pytest.raises(ConfigurationError, match="bearer token"):
            provider.download(entry, [_NTL])
        provider._session.request.assert_not_called()

    def test_token_resolved_from_env(
        self, provider: BlackMarbleProvider, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("NIGHTLIGHTHUB_BEARER", "env-token")
        content = _h5_bytes(tmp_path, {_NTL: np.zeros((2, 2), dtype=np.uint16)})
        provider._session.request.return_value = _response(content=content)

        provider.download(GranuleEntry(granule_id="g.h5", url="https://x/g.h5"), [_NTL])

        assert provider._bearer == "env-token"


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSearch:
    def test_builds_cmr_query(self, provider: BlackMarbleProvider) -> None:
        provider._session.request.return_value = _response(body={"feed": {"entry": []}})

        provider.search(region((20.5, 30.5, 21.0, 31.0)), get_product("VNP46A2"), DAY)

        method, url = provider._session.request.call_args.args
        params = provider._session.request.call_args.kwargs["params"]
        assert (method, url) == ("get", _CMR_GRANULES_URL)
        assert params["short_name"] == "VNP46A2"
        assert params["temporal"] == "2023-01-05T00:00:00Z,2023-01-05T23:59:59Z"
        assert params["bounding_box"] == "20.5,30.5,21.0,31.0"

    def test_parses_granules_sorted_by_tile(self, provider: BlackMarbleProvider) -> None:
        feed = {"feed": {"entry": [_granule("h21v05"), _granule("h20v05"), _granule("h20v05")]}}
        provider._session.request.return_value = _response(body=feed)

        entries = provider.search(region((20.5, 30.5, 21.5, 31.0)), get_product("VNP46A2"), DAY)

        assert [e.tile_id for e in entries] == ["h20v05", "h21v05"]
        assert entries[0].url.startswith("https://")
        assert entries[0].bounds == (20.0, 30.0, 30.0, 40.0)
        assert entries[0].metadata["concept_id"] == "G-h20v05"

    def test_granules_without_h5_link_skipped(self, provider: BlackMarbleProvider) -> None:
        feed = {"feed": {"entry": [_granule("h20v05", suffix=".xml")]}}
        provider._session.request.return_value = _response(body=feed)
        assert provider.search(region((20.5, 30.5, 21.0, 31.0)), get_product("VNP46A2"), DAY) == []

    def test_invalid_json_raises(self, provider: BlackMarbleProvider) -> None:
        resp = _response()
        resp.json.side_effect = ValueError("bad json")
        provider._session.request.return_value = resp
        with pytest.raises(FetchError, match="invalid JSON"):
            provider.search(region((20.5, 30.5, 21.0, 31.0)), get_product("VNP46A2"), DAY)


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRetry:
    def test_retries_then_succeeds(self, provider: BlackMarbleProvider) -> None:
        provider._session.request.side_effect = [_response(503), _response(200)]
        assert provider._retry_request("get", "https://x").status_code == 200
        assert provider._session.request.call_count == 2

    def test_exhausted_retries_raise_fetch_error(self, provider: BlackMarbleProvider) -> None:
        provider._session.request.return_value = _response(503)
        with pytest.raises(FetchError, match="after retries"):
            provider._retry_request("get", "https://x")
        assert provider._session.request.call_count == _MAX_RETRIES

    def test_connection_errors_retried(self, provider: BlackMarbleProvider) -> None:
        provider._session.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(FetchError, match="ConnectionError"):
            provider._retry_request("get", "https://x")
        assert provider._session.request.call_count == _MAX_RETRIES

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors_not_retried(self, provider: BlackMarbleProvider, status: int) -> None:
        provider._session.request.return_value = _response(status)
        with pytest.raises(ConfigurationError, match="rejected"):
            provider._retry_request("get", "https://x")
        assert provider._session.request.call_count == 1

    def test_not_found_not_retried(self, provider: BlackMarbleProvider) -> None:
        provider._session.request.return_value = _response(404)
        with pytest.raises(FetchError, match="HTTP 404"):
            provider._retry_request("get", "https://x")
        assert provider._session.request.call_count == 1

    def test_backoff_grows(self) -> None:
        assert BlackMarbleProvider._compute_backoff(0) < 1.2
        assert 4.0 <= BlackMarbleProvider._compute_backoff(2) <= 4.4


# ---------------------------------------------------------------------------
# Download and HDF5 reading
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDownload:
    def test_reads_requested_layers(
        self, provider: BlackMarbleProvider, tmp_path: Path
    ) -> None:
        provider.authenticate(ProviderCredentials(bearer="tok"))
        value = np.arange(6, dtype=np.uint16).reshape(2, 3)
        flags = np.array([[0, 1, 2], [255, 0, 0]], dtype=np.uint8)
        provider._session.request.return_value = _response(
            content=_h5_bytes(tmp_path, {_NTL: value, _QA: flags})
        )

        layers = provider.download(
            GranuleEntry(granule_id="g.h5", url="https://x/g.h5"), [_NTL, _QA]
        )

        np.testing.assert_array_equal(layers[_NTL], value)
        np.testing.assert_array_equal(layers[_QA], flags)

    def test_empty_url_raises(self, provider: BlackMarbleProvider) -> None:
        with pytest.raises(FetchError, match="Invalid granule entry"):
            provider.download(GranuleEntry(), [_NTL])


@pytest.mark.unit
class TestReadLayers:
    def test_missing_layer_raises(self, tmp_path: Path) -> None:
        content = _h5_bytes(tmp_path, {_NTL: np.zeros((2, 2))})
        with pytest.raises(FetchError, match="not found") as exc_info:
            _read_layers(content, "g.h5", [_QA])
        assert _NTL in exc_info.value.cause

    def test_corrupt_file_raises(self) -> None:
        with pytest.raises(FetchError, match="Could not read granule"):
            _read_layers(b"not an hdf5 file", "g.h5", [_NTL])


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCheckStatus:
    def test_available(self, provider: BlackMarbleProvider) -> None:
        provider._session.get.return_value = _response(200)
        assert provider.check_status().available is True

    def test_http_error(self, provider: BlackMarbleProvider) -> None:
        provider._session.get.return_value = _response(503)
        status = provider.check_status()
        assert status.available is False
        assert "503" in status.message

    def test_unreachable_never_raises(self, provider: BlackMarbleProvider) -> None:
        provider._session.get.side_effect = requests.ConnectionError("down")
        status = provider.check_status()
        assert status.available is False
        assert "unreachable" in status.message
