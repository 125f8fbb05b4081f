"""Tests for the provider registry get_provider() function."""

from __future__ import annotations

import pytest

from nightlighthub.config import Config
from nightlighthub.exceptions import ConfigurationError
from nightlighthub.providers import get_provider, get_registered_names, register_provider
from nightlighthub.providers.base import RasterProvider
from nightlighthub.providers.blackmarble import BlackMarbleProvider


@pytest.fixture(autouse=True)
def _reset_registry(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset provider registry before each test."""
    import nightlighthub.providers as _prov

    monkeypatch.setattr(_prov, "_PROVIDER_REGISTRY", {})


@pytest.mark.unit
class TestRegistry:
    def test_blackmarble_registered(self) -> None:
        assert get_registered_names() == ["blackmarble"]

    def test_returns_blackmarble_provider(self) -> None:
        provider = get_provider("blackmarble", Config())
        assert isinstance(provider, BlackMarbleProvider)
        assert isinstance(provider, RasterProvider)

    def test_case_insensitive(self) -> None:
        assert isinstance(get_provider("BlackMarble", Config()), BlackMarbleProvider)

    def test_config_passed_through(self) -> None:
        cfg = Config(max_workers=7)
        assert get_provider("blackmarble", cfg)._config is cfg

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown provider") as exc_info:
            get_provider("dmsp", Config())
        assert "blackmarble" in exc_info.value.cause

    def test_register_additional_provider(self) -> None:
        register_provider("Mirror", BlackMarbleProvider)
        assert get_registered_names() == ["blackmarble", "mirror"]
        assert isinstance(get_provider("mirror", Config()), BlackMarbleProvider)
