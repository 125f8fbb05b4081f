"""Provider registry for raster data sources.

Provides ``get_provider()`` to instantiate configured provider
instances by name.
"""

from __future__ import annotations

from nightlighthub.config import Config
from nightlighthub.exceptions import ConfigurationError
from nightlighthub.providers.base import RasterProvider

_PROVIDER_REGISTRY: dict[str, type[RasterProvider]] = {}


def _init_registry() -> None:
    """Populate the provider registry on first use (lazy import)."""
    if _PROVIDER_REGISTRY:
        return

    from nightlighthub.providers.blackmarble import BlackMarbleProvider

    _PROVIDER_REGISTRY["blackmarble"] = BlackMarbleProvider


def register_provider(name: str, provider_cls: type[RasterProvider]) -> None:
    """Register an additional provider class under *name*."""
    _init_registry()
    _PROVIDER_REGISTRY[name.lower()] = provider_cls


def get_registered_names() -> list[str]:
    """Return sorted list of registered provider names."""
    _init_registry()
    return sorted(_PROVIDER_REGISTRY)


def get_provider(name: str, config: Config) -> RasterProvider:
    """Return a configured provider instance by name (case-insensitive).

    Raises:
        ConfigurationError: If *name* does not match a registered provider.

    Example:
        >>> get_provider("blackmarble", Config()).name
        'blackmarble'
    """
    _init_registry()
    key = name.lower()
    if key not in _PROVIDER_REGISTRY:
        valid = ", ".join(sorted(_PROVIDER_REGISTRY))
        raise ConfigurationError(
            what=f"Unknown provider: {name!r}",
            cause=f"Valid providers are: {valid}",
            fix=f"Use one of: {valid}",
        )
    return _PROVIDER_REGISTRY[key](config=config)
