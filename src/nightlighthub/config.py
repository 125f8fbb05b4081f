"""Configuration and credential management for nightlighthub.

A frozen ``Config`` carries every processing option (quality codes to
drop, fill sentinel override, strict mode, worker count, cache
settings). Bearer tokens for NASA Earthdata are resolved lazily, only
when a provider actually needs to download.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from nightlighthub._types import Granularity
from nightlighthub.exceptions import ConfigurationError

logger = logging.getLogger("nightlighthub")

_BEARER_ENV_VAR = "NIGHTLIGHTHUB_BEARER"
_CREDENTIALS_ENV_VAR = "NIGHTLIGHTHUB_CREDENTIALS"
_DEFAULT_CREDENTIALS_PATH = Path("~/.nightlighthub/credentials.json")
_CREDENTIALS_SECTION = "earthdata"


class Config(BaseModel):
    """Processing and retrieval configuration.

    Immutable pydantic model. ``granularity`` and ``fill_sentinel`` are
    normally taken from the product table; set them here only to
    override the product defaults.

    Args:
        granularity: Override for the product's temporal granularity.
        excluded_codes: Quality codes whose pixels are set to missing.
        fill_sentinel: Override for the product's fill value.
        strict: If ``True``, any per-date fetch failure aborts a batch.
        all_touched: Count every cell touched by the region boundary
            instead of cells whose centre falls inside it.
        max_workers: Threads used to process dates concurrently.
        cache_dir: Local directory for cached rasters.
        cache_size_mb: Maximum cache size in megabytes.
        cache_enabled: Whether fetched rasters are cached on disk.
        credentials: Path to a credentials JSON file.

    Example:
        >>> cfg = Config(excluded_codes={2}, strict=True)
        >>> sorted(cfg.excluded_codes)
        [2]
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    granularity: Granularity | None = None
    excluded_codes: frozenset[int] = frozenset()
    fill_sentinel: float | None = None
    strict: bool = False
    all_touched: bool = False
    max_workers: int = 4
    cache_dir: Path = Path("~/.nightlighthub/cache")
    cache_size_mb: int = 5000
    cache_enabled: bool = True
    credentials: Path | None = None

    @field_validator("credentials", mode="before")
    @classmethod
    def _expand_credentials(cls, v: str | Path | None) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser()

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _expand_cache_dir(cls, v: str | Path) -> Path:
        return Path(v).expanduser()

    @field_validator("excluded_codes", mode="before")
    @classmethod
    def _coerce_codes(cls, v: Any) -> frozenset[int]:
        """Accept any iterable of codes; range checks happen per product."""
        if v is None:
            return frozenset()
        if isinstance(v, int):
            return frozenset({v})
        return frozenset(v)

    @field_validator("max_workers", "cache_size_mb")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v <= 0:
            msg = "value must be greater than 0"
            raise ValueError(msg)
        return v


_default_config = Config()


def configure(**kwargs: Any) -> None:
    """Set module-level default configuration.

    Args:
        **kwargs: Any ``Config`` field.

    Raises:
        ValidationError: If a provided value fails pydantic validation.

    Example:
        >>> configure(excluded_codes={2}, max_workers=8)
    """
    global _default_config  # noqa: PLW0603
    current = _default_config.model_dump()
    current.update(kwargs)
    _default_config = Config(**current)


def get_default_config() -> Config:
    """Return the current module-level default configuration."""
    return _default_config


def resolve_credentials_path(explicit: Path | None = None) -> Path | None:
    """Resolve the credentials file path.

    Resolution order: *explicit*, then the ``NIGHTLIGHTHUB_CREDENTIALS``
    environment variable, then ``~/.nightlighthub/credentials.json``.

    Returns:
        The resolved path, or ``None`` if no file exists there.
    """
    if explicit is not None:
        path = Path(explicit).expanduser()
    elif os.environ.get(_CREDENTIALS_ENV_VAR):
        path = Path(os.environ[_CREDENTIALS_ENV_VAR]).expanduser()
    else:
        path = _DEFAULT_CREDENTIALS_PATH.expanduser()

    if not path.exists():
        return None

    _check_file_permissions(path)
    return path


def _check_file_permissions(path: Path) -> None:
    """Warn if *path* is readable by group or others (POSIX only)."""
    if sys.platform == "win32":
        return
    try:
        mode = path.stat().st_mode
    except OSError:
        return
    if mode & 0o077:
        logger.warning(
            "Credentials file %s has overly permissive permissions (%o). "
            "Consider running: chmod 600 %s",
            path,
            mode & 0o777,
            path,
        )


def load_credentials(path: Path) -> dict[str, Any]:
    """Load and parse a JSON credentials file.

    Raises:
        ConfigurationError: If the file is unreadable or not a JSON object.
    """
    resolved = Path(path).expanduser()
    expected = '{"earthdata": {"bearer": "..."}}'
    try:
        text = resolved.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(
            what="Cannot read credentials file",
            cause=f"File not found: {resolved}",
            fix=(
                f"Create {resolved} with {expected}, "
                f"or set the {_BEARER_ENV_VAR} environment variable"
            ),
        ) from None
    except PermissionError:
        raise ConfigurationError(
            what="Cannot read credentials file",
            cause=f"Permission denied: {resolved}",
            fix=f"Check file permissions on {resolved}",
        ) from None

    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"JSON parse error in {resolved}: {exc}",
            fix=f"Ensure the file contains valid JSON such as {expected}",
        ) from None

    if not isinstance(parsed, dict):
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"Expected a JSON object in {resolved}, got {type(parsed).__name__}",
            fix=f"Ensure the file contains a JSON object such as {expected}",
        )

    return parsed


def resolve_bearer_token(explicit: str | None = None, config: Config | None = None) -> str:
    """Find a NASA Earthdata bearer token.

    Resolution order: *explicit*, the ``NIGHTLIGHTHUB_BEARER`` environment
    variable, then the ``earthdata.bearer`` entry of the credentials file.

    Raises:
        ConfigurationError: If no token can be found.
    """
    if explicit:
        return explicit

    env_token = os.environ.get(_BEARER_ENV_VAR)
    if env_token:
        return env_token

    cfg = config if config is not None else get_default_config()
    creds_path = resolve_credentials_path(explicit=cfg.credentials)
    if creds_path is not None:
        section = load_credentials(creds_path).get(_CREDENTIALS_SECTION, {})
        token = section.get("bearer", "") if isinstance(section, dict) else ""
        if token:
            return str(token)

    raise ConfigurationError(
        what="No NASA Earthdata bearer token found",
        cause=(
            f"{_BEARER_ENV_VAR} is not set and no credentials file "
            "provides earthdata.bearer"
        ),
        fix=(
            "Generate a token at https://urs.earthdata.nasa.gov and export "
            f"{_BEARER_ENV_VAR}, or pass bearer=... explicitly"
        ),
    )
