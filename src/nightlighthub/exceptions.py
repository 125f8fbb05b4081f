"""nightlighthub exception hierarchy.

All exceptions follow a three-part message pattern: what failed,
likely cause, and suggested fix.
"""

from __future__ import annotations

from datetime import date as _date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nightlighthub._types import Granularity


class NightlightHubError(Exception):
    """Base exception for all nightlighthub errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise NightlightHubError(
        ...     what="Operation failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Join the non-empty parts into a multi-line message."""
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(NightlightHubError):
    """Raised for configuration, credential and argument errors.

    Example:
        >>> raise ConfigurationError(
        ...     what="No NASA Earthdata bearer token found",
        ...     cause="NIGHTLIGHTHUB_BEARER is not set",
        ...     fix="Export NIGHTLIGHTHUB_BEARER or pass bearer=...",
        ... )
    """


class InvalidQualityCodeError(ConfigurationError):
    """Raised when a quality code lies outside a granularity's domain.

    Args:
        code: The offending raw quality code.
        granularity: Granularity the code was interpreted under.

    Example:
        >>> from nightlighthub._types import Granularity
        >>> raise InvalidQualityCodeError(7, Granularity.DAILY)
    """

    def __init__(self, code: object, granularity: Granularity) -> None:
        self.code = code
        self.granularity = granularity
        super().__init__(
            what=f"Invalid quality code: {code!r}",
            cause=(
                f"{granularity.value} products only define quality codes "
                "0, 1 and 2"
            ),
            fix="Use codes from the product's quality flag table",
        )


class RasterMismatchError(NightlightHubError):
    """Raised when value and quality rasters are not co-registered.

    Example:
        >>> raise RasterMismatchError(
        ...     what="Value and quality rasters differ",
        ...     cause="Shapes (10, 10) and (10, 12)",
        ... )
    """


class FetchError(NightlightHubError):
    """Raised when the retrieval collaborator cannot produce a raster.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.
        date: Acquisition date the failure belongs to, if known.

    Example:
        >>> from datetime import date
        >>> raise FetchError(
        ...     what="No Black Marble granules found",
        ...     cause="VNP46A2 has no tiles for the region",
        ...     date=date(2023, 1, 5),
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
        date: _date | None = None,
    ) -> None:
        self.date = date
        if date is not None:
            what = f"{what} ({date.isoformat()})"
        super().__init__(what=what, cause=cause, fix=fix)
