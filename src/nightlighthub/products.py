"""NASA Black Marble (VNP46) product table.

Fill values, scale factors and quality layer names follow the Black
Marble User Guide (v2): daily products carry ``Mandatory_Quality_Flag``,
monthly and annual composites carry a ``<variable>_Quality`` layer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from nightlighthub._types import Granularity
from nightlighthub.exceptions import ConfigurationError

BLACK_MARBLE_FILL_VALUE: int = 65535
BLACK_MARBLE_SCALE_FACTOR: float = 0.1
QUALITY_FILL_FLAG: int = 255
"""Quality flag value meaning "no retrieval" in every VNP46 product."""


class ProductSpec(BaseModel):
    """Static description of one Black Marble product.

    Args:
        product_id: Product short name (e.g. ``"VNP46A2"``).
        description: One-line description.
        granularity: Temporal granularity of the product.
        cadence: ``"daily"``, ``"monthly"`` or ``"annual"``.
        default_variable: Layer used when the caller names none.
        quality_variable: Quality layer name, or ``None`` if absent.
            ``{variable}`` is substituted with the requested layer.
        fill_value: Raw value marking "no data collected".
        scale_factor: Multiplier turning raw values into radiance.
        version: Collection version used for catalog searches.

    Example:
        >>> get_product("vnp46a2").quality_layer_for("Gap_Filled_DNB_BRDF-Corrected_NTL")
        'Mandatory_Quality_Flag'
    """

    model_config = ConfigDict(frozen=True)

    product_id: str
    description: str
    granularity: Granularity
    cadence: str
    default_variable: str
    quality_variable: str | None = None
    fill_value: float = BLACK_MARBLE_FILL_VALUE
    scale_factor: float = BLACK_MARBLE_SCALE_FACTOR
    version: str = "2"

    def quality_layer_for(self, variable: str) -> str | None:
        """Return the quality layer paired with *variable*, if any."""
        if self.quality_variable is None:
            return None
        return self.quality_variable.format(variable=variable)


_PRODUCTS: dict[str, ProductSpec] = {
    spec.product_id: spec
    for spec in (
        ProductSpec(
            product_id="VNP46A1",
            description="Daily top-of-atmosphere at-sensor radiance",
            granularity=Granularity.DAILY,
            cadence="daily",
            default_variable="DNB_At_Sensor_Radiance_500m",
        ),
        ProductSpec(
            product_id="VNP46A2",
            description="Daily moonlight-adjusted nighttime lights",
            granularity=Granularity.DAILY,
            cadence="daily",
            default_variable="Gap_Filled_DNB_BRDF-Corrected_NTL",
            quality_variable="Mandatory_Quality_Flag",
        ),
        ProductSpec(
            product_id="VNP46A3",
            description="Monthly gap-filled nighttime lights composite",
            granularity=Granularity.MONTHLY_ANNUAL,
            cadence="monthly",
            default_variable="NearNadir_Composite_Snow_Free",
            quality_variable="{variable}_Quality",
        ),
        ProductSpec(
            product_id="VNP46A4",
            description="Annual gap-filled nighttime lights composite",
            granularity=Granularity.MONTHLY_ANNUAL,
            cadence="annual",
            default_variable="NearNadir_Composite_Snow_Free",
            quality_variable="{variable}_Quality",
        ),
    )
}


def get_product(product_id: str) -> ProductSpec:
    """Look up a product by short name (case-insensitive).

    Raises:
        ConfigurationError: If *product_id* is not a known product.
    """
    key = product_id.upper()
    if key not in _PRODUCTS:
        valid = ", ".join(sorted(_PRODUCTS))
        raise ConfigurationError(
            what=f"Unknown Black Marble product: {product_id!r}",
            cause=f"Valid products are: {valid}",
            fix=f"Use one of: {valid}",
        )
    return _PRODUCTS[key]


def list_products() -> list[str]:
    """Return the sorted list of supported product ids."""
    return sorted(_PRODUCTS)
