"""Ship-to country restrictions (eligible_shipping_countries)."""

import logging
from typing import List

from ..errors import RestrictionError, UpstreamError
from ..lookups import custom_attribute
from ..models import RateRequest
from ..services import Services

logger = logging.getLogger(__name__)


def _allowed(countries: str, country: str) -> bool:
    return country in [c.strip() for c in countries.split(",")]


def validate_shipping_restrictions(svc: Services, rr: RateRequest):
    """
    Raise RestrictionError listing every SKU that cannot ship to the
    destination country.

    - configurable items: the attribute lives on the parent product, which
      is fetched from commerce (one call for all parents)
    - other non-bundle items: product.attributes.eligible_shipping_countries
      as sent in the rate request
    """
    country = rr.dest_country_id
    if not country:
        return
    restricted: List[str] = []

    parent_skus = [(item.product or {}).get("sku") for item in rr.all_items
                   if item.product_type == "configurable"]
    parent_skus = [sku for sku in parent_skus if sku]
    if parent_skus:
        logger.debug("Product SKUs to retrieve from commerce: %s", ",".join(parent_skus))
        result = svc.commerce.get_products_by_sku(parent_skus)
        if not result.success or not result.message:
            raise UpstreamError("No product details found for given product SKUs", result.status_code)
        for product in result.message.get("items") or []:
            eligible = custom_attribute(product, "eligible_shipping_countries")
            if eligible and not _allowed(eligible, country):
                restricted.append(product.get("sku"))

    for item in rr.all_items:
        product = item.product
        if not product or item.product_type in ("configurable", "bundle"):
            continue
        eligible = (product.get("attributes") or {}).get("eligible_shipping_countries")
        if eligible and not _allowed(eligible, country):
            restricted.append(product.get("sku"))

    if restricted:
        message = f"The following products cannot be shipped to {country}: {', '.join(restricted)}"
        logger.debug(message)
        raise RestrictionError(message)
