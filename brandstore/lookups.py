"""
Read-through cached lookups backed by the KV store.

Cache keys and TTLs:
    customer_group_list                 30 days
    customer_group_id_<code>            365 days
    regions                             365 days
    tax_classes                         30 days
    hts_codes_cache                     30 days
    product_<sku>                       1 day
    gift_message_<increment_id>         365 days
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from .errors import InputError, StateError, UpstreamError
from .services import Services
from .state import DAY, YEAR

logger = logging.getLogger(__name__)

REGIONS_QUERY = """query {
  countries {
    id
    available_regions {
      id
      code
    }
  }
}"""


def _cache_put(svc: Services, key: str, value, ttl: int):
    try:
        svc.store.put_json(key, value, ttl)
    except StateError as e:
        logger.warning("could not cache %s: %s", key, e)


def customer_group_list(svc: Services) -> List[dict]:
    items = svc.store.get_json("customer_group_list")
    if items is not None:
        return items
    result = svc.commerce.get_customer_group_list()
    if not result.success:
        raise UpstreamError(f"Failed to fetch customer groups: {result.message}", result.status_code)
    items = [{"id": g.get("id"), "code": g.get("code")}
             for g in (result.message or {}).get("items") or []]
    _cache_put(svc, "customer_group_list", items, 30 * DAY)
    return items


def customer_group_code(svc: Services, group_id) -> Optional[str]:
    """Group id -> group code, None when unknown or unreachable."""
    if group_id is None or str(group_id).strip() == "":
        return None
    try:
        items = customer_group_list(svc)
    except UpstreamError as e:
        logger.error("Error fetching customer group list: %s", e)
        return None
    for item in items:
        try:
            if int(item.get("id")) == int(group_id):
                return item.get("code")
        except (TypeError, ValueError):
            continue
    logger.info("Customer Group ID %s not found", group_id)
    return None


def customer_group_id_for_code(svc: Services, code: str) -> str:
    if not code:
        raise InputError("CUSTOMER_GROUP_CODE is required")
    key = "customer_group_id_" + re.sub(r"\s+", "", code)
    cached = svc.store.get(key)
    if cached:
        return cached
    result = svc.commerce.get_customer_group_id_by_code(code)
    items = (result.message or {}).get("items") if result.success else None
    if not items:
        raise InputError("Customer group not found", status_code=404)
    group_id = str(items[0].get("id"))
    try:
        svc.store.put(key, group_id, YEAR)
    except StateError as e:
        logger.warning("could not cache %s: %s", key, e)
    return group_id


def region_code(svc: Services, country_id: str, region_id) -> Optional[str]:
    """Region code for (country, region id) from the cached directory."""
    countries = svc.store.get_json("regions")
    if countries is None:
        logger.info("Fetching new region list.")
        result = svc.commerce.graphql(REGIONS_QUERY)
        countries = ((result.message or {}).get("data") or {}).get("countries") if result.success else None
        if not countries:
            logger.error("Directory fetch failed")
            return None
        _cache_put(svc, "regions", countries, YEAR)
    for country in countries:
        if country.get("id") != country_id:
            continue
        for region in country.get("available_regions") or []:
            if str(region.get("id")) == str(region_id):
                return region.get("code")
    logger.error("Region not found for Country: %s, Region ID: %s", country_id, region_id)
    return None


def tax_classes(svc: Services) -> Dict[str, str]:
    """tax_class_id option value -> label."""
    cached = svc.store.get_json("tax_classes")
    if cached is not None:
        return cached
    result = svc.commerce.get_attribute_by_code("tax_class_id")
    if not result.success:
        raise UpstreamError("Failed to fetch tax class data", result.status_code)
    options = (result.message or {}).get("options") or []
    mapping = {str(o.get("value")): o.get("label") for o in options}
    if mapping:
        _cache_put(svc, "tax_classes", mapping, 30 * DAY)
    return mapping


def hts_codes(svc: Services, skus: Iterable[str]) -> Dict[str, str]:
    """sku -> HTS code, fetching only the SKUs not yet cached."""
    skus = [s for s in skus if s]
    if not skus:
        return {}
    cached = svc.store.get_json("hts_codes_cache") or {}
    found = {sku: cached[sku] for sku in skus if cached.get(sku)}
    missing = [sku for sku in skus if sku not in found]
    if not missing:
        logger.info("Using cached HTS code data")
        return found

    logger.info("Fetching HTS codes from Commerce for SKUs: %s", ", ".join(missing))
    result = svc.commerce.get_products_by_sku(missing)
    if not result.success or not result.message:
        raise UpstreamError("Hts attribute: No product details found for given product SKUs",
                            result.status_code)
    for product in result.message.get("items") or []:
        code = custom_attribute(product, "hts_code")
        if code:
            cached[product["sku"]] = code
            found[product["sku"]] = code
    _cache_put(svc, "hts_codes_cache", cached, 30 * DAY)
    return found


def product_by_sku(svc: Services, sku: str) -> Optional[dict]:
    key = "product_" + re.sub(r"\s+", "-", sku)
    product = svc.store.get_json(key)
    if product is not None:
        return product
    result = svc.commerce.get_products_by_sku([sku])
    items = (result.message or {}).get("items") if result.success else None
    if not items:
        logger.info("Product %s not found", sku)
        return None
    product = items[0]
    _cache_put(svc, key, product, DAY)
    return product


def order_gift_message(svc: Services, increment_id) -> dict:
    """{message, from, to} of an order's gift message, {} when there is none."""
    if not increment_id:
        raise InputError("ORDER_ID is required")
    key = f"gift_message_{increment_id}"
    cached = svc.store.get_json(key)
    if cached is not None:
        return cached
    result = svc.commerce.get_orders_by_increment_id(increment_id)
    items = (result.message or {}).get("items") if result.success else None
    if not items:
        logger.error("Error fetching order gift message: Order not found")
        return {}
    gift = ((items[0].get("extension_attributes") or {}).get("gift_message")) or {}
    message = {
        "message": gift.get("message") or "",
        "from": gift.get("sender") or "",
        "to": gift.get("recipient") or "",
    }
    _cache_put(svc, key, message, YEAR)
    return message


def custom_attribute(product: dict, code: str):
    for attr in (product or {}).get("custom_attributes") or []:
        if attr.get("attribute_code") == code:
            return attr.get("value")
    return None
