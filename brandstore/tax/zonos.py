"""
Zonos landed-cost client for non-US quotes.

Zonos does not return item-level taxes, so the whole landed cost is put on
the quote's shipping line with a rate relative to the subtotal. When Zonos
refuses the request (403, not authorized, or no HTTP status at all) a flat
30% of the subtotal is charged instead.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import requests

from .. import lookups
from ..errors import UpstreamError
from ..http import DEFAULT_TIMEOUT, HTTP_FORBIDDEN
from ..models import Quote, QuoteItem
from ..services import Services
from ..webhook import operation
from .vertex import TAX_BREAKDOWN_INSTANCE, TAX_INSTANCE

logger = logging.getLogger(__name__)

ZONOS_VERSION = "2019-11-21"
NOT_AUTHORIZED_MESSAGE = "You are not authorized to access this resource."
FLAT_RATE = 30


def _service_level(svc: Services, method: Optional[str]) -> str:
    level = method or ""
    for prefix in svc.settings.zonos_shipping_methods:
        if level.startswith(f"{prefix}_"):
            return level[len(prefix) + 1:]
    return level


def build_request(svc: Services, quote: Quote, items: Sequence[Tuple[int, QuoteItem]]) -> dict:
    products = [item for _, item in items if item.type != "shipping"]
    hts = lookups.hts_codes(svc, [item.sku for item in products])
    shipping = None
    for _, item in items:
        if item.type == "shipping":
            shipping = {
                "amount": item.unit_price,
                "amount_discount": item.discount_amount or 0,
                "service_level": _service_level(svc, quote.shipping.shipping_method if quote.shipping else None),
            }
    address = quote.ship_to_address
    return {
        "currency": "USD",
        "items": [{
            "id": item.code,
            "amount": item.unit_price or 0,
            "amount_discount": item.discount_amount or 0,
            "hs_code": hts.get(item.sku, ""),
            "quantity": item.quantity,
            "duty_tax_fee_free": "exclude" if item.sku == "gift-card" else None,
        } for item in products],
        "landed_cost": "delivery_duty_paid",
        "sale_type": "not_for_resale",
        "ship_from_country": "US",
        "ship_to": {
            "city": address.city,
            "country": address.country,
            "postal_code": address.postcode,
            "state": address.region_code or address.region,
        },
        "shipping": shipping,
        "tariff_rate": "zonos_preferred",
    }


def _subtotal(items: Sequence[Tuple[int, QuoteItem]]) -> float:
    return sum(item.row_total for _, item in items)


def parse_response(body: dict, items: Sequence[Tuple[int, QuoteItem]]) -> List[dict]:
    amounts = (body or {}).get("amount_subtotal") or {}
    total = sum(float(amounts.get(k) or 0) for k in ("taxes", "duties", "fees"))
    subtotal = _subtotal(items)
    ops = []
    for index, item in items:
        if item.type != "shipping":
            continue
        ops.append(operation("replace", f"oopQuote/items/{index}/tax",
                             {"data": {"amount": total, "rate": total / subtotal * 100}}, TAX_INSTANCE))
        for key, value in amounts.items():
            value = float(value or 0)
            ops.append(operation("add", f"oopQuote/items/{index}/tax_breakdown", {"data": {
                "code": key,
                "rate": value / subtotal * 100,
                "amount": value,
                "title": key[:1].upper() + key[1:],
            }}, TAX_BREAKDOWN_INSTANCE))
    return ops


def flat_fallback(items: Sequence[Tuple[int, QuoteItem]]) -> List[dict]:
    amount = _subtotal(items) * FLAT_RATE / 100
    ops = []
    for index, item in items:
        if item.type != "shipping":
            continue
        ops.append(operation("replace", f"oopQuote/items/{index}/tax",
                             {"data": {"amount": amount, "rate": FLAT_RATE}}, TAX_INSTANCE))
        ops.append(operation("add", f"oopQuote/items/{index}/tax_breakdown", {"data": {
            "code": "international-flat-fee",
            "rate": FLAT_RATE,
            "amount": amount,
            "title": "International Flat 30% Tax Fee",
        }}, TAX_BREAKDOWN_INSTANCE))
    return ops


def calculate(svc: Services, quote: Quote, items: Sequence[Tuple[int, QuoteItem]]) -> List[dict]:
    s = svc.settings
    payload = build_request(svc, quote, items)
    logger.debug("Zonos api request: %s", payload)
    try:
        resp = svc.session.post(s.zonos_api_url, json=payload, headers={
            "serviceToken": s.zonos_api_key,
            "zonos-version": ZONOS_VERSION,
            "Content-Type": "application/json",
        }, timeout=DEFAULT_TIMEOUT)
    except requests.RequestException as e:
        logger.warning("Zonos unreachable, using flat rate: %s", e)
        return flat_fallback(items)

    try:
        body = resp.json()
    except ValueError:
        body = resp.text
    if resp.status_code < 400:
        logger.debug("Zonos api response: %s", body)
        return parse_response(body if isinstance(body, dict) else {}, items)

    message = body.get("messages") if isinstance(body, dict) else body
    if resp.status_code == HTTP_FORBIDDEN or message == NOT_AUTHORIZED_MESSAGE:
        logger.warning("Zonos refused the request (%s), using flat rate", resp.status_code)
        return flat_fallback(items)
    raise UpstreamError(f"{message}", resp.status_code)
