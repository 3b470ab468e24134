"""
Tax engine router for the out-of-process tax webhook.

US quotes go to Vertex, everything else to Zonos. Operation paths use the
item's position in the quote as received, so dropped or deduplicated items
never shift the indexes of the ones that are kept.
"""

import logging
from typing import List, Tuple

from ..errors import BrandStoreError
from ..models import Quote, QuoteItem
from ..services import Services
from ..webhook import exception_reply, success_reply
from . import vertex, zonos

logger = logging.getLogger(__name__)

GIFT_CARD_SKU = "gift-card"
GIFT_CARD_TAX_CLASS = "Gift Certificates/Cards"
SINGLE_INSTANCE_TYPES = ("printed_card_gw", "quote_gw")
CALCULATION_FAILED_MESSAGE = "Something went wrong with tax calculation. Please retry or contact customer support."


def prepare_items(quote: Quote) -> List[Tuple[int, QuoteItem]]:
    """
    (quote index, item) pairs to calculate:
    - gift-card products are taxed as gift certificates
    - only the first printed_card_gw and the first quote_gw are kept
    - zero-value items are dropped, the shipping line always stays
    """
    seen_types = set()
    prepared = []
    for index, item in enumerate(quote.items):
        if item.type == "product" and item.sku == GIFT_CARD_SKU:
            item = item.model_copy(update={"tax_class": GIFT_CARD_TAX_CLASS})
        if item.type in SINGLE_INSTANCE_TYPES:
            if item.type in seen_types:
                continue
            seen_types.add(item.type)
        if item.row_total == 0 and item.type != "shipping":
            continue
        prepared.append((index, item))
    return prepared


def is_exempt(svc: Services, quote: Quote) -> bool:
    tax_class = (quote.customer_tax_class or "").strip()
    return bool(tax_class) and tax_class in svc.settings.tax_exempt_classes


def calculate(svc: Services, quote: Quote):
    if is_exempt(svc, quote):
        logger.info("Customer tax class %s is exempt", quote.customer_tax_class)
        return success_reply()

    items = prepare_items(quote)
    subtotal = sum(item.row_total for _, item in items)
    country = quote.ship_to_address.country if quote.ship_to_address else None
    method = quote.shipping.shipping_method if quote.shipping else None
    if not country or subtotal == 0 or method is None:
        return success_reply()

    if country != "US":
        operations = zonos.calculate(svc, quote, items)
    else:
        operations = vertex.calculate(svc.session, svc.settings, quote, items)
    logger.debug("Tax calculation operations: %s", operations)
    if operations:
        return operations
    return exception_reply(CALCULATION_FAILED_MESSAGE)


def handle_tax_request(svc: Services, body: dict):
    """Webhook handler: any failure becomes a 'Tax Error: ...' exception reply."""
    try:
        quote = Quote.model_validate(body.get("oopQuote") or {})
        return calculate(svc, quote)
    except BrandStoreError as e:
        logger.error("Tax calculation failed: %s", e)
        return exception_reply(f"Tax Error: {e.message}")
    except Exception as e:
        logger.exception("Tax calculation failed")
        return exception_reply(f"Tax Error: {e}")
