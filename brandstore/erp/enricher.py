"""
Reshape a saved order into the projection the ERP document is built from.

The incoming Order is never mutated: addresses are rebuilt with
model_copy() and line items are fresh ExportLine tuples.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .. import lookups
from ..config import Settings
from ..errors import InputError
from ..models import Order, OrderAddress, OrderItem, number_text
from ..services import Services
from .tables import FREE_SHIPPING_METHOD

logger = logging.getLogger(__name__)

NOT_LOGGED_IN_GROUP = "NOT LOGGED IN"
NON_LOGGED_USER = "NON_LOGGED_USER"
WAREHOUSE_PICKUP_METHOD = "WAREHOUSE_PICKUP_warehouse-pickup"
COURIER_METHOD = "COURIER_courier_shipping"
FEDEX_HANDLING_DESCRIPTION = "[ADOB-BSHIPPING]Business order processing/handling"

ADDRESS_OVERRIDES = {
    WAREHOUSE_PICKUP_METHOD: {
        "street": "1943 Lundy Ave", "city": "San Jose", "region": "California",
        "postcode": "95131", "country_id": "US",
    },
    COURIER_METHOD: {
        "street": "345 Park Ave", "city": "San Jose", "region": "California",
        "postcode": "95110", "country_id": "US",
    },
}


@dataclass(frozen=True)
class ExportLine:
    sku: str
    aux_id: str
    name: str
    description: str
    price: str
    quantity: str


@dataclass(frozen=True)
class ExportOrder:
    order: Order
    shipping_method: str
    addresses: Tuple[OrderAddress, ...]
    customer_group: str
    lines: Tuple[ExportLine, ...]
    total_bundle_qty: float = 0
    gift_message: Dict[str, str] = field(default_factory=dict)

    @property
    def ship_to(self) -> OrderAddress:
        return self.addresses[0]

    @property
    def bill_to(self) -> OrderAddress:
        return self.addresses[1]


def gift_card_sku(price) -> str:
    return f"ADOBGC{number_text(price)}-PURCH"


def is_fedex(shipping_method: str) -> bool:
    return "fedex" in (shipping_method or "").lower()


def export_addresses(order: Order, shipping_method: str) -> Tuple[OrderAddress, ...]:
    """
    (shipping, billing, *others). A missing shipping address is cloned from
    billing; pickup and courier methods replace the shipping address fields.
    """
    shipping = next((a for a in order.addresses if a.address_type == "shipping"), None)
    billing = next((a for a in order.addresses if a.address_type == "billing"), None)
    if billing is None:
        raise InputError(f"Order {order.increment_id} has no billing address")
    if shipping is None:
        logger.debug("Order %s: shipping address copied from billing", order.increment_id)
        shipping = billing.model_copy(update={"address_type": "shipping"})
    override = ADDRESS_OVERRIDES.get(shipping_method)
    if override:
        shipping = shipping.model_copy(update=override)
    others = [a for a in order.addresses if a.address_type not in ("shipping", "billing")]
    return (shipping, billing, *others)


def bundle_totals(items: List[OrderItem]) -> Dict[str, float]:
    """bundle item_id -> sum of its simple children's qty_ordered."""
    totals = {}
    for bundle in items:
        if bundle.product_type != "bundle":
            continue
        totals[bundle.item_id] = sum(
            float(child.qty_ordered or 0) for child in items
            if child.product_type == "simple" and child.parent_item_id == bundle.item_id
        )
        ratio = totals[bundle.item_id] / float(bundle.qty_ordered) if bundle.qty_ordered else 0
        logger.debug("Bundle %s: total_bundle_qty=%s bundle_ratio=%s",
                     bundle.sku, totals[bundle.item_id], ratio)
    return totals


def item_lines(items: List[OrderItem], bundles: Dict[str, float]) -> List[ExportLine]:
    """
    One line per SKU (first occurrence wins). Bundle children are dropped,
    gift cards of the same face value collapse into one ADOBGC line.
    """
    exported: List[Tuple[str, OrderItem]] = []
    quantities: Dict[str, float] = {}
    for item in items:
        if item.parent_item_id and item.parent_item_id in bundles:
            continue
        sku = gift_card_sku(item.price) if item.product_type == "giftcard" else item.sku
        if sku in quantities:
            if item.product_type == "giftcard":
                quantities[sku] += float(item.qty_ordered or 0)
            continue
        quantities[sku] = float(item.qty_ordered or 0)
        exported.append((sku, item))

    return [ExportLine(
        sku=sku,
        aux_id=item.product_id or "",
        name=item.name or "",
        description=item.description or "NA",
        price=number_text(item.base_price),
        quantity=number_text(quantities[sku]),
    ) for sku, item in exported]


def _gift_cards(blob: Optional[str]) -> List[dict]:
    if not blob:
        return []
    try:
        cards = json.loads(blob)
    except ValueError:
        logger.warning("Ignoring unreadable gift_cards value %r", blob)
        return []
    return [c for c in cards if isinstance(c, dict)] if isinstance(cards, list) else []


def static_lines(s: Settings, order: Order, shipping_method: str, ship_to: OrderAddress,
                 total_bundle_qty: float, gift_message: Dict[str, str]) -> List[ExportLine]:
    lines = []
    fedex = is_fedex(shipping_method)
    if fedex:
        lines.append(ExportLine(s.fedex_shipping_product_sku, s.fedex_shipping_product_id,
                                s.fedex_shipping_product_name, FEDEX_HANDLING_DESCRIPTION,
                                number_text(s.fedex_shipping_product_price), "1"))

    country = ship_to.country_id
    if country and country != "US" and not fedex:
        lines.append(ExportLine(s.fedex_international_shipping_product_sku,
                                s.fedex_international_shipping_product_id,
                                s.fedex_international_shipping_product_name,
                                s.fedex_international_shipping_product_name,
                                number_text(order.shipping_amount), "1"))

    if order.gw_id and float(order.gw_id) > 0:
        lines.append(ExportLine(s.gw_inline_product_sku, s.gw_inline_product_id,
                                s.gw_inline_product_name, s.gw_inline_product_name,
                                number_text(s.gw_inline_product_price), "1"))
        if total_bundle_qty > 0:
            lines.append(ExportLine(s.gw_inline_bundle_product_sku, s.gw_inline_bundle_product_id,
                                    s.gw_inline_bundle_product_name, s.gw_inline_bundle_product_name,
                                    number_text(s.gw_inline_bundle_product_price),
                                    number_text(float(total_bundle_qty))))

    if gift_message.get("message"):
        lines.append(ExportLine(s.gw_inline_gift_note_product_sku, s.gw_inline_gift_note_product_id,
                                s.gw_inline_gift_note_product_name, s.gw_inline_gift_note_product_name,
                                number_text(s.gw_inline_gift_note_product_price), "1"))

    for card in _gift_cards(order.gift_cards):
        lines.append(ExportLine(s.gift_card_product_sku, "giftcardredeem", s.gift_card_product_name,
                                str(card.get("c") or ""), f"-{number_text(card.get('a'))}", "1"))

    if order.coupon_code:
        lines.append(ExportLine(s.promo_code_line_item_sku, "promocodeitem", s.promo_code_line_item_name,
                                order.discount_description or "", number_text(order.discount_amount), "1"))
    return lines


def project(s: Settings, order: Order, customer_group: Optional[str],
            gift_message: Optional[Dict[str, str]] = None) -> ExportOrder:
    """Pure part of the enrichment, once the group code and gift message are known."""
    shipping_method = order.shipping_method or FREE_SHIPPING_METHOD
    addresses = export_addresses(order, shipping_method)
    if customer_group == NOT_LOGGED_IN_GROUP:
        customer_group = NON_LOGGED_USER
    gift_message = gift_message or {}

    bundles = bundle_totals(order.items)
    total_bundle_qty = sum(bundles.values())
    lines = item_lines(order.items, bundles)
    lines += static_lines(s, order, shipping_method, addresses[0], total_bundle_qty, gift_message)
    return ExportOrder(
        order=order,
        shipping_method=shipping_method,
        addresses=addresses,
        customer_group=customer_group or "",
        lines=tuple(lines),
        total_bundle_qty=total_bundle_qty,
        gift_message=dict(gift_message),
    )


def enrich(svc: Services, order: Order) -> ExportOrder:
    """Resolve the customer group and gift message, then project the order."""
    group = lookups.customer_group_code(svc, order.customer_group_id)
    gift_message = {}
    if order.gift_message_id and float(order.gift_message_id) > 0:
        gift_message = lookups.order_gift_message(svc, order.increment_id)
        logger.debug("Gift message for %s: %s", order.increment_id, gift_message)
    return project(svc.settings, order, group, gift_message)
