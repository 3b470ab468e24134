"""
Customer-group rules applied during checkout.

Webhook handlers take the decoded body and return a reply for
webhook.handle_webhook(); group-name is a plain action.
"""

import base64
import binascii
import logging
from typing import List, Optional

from . import lookups
from .errors import InputError, RestrictionError, UpstreamError
from .http import HTTP_INTERNAL_ERROR, HTTP_NOT_FOUND, HTTP_OK, action_error
from .services import Services
from .webhook import exception_reply, operation, success_reply

logger = logging.getLogger(__name__)

DISCOUNTS_FALLBACK_MESSAGE = "An unexpected error occurred while removing coupon and gift card."
GIFT_CARD_FALLBACK_MESSAGE = "An unexpected error occurred while validating the gift card code."
ADD_TO_CART_FALLBACK_MESSAGE = "An unexpected error occurred while validating the product access."
GIFT_CARD_NOT_AUTHORIZED_MESSAGE = "CBRE Personnel are not authorized to redeem gift cards."
EMPLOYEES_ONLY_MESSAGE = (
    "Oops! This item is only available for Adobe employees. "
    "Please sign in with an authorized account to continue."
)
MISSING_NONCE_MESSAGE = "Please retry the authorize.net payment. Missing payment nonce."
PURCHASE_ORDER_METHOD = "purchaseorder"


def remove_discounts(svc: Services, body: dict):
    """Quote merge: restricted groups lose their gift cards and coupon."""
    quote = (body.get("data") or {}).get("quote") or {}
    group = lookups.customer_group_code(svc, quote.get("customer_group_id"))
    logger.debug("Identified customer group %s", group)
    if group in svc.settings.restricted_discount_groups:
        return [
            operation("replace", "data/quote/gift_cards", None),
            operation("replace", "data/quote/coupon_code", None),
        ]
    return success_reply()


def validate_gift_card_redeem(svc: Services, body: dict):
    cart_id = (body.get("giftCard") or {}).get("cartId")
    if not cart_id:
        raise InputError("Cart ID is required")
    result = svc.commerce.get_cart(cart_id)
    if not result.success:
        raise UpstreamError("Failed to retrieve cart information", result.status_code)
    cart = result.message or {}
    if cart.get("customer_is_guest"):
        return success_reply()
    group = lookups.customer_group_code(svc, (cart.get("customer") or {}).get("group_id"))
    if group in svc.settings.restricted_discount_groups:
        raise RestrictionError(GIFT_CARD_NOT_AUTHORIZED_MESSAGE)
    return success_reply()


def _allowed_payment_groups(svc: Services) -> List[str]:
    s = svc.settings
    if s.payment_filter_group_codes:
        return s.payment_filter_group_codes
    return [c.strip().strip("'") for c in s.customer_group_code.split(",") if c.strip()]


def filter_payment_methods(svc: Services, body: dict):
    """
    Customers of an allowed group see every payment method; everyone else
    (lookup failures included) has purchase order removed.
    """
    customer = (body.get("payload") or {}).get("customer")
    try:
        if isinstance(customer, dict) and "group_id" in customer:
            group = lookups.customer_group_code(svc, customer.get("group_id"))
            logger.info("Payment filter for customer group %s", group)
            if group and group in _allowed_payment_groups(svc):
                return success_reply()
    except Exception as e:
        logger.error("Server error: %s", e)
    return [{"op": "add", "path": "result", "value": {"code": PURCHASE_ORDER_METHOD}}]


def _selected_sku(quote_item: dict) -> Optional[str]:
    product = quote_item.get("product") or {}
    if product.get("type_id") == "bundle":
        selections = product.get("_cache_instance_used_selections") or {}
        for selection_id in product.get("_cache_instance_used_selections_ids") or []:
            sku = (selections.get(str(selection_id)) or selections.get(selection_id) or {}).get("sku")
            if sku:
                return sku
        return None
    return quote_item.get("sku")


def validate_add_to_cart(svc: Services, body: dict):
    """Products carrying a customer_group attribute are reserved to that group."""
    quote_item = (body.get("data") or {}).get("quote_item") or {}
    sku = _selected_sku(quote_item)
    if not sku:
        raise InputError("Product SKU is required")
    product = lookups.product_by_sku(svc, sku)
    if product is None:
        raise UpstreamError(f"Product {sku} not found", HTTP_NOT_FOUND)
    required_group = lookups.custom_attribute(product, "customer_group")
    if required_group is None:
        return success_reply()
    group = lookups.customer_group_code(svc, (body.get("customer") or {}).get("customer_group_id"))
    if required_group != group:
        return exception_reply(EMPLOYEES_ONLY_MESSAGE)
    return success_reply()


def validate_payment(svc: Services, body: dict):
    payment = ((body.get("order") or {}).get("payment")) or {}
    if payment.get("method") != svc.settings.authorizenet_payment_method:
        return success_reply()
    info = payment.get("additional_information")
    if not (isinstance(info, dict) and info.get("payment_nonce")):
        return exception_reply(MISSING_NONCE_MESSAGE)
    # Capture happens in the payment gateway integration.
    return success_reply()


def customer_group_name(svc: Services, params: dict) -> dict:
    uid = (params.get("customer") or {}).get("uid")
    try:
        group_id = base64.b64decode(uid or "", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return action_error(HTTP_NOT_FOUND, "Customer group not found for provided uid.")
    if not group_id:
        return action_error(HTTP_NOT_FOUND, "Customer group not found for provided uid.")
    try:
        result = svc.commerce.get_customer_group(group_id)
    except Exception as e:
        logger.error("Customer group lookup failed: %s", e)
        return action_error(HTTP_INTERNAL_ERROR, "Something went wrong while retrieving customer group info.")
    if not result.success:
        return action_error(HTTP_NOT_FOUND, "Customer group not found for provided uid.")
    group = result.message or {}
    return {"statusCode": HTTP_OK, "body": {"id": group.get("id"), "name": group.get("code")}}
