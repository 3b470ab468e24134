"""Order-save side actions: cost-center comment and invoice creation."""

import logging
from typing import List

from ..config import Settings
from ..http import HTTP_INTERNAL_ERROR, action_error, action_success
from ..models import event_order
from ..services import Services

logger = logging.getLogger(__name__)


def fedex_method_codes(s: Settings) -> List[str]:
    methods = (s.fedex_methods.get("FEDEX") or []) + (s.fedex_methods.get("FEDEX_INTL") or [])
    return [f"{s.fedex_code}_{m.get('method_code')}" for m in methods]


def add_cost_center_comment(svc: Services, params: dict) -> dict:
    """FedEx orders paid with a cost center get a private 'Cost Center Number' comment."""
    order = event_order(params)
    order_id = order.get("entity_id")
    if not order_id:
        logger.error("Order ID is missing")
        return action_error(HTTP_INTERNAL_ERROR, "Order ID is missing")

    if order.get("shipping_method") not in fedex_method_codes(svc.settings):
        return action_success("Shipping method not in FedEx list. No comment added.")
    info = (order.get("payment") or {}).get("additional_information")
    cost_center = info.get("ext_shipping_info") if isinstance(info, dict) else None
    if not cost_center:
        return action_success("Cost center number not available. No comment added.")

    result = svc.commerce.order_comment_update(order_id, {
        "statusHistory": {
            "comment": f"Cost Center Number: {cost_center}",
            "is_customer_notified": 0,
            "is_visible_on_front": 0,
            "parent_id": order_id,
        },
    })
    if not result.success:
        logger.error("Unexpected error adding cost center comment to %s: %s", order_id, result.message)
        return action_error(HTTP_INTERNAL_ERROR, "Failed to add cost center comment")
    return action_success("Cost center comment added successfully")


def create_invoice(svc: Services, params: dict) -> dict:
    order = event_order(params)
    method = (order.get("payment") or {}).get("method")
    if method not in svc.settings.payment_methods_for_invoice_creation:
        return action_success("Payment Methods for invoice creation not matched")
    order_id = order.get("entity_id")
    if not order_id:
        logger.error("Order ID is missing")
        return action_error(HTTP_INTERNAL_ERROR, "Order ID is missing")

    result = svc.commerce.invoice_order(order_id)
    if not result.success:
        logger.error("Unexpected error invoicing the order %s: %s", order_id, result.message)
        return action_error(HTTP_INTERNAL_ERROR, "Unexpected error invoicing the order")
    return action_success("Invoice created successfully")
