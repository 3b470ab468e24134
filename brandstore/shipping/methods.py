"""
Static and customer-group gated carrier strategies.

Each strategy takes the services + a RateRequest and returns a (possibly
empty) list of shipping operations.
"""

import logging
from typing import List

from .. import lookups
from ..models import RateRequest
from ..services import Services
from ..webhook import operation

logger = logging.getLogger(__name__)

WAREHOUSE_ADDRESS = "\n".join([
    "Free pickup at BrandVia Warehouse",
    "1943 Lundy Ave",
    "San Jose, CA, USA, 95131",
])
COURIER_ADDRESS = "\n".join([
    "Weekly Courier to San Jose Towers",
    "345 Park Ave, San Jose",
    "CA, 95110, USA",
])
FEDEX_DESCRIPTION = (
    "Bill to Adobe’s FedEx account for business orders only: $2.95 will be added to your order "
    "for processing and the shipping cost will be billed separately to your cost center"
)


def shipping_operation(carrier_data: dict) -> dict:
    return operation("add", "result", carrier_data)


def usps_methods(svc: Services, rr: RateRequest) -> List[dict]:
    """The table-rate (USPS) bestway method is always removed."""
    return [shipping_operation({"method": "bestway", "remove": True})]


def warehouse_methods(svc: Services, rr: RateRequest) -> List[dict]:
    if rr.dest_country_id != "US":
        return []
    s = svc.settings
    return [shipping_operation({
        "carrier_code": s.warehouse_pickup_carrier_code,
        "method": s.warehouse_pickup_method_code,
        "method_title": s.warehouse_pickup_method_title,
        "price": 0,
        "cost": 0,
        "additional_data": [
            {"key": "shipping_method", "value": s.warehouse_pickup_method_code},
            {"key": "address", "value": WAREHOUSE_ADDRESS},
        ],
    })]


def fedex_methods(svc: Services, rr: RateRequest) -> List[dict]:
    """
    Business FedEx methods, only for the configured customer group or the
    purchase-order FedEx group. The PO group is not charged the handling fee.
    """
    s = svc.settings
    if rr.customer is None or rr.customer.group_id is None:
        return []
    group_code = lookups.customer_group_code(svc, rr.customer.group_id)
    logger.info("FedEx check for customer group %s", group_code)
    if not group_code or group_code not in (s.customer_group_code, s.po_fedex_customer_group):
        return []

    price = 0 if group_code == s.po_fedex_customer_group else s.fedex_shipping_product_price
    kind = "FEDEX" if rr.dest_country_id == "US" else "FEDEX_INTL"
    ops = []
    for method in s.fedex_methods.get(kind) or []:
        ops.append(shipping_operation({
            "carrier_code": s.fedex_code,
            "method": method.get("method_code"),
            "method_title": method.get("method_title"),
            "price": price,
            "cost": price,
            "additional_data": [
                {"key": "shipping_method", "value": method.get("method_code")},
                {"key": "shipping_description", "value": FEDEX_DESCRIPTION},
            ],
        }))
    return ops


def courier_methods(svc: Services, rr: RateRequest) -> List[dict]:
    """Weekly courier, only when the customer's group id is CUSTOMER_GROUP_CODE's id."""
    if rr.customer is None or rr.customer.group_id is None:
        return []
    s = svc.settings
    group_id = lookups.customer_group_id_for_code(svc, s.customer_group_code)
    if str(rr.customer.group_id) != str(group_id):
        return []
    return [shipping_operation({
        "carrier_code": s.carrier_code,
        "method": s.shipping_method_code,
        "method_title": s.shipping_method_title,
        "price": 0,
        "cost": 0,
        "additional_data": [
            {"key": "shipping_method", "value": s.shipping_method_code},
            {"key": "address", "value": COURIER_ADDRESS},
        ],
    })]
