"""
Scheduled ERP -> commerce order status reconciliation.

Orders are handled one after another; inside one order the invoice and the
shipment calls run in parallel and both finish before the order counts as
reconciled.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

import requests

from ..http import DEFAULT_TIMEOUT, HTTP_OK, current_time_zone_date
from ..services import Services
from .cxml import formatted_order_id

logger = logging.getLogger(__name__)

# ERP status -> commerce status (state in comment)
STATUS_MAP = {
    "Posted": "shipped",        # complete
    "Shipped": "shipped",       # complete
    "Cancelled": "canceled",    # canceled
    "Active": "processing",     # processing
    "In Progress": "processing",
}
SHIPPED_STATUSES = ("Shipped", "Posted")
PURCHASE_ORDER_METHOD = "purchaseorder"


def shipment_body(tracking: dict) -> dict:
    carrier = tracking.get("carrier_code")
    return {
        "notify": True,
        "appendComment": True,
        "comment": {"comment": f"Order Tracking Url : {tracking.get('tracking_url')}"},
        "tracks": [{
            "track_number": tracking.get("tracking_no"),
            "title": carrier,
            "carrier_code": carrier,
        }],
    }


def _first_tracking(erp: dict) -> Optional[dict]:
    details = erp.get("tracking_details") or []
    return details[0] if details and isinstance(details[0], dict) else None


def erp_status(erp: dict) -> Optional[str]:
    tracking = _first_tracking(erp)
    if tracking and tracking.get("order_status"):
        return tracking["order_status"]
    return erp.get("status")


class Reconciler:
    def __init__(self, svc: Services):
        self.svc = svc

    def fetch_erp_status(self, reference: str) -> dict:
        s = self.svc.settings
        url = f"{s.erp_order_status_endpoint}tracking/get"
        resp = self.svc.session.get(url, params={"order_id": reference}, headers={
            "Content-Type": "application/json",
            "Authorization": s.erp_auth_token,
        }, timeout=DEFAULT_TIMEOUT)
        resp.raise_for_status()
        return resp.json()

    def create_invoice(self, order_id) -> bool:
        logger.info("Creating invoice for order %s", order_id)
        result = self.svc.commerce.invoice_order(order_id)
        if not result.success:
            logger.error("Invoice for order %s failed: %s", order_id, result.message)
        return result.success

    def create_shipment(self, order_id, erp: dict) -> bool:
        tracking = _first_tracking(erp)
        if tracking is None:
            logger.error("Invalid tracking details for order %s", order_id)
            return False
        result = self.svc.commerce.shipment_order(order_id, shipment_body(tracking))
        if not result.success:
            logger.error("Shipment for order %s failed: %s", order_id, result.message)
            return False
        logger.info("Shipment created successfully for order %s", order_id)
        return True

    def _invoice_and_ship(self, order_id, erp: dict) -> Tuple[bool, bool]:
        with ThreadPoolExecutor(max_workers=2) as pool:
            invoice = pool.submit(self.create_invoice, order_id)
            shipment = pool.submit(self.create_shipment, order_id, erp)
            return invoice.result(), shipment.result()

    def update_order(self, order: dict, erp: dict) -> bool:
        """
        Move one commerce order to the status its ERP record implies.

        - status write only when the mapped status differs (case-insensitive)
        - Shipped/Posted: purchase orders are invoiced and shipped; authorize.net
          orders still in processing are only shipped; everything else is
          invoiced and shipped
        """
        s = self.svc.settings
        entity_id = order.get("entity_id")
        current = order.get("status") or ""
        halo_status = erp_status(erp)
        target = STATUS_MAP.get(halo_status)

        if target is None:
            logger.warning("Order %s: unknown ERP status %r, no status change", entity_id, halo_status)
        elif current.lower() != target:
            now = current_time_zone_date(s.order_time_zone)
            result = self.svc.commerce.order_status_update({
                "entity": {
                    "entity_id": entity_id,
                    "status": target,
                    "status_histories": [{
                        "comment": f"Order {entity_id} status changed from {current} to {target} "
                                   f"in Commerce from Halo ERP at {now}",
                        "created_at": now,
                    }],
                },
            })
            if not result.success:
                logger.error("Failed to update order status for %s: %s", entity_id, result.message)
                return False
            logger.info("Order %s status updated to %s", entity_id, target)

        if halo_status in SHIPPED_STATUSES:
            method = ((order.get("payment") or {}).get("method")) or ""
            if method == PURCHASE_ORDER_METHOD:
                self._invoice_and_ship(entity_id, erp)
            elif current == "processing" and method == s.authorizenet_payment_method:
                self.create_shipment(entity_id, erp)
            else:
                self._invoice_and_ship(entity_id, erp)
        return True

    def run(self) -> dict:
        s = self.svc.settings
        result = self.svc.commerce.get_orders(s.page_size)
        orders = []
        if result.success:
            orders = (result.message or {}).get("items") or []
        else:
            logger.error("Could not fetch open orders: %s", result.message)

        success, failed = [], []
        for order in orders:
            reference = formatted_order_id(order.get("increment_id"), s.order_id_prefix)
            logger.debug("Fetching order status for order %s", reference)
            try:
                erp = self.fetch_erp_status(reference)
                if not erp.get("success"):
                    logger.error("Failed to fetch order status for %s", reference)
                    failed.append({
                        "orderId": reference,
                        "error": "Status fetch failed",
                        "message": f"Failed to fetch order status for {reference}",
                    })
                    continue
                if self.update_order(order, erp):
                    success.append({"orderId": reference, "status": erp.get("status"),
                                    "message": "Order updated successfully."})
                else:
                    failed.append({"orderId": reference, "error": "Status update failed",
                                   "message": f"Failed to update order {reference}: Status update failed"})
            except (requests.RequestException, ValueError) as e:
                logger.error("Error fetching status for order %s: %s", reference, e)
                failed.append({"orderId": reference, "error": str(e),
                               "message": f"Failed to update order {reference} due to {e}"})

        body = {
            "message": "Order status update process completed.",
            "summary": {
                "totalOrders": len(orders),
                "successfulUpdates": len(success),
                "failedUpdates": len(failed),
            },
            "details": {"success": success, "failed": failed},
        }
        logger.info("Order status update process completed: %s", body["summary"])
        return {"statusCode": HTTP_OK, "body": body}
