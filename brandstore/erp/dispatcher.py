"""
Order export to the ERP.

submit() validates the order event and hands the work to a thread pool,
returning the Future so callers may wait on it (tests) or drop it (the
HTTP route, which answers 200 straight away).
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Optional

import requests

from ..errors import BrandStoreError, ResponseFormatError, StateError
from ..http import (DEFAULT_TIMEOUT, HTTP_BAD_REQUEST, HTTP_INTERNAL_ERROR, HTTP_OK, action_error,
                    action_success, current_time_zone_date)
from ..models import Order
from ..services import Services
from ..state import YEAR
from . import cxml
from .enricher import enrich

logger = logging.getLogger(__name__)

PARAMS_KEY = "halo-pushed-param-{}"
XML_KEY = "halo-pushed-xml-{}"


def erp_success_update(order: Order, status: str, reference: str, time_zone: str) -> dict:
    return {
        "entity": {
            "entity_id": order.entity_id,
            "status": status,
            "status_histories": [{
                "comment": f"Order successfully processed and created in ERP system (Reference ID: {reference})",
                "created_at": current_time_zone_date(time_zone),
            }],
        },
    }


class ErpDispatcher:
    def __init__(self, svc: Services, executor: Optional[Executor] = None):
        self.svc = svc
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="erp")

    def submit(self, params: dict) -> Future:
        """Validate synchronously (InputError propagates), process in the background."""
        order = Order.from_event(params)
        logger.info("Queueing ERP export for order %s", order.increment_id)
        return self.executor.submit(self.process, order, params)

    def _audit(self, key: str, value, as_json: bool):
        try:
            if as_json:
                self.svc.store.put_json(key, value, YEAR)
            else:
                self.svc.store.put(key, value, YEAR)
        except StateError as e:
            logger.error("Audit write %s failed: %s", key, e)

    def send(self, payload: str) -> str:
        resp = self.svc.session.post(self.svc.settings.erp_endpoint, data=payload.encode("utf-8"),
                                     headers={"Content-Type": "text/xml"}, timeout=DEFAULT_TIMEOUT)
        if resp.status_code >= 400:
            raise requests.HTTPError(f"HTTP error! Status: {resp.status_code}", response=resp)
        return resp.text

    def handle_reply(self, order: Order, reply_text: str) -> dict:
        s = self.svc.settings
        reply = cxml.parse_response(reply_text)
        reference = cxml.formatted_order_id(order.increment_id, s.order_id_prefix)
        message = None
        if reply.code == HTTP_OK:
            message = "ERP Order was processed successfully."
            result = self.svc.commerce.order_status_update(
                erp_success_update(order, s.erp_order_status, reference, s.order_time_zone))
            if not result.success:
                logger.error("Order %s status update after ERP export failed: %s",
                             order.increment_id, result.message)
        elif reply.code == HTTP_BAD_REQUEST:
            message = reply.text
            logger.warning("ERP rejected order %s: %s", order.increment_id, message)
        logger.info("ERP Order processed successfully.")
        return action_success(message, successField={"payloadID": reply.payload_id, "message": message})

    def process(self, order: Order, params: Optional[dict] = None) -> dict:
        """
        Steps, in order:
          1. params snapshot -> KV (only with ERP_LOG)
          2. enrich + render cXML, payload -> KV
          3. POST to the ERP endpoint
          4. parse the reply; on 200 move the order to ERP_ORDER_STATUS
        Failures are logged and returned as an action error body.
        """
        incr = order.increment_id
        if self.svc.settings.erp_log and params is not None:
            self._audit(PARAMS_KEY.format(incr), params, as_json=True)

        try:
            payload = cxml.build(enrich(self.svc, order), self.svc.settings)
        except BrandStoreError as e:
            logger.error("Could not build ERP payload for %s: %s", incr, e)
            return action_error(e.status_code, e.message)
        except Exception as e:
            logger.exception("Could not build ERP payload for %s", incr)
            return action_error(HTTP_INTERNAL_ERROR, str(e))
        self._audit(XML_KEY.format(incr), payload, as_json=False)

        try:
            reply_text = self.send(payload)
        except requests.RequestException as e:
            logger.error("Error sending SOAP request for %s: %s", incr, e)
            return action_error(HTTP_INTERNAL_ERROR, "Error sending SOAP request")

        try:
            return self.handle_reply(order, reply_text)
        except ResponseFormatError as e:
            return action_error(HTTP_INTERNAL_ERROR, e.message)
        except Exception as e:
            logger.exception("ERP reply handling failed for %s", incr)
            return action_error(HTTP_INTERNAL_ERROR, str(e))


def order_params(svc: Services, increment_id: str) -> dict:
    """Audit read-back: the params snapshot and cXML last pushed for an order."""
    params = svc.store.get_json(PARAMS_KEY.format(increment_id))
    xml = svc.store.get(XML_KEY.format(increment_id))
    if params is None:
        return action_error(HTTP_INTERNAL_ERROR, "No cached order parameters found")
    return {"statusCode": HTTP_OK, "body": {"params": params, "xml": xml}}
