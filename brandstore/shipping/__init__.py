"""
Shipping rate aggregator.

Order of operations in the reply is fixed: USPS, Warehouse, FedEx, Courier,
UPS. A failing carrier contributes nothing; only the country restriction
gate can reject the whole request.
"""

import logging
from typing import Callable, List, Optional, Tuple

from ..models import RateRequest
from ..services import Services
from ..webhook import success_reply
from .methods import courier_methods, fedex_methods, usps_methods, warehouse_methods
from .restrictions import validate_shipping_restrictions
from .ups import UpsClient

logger = logging.getLogger(__name__)


def _carrier_ops(name: str, strategy: Callable[[], List[dict]]) -> List[dict]:
    try:
        return strategy()
    except Exception as e:
        logger.error("%s shipping methods failed: %s", name, e)
        return []


def rate_operations(svc: Services, rr: RateRequest, ups: Optional[UpsClient] = None) -> List[dict]:
    """All shipping operations for a rate request (RestrictionError propagates)."""
    validate_shipping_restrictions(svc, rr)
    ups = ups or UpsClient(svc)

    strategies: List[Tuple[str, Callable[[], List[dict]]]] = [
        ("USPS", lambda: usps_methods(svc, rr)),
        ("Warehouse", lambda: warehouse_methods(svc, rr)),
        ("FedEx", lambda: fedex_methods(svc, rr)),
        ("Courier", lambda: courier_methods(svc, rr)),
        ("UPS", lambda: ups.shipping_methods(rr)),
    ]
    operations: List[dict] = []
    for name, strategy in strategies:
        operations.extend(_carrier_ops(name, strategy))
    return operations


def handle_rate_request(svc: Services, body: dict):
    """Webhook handler: decoded body -> operation list (or success when empty)."""
    rr = RateRequest.model_validate(body.get("rateRequest") or {})
    logger.info("Collecting shipping methods for %s", rr.dest_country_id)
    operations = rate_operations(svc, rr)
    return operations or success_reply()
