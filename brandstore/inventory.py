"""
Stock lookups and inventory feed updates.

The feed is the ERP CSV export (Item Code in column 2, Qty On Hand in
column 6); fetching it from SFTP stays outside this
service, the route receives the file content.
"""

import csv
import io
import logging
from typing import Iterable, List, NamedTuple

from .http import HTTP_INTERNAL_ERROR, HTTP_OK, action_error
from .services import Services

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000
SOURCE_CODE = "default"
PRODUCT_TYPE_BUNDLE = "bundle"
EXPECTED_HEADERS = [
    "Program ID",
    "Item Code",
    "Description 1",
    "Description 2",
    "Obsolete",
    "Qty On Hand",
    "Committed Qty",
    "Qty Available",
]


class StockRecord(NamedTuple):
    sku: str
    qty: float


def _to_float(x) -> float:
    try:
        xs = str(x).strip()
        return float(xs) if xs else 0.0
    except ValueError:
        return 0.0


def parse_inventory_csv(text: str) -> List[StockRecord]:
    """Rows -> (sku, qty); the header row is skipped when it matches the feed layout."""
    text = (text or "").strip().replace("\\r\\n", "\n")
    rows = [r for r in csv.reader(io.StringIO(text)) if any(c.strip() for c in r)]
    if rows and [c.strip() for c in rows[0][:len(EXPECTED_HEADERS)]] == EXPECTED_HEADERS:
        rows = rows[1:]
    records = []
    for row in rows:
        sku = row[1].strip() if len(row) > 1 else ""
        if not sku:
            continue
        records.append(StockRecord(sku, _to_float(row[5]) if len(row) > 5 else 0.0))
    return records


def update_inventory(svc: Services, records: Iterable[StockRecord]) -> dict:
    """Push quantities to the default source in batches of BATCH_SIZE."""
    records = list(records)
    if not records:
        return {"statusCode": HTTP_OK, "body": {"success": False, "message": "Inventory file contains no data."}}

    results = []
    for start in range(0, len(records), BATCH_SIZE):
        batch = records[start:start + BATCH_SIZE]
        end = start + len(batch) - 1
        logger.info("Updating inventory for batch %s to %s", start, end)
        result = svc.commerce.update_inventory_source_items({
            "sourceItems": [{
                "sku": r.sku,
                "source_code": SOURCE_CODE,
                "quantity": r.qty,
                "status": 1 if r.qty > 0 else 0,
            } for r in batch],
        })
        if not result.success:
            logger.error("Batch %s failed: %s", start, result.message)
        results.append({"success": result.success, "batchStart": start, "batchEnd": end,
                        "message": result.message})

    logger.info("All batches processed.")
    return {
        "statusCode": HTTP_OK,
        "body": {
            "success": True,
            "message": f"Processed {len(records)} records in batches.",
            "response": results,
        },
    }


def product_stock(svc: Services, sku: str = None, product_type: str = None, child_sku: str = None) -> dict:
    """Salable quantity; bundles report the lowest source quantity of their child."""
    try:
        if product_type == PRODUCT_TYPE_BUNDLE:
            result = svc.commerce.get_bundle_child_product_salable_quantity(child_sku)
            items = ((result.message or {}).get("items") or []) if result.success else []
            quantities = sorted(_to_float(i.get("quantity")) for i in items)
            qty = quantities[0] if quantities else 0
        else:
            result = svc.commerce.get_product_salable_quantity(sku)
            qty = result.message if result.success and result.message is not None else 0
    except Exception as e:
        logger.error("Stock lookup failed: %s", e)
        return action_error(HTTP_INTERNAL_ERROR, "Something went wrong while retrieving product stock information.")
    return {"statusCode": HTTP_OK, "body": {"qty": qty}}
