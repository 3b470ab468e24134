import pytest
import requests

from brandstore.commerce import ApiResult
from brandstore.erp.reconciler import Reconciler, erp_status, shipment_body

TRACKING = {"order_status": "Posted", "tracking_no": "1Z999AA10123456784", "carrier_code": "ups",
            "tracking_url": "https://track.example.com/1Z999AA10123456784"}


def open_order(status="processing", method="purchaseorder", entity_id=5):
    return {"entity_id": entity_id, "increment_id": f"10000000{entity_id}", "status": status,
            "payment": {"method": method}}


@pytest.fixture
def reconciler(svc):
    return Reconciler(svc)


def erp_reply(make_response, status="Posted", tracking=TRACKING, success=True):
    body = {"success": success, "status": status}
    if tracking is not None:
        body["tracking_details"] = [tracking]
    return make_response(200, body)


def test_posted_purchase_order_is_shipped_invoiced_and_tracked(reconciler, svc, session, commerce, make_response):
    commerce.get_orders.return_value = ApiResult(True, {"items": [open_order()]}, 200)
    session.get.return_value = erp_reply(make_response)

    result = reconciler.run()

    assert result["body"]["summary"] == {"totalOrders": 1, "successfulUpdates": 1, "failedUpdates": 0}
    update = commerce.order_status_update.call_args.args[0]["entity"]
    assert (update["entity_id"], update["status"]) == (5, "shipped")
    assert "from processing to shipped" in update["status_histories"][0]["comment"]
    commerce.invoice_order.assert_called_once_with(5)
    order_id, body = commerce.shipment_order.call_args.args
    assert order_id == 5
    assert body["tracks"] == [{"track_number": "1Z999AA10123456784", "title": "ups", "carrier_code": "ups"}]

    session.get.assert_called_once()
    assert session.get.call_args.args[0] == "https://erp.example.com/tracking/get"
    assert session.get.call_args.kwargs["params"] == {"order_id": "100000005_ABS"}
    assert session.get.call_args.kwargs["headers"]["Authorization"] == "erp-token"


def test_status_is_written_only_when_it_changes(reconciler, commerce, make_response):
    reconciler.update_order(open_order(status="Shipped"), erp_reply(make_response).json())
    commerce.order_status_update.assert_not_called()


def test_unknown_erp_status_changes_nothing(reconciler, commerce):
    erp = {"success": True, "status": "On Hold", "tracking_details": [dict(TRACKING, order_status="On Hold")]}
    assert reconciler.update_order(open_order(), erp) is True
    commerce.order_status_update.assert_not_called()
    commerce.invoice_order.assert_not_called()
    commerce.shipment_order.assert_not_called()


def test_card_order_in_processing_is_only_shipped(reconciler, commerce, make_response):
    reconciler.update_order(open_order(method="authorizenet"), erp_reply(make_response).json())
    commerce.invoice_order.assert_not_called()
    commerce.shipment_order.assert_called_once()


def test_cancelled_order(reconciler, commerce):
    erp = {"success": True, "status": "Cancelled"}
    reconciler.update_order(open_order(), erp)
    assert commerce.order_status_update.call_args.args[0]["entity"]["status"] == "canceled"
    commerce.shipment_order.assert_not_called()


def test_shipped_without_tracking_still_invoices(reconciler, commerce):
    reconciler.update_order(open_order(method="checkmo"), {"success": True, "status": "Shipped"})
    commerce.invoice_order.assert_called_once_with(5)
    commerce.shipment_order.assert_not_called()


def test_failed_status_write_counts_as_failure(reconciler, commerce, session, make_response):
    commerce.get_orders.return_value = ApiResult(True, {"items": [open_order()]}, 200)
    commerce.order_status_update.return_value = ApiResult(False, "nope", 400)
    session.get.return_value = erp_reply(make_response)

    summary = reconciler.run()["body"]["summary"]

    assert summary == {"totalOrders": 1, "successfulUpdates": 0, "failedUpdates": 1}
    commerce.invoice_order.assert_not_called()


def test_fetch_failures_do_not_stop_the_run(reconciler, commerce, session, make_response):
    commerce.get_orders.return_value = ApiResult(True, {"items": [
        open_order(entity_id=1), open_order(entity_id=2), open_order(entity_id=3)]}, 200)
    session.get.side_effect = [
        requests.ConnectionError("timeout"),
        erp_reply(make_response, success=False),
        erp_reply(make_response),
    ]

    body = reconciler.run()["body"]

    assert body["summary"] == {"totalOrders": 3, "successfulUpdates": 1, "failedUpdates": 2}
    assert [f["orderId"] for f in body["details"]["failed"]] == ["100000001_ABS", "100000002_ABS"]
    assert body["details"]["failed"][1]["error"] == "Status fetch failed"


def test_no_open_orders(reconciler, commerce, session):
    commerce.get_orders.return_value = ApiResult(False, "down", 503)
    assert reconciler.run()["body"]["summary"]["totalOrders"] == 0
    session.get.assert_not_called()
    commerce.get_orders.assert_called_once_with(2)


def test_erp_status_prefers_first_tracking_entry():
    assert erp_status({"status": "Active", "tracking_details": [TRACKING]}) == "Posted"
    assert erp_status({"status": "Active", "tracking_details": []}) == "Active"


def test_shipment_body_comment():
    assert shipment_body(TRACKING)["comment"] == {
        "comment": "Order Tracking Url : https://track.example.com/1Z999AA10123456784"}
