from concurrent.futures import Future
from unittest.mock import MagicMock, patch

import pytest
import requests

from brandstore.erp.dispatcher import PARAMS_KEY, XML_KEY, ErpDispatcher, order_params
from brandstore.errors import InputError

ORDER_EVENT = {"data": {"value": {"order": {
    "entity_id": 88,
    "increment_id": "100000088",
    "created_at": "2026-10-18 10:00:00",
    "shipping_method": "UPS_ups_ground",
    "items": [{"item_id": 1, "sku": "TEE-1", "qty_ordered": 1, "base_price": 20}],
    "addresses": [{"address_type": "billing", "firstname": "Ada", "lastname": "Lovelace",
                   "city": "San Jose", "region": "California", "country_id": "US"}],
    "payment": {"method": "purchaseorder"},
}}}}

ACCEPTED = '<cXML payloadID="p-88"><Response><Status code="200" text="OK">OK</Status></Response></cXML>'
REJECTED = ('<cXML payloadID="p-88"><Response><Status code="400" text="Bad Request">'
            'Unknown SKU TEE-1</Status></Response></cXML>')


class InlineExecutor:
    """Runs submitted work on the calling thread."""

    def submit(self, fn, *args):
        future = Future()
        future.set_result(fn(*args))
        return future


@pytest.fixture
def dispatcher(svc):
    return ErpDispatcher(svc, executor=InlineExecutor())


def test_accepted_order_moves_to_erp_status(dispatcher, svc, session, commerce, make_response):
    session.post.return_value = make_response(200, text=ACCEPTED)

    result = dispatcher.submit(ORDER_EVENT).result()

    assert result["statusCode"] == 200
    assert result["body"]["successField"] == {"payloadID": "p-88", "message": "ERP Order was processed successfully."}
    update = commerce.order_status_update.call_args.args[0]["entity"]
    assert update["entity_id"] == "88"
    assert update["status"] == "processing"
    assert "Reference ID: 100000088_ABS" in update["status_histories"][0]["comment"]

    url = session.post.call_args.args[0]
    assert url == svc.settings.erp_endpoint
    assert session.post.call_args.kwargs["headers"] == {"Content-Type": "text/xml"}


def test_payload_is_audited_and_params_only_with_erp_log(dispatcher, svc, session, make_response):
    session.post.return_value = make_response(200, text=ACCEPTED)
    dispatcher.submit(ORDER_EVENT).result()
    assert svc.store.get(XML_KEY.format("100000088")).startswith("<?xml")
    assert svc.store.get(PARAMS_KEY.format("100000088")) is None

    svc.settings.erp_log = True
    dispatcher.submit(ORDER_EVENT).result()
    assert svc.store.get_json(PARAMS_KEY.format("100000088")) == ORDER_EVENT


def test_rejected_order_keeps_its_status(dispatcher, session, commerce, make_response):
    session.post.return_value = make_response(200, text=REJECTED)
    result = dispatcher.submit(ORDER_EVENT).result()
    assert result["body"]["message"] == "Unknown SKU TEE-1"
    commerce.order_status_update.assert_not_called()


SEND_FAILED = {"statusCode": 500, "body": {"success": False, "statusCode": 500,
                                           "error": "Error sending SOAP request"}}


def test_connection_failure(dispatcher, session, commerce):
    session.post.side_effect = requests.ConnectionError("refused")
    assert dispatcher.submit(ORDER_EVENT).result() == SEND_FAILED
    commerce.order_status_update.assert_not_called()


def test_http_error_from_erp(dispatcher, session, commerce, make_response):
    session.post.return_value = make_response(502, text="Bad Gateway")
    assert dispatcher.submit(ORDER_EVENT).result() == SEND_FAILED
    commerce.order_status_update.assert_not_called()


def test_unreadable_reply(dispatcher, session, make_response):
    session.post.return_value = make_response(200, text="<html>maintenance</html>")
    result = dispatcher.submit(ORDER_EVENT).result()
    assert result["body"]["error"] == "Invalid response format"


def test_invalid_event_is_rejected_before_queueing(svc):
    executor = MagicMock()
    with pytest.raises(InputError):
        ErpDispatcher(svc, executor=executor).submit({"order": {"entity_id": 1}})
    executor.submit.assert_not_called()


def test_background_submit_returns_a_future(svc, session, make_response):
    session.post.return_value = make_response(200, text=ACCEPTED)
    future = ErpDispatcher(svc).submit(ORDER_EVENT)
    assert future.result(timeout=10)["statusCode"] == 200


def test_order_params_read_back(svc):
    assert order_params(svc, "100000088")["statusCode"] == 500
    svc.store.put_json(PARAMS_KEY.format("100000088"), {"order": {"increment_id": "100000088"}})
    svc.store.put(XML_KEY.format("100000088"), "<cXML/>")
    assert order_params(svc, "100000088") == {"statusCode": 200, "body": {
        "params": {"order": {"increment_id": "100000088"}}, "xml": "<cXML/>"}}


def test_unexpected_build_failure_is_logged_and_returned(dispatcher, session, caplog):
    with patch("brandstore.erp.dispatcher.enrich", side_effect=KeyError("region")):
        result = dispatcher.submit(ORDER_EVENT).result()
    assert result["statusCode"] == 500
    assert result["body"]["error"] == "'region'"
    assert "Could not build ERP payload for 100000088" in caplog.text
    session.post.assert_not_called()
