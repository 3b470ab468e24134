import base64
import xml.etree.ElementTree as ET

import pytest

from brandstore.erp import cxml
from brandstore.erp.enricher import project
from brandstore.errors import ResponseFormatError
from brandstore.models import Order

ORDER = {
    "entity_id": 77,
    "increment_id": "100000077",
    "created_at": "2026-10-18 10:00:00",
    "store_currency_code": "USD",
    "base_grand_total": 142.5,
    "shipping_method": "UPS_ups_ground",
    "shipping_description": "UPS - Ground",
    "shipping_amount": 12.5,
    "discount_amount": -10,
    "discount_description": "Save 10",
    "coupon_code": "SAVE10",
    "billing_address_id": 901,
    "shipping_address_id": 902,
    "items": [
        {"item_id": 1, "sku": "TEE-1", "name": "Tee", "product_id": 11, "qty_ordered": 2, "base_price": 50},
        {"item_id": 2, "sku": "MUG-1", "name": "Mug", "product_id": 12, "qty_ordered": 1, "base_price": 40},
    ],
    "addresses": [
        {"address_type": "billing", "firstname": "Ada", "lastname": "Lovelace", "street": ["10 Analytical Way"],
         "city": "San Jose", "region": "California", "postcode": "95110", "country_id": "US",
         "email": "ada@example.com", "telephone": "4085550100"},
        {"address_type": "shipping", "firstname": "Bob", "lastname": "Babbage", "street": ["1 Engine Rd"],
         "city": "Palo Alto", "region": "California", "postcode": "94301", "country_id": "US",
         "email": "bob@example.com", "telephone": "6505550100"},
    ],
    "payment": {"method": "purchaseorder", "additional_information": {"ext_shipping_info": "CC-9001"}},
}


@pytest.fixture
def document(settings):
    export = project(settings, Order.from_event({"order": ORDER}), "Purchase Order Eligible")
    return cxml.build(export, settings)


@pytest.fixture
def root(document):
    return ET.fromstring(document[len(cxml.DOCUMENT_PREFIX):])


def extrinsics(parent):
    return {e.get("name"): e.text for e in parent.findall("Extrinsic")}


def test_payload_id():
    encoded = base64.b64encode(b"2026-10-1810:00:00").decode()
    assert cxml.payload_id("2026-10-18 10:00:00", "100000077", "ABS") == f"{encoded}_@100000077_ABS"


def test_build_is_deterministic(settings, document):
    export = project(settings, Order.from_event({"order": ORDER}), "Purchase Order Eligible")
    assert cxml.build(export, settings) == document
    assert document.startswith(cxml.DOCUMENT_PREFIX)


def test_header_and_credentials(root, settings):
    assert root.get("version") == cxml.CXML_VERSION
    assert root.get("payloadID").endswith("_@100000077_ABS")
    identities = [i.text for i in root.findall("Header/To/Credential/Identity")]
    assert identities == [identity for _, identity in cxml.TO_CREDENTIALS]
    assert root.find("Header/Sender/Credential/SharedSecret").text == "shh"
    assert root.find("Request").get("deploymentMode") == "test"


def test_order_header(root):
    head = root.find("Request/OrderRequest/OrderRequestHeader")
    assert head.get("orderID") == "100000077_ABS"
    assert head.find("Total/Money").text == "142.5"

    ship_to = head.find("ShipTo/Address")
    assert ship_to.get("addressID") == "902"
    assert ship_to.find("Name").text == "Bob Babbage"
    assert ship_to.find("PostalAddress/State").text == "CA"
    assert ship_to.find("PostalAddress/Country").text == "United States of America"
    assert ship_to.find("Phone/TelephoneNumber/AreaOrCityCode").text == "PA"
    assert head.find("BillTo/Address/Name").text == "Ada Lovelace"

    term = extrinsics(head.find("PaymentTerm"))
    assert term["discountAmount"] == "10"
    assert term["paymentMethodCode"] == "PO"
    header = extrinsics(head)
    assert header["shippingMethodCode"] == "UPS"
    assert header["costCenterValue"] == "CC-9001"
    assert header["CustomerGroup"] == "Purchase Order Eligible"


def test_item_lines(root):
    items = root.findall("Request/OrderRequest/ItemOut")
    assert [i.get("lineNumber") for i in items] == ["1", "2", "3"]
    assert [i.find("ItemID/SupplierPartID").text for i in items] == ["TEE-1", "MUG-1", "ADOB-PROMO"]
    first = items[0]
    assert first.get("quantity") == "2"
    assert first.find("ItemDetail/UnitPrice/Money").text == "50"
    assert first.find("ItemDetail/Classification").text == cxml.UNSPSC_CODE


def test_xml_lang_attributes_are_rendered(document):
    assert '<Name xml:lang="en">Bob Babbage</Name>' in document


def test_parse_response():
    reply = cxml.parse_response(
        '<cXML payloadID="p-1"><Response><Status code="200" text="OK">Accepted</Status></Response></cXML>')
    assert reply == cxml.ErpReply(200, "Accepted", "p-1")


@pytest.mark.parametrize("text", ["", "<cXML/>", "<other><Response><Status code='200'/></Response></other>", "<<"])
def test_parse_response_rejects_other_shapes(text):
    with pytest.raises(ResponseFormatError):
        cxml.parse_response(text)


def test_absent_address_fields_are_left_out(settings):
    order = dict(ORDER, coupon_code=None, addresses=[
        {"address_type": "billing", "firstname": "Ada", "lastname": "Lovelace", "city": "San Jose",
         "country_id": "US", "email": "ada@example.com"},
    ])
    document = cxml.build(project(settings, Order.from_event({"order": order}), "General"), settings)
    root = ET.fromstring(document[len(cxml.DOCUMENT_PREFIX):])

    postal = root.find("Request/OrderRequest/OrderRequestHeader/BillTo/Address/PostalAddress")
    assert [child.tag for child in postal] == ["DeliverTo", "City", "Country"]
    assert root.find("Request/OrderRequest/OrderRequestHeader/BillTo/Address/Phone/TelephoneNumber/Number") is None

    # attributed nodes stay, self-closed when empty
    coupon = root.find("Request/OrderRequest/OrderRequestHeader/PaymentTerm/Extrinsic[@name='couponCode']")
    assert coupon is not None and coupon.text is None
    assert '<Extrinsic name="couponCode" />' in document
