"""
cXML 1.2.044 OrderRequest rendering and ERP reply parsing.

build() is deterministic: the same ExportOrder and Settings always give the
same document, byte for byte.
"""

import base64
import logging
import re
import xml.etree.ElementTree as ET
from typing import NamedTuple, Optional

from ..config import Settings
from ..errors import ResponseFormatError
from ..models import OrderAddress, number_text
from .enricher import ExportLine, ExportOrder
from .tables import area_code, country_name, payment_code, region_code_by_name, shipping_code

logger = logging.getLogger(__name__)

CXML_VERSION = "1.2.044"
DOCUMENT_PREFIX = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<!DOCTYPE cXML SYSTEM "http://xml.cxml.org/schemas/cXML/1.2.044/cXML.dtd">\n'
)
UNSPSC_CODE = "80141605"

FROM_CREDENTIALS = (("NetworkId", "Adobe"), ("SystemID", "1"))
TO_CREDENTIALS = (
    ("NetworkId", "Halo"),
    ("internalsupplierid", "0002043729"),
    ("buyersystemid", "acm_184040700"),
    ("qa1", "0002044087"),
)


class ErpReply(NamedTuple):
    code: Optional[int]
    text: str
    payload_id: str


def _text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return number_text(value) if isinstance(value, (int, float)) else str(value)


def _el(parent, tag: str, text=None, **attrs) -> ET.Element:
    el = ET.SubElement(parent, tag, {k.replace("xml_", "xml:"): v for k, v in attrs.items()})
    el.text = _text(text)
    return el


def _leaf(parent, tag: str, value):
    """Text-only child; left out entirely when there is no value."""
    if value is None:
        return None
    return _el(parent, tag, value)


def formatted_order_id(increment_id: str, prefix: str) -> str:
    return f"{increment_id}_{prefix}"


def payload_id(created_at: str, increment_id: str, prefix: str) -> str:
    stamp = re.sub(r"\s+", "", created_at or "")
    encoded = base64.b64encode(stamp.encode("utf-8")).decode("ascii")
    return f"{encoded}_@{formatted_order_id(increment_id, prefix)}"


def _address(parent, tag: str, address: OrderAddress, address_id: Optional[str]):
    wrapper = ET.SubElement(parent, tag)
    country = address.country_id or ""
    attrs = {"isoCountryCode": country}
    if address_id:
        attrs = {"addressID": address_id, **attrs}
    node = ET.SubElement(wrapper, "Address", attrs)
    full_name = f"{address.firstname or ''} {address.lastname or ''}"
    _el(node, "Name", full_name, xml_lang="en")

    postal = _el(node, "PostalAddress", name="default")
    _leaf(postal, "DeliverTo", full_name)
    street = address.street.replace("\n", " ").strip() if address.street is not None else None
    _leaf(postal, "Street", street)
    _leaf(postal, "City", address.city)
    _leaf(postal, "State", region_code_by_name(address.region) if address.region is not None else None)
    _leaf(postal, "PostalCode", address.postcode)
    _el(postal, "Country", country_name(country), isoCountryCode=country)

    _el(node, "Email", address.email, name="default", preferredLang="en-US")
    phone = _el(node, "Phone", name="work")
    number = _el(phone, "TelephoneNumber")
    _el(number, "CountryCode", country_name(country), isoCountryCode=country)
    _leaf(number, "AreaOrCityCode", area_code(address.city))
    _leaf(number, "Number", address.telephone)


def _item_out(parent, line: ExportLine, line_number: int, created_at: str, currency: str,
              unit_of_measure: str):
    item = _el(parent, "ItemOut", quantity=line.quantity, requestedDeliveryDate=created_at,
               lineNumber=str(line_number))
    item_id = _el(item, "ItemID")
    _leaf(item_id, "SupplierPartID", line.sku)
    _leaf(item_id, "SupplierPartAuxiliaryID", line.aux_id)
    detail = _el(item, "ItemDetail")
    price = _el(detail, "UnitPrice")
    _el(price, "Money", line.price, currency=currency)
    description = _el(detail, "Description", line.description, xml_lang="en-US")
    _leaf(description, "ShortName", line.name)
    _leaf(detail, "UnitOfMeasure", unit_of_measure)
    _el(detail, "Classification", UNSPSC_CODE, domain="UNSPSC")


def _extrinsic(parent, name: str, value):
    _el(parent, "Extrinsic", value, name=name)


def build(export: ExportOrder, s: Settings) -> str:
    """Render the full cXML document, declaration and DOCTYPE included."""
    order = export.order
    created_at = order.created_at or ""
    currency = order.store_currency_code

    root = ET.Element("cXML", {
        "payloadID": payload_id(created_at, order.increment_id, s.order_id_prefix),
        "timestamp": created_at,
        "version": CXML_VERSION,
        "xml:lang": "en-US",
    })

    header = _el(root, "Header")
    sender_from = _el(header, "From")
    for domain, identity in FROM_CREDENTIALS:
        _el(_el(sender_from, "Credential", domain=domain), "Identity", identity)
    to = _el(header, "To")
    for domain, identity in TO_CREDENTIALS:
        _el(_el(to, "Credential", domain=domain), "Identity", identity)
    sender = _el(header, "Sender")
    credential = _el(sender, "Credential", domain="NetworkID")
    _el(credential, "Identity", s.sender_identity)
    _el(credential, "SharedSecret", s.sender_shared_secret)
    _el(sender, "UserAgent", s.sender_user_agent)

    request = _el(root, "Request", deploymentMode=s.deployment_mode)
    order_request = _el(request, "OrderRequest")
    head = _el(order_request, "OrderRequestHeader",
               orderDate=created_at,
               orderID=formatted_order_id(order.increment_id, s.order_id_prefix),
               orderType="regular", orderVersion="1", type="new")
    _el(_el(head, "Total"), "Money", order.base_grand_total, currency=currency)
    _address(head, "ShipTo", export.ship_to, order.shipping_address_id)
    _address(head, "BillTo", export.bill_to, order.billing_address_id)
    shipping = _el(head, "Shipping")
    _el(shipping, "Money", order.shipping_amount, currency=currency)
    _el(shipping, "Description", order.shipping_description, xml_lang="en-US")

    term = _el(head, "PaymentTerm", payInNumberOfDays=s.payment_term)
    _extrinsic(term, "discountAmount", abs(float(order.discount_amount or 0)))
    _extrinsic(term, "discountDescription", order.discount_description)
    _extrinsic(term, "couponCode", order.coupon_code)
    _extrinsic(term, "paymentMethodCode", payment_code(order.payment.method) or "")

    gift = export.gift_message
    _extrinsic(head, "shippingMethodCode", shipping_code(export.shipping_method) or "")
    _extrinsic(head, "costCenterValue", order.payment.additional_information.get("ext_shipping_info") or "")
    _extrinsic(head, "gw_id", order.gw_id)
    _extrinsic(head, "gw_price", order.gw_price_incl_tax)
    _extrinsic(head, "gw_gift_message_available", order.gift_message_id)
    _extrinsic(head, "gw_to", gift.get("to"))
    _extrinsic(head, "gw_from", gift.get("from"))
    _extrinsic(head, "gw_message", gift.get("message"))
    _extrinsic(head, "CustomerGroup", export.customer_group)

    for number, line in enumerate(export.lines, start=1):
        _item_out(order_request, line, number, created_at, currency, s.unit_of_measure)

    ET.indent(root)
    return DOCUMENT_PREFIX + ET.tostring(root, encoding="unicode")


def parse_response(xml_text: str) -> ErpReply:
    """cXML/Response/Status -> ErpReply; ResponseFormatError when it is missing."""
    try:
        root = ET.fromstring((xml_text or "").strip())
    except ET.ParseError as e:
        logger.error("Unreadable ERP reply: %s", e)
        raise ResponseFormatError()
    status = root.find("Response/Status") if root.tag == "cXML" else None
    if status is None:
        logger.error("Invalid response format")
        raise ResponseFormatError()
    try:
        code = int(status.get("code"))
    except (TypeError, ValueError):
        code = None
    return ErpReply(code, (status.text or "").strip(), root.get("payloadID", ""))
