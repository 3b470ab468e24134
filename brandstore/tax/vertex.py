"""
Vertex O Series (CalculateTax90) SOAP client for US quotes.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import date
from typing import List, Optional, Sequence, Tuple

import requests

from ..config import Settings
from ..errors import BrandStoreError, ResponseFormatError
from ..http import DEFAULT_TIMEOUT
from ..models import Quote, QuoteItem, number_text
from ..webhook import operation

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
VERTEX_NS = "urn:vertexinc:o-series:tps:9:0"
TAX_INSTANCE = "Magento\\OutOfProcessTaxManagement\\Api\\Data\\OopQuoteItemTaxInterface"
TAX_BREAKDOWN_INSTANCE = "Magento\\OutOfProcessTaxManagement\\Api\\Data\\OopQuoteItemTaxBreakdownInterface"
DEFAULT_PRODUCT_CODE = "000"
INVALID_ADDRESS_MESSAGE = (
    "The shipping address you provided is invalid. Please correct the address on the checkout page, "
    "return to this page and try again."
)


class VertexFault(BrandStoreError):
    """Vertex answered with a SOAP fault; message is the user-facing root cause."""


def _sub(parent, tag: str, text=None, **attrs):
    el = ET.SubElement(parent, f"ns1:{tag}", attrs)
    if text is not None:
        el.text = number_text(text) if isinstance(text, (int, float)) else str(text)
    return el


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].split(":")[-1]


def _child(el, name: str):
    for c in el:
        if _local(c.tag) == name:
            return c
    return None


def _children(el, name: str):
    return [c for c in el if _local(c.tag) == name]


def _descendant(el, name: str):
    for c in el.iter():
        if _local(c.tag) == name:
            return c
    return None


def product_code(settings: Settings, tax_class: Optional[str]) -> str:
    for entry in settings.vertex_tax_class_mapping:
        if entry.get("type") == tax_class:
            return entry.get("code") or DEFAULT_PRODUCT_CODE
    return DEFAULT_PRODUCT_CODE


def build_request(settings: Settings, quote: Quote, items: Sequence[Tuple[int, QuoteItem]],
                  document_date: Optional[date] = None) -> str:
    """SOAP envelope with one LineItem per (quote index, item)."""
    envelope = ET.Element("SOAP-ENV:Envelope", {
        "xmlns:SOAP-ENV": SOAP_ENV_NS,
        "xmlns:ns1": VERTEX_NS,
    })
    body = ET.SubElement(envelope, "SOAP-ENV:Body")
    vertex = _sub(body, "VertexEnvelope")
    login = _sub(vertex, "Login")
    _sub(login, "TrustedId", settings.vertex_trust_id)

    request = _sub(vertex, "QuotationRequest",
                   documentDate=(document_date or date.today()).isoformat(),
                   transactionType="SALE")
    seller = _sub(request, "Seller")
    _sub(seller, "Company", settings.seller_company)
    origin = _sub(seller, "PhysicalOrigin")
    _sub(origin, "StreetAddress1", settings.seller_street)
    _sub(origin, "City", settings.seller_city)
    _sub(origin, "MainDivision", settings.seller_division)
    _sub(origin, "PostalCode", settings.seller_postal_code)
    _sub(origin, "Country", settings.seller_country)

    address = quote.ship_to_address
    customer = _sub(request, "Customer")
    destination = _sub(customer, "Destination")
    _sub(destination, "StreetAddress1", address.street or "")
    _sub(destination, "City", address.city or "")
    _sub(destination, "MainDivision", address.region_code or address.region or "")
    _sub(destination, "PostalCode", address.postcode or "")
    _sub(destination, "Country", address.country or "")

    for index, item in items:
        line = _sub(request, "LineItem", lineItemId=str(index))
        _sub(line, "Product", product_code(settings, item.tax_class))
        _sub(line, "Quantity", item.quantity or 0)
        _sub(line, "UnitPrice", item.unit_price or 0)
        _sub(line, "ExtendedPrice", item.row_total)

    ET.indent(envelope)
    return ET.tostring(envelope, encoding="unicode")


def _float(el, name: str) -> float:
    child = _child(el, name)
    try:
        return float(child.text) if child is not None and child.text else 0.0
    except ValueError:
        return 0.0


def parse_response(xml_text: str) -> List[dict]:
    """One tax op per line item plus its deduplicated jurisdiction breakdown."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        raise ResponseFormatError()
    response = _descendant(root, "QuotationResponse")
    if response is None:
        raise ResponseFormatError()

    ops = []
    for line in _children(response, "LineItem"):
        line_id = line.get("lineItemId")
        unit_price = _float(line, "UnitPrice")
        quantity = _float(line, "Quantity")
        total_tax = _float(line, "TotalTax")
        base = quantity * unit_price
        rate = round(total_tax / base * 100, 2) if base else 0
        ops.append(operation("replace", f"oopQuote/items/{line_id}/tax",
                             {"data": {"rate": rate, "amount": total_tax}}, TAX_INSTANCE))

        seen = set()
        for tax in _children(line, "Taxes"):
            jurisdiction = _child(tax, "Jurisdiction")
            level = jurisdiction.get("jurisdictionLevel") if jurisdiction is not None else None
            jid = jurisdiction.get("jurisdictionId") if jurisdiction is not None else None
            key = f"{level}-{jid}"
            if key in seen:
                continue
            seen.add(key)
            ops.append(operation("add", f"oopQuote/items/{line_id}/tax_breakdown", {"data": {
                "code": level,
                "rate": _float(tax, "EffectiveRate") * 100,
                "amount": _float(tax, "CalculatedTax"),
                "title": key,
                "tax_rate_key": key,
            }}, TAX_BREAKDOWN_INSTANCE))
    return ops


def parse_fault(xml_text: str) -> Optional[str]:
    """rootCause of a Vertex SOAP fault (fixed text for invalid addresses)."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return None
    exception = _descendant(root, "VertexException")
    if exception is None:
        return None
    exception_type = _child(exception, "exceptionType")
    if exception_type is not None and (exception_type.text or "").strip() == "VertexInvalidAddressException":
        return INVALID_ADDRESS_MESSAGE
    root_cause = _child(exception, "rootCause")
    return root_cause.text if root_cause is not None else None


def calculate(session: requests.Session, settings: Settings, quote: Quote,
              items: Sequence[Tuple[int, QuoteItem]]) -> List[dict]:
    payload = build_request(settings, quote, items)
    resp = session.post(settings.vertex_service_url, data=payload.encode("utf-8"), headers={
        "Content-Type": "text/xml",
        "SOAPAction": "CalculateTax90",
    }, timeout=DEFAULT_TIMEOUT)
    if resp.status_code >= 400:
        logger.error("Vertex error response %s: %s", resp.status_code, resp.text[:500])
        if "xml" in resp.headers.get("Content-Type", ""):
            raise VertexFault(parse_fault(resp.text) or f"Response code {resp.status_code}",
                              resp.status_code)
        raise VertexFault(f"Response code {resp.status_code}", resp.status_code)
    return parse_response(resp.text)
