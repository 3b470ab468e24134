"""
Typed projections of the payloads the commerce platform sends us.

Unknown fields are ignored; everything is optional except what the
pipelines need to identify an order.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import InputError

Number = Union[int, float]


def number_text(value) -> str:
    """Render a number the way the commerce platform prints it (10, 10.5, not 10.0)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class Record(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)


# ----- orders -----

def event_order(payload: dict) -> dict:
    """Unwrap {data: {value: {order}}} or {order} to the bare order dict."""
    raw = payload or {}
    if isinstance(raw.get("data"), dict):
        raw = raw["data"].get("value") or {}
    if isinstance(raw.get("order"), dict):
        raw = raw["order"]
    return raw


class OrderAddress(Record):
    address_type: Optional[str] = None
    firstname: Optional[str] = ""
    lastname: Optional[str] = ""
    street: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postcode: Optional[str] = None
    country_id: Optional[str] = ""
    email: Optional[str] = ""
    telephone: Optional[str] = None

    @field_validator("street", mode="before")
    @classmethod
    def _join_street(cls, v):
        if isinstance(v, list):
            return "\n".join(str(s) for s in v)
        return v


class OrderItem(Record):
    item_id: Optional[str] = None
    parent_item_id: Optional[str] = None
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    sku: str = ""
    name: Optional[str] = ""
    description: Optional[str] = None
    product_type: str = "simple"
    qty_ordered: Number = 0
    price: Number = 0
    base_price: Number = 0


class Payment(Record):
    method: str = ""
    additional_information: Dict[str, Any] = {}

    @field_validator("additional_information", mode="before")
    @classmethod
    def _dict_only(cls, v):
        return v if isinstance(v, dict) else {}


class Order(Record):
    """A saved sales order as delivered by the order-save event."""

    entity_id: str
    increment_id: str
    created_at: str = ""
    status: Optional[str] = ""
    state: Optional[str] = ""
    store_currency_code: str = "USD"
    base_grand_total: Optional[Number] = None
    shipping_description: Optional[str] = ""
    shipping_method: Optional[str] = None
    shipping_amount: Optional[Number] = None
    discount_amount: Optional[Number] = 0
    discount_description: Optional[str] = None
    coupon_code: Optional[str] = None
    gw_id: Optional[Number] = None
    gw_price_incl_tax: Optional[Number] = None
    gift_message_id: Optional[Number] = None
    customer_group_id: Optional[str] = None
    billing_address_id: Optional[str] = None
    shipping_address_id: Optional[str] = None
    gift_cards: Optional[str] = None
    items: List[OrderItem] = []
    addresses: List[OrderAddress] = []
    payment: Payment = Payment()

    @field_validator("gift_cards", mode="before")
    @classmethod
    def _gift_cards_text(cls, v):
        if isinstance(v, (list, dict)):
            return json.dumps(v)
        return v

    @classmethod
    def from_event(cls, payload: dict) -> "Order":
        """
        Accepts {data: {value: {order: ...}}}, {order: ...} or a bare order.
        Missing identifiers or an item without SKU raise InputError.
        """
        raw = event_order(payload)
        for field in ("increment_id", "entity_id"):
            if raw.get(field) in (None, ""):
                raise InputError(f"Order {field} is missing")
        try:
            order = cls.model_validate(raw)
        except ValidationError as e:
            raise InputError(f"Invalid order payload: {e.error_count()} error(s)")
        for item in order.items:
            if not item.sku:
                raise InputError(f"Order {order.increment_id} has an item without SKU")
        return order


# ----- shipping rate requests -----

class Customer(Record):
    group_id: Optional[str] = None


class RateItem(Record):
    product_type: Optional[str] = None
    product: Optional[Dict[str, Any]] = None


class RateRequest(Record):
    dest_country_id: Optional[str] = None
    dest_postcode: Optional[str] = None
    dest_region_id: Optional[Union[int, str]] = None
    dest_region_code: Optional[str] = None
    dest_city: Optional[str] = None
    package_weight: Optional[Union[int, float, str]] = None
    all_items: List[RateItem] = []
    customer: Optional[Customer] = None

    model_config = ConfigDict(coerce_numbers_to_str=False)


# ----- tax quotes -----

class QuoteAddress(Record):
    street: Optional[str] = ""
    city: Optional[str] = ""
    region: Optional[str] = ""
    region_code: Optional[str] = None
    postcode: Optional[str] = ""
    country: Optional[str] = None

    @field_validator("street", mode="before")
    @classmethod
    def _join_street(cls, v):
        if isinstance(v, list):
            return " ".join(str(s) for s in v)
        return v


class QuoteItem(Record):
    code: Optional[str] = None
    sku: Optional[str] = ""
    type: Optional[str] = "product"
    tax_class: Optional[str] = None
    unit_price: Optional[float] = 0.0
    quantity: Optional[float] = 0.0
    discount_amount: Optional[float] = 0.0

    @property
    def row_total(self) -> float:
        return (self.unit_price or 0.0) * (self.quantity or 0.0)


class QuoteShipping(Record):
    shipping_method: Optional[str] = None


class Quote(Record):
    items: List[QuoteItem] = []
    ship_to_address: Optional[QuoteAddress] = None
    shipping: Optional[QuoteShipping] = None
    customer_tax_class: Optional[str] = None

