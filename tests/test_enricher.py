import json

import pytest

from brandstore.commerce import ApiResult
from brandstore.erp.enricher import (NON_LOGGED_USER, bundle_totals, enrich, export_addresses, gift_card_sku,
                                     project)
from brandstore.errors import InputError
from brandstore.models import Order

BILLING = {
    "address_type": "billing", "firstname": "Ada", "lastname": "Lovelace", "street": ["10 Analytical Way"],
    "city": "San Jose", "region": "California", "postcode": "95110", "country_id": "US",
    "email": "ada@example.com", "telephone": "4085550100",
}
SHIPPING = dict(BILLING, address_type="shipping", street=["1 Engine Rd", "Suite 2"], city="Palo Alto")


def make_order(items=None, addresses=None, **extra):
    data = {
        "entity_id": 501,
        "increment_id": "100000501",
        "created_at": "2026-10-18 10:00:00",
        "shipping_method": "UPS_ups_ground",
        "shipping_amount": 12,
        "base_grand_total": 112,
        "items": items if items is not None else [
            {"item_id": 1, "sku": "TEE-1", "name": "Tee", "product_id": 11, "product_type": "simple",
             "qty_ordered": 2, "price": 50, "base_price": 50},
        ],
        "addresses": addresses if addresses is not None else [BILLING, SHIPPING],
        "payment": {"method": "purchaseorder", "additional_information": {}},
    }
    data.update(extra)
    return Order.from_event({"data": {"value": {"order": data}}})


BUNDLE_ITEMS = [
    {"item_id": 10, "sku": "TEE-BUNDLE", "name": "Tee bundle", "product_type": "bundle",
     "qty_ordered": 1, "price": 90, "base_price": 90},
    {"item_id": 11, "parent_item_id": 10, "sku": "TEE-RED", "product_type": "simple", "qty_ordered": 2},
    {"item_id": 12, "parent_item_id": 10, "sku": "TEE-BLUE", "product_type": "simple", "qty_ordered": 2},
    {"item_id": 13, "parent_item_id": 10, "sku": "TEE-GREEN", "product_type": "simple", "qty_ordered": 2},
]


def test_bundle_children_collapse_into_the_bundle(settings):
    order = make_order(items=BUNDLE_ITEMS, gw_id=1)
    export = project(settings, order, "General")

    assert export.total_bundle_qty == 6
    assert [line.sku for line in export.lines] == ["TEE-BUNDLE", "ADOB-GW", "ADOB-GWB"]
    assert export.lines[0].quantity == "1"
    assert export.lines[2].quantity == "6"


def test_bundle_totals():
    order = make_order(items=BUNDLE_ITEMS)
    assert bundle_totals(order.items) == {"10": 6.0}


def test_gift_cards_of_one_value_share_a_line(settings):
    order = make_order(items=[
        {"item_id": 1, "sku": "gift-card", "product_type": "giftcard", "qty_ordered": 1, "price": 25, "base_price": 25},
        {"item_id": 2, "sku": "gift-card", "product_type": "giftcard", "qty_ordered": 2, "price": 25, "base_price": 25},
        {"item_id": 3, "sku": "gift-card", "product_type": "giftcard", "qty_ordered": 1, "price": 50, "base_price": 50},
    ])
    lines = project(settings, order, "General").lines
    assert [(line.sku, line.quantity) for line in lines] == [("ADOBGC25-PURCH", "3"), ("ADOBGC50-PURCH", "1")]


def test_gift_card_sku_drops_trailing_zero():
    assert gift_card_sku(25.0) == "ADOBGC25-PURCH"
    assert gift_card_sku(12.5) == "ADOBGC12.5-PURCH"


def test_repeated_sku_keeps_first_line(settings):
    order = make_order(items=[
        {"item_id": 1, "sku": "MUG-1", "qty_ordered": 1, "base_price": 10},
        {"item_id": 2, "sku": "MUG-1", "qty_ordered": 4, "base_price": 10},
    ])
    lines = project(settings, order, "General").lines
    assert [(line.sku, line.quantity) for line in lines] == [("MUG-1", "1")]


def test_shipping_address_is_cloned_from_billing(settings):
    order = make_order(addresses=[BILLING])
    export = project(settings, order, "General")
    assert export.ship_to.address_type == "shipping"
    assert export.ship_to.street == export.bill_to.street == "10 Analytical Way"
    assert len(order.addresses) == 1


def test_pickup_replaces_shipping_address_without_touching_order():
    order = make_order()
    ship_to, bill_to = export_addresses(order, "WAREHOUSE_PICKUP_warehouse-pickup")
    assert (ship_to.street, ship_to.postcode, ship_to.firstname) == ("1943 Lundy Ave", "95131", "Ada")
    assert bill_to.city == "San Jose"
    assert order.addresses[1].street == "1 Engine Rd\nSuite 2"


def test_missing_billing_address_is_rejected(settings):
    with pytest.raises(InputError):
        project(settings, make_order(addresses=[SHIPPING]), "General")


def test_guest_group_and_default_shipping_method(settings):
    export = project(settings, make_order(shipping_method=None), "NOT LOGGED IN")
    assert export.customer_group == NON_LOGGED_USER
    assert export.shipping_method == "E-M"


def test_static_lines(settings):
    order = make_order(
        shipping_method="FEDEX_fedex_ground",
        gift_cards=json.dumps([{"i": 1, "c": "GC-AAA", "a": 10, "ba": 10}]),
        coupon_code="SAVE10",
        discount_amount=-10,
        discount_description="Save 10",
    )
    lines = project(settings, order, "General", {"message": "Enjoy", "from": "Ada", "to": "Bob"}).lines
    by_sku = {line.sku: line for line in lines}

    assert [line.sku for line in lines] == ["TEE-1", "ADOB-BSHIPPING", "ADOB-NOTE", "ADOB-GCREDEEM", "ADOB-PROMO"]
    assert by_sku["ADOB-BSHIPPING"].price == "2.95"
    assert (by_sku["ADOB-GCREDEEM"].description, by_sku["ADOB-GCREDEEM"].price) == ("GC-AAA", "-10")
    assert (by_sku["ADOB-PROMO"].description, by_sku["ADOB-PROMO"].price) == ("Save 10", "-10")


def test_international_shipping_line(settings):
    intl = dict(SHIPPING, country_id="DE", region="Berlin")
    lines = project(settings, make_order(addresses=[BILLING, intl]), "General").lines
    assert lines[-1].sku == "ADOB-INTLSHIP"
    assert lines[-1].price == "12"


def test_enrich_resolves_group_and_gift_message(svc, commerce):
    commerce.get_orders_by_increment_id.return_value = ApiResult(True, {"items": [{
        "increment_id": "100000501",
        "extension_attributes": {"gift_message": {"sender": "Ada", "recipient": "Bob", "message": "Enjoy"}},
    }]}, 200)
    export = enrich(svc, make_order(customer_group_id=4, gift_message_id=7))

    assert export.customer_group == "Adobe Employee"
    assert export.gift_message == {"message": "Enjoy", "from": "Ada", "to": "Bob"}
    assert svc.store.get_json("gift_message_100000501") == export.gift_message
