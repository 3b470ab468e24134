import base64
import json
import os
import tempfile
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

# app.py builds a module-level app on import; keep its state file out of the repo.
os.environ.setdefault("STATE_DB_PATH", os.path.join(tempfile.mkdtemp(), "state.db"))

from brandstore.commerce import ApiResult  # noqa: E402
from brandstore.config import Settings  # noqa: E402
from brandstore.services import Services  # noqa: E402
from brandstore.state import KVStore  # noqa: E402
from brandstore.webhook import SIGNATURE_HEADER  # noqa: E402

CUSTOMER_GROUPS = [
    {"id": 0, "code": "NOT LOGGED IN"},
    {"id": 1, "code": "General"},
    {"id": 2, "code": "Purchase Order Eligible"},
    {"id": 3, "code": "CBRE Personnel"},
    {"id": 4, "code": "Adobe Employee"},
]
INTERNAL_KEY = "internal-test-key"


@pytest.fixture(scope="session")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_pem(private_key):
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


@pytest.fixture
def signed_body(private_key):
    """body dict -> (raw base64 body, headers with a valid signature)."""
    def _sign(body):
        raw = base64.b64encode(json.dumps(body).encode("utf-8"))
        signature = base64.b64encode(private_key.sign(raw, padding.PKCS1v15(), hashes.SHA256()))
        return raw, {SIGNATURE_HEADER: signature.decode("ascii")}
    return _sign


@pytest.fixture
def store(tmp_path):
    return KVStore(str(tmp_path / "state.db"))


@pytest.fixture
def settings(tmp_path, public_pem):
    return Settings(
        state_db_path=str(tmp_path / "state.db"),
        internal_api_key=INTERNAL_KEY,
        commerce_base_url="https://shop.example.com/rest/all/",
        commerce_consumer_key="ck",
        commerce_consumer_secret="cs",
        commerce_access_token="at",
        commerce_access_token_secret="ats",
        commerce_webhooks_public_key=public_pem,
        erp_endpoint="https://erp.example.com/orders",
        erp_order_status_endpoint="https://erp.example.com/",
        erp_auth_token="erp-token",
        order_id_prefix="ABS",
        sender_identity="brandstore",
        sender_shared_secret="shh",
        sender_user_agent="BrandStore",
        fedex_shipping_product_sku="ADOB-BSHIPPING",
        fedex_shipping_product_id="fedex-handling",
        fedex_shipping_product_name="Business order handling",
        fedex_shipping_product_price=2.95,
        fedex_international_shipping_product_sku="ADOB-INTLSHIP",
        fedex_international_shipping_product_id="intl-shipping",
        fedex_international_shipping_product_name="International shipping",
        gw_inline_product_sku="ADOB-GW",
        gw_inline_product_id="gw",
        gw_inline_product_name="Gift wrap",
        gw_inline_product_price=5,
        gw_inline_bundle_product_sku="ADOB-GWB",
        gw_inline_bundle_product_id="gw-bundle",
        gw_inline_bundle_product_name="Gift wrap bundle",
        gw_inline_bundle_product_price=1.5,
        gw_inline_gift_note_product_sku="ADOB-NOTE",
        gw_inline_gift_note_product_id="gift-note",
        gw_inline_gift_note_product_name="Gift note",
        gift_card_product_sku="ADOB-GCREDEEM",
        gift_card_product_name="Gift card redemption",
        promo_code_line_item_sku="ADOB-PROMO",
        promo_code_line_item_name="Promo code",
        fedex_methods={
            "FEDEX": [{"method_code": "fedex_ground", "method_title": "FedEx Ground"}],
            "FEDEX_INTL": [{"method_code": "fedex_international_priority",
                            "method_title": "FedEx International Priority"}],
        },
        customer_group_code="Adobe Employee",
        po_fedex_customer_group="Purchase Order Eligible",
        carrier_code="COURIER",
        shipping_method_code="courier_shipping",
        shipping_method_title="Weekly Courier",
        warehouse_pickup_carrier_code="WAREHOUSE_PICKUP",
        warehouse_pickup_method_code="warehouse-pickup",
        warehouse_pickup_method_title="Warehouse Pickup",
        ups_client_id="ups-id",
        ups_client_secret="ups-secret",
        service_domain="https://ups.example.com/",
        ups_rate_endpoint="https://ups.example.com/api/rating/v2403/Shop",
        sp_ups_rate_endpoint="https://ups.example.com/api/rating/v2403/Rate",
        ups_state_code="CA",
        ups_postal_code="95131",
        tax_exempt_classes=["Exempt Org"],
        vertex_service_url="https://vertex.example.com/vertex-ws/services/CalculateTax90",
        vertex_trust_id="trust",
        vertex_tax_class_mapping=[{"type": "Taxable Goods", "code": "PC040100"}],
        zonos_api_url="https://api.zonos.example.com/v1/landed_cost",
        zonos_api_key="zonos-key",
        zonos_shipping_methods=["UPS", "FEDEX"],
        payment_methods_for_invoice_creation=["purchaseorder"],
    )


@pytest.fixture
def commerce():
    """Commerce client double; every operation succeeds unless a test says otherwise."""
    client = MagicMock()
    ok = ApiResult(True, {}, 200)
    for name in ("order_status_update", "order_comment_update", "invoice_order", "shipment_order",
                 "update_inventory_source_items", "update_customer"):
        getattr(client, name).return_value = ok
    client.get_customer_group_list.return_value = ApiResult(True, {"items": CUSTOMER_GROUPS}, 200)
    client.get_customer_group_id_by_code.return_value = ApiResult(True, {"items": [{"id": 4}]}, 200)
    client.get_products_by_sku.return_value = ApiResult(True, {"items": []}, 200)
    client.get_orders_by_increment_id.return_value = ApiResult(True, {"items": []}, 200)
    client.get_orders.return_value = ApiResult(True, {"items": []}, 200)
    return client


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def svc(settings, store, commerce, session):
    return Services(settings, store, commerce=commerce, session=session)


@pytest.fixture
def make_response():
    """Stand-in for requests.Response."""
    def _make(status_code=200, json_body=None, text=None, headers=None):
        resp = MagicMock()
        resp.status_code = status_code
        resp.headers = headers or {}
        if json_body is not None:
            resp.json.return_value = json_body
            resp.text = text if text is not None else json.dumps(json_body)
        else:
            resp.json.side_effect = ValueError("no json")
            resp.text = text or ""
        return resp
    return _make
