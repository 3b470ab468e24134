"""
Environment configuration for the brand store actions.

Everything is read from the process environment (a local .env file is loaded
first). Secrets never get default values; empty means "not configured".
"""

import json
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .errors import ConfigError


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_list(name: str, default: str = "") -> List[str]:
    """Comma separated list, trimmed, surrounding single quotes dropped."""
    raw = os.getenv(name)
    if raw is None:
        raw = default
    return [v.strip().strip("'") for v in raw.split(",") if v.strip().strip("'")]


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a whole number, got {raw!r}")


def _env_json(name: str, default):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        raise ConfigError(f"{name} is not valid JSON")


class Settings(BaseModel):
    log_level: str = "INFO"
    state_db_path: str = "state.db"
    internal_api_key: str = ""

    # Commerce
    commerce_base_url: str = ""
    commerce_graphql_path: str = "graphql"
    commerce_consumer_key: str = ""
    commerce_consumer_secret: str = ""
    commerce_access_token: str = ""
    commerce_access_token_secret: str = ""
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_scopes: str = "AdobeID,openid,read_organizations,additional_info.projectedProductContext,additional_info.roles,adobeio_api,read_client_secret,manage_client_secrets"
    oauth_org_id: str = ""
    ims_token_url: str = "https://ims-na1.adobelogin.com/ims/token/v3"
    commerce_webhooks_public_key: str = ""

    # ERP export
    erp_endpoint: str = ""
    erp_order_status_endpoint: str = ""
    erp_auth_token: str = ""
    erp_order_status: str = "processing"
    erp_log: bool = False
    order_id_prefix: str = ""
    order_time_zone: str = "America/Los_Angeles"
    page_size: int = 2
    reconcile_interval_minutes: int = 0
    sender_identity: str = ""
    sender_shared_secret: str = ""
    sender_user_agent: str = ""
    deployment_mode: str = "test"
    payment_term: str = "30"
    unit_of_measure: str = "EA"

    # Static line items
    fedex_shipping_product_sku: str = ""
    fedex_shipping_product_id: str = ""
    fedex_shipping_product_name: str = ""
    fedex_shipping_product_price: float = 0.0
    fedex_international_shipping_product_sku: str = ""
    fedex_international_shipping_product_id: str = ""
    fedex_international_shipping_product_name: str = ""
    gw_inline_product_sku: str = ""
    gw_inline_product_id: str = ""
    gw_inline_product_name: str = ""
    gw_inline_product_price: float = 0.0
    gw_inline_bundle_product_sku: str = ""
    gw_inline_bundle_product_id: str = ""
    gw_inline_bundle_product_name: str = ""
    gw_inline_bundle_product_price: float = 0.0
    gw_inline_gift_note_product_sku: str = ""
    gw_inline_gift_note_product_id: str = ""
    gw_inline_gift_note_product_name: str = ""
    gw_inline_gift_note_product_price: float = 0.0
    gift_card_product_sku: str = ""
    gift_card_product_name: str = ""
    promo_code_line_item_sku: str = ""
    promo_code_line_item_name: str = ""

    # Shipping
    fedex_code: str = "FEDEX"
    fedex_methods: Dict[str, List[Dict[str, str]]] = {}
    customer_group_code: str = ""
    po_fedex_customer_group: str = ""
    carrier_code: str = ""
    shipping_method_code: str = ""
    shipping_method_title: str = ""
    warehouse_pickup_carrier_code: str = ""
    warehouse_pickup_method_code: str = ""
    warehouse_pickup_method_title: str = ""

    # UPS
    ups_client_id: str = ""
    ups_client_secret: str = ""
    service_domain: str = ""
    request_option: str = "1"
    ups_rate_endpoint: str = ""
    sp_ups_rate_endpoint: str = ""
    ups_carrier_code: str = "UPS"
    ups_domestic_pay_percentage: float = 1.0
    ups_international_pay_percentage: float = 1.0
    ups_name: str = ""
    sp_ups_name: str = ""
    sp_ups_shipper_number: str = ""
    ups_state_code: str = ""
    ups_postal_code: str = ""
    ups_country_code: str = "US"
    ups_dimensions_unit_of_measurement_code: str = "IN"
    ups_dimensions_unit_of_measurement_description: str = "Inches"
    ups_package_unit_of_measurement: str = "LBS"

    # Tax
    tax_exempt_classes: List[str] = []
    vertex_service_url: str = ""
    vertex_trust_id: str = ""
    vertex_tax_class_mapping: List[Dict[str, str]] = []
    seller_company: str = ""
    seller_street: str = ""
    seller_city: str = ""
    seller_division: str = ""
    seller_postal_code: str = ""
    seller_country: str = "US"
    zonos_api_url: str = ""
    zonos_api_key: str = ""
    zonos_shipping_methods: List[str] = []

    # Checkout rules
    restricted_discount_groups: List[str] = ["CBRE Personnel", "Purchase Order Eligible"]
    payment_filter_group_codes: List[str] = []
    authorizenet_payment_method: str = "authorizenet"
    payment_methods_for_invoice_creation: List[str] = []

    @property
    def uses_oauth1(self) -> bool:
        return bool(self.commerce_consumer_key)

    @property
    def uses_ims(self) -> bool:
        return bool(self.oauth_client_id)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from the environment (after loading .env)."""
        load_dotenv(dotenv_path)
        return cls(
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            state_db_path=_env("STATE_DB_PATH", "state.db"),
            internal_api_key=_env("INTERNAL_API_KEY"),
            commerce_base_url=_env("COMMERCE_BASE_URL"),
            commerce_graphql_path=_env("COMMERCE_GRAPHQL_PATH", "graphql"),
            commerce_consumer_key=_env("COMMERCE_CONSUMER_KEY"),
            commerce_consumer_secret=_env("COMMERCE_CONSUMER_SECRET"),
            commerce_access_token=_env("COMMERCE_ACCESS_TOKEN"),
            commerce_access_token_secret=_env("COMMERCE_ACCESS_TOKEN_SECRET"),
            oauth_client_id=_env("OAUTH_CLIENT_ID"),
            oauth_client_secret=_env("OAUTH_CLIENT_SECRET"),
            oauth_scopes=_env("OAUTH_SCOPES", cls.model_fields["oauth_scopes"].default),
            oauth_org_id=_env("OAUTH_ORG_ID"),
            ims_token_url=_env("IMS_TOKEN_URL", "https://ims-na1.adobelogin.com/ims/token/v3"),
            commerce_webhooks_public_key=_env("COMMERCE_WEBHOOKS_PUBLIC_KEY").replace("\\n", "\n"),
            erp_endpoint=_env("ERP_ENDPOINT"),
            erp_order_status_endpoint=_env("ERP_ORDER_STATUS_ENDPOINT"),
            erp_auth_token=_env("ERP_AUTH_TOKEN"),
            erp_order_status=_env("ERP_ORDER_STATUS", "processing"),
            erp_log=_env("ERP_LOG").lower() in ("1", "true", "yes"),
            order_id_prefix=_env("ORDER_ID_PREFIX"),
            order_time_zone=_env("ORDER_TIME_ZONE", "America/Los_Angeles"),
            page_size=_env_int("PAGE_SIZE", 2),
            reconcile_interval_minutes=_env_int("RECONCILE_INTERVAL_MINUTES", 0),
            sender_identity=_env("SENDER_IDENTITY"),
            sender_shared_secret=_env("SENDER_SHARED_SECRET"),
            sender_user_agent=_env("SENDER_USER_AGENT"),
            deployment_mode=_env("DEPLOYMENT_MODE", "test"),
            payment_term=_env("PAYMENT_TERM", "30"),
            unit_of_measure=_env("UNIT_OF_MEASURE", "EA"),
            fedex_shipping_product_sku=_env("FEDEX_SHIPPING_PRODUCT_SKU"),
            fedex_shipping_product_id=_env("FEDEX_SHIPPING_PRODUCT_ID"),
            fedex_shipping_product_name=_env("FEDEX_SHIPPING_PRODUCT_NAME"),
            fedex_shipping_product_price=_env_float("FEDEX_SHIPPING_PRODUCT_PRICE", 0.0),
            fedex_international_shipping_product_sku=_env("FEDEX_INTERNATIONAL_SHIPPING_PRODUCT_SKU"),
            fedex_international_shipping_product_id=_env("FEDEX_INTERNATIONAL_SHIPPING_PRODUCT_ID"),
            fedex_international_shipping_product_name=_env("FEDEX_INTERNATIONAL_SHIPPING_PRODUCT_NAME"),
            gw_inline_product_sku=_env("GW_INLINE_PRODUCT_SKU"),
            gw_inline_product_id=_env("GW_INLINE_PRODUCT_ID"),
            gw_inline_product_name=_env("GW_INLINE_PRODUCT_NAME"),
            gw_inline_product_price=_env_float("GW_INLINE_PRODUCT_PRICE", 0.0),
            gw_inline_bundle_product_sku=_env("GW_INLINE_BUNDLE_PRODUCT_SKU"),
            gw_inline_bundle_product_id=_env("GW_INLINE_BUNDLE_PRODUCT_ID"),
            gw_inline_bundle_product_name=_env("GW_INLINE_BUNDLE_PRODUCT_NAME"),
            gw_inline_bundle_product_price=_env_float("GW_INLINE_BUNDLE_PRODUCT_PRICE", 0.0),
            gw_inline_gift_note_product_sku=_env("GW_INLINE_GIFT_NOTE_PRODUCT_SKU"),
            gw_inline_gift_note_product_id=_env("GW_INLINE_GIFT_NOTE_PRODUCT_ID"),
            gw_inline_gift_note_product_name=_env("GW_INLINE_GIFT_NOTE_PRODUCT_NAME"),
            gw_inline_gift_note_product_price=_env_float("GW_INLINE_GIFT_NOTE_PRODUCT_PRICE", 0.0),
            gift_card_product_sku=_env("GIFT_CARD_PRODUCT_SKU"),
            gift_card_product_name=_env("GIFT_CARD_PRODUCT_NAME"),
            promo_code_line_item_sku=_env("PROMO_CODE_LINE_ITEM_SKU"),
            promo_code_line_item_name=_env("PROMO_CODE_LINE_ITEM_NAME"),
            fedex_code=_env("FEDEX_CODE", "FEDEX"),
            fedex_methods=_env_json("FEDEX_METHODS", {}),
            customer_group_code=_env("CUSTOMER_GROUP_CODE"),
            po_fedex_customer_group=_env("PO_FEDEX_CUSTOMER_GROUP"),
            carrier_code=_env("CARRIER_CODE"),
            shipping_method_code=_env("SHIPPING_METHOD_CODE"),
            shipping_method_title=_env("SHIPPING_METHOD_TITLE"),
            warehouse_pickup_carrier_code=_env("WAREHOUSE_PICKUP_CARRIER_CODE"),
            warehouse_pickup_method_code=_env("WAREHOUSE_PICKUP_METHOD_CODE"),
            warehouse_pickup_method_title=_env("WAREHOUSE_PICKUP_METHOD_TITLE"),
            ups_client_id=_env("UPS_CLIENT_ID"),
            ups_client_secret=_env("UPS_CLIENT_SECRET"),
            service_domain=_env("SERVICE_DOMAIN"),
            request_option=_env("REQUEST_OPTION", "1"),
            ups_rate_endpoint=_env("UPS_RATE_ENDPOINT"),
            sp_ups_rate_endpoint=_env("SP_UPS_RATE_ENDPOINT"),
            ups_carrier_code=_env("UPS_CARRIER_CODE", "UPS"),
            ups_domestic_pay_percentage=_env_float("UPS_DOMESTIC_PAY_PERCENTAGE", 1.0),
            ups_international_pay_percentage=_env_float("UPS_INTERNATIONAL_PAY_PERCENTAGE", 1.0),
            ups_name=_env("UPS_NAME"),
            sp_ups_name=_env("SP_UPS_NAME"),
            sp_ups_shipper_number=_env("SP_UPS_SHIPPER_NUMBER"),
            ups_state_code=_env("UPS_STATE_CODE"),
            ups_postal_code=_env("UPS_POSTAL_CODE"),
            ups_country_code=_env("UPS_COUNTRY_CODE", "US"),
            ups_dimensions_unit_of_measurement_code=_env("UPS_DIMENSIONS_UNIT_OF_MEASUREMENT_CODE", "IN"),
            ups_dimensions_unit_of_measurement_description=_env(
                "UPS_DIMENSIONS_UNIT_OF_MEASUREMENT_DESCRIPTION", "Inches"),
            ups_package_unit_of_measurement=_env("UPS_PACKAGE_UNIT_OF_MEASUREMENT", "LBS"),
            tax_exempt_classes=_env_list("TAX_EXEMPT_CLASSES"),
            vertex_service_url=_env("VERTEX_SERVICE_URL"),
            vertex_trust_id=_env("VERTEX_TRUST_ID"),
            vertex_tax_class_mapping=_env_json("VERTEX_TAX_CLASS_MAPPING", []),
            seller_company=_env("SELLER_COMPANY"),
            seller_street=_env("SELLER_STREET"),
            seller_city=_env("SELLER_CITY"),
            seller_division=_env("SELLER_DIVISION"),
            seller_postal_code=_env("SELLER_POSTAL_CODE"),
            seller_country=_env("SELLER_COUNTRY", "US"),
            zonos_api_url=_env("ZONOS_API_URL"),
            zonos_api_key=_env("ZONOS_API_KEY"),
            zonos_shipping_methods=_env_list("ZONOS_SHIPPING_METHODS"),
            restricted_discount_groups=_env_list(
                "RESTRICTED_DISCOUNT_GROUPS", "CBRE Personnel,Purchase Order Eligible"),
            payment_filter_group_codes=_env_list("PAYMENT_FILTER_GROUP_CODES"),
            authorizenet_payment_method=_env("AUTHORIZENET_PAYMENT_METHOD", "authorizenet"),
            payment_methods_for_invoice_creation=_env_list("PAYMENT_METHODS_FOR_INVOICE_CREATION"),
        )
