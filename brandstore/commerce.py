"""
Authenticated client for the commerce REST API.

Two auth modes, exactly one of which must be configured:
- OAuth 1.0a with HMAC-SHA256 (integration consumer key/secret + access token/secret)
- IMS bearer token (client credentials), cached in the KV store under `ims_token`

Every operation returns an ApiResult and never raises on HTTP failures:
- transport errors -> success=False, status_code=500, "Unexpected error, ..."
- HTTP errors      -> success=False, status_code=<upstream status>
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

import requests

from .config import Settings
from .errors import ConfigError, StateError
from .http import DEFAULT_TIMEOUT, HTTP_INTERNAL_ERROR, build_session
from .state import KVStore

logger = logging.getLogger(__name__)

FILTERED_ORDER_STATUSES = ["complete", "canceled", "closed"]
IMS_TOKEN_KEY = "ims_token"
TOKEN_EXPIRY_BUFFER = 300


@dataclass
class ApiResult:
    success: bool
    message: Any = None
    status_code: Optional[int] = None
    body: Any = None


def _pct(value) -> str:
    return quote(str(value), safe="~")


def oauth1_header(method: str, url: str, consumer_key: str, consumer_secret: str,
                  token: str, token_secret: str,
                  nonce: Optional[str] = None, timestamp: Optional[int] = None) -> str:
    """
    Build the OAuth 1.0a Authorization header (HMAC-SHA256).
    Query parameters of `url` are part of the signature base string.
    """
    parts = urlsplit(url)
    base_url = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA256",
        "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
        "oauth_token": token,
        "oauth_version": "1.0",
    }
    all_params = parse_qsl(parts.query, keep_blank_values=True) + list(oauth_params.items())
    normalized = "&".join(f"{k}={v}" for k, v in sorted((_pct(k), _pct(v)) for k, v in all_params))
    base_string = "&".join([method.upper(), _pct(base_url), _pct(normalized)])
    key = f"{_pct(consumer_secret)}&{_pct(token_secret)}"
    signature = base64.b64encode(
        hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256).digest()
    ).decode()
    oauth_params["oauth_signature"] = signature
    return "OAuth " + ", ".join(f'{_pct(k)}="{_pct(v)}"' for k, v in sorted(oauth_params.items()))


def _search(field: str, value, condition: str, group: int = 0,
            key: str = "filterGroups", cond_key: str = "conditionType") -> List[Tuple[str, str]]:
    prefix = f"searchCriteria[{key}][{group}][filters][0]"
    return [
        (f"{prefix}[field]", field),
        (f"{prefix}[value]", str(value)),
        (f"{prefix}[{cond_key}]", condition),
    ]


class CommerceClient:
    def __init__(self, settings: Settings, store: KVStore,
                 session: Optional[requests.Session] = None):
        if not settings.commerce_base_url:
            raise ConfigError("Commerce URL must be provided")
        if settings.uses_oauth1 == settings.uses_ims:
            raise ConfigError("Either IMS options or integration options must be provided")
        self.settings = settings
        self.store = store
        self.session = session or build_session()
        self.base_url = settings.commerce_base_url.rstrip("/") + "/"

    # ----- auth -----

    def _ims_token(self) -> str:
        cached = self.store.get_json(IMS_TOKEN_KEY)
        if cached and cached.get("access_token"):
            return cached["access_token"]
        s = self.settings
        resp = self.session.post(s.ims_token_url, data={
            "grant_type": "client_credentials",
            "client_id": s.oauth_client_id,
            "client_secret": s.oauth_client_secret,
            "scope": s.oauth_scopes,
        }, timeout=DEFAULT_TIMEOUT)
        if resp.status_code != 200:
            raise ConfigError(f"IMS token request failed {resp.status_code}")
        j = resp.json()
        token = j.get("access_token")
        if not token:
            raise ConfigError("IMS token response missing access_token")
        expires_in = int(j.get("expires_in", 86400))
        ttl = expires_in - TOKEN_EXPIRY_BUFFER
        if ttl > 0:
            try:
                self.store.put_json(IMS_TOKEN_KEY, {"access_token": token, "expires_in": expires_in}, ttl)
            except StateError as e:
                logger.warning("could not cache IMS token: %s", e)
        return token

    def _auth_headers(self, method: str, url: str) -> Dict[str, str]:
        s = self.settings
        if s.uses_oauth1:
            return {"Authorization": oauth1_header(
                method, url, s.commerce_consumer_key, s.commerce_consumer_secret,
                s.commerce_access_token, s.commerce_access_token_secret)}
        return {
            "x-ims-org-id": s.oauth_org_id,
            "x-api-key": s.oauth_client_id,
            "Authorization": f"Bearer {self._ims_token()}",
        }

    # ----- transport -----

    def _url(self, path: str, query: Sequence[Tuple[str, str]] = ()) -> str:
        url = self.base_url + path.lstrip("/")
        if query:
            url = f"{url}?{urlencode(list(query), quote_via=quote)}"
        return url

    def _call(self, method: str, path: str, query: Sequence[Tuple[str, str]] = (),
              json_body=None) -> ApiResult:
        url = self._url(path, query)
        try:
            headers = {"Content-Type": "application/json"}
            headers.update(self._auth_headers(method, url))
            logger.debug("Request [%s] %s", method, url)
            resp = self.session.request(
                method, url, headers=headers,
                data=json.dumps(json_body) if json_body is not None else None,
                timeout=DEFAULT_TIMEOUT,
            )
        except (requests.RequestException, ConfigError) as e:
            logger.error("Error while calling Commerce API [%s] %s: %s", method, path, e)
            return ApiResult(False, f'Unexpected error, check logs. Original error "{e}"',
                             HTTP_INTERNAL_ERROR)

        logger.debug("Response [%s] %s - %s %s", method, url, resp.status_code, resp.reason)
        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = resp.text
        if resp.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) and body.get("message") else \
                f"Response code {resp.status_code} ({resp.reason})"
            return ApiResult(False, message, resp.status_code, body)
        return ApiResult(True, body, resp.status_code)

    # ----- operations -----

    def get_customer(self, email: str) -> ApiResult:
        return self._call("GET", "V1/customers/search", _search("email", email, "eq"))

    def update_customer(self, customer_id, body: dict) -> ApiResult:
        return self._call("PUT", f"V1/customers/{customer_id}", json_body=body)

    def get_customer_group(self, uid) -> ApiResult:
        return self._call("GET", f"V1/customerGroups/{_pct(uid)}")

    def get_customer_group_id_by_code(self, code: str) -> ApiResult:
        return self._call("GET", "V1/customerGroups/search",
                          _search("code", code, "in", key="filter_groups", cond_key="condition_type"))

    def get_customer_group_list(self) -> ApiResult:
        return self._call("GET", "V1/customerGroups/search", [
            ("searchCriteria[sortOrders][0][field]", "code"),
            ("searchCriteria[sortOrders][0][direction]", "ASC"),
        ])

    def get_products_by_sku(self, skus) -> ApiResult:
        if not isinstance(skus, str):
            skus = ",".join(skus)
        return self._call("GET", "V1/products", _search("sku", skus, "in"))

    def get_attribute_by_code(self, code: str) -> ApiResult:
        return self._call("GET", f"V1/products/attributes/{_pct(code)}")

    def get_orders(self, page_size: int) -> ApiResult:
        """Open orders (status and state outside complete/canceled/closed), oldest entity first."""
        excluded = ",".join(FILTERED_ORDER_STATUSES)
        query = (
            _search("status", excluded, "nin", group=0, key="filter_groups", cond_key="condition_type")
            + _search("state", excluded, "nin", group=1, key="filter_groups", cond_key="condition_type")
            + [
                ("searchCriteria[pageSize]", str(page_size)),
                ("searchCriteria[sortOrders][0][field]", "entity_id"),
                ("searchCriteria[sortOrders][0][direction]", "asc"),
            ]
        )
        return self._call("GET", "V1/orders", query)

    def get_orders_by_increment_id(self, increment_id) -> ApiResult:
        query = _search("increment_id", increment_id, "eq", key="filter_groups", cond_key="condition_type")
        query.append(("fields", "items[increment_id,extension_attributes[gift_message"
                                "[gift_message_id,sender,recipient,message]]]"))
        return self._call("GET", "V1/orders", query)

    def order_status_update(self, body: dict) -> ApiResult:
        return self._call("POST", "V1/orders", json_body=body)

    def order_comment_update(self, order_id, body: dict) -> ApiResult:
        return self._call("POST", f"V1/orders/{order_id}/comments", json_body=body)

    def invoice_order(self, order_id) -> ApiResult:
        return self._call("POST", f"V1/order/{order_id}/invoice", json_body={"capture": True})

    def shipment_order(self, order_id, body: dict) -> ApiResult:
        return self._call("POST", f"V1/order/{order_id}/ship", json_body=body)

    def get_product_salable_quantity(self, sku: str) -> ApiResult:
        return self._call("GET", f"V1/inventory/get-product-salable-quantity/{_pct(sku)}/1")

    def get_bundle_child_product_salable_quantity(self, child_sku: str) -> ApiResult:
        return self._call("GET", "V1/inventory/source-items",
                          _search("sku", child_sku, "in", cond_key="condition_type"))

    def update_inventory_source_items(self, body: dict) -> ApiResult:
        return self._call("POST", "V1/inventory/source-items", json_body=body)

    def get_cart(self, cart_id) -> ApiResult:
        return self._call("GET", f"V1/carts/{_pct(cart_id)}",
                          [("fields", "id,customer[group_id],customer_is_guest")])

    def graphql(self, query: str) -> ApiResult:
        """Anonymous storefront GraphQL query (directory data)."""
        url = self.base_url + self.settings.commerce_graphql_path.lstrip("/")
        try:
            resp = self.session.post(url, json={"query": query}, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as e:
            logger.error("GraphQL request failed: %s", e)
            return ApiResult(False, f'Unexpected error, check logs. Original error "{e}"',
                             HTTP_INTERNAL_ERROR)
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400 or not isinstance(body, dict):
            return ApiResult(False, f"GraphQL error {resp.status_code}", resp.status_code, body)
        return ApiResult(True, body, resp.status_code)
