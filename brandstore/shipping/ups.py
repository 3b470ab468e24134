"""
UPS rating (with the SurePost ground-saver rate) and address validation.

Token lifecycle:
    NO_TOKEN --oauth ok--> TOKEN_HELD --401 or TTL--> TOKEN_EXPIRED --refresh ok--> TOKEN_HELD
Rate lookups only run while a token is held. The token is shared through the
KV store under `ups_token` with TTL = expires_in - 300.
"""

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .. import lookups
from ..errors import InputError, StateError, UpstreamError
from ..http import DEFAULT_TIMEOUT, HTTP_BAD_REQUEST, HTTP_INTERNAL_ERROR, HTTP_UNAUTHORIZED
from ..models import RateRequest, number_text
from ..services import Services
from .methods import shipping_operation

logger = logging.getLogger(__name__)

TOKEN_KEY = "ups_token"
TOKEN_EXPIRY_BUFFER = 300
RATE_CACHE_TTL = 300
RATE_CACHE_SALT = "333"

UPS_SHIPPING_METHODS = {
    "01": ("ups_next_day_air", "UPS Next Day Air"),
    "02": ("ups_2nd_day_air", "UPS Second Day Air"),
    "03": ("ups_ground", "UPS Ground"),
    "07": ("ups_express", "UPS Worldwide Express"),
    "08": ("ups_expedited", "UPS Worldwide Expedited"),
    "12": ("ups_3_day_select", "UPS Three-Day Select"),
    "65": ("ups_express_saver", "UPS Worldwide Saver"),
}
SUREPOST_METHOD = ("ups_ground_saver", "UPS Ground Saver")
SUREPOST_SERVICE_CODE = "92"
EXPRESS_SAVER_COUNTRIES = ("MX", "CA")


class TokenState(enum.Enum):
    NO_TOKEN = "no_token"
    TOKEN_HELD = "token_held"
    TOKEN_EXPIRED = "token_expired"


def rate_cache_key(rr: RateRequest) -> str:
    return "".join(number_text(v) for v in (
        rr.dest_country_id, rr.dest_postcode, rr.dest_region_id, rr.package_weight)) + RATE_CACHE_SALT


class UpsClient:
    def __init__(self, svc: Services):
        self.svc = svc
        self.settings = svc.settings
        self.state = TokenState.NO_TOKEN
        self._token: Optional[str] = None
        self._lock = threading.Lock()

    # ----- token -----

    def _fetch_token(self) -> str:
        s = self.settings
        url = f"{s.service_domain}security/v1/oauth/token"
        resp = self.svc.session.post(
            url,
            data={"grant_type": "client_credentials"},
            auth=(s.ups_client_id, s.ups_client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=DEFAULT_TIMEOUT,
        )
        if resp.status_code != 200:
            raise UpstreamError("Can't connect to the service.", resp.status_code)
        j = resp.json()
        token = j.get("access_token")
        if not token:
            raise UpstreamError("Failed to get access token", HTTP_UNAUTHORIZED)
        expires_in = int(j.get("expires_in") or 0)
        ttl = expires_in - TOKEN_EXPIRY_BUFFER
        if ttl > 0:
            try:
                self.svc.store.put_json(TOKEN_KEY, {"access_token": token, "expires_in": expires_in}, ttl)
            except StateError as e:
                logger.warning("could not cache UPS token: %s", e)
        logger.info("UPS access token fetched")
        return token

    def access_token(self) -> str:
        with self._lock:
            if self.state is TokenState.TOKEN_HELD and self._token:
                return self._token
            cached = None
            if self.state is TokenState.NO_TOKEN:
                cached = self.svc.store.get_json(TOKEN_KEY)
            if cached and cached.get("access_token"):
                logger.info("Using cached UPS access token.")
                self._token = cached["access_token"]
            else:
                self._token = self._fetch_token()
            self.state = TokenState.TOKEN_HELD
            return self._token

    def expire(self, token: Optional[str] = None):
        """Drop the held token (a 401 came back for it)."""
        with self._lock:
            if token is not None and token != self._token:
                return
            self.state = TokenState.TOKEN_EXPIRED
            self._token = None
            try:
                self.svc.store.delete(TOKEN_KEY)
            except StateError as e:
                logger.warning("could not clear cached UPS token: %s", e)

    def _post(self, url: str, body: dict):
        """POST with the bearer token; a 401 expires it, refreshes once and retries once."""
        for attempt in (1, 2):
            token = self.access_token()
            resp = self.svc.session.post(url, json=body, headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
            }, timeout=DEFAULT_TIMEOUT)
            if resp.status_code == HTTP_UNAUTHORIZED and attempt == 1:
                logger.info("UPS token rejected, refreshing")
                self.expire(token)
                continue
            return resp
        return resp

    # ----- rating -----

    def _region_code(self, rr: RateRequest) -> Optional[str]:
        if rr.dest_region_code:
            return rr.dest_region_code
        return lookups.region_code(self.svc, rr.dest_country_id, rr.dest_region_id)

    def rate_payload(self, rr: RateRequest, region_code: Optional[str]) -> dict:
        s = self.settings
        return {
            "RateRequest": {
                "Request": {"TransactionReference": {"CustomerContext": "Rating and Service"}},
                "Shipment": {
                    "Shipper": {
                        "Name": s.ups_name,
                        "ShipperNumber": "",
                        "Address": {
                            "AddressLine": ["01"],
                            "City": "",
                            "StateProvinceCode": s.ups_state_code,
                            "PostalCode": s.ups_postal_code,
                            "CountryCode": s.ups_country_code,
                        },
                    },
                    "ShipTo": {
                        "Address": {
                            "AddressLine": ["01"],
                            "StateProvinceCode": region_code,
                            "PostalCode": rr.dest_postcode,
                            "CountryCode": rr.dest_country_id,
                            "ResidentialAddressIndicator": "01",
                        },
                    },
                    "ShipFrom": {
                        "Address": {
                            "AddressLine": [],
                            "StateProvinceCode": s.ups_state_code,
                            "PostalCode": s.ups_postal_code,
                            "CountryCode": s.ups_country_code,
                        },
                    },
                    "Package": [{
                        "PackagingType": {"Code": "00", "Description": "Packaging"},
                        "Dimensions": {
                            "UnitOfMeasurement": {
                                "Code": s.ups_dimensions_unit_of_measurement_code,
                                "Description": s.ups_dimensions_unit_of_measurement_description,
                            },
                            "Length": "0",
                            "Width": "0",
                            "Height": "0",
                        },
                        "PackageWeight": {
                            "UnitOfMeasurement": {"Code": s.ups_package_unit_of_measurement},
                            "Weight": number_text(rr.package_weight),
                        },
                    }],
                },
            },
        }

    def surepost_payload(self, rr: RateRequest, region_code: Optional[str]) -> dict:
        s = self.settings
        return {
            "RateRequest": {
                "Request": {
                    "TransactionReference": {"CustomerContext": "CustomerContext"},
                    "RequestAction": "Rate",
                    "RequestOption": "Rate",
                },
                "Shipment": {
                    "Shipper": {
                        "Name": s.sp_ups_name,
                        "ShipperNumber": s.sp_ups_shipper_number,
                        "Address": {
                            "AddressLine": ["01"],
                            "City": "",
                            "StateProvinceCode": s.ups_state_code,
                            "PostalCode": s.ups_postal_code,
                            "CountryCode": s.ups_country_code,
                        },
                    },
                    "ShipTo": {
                        "Address": {
                            "AddressLine": ["01"],
                            "StateProvinceCode": region_code,
                            "PostalCode": rr.dest_postcode,
                            "CountryCode": rr.dest_country_id,
                            "City": rr.dest_city,
                        },
                    },
                    "ShipFrom": {
                        "Address": {
                            "AddressLine": [],
                            "StateProvinceCode": s.ups_state_code,
                            "PostalCode": s.ups_postal_code,
                            "CountryCode": s.ups_country_code,
                        },
                    },
                    "Service": {"Code": SUREPOST_SERVICE_CODE, "Description": "SurePost"},
                    "Package": [{
                        "PackagingType": {"Code": "02", "Description": "Package"},
                        "Dimensions": {
                            "UnitOfMeasurement": {"Code": "IN", "Description": "Inches"},
                            "Length": "10",
                            "Width": "30",
                            "Height": "45",
                        },
                        "PackageWeight": {
                            "Weight": "1",
                            "UnitOfMeasurement": {"Code": "OZS", "Description": "Ounces"},
                        },
                    }],
                },
            },
        }

    def _adjusted(self, base: float, country: Optional[str]) -> float:
        s = self.settings
        pct = s.ups_domestic_pay_percentage if country == "US" else s.ups_international_pay_percentage
        return base * pct

    def _operation(self, method: str, title: str, price: float) -> dict:
        return shipping_operation({
            "carrier_code": self.settings.ups_carrier_code,
            "method": method,
            "method_title": title,
            "price": price,
            "cost": price,
            "additional_data": [],
        })

    def _ups_rates(self, rr: RateRequest, payload: dict) -> Optional[List[dict]]:
        """Rated shipments as ops, or None when UPS did not answer with code 1."""
        resp = self._post(self.settings.ups_rate_endpoint, payload)
        if resp.status_code >= 400:
            raise UpstreamError(f"UPS rating failed {resp.status_code}", resp.status_code)
        body = resp.json().get("RateResponse") or {}
        code = str(((body.get("Response") or {}).get("ResponseStatus") or {}).get("Code"))
        if code != "1":
            logger.warning("UPS API returned unsuccessful response")
            return None
        shipments = body.get("RatedShipment") or []
        if isinstance(shipments, dict):
            shipments = [shipments]
        ops = []
        for shipment in shipments:
            service_code = str((shipment.get("Service") or {}).get("Code"))
            method = UPS_SHIPPING_METHODS.get(service_code)
            if not method:
                continue
            if service_code == "65" and rr.dest_country_id not in EXPRESS_SAVER_COUNTRIES:
                continue
            base = float(shipment["TotalCharges"]["MonetaryValue"])
            ops.append(self._operation(method[0], method[1], self._adjusted(base, rr.dest_country_id)))
        return ops

    def _surepost_rate(self, rr: RateRequest, payload: dict) -> Optional[dict]:
        try:
            resp = self._post(self.settings.sp_ups_rate_endpoint, payload)
            if resp.status_code >= 400:
                logger.warning("Surepost rating failed %s", resp.status_code)
                return None
            shipment = (resp.json().get("RateResponse") or {}).get("RatedShipment") or {}
            if isinstance(shipment, list):
                shipment = shipment[0] if shipment else {}
            value = (shipment.get("TotalCharges") or {}).get("MonetaryValue")
            if value is None:
                return None
            price = round(self._adjusted(float(value), rr.dest_country_id), 2)
            logger.info("Surepost rate processed: %s", price)
            return self._operation(SUREPOST_METHOD[0], SUREPOST_METHOD[1], price)
        except Exception as e:
            logger.error("Error processing Surepost shipping: %s", e)
            return None

    def shipping_methods(self, rr: RateRequest) -> List[dict]:
        """
        UPS + SurePost rate ops for the request, served from the 5 minute
        cache when possible. Missing destination fields give no ops.
        """
        missing = [f for f in ("dest_country_id", "dest_postcode", "dest_region_id", "package_weight")
                   if getattr(rr, f) in (None, "")]
        if missing:
            logger.error("Missing required request input: %s", ", ".join(missing))
            return []

        key = rate_cache_key(rr)
        cached = self.svc.store.get_json(key)
        if cached is not None:
            logger.info("ups rates found from cache")
            return cached

        region_code = self._region_code(rr)
        self.access_token()
        with ThreadPoolExecutor(max_workers=2) as pool:
            ups_future = pool.submit(self._ups_rates, rr, self.rate_payload(rr, region_code))
            surepost_future = pool.submit(self._surepost_rate, rr, self.surepost_payload(rr, region_code))
            surepost_op = surepost_future.result()
            ops = ups_future.result()
        if ops is None:
            return []
        if surepost_op:
            ops.append(surepost_op)

        try:
            self.svc.store.put_json(key, ops, RATE_CACHE_TTL)
        except StateError as e:
            logger.warning("could not cache UPS rates: %s", e)
        logger.info("Retrieved %d UPS shipping methods", len(ops))
        return ops

    # ----- address validation -----

    def validate_address(self, address: Optional[dict]) -> dict:
        """{statusCode, body} with the UPS candidate list."""
        s = self.settings
        if not (s.ups_client_id and s.ups_client_secret and s.service_domain):
            raise InputError("Something went wrong. Client requires configuration.")
        if not address:
            raise InputError("Missing address details")

        url = (f"{s.service_domain}api/addressvalidation/v2/{s.request_option}"
               "?regionalrequestindicator=false&maximumcandidatelistsize=5")
        payload = {
            "XAVRequest": {
                "AddressKeyFormat": {
                    "ConsigneeName": f"{address.get('firstname', '')} {address.get('lastname', '')}",
                    "AddressLine": address.get("street_line"),
                    "PoliticalDivision2": address.get("city"),
                    "PoliticalDivision1": address.get("region_code"),
                    "PostcodePrimaryLow": address.get("postcode"),
                    "CountryCode": address.get("country_code"),
                },
            },
        }
        resp = self._post(url, payload)
        if resp.status_code == HTTP_BAD_REQUEST:
            logger.error("Bad Request - Invalid address: %s", resp.text[:300])
            raise InputError("Invalid address. Please check the provided details.")
        if resp.status_code >= 400:
            logger.error("UPS API Error (%s): %s", resp.status_code, resp.text[:300])
            raise UpstreamError("Something went wrong. Can't validate address. Please try later",
                                resp.status_code)
        try:
            body = resp.json().get("XAVResponse") or {}
        except ValueError:
            raise UpstreamError("Can't validate address. Please try later.", HTTP_INTERNAL_ERROR)
        return {
            "statusCode": resp.status_code,
            "body": {
                "candidates": body.get("Candidate"),
                "responseStatus": (body.get("Response") or {}).get("ResponseStatus") or {},
            },
        }
