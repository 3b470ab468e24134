"""
Shared HTTP helpers: status codes, a retrying requests session, the action
reply shapes and the time-zone date used in order history comments.
"""

from datetime import datetime
from typing import Optional

import pytz
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_ERROR = 500

DEFAULT_TIMEOUT = 30
RETRY_METHODS = frozenset(["GET", "PUT", "DELETE"])


def build_session(retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """
    requests.Session that retries connect/read failures and 502/503/504
    with exponential backoff. 4xx responses are returned as-is. POST is
    never retried, an order or invoice must reach the other side once.
    """
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(502, 503, 504),
        allowed_methods=RETRY_METHODS,
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def action_success(message, status_code: int = HTTP_OK, **extra) -> dict:
    body = {"success": True, "message": message}
    body.update(extra)
    return {"statusCode": status_code, "body": body}


def action_error(status_code: Optional[int], error) -> dict:
    code = status_code or HTTP_INTERNAL_ERROR
    return {"statusCode": code, "body": {"success": False, "statusCode": code, "error": str(error)}}


def current_time_zone_date(time_zone: str, now: Optional[datetime] = None) -> str:
    """Format like 'Oct 08, 2026, 3:04:05 PM' in the given zone."""
    tz = pytz.timezone(time_zone or "UTC")
    if now is None:
        local = datetime.now(tz)
    elif now.tzinfo is None:
        local = pytz.utc.localize(now).astimezone(tz)
    else:
        local = now.astimezone(tz)
    hour = local.hour % 12 or 12
    return f"{local:%b %d, %Y}, {hour}:{local:%M:%S} {local:%p}"
