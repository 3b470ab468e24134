"""
Commerce webhook envelope: signature check, body decoding and the reply
shapes the platform understands.

Replies are always HTTP 200. The body is one of
    {"op": "success"}
    {"op": "exception", "type": ..., "message": ...}
    [ {"op", "path", "value", "instance"?}, ... ]
"""

import base64
import binascii
import json
import logging
from typing import Any, Callable, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .errors import GRAPHQL_INPUT_EXCEPTION, BrandStoreError, InputError, SignatureError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-adobe-commerce-webhook-signature"
SIGNATURE_ERROR_MESSAGE = (
    "Webhook signature Error: Please try again later or contact our customer support team for assistance."
)


def verify_signature(headers: Mapping[str, str], body: Union[str, bytes, None], public_key: str):
    """Raise SignatureError unless `body` carries a valid RSA-SHA256 signature."""
    signature = None
    for name, value in (headers or {}).items():
        if name.lower() == SIGNATURE_HEADER:
            signature = value
            break
    if not signature:
        raise SignatureError(
            f"Header `{SIGNATURE_HEADER}` not found. Make sure Webhooks signature is enabled in the Commerce instance.")
    if not body:
        raise SignatureError("Request body not found.")
    if not public_key:
        raise SignatureError("Public key not found. Set COMMERCE_WEBHOOKS_PUBLIC_KEY.")

    raw = body.encode("utf-8") if isinstance(body, str) else body
    try:
        key = serialization.load_pem_public_key(public_key.encode("utf-8"))
        key.verify(base64.b64decode(signature), raw, padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, ValueError, TypeError, binascii.Error):
        raise SignatureError("Signature verification failed.")


def decode_body(raw: Union[str, bytes]) -> dict:
    """base64 -> JSON object; InputError when either step fails."""
    try:
        data = json.loads(base64.b64decode(raw).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InputError("Malformed webhook body")
    if not isinstance(data, dict):
        raise InputError("Malformed webhook body")
    return data


def success_reply() -> dict:
    return {"op": "success"}


def exception_reply(message: str, type_: str = GRAPHQL_INPUT_EXCEPTION) -> dict:
    return {"op": "exception", "type": type_, "message": message}


def operation(op: str, path: str, value: Any, instance: Optional[str] = None) -> dict:
    out = {"op": op, "path": path, "value": value}
    if instance:
        out["instance"] = instance
    return out


def handle_webhook(headers: Mapping[str, str], raw: bytes, public_key: str,
                   handler: Callable[[dict], Any], fallback_message: Optional[str] = None):
    """
    Verify + decode the request, run `handler(body)` and shape any failure
    as an exception reply. Unexpected errors use `fallback_message` when
    given, else the exception text.
    """
    try:
        verify_signature(headers, raw, public_key)
    except SignatureError as e:
        logger.error("Failed to verify the webhook signature: %s", e)
        return exception_reply(SIGNATURE_ERROR_MESSAGE)

    try:
        return handler(decode_body(raw))
    except BrandStoreError as e:
        logger.error("webhook rejected: %s", e)
        return exception_reply(e.message)
    except Exception as e:
        logger.exception("webhook failed: %s", e)
        return exception_reply(fallback_message or str(e))
