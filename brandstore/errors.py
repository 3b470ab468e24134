"""
Exception types raised by the core.

Webhook routes turn any of these into an exception operation; action routes
turn them into a {success: false, statusCode, error} body.
"""

from typing import Optional

GRAPHQL_INPUT_EXCEPTION = "\\Magento\\Framework\\GraphQl\\Exception\\GraphQlInputException"


class BrandStoreError(Exception):
    """Base class; carries an HTTP-ish status code for action replies."""

    status_code = 500

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message


class ConfigError(BrandStoreError):
    pass


class SignatureError(BrandStoreError):
    status_code = 401


class InputError(BrandStoreError):
    status_code = 400


class RestrictionError(BrandStoreError):
    status_code = 400


class UpstreamError(BrandStoreError):
    """An upstream HTTP call failed. 4xx keeps the upstream status; anything else is 500."""

    def __init__(self, message: str, status_code: Optional[int] = None, body=None):
        if status_code is None or status_code < 400 or status_code >= 500:
            status_code = 500
        super().__init__(message, status_code)
        self.body = body


class ResponseFormatError(BrandStoreError):
    def __init__(self, message: str = "Invalid response format"):
        super().__init__(message)


class StateError(BrandStoreError):
    pass
