"""
Delivery Error Taxonomy

Exceptions raised by the geocoding, token, orchestration and webhook
layers. HTTP mapping lives in app.main.
"""

from typing import Optional


# Provider bodies are truncated to this many characters in errors and logs
MAX_ERROR_BODY_CHARS = 500


class DeliveryError(Exception):
    """Base class for all delivery integration errors."""


class GeocodeUnavailable(DeliveryError):
    """Geocoder could not be reached or returned garbage. Resolved as 'no point'."""


class CredentialsMissing(DeliveryError):
    """Provider client id / secret are not configured."""

    def __init__(self, message: str = "Uber credentials missing"):
        super().__init__(message)


class ProviderAuthError(DeliveryError):
    """Token endpoint refused or failed to issue a token."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRequestFailed(DeliveryError):
    """
    Non-success response from a quote/create/get call.

    Attributes:
        operation: Provider operation name (quote, create, get)
        status_code: HTTP status (504 for timeouts, 502 for transport errors)
        body: Provider response text, truncated
    """

    def __init__(self, operation: str, status_code: int, body: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.body = (body or "")[:MAX_ERROR_BODY_CHARS]
        super().__init__(f"Uber {operation} error {status_code}: {self.body}")

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class InvalidSignature(DeliveryError):
    """Webhook signature missing or not matching the signing key."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class InvalidPayload(DeliveryError):
    """Webhook body is not a JSON object."""

    def __init__(self, message: str = "Invalid JSON"):
        super().__init__(message)
