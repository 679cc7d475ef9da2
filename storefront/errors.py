"""Exceptions raised by the storefront services.

Every error carries the HTTP status it maps to; the application registers one
handler for ``StoreError`` that turns it into a JSON response.
"""
from typing import Optional


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StoreError):
    """Raised when input is well-formed but not acceptable."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class AuthenticationError(StoreError):
    """Raised when the caller cannot be identified."""

    status_code = 401


class ForbiddenError(StoreError):
    """Raised when the caller is identified but not allowed."""

    status_code = 403


class NotFoundError(StoreError):
    """Raised when a row doesn't exist or isn't visible to the caller."""

    status_code = 404

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(StoreError):
    """Raised when a create would duplicate an existing row."""

    status_code = 409


class BusinessRuleError(StoreError):
    """Raised when a request violates a store rule."""

    status_code = 400


class InsufficientStockError(BusinessRuleError):
    """Raised when a product or variant can't cover the requested quantity."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Insufficient stock for {product_name}")


class GatewayError(StoreError):
    """Raised when an upstream service (payments, identity) fails.

    The message is safe to show to callers; processor details are logged
    where the error is raised.
    """

    status_code = 502

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class IntegrityStoreError(StoreError):
    """Raised when an atomic unit fails and is rolled back."""

    status_code = 500


class IdentityProviderError(GatewayError):
    """Raised when the OAuth exchange with the identity provider fails.

    ``reason`` is a short machine-readable code passed back to the frontend.
    """

    def __init__(self, reason: str, retryable: bool = False):
        self.reason = reason
        super().__init__(f"Identity provider error: {reason}", retryable=retryable)
