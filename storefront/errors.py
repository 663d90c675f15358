"""
Error taxonomy shared by the storefront services.

ValidationError and EmptyCartError are raised before any network call.
GatewayError and NotFoundError come out of the gateway; services catch them
where the call is made, log them and turn them into a user notification.
"""
from __future__ import annotations
from typing import Dict, Optional


class StorefrontError(Exception):
    pass


class ValidationError(StorefrontError):
    """Per-field validation failure. `errors` maps field name -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class EmptyCartError(StorefrontError):
    def __init__(self, message: str = "Your cart is empty. Please add products to order."):
        super().__init__(message)


class GatewayError(StorefrontError):
    def __init__(self, message: str, *, table: Optional[str] = None):
        self.table = table
        super().__init__(message)


class NotFoundError(GatewayError):
    pass


class AuthError(StorefrontError):
    pass


class SubmissionInProgressError(StorefrontError):
    def __init__(self, message: str = "Your order is already being placed."):
        super().__init__(message)
