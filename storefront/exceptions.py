"""
Custom exceptions for the storefront application.
"""
from typing import List, Optional


class StorefrontException(Exception):
    """Base exception for storefront operations"""
    pass


class ValidationError(StorefrontException):
    """Raised when checkout input is missing or invalid"""
    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.message = message
        self.fields = fields or []
        super().__init__(message)


class CollaboratorFailure(StorefrontException):
    """Raised when an identity or persistence collaborator fails"""
    pass


class RedisConnectionError(CollaboratorFailure):
    """Raised when Redis connection fails"""
    pass


class IdentityError(CollaboratorFailure):
    """Raised when sign-up or sign-in is rejected"""
    pass


class StoreCorruption(StorefrontException):
    """Raised when persisted cart or wishlist data cannot be decoded"""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed data under {key}: {reason}")


class InvariantViolation(StorefrontException):
    """Raised when a request breaks a catalog or cart invariant"""
    pass


class CheckoutInProgressError(StorefrontException):
    """Raised when an order is submitted while another is still running"""
    def __init__(self):
        super().__init__("A checkout is already in progress")


class CheckoutFailedError(StorefrontException):
    """Raised when checkout cannot finish even on the fallback path"""
    def __init__(self, message: str, retryable: bool = True):
        self.message = message
        self.retryable = retryable
        super().__init__(message)
