"""Storefront error taxonomy"""

from typing import Optional


class StorefrontError(Exception):
    """Base class for every error the storefront surfaces to a user"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputValidationError(StorefrontError):
    """Raised before any network call when user input is malformed; never retried"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class GatewayError(StorefrontError):
    """Raised when the activation gateway answers non-2xx or with an unreadable body"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationRequiredError(StorefrontError):
    """Raised when an account-scoped action is attempted without a credential"""

    def __init__(self, message: str = "Please sign in to continue"):
        super().__init__(message)


class SubscriptionStateError(StorefrontError):
    """Raised when a subscription cannot take the requested device change (limit reached, not active)"""
    pass


class InvalidTransitionError(Exception):
    """Raised when the payment state machine is asked for an illegal transition"""
    pass
