"""
Subscription activation for the hotspot storefront

How a device gets internet access:
- M-Pesa checkout: STK push, status polling until a terminal state
- Guest payments linked to the account once the user signs in
- Vouchers and loyalty points redeemed in a single request
- Free trial claim and reconnect of an already paid device
- Devices added to or removed from a subscription, up to its limit

Architecture:
- ActivationGateway is the only code that talks HTTP to the backend
- PaymentStateMachine runs one payment; PaymentReconciler owns the current one
- Timers go through an injectable scheduler so tests control time
"""

from subscription.models import (
    PaymentStatus,
    SubscriptionStatus,
    PackageOffer,
    Payment,
    Subscription,
    ReconnectResult,
)
from subscription.errors import (
    StorefrontError,
    InputValidationError,
    GatewayError,
    AuthenticationRequiredError,
    SubscriptionStateError,
    InvalidTransitionError,
)
from subscription.auth import AuthSession
from subscription.gateway import ActivationGateway
from subscription.scheduler import AsyncioScheduler, ManualScheduler
from subscription.payment_machine import (
    PaymentState,
    PollingPolicy,
    PaymentStateMachine,
    PaymentReconciler,
)
from subscription.linking import GuestLinkingCoordinator
from subscription.redemption import RedemptionService, can_use_points
from subscription.devices import DeviceManager

__all__ = [
    # Models
    'PaymentStatus',
    'SubscriptionStatus',
    'PackageOffer',
    'Payment',
    'Subscription',
    'ReconnectResult',
    # Errors
    'StorefrontError',
    'InputValidationError',
    'GatewayError',
    'AuthenticationRequiredError',
    'SubscriptionStateError',
    'InvalidTransitionError',
    # Collaborators
    'AuthSession',
    'ActivationGateway',
    'AsyncioScheduler',
    'ManualScheduler',
    # Payment reconciliation
    'PaymentState',
    'PollingPolicy',
    'PaymentStateMachine',
    'PaymentReconciler',
    'GuestLinkingCoordinator',
    # Immediate redemption
    'RedemptionService',
    'can_use_points',
    # Subscription devices
    'DeviceManager',
]
