"""
Subscription device management

Devices belong to their subscription and are only changed through calls
scoped to its id. The device limit is checked against a fresh copy of the
subscription before the gateway is asked to add anything; the gateway
enforces it again on its side.
"""

import logging
from typing import Any, Dict, Optional

from subscription.errors import AuthenticationRequiredError, InputValidationError, SubscriptionStateError
from subscription.models import Subscription
from subscription.redemption import checked_mac

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_LABEL = "Unnamed Device"


def _required_id(value: Optional[str], field: str, message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InputValidationError(message, field=field)
    return value


def _clean_label(label: Optional[str]) -> Optional[str]:
    return (label or "").strip() or None


class DeviceManager:
    """
    Add, relabel and remove the devices of the signed-in user's subscriptions.

    Args:
        gateway: ActivationGateway
        auth: AuthSession supplying the bearer token
    """

    def __init__(self, gateway, auth):
        self._gateway = gateway
        self._auth = auth

    def _require_token(self) -> str:
        token = self._auth.token
        if not token:
            raise AuthenticationRequiredError()
        return token

    async def get_subscription(self, subscription_id: str) -> Subscription:
        token = self._require_token()
        subscription_id = _required_id(subscription_id, "subscription_id", "Please select a subscription")
        return await self._gateway.get_subscription(subscription_id, token)

    async def add_device(self, subscription_id: str, mac: Optional[str], label: Optional[str] = None) -> Dict[str, Any]:
        """
        Attach a device to a subscription.

        Raises:
            AuthenticationRequiredError: no credential
            InputValidationError: missing subscription, missing or malformed MAC
            SubscriptionStateError: subscription not active, device already
                attached, or devices_allowed reached
            GatewayError: the gateway refused the device
        """
        token = self._require_token()
        subscription_id = _required_id(subscription_id, "subscription_id", "Please select a subscription")
        mac = checked_mac(mac, required=True)
        label = _clean_label(label) or DEFAULT_DEVICE_LABEL

        subscription = await self._gateway.get_subscription(subscription_id, token)
        if not subscription.is_active():
            raise SubscriptionStateError("Subscription is not active")
        if any(d.mac.upper() == mac for d in subscription.devices):
            raise SubscriptionStateError("Device already added to this subscription")
        if len(subscription.devices) >= subscription.devices_allowed:
            raise SubscriptionStateError("Device limit reached")

        result = await self._gateway.add_device(subscription_id, mac, label, token)
        logger.info(
            f"Device {mac} added to subscription {subscription_id} "
            f"({len(subscription.devices) + 1}/{subscription.devices_allowed})"
        )
        return result

    async def update_device(self, subscription_id: str, device_id: str, label: Optional[str]) -> Dict[str, Any]:
        token = self._require_token()
        subscription_id = _required_id(subscription_id, "subscription_id", "Please select a subscription")
        device_id = _required_id(device_id, "device_id", "Device is required")
        label = _clean_label(label)
        if label is None:
            raise InputValidationError("Device label is required", field="label")
        return await self._gateway.update_device(subscription_id, device_id, label, token)

    async def remove_device(self, subscription_id: str, device_id: str) -> Dict[str, Any]:
        token = self._require_token()
        subscription_id = _required_id(subscription_id, "subscription_id", "Please select a subscription")
        device_id = _required_id(device_id, "device_id", "Device is required")
        result = await self._gateway.remove_device(subscription_id, device_id, token)
        logger.info(f"Device {device_id} removed from subscription {subscription_id}")
        return result
