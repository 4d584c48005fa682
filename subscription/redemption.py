"""
Immediate redemption paths

Vouchers, loyalty points, free trials and device reconnects complete in a
single request, with no polling. Input is validated locally first so a
malformed code or MAC never reaches the gateway. Gateway refusals are
surfaced with the gateway's own message.
"""

import logging
from typing import Any, Dict, Optional

from portal.validation import (
    normalize_mac_address,
    normalize_voucher_code,
    validate_mac_address,
    validate_voucher_code,
)
from subscription.errors import AuthenticationRequiredError, InputValidationError
from subscription.models import PackageOffer, ReconnectResult

logger = logging.getLogger(__name__)


def checked_mac(mac: Optional[str], required: bool = False) -> Optional[str]:
    """Validate then normalize a MAC; None passes through unless required"""
    if not mac:
        if required:
            raise InputValidationError("MAC address is required", field="mac")
        return None
    result = validate_mac_address(mac)
    if not result.is_valid:
        raise InputValidationError(result.message, field="mac")
    return normalize_mac_address(mac)


def can_use_points(offer: PackageOffer, cached_balance: Optional[int], authenticated: bool) -> bool:
    """
    UI hint for enabling the "use points" button. The gateway remains the
    authority on the balance; use_points never consults this.
    """
    if not authenticated or offer.points_required <= 0:
        return False
    if cached_balance is None:
        return True
    return cached_balance >= offer.points_required


class RedemptionService:
    def __init__(self, gateway, auth=None):
        self._gateway = gateway
        self._auth = auth

    def _token(self) -> Optional[str]:
        return self._auth.token if self._auth is not None else None

    def _require_token(self) -> str:
        token = self._token()
        if not token:
            raise AuthenticationRequiredError()
        return token

    async def redeem(
        self,
        code: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
        package_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Redeem a voucher code for the given device.

        Raises:
            InputValidationError: empty or malformed code, malformed MAC
            GatewayError: the gateway refused the voucher
        """
        normalized = normalize_voucher_code(code or "")
        check = validate_voucher_code(normalized)
        if not check.is_valid:
            raise InputValidationError(check.message, field="code")
        mac = checked_mac(mac)

        result = await self._gateway.redeem_voucher(
            normalized, mac=mac, ip=ip, package_key=package_key, token=self._token()
        )
        logger.info(f"Voucher {normalized} redeemed for {mac or 'unknown device'}")
        return result

    async def use_points(
        self,
        package_key: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not package_key:
            raise InputValidationError("Please choose a package", field="package_key")
        mac = checked_mac(mac)

        result = await self._gateway.use_points(package_key, mac=mac, ip=ip, token=self._token())
        logger.info(f"Points redeemed for package {package_key}")
        return result

    async def claim_free_trial(self, mac: Optional[str]) -> Dict[str, Any]:
        token = self._require_token()
        mac = checked_mac(mac, required=True)
        result = await self._gateway.claim_free_trial(mac, token)
        logger.info(f"Free trial claimed for {mac}")
        return result

    async def reconnect(self, mac: Optional[str], ip: Optional[str]) -> ReconnectResult:
        """Re-attach the current device to the user's active subscription"""
        token = self._require_token()
        mac = checked_mac(mac)
        result = await self._gateway.reconnect_device(mac, ip, token)
        logger.info(f"Reconnect for {mac or 'unknown device'}: ok={result.ok}")
        return result
