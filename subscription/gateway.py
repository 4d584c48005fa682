"""
Activation Gateway - HTTP client for the hotspot backend

Every endpoint the storefront consumes:
- Checkout: start an M-Pesa STK push, poll its status, link it to an account
- Vouchers and loyalty points redemption
- Free trial claim, device reconnect, subscription listing
- Devices attached to a subscription (add, relabel, remove)
- Package catalog and device auto-detection

The backend answers JSON even on errors. When a body cannot be parsed
(HTML error pages on 401/502 from the hosting proxy) the raised error
carries the status code and a truncated snippet of the raw body.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from subscription.errors import GatewayError
from subscription.models import (
    FALLBACK_PACKAGES,
    PackageOffer,
    Payment,
    ReconnectResult,
    Subscription,
    deduplicate_free_trials,
)

logger = logging.getLogger(__name__)

# Characters of an unparseable body kept in the error message
RAW_BODY_SNIPPET = 200


def _error_message(data: Any, fallback: str) -> str:
    """Pick the server-provided message out of an error body"""
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class ActivationGateway:
    """
    Async client for the activation gateway.

    Args:
        base_url: gateway root, e.g. https://portal.example.com
        timeout: per-request timeout in seconds
        transport: optional httpx transport (tests pass httpx.MockTransport)
        sleep: coroutine used between catalog retries
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> 'ActivationGateway':
        return cls(settings.GATEWAY_BASE_URL, timeout=settings.GATEWAY_TIMEOUT_SECONDS, **kwargs)

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> 'ActivationGateway':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        token: Optional[str] = None,
        fallback: str = "Request failed",
        raise_for_status: bool = True,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._get_client().request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise GatewayError(f"{fallback}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            snippet = response.text[:RAW_BODY_SNIPPET]
            raise GatewayError(
                f"Unexpected response (status {response.status_code}): {snippet}",
                status_code=response.status_code,
            )

        if raise_for_status and not response.is_success:
            raise GatewayError(_error_message(data, fallback), status_code=response.status_code)

        return data

    # ========== Checkout ==========

    async def start_checkout(
        self,
        phone: str,
        package_key: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Optional[str]:
        """Start an STK push; returns the payment id (None if the gateway gave none)"""
        data = await self._request(
            "POST",
            "/api/checkout/start",
            json={"phone": phone, "packageKey": package_key, "mac": mac, "ip": ip},
            fallback="Checkout failed",
        )
        payment_id = data.get("paymentId") if isinstance(data, dict) else None
        return str(payment_id) if payment_id else None

    async def check_status(self, payment_id: str) -> Payment:
        data = await self._request(
            "GET",
            f"/api/checkout/status/{quote(payment_id, safe='')}",
            fallback="Failed to check payment status",
        )
        if not isinstance(data, dict):
            raise GatewayError("Malformed payment status response")
        try:
            return Payment.from_status_response(payment_id, data)
        except ValueError as e:
            raise GatewayError(str(e)) from e

    async def link_payment(self, payment_id: str, token: str) -> Dict[str, Any]:
        """
        Attach a completed guest payment to the signed-in account.

        Returns the gateway body ({ok, message?}) whatever the HTTP status,
        since "already linked" is reported as a refusal.
        """
        data = await self._request(
            "POST",
            "/api/checkout/link-payment",
            json={"paymentId": payment_id},
            token=token,
            fallback="Failed to link payment",
            raise_for_status=False,
        )
        if not isinstance(data, dict):
            raise GatewayError("Malformed link-payment response")
        return data

    # ========== Immediate redemption ==========

    async def redeem_voucher(
        self,
        code: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
        package_key: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/vouchers/redeem",
            json={"code": code, "mac": mac, "ip": ip, "packageKey": package_key},
            token=token,
            fallback="Voucher redeem failed",
        )

    async def use_points(
        self,
        package_key: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/points/use",
            json={"packageKey": package_key, "mac": mac, "ip": ip},
            token=token,
            fallback="Failed to use points",
        )

    async def get_points_balance(self, token: str) -> int:
        data = await self._request(
            "GET", "/api/points/balance", token=token, fallback="Failed to get user points"
        )
        return int(data.get("points", 0)) if isinstance(data, dict) else 0

    # ========== Account-scoped access ==========

    async def claim_free_trial(self, mac: str, token: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/subscriptions/free-trial",
            json={"mac": mac},
            token=token,
            fallback="Free trial claim failed",
        )

    async def reconnect_device(self, mac: Optional[str], ip: Optional[str], token: str) -> ReconnectResult:
        data = await self._request(
            "POST",
            "/api/subscriptions/reconnect",
            json={"mac": mac, "ip": ip},
            token=token,
            fallback="Reconnect failed",
        )
        return ReconnectResult.from_dict(data)

    async def get_subscriptions(self, token: str) -> List[Subscription]:
        data = await self._request(
            "GET", "/api/subscriptions", token=token, fallback="Failed to load subscriptions"
        )
        if isinstance(data, dict):
            data = data.get("subscriptions", [])
        return [Subscription.from_dict(item) for item in data or []]

    async def get_subscription(self, subscription_id: str, token: str) -> Subscription:
        data = await self._request(
            "GET",
            f"/api/subscriptions/{quote(subscription_id, safe='')}",
            token=token,
            fallback="Failed to load subscription",
        )
        if isinstance(data, dict) and isinstance(data.get("subscription"), dict):
            data = data["subscription"]
        return Subscription.from_dict(data)

    # ========== Subscription devices ==========

    async def add_device(self, subscription_id: str, mac: str, label: str, token: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/subscriptions/{quote(subscription_id, safe='')}/devices",
            json={"mac": mac, "label": label},
            token=token,
            fallback="Failed to add device",
        )

    async def update_device(self, subscription_id: str, device_id: str, label: str, token: str) -> Dict[str, Any]:
        return await self._request(
            "PUT",
            f"/api/subscriptions/{quote(subscription_id, safe='')}/devices/{quote(device_id, safe='')}",
            json={"label": label},
            token=token,
            fallback="Failed to update device",
        )

    async def remove_device(self, subscription_id: str, device_id: str, token: str) -> Dict[str, Any]:
        return await self._request(
            "DELETE",
            f"/api/subscriptions/{quote(subscription_id, safe='')}/devices/{quote(device_id, safe='')}",
            token=token,
            fallback="Failed to remove device",
        )

    # ========== Catalog & detection ==========

    async def fetch_packages(self, max_retries: int = 3) -> List[PackageOffer]:
        """
        Load the package catalog, retrying with exponential backoff
        (1s, 2s, ...). Falls back to the built-in offline catalog when every
        attempt fails.
        """
        for attempt in range(1, max_retries + 1):
            try:
                data = await self._request("GET", "/api/packages", fallback="Failed to load packages")
                packages = [PackageOffer.from_dict(item) for item in data]
                logger.info(f"Packages loaded on attempt {attempt}: {len(packages)} offers")
                return deduplicate_free_trials(packages)
            except (GatewayError, KeyError, TypeError) as e:
                logger.warning(f"Attempt {attempt}/{max_retries} to load packages failed: {e}")
                if attempt < max_retries:
                    await self._sleep(2 ** (attempt - 1))

        logger.warning("Using fallback packages due to network error")
        return list(FALLBACK_PACKAGES)

    async def detect_device(self) -> Dict[str, Any]:
        """Ask the backend which device this request came from"""
        data = await self._request("POST", "/api/devices/detect", fallback="Device detection failed")
        return data if isinstance(data, dict) else {}
