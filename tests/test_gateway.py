#!/usr/bin/env python3
"""
Activation Gateway Tests

Runs the HTTP client against httpx.MockTransport: request shapes, bearer
credentials, error message extraction, unparseable bodies and the
catalog retry/fallback behaviour.
"""

import json

import httpx
import pytest

from subscription.errors import GatewayError
from subscription.gateway import ActivationGateway
from subscription.models import FALLBACK_PACKAGES, PaymentStatus


def make_gateway(handler, sleeps=None):
    async def fake_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return ActivationGateway(
        "http://gateway.test/",
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
    )


PACKAGES_BODY = [
    {"key": "free-trial-1d", "name": "Free Trial", "priceKES": 0, "durationSeconds": 86400},
    {"key": "free-trial-2h", "name": "Free Trial 2h", "priceKES": 0, "durationSeconds": 7200},
    {"key": "daily-100", "name": "Daily Package", "priceKES": 100, "durationSeconds": 86400,
     "speedKbps": 5000, "devicesAllowed": 2},
]


class TestCheckout:
    async def test_start_checkout_posts_payload(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"paymentId": "p1"})

        async with make_gateway(handler) as gateway:
            payment_id = await gateway.start_checkout("254712345678", "daily-100", "AA:BB:CC:DD:EE:FF", "10.0.0.2")

        assert payment_id == "p1"
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/checkout/start"
        assert seen["body"] == {
            "phone": "254712345678",
            "packageKey": "daily-100",
            "mac": "AA:BB:CC:DD:EE:FF",
            "ip": "10.0.0.2",
        }

    async def test_start_checkout_without_id(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json={"ok": True}))
        assert await gateway.start_checkout("254712345678", "daily-100") is None
        await gateway.aclose()

    async def test_check_status_parses_payment(self):
        def handler(request):
            assert request.url.path == "/api/checkout/status/p1"
            return httpx.Response(200, json={"status": "failed", "ResultDesc": "Insufficient balance"})

        async with make_gateway(handler) as gateway:
            payment = await gateway.check_status("p1")

        assert payment.id == "p1"
        assert payment.status == PaymentStatus.FAILED
        assert payment.error_message == "Insufficient balance"

    async def test_unknown_status_is_gateway_error(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json={"status": "weird"}))
        with pytest.raises(GatewayError):
            await gateway.check_status("p1")
        await gateway.aclose()

    async def test_link_payment_sends_bearer_and_returns_refusal(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(400, json={"ok": False, "message": "Already linked to you"})

        async with make_gateway(handler) as gateway:
            result = await gateway.link_payment("p1", "tok")

        assert seen["auth"] == "Bearer tok"
        assert result == {"ok": False, "message": "Already linked to you"}


class TestErrors:
    async def test_error_field_is_preferred(self):
        gateway = make_gateway(
            lambda request: httpx.Response(400, json={"error": "Voucher already used", "message": "other"})
        )
        with pytest.raises(GatewayError) as exc:
            await gateway.redeem_voucher("ABCD-1234")
        await gateway.aclose()

        assert exc.value.message == "Voucher already used"
        assert exc.value.status_code == 400

    async def test_message_field_used_when_no_error(self):
        gateway = make_gateway(lambda request: httpx.Response(403, json={"message": "Not enough points"}))
        with pytest.raises(GatewayError) as exc:
            await gateway.use_points("daily-100", token="tok")
        await gateway.aclose()

        assert exc.value.message == "Not enough points"

    async def test_fallback_message_for_empty_error_body(self):
        gateway = make_gateway(lambda request: httpx.Response(500, json={}))
        with pytest.raises(GatewayError) as exc:
            await gateway.claim_free_trial("AA:BB:CC:DD:EE:FF", "tok")
        await gateway.aclose()

        assert exc.value.message == "Free trial claim failed"

    async def test_unparseable_body_reports_status_and_snippet(self):
        html = "<html>" + "x" * 500 + "</html>"
        gateway = make_gateway(lambda request: httpx.Response(502, text=html))
        with pytest.raises(GatewayError) as exc:
            await gateway.check_status("p1")
        await gateway.aclose()

        assert exc.value.message == f"Unexpected response (status 502): {html[:200]}"
        assert exc.value.status_code == 502

    async def test_network_error_is_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(GatewayError) as exc:
            await gateway.redeem_voucher("ABCD-1234")
        await gateway.aclose()

        assert exc.value.message.startswith("Voucher redeem failed")
        assert exc.value.status_code is None


class TestAccount:
    async def test_reconnect_result(self):
        body = {
            "ok": True,
            "message": "Device reconnected",
            "results": [{"success": True, "packageName": "Daily Package"}],
        }
        async with make_gateway(lambda request: httpx.Response(200, json=body)) as gateway:
            result = await gateway.reconnect_device("AA:BB:CC:DD:EE:FF", "10.0.0.2", "tok")

        assert result.ok
        assert result.message == "Device reconnected"
        assert result.results[0].package_name == "Daily Package"

    async def test_subscriptions_list(self):
        body = [
            {"_id": "s1", "packageKey": "daily-100", "endAt": "2099-01-01T00:00:00Z", "status": "active"},
        ]
        async with make_gateway(lambda request: httpx.Response(200, json=body)) as gateway:
            subscriptions = await gateway.get_subscriptions("tok")

        assert [s.id for s in subscriptions] == ["s1"]
        assert subscriptions[0].is_active()

    async def test_points_balance(self):
        async with make_gateway(lambda request: httpx.Response(200, json={"points": 120})) as gateway:
            assert await gateway.get_points_balance("tok") == 120


class TestSubscriptionDevices:
    async def test_get_subscription_with_devices(self):
        body = {
            "id": "s1",
            "packageKey": "daily-100",
            "endAt": "2099-01-01T00:00:00Z",
            "devicesAllowed": 2,
            "devices": [{"_id": "d1", "mac": "AA:BB:CC:DD:EE:FF", "label": "Phone"}],
        }

        def handler(request):
            assert request.url.path == "/api/subscriptions/s1"
            assert request.headers["Authorization"] == "Bearer tok"
            return httpx.Response(200, json=body)

        async with make_gateway(handler) as gateway:
            subscription = await gateway.get_subscription("s1", "tok")

        assert subscription.devices_allowed == 2
        assert subscription.devices[0].id == "d1"
        assert subscription.devices[0].label == "Phone"

    async def test_device_calls_are_scoped_to_subscription(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content) if request.content else None))
            return httpx.Response(200, json={"ok": True})

        async with make_gateway(handler) as gateway:
            await gateway.add_device("s1", "AA:BB:CC:DD:EE:FF", "Laptop", "tok")
            await gateway.update_device("s1", "d1", "Work laptop", "tok")
            await gateway.remove_device("s1", "d1", "tok")

        assert seen == [
            ("POST", "/api/subscriptions/s1/devices", {"mac": "AA:BB:CC:DD:EE:FF", "label": "Laptop"}),
            ("PUT", "/api/subscriptions/s1/devices/d1", {"label": "Work laptop"}),
            ("DELETE", "/api/subscriptions/s1/devices/d1", None),
        ]

    async def test_device_limit_refusal_keeps_gateway_message(self):
        handler = lambda request: httpx.Response(400, json={"error": "Device limit reached"})

        async with make_gateway(handler) as gateway:
            with pytest.raises(GatewayError) as exc:
                await gateway.add_device("s1", "AA:BB:CC:DD:EE:FF", "Laptop", "tok")

        assert exc.value.message == "Device limit reached"
        assert exc.value.status_code == 400


class TestPackageCatalog:
    async def test_free_trials_deduplicated(self):
        async with make_gateway(lambda request: httpx.Response(200, json=PACKAGES_BODY)) as gateway:
            packages = await gateway.fetch_packages()

        assert [p.key for p in packages] == ["free-trial-1d", "daily-100"]

    async def test_retries_with_backoff_then_succeeds(self):
        attempts = []
        sleeps = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=PACKAGES_BODY)

        async with make_gateway(handler, sleeps) as gateway:
            packages = await gateway.fetch_packages(max_retries=3)

        assert len(attempts) == 3
        assert sleeps == [1, 2]
        assert packages[1].key == "daily-100"

    async def test_falls_back_to_offline_catalog(self):
        sleeps = []
        async with make_gateway(lambda request: httpx.Response(500, json={}), sleeps) as gateway:
            packages = await gateway.fetch_packages(max_retries=3)

        assert [p.key for p in packages] == [p.key for p in FALLBACK_PACKAGES]
        assert sleeps == [1, 2]

    async def test_malformed_catalog_entry_is_retried(self):
        async with make_gateway(lambda request: httpx.Response(200, json=[{"name": "no key"}])) as gateway:
            packages = await gateway.fetch_packages(max_retries=2)

        assert [p.key for p in packages] == [p.key for p in FALLBACK_PACKAGES]
