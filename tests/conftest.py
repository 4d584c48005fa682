#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import tempfile
import sys
import os
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portal.storage import MemoryStore, PendingPaymentStore
from subscription.auth import AuthSession
from subscription.gateway import ActivationGateway
from subscription.models import PackageOffer, Payment, PaymentStatus
from subscription.payment_machine import PollingPolicy
from subscription.scheduler import ManualScheduler


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# STORAGE & AUTH FIXTURES
# ============================================================================

@pytest.fixture
def session_store():
    """Session-scoped store (portal identity)"""
    return MemoryStore()


@pytest.fixture
def durable_store():
    """Stand-in for the durable store (pending payment id)"""
    return MemoryStore()


@pytest.fixture
def pending_store(durable_store):
    return PendingPaymentStore(durable_store)


@pytest.fixture
def auth():
    """Unauthenticated auth session; tests sign in as needed"""
    return AuthSession()


# ============================================================================
# SCHEDULING FIXTURES
# ============================================================================

@pytest.fixture
def scheduler():
    """Virtual-time scheduler; nothing fires until advance() is awaited"""
    return ManualScheduler()


@pytest.fixture
def policy():
    return PollingPolicy(interval=3.0, max_polls=100, timeout=300.0)


# ============================================================================
# GATEWAY FIXTURES
# ============================================================================

def pending(payment_id: str = "p1") -> Payment:
    return Payment(id=payment_id, status=PaymentStatus.PENDING)


def succeeded(payment_id: str = "p1") -> Payment:
    return Payment(id=payment_id, status=PaymentStatus.SUCCESS)


def failed(payment_id: str = "p1", message: str = None) -> Payment:
    return Payment(id=payment_id, status=PaymentStatus.FAILED, error_message=message)


@pytest.fixture
def sample_packages():
    """Catalog as returned by the gateway"""
    return [
        PackageOffer(key="free-trial-1d", name="Free Trial", price_kes=0, duration_seconds=86400),
        PackageOffer(key="daily-100", name="Daily Package", price_kes=100, duration_seconds=86400,
                     speed_kbps=5000, devices_allowed=2, points_required=50),
        PackageOffer(key="weekly-500", name="Weekly Package", price_kes=500, duration_seconds=604800,
                     speed_kbps=10000, devices_allowed=3),
    ]


@pytest.fixture
def mock_gateway(sample_packages):
    """ActivationGateway with every call mocked; checkout returns payment p1"""
    gateway = MagicMock(spec=ActivationGateway)
    gateway.base_url = "http://gateway.test"
    gateway.start_checkout = AsyncMock(return_value="p1")
    gateway.check_status = AsyncMock(return_value=pending())
    gateway.link_payment = AsyncMock(return_value={"ok": True})
    gateway.redeem_voucher = AsyncMock(return_value={"ok": True})
    gateway.use_points = AsyncMock(return_value={"ok": True})
    gateway.get_points_balance = AsyncMock(return_value=0)
    gateway.claim_free_trial = AsyncMock(return_value={"ok": True})
    gateway.reconnect_device = AsyncMock()
    gateway.get_subscriptions = AsyncMock(return_value=[])
    gateway.get_subscription = AsyncMock()
    gateway.add_device = AsyncMock(return_value={"ok": True, "message": "Device added successfully"})
    gateway.update_device = AsyncMock(return_value={"ok": True})
    gateway.remove_device = AsyncMock(return_value={"ok": True})
    gateway.fetch_packages = AsyncMock(return_value=sample_packages)
    gateway.detect_device = AsyncMock(return_value={})
    gateway.aclose = AsyncMock()
    return gateway


# ============================================================================
# FASTAPI TEST CLIENT FIXTURES
# ============================================================================

@pytest.fixture
def app(mock_gateway, scheduler, temp_dir, policy):
    """Create FastAPI application for testing"""
    from web_ui.api.main import create_app
    return create_app(
        gateway=mock_gateway,
        scheduler=scheduler,
        storage_dir=str(temp_dir / "pending"),
        policy=policy,
    )


@pytest.fixture
def client(app):
    """Create synchronous test client (lifespan runs inside the with block)"""
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require network)"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection based on markers"""
    if config.getoption("--skip-integration", default=False):
        skip_integration = pytest.mark.skip(reason="--skip-integration option provided")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--skip-integration",
        action="store_true",
        default=False,
        help="Skip integration tests"
    )
