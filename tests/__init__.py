"""
Hotspot Storefront Test Suite

Tests for:
- Portal identity capture and input validation
- Activation gateway client (httpx.MockTransport)
- Payment reconciliation on virtual time
- Guest linking, vouchers and points
- Storefront API endpoints

Run tests with:
    pytest tests/ -v

Run without network tests:
    pytest tests/ -v --skip-integration
"""
