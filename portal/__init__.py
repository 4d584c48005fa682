"""
Captive portal device identity for the hotspot storefront

- Redirect parameter capture and backend auto-detection
- MAC/phone/voucher validation and normalization
- Session-scoped and durable client storage
"""

from portal.identity import PortalIdentity, PortalIdentityResolver, PORTAL_DATA_KEY
from portal.storage import MemoryStore, JsonFileStore, PendingPaymentStore
from portal.validation import (
    ValidationResult,
    validate_mac_address,
    normalize_mac_address,
    validate_phone,
    validate_checkout_phone,
    normalize_phone,
    validate_voucher_code,
    normalize_voucher_code,
)

__all__ = [
    'PortalIdentity',
    'PortalIdentityResolver',
    'PORTAL_DATA_KEY',
    'MemoryStore',
    'JsonFileStore',
    'PendingPaymentStore',
    'ValidationResult',
    'validate_mac_address',
    'normalize_mac_address',
    'validate_phone',
    'validate_checkout_phone',
    'normalize_phone',
    'validate_voucher_code',
    'normalize_voucher_code',
]
