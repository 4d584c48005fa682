"""
Device Identity Resolver - captures which physical device is asking for access

A hotspot gateway (MikroTik) forwards an unauthenticated device to the portal
with its MAC/IP and CHAP login fields in the query string. The resolver:
- Captures those redirect parameters once per arrival
- Falls back to backend auto-detection when the redirect carried nothing
- Keeps the identity in session-scoped storage so later pages (login,
  checkout, free trial) reuse it without re-detection
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Mapping, Optional

from portal.storage import read_json, write_json
from portal.validation import normalize_mac_address

logger = logging.getLogger(__name__)

PORTAL_DATA_KEY = "eco.portalData"

# Redirect query parameter -> PortalIdentity field
REDIRECT_PARAMS = {
    "mac": "mac",
    "ip": "ip",
    "chap-id": "chap_id",
    "chap-challenge": "chap_challenge",
    "link-login": "link_login",
    "link-orig": "link_orig",
    "username": "username",
    "password": "password",
    "error": "error",
}

_JSON_NAMES = {
    "chap_id": "chapId",
    "chap_challenge": "chapChallenge",
    "link_login": "linkLogin",
    "link_orig": "linkOrig",
    "device_id": "deviceId",
    "detection_method": "detectionMethod",
}


@dataclass
class PortalIdentity:
    """Device identity for the current visit"""
    mac: Optional[str] = None
    ip: Optional[str] = None
    chap_id: Optional[str] = None
    chap_challenge: Optional[str] = None
    link_login: Optional[str] = None
    link_orig: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    error: Optional[str] = None
    device_id: Optional[str] = None
    detection_method: Optional[str] = None

    def is_meaningful(self) -> bool:
        """Worth storing: carries a MAC, an IP or a CHAP id"""
        return bool(self.mac or self.ip or self.chap_id)

    def to_dict(self) -> dict:
        return {_JSON_NAMES.get(k, k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PortalIdentity':
        reverse = {v: k for k, v in _JSON_NAMES.items()}
        fields = {}
        for key, value in data.items():
            name = reverse.get(key, key)
            if name in cls.__dataclass_fields__:
                fields[name] = value
        return cls(**fields)


class PortalIdentityResolver:
    """
    Sole writer of the session's PortalIdentity.

    Args:
        session_store: session-scoped key/value store
        detector: optional object with an async detect_device() returning
            {"mac": ..., "ip": ...}; used when the redirect carried nothing
    """

    def __init__(self, session_store, detector=None):
        self._store = session_store
        self._detector = detector

    def capture(self, url_params: Mapping[str, Any]) -> Optional[PortalIdentity]:
        """
        Capture identity from redirect parameters.

        Returns None and leaves storage untouched when neither mac, ip nor
        chap-id is present, so an unrelated navigation never wipes a
        previously captured identity.
        """
        fields = {}
        for param, name in REDIRECT_PARAMS.items():
            value = url_params.get(param)
            fields[name] = value if value not in ("", None) else None

        identity = PortalIdentity(**fields)
        if not identity.is_meaningful():
            return None

        if identity.mac:
            identity.mac = normalize_mac_address(identity.mac)

        self._save(identity)
        logger.info(f"Captured portal identity mac={identity.mac} ip={identity.ip}")
        return identity

    def get(self) -> Optional[PortalIdentity]:
        """Stored identity, or None when missing or unreadable"""
        data = read_json(self._store, PORTAL_DATA_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return PortalIdentity.from_dict(data)
        except TypeError as e:
            logger.error(f"Stored portal identity is malformed: {e}")
            return None

    def clear(self) -> None:
        self._store.remove_item(PORTAL_DATA_KEY)

    def has_identity(self) -> bool:
        identity = self.get()
        return bool(identity and (identity.mac or identity.ip))

    @property
    def mac(self) -> Optional[str]:
        identity = self.get()
        return identity.mac if identity else None

    @property
    def ip(self) -> Optional[str]:
        identity = self.get()
        return identity.ip if identity else None

    async def resolve(self, url_params: Optional[Mapping[str, Any]] = None) -> Optional[PortalIdentity]:
        """
        Identity for this visit: redirect parameters first, then what the
        session already holds, then backend auto-detection.
        """
        if url_params:
            captured = self.capture(url_params)
            if captured:
                return captured

        existing = self.get()
        if existing and existing.is_meaningful():
            return existing

        if self._detector is None:
            return None

        try:
            detected = await self._detector.detect_device()
        except Exception as e:
            logger.info(f"Device detection not available: {e}")
            return None

        if not detected or not (detected.get("mac") or detected.get("ip")):
            return None

        identity = PortalIdentity(
            mac=normalize_mac_address(detected.get("mac")) or None,
            ip=detected.get("ip"),
            device_id=detected.get("deviceId"),
            detection_method=detected.get("detectionMethod", "backend"),
        )
        self._save(identity)
        logger.info(f"Device info detected from backend: mac={identity.mac} ip={identity.ip}")
        return identity

    def _save(self, identity: PortalIdentity) -> None:
        write_json(self._store, PORTAL_DATA_KEY, identity.to_dict())
