"""
Storefront Data Models

Defines the data structures exchanged with the activation gateway.
The gateway speaks camelCase JSON; every model carries to_dict/from_dict
converters for that wire shape.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone


class PaymentStatus(str, Enum):
    """Server-side payment states"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Effective subscription states"""
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a gateway timestamp; naive values are taken as UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PackageOffer:
    """
    A prepaid access package from the catalog.

    Identified by key rather than database id: guest and authenticated
    flows both reference packages before any subscription exists.
    """
    key: str
    name: str
    price_kes: float
    duration_seconds: int
    speed_kbps: int = 0
    devices_allowed: int = 1
    points_required: int = 0
    points_earned: int = 0

    def is_free_trial(self) -> bool:
        return (
            self.price_kes == 0
            or "free-trial" in (self.key or "")
            or "free trial" in (self.name or "").lower()
        )

    @property
    def duration_hours(self) -> int:
        return round(self.duration_seconds / 3600)

    @property
    def speed_mbps(self) -> float:
        return round(self.speed_kbps / 1000, 1)

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'name': self.name,
            'priceKES': self.price_kes,
            'durationSeconds': self.duration_seconds,
            'speedKbps': self.speed_kbps,
            'devicesAllowed': self.devices_allowed,
            'pointsRequired': self.points_required,
            'pointsEarned': self.points_earned,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PackageOffer':
        return cls(
            key=data['key'],
            name=data.get('name', data['key']),
            price_kes=data.get('priceKES', 0),
            duration_seconds=int(data.get('durationSeconds', 0)),
            speed_kbps=int(data.get('speedKbps', 0)),
            devices_allowed=int(data.get('devicesAllowed', 1)),
            points_required=int(data.get('pointsRequired') or 0),
            points_earned=int(data.get('pointsEarned') or 0),
        )


@dataclass
class Payment:
    """
    Client-side snapshot of a server-owned payment.

    The client never writes a payment; it only records what the latest
    status check reported.
    """
    id: str
    status: PaymentStatus = PaymentStatus.PENDING
    phone: Optional[str] = None
    package_key: Optional[str] = None
    mac: Optional[str] = None
    ip: Optional[str] = None
    error_message: Optional[str] = None
    subscription_id: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in (PaymentStatus.SUCCESS, PaymentStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'status': self.status.value,
            'phone': self.phone,
            'packageKey': self.package_key,
            'mac': self.mac,
            'ip': self.ip,
            'errorMessage': self.error_message,
            'subscriptionId': self.subscription_id,
        }

    @classmethod
    def from_status_response(cls, payment_id: str, data: dict) -> 'Payment':
        """Build a snapshot from a check-status response body"""
        raw_status = str(data.get('status', '')).lower()
        try:
            status = PaymentStatus(raw_status)
        except ValueError:
            raise ValueError(f"Unknown payment status: {data.get('status')!r}")

        return cls(
            id=payment_id,
            status=status,
            phone=data.get('phone'),
            package_key=data.get('packageKey'),
            mac=data.get('mac'),
            ip=data.get('ip'),
            error_message=data.get('errorMessage') or data.get('ResultDesc'),
            subscription_id=data.get('subscriptionId'),
        )


@dataclass
class SubscriptionDevice:
    """A device attached to a subscription; id is the server's sub-document id"""
    mac: str
    label: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {'id': self.id, 'mac': self.mac, 'label': self.label}

    @classmethod
    def from_dict(cls, data: dict) -> 'SubscriptionDevice':
        device_id = data.get('id') or data.get('_id')
        return cls(
            mac=data.get('mac', ''),
            label=data.get('label'),
            id=str(device_id) if device_id else None,
        )


@dataclass
class Subscription:
    """
    Access grant created server-side by a payment, voucher, points spend or
    free trial.

    `status` is what the server last reported. The status to display is
    effective_status(), recomputed on every read because end_at can cross
    the current time without any server push.
    """
    id: str
    package_key: Optional[str]
    end_at: Optional[datetime]
    start_at: Optional[datetime] = None
    devices: List[SubscriptionDevice] = field(default_factory=list)
    devices_allowed: int = 1
    status: Optional[str] = None

    def effective_status(self, now: Optional[datetime] = None) -> SubscriptionStatus:
        now = now or datetime.now(timezone.utc)
        server_status = (self.status or "").lower()

        if server_status == SubscriptionStatus.CANCELLED.value:
            return SubscriptionStatus.CANCELLED
        if server_status == SubscriptionStatus.PENDING.value:
            return SubscriptionStatus.PENDING
        if self.end_at is not None and self.end_at <= now:
            return SubscriptionStatus.EXPIRED
        return SubscriptionStatus.ACTIVE

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.effective_status(now) == SubscriptionStatus.ACTIVE

    def seconds_remaining(self, now: Optional[datetime] = None) -> int:
        if self.end_at is None:
            return 0
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.end_at - now).total_seconds()))

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            'id': self.id,
            'packageKey': self.package_key,
            'devices': [d.to_dict() for d in self.devices],
            'devicesAllowed': self.devices_allowed,
            'startAt': _format_datetime(self.start_at),
            'endAt': _format_datetime(self.end_at),
            'status': self.status,
            'effectiveStatus': self.effective_status(now).value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Subscription':
        return cls(
            id=str(data.get('id') or data.get('_id')),
            package_key=data.get('packageKey'),
            start_at=_parse_datetime(data.get('startAt')),
            end_at=_parse_datetime(data.get('endAt')),
            devices=[SubscriptionDevice.from_dict(d) for d in data.get('devices') or []],
            devices_allowed=int(data.get('devicesAllowed', 1)),
            status=data.get('status'),
        )


@dataclass
class ReconnectOutcome:
    """Per-subscription result of a reconnect attempt"""
    success: bool
    package_name: Optional[str] = None
    message: Optional[str] = None
    technical_details: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'ReconnectOutcome':
        return cls(
            success=bool(data.get('success')),
            package_name=data.get('packageName'),
            message=data.get('message'),
            technical_details=data.get('technicalDetails'),
        )

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'packageName': self.package_name,
            'message': self.message,
            'technicalDetails': self.technical_details,
        }


@dataclass
class ReconnectResult:
    """Outcome of re-granting router access for a device's active subscriptions"""
    ok: bool
    message: str = ""
    results: List[ReconnectOutcome] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'ReconnectResult':
        return cls(
            ok=bool(data.get('ok')),
            message=data.get('message') or "",
            results=[ReconnectOutcome.from_dict(r) for r in data.get('results') or []],
        )

    def to_dict(self) -> dict:
        return {
            'ok': self.ok,
            'message': self.message,
            'results': [r.to_dict() for r in self.results],
        }


# Offline catalog shown when the gateway cannot be reached
FALLBACK_PACKAGES: List[PackageOffer] = [
    PackageOffer(
        key='free-trial-1d',
        name='Free Trial',
        price_kes=0,
        duration_seconds=86400,
        speed_kbps=2000,
        devices_allowed=1,
    ),
    PackageOffer(
        key='daily-100',
        name='Daily Package',
        price_kes=100,
        duration_seconds=86400,
        speed_kbps=5000,
        devices_allowed=2,
    ),
]


def deduplicate_free_trials(packages: List[PackageOffer]) -> List[PackageOffer]:
    """Keep only the first free-trial offer, followed by every paid offer"""
    free_trials = [p for p in packages if p.is_free_trial()]
    paid = [p for p in packages if not p.is_free_trial()]
    return free_trials[:1] + paid


def find_package(packages: List[PackageOffer], key: str) -> Optional[PackageOffer]:
    return next((p for p in packages if p.key == key), None)


def package_index(packages: List[PackageOffer]) -> Dict[str, PackageOffer]:
    return {p.key: p for p in packages}
