"""Storefront API schemas"""

from typing import List, Optional
from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    """Start an M-Pesa payment for a package"""
    phone: str
    package_key: str


class CancelCheckoutRequest(BaseModel):
    reset: bool = False  # Also forget the stored pending payment ("try again")


class ResumeCheckoutRequest(BaseModel):
    payment_id: Optional[str] = None  # Defaults to the stored pending payment


class VoucherRedeemRequest(BaseModel):
    code: str
    mac: Optional[str] = None  # Defaults to the captured portal identity
    ip: Optional[str] = None
    package_key: Optional[str] = None


class PointsUseRequest(BaseModel):
    package_key: str
    mac: Optional[str] = None
    ip: Optional[str] = None


class FreeTrialRequest(BaseModel):
    mac: Optional[str] = None


class ReconnectRequest(BaseModel):
    mac: Optional[str] = None
    ip: Optional[str] = None


class DeviceAddRequest(BaseModel):
    mac: Optional[str] = None  # Defaults to the captured portal identity
    label: Optional[str] = None


class DeviceUpdateRequest(BaseModel):
    label: str


class AuthSessionRequest(BaseModel):
    """Credential issued by the login/registration service"""
    token: str


class CheckoutStateResponse(BaseModel):
    state: str
    message: Optional[str] = None
    paymentId: Optional[str] = None
    payment: Optional[dict] = None
    pollCount: int = 0


class PortalResponse(BaseModel):
    identity: Optional[dict] = None
    pendingPaymentId: Optional[str] = None


class PackagesResponse(BaseModel):
    packages: List[dict]


class RedemptionResponse(BaseModel):
    success: bool
    result: dict


class AuthStateResponse(BaseModel):
    authenticated: bool
    checkout: CheckoutStateResponse


class ReconnectOutcomeResponse(BaseModel):
    success: bool
    packageName: Optional[str] = None
    message: Optional[str] = None
    technicalDetails: Optional[str] = None


class ReconnectResponse(BaseModel):
    ok: bool
    message: str = ""
    results: List[ReconnectOutcomeResponse] = []


class SubscriptionDeviceResponse(BaseModel):
    id: Optional[str] = None
    mac: str
    label: Optional[str] = None


class SubscriptionResponse(BaseModel):
    """Subscription with its effective status computed at response time"""
    id: str
    packageKey: Optional[str] = None
    devices: List[SubscriptionDeviceResponse] = []
    devicesAllowed: int = 1
    startAt: Optional[str] = None
    endAt: Optional[str] = None
    status: Optional[str] = None
    effectiveStatus: str


class DeviceChangeResponse(BaseModel):
    success: bool
    result: dict
