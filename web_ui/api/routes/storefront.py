"""
Storefront Routes - captive portal, packages, checkout, redemption and devices

Every route works on the caller's StorefrontSession, found through the
session cookie (a new one is issued on first contact).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from config import settings
from subscription.errors import (
    AuthenticationRequiredError,
    GatewayError,
    InputValidationError,
    StorefrontError,
    SubscriptionStateError,
)
from subscription.payment_machine import PaymentState
from utils.logger import logger
from web_ui.api.schemas.storefront_schemas import (
    AuthSessionRequest,
    AuthStateResponse,
    CancelCheckoutRequest,
    CheckoutRequest,
    CheckoutStateResponse,
    DeviceAddRequest,
    DeviceChangeResponse,
    DeviceUpdateRequest,
    FreeTrialRequest,
    PackagesResponse,
    PointsUseRequest,
    PortalResponse,
    ReconnectRequest,
    ReconnectResponse,
    RedemptionResponse,
    ResumeCheckoutRequest,
    SubscriptionResponse,
    VoucherRedeemRequest,
)
from web_ui.api.sessions import SessionRegistry, StorefrontSession

router = APIRouter()


# ========== Dependencies ==========

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_gateway(request: Request):
    return request.app.state.gateway


async def get_session(
    request: Request,
    response: Response,
    registry: SessionRegistry = Depends(get_registry),
) -> StorefrontSession:
    cookie_name = settings.SESSION_COOKIE_NAME
    session_id = request.cookies.get(cookie_name)
    session = registry.get_or_create(session_id)
    if session.session_id != session_id:
        response.set_cookie(cookie_name, session.session_id, httponly=True, samesite="lax")
    return session


async def find_session(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> Optional[StorefrontSession]:
    """Existing session for read-only routes; never creates one"""
    return registry.get(request.cookies.get(settings.SESSION_COOKIE_NAME))


def to_http_error(error: StorefrontError) -> HTTPException:
    """Map the storefront error taxonomy onto HTTP status codes"""
    if isinstance(error, InputValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=error.message)
    if isinstance(error, AuthenticationRequiredError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error.message)
    if isinstance(error, SubscriptionStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, GatewayError):
        code = error.status_code
        if code is None or not 400 <= code < 500:
            code = status.HTTP_502_BAD_GATEWAY
        return HTTPException(status_code=code, detail=error.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)


# ========== Portal & catalog ==========

@router.get("/portal", response_model=PortalResponse)
async def capture_portal(request: Request, session: StorefrontSession = Depends(get_session)):
    """
    Entry point of the hotspot redirect.

    Query parameters (mac, ip, chap-id, link-login, ...) are captured into
    the session; without them the stored identity or backend detection is
    used. The pending payment id, if any, is returned so the client can ask
    for it to be resumed.
    """
    identity = await session.identity.resolve(dict(request.query_params))
    return PortalResponse(
        identity=identity.to_dict() if identity else None,
        pendingPaymentId=session.pending.get(),
    )


@router.get("/packages", response_model=PackagesResponse)
async def list_packages(
    session: StorefrontSession = Depends(get_session),
    gateway=Depends(get_gateway),
):
    packages = await gateway.fetch_packages(max_retries=settings.CATALOG_MAX_RETRIES)
    session.catalog = packages
    return PackagesResponse(packages=[p.to_dict() for p in packages])


# ========== Checkout ==========

@router.post("/checkout", response_model=CheckoutStateResponse)
async def start_checkout(body: CheckoutRequest, session: StorefrontSession = Depends(get_session)):
    try:
        await session.reconciler.start_checkout(body.phone, body.package_key, packages=session.catalog)
    except StorefrontError as e:
        raise to_http_error(e)
    return session.reconciler.snapshot()


@router.get("/checkout/status", response_model=CheckoutStateResponse)
async def checkout_status(session: Optional[StorefrontSession] = Depends(find_session)):
    if session is None:
        return CheckoutStateResponse(state=PaymentState.IDLE.value)
    return session.reconciler.snapshot()


@router.post("/checkout/cancel", response_model=CheckoutStateResponse)
async def cancel_checkout(
    body: Optional[CancelCheckoutRequest] = None,
    session: StorefrontSession = Depends(get_session),
):
    body = body or CancelCheckoutRequest()
    if body.reset:
        session.reconciler.reset()
    else:
        session.reconciler.cancel()
    return session.reconciler.snapshot()


@router.post("/checkout/resume", response_model=CheckoutStateResponse)
async def resume_checkout(
    body: Optional[ResumeCheckoutRequest] = None,
    session: StorefrontSession = Depends(get_session),
):
    body = body or ResumeCheckoutRequest()
    machine = await session.reconciler.resume(body.payment_id)
    if machine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No pending payment")
    return session.reconciler.snapshot()


# ========== Immediate redemption ==========

@router.post("/vouchers/redeem", response_model=RedemptionResponse)
async def redeem_voucher(body: VoucherRedeemRequest, session: StorefrontSession = Depends(get_session)):
    try:
        result = await session.redemption.redeem(
            body.code,
            mac=body.mac or session.identity.mac,
            ip=body.ip or session.identity.ip,
            package_key=body.package_key,
        )
    except StorefrontError as e:
        raise to_http_error(e)
    return RedemptionResponse(success=True, result=result or {})


@router.post("/points/use", response_model=RedemptionResponse)
async def use_points(body: PointsUseRequest, session: StorefrontSession = Depends(get_session)):
    try:
        result = await session.redemption.use_points(
            body.package_key,
            mac=body.mac or session.identity.mac,
            ip=body.ip or session.identity.ip,
        )
    except StorefrontError as e:
        raise to_http_error(e)
    return RedemptionResponse(success=True, result=result or {})


@router.post("/free-trial", response_model=RedemptionResponse)
async def claim_free_trial(
    body: Optional[FreeTrialRequest] = None,
    session: StorefrontSession = Depends(get_session),
):
    body = body or FreeTrialRequest()
    try:
        result = await session.redemption.claim_free_trial(body.mac or session.identity.mac)
    except StorefrontError as e:
        raise to_http_error(e)
    return RedemptionResponse(success=True, result=result or {})


@router.post("/reconnect", response_model=ReconnectResponse)
async def reconnect_device(
    body: Optional[ReconnectRequest] = None,
    session: StorefrontSession = Depends(get_session),
):
    body = body or ReconnectRequest()
    try:
        result = await session.redemption.reconnect(
            body.mac or session.identity.mac,
            body.ip or session.identity.ip,
        )
    except StorefrontError as e:
        raise to_http_error(e)
    return result.to_dict()


# ========== Account ==========

@router.get("/subscriptions", response_model=List[SubscriptionResponse])
async def list_subscriptions(
    session: StorefrontSession = Depends(get_session),
    gateway=Depends(get_gateway),
):
    if not session.auth.is_authenticated:
        raise to_http_error(AuthenticationRequiredError())
    try:
        subscriptions = await gateway.get_subscriptions(session.auth.token)
    except StorefrontError as e:
        raise to_http_error(e)
    return [s.to_dict() for s in subscriptions]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(subscription_id: str, session: StorefrontSession = Depends(get_session)):
    try:
        subscription = await session.devices.get_subscription(subscription_id)
    except StorefrontError as e:
        raise to_http_error(e)
    return subscription.to_dict()


# ========== Subscription devices ==========

@router.post("/subscriptions/{subscription_id}/devices", response_model=DeviceChangeResponse)
async def add_device(
    subscription_id: str,
    body: Optional[DeviceAddRequest] = None,
    session: StorefrontSession = Depends(get_session),
):
    """
    Attach a device to one of the user's subscriptions. Without a MAC in the
    body the device captured from the portal redirect is used.
    """
    body = body or DeviceAddRequest()
    try:
        result = await session.devices.add_device(
            subscription_id,
            body.mac or session.identity.mac,
            body.label,
        )
    except StorefrontError as e:
        raise to_http_error(e)
    return DeviceChangeResponse(success=True, result=result or {})


@router.put("/subscriptions/{subscription_id}/devices/{device_id}", response_model=DeviceChangeResponse)
async def update_device(
    subscription_id: str,
    device_id: str,
    body: DeviceUpdateRequest,
    session: StorefrontSession = Depends(get_session),
):
    try:
        result = await session.devices.update_device(subscription_id, device_id, body.label)
    except StorefrontError as e:
        raise to_http_error(e)
    return DeviceChangeResponse(success=True, result=result or {})


@router.delete("/subscriptions/{subscription_id}/devices/{device_id}", response_model=DeviceChangeResponse)
async def remove_device(
    subscription_id: str,
    device_id: str,
    session: StorefrontSession = Depends(get_session),
):
    try:
        result = await session.devices.remove_device(subscription_id, device_id)
    except StorefrontError as e:
        raise to_http_error(e)
    return DeviceChangeResponse(success=True, result=result or {})


# ========== Sign-in ==========

@router.post("/auth/session", response_model=AuthStateResponse)
async def sign_in(body: AuthSessionRequest, session: StorefrontSession = Depends(get_session)):
    """
    Attach the credential from the login/registration flow to this session.
    A guest payment that succeeded earlier is linked as part of this call.
    """
    if not body.token:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Token is required")
    await session.auth.sign_in(body.token)
    logger.info(f"Session {session.session_id[:8]}... signed in")
    return AuthStateResponse(authenticated=True, checkout=session.reconciler.snapshot())


@router.delete("/auth/session", response_model=AuthStateResponse)
async def sign_out(session: StorefrontSession = Depends(get_session)):
    await session.auth.sign_out()
    return AuthStateResponse(authenticated=False, checkout=session.reconciler.snapshot())
