"""
Hotspot Storefront - Main FastAPI Application

Serves the captive-portal storefront:
- Portal identity capture from the hotspot redirect
- Package catalog, M-Pesa checkout with status reconciliation
- Voucher, loyalty points, free trial and reconnect redemption
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from subscription.gateway import ActivationGateway
from subscription.payment_machine import PollingPolicy
from subscription.scheduler import AsyncioScheduler
from utils.logger import logger, setup_logger
from web_ui.api.sessions import SessionRegistry

# Server configuration from environment
STOREFRONT_HOST = os.getenv("STOREFRONT_HOST", "localhost")
STOREFRONT_PORT = int(os.getenv("STOREFRONT_PORT", "8000"))

# Package loggers share the application handler
for _name in ("portal", "subscription", "web_ui"):
    setup_logger(_name, settings.LOG_LEVEL)


def create_app(
    gateway: Optional[ActivationGateway] = None,
    scheduler=None,
    storage_dir: Optional[str] = None,
    policy: Optional[PollingPolicy] = None,
) -> FastAPI:
    """
    Build the storefront application.

    Tests pass a gateway on an httpx.MockTransport, a ManualScheduler and
    a temporary storage directory; production uses the settings.
    """
    gateway = gateway or ActivationGateway.from_settings(settings)
    scheduler = scheduler or AsyncioScheduler()
    use_default_storage = storage_dir is None
    storage_dir = storage_dir or settings.PENDING_PAYMENTS_DIR

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown events"""
        if use_default_storage:
            settings.create_directories()
        logger.info(f"Hotspot Storefront on http://{STOREFRONT_HOST}:{STOREFRONT_PORT}")
        logger.info(f"Activation gateway: {gateway.base_url}")
        yield
        app.state.sessions.close_all()
        await gateway.aclose()
        logger.info("Hotspot Storefront shutting down")

    app = FastAPI(
        title="Hotspot Storefront API",
        description="Captive portal storefront: packages, M-Pesa checkout and vouchers",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.state.gateway = gateway
    app.state.sessions = SessionRegistry(
        gateway,
        scheduler,
        storage_dir=storage_dir,
        policy=policy or PollingPolicy.from_settings(settings),
        max_sessions=settings.MAX_SESSIONS,
        idle_timeout=settings.SESSION_IDLE_TIMEOUT_SECONDS,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Origin", "X-Requested-With"],
    )

    from web_ui.api.routes import storefront
    app.include_router(storefront.router, prefix="/api/v1/storefront", tags=["Storefront"])

    @app.get("/")
    async def root():
        """API root endpoint"""
        return {
            "name": "Hotspot Storefront API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "sessions": len(app.state.sessions)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=STOREFRONT_PORT)
