"""Storefront FastAPI application.

Web server that processes commands synchronously via HTTP. Every request
runs inside the storefront domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → memory providers, sync event processing
#   - "production" → PostgreSQL, async event processing
import os
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.errors import register_storefront_handlers
from storefront.domain import storefront
from storefront.gateway import set_gateway
from storefront.utils.logging import add_context, clear_context, configure_logging

configure_logging()
storefront.init()

logger = structlog.get_logger(__name__)


def _install_gateway() -> None:
    """Use Stripe when keys are configured; otherwise keep the fake gateway."""
    api_key = os.getenv("STRIPE_SECRET_KEY")
    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if api_key and webhook_secret:
        from storefront.gateway.stripe_adapter import StripeGateway

        set_gateway(StripeGateway(api_key=api_key, webhook_secret=webhook_secret))
        logger.info("Stripe payment gateway enabled")
    else:
        logger.info("Using fake payment gateway")


_install_gateway()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Storefront API",
    description="Order lifecycle, inventory reservations and payment reconciliation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the storefront domain context and bind request details to the logs."""
    add_context(
        method=request.method,
        path=request.url.path,
        request_id=request.headers.get("X-Request-ID") or uuid4().hex,
    )
    try:
        with storefront.domain_context():
            return await call_next(request)
    finally:
        clear_context()


register_storefront_handlers(app)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from storefront.api import (  # noqa: E402
    admin_router,
    basket_router,
    download_router,
    inventory_router,
    order_router,
    payment_router,
)

app.include_router(basket_router)
app.include_router(order_router)
app.include_router(admin_router)
app.include_router(payment_router)
app.include_router(inventory_router)
app.include_router(download_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": {"name": storefront.name}})
