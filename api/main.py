"""
Marketplace Commerce API - Main Application.

FastAPI application with CORS enabled for frontend communication.

The lifespan builds the Supabase client, the document store, the payment
gateways and every service once per process. Tests pass a ready-made
CommerceServices to create_app() instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.dependencies import CommerceServices, build_commerce_services
from api.errors import install_error_handlers
from api.routers import cart, orders, payments, tracking, wallet
from repositories.client import create_supabase_client, load_settings
from repositories.document_store import SupabaseDocumentStore
from services.payment_gateway import build_gateway_registry

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is not None:
        yield
        return

    settings = load_settings()
    configure_logging(settings.log_level)

    client = await create_supabase_client(settings)
    gateways = build_gateway_registry(
        settings.gcash_gateway_url,
        settings.paypal_gateway_url,
        settings.payment_gateway_api_key,
        settings.payment_timeout_seconds,
    )
    app.state.webhook_token = settings.payment_gateway_api_key
    app.state.services = build_commerce_services(
        SupabaseDocumentStore(client),
        gateways,
        wallet_max_retries=settings.wallet_max_retries,
        checkout_lock_ttl_seconds=settings.checkout_lock_ttl_seconds,
        payment_timeout=settings.payment_timeout_seconds,
    )
    logger.info("Commerce API %s started", __version__)
    try:
        yield
    finally:
        await gateways.aclose()
        app.state.services = None


def create_app(services: Optional[CommerceServices] = None, webhook_token: Optional[str] = None) -> FastAPI:
    app = FastAPI(
        title="Marketplace Commerce API",
        description="Cart, wallet, checkout and order tracking for the supplies marketplace",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=_lifespan,
    )
    app.state.services = services
    app.state.webhook_token = webhook_token

    # TODO: Restrict origins once the storefront domain is fixed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "marketplace-commerce-api",
        }

    @app.get("/", tags=["Root"])
    def root():
        return {
            "message": "Marketplace Commerce API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(cart.router, prefix="/api/v1", tags=["Cart"])
    app.include_router(wallet.router, prefix="/api/v1", tags=["Wallet"])
    app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
    app.include_router(tracking.router, prefix="/api/v1", tags=["Tracking"])
    app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
    return app


app = create_app()
