"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import error_handler_middleware
from src.api.middleware.latency_logging import latency_logging_middleware
from src.api.middleware.request_size import request_size_limit_middleware
from src.api.routes import checkout, downloads, health, webhooks
from src.core.catalog import get_catalog
from src.core.config import Settings, get_settings
from src.core.rate_limiter import init_rate_limiter, shutdown_rate_limiter
from src.core.stripe import configure_stripe
from src.services.fulfillment_service import init_fulfillment_queue, shutdown_fulfillment_queue

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start and stop process-wide resources.

    The catalog is loaded first so a missing or malformed catalog stops
    startup instead of failing the first checkout.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    catalog = get_catalog()
    logger.info("Catalog ready: %d products, %d digital", len(catalog), len(catalog.digital_ids))

    configure_stripe()
    await init_rate_limiter()
    await init_fulfillment_queue()
    logger.info("Stripe, download rate limiter and fulfillment worker ready")

    yield

    await shutdown_fulfillment_queue()
    await shutdown_rate_limiter()
    logger.info("Stopped %s", settings.app_name)


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    # Starlette runs the last-added middleware first: size limit, then
    # latency logging, then the error handler around the routes.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_size_limit_middleware)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Routes are mounted at the root: the storefront posts to
    ``/create-payment-session``, Stripe to ``/webhook/provider`` and
    customers follow ``/download/<token>`` links from their email.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Storefront Orders API",
        description="Stripe checkout, spreadsheet order ledger, invoices and one-time ebook downloads",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    _add_middleware(app, settings)

    for module in (health, checkout, webhooks, downloads):
        app.include_router(module.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
