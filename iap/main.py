"""
IAP Subscription Service - Main Application
===========================================

FastAPI application entry point with middleware configuration,
service wiring and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from iap.api.v1 import iap
from iap.config import settings
from iap.core.errors import setup_exception_handlers
from iap.db.session import close_db, create_engine, create_session_factory, init_db
from iap.dependencies import build_services

logger = logging.getLogger(__name__)


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that enriches every New Relic transaction with
    custom attributes for filtering and alerting.

    Raw ASGI keeps the route handler in the same task, so New Relic's
    contextvars-based span propagation keeps database and httpx spans.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # default until we capture the real one

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round((time.perf_counter() - start) * 1000, 2)),
                    ("environment", settings.ENVIRONMENT),
                ])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup order: database engine -> services -> reconciliation worker.
    Shutdown runs in reverse: the worker finishes its in-flight sweep
    before the engine is disposed.
    """
    logger.info("Starting IAP subscription service...")

    if settings.auth_disabled:
        logger.warning(
            "Authentication is DISABLED (DEV_AUTH_DISABLED=true); "
            "all requests use user %s",
            settings.DEV_USER_ID,
        )

    engine = create_engine(settings)
    await init_db(engine)

    services = build_services(settings, create_session_factory(engine))
    app.state.services = services

    if settings.RECONCILIATION_ENABLED:
        await services.reconciliation.start()

    yield

    logger.info("Shutting down IAP subscription service...")
    await services.reconciliation.stop()
    await close_db(engine)


# Create FastAPI application
app = FastAPI(
    title="IAP Subscription API",
    description="""
## In-App Purchase Subscription Service

Validates App Store and Google Play receipts, keeps subscription state
in sync with the stores and answers entitlement queries.

### Background jobs
- Daily re-validation of all active subscriptions
- Google Play purchase acknowledgement
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(NewRelicTransactionMiddleware)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "IAP Subscription API",
        "version": "1.0.0",
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

app.include_router(iap.router, prefix="/api/v1/iap", tags=["In-App Purchases"])
