"""
Common Dependencies
===================

Service wiring and FastAPI dependencies.

External-service objects (store clients, subscription store, processor,
reconciliation worker) are constructed once by ``build_services`` during
startup and kept on ``app.state.services``. Route dependencies read them
from there, so tests can install fakes without patching modules.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Optional

import newrelic.agent
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from iap.config import Settings, settings
from iap.core.errors import AuthenticationError, ErrorCodes
from iap.core.security import decode_token
from iap.services.app_store import AppStoreClient
from iap.services.google_play import GooglePlayClient
from iap.services.purchase_processor import PurchaseProcessor
from iap.services.receipt_validator import ReceiptValidator
from iap.services.reconciliation import ReconciliationScheduler
from iap.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

# Security scheme for JWT authentication
security = HTTPBearer(auto_error=False)


# =============================================================================
# Service container
# =============================================================================

@dataclass
class Services:
    """Process-wide collaborators, built once at startup."""

    settings: Settings
    store: SubscriptionStore
    processor: PurchaseProcessor
    reconciliation: ReconciliationScheduler


def build_services(
    app_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    """
    Construct services in dependency order:
    store clients -> validator -> store -> processor -> reconciliation.
    """
    app_store = AppStoreClient(
        shared_secret=app_settings.APPLE_SHARED_SECRET,
        exclude_old_transactions=app_settings.APPLE_EXCLUDE_OLD_TRANSACTIONS,
        test_mode=app_settings.IAP_TEST_MODE,
        timeout=app_settings.VALIDATOR_HTTP_TIMEOUT_SECONDS,
    )
    google_play = GooglePlayClient(
        client_email=app_settings.GOOGLE_SERVICE_ACCOUNT_EMAIL,
        private_key=app_settings.google_private_key,
        timeout=app_settings.VALIDATOR_HTTP_TIMEOUT_SECONDS,
    )
    validator = ReceiptValidator(app_store=app_store, google_play=google_play)
    store = SubscriptionStore(session_factory)
    processor = PurchaseProcessor(
        validator=validator,
        store=store,
        acknowledger=google_play,
        android_package_name=app_settings.ANDROID_PACKAGE_NAME,
    )
    reconciliation = ReconciliationScheduler(
        store=store,
        processor=processor,
        interval=app_settings.reconciliation_interval_seconds,
        item_timeout=app_settings.RECONCILIATION_ITEM_TIMEOUT_SECONDS,
        run_on_start=app_settings.RECONCILIATION_RUN_ON_STARTUP,
    )
    return Services(
        settings=app_settings,
        store=store,
        processor=processor,
        reconciliation=reconciliation,
    )


def get_services(request: Request) -> Services:
    """Services built during startup."""
    services: Optional[Services] = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized; application lifespan did not run")
    return services


AppServices = Annotated[Services, Depends(get_services)]


# =============================================================================
# Authentication
# =============================================================================

async def get_current_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """
    Resolve the caller's user id from the bearer token ``sub`` claim.

    Raises 401 if not authenticated or token is invalid.
    In development with DEV_AUTH_DISABLED=True, returns DEV_USER_ID.
    """
    if settings.auth_disabled:
        newrelic.agent.add_custom_attribute("user_id", settings.DEV_USER_ID)
        return settings.DEV_USER_ID

    if credentials is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_TOKEN_EXPIRED,
            message="Not authenticated",
        )

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError(
            code=ErrorCodes.AUTH_TOKEN_EXPIRED,
            message="Invalid or expired token",
        )

    user_id = str(payload["sub"])
    newrelic.agent.add_custom_attribute("user_id", user_id)
    return user_id


# Type alias for authenticated user dependency
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
