"""
Shared Test Fixtures
====================

SQLite (aiosqlite) stands in for Postgres; store clients are replaced
by in-memory fakes so no test talks to Apple or Google.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine

from iap.config import settings
from iap.core.errors import AcknowledgementError, ReceiptValidationError
from iap.db.base import Base
from iap.db.session import create_session_factory
from iap.dependencies import Services
from iap.main import app
from iap.services.purchase_processor import PurchaseProcessor
from iap.services.receipt_validator import ValidationResult
from iap.services.reconciliation import ReconciliationScheduler
from iap.services.subscription_store import SubscriptionStore, SubscriptionUpsert
from iap.utils.helpers import to_epoch_ms

USER_ID = "user-1"
PACKAGE_NAME = "com.example.app"


def ms(dt: datetime) -> str:
    """Epoch millis as the decimal string the stores send."""
    return str(to_epoch_ms(dt))


def access_token(user_id: str, expires_in: timedelta = timedelta(hours=1), **claims) -> str:
    """Access token as issued by the account service."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "type": "access", "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeValidator:
    """Returns queued ValidationResults keyed by receipt, or raises."""

    def __init__(self):
        self.results: dict[str, Any] = {}
        self.calls: list[tuple[str, Any]] = []

    @staticmethod
    def key(receipt: Any) -> str:
        if isinstance(receipt, dict):
            return receipt["purchaseToken"]
        return receipt

    def set(self, receipt_key: str, result: Any) -> None:
        self.results[receipt_key] = result

    async def validate(self, platform: str, receipt: Any) -> ValidationResult:
        self.calls.append((platform, receipt))
        result = self.results.get(self.key(receipt))
        if result is None:
            raise ReceiptValidationError(f"Unknown receipt {receipt!r}")
        if isinstance(result, Exception):
            raise result
        return result


class FakeAcknowledger:
    def __init__(self, error: Optional[Exception] = None):
        self.calls: list[tuple[str, str, str]] = []
        self.error = error

    async def acknowledge_subscription(
        self, package_name: str, subscription_id: str, token: str
    ) -> None:
        self.calls.append((package_name, subscription_id, token))
        if self.error is not None:
            raise self.error


def apple_result(
    *,
    orig_tx_id: str = "1000000001",
    product_id: str = "premium_monthly",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cancelled: bool = False,
    sandbox: bool = False,
    latest_receipt: str = "latest-ios-receipt",
) -> ValidationResult:
    now = datetime.now(timezone.utc)
    start = start or now - timedelta(days=1)
    end = end or now + timedelta(days=29)
    return ValidationResult(
        service="apple",
        purchase_data=[{
            "productId": product_id,
            "transactionId": orig_tx_id + "9",
            "originalTransactionId": orig_tx_id,
            "originalPurchaseDateMs": ms(start),
            "expiresDateMs": ms(end),
            "cancelled": cancelled,
        }],
        sandbox=sandbox,
        latest_receipt=latest_receipt,
        raw={"status": 0},
    )


def google_result(
    *,
    token: str = "token-1",
    product_id: str = "premium_monthly",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cancelled: bool = False,
    acknowledgement_state: int = 0,
) -> ValidationResult:
    now = datetime.now(timezone.utc)
    start = start or now - timedelta(days=1)
    end = end or now + timedelta(days=29)
    return ValidationResult(
        service="google",
        purchase_data=[{
            "productId": product_id,
            "purchaseToken": token,
            "transactionId": token,
            "startTimeMillis": ms(start),
            "expiryTimeMillis": ms(end),
            "cancelled": cancelled,
        }],
        acknowledgement_state=acknowledgement_state,
        raw={"kind": "androidpublisher#subscriptionPurchase"},
    )


def android_receipt(token: str = "token-1", product_id: str = "premium_monthly") -> dict:
    return {
        "packageName": PACKAGE_NAME,
        "productId": product_id,
        "purchaseToken": token,
        "subscription": True,
    }


def upsert_record(**overrides) -> SubscriptionUpsert:
    now = datetime.now(timezone.utc)
    values = dict(
        app="ios",
        environment="production",
        user_id=USER_ID,
        orig_tx_id="1000000001",
        validation_response={"status": 0},
        latest_receipt="ios-receipt",
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=29),
        product_id="premium_monthly",
        is_cancelled=False,
    )
    values.update(overrides)
    return SubscriptionUpsert(**values)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'iap.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> SubscriptionStore:
    return SubscriptionStore(session_factory)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def acknowledger() -> FakeAcknowledger:
    return FakeAcknowledger()


@pytest.fixture
def processor(validator, store, acknowledger) -> PurchaseProcessor:
    return PurchaseProcessor(
        validator=validator,
        store=store,
        acknowledger=acknowledger,
        android_package_name=PACKAGE_NAME,
    )


@pytest.fixture
def failing_acknowledger() -> FakeAcknowledger:
    return FakeAcknowledger(error=AcknowledgementError("HTTP 500"))


@pytest_asyncio.fixture
async def client(store, validator, acknowledger, processor):
    """HTTP client against the app with fake services installed."""
    app.state.services = Services(
        settings=settings.model_copy(update={"ANDROID_PACKAGE_NAME": PACKAGE_NAME}),
        store=store,
        processor=processor,
        reconciliation=ReconciliationScheduler(store=store, processor=processor),
    )
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.services


@pytest.fixture
def auth_headers() -> dict[str, str]:
    token = access_token(USER_ID)
    return {"Authorization": f"Bearer {token}"}
