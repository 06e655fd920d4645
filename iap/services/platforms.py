"""
Platform Handlers
=================

Per-store capabilities used by the purchase processor:

- ``normalize``: map a ValidationResult onto a NormalizedPurchase
- ``post_process``: side effects that must run after the record is saved

Only the first purchase item of a validation result is reconciled.
Receipts carrying several subscriptions are not supported.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from iap.core.errors import (
    AcknowledgementError,
    MalformedPurchaseError,
    ReceiptValidationError,
)
from iap.models.subscription import Platform, StoreEnvironment
from iap.services.receipt_validator import RawReceipt, ValidationResult
from iap.utils.helpers import from_epoch_ms

logger = logging.getLogger(__name__)

# Google Play acknowledgementState value for purchases still awaiting it
ACK_STATE_PENDING = 0


@dataclass(frozen=True)
class NormalizedPurchase:
    """Store-agnostic purchase extracted from a validation result."""

    product_id: str
    original_transaction_id: str
    start_date: datetime
    end_date: datetime
    is_cancelled: bool
    environment: str
    receipt: str
    validation_response: dict[str, Any]


class Acknowledger(Protocol):
    async def acknowledge_subscription(
        self, package_name: str, subscription_id: str, token: str
    ) -> None: ...


def _first_item(result: ValidationResult) -> dict[str, Any]:
    if not result.purchase_data:
        raise MalformedPurchaseError("Validation result contains no purchase items")
    return result.purchase_data[0]


def _required(item: dict[str, Any], key: str) -> Any:
    value = item.get(key)
    if value is None or value == "":
        raise MalformedPurchaseError(f"Purchase item missing {key}")
    return value


def _instant(item: dict[str, Any], key: str) -> datetime:
    value = _required(item, key)
    try:
        return from_epoch_ms(value)
    except (TypeError, ValueError) as exc:
        raise MalformedPurchaseError(f"Purchase item {key} is not epoch millis: {value!r}") from exc


class PlatformHandler(Protocol):
    platform: Platform

    def normalize(self, result: ValidationResult, receipt: RawReceipt) -> NormalizedPurchase: ...

    async def post_process(
        self,
        result: ValidationResult,
        purchase: NormalizedPurchase,
        receipt: RawReceipt,
    ) -> None: ...


class IOSPlatform:
    """App Store field mapping. No post-processing is required."""

    platform = Platform.IOS

    def normalize(self, result: ValidationResult, receipt: RawReceipt) -> NormalizedPurchase:
        item = _first_item(result)
        latest_receipt = result.latest_receipt
        if not latest_receipt:
            raise MalformedPurchaseError("Apple response has no latest_receipt")

        environment = (
            StoreEnvironment.SANDBOX if result.sandbox else StoreEnvironment.PRODUCTION
        )
        return NormalizedPurchase(
            product_id=_required(item, "productId"),
            original_transaction_id=str(_required(item, "originalTransactionId")),
            start_date=_instant(item, "originalPurchaseDateMs"),
            end_date=_instant(item, "expiresDateMs"),
            is_cancelled=bool(item.get("cancelled", False)),
            environment=environment.value,
            receipt=latest_receipt,
            validation_response=result.raw,
        )

    async def post_process(
        self,
        result: ValidationResult,
        purchase: NormalizedPurchase,
        receipt: RawReceipt,
    ) -> None:
        return None


class AndroidPlatform:
    """Google Play field mapping and purchase acknowledgement."""

    platform = Platform.ANDROID

    def __init__(self, acknowledger: Acknowledger, package_name: str):
        self.acknowledger = acknowledger
        self.package_name = package_name

    def normalize(self, result: ValidationResult, receipt: RawReceipt) -> NormalizedPurchase:
        item = _first_item(result)
        return NormalizedPurchase(
            product_id=_required(item, "productId"),
            original_transaction_id=str(_required(item, "transactionId")),
            start_date=_instant(item, "startTimeMillis"),
            end_date=_instant(item, "expiryTimeMillis"),
            is_cancelled=bool(item.get("cancelled", False)),
            # Google does not say whether a purchase came from a test account
            environment=StoreEnvironment.UNKNOWN.value,
            receipt=json.dumps(receipt),
            validation_response=result.raw,
        )

    async def post_process(
        self,
        result: ValidationResult,
        purchase: NormalizedPurchase,
        receipt: RawReceipt,
    ) -> None:
        """
        Acknowledge the purchase if Google still reports it as pending.

        Unacknowledged purchases are refunded after three days. A failed
        call is logged and left for the next reconciliation sweep, which
        sees the purchase as pending again.
        """
        if result.acknowledgement_state != ACK_STATE_PENDING:
            return

        package_name = self.package_name or receipt["packageName"]
        try:
            await self.acknowledger.acknowledge_subscription(
                package_name,
                purchase.product_id,
                receipt["purchaseToken"],
            )
        except AcknowledgementError as exc:
            logger.error(
                "Acknowledgement failed for %s (orig_tx_id=%s): %s",
                purchase.product_id,
                purchase.original_transaction_id,
                exc,
            )


def get_platform_handler(
    platform: str,
    acknowledger: Acknowledger,
    package_name: str,
) -> PlatformHandler:
    """Select the handler for a platform tag."""
    if platform == Platform.IOS.value:
        return IOSPlatform()
    if platform == Platform.ANDROID.value:
        return AndroidPlatform(acknowledger, package_name)
    raise ReceiptValidationError(f"Unsupported platform: {platform!r}")
