"""
Receipt Validator
=================

Adapter over the store clients. Whatever the store, the caller gets a
``ValidationResult`` with the same shape:

- ``service``: ``apple`` or ``google``
- ``purchase_data``: purchase items with camelCase keys, most recent first
- ``sandbox`` / ``latest_receipt``: Apple only
- ``acknowledgement_state``: Google only (0 = not yet acknowledged)
- ``raw``: the untouched store payload, persisted for audit

Every item carries a ``cancelled`` flag computed here so the normalizer
never has to know store-specific cancellation rules.
"""

import logging
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from iap.core.errors import ReceiptValidationError
from iap.models.subscription import Platform
from iap.services.app_store import AppStoreClient
from iap.services.google_play import GooglePlayClient

logger = logging.getLogger(__name__)

RawReceipt = Union[str, dict[str, Any]]

# Apple snake_case field -> purchase item key; values are epoch-ms strings
_APPLE_MS_FIELDS = {
    "purchase_date_ms": "purchaseDateMs",
    "original_purchase_date_ms": "originalPurchaseDateMs",
    "expires_date_ms": "expiresDateMs",
    "cancellation_date_ms": "cancellationDateMs",
}


class ValidationResult(BaseModel):
    """Store-agnostic validation outcome."""

    service: Literal["apple", "google"]
    purchase_data: list[dict[str, Any]] = Field(default_factory=list)
    sandbox: bool = False
    latest_receipt: Optional[str] = None
    acknowledgement_state: Optional[int] = None
    raw: dict[str, Any] = Field(default_factory=dict)


def _apple_purchase_items(body: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Convert Apple receipt entries into purchase items.

    ``latest_receipt_info`` holds renewals when a shared secret is sent;
    ``receipt.in_app`` is the fallback for receipts without it.
    """
    entries = body.get("latest_receipt_info") or body.get("receipt", {}).get("in_app", [])
    items = []
    for entry in entries:
        item: dict[str, Any] = {
            "productId": entry.get("product_id"),
            "transactionId": entry.get("transaction_id"),
            "originalTransactionId": entry.get("original_transaction_id"),
        }
        for source, target in _APPLE_MS_FIELDS.items():
            value = entry.get(source)
            if value is not None:
                try:
                    item[target] = int(value)
                except (TypeError, ValueError) as exc:
                    raise ReceiptValidationError(
                        f"Apple returned non-numeric {source}: {value!r}"
                    ) from exc
        item["cancelled"] = "cancellationDateMs" in item
        items.append(item)

    items.sort(key=lambda i: i.get("expiresDateMs") or 0, reverse=True)
    return items


def _google_purchase_item(body: dict[str, Any], receipt: dict[str, Any]) -> dict[str, Any]:
    """Build the single purchase item for a Google subscription token."""
    item = dict(body)
    item["productId"] = receipt["productId"]
    item["purchaseToken"] = receipt["purchaseToken"]
    # The purchase token stays the same across renewals, unlike orderId
    item["transactionId"] = receipt["purchaseToken"]
    item["cancelled"] = body.get("cancelReason") is not None
    return item


class ReceiptValidator:
    """Validates raw receipts against the owning store."""

    def __init__(self, app_store: AppStoreClient, google_play: GooglePlayClient):
        self.app_store = app_store
        self.google_play = google_play

    async def validate(self, platform: str, receipt: RawReceipt) -> ValidationResult:
        """
        Validate a receipt for the given platform.

        Raises:
            ReceiptValidationError: Store rejection, transport failure or a
                receipt of the wrong shape for the platform.
        """
        if platform == Platform.IOS.value:
            return await self._validate_apple(receipt)
        if platform == Platform.ANDROID.value:
            return await self._validate_google(receipt)
        raise ReceiptValidationError(f"Unsupported platform: {platform!r}")

    async def _validate_apple(self, receipt: RawReceipt) -> ValidationResult:
        if not isinstance(receipt, str):
            raise ReceiptValidationError("iOS receipt must be a base64 string")

        body, sandbox = await self.app_store.verify_receipt(receipt)
        return ValidationResult(
            service="apple",
            purchase_data=_apple_purchase_items(body),
            sandbox=sandbox,
            latest_receipt=body.get("latest_receipt") or receipt,
            raw=body,
        )

    async def _validate_google(self, receipt: RawReceipt) -> ValidationResult:
        if not isinstance(receipt, dict):
            raise ReceiptValidationError("Android receipt must be a token descriptor")

        missing = [
            key for key in ("packageName", "productId", "purchaseToken")
            if not receipt.get(key)
        ]
        if missing:
            raise ReceiptValidationError(
                f"Android receipt missing {', '.join(missing)}"
            )

        body = await self.google_play.get_subscription(
            receipt["packageName"],
            receipt["productId"],
            receipt["purchaseToken"],
        )
        return ValidationResult(
            service="google",
            purchase_data=[_google_purchase_item(body, receipt)],
            acknowledgement_state=body.get("acknowledgementState"),
            raw=body,
        )
