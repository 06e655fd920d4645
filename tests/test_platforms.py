"""
Platform Handler Tests
======================

Field mapping from validator output to the stored purchase, and the
Android acknowledgement rules.
"""

import json
from datetime import datetime, timezone

import pytest

from iap.core.errors import MalformedPurchaseError, ReceiptValidationError
from iap.services.platforms import AndroidPlatform, IOSPlatform, get_platform_handler
from iap.services.receipt_validator import ValidationResult

from conftest import PACKAGE_NAME, FakeAcknowledger, android_receipt, apple_result, google_result


def _android_result(**item_overrides) -> ValidationResult:
    item = {
        "productId": "premium_monthly",
        "transactionId": "token-1",
        "startTimeMillis": "1000",
        "expiryTimeMillis": "2000",
        "cancelled": False,
    }
    item.update(item_overrides)
    return ValidationResult(service="google", purchase_data=[item], acknowledgement_state=1)


class TestAndroidNormalize:
    def test_epoch_strings(self):
        purchase = AndroidPlatform(FakeAcknowledger(), PACKAGE_NAME).normalize(
            _android_result(), android_receipt()
        )

        assert purchase.original_transaction_id == "token-1"
        assert purchase.start_date == datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        assert purchase.end_date == datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc)
        assert purchase.environment == ""
        assert json.loads(purchase.receipt) == android_receipt()

    def test_missing_expiry(self):
        result = _android_result(expiryTimeMillis=None)
        with pytest.raises(MalformedPurchaseError):
            AndroidPlatform(FakeAcknowledger(), PACKAGE_NAME).normalize(result, android_receipt())

    def test_non_numeric_start(self):
        result = _android_result(startTimeMillis="soon")
        with pytest.raises(MalformedPurchaseError):
            AndroidPlatform(FakeAcknowledger(), PACKAGE_NAME).normalize(result, android_receipt())

    def test_no_items(self):
        result = ValidationResult(service="google", purchase_data=[])
        with pytest.raises(MalformedPurchaseError):
            AndroidPlatform(FakeAcknowledger(), PACKAGE_NAME).normalize(result, android_receipt())


class TestIOSNormalize:
    def test_maps_original_transaction(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2026, 2, 1, tzinfo=timezone.utc)
        result = apple_result(orig_tx_id="42", start=start, end=end, sandbox=True)

        purchase = IOSPlatform().normalize(result, "client-receipt")

        assert purchase.original_transaction_id == "42"
        assert purchase.start_date == start
        assert purchase.end_date == end
        assert purchase.environment == "sandbox"
        assert purchase.receipt == "latest-ios-receipt"
        assert purchase.is_cancelled is False

    def test_production_environment(self):
        purchase = IOSPlatform().normalize(apple_result(sandbox=False), "client-receipt")
        assert purchase.environment == "production"

    def test_missing_original_transaction_id(self):
        result = apple_result()
        del result.purchase_data[0]["originalTransactionId"]
        with pytest.raises(MalformedPurchaseError):
            IOSPlatform().normalize(result, "client-receipt")


class TestAndroidPostProcess:
    @pytest.mark.asyncio
    async def test_acknowledges_pending_purchase(self):
        acknowledger = FakeAcknowledger()
        handler = AndroidPlatform(acknowledger, PACKAGE_NAME)
        result = google_result(acknowledgement_state=0)
        purchase = handler.normalize(result, android_receipt())

        await handler.post_process(result, purchase, android_receipt())

        assert acknowledger.calls == [(PACKAGE_NAME, "premium_monthly", "token-1")]

    @pytest.mark.asyncio
    async def test_skips_acknowledged_purchase(self):
        acknowledger = FakeAcknowledger()
        handler = AndroidPlatform(acknowledger, PACKAGE_NAME)
        result = google_result(acknowledgement_state=1)
        purchase = handler.normalize(result, android_receipt())

        await handler.post_process(result, purchase, android_receipt())

        assert acknowledger.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_receipt_package_name(self):
        acknowledger = FakeAcknowledger()
        handler = AndroidPlatform(acknowledger, "")
        result = google_result(acknowledgement_state=0)
        purchase = handler.normalize(result, android_receipt())

        await handler.post_process(result, purchase, android_receipt())

        assert acknowledger.calls[0][0] == PACKAGE_NAME


def test_unknown_platform():
    with pytest.raises(ReceiptValidationError):
        get_platform_handler("windows", FakeAcknowledger(), PACKAGE_NAME)
