"""
Purchase Processor
==================

Validates a receipt with its store, reconciles it into the
subscriptions table and runs store-specific follow-ups.

Order of operations:
    1. validate the receipt (nothing is persisted on failure)
    2. check the store that answered matches the requested platform
    3. normalize the first purchase item
    4. upsert the subscription row
    5. post-process (Android acknowledgement), after the row is safe
"""

import logging

from iap.core.errors import ConsistencyError
from iap.models.subscription import Platform
from iap.services.platforms import Acknowledger, get_platform_handler
from iap.services.receipt_validator import RawReceipt, ReceiptValidator, ValidationResult
from iap.services.subscription_store import SubscriptionStore, SubscriptionUpsert

logger = logging.getLogger(__name__)

EXPECTED_SERVICE = {
    Platform.IOS.value: "apple",
    Platform.ANDROID.value: "google",
}


class PurchaseProcessor:
    """Orchestrates validator -> normalizer -> store -> post-processing."""

    def __init__(
        self,
        validator: ReceiptValidator,
        store: SubscriptionStore,
        acknowledger: Acknowledger,
        android_package_name: str,
    ):
        self.validator = validator
        self.store = store
        self.acknowledger = acknowledger
        self.android_package_name = android_package_name

    @staticmethod
    def _check_service(platform: str, result: ValidationResult) -> None:
        expected = EXPECTED_SERVICE.get(platform)
        if result.service != expected:
            raise ConsistencyError(
                f"Validator answered as {result.service!r} for platform {platform!r}"
            )

    async def process(self, platform: str, user_id: str, receipt: RawReceipt) -> None:
        """
        Validate and persist a purchase.

        Raises:
            ReceiptValidationError: Receipt rejected or store unreachable.
            ConsistencyError: Store answer does not match the platform.
            PersistenceError: Subscription could not be saved.
        """
        handler = get_platform_handler(
            platform, self.acknowledger, self.android_package_name
        )

        result = await self.validator.validate(platform, receipt)
        self._check_service(platform, result)

        purchase = handler.normalize(result, receipt)

        await self.store.upsert(
            SubscriptionUpsert(
                app=platform,
                environment=purchase.environment,
                user_id=str(user_id),
                orig_tx_id=purchase.original_transaction_id,
                validation_response=purchase.validation_response,
                latest_receipt=purchase.receipt,
                start_date=purchase.start_date,
                end_date=purchase.end_date,
                product_id=purchase.product_id,
                is_cancelled=purchase.is_cancelled,
            )
        )

        await handler.post_process(result, purchase, receipt)

        logger.info(
            "Purchase processed: user=%s app=%s product=%s orig_tx_id=%s",
            user_id,
            platform,
            purchase.product_id,
            purchase.original_transaction_id,
        )
