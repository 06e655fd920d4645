"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from iap.schemas.subscription import (
    IAPPurchase,
    SaveReceiptRequest,
    UserSubscription,
    UserSubscriptionResponse,
)

__all__ = [
    "IAPPurchase",
    "SaveReceiptRequest",
    "UserSubscription",
    "UserSubscriptionResponse",
]
