"""
Subscription Schemas
====================

Pydantic schemas for the in-app purchase endpoints.

Field names on the wire are camelCase, matching what the mobile
clients send and expect.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class IAPPurchase(BaseModel):
    """Purchase object as returned by the client-side store SDK."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_receipt: Optional[str] = Field(default=None, alias="transactionReceipt")
    product_id: Optional[str] = Field(default=None, alias="productId")
    purchase_token: Optional[str] = Field(default=None, alias="purchaseToken")


class SaveReceiptRequest(BaseModel):
    """Request schema for receipt submission."""

    model_config = ConfigDict(populate_by_name=True)

    app_type: Literal["ios", "android"] = Field(alias="appType")
    purchase: IAPPurchase

    def to_receipt(self, android_package_name: str) -> Any:
        """
        Build the raw receipt handed to the validator.

        iOS: the base64 transaction receipt.
        Android: a token descriptor for the Play subscription API.
        """
        if self.app_type == "ios":
            return self.purchase.transaction_receipt
        return {
            "packageName": android_package_name,
            "productId": self.purchase.product_id,
            "purchaseToken": self.purchase.purchase_token,
            "subscription": True,
        }


class UserSubscription(BaseModel):
    """Public view of a stored subscription."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    product_id: str = Field(alias="productId")
    is_cancelled: bool = Field(alias="isCancelled")
    type: Literal["iap"] = "iap"


class UserSubscriptionResponse(BaseModel):
    """Response schema for the entitlement query."""

    model_config = ConfigDict(populate_by_name=True)

    subscription: Optional[UserSubscription] = None
    has_subscription: bool = Field(alias="hasSubscription")
