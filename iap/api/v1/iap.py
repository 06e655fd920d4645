"""
In-App Purchase API Endpoints
=============================

Receipt submission and entitlement lookup for the mobile apps.
"""

import logging

from fastapi import APIRouter, Path, Response, status

from iap.dependencies import AppServices, CurrentUserId
from iap.schemas.subscription import (
    SaveReceiptRequest,
    UserSubscription,
    UserSubscriptionResponse,
)
from iap.services.entitlement import has_entitlement
from iap.utils.helpers import as_utc

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/save-receipt",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def save_receipt(
    body: SaveReceiptRequest,
    user_id: CurrentUserId,
    services: AppServices,
) -> Response:
    """
    Validate a store receipt and record the subscription.

    Any validation, consistency or persistence failure propagates and
    is rendered as a generic 500 by the global exception handler.
    """
    receipt = body.to_receipt(services.settings.ANDROID_PACKAGE_NAME)
    await services.processor.process(body.app_type, user_id, receipt)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/user-subscription/{app_type}",
    response_model=UserSubscriptionResponse,
    response_model_exclude_none=True,
)
async def get_user_subscription(
    user_id: CurrentUserId,
    services: AppServices,
    app_type: str = Path(pattern="^(ios|android)$"),
) -> UserSubscriptionResponse:
    """
    Get the caller's latest subscription for an app and whether it
    currently grants access.

    ``subscription`` is omitted when the caller has none.
    """
    record = await services.store.latest_for_user(user_id, app_type)

    subscription = None
    if record is not None:
        subscription = UserSubscription(
            start_date=as_utc(record.start_date),
            end_date=as_utc(record.end_date),
            product_id=record.product_id,
            is_cancelled=bool(record.is_cancelled),
        )

    return UserSubscriptionResponse(
        subscription=subscription,
        has_subscription=has_entitlement(record),
    )
