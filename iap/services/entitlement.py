"""
Entitlement Evaluation
======================

Decides whether a stored subscription currently grants access.
"""

from datetime import datetime
from typing import Optional, Protocol

from iap.utils.helpers import to_epoch_ms, utc_now


class EntitlementRecord(Protocol):
    start_date: datetime
    end_date: datetime
    is_cancelled: bool


def has_entitlement(
    record: Optional[EntitlementRecord],
    now: Optional[datetime] = None,
) -> bool:
    """
    True when the record is not cancelled and ``now`` lies within
    ``[start_date, end_date]`` (inclusive, compared in epoch millis).

    No grace period is applied past ``end_date``.
    """
    if record is None:
        return False
    if record.is_cancelled:
        return False

    now_ms = to_epoch_ms(now or utc_now())
    return to_epoch_ms(record.start_date) <= now_ms <= to_epoch_ms(record.end_date)
