"""
Subscription Models
===================

SQLAlchemy model for reconciled in-app purchase subscriptions.

One row per store transaction chain, keyed by the original transaction
id that Apple/Google keep stable across renewals.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    false,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from iap.db.base import Base, TimestampMixin


class Platform(str, Enum):
    """Purchase platform."""
    IOS = "ios"
    ANDROID = "android"


class StoreEnvironment(str, Enum):
    """Store environment reported by the validator."""
    PRODUCTION = "production"
    SANDBOX = "sandbox"
    UNKNOWN = ""  # Google does not disclose sandbox purchases


class Subscription(Base, TimestampMixin):
    """
    Subscription entitlement record.

    Stores the latest validated state for one (user, app, original
    transaction) and the payloads needed to re-validate it later.
    """

    __tablename__ = "subscriptions"

    # Primary Key
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    app: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )
    environment: Mapped[str] = mapped_column(
        String(16),
        default="",
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    orig_tx_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )

    # Last validator payload, kept for audit/debug
    validation_response: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )
    # Re-submittable receipt (base64 for iOS, JSON descriptor for Android)
    latest_receipt: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    product_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    is_cancelled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Test/synthetic rows are never re-validated
    fake: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False,
    )

    # Indexes
    __table_args__ = (
        Index("idx_subscriptions_user_app_start", "user_id", "app", "start_date"),
        Index("idx_subscriptions_end_date", "end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(orig_tx_id={self.orig_tx_id}, user_id={self.user_id}, "
            f"app={self.app}, end_date={self.end_date})>"
        )
