"""
Subscription Store
==================

Persistence for reconciled subscriptions.

Writes go through a single ``INSERT ... ON CONFLICT (orig_tx_id) DO
UPDATE`` statement, so two requests racing on the same original
transaction id end up as one row with the last writer's values and
neither caller sees a duplicate-key error.

SQLAlchemy errors and driver connection failures (``OSError`` from the
asyncpg connect) both surface as ``PersistenceError``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from iap.core.errors import PersistenceError
from iap.models.subscription import Subscription
from iap.utils.helpers import as_utc, utc_now

logger = logging.getLogger(__name__)

# Fixed at creation: the key already binds a transaction to its user/app
_IMMUTABLE_COLUMNS = {"id", "orig_tx_id", "user_id", "app", "fake", "created_at"}


@dataclass(frozen=True)
class SubscriptionUpsert:
    """Values written for one original transaction."""

    app: str
    environment: str
    user_id: str
    orig_tx_id: str
    validation_response: Optional[dict[str, Any]]
    latest_receipt: str
    start_date: datetime
    end_date: datetime
    product_id: str
    is_cancelled: bool

    def as_row(self) -> dict[str, Any]:
        return {
            "app": self.app,
            "environment": self.environment,
            "user_id": self.user_id,
            "orig_tx_id": self.orig_tx_id,
            "validation_response": self.validation_response,
            "latest_receipt": self.latest_receipt,
            "start_date": as_utc(self.start_date),
            "end_date": as_utc(self.end_date),
            "product_id": self.product_id,
            "is_cancelled": self.is_cancelled,
        }


@dataclass(frozen=True)
class ActiveSubscription:
    """Row summary handed to the reconciliation sweep."""

    id: int
    latest_receipt: str
    user_id: str
    app: str


class SubscriptionStore:
    """Async store for Subscription rows, one session per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise PersistenceError(f"Upsert not supported for dialect {dialect!r}")

    async def upsert(self, record: SubscriptionUpsert) -> None:
        """
        Insert the subscription or overwrite the existing row for its
        original transaction id.

        Raises:
            PersistenceError: Database unavailable or write rejected.
        """
        row = record.as_row()
        try:
            async with self.session_factory() as session:
                insert = self._insert_for(session)
                stmt = insert(Subscription).values(**row)
                updates = {
                    key: stmt.excluded[key]
                    for key in row
                    if key not in _IMMUTABLE_COLUMNS
                }
                updates["updated_at"] = func.now()
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Subscription.orig_tx_id],
                    set_=updates,
                )
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(
                f"Failed to upsert subscription {record.orig_tx_id}: {exc}"
            ) from exc

        logger.info(
            "Subscription upserted: orig_tx_id=%s user=%s app=%s product=%s end=%s cancelled=%s",
            record.orig_tx_id,
            record.user_id,
            record.app,
            record.product_id,
            row["end_date"].isoformat(),
            record.is_cancelled,
        )

    async def active_subscriptions(
        self, now: Optional[datetime] = None
    ) -> list[ActiveSubscription]:
        """
        Subscriptions whose end date has not passed, excluding fake rows.

        The result is fully materialized before the session closes.
        """
        now = as_utc(now or utc_now())
        stmt = select(
            Subscription.id,
            Subscription.latest_receipt,
            Subscription.user_id,
            Subscription.app,
        ).where(
            and_(
                Subscription.end_date >= now,
                Subscription.fake.is_(False),
            )
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Failed to list active subscriptions: {exc}") from exc

        return [
            ActiveSubscription(
                id=row.id,
                latest_receipt=row.latest_receipt,
                user_id=row.user_id,
                app=row.app,
            )
            for row in rows
        ]

    async def latest_for_user(
        self, user_id: str, app: Optional[str]
    ) -> Optional[Subscription]:
        """Most recently started subscription for (user, app), if any."""
        if not app:
            return None

        stmt = (
            select(Subscription)
            .where(
                and_(
                    Subscription.user_id == user_id,
                    Subscription.app == app,
                )
            )
            .order_by(Subscription.start_date.desc())
            .limit(1)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Failed to load subscription for {user_id}: {exc}") from exc
