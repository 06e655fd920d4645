"""
Subscription Reconciliation
===========================

Background asyncio worker that periodically re-validates every active
subscription with its store so renewals, cancellations and refunds
reach the subscriptions table without client involvement.

Lifecycle:
    1. ``start()`` is called during the FastAPI lifespan startup. The
       first sweep runs one ``interval`` later (immediately when
       ``run_on_start`` is set), then every ``interval`` seconds.
    2. ``stop()`` is called during shutdown. No new sweep starts after
       it; a sweep already running is allowed to finish (bounded by
       ``shutdown_timeout``, then cancelled).

Failure isolation:
    Each subscription is processed on its own with a timeout. Any error
    is logged with the row id and the sweep moves on to the next row.
    A sweep never raises, and an unexpected error is logged by the loop,
    which keeps its period.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import newrelic.agent

from iap.models.subscription import Platform
from iap.services.purchase_processor import PurchaseProcessor
from iap.services.receipt_validator import RawReceipt
from iap.services.subscription_store import ActiveSubscription, SubscriptionStore
from iap.utils.helpers import utc_now

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60
DEFAULT_ITEM_TIMEOUT_SECONDS = 60.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 30.0


def _stored_receipt(subscription: ActiveSubscription) -> RawReceipt:
    """Android rows keep the token descriptor as JSON; iOS rows the raw receipt."""
    if subscription.app == Platform.ANDROID.value:
        return json.loads(subscription.latest_receipt)
    return subscription.latest_receipt


class ReconciliationScheduler:
    """Periodic re-validation sweep over active subscriptions."""

    def __init__(
        self,
        store: SubscriptionStore,
        processor: PurchaseProcessor,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        item_timeout: float = DEFAULT_ITEM_TIMEOUT_SECONDS,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        run_on_start: bool = False,
    ) -> None:
        self.store = store
        self.processor = processor
        self.interval = interval
        self.item_timeout = item_timeout
        self.shutdown_timeout = shutdown_timeout
        self.run_on_start = run_on_start
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # -- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the periodic loop. Calling it twice is a no-op."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="subscription-reconciliation")
        logger.info(
            "ReconciliationScheduler started (interval=%ss, item_timeout=%ss)",
            self.interval,
            self.item_timeout,
        )

    async def stop(self) -> None:
        """Stop scheduling sweeps and wait for an in-flight sweep to finish."""
        self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Reconciliation sweep did not finish in time; cancelled")
            except Exception as exc:
                logger.error("Reconciliation task ended with error: %s", exc)
            self._task = None
        logger.info("ReconciliationScheduler stopped")

    # -- main loop ---------------------------------------------------------

    async def _wait_interval(self) -> bool:
        """Sleep one interval; True when stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        if not self.run_on_start and await self._wait_interval():
            return

        while True:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Reconciliation loop error: %s: %s", type(exc).__name__, exc)
            if await self._wait_interval():
                return

    @newrelic.agent.background_task(name="subscription-reconciliation", group="Task")
    async def run_once(self) -> None:
        """
        Re-validate every active subscription once.

        Safe to call directly (tests, admin tooling). Never raises.
        """
        started_at = utc_now()
        try:
            subscriptions = await self.store.active_subscriptions()
        except Exception as exc:
            logger.error(
                "Reconciliation aborted, cannot list subscriptions: %s: %s",
                type(exc).__name__,
                exc,
            )
            return

        failed = 0
        for subscription in subscriptions:
            if not await self._reconcile(subscription):
                failed += 1

        duration = (utc_now() - started_at).total_seconds()
        logger.info(
            "Reconciliation finished: checked=%d failed=%d duration=%.1fs",
            len(subscriptions),
            failed,
            duration,
        )
        newrelic.agent.record_custom_event(
            "SubscriptionReconciliation",
            {
                "checked": len(subscriptions),
                "failed": failed,
                "duration_s": round(duration, 2),
            },
        )

    async def _reconcile(self, subscription: ActiveSubscription) -> bool:
        """Process one row; returns False on any failure."""
        try:
            receipt = _stored_receipt(subscription)
            await asyncio.wait_for(
                self.processor.process(subscription.app, subscription.user_id, receipt),
                timeout=self.item_timeout,
            )
            return True
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error(
                "Failed to validate subscription %s: timed out after %ss",
                subscription.id,
                self.item_timeout,
            )
        except Exception as exc:
            logger.error(
                "Failed to validate subscription %s: %s: %s",
                subscription.id,
                type(exc).__name__,
                exc,
            )
        return False
