from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

from marketplace.lenders.base import LenderStatus
from marketplace.lenders.registry import LenderClientFactory
from marketplace.schemas.lender_application import is_terminal
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.lender_registry import LenderRegistry
from marketplace.services.poll_queue import PollScheduler
from marketplace.services.reconciliation import WebhookReconciler

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class LenderPoller:
    """Pulls lender status for one sub-application and reconciles it.

    Shares the state machine with the webhook path, so whichever of the two
    arrives second is a no-op.
    """

    def __init__(
        self,
        *,
        store: LenderApplicationStore,
        registry: LenderRegistry,
        client_factory: LenderClientFactory,
        reconciler: WebhookReconciler,
        scheduler: PollScheduler,
        poll_interval: timedelta = timedelta(minutes=60),
        batch_size: int = 100,
        lender_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.registry = registry
        self.client_factory = client_factory
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.lender_timeout = lender_timeout

    async def poll(self, lender_application_id: UUID, *, force: bool = False) -> PollOutcome:
        record = await self.store.get(lender_application_id)
        if record is None:
            logger.warning("Poll requested for unknown lender application %s", lender_application_id)
            return PollOutcome.SKIPPED
        if is_terminal(record.status) or not record.lender_reference:
            return PollOutcome.SKIPPED
        if record.next_poll_at is None and not force:
            logger.debug("Polling stopped for lender application %s", record.id)
            return PollOutcome.SKIPPED

        now = datetime.now(timezone.utc)
        next_poll_at = now + self.poll_interval
        try:
            lender = await self.registry.get_lender(record.lender_id)
            if lender is None:
                raise LookupError(f"lender {record.lender_id} not found")
            client = self.client_factory(lender.type)
            result = await asyncio.wait_for(
                client.get_status(record.lender_reference), timeout=self.lender_timeout
            )
        except Exception:
            logger.exception("Status poll failed for lender application %s", record.id)
            await self.store.schedule_next_poll(record.id, next_poll_at, polled_at=now)
            return PollOutcome.FAILED

        if not result.success or not isinstance(result.data, LenderStatus):
            logger.warning("Lender status unavailable for %s: %s", record.lender_reference, result.message)
            await self.store.schedule_next_poll(record.id, next_poll_at, polled_at=now)
            return PollOutcome.FAILED

        status = result.data
        await self.reconciler.apply_to(
            record.id,
            status.event,
            payload={"lenderStatus": status.raw_status, **status.payload},
            source="poll",
        )
        if status.stop_polling or result.should_stop_polling:
            next_poll_at = None
        await self.store.schedule_next_poll(record.id, next_poll_at, polled_at=now)
        return PollOutcome.APPLIED

    async def enqueue_due(self, now: datetime | None = None) -> int:
        """Queue a poll for every record whose ``next_poll_at`` has passed."""
        now = now or datetime.now(timezone.utc)
        due = await self.store.due_for_poll(now, self.batch_size)
        scheduled = 0
        for lender_application_id in due:
            # Push the due time forward so the next scan does not queue it again.
            await self.store.schedule_next_poll(lender_application_id, now + self.poll_interval)
            if await self.scheduler.schedule_poll(lender_application_id):
                scheduled += 1
        if due:
            logger.info("Queued %d of %d due lender application poll(s)", scheduled, len(due))
        return scheduled
