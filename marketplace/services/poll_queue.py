from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Protocol
from uuid import UUID

from arq.jobs import Job
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# arq job names; the poll job is served by ``marketplace.worker.WorkerSettings``.
POLL_JOB = "poll_lender_application"
LIFECYCLE_EVENT_JOB = "handle_lender_lifecycle_event"

CONTRACT_READY_EVENT = "lender/contract-ready"
LOAN_DISBURSED_EVENT = "lender/loan-disbursed"

_ENQUEUE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class JobQueue(Protocol):
    """The part of ``arq.connections.ArqRedis`` the scheduler relies on."""

    async def enqueue_job(self, function: str, *args: Any, **kwargs: Any) -> Job | None: ...


class PollScheduler:
    """Fire-and-forget producer for poll jobs and lifecycle notifications.

    Queue failures are logged and swallowed; polling is a fallback path and a
    missed job is picked up by the worker's periodic due scan.
    """

    def __init__(self, queue: JobQueue, *, poll_queue_name: str, event_queue_name: str) -> None:
        self.queue = queue
        self.poll_queue_name = poll_queue_name
        self.event_queue_name = event_queue_name

    async def schedule_poll(self, lender_application_id: UUID, *, force: bool = False) -> bool:
        try:
            job = await self.queue.enqueue_job(
                POLL_JOB,
                lender_application_id=str(lender_application_id),
                force=force,
                _queue_name=self.poll_queue_name,
            )
        except _ENQUEUE_ERRORS as exc:
            logger.error("Failed to schedule poll for %s: %s", lender_application_id, exc)
            return False
        logger.debug("Scheduled poll for lender application %s", lender_application_id)
        return job is not None

    async def schedule_many(self, lender_application_ids: Iterable[UUID], *, force: bool = False) -> int:
        scheduled = 0
        for lender_application_id in lender_application_ids:
            if await self.schedule_poll(lender_application_id, force=force):
                scheduled += 1
        return scheduled

    async def publish(self, event_name: str, data: dict[str, Any]) -> bool:
        try:
            job = await self.queue.enqueue_job(
                LIFECYCLE_EVENT_JOB,
                name=event_name,
                data=data,
                _queue_name=self.event_queue_name,
            )
        except _ENQUEUE_ERRORS as exc:
            logger.error("Failed to publish %s: %s", event_name, exc)
            return False
        return job is not None
