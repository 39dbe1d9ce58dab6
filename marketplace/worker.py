"""Lender poll worker: ``arq marketplace.worker.WorkerSettings`` (or ``marketplace-worker``).

Runs the lender status poller for every poll job on the poll queue, and a cron
job that queues each lender application whose next poll is due.
"""
import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from arq import cron, func
from arq.connections import RedisSettings
from arq.worker import run_worker

from marketplace.core.context import clear_context
from marketplace.core.logging import configure_logging
from marketplace.core.settings import Settings, settings
from marketplace.db.session import AsyncSessionLocal, engine
from marketplace.lenders.registry import build_lender_client
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.lender_registry import LenderRegistry
from marketplace.services.offers import OfferStore
from marketplace.services.poll_queue import POLL_JOB, JobQueue, PollScheduler
from marketplace.services.poller import LenderPoller
from marketplace.services.reconciliation import WebhookReconciler

logger = logging.getLogger(__name__)


def build_poller(queue: JobQueue, config: Settings = settings) -> LenderPoller:
    poll_interval = timedelta(minutes=config.poll_interval_minutes)
    store = LenderApplicationStore(AsyncSessionLocal, poll_interval=poll_interval)
    registry = LenderRegistry(AsyncSessionLocal)
    scheduler = PollScheduler(
        queue,
        poll_queue_name=config.poll_queue_name,
        event_queue_name=config.event_queue_name,
    )
    reconciler = WebhookReconciler(
        store=store,
        offers=OfferStore(AsyncSessionLocal),
        registry=registry,
        client_factory=build_lender_client,
        scheduler=scheduler,
        lender_timeout=config.lender_request_timeout_seconds,
    )
    return LenderPoller(
        store=store,
        registry=registry,
        client_factory=build_lender_client,
        reconciler=reconciler,
        scheduler=scheduler,
        poll_interval=poll_interval,
        batch_size=config.poll_batch_size,
        lender_timeout=config.lender_request_timeout_seconds,
    )


async def startup(ctx: dict[str, Any]) -> None:
    configure_logging(settings.log_level)
    # ctx["redis"] is the worker's own ArqRedis pool; follow-up polls go back onto it.
    ctx["poller"] = build_poller(ctx["redis"])
    logger.info("Lender poll worker started queue=%s", settings.poll_queue_name)


async def shutdown(ctx: dict[str, Any]) -> None:
    await engine.dispose()
    logger.info("Lender poll worker stopped")


async def poll_lender_application(
    ctx: dict[str, Any], lender_application_id: str, force: bool = False
) -> str | None:
    clear_context()
    try:
        parsed_id = UUID(str(lender_application_id))
    except ValueError:
        logger.warning("Discarding poll job with invalid id: %r", lender_application_id)
        return None
    outcome = await ctx["poller"].poll(parsed_id, force=force)
    logger.info("Polled lender application %s: %s", parsed_id, outcome.value)
    return outcome.value


async def enqueue_due_polls(ctx: dict[str, Any]) -> int:
    clear_context()
    return await ctx["poller"].enqueue_due()


def scan_schedule(interval_seconds: int) -> dict[str, set[int]]:
    """arq cron fields that fire roughly every ``interval_seconds``."""
    if interval_seconds < 60:
        return {"second": set(range(0, 60, max(1, interval_seconds)))}
    return {"minute": set(range(0, 60, max(1, interval_seconds // 60)))}


class WorkerSettings:
    functions = [func(poll_lender_application, name=POLL_JOB, max_tries=1)]
    cron_jobs = [
        cron(
            enqueue_due_polls,
            run_at_startup=True,
            max_tries=1,
            **scan_schedule(settings.poll_scan_interval_seconds),
        )
    ]
    queue_name = settings.poll_queue_name
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
