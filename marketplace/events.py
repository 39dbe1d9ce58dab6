import logging

from fastapi import FastAPI

from marketplace.core.settings import settings
from marketplace.db.session import engine
from marketplace.services.background import BackgroundTaskRunner
from marketplace.utils.redis_client import get_job_queue

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        app.state.background_tasks = BackgroundTaskRunner()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        runner = getattr(app.state, "background_tasks", None)
        if runner is not None:
            await runner.drain(timeout=settings.background_drain_timeout_seconds)
        if get_job_queue.cache_info().currsize:
            await get_job_queue().aclose()
        await engine.dispose()
