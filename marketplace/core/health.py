from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.settings import settings
from marketplace.db.session import engine
from marketplace.utils.redis_client import get_job_queue, get_redis_client

APP_VERSION = "0.1.0"

Check = dict[str, Any]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failed(exc: Exception) -> Check:
    return {"status": "error", "error": str(exc) or exc.__class__.__name__}


async def _check_db() -> Check:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return _failed(exc)
    return {"status": "ok"}


async def _check_redis() -> Check:
    try:
        await get_redis_client().ping()
    except (RedisError, OSError) as exc:
        return _failed(exc)
    return {"status": "ok"}


async def _check_queue() -> Check:
    """Jobs waiting on the arq poll queue; a growing backlog means the worker is behind."""
    try:
        depth = await get_job_queue().zcard(settings.poll_queue_name)
    except (RedisError, OSError) as exc:
        return _failed(exc)
    return {"status": "ok", "pending_polls": int(depth)}


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks = {"database": await _check_db(), "redis": await _check_redis()}
    ready = all(check.get("status") == "ok" for check in checks.values())
    return {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    summary = await ready_payload()
    summary.update(version=APP_VERSION, queue=await _check_queue())
    return summary
