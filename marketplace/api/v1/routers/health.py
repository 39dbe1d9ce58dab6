from fastapi import APIRouter

from marketplace.core import health
from marketplace.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Process is up")
@limiter.exempt
async def liveness() -> dict:
    return await health.live_payload()


@router.get("/health/ready", summary="Database and Redis are reachable")
@limiter.exempt
async def readiness() -> dict:
    return await health.ready_payload()


@router.get("/health", summary="Alias of /health/ready")
@limiter.exempt
async def health_alias() -> dict:
    return await health.ready_payload()


@router.get("/status/summary", tags=["status"], summary="Readiness plus version and poll backlog")
@limiter.exempt
async def status_summary() -> dict:
    return await health.status_summary_payload()
