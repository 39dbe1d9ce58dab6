from fastapi import APIRouter

from marketplace.api.v1.routers import health, lender_applications, offers, submissions, webhooks

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(submissions.router)
api_router.include_router(webhooks.router)
api_router.include_router(offers.router)
api_router.include_router(lender_applications.router)

__all__ = ["api_router"]
