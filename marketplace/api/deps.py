from datetime import timedelta

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.exceptions import UnsupportedLenderTypeError, WebhookConfigurationError
from marketplace.core.security import verify_bearer_token
from marketplace.core.settings import settings
from marketplace.db.session import get_session_factory
from marketplace.lenders.registry import LenderClientFactory, build_lender_client, resolve_lender_type
from marketplace.schemas.lender import LenderType
from marketplace.services.background import BackgroundTaskRunner
from marketplace.services.documents import DatabaseDocumentProvider, DocumentProvider
from marketplace.services.funding_applications import FundingApplicationStore
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.lender_registry import LenderRegistry
from marketplace.services.offers import OfferService, OfferStore
from marketplace.services.poll_queue import JobQueue, PollScheduler
from marketplace.services.reconciliation import WebhookReconciler
from marketplace.services.submission import SubmissionCoordinator
from marketplace.utils.redis_client import get_job_queue


def get_queue() -> JobQueue:
    return get_job_queue()


def get_poll_scheduler(queue: JobQueue = Depends(get_queue)) -> PollScheduler:
    return PollScheduler(
        queue,
        poll_queue_name=settings.poll_queue_name,
        event_queue_name=settings.event_queue_name,
    )


def get_client_factory() -> LenderClientFactory:
    return build_lender_client


def get_background_runner(request: Request) -> BackgroundTaskRunner:
    runner = getattr(request.app.state, "background_tasks", None)
    if runner is None:
        runner = BackgroundTaskRunner()
        request.app.state.background_tasks = runner
    return runner


def get_funding_application_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> FundingApplicationStore:
    return FundingApplicationStore(session_factory)


def get_lender_application_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> LenderApplicationStore:
    return LenderApplicationStore(
        session_factory, poll_interval=timedelta(minutes=settings.poll_interval_minutes)
    )


def get_offer_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OfferStore:
    return OfferStore(session_factory)


def get_lender_registry(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> LenderRegistry:
    return LenderRegistry(session_factory)


def get_document_provider(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> DocumentProvider:
    return DatabaseDocumentProvider(session_factory)


def get_submission_coordinator(
    funding_applications: FundingApplicationStore = Depends(get_funding_application_store),
    registry: LenderRegistry = Depends(get_lender_registry),
    documents: DocumentProvider = Depends(get_document_provider),
    store: LenderApplicationStore = Depends(get_lender_application_store),
    client_factory: LenderClientFactory = Depends(get_client_factory),
    scheduler: PollScheduler = Depends(get_poll_scheduler),
    background: BackgroundTaskRunner = Depends(get_background_runner),
) -> SubmissionCoordinator:
    return SubmissionCoordinator(
        funding_applications=funding_applications,
        registry=registry,
        documents=documents,
        store=store,
        client_factory=client_factory,
        scheduler=scheduler,
        background=background,
        lender_timeout=settings.lender_request_timeout_seconds,
        max_documents=settings.max_submission_documents,
    )


def get_reconciler(
    store: LenderApplicationStore = Depends(get_lender_application_store),
    offers: OfferStore = Depends(get_offer_store),
    registry: LenderRegistry = Depends(get_lender_registry),
    client_factory: LenderClientFactory = Depends(get_client_factory),
    scheduler: PollScheduler = Depends(get_poll_scheduler),
) -> WebhookReconciler:
    return WebhookReconciler(
        store=store,
        offers=offers,
        registry=registry,
        client_factory=client_factory,
        scheduler=scheduler,
        lender_timeout=settings.lender_request_timeout_seconds,
    )


def get_offer_service(
    offers: OfferStore = Depends(get_offer_store),
    store: LenderApplicationStore = Depends(get_lender_application_store),
    client_factory: LenderClientFactory = Depends(get_client_factory),
) -> OfferService:
    return OfferService(offers, store, client_factory)


def require_lender_webhook_auth(
    lender_type: str,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> LenderType:
    """Authenticate an inbound lender webhook with its pre-shared bearer secret.

    Fails closed when no secret is configured for the lender type.
    """
    try:
        resolved = resolve_lender_type(lender_type)
    except UnsupportedLenderTypeError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown lender type '{lender_type}'",
        )

    secret = settings.webhook_secret_for(resolved.value)
    if not secret:
        raise WebhookConfigurationError(f"Webhook secret not configured for '{resolved.value}'")

    if not verify_bearer_token(authorization, secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return resolved
