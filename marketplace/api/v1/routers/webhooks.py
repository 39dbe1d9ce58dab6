import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from marketplace.api import deps
from marketplace.core.limiter import limiter
from marketplace.schemas.lender import LenderType
from marketplace.schemas.webhook import WebhookAck, WebhookPayload
from marketplace.services.reconciliation import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/lenders", tags=["webhooks"])


@router.post("/{lender_type}", response_model=WebhookAck, summary="Inbound lender lifecycle event")
@limiter.exempt
async def receive_lender_webhook(
    request: Request,
    lender_type: LenderType = Depends(deps.require_lender_webhook_auth),
    reconciler: WebhookReconciler = Depends(deps.get_reconciler),
) -> WebhookAck:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be an object")

    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Webhook payload must include 'event' and 'uuid'",
                "details": {"errors": exc.errors(include_url=False, include_context=False)},
            },
        )

    logger.info("Webhook %s from %s for reference=%s", payload.event, lender_type.value, payload.uuid)
    result = await reconciler.apply(
        payload.lifecycle_event,
        payload.uuid,
        lender_type=lender_type,
        payload=body,
        source="webhook",
    )
    return WebhookAck(event=payload.event, outcome=result.outcome.value)
