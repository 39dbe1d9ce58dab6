from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from marketplace.api import deps
from marketplace.schemas.lender_application import (
    FinancingOfferDTO,
    LenderApplicationDTO,
    LenderApplicationListResponse,
    PollTriggerResponse,
    is_terminal,
)
from marketplace.services.funding_applications import FundingApplicationStore
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.offers import OfferStore
from marketplace.services.poll_queue import PollScheduler

router = APIRouter(tags=["lender-applications"])


@router.get(
    "/funding-applications/{application_id}/lender-applications",
    response_model=LenderApplicationListResponse,
    summary="List lender sub-applications with their offers",
)
async def list_lender_applications(
    application_id: UUID,
    applications: FundingApplicationStore = Depends(deps.get_funding_application_store),
    store: LenderApplicationStore = Depends(deps.get_lender_application_store),
    offers: OfferStore = Depends(deps.get_offer_store),
) -> LenderApplicationListResponse:
    if await applications.get(application_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Funding application not found")

    records = await store.list_for_funding_application(application_id)
    offers_by_app = await offers.list_for_lender_applications([record.id for record in records])
    items = [
        LenderApplicationDTO.model_validate(record).model_copy(
            update={
                "offers": [
                    FinancingOfferDTO.model_validate(offer) for offer in offers_by_app.get(record.id, [])
                ]
            }
        )
        for record in records
    ]
    return LenderApplicationListResponse(
        funding_application_id=application_id,
        items=items,
        total=len(items),
    )


@router.post(
    "/lender-applications/{lender_application_id}/poll",
    response_model=PollTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue an immediate status poll",
)
async def trigger_poll(
    lender_application_id: UUID,
    store: LenderApplicationStore = Depends(deps.get_lender_application_store),
    scheduler: PollScheduler = Depends(deps.get_poll_scheduler),
) -> PollTriggerResponse:
    record = await store.get(lender_application_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lender application not found")
    if is_terminal(record.status):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "terminal_status",
                "message": f"Lender application is already {record.status}",
                "details": {"status": record.status},
            },
        )

    scheduled = await scheduler.schedule_poll(record.id, force=True)
    return PollTriggerResponse(lender_application_id=record.id, scheduled=scheduled)
