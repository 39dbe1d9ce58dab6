from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from marketplace.api import deps
from marketplace.schemas.lender_application import OfferAcceptResponse
from marketplace.services.offers import (
    LenderAcceptanceFailedError,
    OfferAcceptanceUnsupportedError,
    OfferNotAcceptableError,
    OfferNotFoundError,
    OfferService,
)

router = APIRouter(prefix="/offers", tags=["offers"])


@router.post("/{offer_id}/accept", response_model=OfferAcceptResponse, summary="Accept a lender offer")
async def accept_offer(
    offer_id: UUID,
    service: OfferService = Depends(deps.get_offer_service),
) -> OfferAcceptResponse:
    try:
        accepted = await service.accept(offer_id)
    except OfferNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offer not found")
    except OfferNotAcceptableError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "offer_not_acceptable", "message": str(exc), "details": {"status": exc.status}},
        )
    except OfferAcceptanceUnsupportedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except LenderAcceptanceFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "lender_error", "message": exc.message, "details": {"lender": exc.details}},
        )

    return OfferAcceptResponse(
        offer_id=accepted.offer_id,
        status=accepted.status,
        lender_application_id=accepted.lender_application_id,
        lender_reference=accepted.lender_reference,
        message=accepted.message,
    )
