from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from marketplace.api import deps
from marketplace.schemas.submission import SubmissionRequest, SubmissionResult
from marketplace.services.funding_applications import FundingApplicationStore
from marketplace.services.submission import SubmissionCoordinator

router = APIRouter(prefix="/funding-applications", tags=["submissions"])


@router.post(
    "/{application_id}/submit",
    response_model=SubmissionResult,
    responses={207: {"model": SubmissionResult, "description": "One or more lenders failed"}},
    summary="Submit a funding application to every eligible lender",
)
async def submit_funding_application(
    application_id: UUID,
    payload: SubmissionRequest,
    response: Response,
    applications: FundingApplicationStore = Depends(deps.get_funding_application_store),
    coordinator: SubmissionCoordinator = Depends(deps.get_submission_coordinator),
) -> SubmissionResult:
    application = await applications.get(application_id)
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Funding application not found")

    result = await coordinator.submit(application, payload)
    if result.lender_errors:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return result
