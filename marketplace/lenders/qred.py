from __future__ import annotations

from typing import Any

import httpx

from marketplace.core.exceptions import LenderRequestError
from marketplace.core.settings import Settings
from marketplace.lenders.base import (
    LenderClient,
    LenderOffer,
    LenderResult,
    LenderStatus,
    LenderSubmission,
    SubmissionDocument,
    SubmittedApplication,
    request_failure,
    to_decimal,
    to_int,
)
from marketplace.schemas.lender import LenderType
from marketplace.schemas.webhook import WebhookEvent

STATUS_EVENTS: dict[str, WebhookEvent] = {
    "RECEIVED": WebhookEvent.APPLICATION_RECEIVED,
    "IN_REVIEW": WebhookEvent.APPLICATION_RECEIVED,
    "PRE_OFFER": WebhookEvent.OFFERS_CREATED,
    "DECLINED": WebhookEvent.APPLICATION_DECLINED,
    "CONTRACT_SENT": WebhookEvent.CONTRACT_READY,
    "SIGNED": WebhookEvent.CONTRACT_SIGNED,
    "SIGNING_FAILED": WebhookEvent.CONTRACT_FAILED,
    "PAID_OUT": WebhookEvent.LOAN_DISBURSED,
    "CANCELLED": WebhookEvent.APPLICATION_WITHDRAWN,
}

# Qred stops reporting on these; further polling is pointless.
FINAL_STATUSES = {"DECLINED", "PAID_OUT", "CANCELLED", "EXPIRED"}


class QredClient(LenderClient):
    lender_type = LenderType.QRED
    supports_offer_acceptance = True

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "QredClient":
        return cls(
            base_url=settings.qred_api_url,
            api_key=settings.qred_api_key,
            timeout=settings.lender_request_timeout_seconds,
            transport=transport,
        )

    def _application_body(self, submission: LenderSubmission) -> dict[str, Any]:
        return {
            "clientReference": str(submission.funding_application_id),
            "organizationId": str(submission.company_id),
            "amount": str(submission.amount),
            "termMonths": submission.term_months,
            "purpose": submission.purpose,
            "applicant": {
                "personalNumber": submission.applicant_national_id,
                "firstName": submission.applicant_first_name,
                "lastName": submission.applicant_last_name,
                "email": submission.contact_email,
            },
        }

    async def submit_application(self, submission: LenderSubmission) -> LenderResult:
        try:
            body = await self._json("POST", "/v1/applications", json=self._application_body(submission))
        except LenderRequestError as exc:
            return request_failure(exc)

        reference = (body or {}).get("id")
        if not reference:
            return LenderResult.fail(
                "Qred response did not include an application id",
                code="missing_reference",
                details=body,
            )
        declined = str(body.get("status", "")).upper() == "DECLINED"
        return LenderResult.ok(
            SubmittedApplication(reference=str(reference), status="rejected" if declined else "submitted"),
            raw_response=body,
            stop_polling=declined,
        )

    async def upload_document(self, reference: str, document: SubmissionDocument) -> LenderResult:
        files = {"document": (document.name, document.content, document.content_type)}
        try:
            body = await self._json("POST", f"/v1/applications/{reference}/documents", files=files)
        except LenderRequestError as exc:
            return request_failure(exc)
        return LenderResult.ok(body)

    async def get_offers(self, reference: str) -> LenderResult:
        try:
            body = await self._json("GET", f"/v1/applications/{reference}/offers")
        except LenderRequestError as exc:
            return request_failure(exc)

        offers = [
            LenderOffer(
                reference=str(item["id"]),
                product=item.get("productType"),
                term_months=to_int(item.get("termMonths")),
                amount=to_decimal(item.get("amount")),
                monthly_fee=to_decimal(item.get("monthlyFee")),
                raw=item,
            )
            for item in (body or {}).get("offers", [])
            if item.get("id")
        ]
        return LenderResult.ok(offers)

    async def get_status(self, reference: str) -> LenderResult:
        try:
            body = await self._json("GET", f"/v1/applications/{reference}")
        except LenderRequestError as exc:
            return request_failure(exc)

        raw_status = str((body or {}).get("status", "")).upper()
        return LenderResult.ok(
            LenderStatus(
                event=STATUS_EVENTS.get(raw_status, WebhookEvent.UNKNOWN),
                raw_status=raw_status,
                stop_polling=raw_status in FINAL_STATUSES,
                payload=body or {},
            )
        )

    async def accept_offer(self, reference: str, offer_reference: str) -> LenderResult:
        try:
            body = await self._json(
                "POST",
                f"/v1/pre-offers/{reference}/accept",
                json={"offerId": offer_reference},
            )
        except LenderRequestError as exc:
            return request_failure(exc)

        application_id = (body or {}).get("applicationId")
        if not application_id:
            return LenderResult.fail(
                "Qred did not return an application id for the accepted offer",
                code="missing_reference",
                details=body,
            )
        return LenderResult.ok(SubmittedApplication(reference=str(application_id), status="accepted"))
