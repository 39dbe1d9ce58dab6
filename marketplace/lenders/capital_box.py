from __future__ import annotations

import logging
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

logger = logging.getLogger(__name__)

STATUS_EVENTS: dict[str, WebhookEvent] = {
    "RECEIVED": WebhookEvent.APPLICATION_RECEIVED,
    "PROCESSING": WebhookEvent.APPLICATION_RECEIVED,
    "OFFERS_CREATED": WebhookEvent.OFFERS_CREATED,
    "DECLINED": WebhookEvent.APPLICATION_DECLINED,
    "CONTRACT_READY": WebhookEvent.CONTRACT_READY,
    "CONTRACT_SIGNED": WebhookEvent.CONTRACT_SIGNED,
    "CONTRACT_FAILED": WebhookEvent.CONTRACT_FAILED,
    "DISBURSED": WebhookEvent.LOAN_DISBURSED,
    "WITHDRAWN": WebhookEvent.APPLICATION_WITHDRAWN,
}


class CapitalBoxClient(LenderClient):
    """Capital Box takes the document bundle as part of the application call."""

    lender_type = LenderType.CAPITAL_BOX
    uploads_documents_on_submit = True

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "CapitalBoxClient":
        return cls(
            base_url=settings.capital_box_api_url,
            api_key=settings.capital_box_api_key,
            timeout=settings.lender_request_timeout_seconds,
            transport=transport,
        )

    def _application_body(self, submission: LenderSubmission) -> dict[str, Any]:
        return {
            "externalId": str(submission.funding_application_id),
            "amount": str(submission.amount),
            "term": submission.term_months,
            "purpose": submission.purpose,
            "applicant": {
                "nationalId": submission.applicant_national_id,
                "firstName": submission.applicant_first_name,
                "lastName": submission.applicant_last_name,
                "email": submission.contact_email,
            },
            "beneficialOwners": submission.ubo_list,
            "details": submission.extra,
        }

    async def submit_application(self, submission: LenderSubmission) -> LenderResult:
        try:
            body = await self._json("POST", "/applications/", json=self._application_body(submission))
        except LenderRequestError as exc:
            return request_failure(exc)

        reference = (body or {}).get("uuid")
        if not reference:
            return LenderResult.fail(
                "Capital Box response did not include an application uuid",
                code="missing_reference",
                details=body,
            )

        failed_documents: list[str] = []
        for document in submission.documents:
            result = await self.upload_document(reference, document)
            if not result.success:
                logger.warning(
                    "Capital Box document upload failed reference=%s document=%s error=%s",
                    reference,
                    document.name,
                    result.message,
                )
                failed_documents.append(document.name)

        status = "rejected" if str(body.get("status", "")).upper() == "DECLINED" else "submitted"
        return LenderResult.ok(
            SubmittedApplication(reference=str(reference), status=status),
            raw_response=body,
            failed_documents=failed_documents,
            stop_polling=status == "rejected",
        )

    async def upload_document(self, reference: str, document: SubmissionDocument) -> LenderResult:
        files = {"file": (document.name, document.content, document.content_type)}
        try:
            body = await self._json("POST", f"/applications/{reference}/documents/", files=files)
        except LenderRequestError as exc:
            return request_failure(exc)
        return LenderResult.ok(body)

    async def get_offers(self, reference: str) -> LenderResult:
        try:
            body = await self._json("GET", f"/offers/{reference}/")
        except LenderRequestError as exc:
            return request_failure(exc)

        items = body if isinstance(body, list) else (body or {}).get("offers", [])
        offers = [
            LenderOffer(
                reference=str(item["offer_uuid"]),
                product=item.get("product"),
                term_months=to_int(item.get("term")),
                amount=to_decimal(item.get("principalAmount")),
                monthly_fee=to_decimal(item.get("monthlyFee")),
                raw=item,
            )
            for item in items
            if item.get("offer_uuid")
        ]
        return LenderResult.ok(offers)

    async def get_status(self, reference: str) -> LenderResult:
        try:
            body = await self._json("GET", f"/applications/{reference}/")
        except LenderRequestError as exc:
            return request_failure(exc)

        raw_status = str((body or {}).get("status", "")).upper()
        event = STATUS_EVENTS.get(raw_status, WebhookEvent.UNKNOWN)
        return LenderResult.ok(LenderStatus(event=event, raw_status=raw_status, payload=body or {}))
