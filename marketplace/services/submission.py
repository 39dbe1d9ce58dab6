from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from marketplace.core.exceptions import SubmissionValidationError, UnsupportedLenderTypeError
from marketplace.lenders.base import LenderClient, LenderSubmission, SubmissionDocument, SubmittedApplication
from marketplace.lenders.registry import LenderClientFactory
from marketplace.models.funding_application import FundingApplication
from marketplace.models.lender import Lender
from marketplace.schemas.lender_application import LenderApplicationStatus
from marketplace.schemas.submission import (
    LenderSubmissionError,
    SkippedLender,
    SubmissionOutcome,
    SubmissionRequest,
    SubmissionResult,
)
from marketplace.services.background import BackgroundTaskRunner
from marketplace.services.documents import DocumentProvider
from marketplace.services.funding_applications import FundingApplicationStore
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.lender_registry import LenderRegistry
from marketplace.services.poll_queue import PollScheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _UnitResult:
    lender: Lender
    lender_application_id: UUID | None = None
    error: LenderSubmissionError | None = None


def _error(lender: Lender, message: str, details: Any = None) -> _UnitResult:
    return _UnitResult(
        lender=lender,
        error=LenderSubmissionError(
            lender_id=lender.id,
            lender_name=lender.name,
            message=message,
            details=details,
        ),
    )


def validate_submission(application: FundingApplication, payload: SubmissionRequest) -> None:
    if payload.amount is None or payload.amount <= 0:
        raise SubmissionValidationError("Amount must be greater than zero", field="amount")
    if payload.term_months is not None and payload.term_months <= 0:
        raise SubmissionValidationError("Term must be a positive number of months", field="term_months")
    if payload.company_id != application.company_id:
        raise SubmissionValidationError(
            "Company does not match the funding application", field="company_id"
        )


def build_submission(
    application: FundingApplication,
    payload: SubmissionRequest,
    documents: list[SubmissionDocument],
) -> LenderSubmission:
    ubo_list = [ubo.model_dump(by_alias=True) for ubo in payload.ubo_list]
    applicant = next(
        (ubo for ubo in payload.ubo_list if ubo.national_id == payload.applicant_national_id),
        None,
    )
    return LenderSubmission(
        funding_application_id=application.id,
        company_id=payload.company_id,
        amount=payload.amount,
        term_months=payload.term_months,
        purpose=payload.funding_type,
        applicant_national_id=payload.applicant_national_id,
        applicant_first_name=applicant.first_name if applicant else None,
        applicant_last_name=applicant.last_name if applicant else None,
        contact_email=payload.final_email,
        ubo_list=ubo_list,
        extra=dict(payload.financing_needs_details),
        documents=tuple(documents),
    )


def _summary(outcome: SubmissionOutcome, succeeded: int, attempted: int, skipped: int) -> str:
    if outcome is SubmissionOutcome.NO_LENDERS:
        return "No eligible lenders were found for this application."
    if outcome is SubmissionOutcome.SUBMITTED:
        message = f"Application submitted successfully to {succeeded} lenders."
        if skipped:
            message += f" {skipped} lenders already had an active application."
        return message
    if outcome is SubmissionOutcome.PARTIAL:
        return f"Submitted to {succeeded}/{attempted} lenders with some errors."
    return "Application submitted, but failed to submit to any lenders."


class SubmissionCoordinator:
    """Fans one funding application out to every eligible lender concurrently.

    Each lender runs in its own unit that never raises; failures come back as
    per-lender errors and never cancel siblings.
    """

    def __init__(
        self,
        *,
        funding_applications: FundingApplicationStore,
        registry: LenderRegistry,
        documents: DocumentProvider,
        store: LenderApplicationStore,
        client_factory: LenderClientFactory,
        scheduler: PollScheduler,
        background: BackgroundTaskRunner,
        lender_timeout: float = 30.0,
        max_documents: int = 20,
    ) -> None:
        self.funding_applications = funding_applications
        self.registry = registry
        self.documents = documents
        self.store = store
        self.client_factory = client_factory
        self.scheduler = scheduler
        self.background = background
        self.lender_timeout = lender_timeout
        self.max_documents = max_documents

    async def submit(self, application: FundingApplication, payload: SubmissionRequest) -> SubmissionResult:
        validate_submission(application, payload)

        await self.funding_applications.mark_submitted(application.id)

        documents = await self.documents.fetch_documents(payload.company_id, self.max_documents)
        lenders = await self.registry.eligible_lenders(payload.funding_type)
        if not lenders:
            logger.info("No eligible lenders for application=%s type=%s", application.id, payload.funding_type)
            return SubmissionResult(
                application_id=application.id,
                success=True,
                outcome=SubmissionOutcome.NO_LENDERS,
                message=_summary(SubmissionOutcome.NO_LENDERS, 0, 0, 0),
                attempted=0,
                succeeded=0,
            )

        skipped: list[SkippedLender] = []
        to_submit: list[Lender] = []
        for lender in lenders:
            existing = await self.store.find_existing(application.id, lender.id)
            if existing is not None and existing.status != LenderApplicationStatus.PENDING.value:
                skipped.append(
                    SkippedLender(
                        lender_id=lender.id,
                        lender_name=lender.name,
                        status=existing.status,
                        lender_reference=existing.lender_reference,
                        message="Application already submitted to this lender",
                    )
                )
                continue
            to_submit.append(lender)

        submission = build_submission(application, payload, documents)
        results = await asyncio.gather(
            *(self._submit_to_lender(lender, submission) for lender in to_submit)
        )

        created_ids = [r.lender_application_id for r in results if r.lender_application_id is not None]
        errors = [r.error for r in results if r.error is not None]
        # A new record is always polled once, even when the lender asked to stop polling.
        await self.scheduler.schedule_many(created_ids, force=True)

        attempted = len(to_submit)
        succeeded = len(created_ids)
        if attempted == 0 or not errors:
            outcome = SubmissionOutcome.SUBMITTED
        elif succeeded > 0:
            outcome = SubmissionOutcome.PARTIAL
        else:
            outcome = SubmissionOutcome.FAILED

        logger.info(
            "Submission finished application=%s attempted=%d succeeded=%d skipped=%d errors=%d",
            application.id,
            attempted,
            succeeded,
            len(skipped),
            len(errors),
        )
        return SubmissionResult(
            application_id=application.id,
            success=not errors,
            outcome=outcome,
            message=_summary(outcome, succeeded, attempted, len(skipped)),
            attempted=attempted,
            succeeded=succeeded,
            created_lender_application_ids=created_ids,
            lender_errors=errors,
            skipped_lenders=skipped,
        )

    async def _submit_to_lender(self, lender: Lender, submission: LenderSubmission) -> _UnitResult:
        try:
            client = self.client_factory(lender.type)
        except UnsupportedLenderTypeError as exc:
            return _error(lender, str(exc))

        try:
            result = await asyncio.wait_for(client.submit_application(submission), timeout=self.lender_timeout)
        except asyncio.TimeoutError:
            logger.warning("Lender %s timed out after %ss", lender.name, self.lender_timeout)
            return _error(lender, f"Lender did not respond within {self.lender_timeout} seconds")
        except Exception as exc:
            logger.exception("Unexpected error submitting to lender %s", lender.name)
            return _error(lender, f"Unexpected error: {exc}")

        if not result.success:
            logger.warning("Lender %s rejected submission: %s", lender.name, result.message)
            return _error(lender, result.message or "Submission failed", result.error_details)

        submitted = result.data
        if not isinstance(submitted, SubmittedApplication) or not submitted.reference:
            return _error(lender, "Lender response did not include an application reference")

        try:
            record = await self.store.create(
                funding_application_id=submission.funding_application_id,
                lender_id=lender.id,
                lender_reference=submitted.reference,
                status=submitted.status,
                raw_response=result.additional_data.get("raw_response"),
                stop_polling=result.should_stop_polling,
            )
        except Exception as exc:
            logger.exception("Failed to persist lender application for lender %s", lender.name)
            return _error(lender, f"Failed to record lender application: {exc}")

        if not client.uploads_documents_on_submit and submission.documents:
            self.background.spawn(
                self._upload_documents(client, record.id, submitted.reference, submission.documents),
                name=f"upload-documents-{record.id}",
            )
        return _UnitResult(lender=lender, lender_application_id=record.id)

    async def _upload_documents(
        self,
        client: LenderClient,
        lender_application_id: UUID,
        reference: str,
        documents: tuple[SubmissionDocument, ...],
    ) -> None:
        for document in documents:
            try:
                result = await client.upload_document(reference, document)
            except Exception as exc:
                logger.exception(
                    "Document upload raised lender_application=%s document=%s",
                    lender_application_id,
                    document.name,
                )
                error: str | None = str(exc) or exc.__class__.__name__
            else:
                error = None if result.success else (result.message or "upload failed")
                if error:
                    logger.warning(
                        "Document upload failed lender_application=%s document=%s: %s",
                        lender_application_id,
                        document.name,
                        error,
                    )
            try:
                await self.store.record_document_upload(
                    lender_application_id=lender_application_id,
                    document_id=document.id,
                    document_name=document.name,
                    status="failed" if error else "uploaded",
                    error=error,
                )
            except Exception:
                logger.exception(
                    "Could not record upload of document %s for lender application %s",
                    document.name,
                    lender_application_id,
                )
