from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UboListItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    national_id: str = Field(alias="nationalId")
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")


class SubmissionRequest(BaseModel):
    """Borrower payload for fanning a funding application out to lenders.

    Amount and term are range-checked by the coordinator, not here, so that a
    bad value is reported as an invalid submission rather than a schema error.
    """

    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    company_id: UUID
    user_id: UUID
    amount: Decimal
    term_months: int | None = None
    funding_type: str = Field(min_length=1)
    applicant_national_id: str = Field(min_length=1)
    ubo_list: list[UboListItem] = Field(default_factory=list)
    financing_needs_details: dict[str, Any] = Field(default_factory=dict)
    final_email: str | None = None


class SubmissionOutcome(str, Enum):
    SUBMITTED = "submitted"
    PARTIAL = "partial"
    FAILED = "failed"
    NO_LENDERS = "no_lenders"


class LenderSubmissionError(BaseModel):
    lender_id: UUID
    lender_name: str
    message: str
    details: Any | None = None


class SkippedLender(BaseModel):
    lender_id: UUID
    lender_name: str
    status: str
    lender_reference: str | None = None
    message: str


class SubmissionResult(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    application_id: UUID
    success: bool
    outcome: SubmissionOutcome
    message: str
    attempted: int
    succeeded: int
    created_lender_application_ids: list[UUID] = Field(default_factory=list)
    lender_errors: list[LenderSubmissionError] = Field(default_factory=list)
    skipped_lenders: list[SkippedLender] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.outcome == SubmissionOutcome.PARTIAL.value
