from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LenderApplicationStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    OFFERS_RECEIVED = "offers_received"
    NO_OFFERS = "no_offers"
    OFFER_PROCESSING_FAILED = "offer_processing_failed"
    ACCEPTED = "accepted"
    CONTRACT_READY = "contract_ready"
    CONTRACT_SIGNED = "contract_signed"
    CONTRACT_FAILED = "contract_failed"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


TERMINAL_STATUSES = frozenset(
    {
        LenderApplicationStatus.DISBURSED.value,
        LenderApplicationStatus.REJECTED.value,
        LenderApplicationStatus.WITHDRAWN.value,
        LenderApplicationStatus.CONTRACT_FAILED.value,
    }
)


def is_terminal(status: str | LenderApplicationStatus | None) -> bool:
    if status is None:
        return False
    value = status.value if isinstance(status, LenderApplicationStatus) else str(status)
    return value in TERMINAL_STATUSES


class FundingApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    DISBURSED = "disbursed"


class OfferStatus(str, Enum):
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class FinancingOfferDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    lender_offer_reference: str
    product: str | None = None
    term_months: int | None = None
    amount: Decimal | None = None
    monthly_fee: Decimal | None = None
    status: str
    created_at: datetime | None = None


class LenderApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    funding_application_id: UUID
    lender_id: UUID
    lender_reference: str | None = None
    status: str
    next_poll_at: datetime | None = None
    last_polled_at: datetime | None = None
    error_details: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    offers: list[FinancingOfferDTO] = []


class LenderApplicationListResponse(BaseModel):
    funding_application_id: UUID
    items: list[LenderApplicationDTO]
    total: int


class OfferAcceptResponse(BaseModel):
    offer_id: UUID
    status: str
    lender_application_id: UUID
    lender_reference: str | None = None
    message: str


class PollTriggerResponse(BaseModel):
    lender_application_id: UUID
    scheduled: bool
