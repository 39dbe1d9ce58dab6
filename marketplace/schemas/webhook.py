from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(str, Enum):
    """Lender lifecycle events; anything not listed resolves to UNKNOWN."""

    APPLICATION_RECEIVED = "applicationReceived"
    APPLICATION_DECLINED = "applicationDeclined"
    OFFERS_CREATED = "offersCreated"
    OFFERS_UPDATED = "offersUpdated"
    CONTRACT_READY = "contractReady"
    CONTRACT_SIGNED = "contractSigned"
    CONTRACT_FAILED = "contractFailed"
    LOAN_DISBURSED = "loanDisbursed"
    APPLICATION_WITHDRAWN = "applicationWithdrawn"
    BATCH_COMPLETED = "batchCompleted"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):  # type: ignore[override]
        return cls.UNKNOWN


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1)
    uuid: str = Field(min_length=1)
    timestamp: Any | None = None

    @property
    def lifecycle_event(self) -> WebhookEvent:
        return WebhookEvent(self.event)


class WebhookAck(BaseModel):
    status: str = "OK"
    event: str
    outcome: str
