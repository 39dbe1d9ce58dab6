from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar
from uuid import UUID

import httpx

from marketplace.core.exceptions import LenderRequestError
from marketplace.core.settings import Settings
from marketplace.schemas.lender import LenderType
from marketplace.schemas.webhook import WebhookEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubmissionDocument:
    id: UUID
    name: str
    content_type: str
    content: bytes


@dataclass(slots=True)
class LenderSubmission:
    """Lender-agnostic application payload built once per submission call."""

    funding_application_id: UUID
    company_id: UUID
    amount: Decimal
    term_months: int | None
    purpose: str
    applicant_national_id: str
    applicant_first_name: str | None = None
    applicant_last_name: str | None = None
    contact_email: str | None = None
    ubo_list: list[dict[str, str]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    documents: tuple[SubmissionDocument, ...] = ()


@dataclass(slots=True)
class SubmittedApplication:
    reference: str
    status: str = "submitted"


@dataclass(slots=True)
class LenderOffer:
    reference: str
    product: str | None = None
    term_months: int | None = None
    amount: Decimal | None = None
    monthly_fee: Decimal | None = None
    status: str = "offered"
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LenderStatus:
    """A polled lender state translated into the webhook event it corresponds to."""

    event: WebhookEvent
    raw_status: str
    stop_polling: bool = False
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LenderResult:
    """Uniform envelope returned by every lender client call."""

    success: bool
    data: Any = None
    message: str | None = None
    error_code: str | None = None
    error_details: Any = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, *, message: str | None = None, **additional: Any) -> "LenderResult":
        return cls(success=True, data=data, message=message, additional_data=dict(additional))

    @classmethod
    def fail(cls, message: str, *, code: str | None = None, details: Any = None) -> "LenderResult":
        return cls(success=False, message=message, error_code=code, error_details=details)

    @property
    def should_stop_polling(self) -> bool:
        return bool(self.additional_data.get("stop_polling"))


def to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class LenderClient(ABC):
    """Capability interface implemented once per lender type."""

    lender_type: ClassVar[LenderType]
    # Lenders that take documents inside the initial application payload.
    uploads_documents_on_submit: ClassVar[bool] = False
    supports_offer_acceptance: ClassVar[bool] = False

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    @abstractmethod
    def from_settings(
        cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "LenderClient":
        pass

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._http_client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.TimeoutException as exc:
            raise LenderRequestError(
                f"{self.lender_type.value} request timed out after {self.timeout}s",
                timed_out=True,
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise LenderRequestError(
                f"{self.lender_type.value} responded with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                details=_safe_json(exc.response),
            ) from exc
        except httpx.HTTPError as exc:
            raise LenderRequestError(f"{self.lender_type.value} request failed: {exc}") from exc

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        return _safe_json(response)

    @abstractmethod
    async def submit_application(self, submission: LenderSubmission) -> LenderResult:
        """Returns ``LenderResult.data`` as :class:`SubmittedApplication`."""

    @abstractmethod
    async def get_offers(self, reference: str) -> LenderResult:
        """Returns ``LenderResult.data`` as a list of :class:`LenderOffer`."""

    @abstractmethod
    async def upload_document(self, reference: str, document: SubmissionDocument) -> LenderResult:
        pass

    @abstractmethod
    async def get_status(self, reference: str) -> LenderResult:
        """Returns ``LenderResult.data`` as :class:`LenderStatus`."""

    async def accept_offer(self, reference: str, offer_reference: str) -> LenderResult:
        return LenderResult.fail(
            f"Offer acceptance is not supported for lender type '{self.lender_type.value}'",
            code="unsupported",
        )


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def request_failure(exc: LenderRequestError) -> LenderResult:
    code = "timeout" if exc.timed_out else "transport_error"
    return LenderResult.fail(exc.message, code=code, details=exc.details or exc.status_code)
