from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from marketplace.core.context import set_lender_reference
from marketplace.core.logging import get_reconciliation_logger
from marketplace.lenders.registry import LenderClientFactory
from marketplace.models.lender_application import LenderApplication
from marketplace.schemas.lender import LenderType
from marketplace.schemas.lender_application import LenderApplicationStatus, is_terminal
from marketplace.schemas.webhook import WebhookEvent
from marketplace.services.lender_applications import LenderApplicationStore
from marketplace.services.lender_registry import LenderRegistry
from marketplace.services.offers import OfferStore
from marketplace.services.poll_queue import CONTRACT_READY_EVENT, LOAN_DISBURSED_EVENT, PollScheduler

logger = logging.getLogger(__name__)
anomaly_logger = get_reconciliation_logger()

TRANSITIONS: dict[WebhookEvent, LenderApplicationStatus] = {
    WebhookEvent.APPLICATION_RECEIVED: LenderApplicationStatus.SUBMITTED,
    WebhookEvent.APPLICATION_DECLINED: LenderApplicationStatus.REJECTED,
    WebhookEvent.OFFERS_CREATED: LenderApplicationStatus.OFFERS_RECEIVED,
    WebhookEvent.CONTRACT_READY: LenderApplicationStatus.CONTRACT_READY,
    WebhookEvent.CONTRACT_SIGNED: LenderApplicationStatus.CONTRACT_SIGNED,
    WebhookEvent.CONTRACT_FAILED: LenderApplicationStatus.CONTRACT_FAILED,
    WebhookEvent.LOAN_DISBURSED: LenderApplicationStatus.DISBURSED,
    WebhookEvent.APPLICATION_WITHDRAWN: LenderApplicationStatus.WITHDRAWN,
}

INFORMATIONAL_EVENTS = frozenset({WebhookEvent.OFFERS_UPDATED, WebhookEvent.BATCH_COMPLETED})

# Statuses from which a repeated offersCreated may still advance the record.
_PRE_OFFER_STATUSES = frozenset(
    {LenderApplicationStatus.PENDING.value, LenderApplicationStatus.SUBMITTED.value}
)
# Statuses in which offers may still be fetched from the lender.
_OFFER_INGEST_STATUSES = _PRE_OFFER_STATUSES | {
    LenderApplicationStatus.NO_OFFERS.value,
    LenderApplicationStatus.OFFER_PROCESSING_FAILED.value,
}


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    TERMINAL = "terminal"
    ORPHAN = "orphan"
    IGNORED = "ignored"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    lender_application_id: UUID | None = None
    status: str | None = None


class WebhookReconciler:
    """Applies lender lifecycle events to lender applications.

    Used by both the webhook endpoint and the poller. Every path is idempotent:
    duplicates and events for terminal records are acknowledged without
    effects, and unknown references are logged as anomalies.
    """

    def __init__(
        self,
        *,
        store: LenderApplicationStore,
        offers: OfferStore,
        registry: LenderRegistry,
        client_factory: LenderClientFactory,
        scheduler: PollScheduler,
        lender_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.offers = offers
        self.registry = registry
        self.client_factory = client_factory
        self.scheduler = scheduler
        self.lender_timeout = lender_timeout

    async def apply(
        self,
        event: WebhookEvent | str,
        lender_reference: str,
        *,
        lender_type: LenderType | str,
        payload: dict[str, Any] | None = None,
        source: str = "webhook",
    ) -> ReconcileResult:
        """Apply an event addressed by the lender's own reference.

        Only records belonging to a lender of ``lender_type`` are considered;
        a reference owned by another lender is an orphan.
        """
        event = event if isinstance(event, WebhookEvent) else WebhookEvent(event)
        lender_type = lender_type if isinstance(lender_type, LenderType) else LenderType(lender_type)
        payload = payload or {}
        set_lender_reference(lender_reference)

        if event is WebhookEvent.UNKNOWN:
            logger.warning(
                "Unrecognised lender event %r from %s %s for reference=%s",
                payload.get("event"),
                lender_type.value,
                source,
                lender_reference,
            )
            result = ReconcileResult(ReconcileOutcome.UNKNOWN)
        else:
            record = await self.store.get_by_reference(lender_reference, lender_type=lender_type)
            if record is None:
                anomaly_logger.warning(
                    "Orphan %s event %s: no %s lender application with reference=%s",
                    source,
                    event.value,
                    lender_type.value,
                    lender_reference,
                )
                result = ReconcileResult(ReconcileOutcome.ORPHAN)
            else:
                result = await self._apply(event, record, payload)

        await self._audit(source, event, result, lender_reference, payload)
        return result

    async def apply_to(
        self,
        lender_application_id: UUID,
        event: WebhookEvent | str,
        *,
        payload: dict[str, Any] | None = None,
        source: str = "poll",
    ) -> ReconcileResult:
        """Apply an event to a known record; used by the poller."""
        event = event if isinstance(event, WebhookEvent) else WebhookEvent(event)
        payload = payload or {}
        record = await self.store.get(lender_application_id)
        if record is None:
            result = ReconcileResult(ReconcileOutcome.ORPHAN)
            reference = None
        else:
            reference = record.lender_reference
            set_lender_reference(reference)
            if event is WebhookEvent.UNKNOWN:
                result = ReconcileResult(ReconcileOutcome.UNKNOWN, record.id, record.status)
            else:
                result = await self._apply(event, record, payload)

        await self._audit(source, event, result, reference, payload)
        return result

    async def _audit(
        self,
        source: str,
        event: WebhookEvent,
        result: ReconcileResult,
        lender_reference: str | None,
        payload: dict[str, Any],
    ) -> None:
        await self.store.record_event(
            source=source,
            event=payload.get("event") or event.value,
            outcome=result.outcome.value,
            lender_reference=lender_reference,
            lender_application_id=result.lender_application_id,
            payload=payload,
        )

    async def _apply(
        self,
        event: WebhookEvent,
        record: LenderApplication,
        payload: dict[str, Any],
    ) -> ReconcileResult:
        if event in INFORMATIONAL_EVENTS:
            logger.info("Lender event %s for %s logged only", event.value, record.id)
            return ReconcileResult(ReconcileOutcome.IGNORED, record.id, record.status)

        if is_terminal(record.status):
            logger.info(
                "Ignoring %s for lender application %s in terminal status %s",
                event.value,
                record.id,
                record.status,
            )
            return ReconcileResult(ReconcileOutcome.TERMINAL, record.id, record.status)

        if event is WebhookEvent.OFFERS_CREATED:
            return await self._ingest_offers(record, payload)

        target = TRANSITIONS[event]
        if record.status == target.value:
            return ReconcileResult(ReconcileOutcome.DUPLICATE, record.id, record.status)
        if event is WebhookEvent.APPLICATION_RECEIVED and record.status != LenderApplicationStatus.PENDING.value:
            # Late confirmation; the record has already moved past it.
            return ReconcileResult(ReconcileOutcome.DUPLICATE, record.id, record.status)

        if event is WebhookEvent.LOAN_DISBURSED:
            return await self._disburse(record, payload)

        changed = await self.store.update_status(
            record.lender_reference, target, {"raw_response_data": payload}, lender_id=record.lender_id
        )
        if not changed:
            return ReconcileResult(ReconcileOutcome.TERMINAL, record.id, record.status)

        logger.info("Lender application %s: %s -> %s", record.id, record.status, target.value)
        if event is WebhookEvent.CONTRACT_READY:
            await self.scheduler.publish(CONTRACT_READY_EVENT, self._event_data(record, payload))
        return ReconcileResult(ReconcileOutcome.APPLIED, record.id, target.value)

    async def _disburse(self, record: LenderApplication, payload: dict[str, Any]) -> ReconcileResult:
        outcome = await self.store.mark_disbursed(
            record.lender_reference, {"raw_response_data": payload}, lender_id=record.lender_id
        )
        if not outcome.transitioned:
            return ReconcileResult(ReconcileOutcome.TERMINAL, record.id, record.status)

        logger.info(
            "Lender application %s disbursed; funding application %s marked disbursed",
            record.id,
            record.funding_application_id,
        )
        await self.scheduler.publish(LOAN_DISBURSED_EVENT, self._event_data(record, payload))
        return ReconcileResult(
            ReconcileOutcome.APPLIED, record.id, LenderApplicationStatus.DISBURSED.value
        )

    async def _ingest_offers(self, record: LenderApplication, payload: dict[str, Any]) -> ReconcileResult:
        reference = record.lender_reference
        lender_id = record.lender_id
        if await self.offers.has_offers(record.id):
            if record.status in _PRE_OFFER_STATUSES:
                await self.store.update_status(
                    reference, LenderApplicationStatus.OFFERS_RECEIVED, lender_id=lender_id
                )
                return ReconcileResult(
                    ReconcileOutcome.APPLIED, record.id, LenderApplicationStatus.OFFERS_RECEIVED.value
                )
            logger.info("Offers already ingested for lender application %s", record.id)
            return ReconcileResult(ReconcileOutcome.DUPLICATE, record.id, record.status)
        if record.status not in _OFFER_INGEST_STATUSES:
            return ReconcileResult(ReconcileOutcome.DUPLICATE, record.id, record.status)

        try:
            lender = await self.registry.get_lender(record.lender_id)
            if lender is None:
                raise LookupError(f"lender {record.lender_id} not found")
            client = self.client_factory(lender.type)
            result = await asyncio.wait_for(client.get_offers(reference), timeout=self.lender_timeout)
            if not result.success or not result.data:
                if not result.success:
                    logger.warning("Offer fetch failed for %s: %s", reference, result.message)
                status = LenderApplicationStatus.NO_OFFERS
                inserted = 0
            else:
                inserted = await self.offers.insert_offers(
                    lender_application_id=record.id,
                    funding_application_id=record.funding_application_id,
                    offers=result.data,
                )
                status = LenderApplicationStatus.OFFERS_RECEIVED
        except Exception as exc:
            logger.exception("Offer processing failed for lender application %s", record.id)
            await self.store.update_status(
                reference,
                LenderApplicationStatus.OFFER_PROCESSING_FAILED,
                {"error_details": {"message": str(exc)}, "raw_response_data": payload},
                lender_id=lender_id,
            )
            return ReconcileResult(
                ReconcileOutcome.APPLIED, record.id, LenderApplicationStatus.OFFER_PROCESSING_FAILED.value
            )

        await self.store.update_status(
            reference, status, {"raw_response_data": payload}, lender_id=lender_id
        )
        logger.info("Lender application %s: %d offer(s) stored, status %s", record.id, inserted, status.value)
        return ReconcileResult(ReconcileOutcome.APPLIED, record.id, status.value)

    @staticmethod
    def _event_data(record: LenderApplication, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "lenderApplicationId": str(record.id),
            "fundingApplicationId": str(record.funding_application_id),
            "lenderId": str(record.lender_id),
            "payload": payload,
        }
