from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.logging import get_reconciliation_logger
from marketplace.models.funding_application import FundingApplication
from marketplace.models.lender import Lender
from marketplace.models.lender_application import LenderApplication
from marketplace.models.lender_application_event import LenderApplicationEvent
from marketplace.models.lender_document_upload import LenderDocumentUpload
from marketplace.schemas.lender import LenderType
from marketplace.schemas.lender_application import (
    TERMINAL_STATUSES,
    FundingApplicationStatus,
    LenderApplicationStatus,
    is_terminal,
)

logger = logging.getLogger(__name__)
anomaly_logger = get_reconciliation_logger()

_TERMINAL = sorted(TERMINAL_STATUSES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class DisbursementOutcome:
    transitioned: bool
    lender_application_id: UUID | None = None
    funding_application_id: UUID | None = None
    lender_id: UUID | None = None


class LenderApplicationStore:
    """Persistence for per-lender sub-applications.

    Every write opens its own short-lived session, so concurrent submission
    units and the two reconciliation paths never share an ``AsyncSession``.
    Status writes are conditional on the row not being terminal; that guard is
    the only coordination between the webhook and poll writers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        poll_interval: timedelta = timedelta(minutes=60),
    ) -> None:
        self._session_factory = session_factory
        self.poll_interval = poll_interval

    async def get(self, lender_application_id: UUID) -> LenderApplication | None:
        async with self._session_factory() as session:
            return await session.get(LenderApplication, lender_application_id)

    async def get_by_reference(
        self, lender_reference: str, *, lender_type: LenderType | str
    ) -> LenderApplication | None:
        """Resolve a lender's own reference; references are only unique per lender."""
        lender_type = lender_type.value if isinstance(lender_type, LenderType) else str(lender_type)
        stmt = (
            select(LenderApplication)
            .join(Lender, Lender.id == LenderApplication.lender_id)
            .where(
                LenderApplication.lender_reference == lender_reference,
                Lender.type == lender_type,
            )
            .order_by(LenderApplication.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def _find(self, lender_id: UUID, lender_reference: str) -> LenderApplication | None:
        stmt = select(LenderApplication).where(
            LenderApplication.lender_id == lender_id,
            LenderApplication.lender_reference == lender_reference,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def find_existing(
        self, funding_application_id: UUID, lender_id: UUID
    ) -> LenderApplication | None:
        """Most recent record for the (application, lender) pair, if any."""
        stmt = (
            select(LenderApplication)
            .where(
                LenderApplication.funding_application_id == funding_application_id,
                LenderApplication.lender_id == lender_id,
            )
            .order_by(LenderApplication.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_for_funding_application(
        self, funding_application_id: UUID
    ) -> list[LenderApplication]:
        stmt = (
            select(LenderApplication)
            .where(LenderApplication.funding_application_id == funding_application_id)
            .order_by(LenderApplication.created_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create(
        self,
        *,
        funding_application_id: UUID,
        lender_id: UUID,
        lender_reference: str,
        status: str = LenderApplicationStatus.SUBMITTED.value,
        error_details: dict[str, Any] | None = None,
        raw_response: dict[str, Any] | None = None,
        stop_polling: bool = False,
    ) -> LenderApplication:
        """Record a successful submission.

        A ``pending`` row left over for the same pair is completed in place
        instead of inserting a second non-terminal record.
        """
        now = _utcnow()
        next_poll_at = None if stop_polling or is_terminal(status) else now + self.poll_interval
        pending_stmt = (
            select(LenderApplication)
            .where(
                LenderApplication.funding_application_id == funding_application_id,
                LenderApplication.lender_id == lender_id,
                LenderApplication.status == LenderApplicationStatus.PENDING.value,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(pending_stmt)
            record = result.scalars().first()
            if record is None:
                record = LenderApplication(
                    funding_application_id=funding_application_id,
                    lender_id=lender_id,
                )
                session.add(record)
            record.lender_reference = lender_reference
            record.status = status
            record.error_details = error_details
            record.raw_response_data = raw_response or {}
            record.next_poll_at = next_poll_at
            await session.flush()
            await session.commit()
            return record

    async def update_status(
        self,
        lender_reference: str,
        new_status: str | LenderApplicationStatus,
        extra: dict[str, Any] | None = None,
        *,
        lender_id: UUID,
    ) -> bool:
        """Conditionally move ``lender_id``'s record to ``new_status``.

        Returns True when a row changed. An unknown reference is logged as an
        anomaly; a terminal row is left untouched.
        """
        status = new_status.value if isinstance(new_status, LenderApplicationStatus) else str(new_status)
        values: dict[str, Any] = {"status": status, "updated_at": _utcnow(), **(extra or {})}
        if is_terminal(status):
            values["next_poll_at"] = None
        stmt = (
            update(LenderApplication)
            .where(
                LenderApplication.lender_id == lender_id,
                LenderApplication.lender_reference == lender_reference,
                LenderApplication.status.not_in(_TERMINAL),
            )
            .values(**values)
            .returning(LenderApplication.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            changed = result.first() is not None
            await session.commit()

        if not changed:
            existing = await self._find(lender_id, lender_reference)
            if existing is None:
                anomaly_logger.warning(
                    "No lender application matches lender=%s reference=%s; status %s not applied",
                    lender_id,
                    lender_reference,
                    status,
                )
            else:
                logger.info(
                    "Lender application %s already terminal (%s); ignoring %s",
                    existing.id,
                    existing.status,
                    status,
                )
        return changed

    async def mark_disbursed(
        self, lender_reference: str, extra: dict[str, Any] | None = None, *, lender_id: UUID
    ) -> DisbursementOutcome:
        """Move the record to ``disbursed`` and flip its funding application in one transaction.

        Only the caller that performs the transition writes the funding
        application status, so the commission trigger fires once.
        """
        now = _utcnow()
        stmt = (
            update(LenderApplication)
            .where(
                LenderApplication.lender_id == lender_id,
                LenderApplication.lender_reference == lender_reference,
                LenderApplication.status.not_in(_TERMINAL),
            )
            .values(
                status=LenderApplicationStatus.DISBURSED.value,
                next_poll_at=None,
                updated_at=now,
                **(extra or {}),
            )
            .returning(
                LenderApplication.id,
                LenderApplication.funding_application_id,
                LenderApplication.lender_id,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.first()
            if row is None:
                await session.rollback()
                return DisbursementOutcome(transitioned=False)
            lender_application_id, funding_application_id, lender_id = row
            await session.execute(
                update(FundingApplication)
                .where(FundingApplication.id == funding_application_id)
                .values(status=FundingApplicationStatus.DISBURSED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return DisbursementOutcome(
            transitioned=True,
            lender_application_id=lender_application_id,
            funding_application_id=funding_application_id,
            lender_id=lender_id,
        )

    async def schedule_next_poll(
        self,
        lender_application_id: UUID,
        next_poll_at: datetime | None,
        *,
        polled_at: datetime | None = None,
    ) -> None:
        values: dict[str, Any] = {"next_poll_at": next_poll_at}
        if polled_at is not None:
            values["last_polled_at"] = polled_at
        stmt = (
            update(LenderApplication)
            .where(
                LenderApplication.id == lender_application_id,
                LenderApplication.status.not_in(_TERMINAL),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def due_for_poll(self, now: datetime, limit: int) -> list[UUID]:
        stmt = (
            select(LenderApplication.id)
            .where(
                LenderApplication.next_poll_at.is_not(None),
                LenderApplication.next_poll_at <= now,
                LenderApplication.status.not_in(_TERMINAL),
            )
            .order_by(LenderApplication.next_poll_at.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def record_event(
        self,
        *,
        source: str,
        event: str,
        outcome: str,
        lender_reference: str | None,
        lender_application_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                LenderApplicationEvent(
                    lender_application_id=lender_application_id,
                    lender_reference=lender_reference,
                    source=source,
                    event=event,
                    outcome=outcome,
                    payload=payload or {},
                )
            )
            await session.commit()

    async def record_document_upload(
        self,
        *,
        lender_application_id: UUID,
        document_id: UUID,
        document_name: str,
        status: str,
        error: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                LenderDocumentUpload(
                    lender_application_id=lender_application_id,
                    document_id=document_id,
                    document_name=document_name,
                    status=status,
                    error=error,
                )
            )
            await session.commit()
