from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.exceptions import MarketplaceError
from marketplace.lenders.base import LenderOffer
from marketplace.lenders.registry import LenderClientFactory
from marketplace.models.financing_offer import FinancingOffer
from marketplace.models.lender import Lender
from marketplace.models.lender_application import LenderApplication
from marketplace.schemas.lender_application import LenderApplicationStatus, OfferStatus
from marketplace.services.lender_applications import LenderApplicationStore

logger = logging.getLogger(__name__)


class OfferNotFoundError(MarketplaceError):
    pass


class OfferNotAcceptableError(MarketplaceError):
    def __init__(self, offer_id: UUID, status: str) -> None:
        super().__init__(f"Offer {offer_id} is '{status}' and can no longer be accepted")
        self.status = status


class OfferAcceptanceUnsupportedError(MarketplaceError):
    pass


class LenderAcceptanceFailedError(MarketplaceError):
    def __init__(self, message: str, details=None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class OfferStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def has_offers(self, lender_application_id: UUID) -> bool:
        stmt = select(func.count(FinancingOffer.id)).where(
            FinancingOffer.lender_application_id == lender_application_id
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return (result.scalar() or 0) > 0

    async def insert_offers(
        self,
        *,
        lender_application_id: UUID,
        funding_application_id: UUID,
        offers: Iterable[LenderOffer],
    ) -> int:
        """Insert offers, ignoring references already stored for the record."""
        rows = []
        seen: set[str] = set()
        for offer in offers:
            if not offer.reference or offer.reference in seen:
                continue
            seen.add(offer.reference)
            rows.append(
                {
                    "lender_application_id": lender_application_id,
                    "funding_application_id": funding_application_id,
                    "lender_offer_reference": offer.reference,
                    "product": offer.product,
                    "term_months": offer.term_months,
                    "amount": offer.amount,
                    "monthly_fee": offer.monthly_fee,
                    "status": offer.status or OfferStatus.OFFERED.value,
                    "raw_data": offer.raw,
                }
            )
        if not rows:
            return 0

        stmt = (
            insert(FinancingOffer)
            .values(rows)
            .on_conflict_do_nothing(constraint="uq_financing_offer_reference")
            .returning(FinancingOffer.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            inserted = len(result.scalars().all())
            await session.commit()
        return inserted

    async def list_for_lender_applications(
        self, lender_application_ids: Sequence[UUID]
    ) -> dict[UUID, list[FinancingOffer]]:
        grouped: dict[UUID, list[FinancingOffer]] = {app_id: [] for app_id in lender_application_ids}
        if not lender_application_ids:
            return grouped
        stmt = (
            select(FinancingOffer)
            .where(FinancingOffer.lender_application_id.in_(list(lender_application_ids)))
            .order_by(FinancingOffer.created_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for offer in result.scalars().all():
                grouped.setdefault(offer.lender_application_id, []).append(offer)
        return grouped

    async def get(self, offer_id: UUID) -> FinancingOffer | None:
        async with self._session_factory() as session:
            return await session.get(FinancingOffer, offer_id)

    async def get_with_context(
        self, offer_id: UUID
    ) -> tuple[FinancingOffer, LenderApplication, Lender] | None:
        stmt = (
            select(FinancingOffer, LenderApplication, Lender)
            .join(LenderApplication, LenderApplication.id == FinancingOffer.lender_application_id)
            .join(Lender, Lender.id == LenderApplication.lender_id)
            .where(FinancingOffer.id == offer_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.first()
            if row is None:
                return None
            return row[0], row[1], row[2]

    async def mark_accepted(self, offer_id: UUID) -> bool:
        stmt = (
            update(FinancingOffer)
            .where(
                FinancingOffer.id == offer_id,
                FinancingOffer.status == OfferStatus.OFFERED.value,
            )
            .values(status=OfferStatus.ACCEPTED.value, updated_at=datetime.now(timezone.utc))
            .returning(FinancingOffer.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            changed = result.first() is not None
            await session.commit()
        return changed


@dataclass(slots=True)
class AcceptedOffer:
    offer_id: UUID
    lender_application_id: UUID
    lender_reference: str | None
    status: str
    message: str


class OfferService:
    """Borrower-side offer acceptance, forwarded to the lender that issued the offer."""

    def __init__(
        self,
        offers: OfferStore,
        lender_applications: LenderApplicationStore,
        client_factory: LenderClientFactory,
    ) -> None:
        self.offers = offers
        self.lender_applications = lender_applications
        self.client_factory = client_factory

    async def accept(self, offer_id: UUID) -> AcceptedOffer:
        found = await self.offers.get_with_context(offer_id)
        if found is None:
            raise OfferNotFoundError(f"Offer {offer_id} not found")
        offer, lender_application, lender = found

        if offer.status != OfferStatus.OFFERED.value:
            raise OfferNotAcceptableError(offer_id, offer.status)

        client = self.client_factory(lender.type)
        if not client.supports_offer_acceptance:
            raise OfferAcceptanceUnsupportedError(
                f"Lender '{lender.name}' does not support offer acceptance"
            )

        result = await client.accept_offer(lender_application.lender_reference, offer.lender_offer_reference)
        if not result.success:
            logger.warning(
                "Offer acceptance failed offer=%s lender=%s: %s",
                offer_id,
                lender.name,
                result.message,
            )
            raise LenderAcceptanceFailedError(
                result.message or "Lender rejected the offer acceptance",
                details=result.error_details,
            )

        await self.offers.mark_accepted(offer_id)
        if lender_application.lender_reference:
            await self.lender_applications.update_status(
                lender_application.lender_reference,
                LenderApplicationStatus.ACCEPTED,
                {"raw_response_data": {"acceptedOffer": offer.lender_offer_reference}},
                lender_id=lender_application.lender_id,
            )
        return AcceptedOffer(
            offer_id=offer_id,
            lender_application_id=lender_application.id,
            lender_reference=lender_application.lender_reference,
            status=OfferStatus.ACCEPTED.value,
            message=result.message or "Offer accepted",
        )
