from __future__ import annotations

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.models.funding_application import FundingApplication
from marketplace.schemas.lender_application import FundingApplicationStatus


class FundingApplicationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, application_id: UUID) -> FundingApplication | None:
        async with self._session_factory() as session:
            return await session.get(FundingApplication, application_id)

    async def mark_submitted(self, application_id: UUID) -> None:
        stmt = (
            update(FundingApplication)
            .where(
                FundingApplication.id == application_id,
                FundingApplication.status != FundingApplicationStatus.DISBURSED.value,
            )
            .values(status=FundingApplicationStatus.SUBMITTED.value)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
