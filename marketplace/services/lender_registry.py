from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.models.lender import Lender


def is_eligible(lender: Lender, funding_type: str) -> bool:
    return bool(lender.is_active) and funding_type in (lender.funding_categories or [])


class LenderRegistry:
    """Read-only view over configured lenders and their funding categories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def eligible_lenders(self, funding_type: str) -> list[Lender]:
        """Active lenders that declare ``funding_type``, highest priority first.

        An empty list is a normal outcome, not an error.
        """
        stmt = (
            select(Lender)
            .where(Lender.is_active.is_(True))
            .order_by(Lender.priority.asc(), Lender.name.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            lenders = result.scalars().all()
        return [lender for lender in lenders if is_eligible(lender, funding_type)]

    async def get_lender(self, lender_id: UUID) -> Lender | None:
        async with self._session_factory() as session:
            return await session.get(Lender, lender_id)
