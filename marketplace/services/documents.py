from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.lenders.base import SubmissionDocument
from marketplace.models.company_document import CompanyDocument


class DocumentProvider(Protocol):
    async def fetch_documents(self, company_id: UUID, limit: int) -> list[SubmissionDocument]:
        ...


class DatabaseDocumentProvider:
    """Newest company documents first, capped at ``limit``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def fetch_documents(self, company_id: UUID, limit: int) -> list[SubmissionDocument]:
        if limit <= 0:
            return []
        stmt = (
            select(CompanyDocument)
            .where(CompanyDocument.company_id == company_id)
            .order_by(CompanyDocument.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [
            SubmissionDocument(
                id=row.id,
                name=row.name,
                content_type=row.content_type or "application/octet-stream",
                content=row.content,
            )
            for row in rows[:limit]
        ]
