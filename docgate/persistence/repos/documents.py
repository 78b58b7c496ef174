from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.domain.models import Document


async def get_document(session: AsyncSession, document_id: str) -> Document | None:
    result = await session.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def list_department_documents(session: AsyncSession, department_id: str) -> list[Document]:
    result = await session.execute(
        select(Document)
        .where(Document.department_id == department_id)
        .order_by(Document.created_at, Document.id)
    )
    return list(result.scalars().all())


async def list_department_document_ids(session: AsyncSession, department_id: str) -> list[str]:
    result = await session.execute(
        select(Document.id).where(Document.department_id == department_id)
    )
    return list(result.scalars().all())


async def set_archived(
    session: AsyncSession,
    document_id: str,
    *,
    archived: bool,
    at: datetime,
) -> int:
    # Only flip rows whose flag differs so repeated toggles touch nothing.
    result = await session.execute(
        update(Document)
        .where(Document.id == document_id, Document.archived.is_(not archived))
        .values(archived=archived, archived_at=at if archived else None)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
