from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from docgate.core.errors import AccessDeniedError, ResourceNotFoundError
from docgate.domain.access import ActorContext, Decision
from docgate.domain.models import Document
from docgate.persistence.db import with_storage_timeout
from docgate.persistence.repos import documents as documents_repo
from docgate.services.audit import RequestContext, record_event
from docgate.services.authz.policy import can_manage_document


logger = logging.getLogger(__name__)


class Catalog:
    """Read access to document records plus the archive visibility toggle."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_document(self, document_id: str) -> Document | None:
        return await with_storage_timeout(documents_repo.get_document(self.session, document_id))

    async def documents_in_department(self, department_id: str) -> list[Document]:
        return await with_storage_timeout(
            documents_repo.list_department_documents(self.session, department_id)
        )

    async def document_ids_in_department(self, department_id: str) -> list[str]:
        return await with_storage_timeout(
            documents_repo.list_department_document_ids(self.session, department_id)
        )

    async def set_archived(
        self,
        actor: ActorContext,
        document_id: str,
        *,
        archived: bool,
        request_ctx: RequestContext | None = None,
    ) -> Document:
        """Archive or unarchive a document; repeating the same toggle is a no-op.

        Access request rows are never touched: archiving only changes what
        subsequent content checks decide.
        """
        return await with_storage_timeout(
            self._set_archived(actor, document_id, archived=archived, request_ctx=request_ctx)
        )

    async def _set_archived(
        self,
        actor: ActorContext,
        document_id: str,
        *,
        archived: bool,
        request_ctx: RequestContext | None,
    ) -> Document:
        document = await documents_repo.get_document(self.session, document_id)
        decision = can_manage_document(actor, document)
        if decision is Decision.DENY_NOT_FOUND:
            raise ResourceNotFoundError()
        if decision is Decision.DENY_FORBIDDEN:
            raise AccessDeniedError("Document is outside your department")

        now = datetime.now(timezone.utc)
        changed = await documents_repo.set_archived(
            self.session, document_id, archived=archived, at=now
        )
        if changed:
            await record_event(
                session=self.session,
                actor=actor,
                event_type="document.archived" if archived else "document.unarchived",
                outcome="success",
                resource_type="document",
                resource_id=document_id,
                request_ctx=request_ctx,
            )
            logger.info(
                "document_visibility_changed document_id=%s archived=%s actor_id=%s",
                document_id,
                archived,
                actor.actor_id,
            )
        await self.session.commit()
        await self.session.refresh(document)
        return document
