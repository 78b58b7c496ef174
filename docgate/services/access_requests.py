"""Access request lifecycle.

    PENDING --accept--> ACCEPTED   (terminal)
    PENDING --reject--> REJECTED   (terminal, deletable by the requester)

Every state-changing operation is one conditional statement at the storage
boundary: the insert relies on the ``uq_access_requests_open_pair`` partial
unique index, decisions compare-and-swap on ``status = 'PENDING'`` and deletes
carry the owner and allowed statuses in their WHERE clause. Reads that happen
before those statements only classify the error for the caller. They never
decide whether a write is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.core.errors import (
    AccessDeniedError,
    DuplicateRequestError,
    RequestAlreadyFinalError,
    ResourceNotAvailableError,
    ResourceNotFoundError,
)
from docgate.domain.access import ActorContext, Decision, DecisionAction, RequestStatus, Role
from docgate.domain.models import AccessRequest
from docgate.persistence.db import with_storage_timeout
from docgate.persistence.repos import access_requests as requests_repo
from docgate.persistence.repos import documents as documents_repo
from docgate.services.audit import RequestContext, record_event
from docgate.services.authz.policy import can_manage_document
from docgate.services.catalog import Catalog


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RequestLifecycleManager:
    def __init__(self, session: AsyncSession, catalog: Catalog | None = None) -> None:
        self.session = session
        self.catalog = catalog or Catalog(session)

    async def create(
        self,
        actor: ActorContext,
        document_id: str,
        *,
        request_ctx: RequestContext | None = None,
    ) -> AccessRequest:
        """Open a PENDING request for ``document_id`` on behalf of a reader or reviewer.

        Raises ResourceNotFoundError, ResourceNotAvailableError (archived, shown
        to clients as a 404), DuplicateRequestError or AccessDeniedError.
        """
        if not actor.is_requester:
            raise AccessDeniedError("Only readers and reviewers request access")
        return await with_storage_timeout(self._create(actor, document_id, request_ctx))

    async def _create(
        self, actor: ActorContext, document_id: str, request_ctx: RequestContext | None
    ) -> AccessRequest:
        document = await documents_repo.get_document(self.session, document_id)
        if document is None:
            raise ResourceNotFoundError()
        if document.archived:
            raise ResourceNotAvailableError()

        try:
            row = await requests_repo.insert_request(
                self.session,
                request_id=uuid4().hex,
                actor_id=actor.actor_id,
                document_id=document_id,
                created_at=_utc_now(),
            )
            await record_event(
                session=self.session,
                actor=actor,
                event_type="access_request.created",
                outcome="success",
                resource_type="access_request",
                resource_id=row.id,
                request_ctx=request_ctx,
                metadata={"document_id": document_id},
            )
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if not requests_repo.is_open_pair_violation(exc):
                logger.exception(
                    "access_request_insert_failed actor_id=%s document_id=%s",
                    actor.actor_id,
                    document_id,
                )
                raise
            logger.info(
                "access_request_duplicate actor_id=%s document_id=%s",
                actor.actor_id,
                document_id,
            )
            await record_event(
                session=self.session,
                actor=actor,
                event_type="access_request.duplicate",
                outcome="failure",
                resource_type="document",
                resource_id=document_id,
                request_ctx=request_ctx,
                error_code=DuplicateRequestError.code,
                commit=True,
            )
            raise DuplicateRequestError() from exc
        return row

    async def decide(
        self,
        request_id: str,
        actor: ActorContext,
        action: DecisionAction,
        *,
        request_ctx: RequestContext | None = None,
    ) -> None:
        """Accept or reject a PENDING request within the admin's scope."""
        await with_storage_timeout(self._decide(request_id, actor, action, request_ctx))

    async def _decide(
        self,
        request_id: str,
        actor: ActorContext,
        action: DecisionAction,
        request_ctx: RequestContext | None,
    ) -> None:
        row = await requests_repo.get_request(self.session, request_id)
        if row is None:
            raise ResourceNotFoundError()
        document = await documents_repo.get_document(self.session, row.document_id)
        scope = can_manage_document(actor, document)
        if scope is Decision.DENY_NOT_FOUND:
            raise ResourceNotFoundError()
        if scope is Decision.DENY_FORBIDDEN:
            raise AccessDeniedError("Access request is outside your scope")
        if row.status != RequestStatus.PENDING.value:
            raise RequestAlreadyFinalError()

        target = action.target_status
        swapped = await requests_repo.transition_pending(
            self.session,
            request_id,
            status=target,
            decided_by=actor.actor_id,
            decided_at=_utc_now(),
        )
        if not swapped:
            # Another admin decided between our read and the swap.
            await self.session.rollback()
            raise RequestAlreadyFinalError()
        await record_event(
            session=self.session,
            actor=actor,
            event_type="access_request.decided",
            outcome="success",
            resource_type="access_request",
            resource_id=request_id,
            request_ctx=request_ctx,
            metadata={"status": target.value, "document_id": row.document_id},
        )
        await self.session.commit()
        logger.info(
            "access_request_decided request_id=%s status=%s actor_id=%s",
            request_id,
            target.value,
            actor.actor_id,
        )

    async def delete(
        self,
        request_id: str,
        actor: ActorContext,
        *,
        request_ctx: RequestContext | None = None,
    ) -> None:
        """Withdraw a PENDING request or clear a REJECTED one; owner only."""
        await with_storage_timeout(self._delete(request_id, actor, request_ctx))

    async def _delete(
        self, request_id: str, actor: ActorContext, request_ctx: RequestContext | None
    ) -> None:
        deleted = await requests_repo.delete_owned_deletable(
            self.session, request_id, actor_id=actor.actor_id
        )
        if deleted:
            await record_event(
                session=self.session,
                actor=actor,
                event_type="access_request.deleted",
                outcome="success",
                resource_type="access_request",
                resource_id=request_id,
                request_ctx=request_ctx,
            )
            await self.session.commit()
            return

        # Nothing matched: classify why, after the fact.
        row = await requests_repo.get_request(self.session, request_id)
        if row is None:
            raise ResourceNotFoundError()
        if row.actor_id != actor.actor_id:
            raise AccessDeniedError("Only the requester may delete this access request")
        raise RequestAlreadyFinalError()

    async def get(self, request_id: str, actor: ActorContext) -> AccessRequest:
        return await with_storage_timeout(self._get(request_id, actor))

    async def _get(self, request_id: str, actor: ActorContext) -> AccessRequest:
        row = await requests_repo.get_request(self.session, request_id)
        if row is None:
            raise ResourceNotFoundError()
        if row.actor_id == actor.actor_id:
            return row
        if actor.is_admin:
            document = await documents_repo.get_document(self.session, row.document_id)
            if can_manage_document(actor, document) is Decision.ALLOW:
                return row
            if document is not None:
                raise AccessDeniedError("Access request is outside your scope")
        # Other requesters' rows are indistinguishable from missing ones.
        raise ResourceNotFoundError()

    async def list_for_actor(self, actor: ActorContext) -> list[AccessRequest]:
        return await with_storage_timeout(requests_repo.list_for_actor(self.session, actor.actor_id))

    async def list_pending(self, actor: ActorContext) -> list[AccessRequest]:
        """Decision queue: everything for a global admin, own department for a dept admin."""
        if actor.role is Role.GLOBAL_ADMIN:
            return await with_storage_timeout(requests_repo.list_pending(self.session))
        if actor.role is Role.DEPT_ADMIN and actor.department_id is not None:
            document_ids = await self.catalog.document_ids_in_department(actor.department_id)
            return await with_storage_timeout(
                requests_repo.list_pending(self.session, document_ids=document_ids)
            )
        raise AccessDeniedError("Only admins review access requests")

    async def find_for_content(self, actor: ActorContext, document_id: str) -> AccessRequest | None:
        # Only requesters hold grants; admins are decided by role and department.
        if not actor.is_requester:
            return None
        return await with_storage_timeout(
            requests_repo.get_accepted_request(
                self.session, actor_id=actor.actor_id, document_id=document_id
            )
        )
