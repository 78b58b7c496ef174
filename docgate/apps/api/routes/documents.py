from __future__ import annotations

from datetime import datetime
import logging

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from docgate.apps.api.deps import (
    get_catalog,
    get_current_actor,
    get_lifecycle,
    get_store,
    request_context,
    require_roles,
)
from docgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES, FORBIDDEN_RESPONSE, NOT_FOUND_RESPONSE
from docgate.apps.api.response import SuccessEnvelope, success_response
from docgate.core.errors import AccessDeniedError, ResourceNotFoundError
from docgate.domain.access import ActorContext, Decision, Role
from docgate.domain.models import Document
from docgate.services.access_requests import RequestLifecycleManager
from docgate.services.audit import RequestContext, record_event
from docgate.services.authz.policy import can_access_content, can_view_metadata
from docgate.services.catalog import Catalog
from docgate.services.file_store import LocalFileStore


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)


class DocumentResponse(BaseModel):
    id: str
    department_id: str
    title: str
    content_type: str
    archived: bool
    archived_at: str | None
    created_at: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def document_response(document: Document) -> DocumentResponse:
    # storage_path stays server-side.
    return DocumentResponse(
        id=document.id,
        department_id=document.department_id,
        title=document.title,
        content_type=document.content_type,
        archived=document.archived,
        archived_at=_iso(document.archived_at),
        created_at=_iso(document.created_at),
    )


@router.get(
    "/{document_id}",
    response_model=SuccessEnvelope[DocumentResponse],
    responses=NOT_FOUND_RESPONSE,
)
async def get_document(
    document_id: str,
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    document = await catalog.get_document(document_id)
    if not can_view_metadata(actor, document):
        raise ResourceNotFoundError()
    return success_response(request=request, data=document_response(document))


@router.get(
    "/{document_id}/content",
    response_class=Response,
    responses={
        200: {"content": {"application/octet-stream": {}}, "description": "Document bytes"},
        **NOT_FOUND_RESPONSE,
        **FORBIDDEN_RESPONSE,
    },
)
async def get_document_content(
    document_id: str,
    actor: ActorContext = Depends(get_current_actor),
    catalog: Catalog = Depends(get_catalog),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
    store: LocalFileStore = Depends(get_store),
    request_ctx: RequestContext = Depends(request_context),
) -> Response:
    document = await catalog.get_document(document_id)
    grant = None
    if document is not None:
        grant = await lifecycle.find_for_content(actor, document_id)
    decision = can_access_content(actor, document, grant)

    if decision is not Decision.ALLOW:
        await record_event(
            session=catalog.session,
            actor=actor,
            event_type="document.content.denied",
            outcome="failure",
            resource_type="document",
            resource_id=document_id,
            request_ctx=request_ctx,
            metadata={"decision": decision.value},
            commit=True,
        )
        if decision is Decision.DENY_FORBIDDEN:
            raise AccessDeniedError("Document is outside your department")
        raise ResourceNotFoundError()

    body = await store.fetch(document.storage_path)
    await record_event(
        session=catalog.session,
        actor=actor,
        event_type="document.content.served",
        outcome="success",
        resource_type="document",
        resource_id=document_id,
        request_ctx=request_ctx,
        metadata={"bytes": len(body)},
        commit=True,
    )
    return Response(content=body, media_type=document.content_type)


@router.post(
    "/{document_id}/archive",
    response_model=SuccessEnvelope[DocumentResponse],
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE},
)
async def archive_document(
    document_id: str,
    request: Request,
    actor: ActorContext = Depends(require_roles(Role.DEPT_ADMIN, Role.GLOBAL_ADMIN)),
    catalog: Catalog = Depends(get_catalog),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    document = await catalog.set_archived(actor, document_id, archived=True, request_ctx=request_ctx)
    return success_response(request=request, data=document_response(document))


@router.post(
    "/{document_id}/unarchive",
    response_model=SuccessEnvelope[DocumentResponse],
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE},
)
async def unarchive_document(
    document_id: str,
    request: Request,
    actor: ActorContext = Depends(require_roles(Role.DEPT_ADMIN, Role.GLOBAL_ADMIN)),
    catalog: Catalog = Depends(get_catalog),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    document = await catalog.set_archived(actor, document_id, archived=False, request_ctx=request_ctx)
    return success_response(request=request, data=document_response(document))
