from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from docgate.apps.api.deps import get_current_actor, get_lifecycle, request_context
from docgate.apps.api.openapi import (
    CONFLICT_RESPONSE,
    DEFAULT_ERROR_RESPONSES,
    FORBIDDEN_RESPONSE,
    NOT_FOUND_RESPONSE,
)
from docgate.apps.api.response import SuccessEnvelope, success_response
from docgate.domain.access import ActorContext, DecisionAction
from docgate.domain.models import AccessRequest
from docgate.services.access_requests import RequestLifecycleManager
from docgate.services.audit import RequestContext


router = APIRouter(
    prefix="/access-requests", tags=["access-requests"], responses=DEFAULT_ERROR_RESPONSES
)


class AccessRequestCreate(BaseModel):
    document_id: str = Field(min_length=1, max_length=64)

    model_config = {"extra": "forbid"}


class AccessRequestDecision(BaseModel):
    action: DecisionAction

    model_config = {"extra": "forbid"}


class AccessRequestResponse(BaseModel):
    id: str
    actor_id: str
    document_id: str
    status: str
    created_at: str
    decided_at: str | None
    decided_by: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _to_response(row: AccessRequest) -> AccessRequestResponse:
    return AccessRequestResponse(
        id=row.id,
        actor_id=row.actor_id,
        document_id=row.document_id,
        status=row.status,
        created_at=_iso(row.created_at) or "",
        decided_at=_iso(row.decided_at),
        decided_by=row.decided_by,
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[AccessRequestResponse],
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE, **CONFLICT_RESPONSE},
)
async def create_access_request(
    payload: AccessRequestCreate,
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    row = await lifecycle.create(actor, payload.document_id, request_ctx=request_ctx)
    return success_response(request=request, data=_to_response(row))


@router.get("", response_model=SuccessEnvelope[list[AccessRequestResponse]])
async def list_my_access_requests(
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
) -> dict:
    rows = await lifecycle.list_for_actor(actor)
    return success_response(request=request, data=[_to_response(row) for row in rows])


# Declared before "/{request_id}" so the literal path wins.
@router.get(
    "/pending",
    response_model=SuccessEnvelope[list[AccessRequestResponse]],
    responses=FORBIDDEN_RESPONSE,
)
async def list_pending_access_requests(
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
) -> dict:
    rows = await lifecycle.list_pending(actor)
    return success_response(request=request, data=[_to_response(row) for row in rows])


@router.get(
    "/{request_id}",
    response_model=SuccessEnvelope[AccessRequestResponse],
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE},
)
async def get_access_request(
    request_id: str,
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
) -> dict:
    row = await lifecycle.get(request_id, actor)
    return success_response(request=request, data=_to_response(row))


@router.post(
    "/{request_id}/decision",
    status_code=204,
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE, **CONFLICT_RESPONSE},
)
async def decide_access_request(
    request_id: str,
    payload: AccessRequestDecision,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
    request_ctx: RequestContext = Depends(request_context),
) -> Response:
    await lifecycle.decide(request_id, actor, payload.action, request_ctx=request_ctx)
    return Response(status_code=204)


@router.delete(
    "/{request_id}",
    status_code=204,
    responses={**NOT_FOUND_RESPONSE, **FORBIDDEN_RESPONSE, **CONFLICT_RESPONSE},
)
async def delete_access_request(
    request_id: str,
    actor: ActorContext = Depends(get_current_actor),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
    request_ctx: RequestContext = Depends(request_context),
) -> Response:
    await lifecycle.delete(request_id, actor, request_ctx=request_ctx)
    return Response(status_code=204)
