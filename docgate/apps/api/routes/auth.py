from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.apps.api.deps import (
    get_current_actor,
    get_db,
    get_session_manager,
    get_verifier,
    request_context,
)
from docgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES, FORBIDDEN_RESPONSE, INVALID_TOKEN_RESPONSE
from docgate.apps.api.response import SuccessEnvelope, success_response
from docgate.core.config import get_settings
from docgate.domain.access import ActorContext
from docgate.services.audit import RequestContext
from docgate.services.auth.federated import FederatedIdentityVerifier
from docgate.services.auth.sessions import IssuedCredentials, SessionManager


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class CredentialExchangeRequest(BaseModel):
    # ID token issued by the federated identity provider.
    credential: str = Field(min_length=1)

    model_config = {"extra": "forbid"}


class ActorResponse(BaseModel):
    id: str
    role: str
    department_id: str | None


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    actor: ActorResponse


class MessageResponse(BaseModel):
    message: str


def _actor_response(actor: ActorContext) -> ActorResponse:
    return ActorResponse(id=actor.actor_id, role=actor.role.value, department_id=actor.department_id)


def _set_renewal_cookie(response: Response, issued: IssuedCredentials) -> None:
    # HttpOnly keeps the renewal token away from page scripts; path keeps it off other routes.
    settings = get_settings()
    response.set_cookie(
        key=settings.renewal_cookie_name,
        value=issued.renewal_token,
        max_age=settings.renewal_ttl_days * 24 * 3600,
        httponly=True,
        secure=settings.renewal_cookie_secure,
        samesite="strict",
        path=settings.renewal_cookie_path,
    )


def _clear_renewal_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.renewal_cookie_name,
        path=settings.renewal_cookie_path,
        httponly=True,
        secure=settings.renewal_cookie_secure,
        samesite="strict",
    )


def _session_payload(issued: IssuedCredentials) -> SessionResponse:
    return SessionResponse(
        access_token=issued.session_token,
        expires_in=issued.expires_in,
        actor=_actor_response(issued.actor),
    )


def _presented_renewal_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().renewal_cookie_name)


@router.post(
    "/exchange",
    response_model=SuccessEnvelope[SessionResponse],
    responses={**INVALID_TOKEN_RESPONSE, **FORBIDDEN_RESPONSE},
)
async def exchange_credential(
    payload: CredentialExchangeRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    verifier: FederatedIdentityVerifier = Depends(get_verifier),
    sessions: SessionManager = Depends(get_session_manager),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    identity = await verifier.verify(payload.credential)
    issued = await sessions.login(db, identity, request_ctx=request_ctx)
    _set_renewal_cookie(response, issued)
    return success_response(request=request, data=_session_payload(issued))


@router.post("/renew", response_model=SuccessEnvelope[SessionResponse])
async def renew_session(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    issued = await sessions.renew(db, _presented_renewal_token(request), request_ctx=request_ctx)
    _set_renewal_cookie(response, issued)
    return success_response(request=request, data=_session_payload(issued))


@router.post("/logout", response_model=SuccessEnvelope[MessageResponse])
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
    request_ctx: RequestContext = Depends(request_context),
) -> dict:
    await sessions.logout(db, _presented_renewal_token(request), request_ctx=request_ctx)
    _clear_renewal_cookie(response)
    return success_response(request=request, data=MessageResponse(message="Signed out"))


@router.get("/me", response_model=SuccessEnvelope[ActorResponse])
async def whoami(
    request: Request,
    actor: ActorContext = Depends(get_current_actor),
) -> dict:
    return success_response(request=request, data=_actor_response(actor))
