from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.core.config import get_settings
from docgate.core.errors import AccessDeniedError, UnauthenticatedError
from docgate.domain.access import ActorContext, Role
from docgate.persistence.db import get_session
from docgate.services.access_requests import RequestLifecycleManager
from docgate.services.audit import RequestContext, get_request_context
from docgate.services.auth.federated import FederatedIdentityVerifier, get_identity_verifier
from docgate.services.auth.sessions import SessionConfig, SessionManager
from docgate.services.catalog import Catalog
from docgate.services.file_store import LocalFileStore, get_file_store


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


@lru_cache
def _session_manager() -> SessionManager:
    return SessionManager(SessionConfig.from_settings(get_settings()))


def get_session_manager() -> SessionManager:
    # Built once from settings; tests override this dependency with their own config.
    return _session_manager()


def get_verifier() -> FederatedIdentityVerifier:
    return get_identity_verifier()


def get_store() -> LocalFileStore:
    return get_file_store()


def get_catalog(db: AsyncSession = Depends(get_db)) -> Catalog:
    return Catalog(db)


def get_lifecycle(catalog: Catalog = Depends(get_catalog)) -> RequestLifecycleManager:
    return RequestLifecycleManager(catalog.session, catalog)


def request_context(request: Request) -> RequestContext:
    return get_request_context(request)


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_actor(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> ActorContext:
    # Pure credential check: signature, issuer, expiry. No storage round trip.
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise UnauthenticatedError()
    return sessions.validate_session(token)


def require_roles(*roles: Role):
    # Dependency factory to enforce RBAC at the route level.
    allowed = frozenset(roles)

    async def _dependency(actor: ActorContext = Depends(get_current_actor)) -> ActorContext:
        if actor.role not in allowed:
            raise AccessDeniedError("Insufficient role for this operation")
        return actor

    return _dependency
