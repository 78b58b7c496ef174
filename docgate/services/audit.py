from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from docgate.core.config import get_settings
from docgate.domain.access import ActorContext
from docgate.domain.models import AuditEvent


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "credential", "cookie", "path"]
_REDACTED_VALUE = "[REDACTED]"

RequestContext = dict[str, str | None]
EMPTY_REQUEST_CONTEXT: RequestContext = {"request_id": None, "ip_address": None, "user_agent": None}


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> RequestContext:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return dict(EMPTY_REQUEST_CONTEXT)
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


async def record_event(
    *,
    session: AsyncSession,
    actor: ActorContext | None = None,
    actor_id: str | None = None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_ctx: RequestContext | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool = False,
    best_effort: bool = True,
) -> None:
    """Stage an audit row in the caller's session.

    With ``commit=False`` the row rides along with the caller's transaction, so
    a rolled-back operation leaves no audit trail of a success that never
    happened. Write failures are logged and swallowed when ``best_effort``.
    """
    if not get_settings().audit_enabled:
        return
    ctx = request_ctx or EMPTY_REQUEST_CONTEXT
    event = AuditEvent(
        occurred_at=datetime.now(timezone.utc),
        actor_id=actor.actor_id if actor is not None else actor_id,
        actor_role=actor.role.value if actor is not None else None,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=ctx.get("request_id"),
        ip_address=ctx.get("ip_address"),
        user_agent=ctx.get("user_agent"),
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        if not best_effort:
            raise
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s",
            event_type,
            ctx.get("request_id"),
            exc_info=exc,
        )
