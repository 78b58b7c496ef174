from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from docgate.core.config import get_settings
from docgate.core.errors import ResourceNotFoundError
from docgate.domain.access import ActorContext, Role
from docgate.domain.models import Actor
from docgate.persistence.repos import actors as actors_repo
from docgate.persistence.repos import renewal_tokens as renewal_repo
from docgate.services.audit import record_event


logger = logging.getLogger(__name__)


async def prune_renewal_tokens(session: AsyncSession, *, retention_days: int | None = None) -> int:
    # Remove expired or consumed renewal tokens once past the retention window.
    days = get_settings().renewal_retention_days if retention_days is None else retention_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    return await renewal_repo.prune_tokens(session, cutoff=cutoff)


async def assign_role(
    session: AsyncSession,
    *,
    email: str,
    role: Role,
    department_id: str | None = None,
) -> Actor:
    """Change an actor's role and department, then end their renewable sessions.

    Session credentials carry the role as a claim, so the change takes effect
    at the next sign-in. Outstanding renewal tokens are consumed to force it.
    """
    # Reuse the actor invariants: department iff DEPT_ADMIN.
    ActorContext(actor_id="-", role=role, department_id=department_id)

    actor = await actors_repo.get_actor_by_email(session, email)
    if actor is None:
        raise ResourceNotFoundError("Actor not found")

    now = datetime.now(timezone.utc)
    previous_role = actor.role
    await actors_repo.set_role(session, actor.id, role=role.value, department_id=department_id)
    revoked = await renewal_repo.consume_all_for_actor(session, actor.id, at=now)
    await record_event(
        session=session,
        actor_id=actor.id,
        event_type="actor.role.assigned",
        outcome="success",
        resource_type="actor",
        resource_id=actor.id,
        metadata={
            "previous_role": previous_role,
            "role": role.value,
            "department_id": department_id,
            "revoked_renewals": revoked,
        },
        best_effort=False,
    )
    await session.commit()
    await session.refresh(actor)
    logger.info("actor_role_assigned actor_id=%s role=%s", actor.id, role.value)
    return actor
