from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.domain.models import Actor


async def get_actor(session: AsyncSession, actor_id: str) -> Actor | None:
    result = await session.execute(select(Actor).where(Actor.id == actor_id))
    return result.scalar_one_or_none()


async def get_actor_by_email(session: AsyncSession, email: str) -> Actor | None:
    # Emails are stored lowercased at provisioning time.
    result = await session.execute(select(Actor).where(Actor.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_actor(
    session: AsyncSession,
    *,
    actor_id: str,
    email: str,
    role: str,
    department_id: str | None = None,
) -> Actor:
    actor = Actor(
        id=actor_id,
        email=email.strip().lower(),
        role=role,
        department_id=department_id,
        is_active=True,
    )
    session.add(actor)
    await session.flush()
    return actor


async def touch_last_login(session: AsyncSession, actor_id: str, *, at: datetime) -> None:
    await session.execute(update(Actor).where(Actor.id == actor_id).values(last_login_at=at))


async def set_role(
    session: AsyncSession,
    actor_id: str,
    *,
    role: str,
    department_id: str | None,
) -> None:
    # Role and department change together so the DEPT_ADMIN pairing stays consistent.
    await session.execute(
        update(Actor).where(Actor.id == actor_id).values(role=role, department_id=department_id)
    )
