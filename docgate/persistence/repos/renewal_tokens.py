from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.domain.models import RenewalToken


async def insert_token(
    session: AsyncSession,
    *,
    token_id: str,
    actor_id: str,
    family_id: str,
    token_hash: str,
    token_prefix: str,
    expires_at: datetime,
    created_at: datetime,
) -> RenewalToken:
    row = RenewalToken(
        id=token_id,
        actor_id=actor_id,
        family_id=family_id,
        token_hash=token_hash,
        token_prefix=token_prefix,
        expires_at=expires_at,
        consumed=False,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row


async def get_by_hash(session: AsyncSession, token_hash: str) -> RenewalToken | None:
    result = await session.execute(select(RenewalToken).where(RenewalToken.token_hash == token_hash))
    return result.scalar_one_or_none()


async def consume_if_unconsumed(
    session: AsyncSession,
    token_id: str,
    *,
    at: datetime,
    replaced_by_id: str | None = None,
) -> bool:
    # Compare-and-swap on consumed=false; the losing concurrent renewal matches zero rows.
    result = await session.execute(
        update(RenewalToken)
        .where(RenewalToken.id == token_id, RenewalToken.consumed.is_(False))
        .values(consumed=True, consumed_at=at, replaced_by_id=replaced_by_id)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def consume_family(session: AsyncSession, family_id: str, *, at: datetime) -> int:
    result = await session.execute(
        update(RenewalToken)
        .where(RenewalToken.family_id == family_id, RenewalToken.consumed.is_(False))
        .values(consumed=True, consumed_at=at)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def consume_all_for_actor(session: AsyncSession, actor_id: str, *, at: datetime) -> int:
    result = await session.execute(
        update(RenewalToken)
        .where(RenewalToken.actor_id == actor_id, RenewalToken.consumed.is_(False))
        .values(consumed=True, consumed_at=at)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def prune_tokens(session: AsyncSession, *, cutoff: datetime) -> int:
    # Drop tokens that expired, or were consumed, before the retention cutoff.
    result = await session.execute(
        delete(RenewalToken).where(
            or_(
                RenewalToken.expires_at < cutoff,
                (RenewalToken.consumed.is_(True)) & (RenewalToken.consumed_at < cutoff),
            )
        )
    )
    return int(result.rowcount or 0)
