from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.domain.access import RequestStatus
from docgate.domain.models import OPEN_PAIR_INDEX, AccessRequest

# SQLite reports unique index violations by column rather than by index name.
_SQLITE_OPEN_PAIR_MESSAGE = "UNIQUE constraint failed: access_requests.actor_id, access_requests.document_id"


async def insert_request(
    session: AsyncSession,
    *,
    request_id: str,
    actor_id: str,
    document_id: str,
    created_at: datetime,
) -> AccessRequest:
    # Single INSERT; the partial unique index raises IntegrityError on an open duplicate.
    row = AccessRequest(
        id=request_id,
        actor_id=actor_id,
        document_id=document_id,
        status=RequestStatus.PENDING.value,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row


def is_open_pair_violation(exc: IntegrityError) -> bool:
    """True when the failed insert collided with an open request for the same pair.

    Foreign key and other integrity failures return False.
    """
    orig = exc.orig
    # asyncpg errors surface the violated constraint by name.
    constraint = getattr(getattr(orig, "__cause__", None), "constraint_name", None)
    if constraint is not None:
        return constraint == OPEN_PAIR_INDEX
    message = str(orig)
    return OPEN_PAIR_INDEX in message or _SQLITE_OPEN_PAIR_MESSAGE in message


async def get_request(session: AsyncSession, request_id: str) -> AccessRequest | None:
    result = await session.execute(select(AccessRequest).where(AccessRequest.id == request_id))
    return result.scalar_one_or_none()


async def get_accepted_request(
    session: AsyncSession, *, actor_id: str, document_id: str
) -> AccessRequest | None:
    # The open-pair index guarantees at most one ACCEPTED row per pair.
    result = await session.execute(
        select(AccessRequest).where(
            AccessRequest.actor_id == actor_id,
            AccessRequest.document_id == document_id,
            AccessRequest.status == RequestStatus.ACCEPTED.value,
        )
    )
    return result.scalar_one_or_none()


async def list_for_actor(session: AsyncSession, actor_id: str) -> list[AccessRequest]:
    result = await session.execute(
        select(AccessRequest)
        .where(AccessRequest.actor_id == actor_id)
        .order_by(AccessRequest.created_at.desc(), AccessRequest.id)
    )
    return list(result.scalars().all())


async def list_pending(
    session: AsyncSession, *, document_ids: Sequence[str] | None = None
) -> list[AccessRequest]:
    # document_ids=None means unscoped; an empty sequence matches nothing.
    stmt = select(AccessRequest).where(AccessRequest.status == RequestStatus.PENDING.value)
    if document_ids is not None:
        if not document_ids:
            return []
        stmt = stmt.where(AccessRequest.document_id.in_(list(document_ids)))
    result = await session.execute(stmt.order_by(AccessRequest.created_at, AccessRequest.id))
    return list(result.scalars().all())


async def transition_pending(
    session: AsyncSession,
    request_id: str,
    *,
    status: RequestStatus,
    decided_by: str,
    decided_at: datetime,
) -> bool:
    # Compare-and-swap on PENDING; exactly one concurrent decision can match.
    result = await session.execute(
        update(AccessRequest)
        .where(
            AccessRequest.id == request_id,
            AccessRequest.status == RequestStatus.PENDING.value,
        )
        .values(status=status.value, decided_by=decided_by, decided_at=decided_at)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def delete_owned_deletable(session: AsyncSession, request_id: str, *, actor_id: str) -> bool:
    # Conditional delete keeps ownership and state checks inside one statement.
    result = await session.execute(
        delete(AccessRequest)
        .where(
            AccessRequest.id == request_id,
            AccessRequest.actor_id == actor_id,
            AccessRequest.status.in_(
                [RequestStatus.PENDING.value, RequestStatus.REJECTED.value]
            ),
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1
