from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from docgate.core.errors import (
    AccessDeniedError,
    DuplicateRequestError,
    RequestAlreadyFinalError,
    ResourceNotAvailableError,
    ResourceNotFoundError,
)
from docgate.domain.access import ActorContext, DecisionAction, RequestStatus, Role
from docgate.domain.models import AccessRequest, AuditEvent
from docgate.persistence.db import SessionLocal
from docgate.persistence.repos.access_requests import insert_request, is_open_pair_violation
from docgate.services.access_requests import RequestLifecycleManager
from docgate.tests.utils.seed import create_access_request, create_actor, create_document


async def _create(actor: ActorContext, document_id: str) -> AccessRequest:
    async with SessionLocal() as session:
        return await RequestLifecycleManager(session).create(actor, document_id)


async def _decide(request_id: str, actor: ActorContext, action: DecisionAction) -> None:
    async with SessionLocal() as session:
        await RequestLifecycleManager(session).decide(request_id, actor, action)


async def _delete(request_id: str, actor: ActorContext) -> None:
    async with SessionLocal() as session:
        await RequestLifecycleManager(session).delete(request_id, actor)


async def _open_rows(actor_id: str, document_id: str) -> int:
    async with SessionLocal() as session:
        result = await session.execute(
            select(func.count())
            .select_from(AccessRequest)
            .where(
                AccessRequest.actor_id == actor_id,
                AccessRequest.document_id == document_id,
                AccessRequest.status.in_([RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value]),
            )
        )
        return int(result.scalar_one())


async def _status(request_id: str) -> str | None:
    async with SessionLocal() as session:
        row = await session.get(AccessRequest, request_id)
        return row.status if row is not None else None


@pytest.mark.asyncio
async def test_create_opens_pending_request_and_audits() -> None:
    reader = await create_actor(role=Role.READER)
    document = await create_document()

    row = await _create(reader, document.id)

    assert row.status == RequestStatus.PENDING.value
    assert row.actor_id == reader.actor_id
    async with SessionLocal() as session:
        events = (
            await session.execute(
                select(AuditEvent).where(AuditEvent.event_type == "access_request.created")
            )
        ).scalars().all()
    assert [event.resource_id for event in events] == [row.id]


@pytest.mark.asyncio
async def test_create_rejects_missing_archived_and_admin_callers() -> None:
    reviewer = await create_actor(role=Role.REVIEWER)
    admin = await create_actor(role=Role.GLOBAL_ADMIN)
    archived = await create_document(archived=True)
    live = await create_document()

    with pytest.raises(ResourceNotFoundError):
        await _create(reviewer, "no-such-document")
    with pytest.raises(ResourceNotAvailableError):
        await _create(reviewer, archived.id)
    with pytest.raises(AccessDeniedError):
        await _create(admin, live.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("existing", [RequestStatus.PENDING, RequestStatus.ACCEPTED])
async def test_open_request_blocks_duplicates(existing: RequestStatus) -> None:
    reader = await create_actor()
    document = await create_document()
    await create_access_request(actor_id=reader.actor_id, document_id=document.id, status=existing)

    with pytest.raises(DuplicateRequestError):
        await _create(reader, document.id)
    assert await _open_rows(reader.actor_id, document.id) == 1


@pytest.mark.asyncio
async def test_foreign_key_failure_is_not_reported_as_duplicate() -> None:
    # A validly shaped actor whose row is gone must not look like an open duplicate.
    ghost = ActorContext(actor_id="actor-without-row", role=Role.READER)
    document = await create_document()

    with pytest.raises(IntegrityError):
        await _create(ghost, document.id)
    assert await _open_rows(ghost.actor_id, document.id) == 0


@pytest.mark.asyncio
async def test_open_pair_violation_classification() -> None:
    reader = await create_actor()
    document = await create_document()
    await create_access_request(actor_id=reader.actor_id, document_id=document.id)

    async with SessionLocal() as session:
        with pytest.raises(IntegrityError) as duplicate:
            await insert_request(
                session,
                request_id="dup",
                actor_id=reader.actor_id,
                document_id=document.id,
                created_at=datetime.now(timezone.utc),
            )
        await session.rollback()
        with pytest.raises(IntegrityError) as missing_actor:
            await insert_request(
                session,
                request_id="orphan",
                actor_id="actor-without-row",
                document_id=document.id,
                created_at=datetime.now(timezone.utc),
            )
        await session.rollback()

    assert is_open_pair_violation(duplicate.value)
    assert not is_open_pair_violation(missing_actor.value)


@pytest.mark.asyncio
async def test_concurrent_creates_yield_one_row_and_one_duplicate() -> None:
    reader = await create_actor()
    document = await create_document()

    results = await asyncio.gather(
        _create(reader, document.id),
        _create(reader, document.id),
        return_exceptions=True,
    )

    created = [result for result in results if isinstance(result, AccessRequest)]
    duplicates = [result for result in results if isinstance(result, DuplicateRequestError)]
    assert len(created) == 1
    assert len(duplicates) == 1
    assert await _open_rows(reader.actor_id, document.id) == 1


@pytest.mark.asyncio
async def test_reject_delete_recreate() -> None:
    reader = await create_actor()
    admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-a")
    document = await create_document(department_id="dept-a")

    first = await _create(reader, document.id)
    await _decide(first.id, admin, DecisionAction.REJECT)
    assert await _status(first.id) == RequestStatus.REJECTED.value

    await _delete(first.id, reader)
    assert await _status(first.id) is None

    second = await _create(reader, document.id)
    assert second.id != first.id
    assert second.status == RequestStatus.PENDING.value


@pytest.mark.asyncio
async def test_rejected_request_does_not_block_new_request() -> None:
    reader = await create_actor()
    document = await create_document()
    await create_access_request(
        actor_id=reader.actor_id, document_id=document.id, status=RequestStatus.REJECTED
    )
    row = await _create(reader, document.id)
    assert row.status == RequestStatus.PENDING.value


@pytest.mark.asyncio
async def test_accepted_request_cannot_be_deleted() -> None:
    reader = await create_actor()
    admin = await create_actor(role=Role.GLOBAL_ADMIN)
    document = await create_document()
    row = await _create(reader, document.id)
    await _decide(row.id, admin, DecisionAction.ACCEPT)

    with pytest.raises(RequestAlreadyFinalError):
        await _delete(row.id, reader)
    assert await _status(row.id) == RequestStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_pending_request_can_be_withdrawn_by_owner_only() -> None:
    owner = await create_actor()
    stranger = await create_actor(role=Role.REVIEWER)
    document = await create_document()
    row = await _create(owner, document.id)

    with pytest.raises(AccessDeniedError):
        await _delete(row.id, stranger)
    with pytest.raises(ResourceNotFoundError):
        await _delete("no-such-request", owner)

    await _delete(row.id, owner)
    assert await _status(row.id) is None


@pytest.mark.asyncio
async def test_decide_enforces_scope_and_finality() -> None:
    reader = await create_actor()
    other_dept_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-b")
    own_dept_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-a")
    document = await create_document(department_id="dept-a")
    row = await _create(reader, document.id)

    with pytest.raises(ResourceNotFoundError):
        await _decide("no-such-request", own_dept_admin, DecisionAction.ACCEPT)
    with pytest.raises(AccessDeniedError):
        await _decide(row.id, other_dept_admin, DecisionAction.ACCEPT)
    with pytest.raises(AccessDeniedError):
        await _decide(row.id, reader, DecisionAction.ACCEPT)
    assert await _status(row.id) == RequestStatus.PENDING.value

    await _decide(row.id, own_dept_admin, DecisionAction.ACCEPT)
    with pytest.raises(RequestAlreadyFinalError):
        await _decide(row.id, own_dept_admin, DecisionAction.REJECT)
    assert await _status(row.id) == RequestStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_concurrent_decisions_have_one_winner() -> None:
    reader = await create_actor()
    admin_one = await create_actor(role=Role.GLOBAL_ADMIN)
    admin_two = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-a")
    document = await create_document(department_id="dept-a")
    row = await _create(reader, document.id)

    results = await asyncio.gather(
        _decide(row.id, admin_one, DecisionAction.ACCEPT),
        _decide(row.id, admin_two, DecisionAction.REJECT),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, RequestAlreadyFinalError)]
    assert len(failures) == 1
    assert await _status(row.id) in {RequestStatus.ACCEPTED.value, RequestStatus.REJECTED.value}


@pytest.mark.asyncio
async def test_get_is_scoped_to_owner_and_admins() -> None:
    owner = await create_actor()
    other_reader = await create_actor()
    dept_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-a")
    foreign_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-b")
    document = await create_document(department_id="dept-a")
    row = await _create(owner, document.id)

    async with SessionLocal() as session:
        lifecycle = RequestLifecycleManager(session)
        assert (await lifecycle.get(row.id, owner)).id == row.id
        assert (await lifecycle.get(row.id, dept_admin)).id == row.id
        with pytest.raises(ResourceNotFoundError):
            await lifecycle.get(row.id, other_reader)
        with pytest.raises(AccessDeniedError):
            await lifecycle.get(row.id, foreign_admin)


@pytest.mark.asyncio
async def test_pending_queue_is_scoped_by_department() -> None:
    reader = await create_actor()
    doc_a = await create_document(department_id="dept-a")
    doc_b = await create_document(department_id="dept-b")
    req_a = await _create(reader, doc_a.id)
    req_b = await _create(reader, doc_b.id)
    dept_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-a")
    empty_dept_admin = await create_actor(role=Role.DEPT_ADMIN, department_id="dept-z")
    global_admin = await create_actor(role=Role.GLOBAL_ADMIN)

    async with SessionLocal() as session:
        lifecycle = RequestLifecycleManager(session)
        assert [row.id for row in await lifecycle.list_pending(dept_admin)] == [req_a.id]
        assert await lifecycle.list_pending(empty_dept_admin) == []
        assert {row.id for row in await lifecycle.list_pending(global_admin)} == {req_a.id, req_b.id}
        with pytest.raises(AccessDeniedError):
            await lifecycle.list_pending(reader)
        assert {row.id for row in await lifecycle.list_for_actor(reader)} == {req_a.id, req_b.id}


@pytest.mark.asyncio
async def test_find_for_content_returns_only_accepted_grant() -> None:
    reader = await create_actor()
    admin = await create_actor(role=Role.GLOBAL_ADMIN)
    document = await create_document()
    row = await _create(reader, document.id)

    async with SessionLocal() as session:
        assert await RequestLifecycleManager(session).find_for_content(reader, document.id) is None

    await _decide(row.id, admin, DecisionAction.ACCEPT)

    async with SessionLocal() as session:
        lifecycle = RequestLifecycleManager(session)
        grant = await lifecycle.find_for_content(reader, document.id)
        assert grant is not None and grant.id == row.id
        assert await lifecycle.find_for_content(admin, document.id) is None
