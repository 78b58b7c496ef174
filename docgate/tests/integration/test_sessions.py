from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from docgate.core.config import REUSE_POLICY_REVOKE_ALL, REUSE_POLICY_REVOKE_FAMILY
from docgate.core.errors import ActorDisabledError, DomainNotAllowedError, RefreshTokenRevokedError
from docgate.domain.access import Role
from docgate.domain.models import Actor, AuditEvent, RenewalToken
from docgate.persistence.db import SessionLocal
from docgate.services.auth.federated import VerifiedIdentity
from docgate.services.auth.sessions import IssuedCredentials, SessionManager, hash_renewal_token
from docgate.tests.utils.seed import session_manager


def _identity(email: str, domain: str = "example.org") -> VerifiedIdentity:
    return VerifiedIdentity(email=email, domain=domain, subject=f"sub-{email}")


async def _login(manager: SessionManager, email: str) -> IssuedCredentials:
    async with SessionLocal() as session:
        return await manager.login(session, _identity(email))


async def _renew(manager: SessionManager, token: str | None) -> IssuedCredentials:
    async with SessionLocal() as session:
        return await manager.renew(session, token)


async def _logout(manager: SessionManager, token: str | None) -> None:
    async with SessionLocal() as session:
        await manager.logout(session, token)


async def _token_row(raw_token: str) -> RenewalToken:
    async with SessionLocal() as session:
        result = await session.execute(
            select(RenewalToken).where(RenewalToken.token_hash == hash_renewal_token(raw_token))
        )
        return result.scalar_one()


async def _event_types() -> list[str]:
    async with SessionLocal() as session:
        result = await session.execute(select(AuditEvent.event_type).order_by(AuditEvent.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_first_login_provisions_reader_and_issues_credentials() -> None:
    manager = session_manager()
    issued = await _login(manager, "Carol@Example.org")

    assert issued.actor.role is Role.READER
    assert manager.validate_session(issued.session_token) == issued.actor
    assert 0 < issued.expires_in <= 3600
    assert issued.renewal_expires_at - datetime.now(timezone.utc) > timedelta(days=29)

    row = await _token_row(issued.renewal_token)
    assert row.actor_id == issued.actor.actor_id
    assert row.consumed is False
    assert row.token_hash != issued.renewal_token

    # Second login reuses the actor but opens a new token family.
    again = await _login(manager, "carol@example.org")
    assert again.actor.actor_id == issued.actor.actor_id
    assert (await _token_row(again.renewal_token)).family_id != row.family_id


@pytest.mark.asyncio
async def test_bootstrap_admin_email_becomes_global_admin() -> None:
    issued = await _login(session_manager(), "root@example.org")
    assert issued.actor.role is Role.GLOBAL_ADMIN


@pytest.mark.asyncio
async def test_login_rejects_foreign_domain_and_disabled_actor() -> None:
    manager = session_manager()
    async with SessionLocal() as session:
        with pytest.raises(DomainNotAllowedError):
            await manager.login(session, _identity("mallory@evil.example", domain="evil.example"))
    assert "auth.login.domain_rejected" in await _event_types()

    issued = await _login(manager, "dave@example.org")
    async with SessionLocal() as session:
        await session.execute(
            update(Actor).where(Actor.id == issued.actor.actor_id).values(is_active=False)
        )
        await session.commit()
    with pytest.raises(ActorDisabledError):
        await _login(manager, "dave@example.org")


@pytest.mark.asyncio
async def test_renew_rotates_token_within_family() -> None:
    manager = session_manager()
    issued = await _login(manager, "erin@example.org")
    renewed = await _renew(manager, issued.renewal_token)

    assert renewed.renewal_token != issued.renewal_token
    assert manager.validate_session(renewed.session_token).actor_id == issued.actor.actor_id
    old_row = await _token_row(issued.renewal_token)
    new_row = await _token_row(renewed.renewal_token)
    assert old_row.consumed is True
    assert old_row.replaced_by_id == new_row.id
    assert new_row.family_id == old_row.family_id


@pytest.mark.asyncio
async def test_renewing_twice_with_same_token_fails_second_time() -> None:
    manager = session_manager()
    issued = await _login(manager, "frank@example.org")
    renewed = await _renew(manager, issued.renewal_token)

    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, issued.renewal_token)
    assert "auth.renewal.reuse_detected" in await _event_types()

    # Default policy only rejects the replayed token; the rotated one still works.
    assert (await _renew(manager, renewed.renewal_token)).actor.actor_id == issued.actor.actor_id


@pytest.mark.asyncio
async def test_concurrent_renewals_have_one_winner() -> None:
    manager = session_manager()
    issued = await _login(manager, "grace@example.org")

    results = await asyncio.gather(
        _renew(manager, issued.renewal_token),
        _renew(manager, issued.renewal_token),
        return_exceptions=True,
    )

    winners = [result for result in results if isinstance(result, IssuedCredentials)]
    losers = [result for result in results if isinstance(result, RefreshTokenRevokedError)]
    assert len(winners) == 1
    assert len(losers) == 1


@pytest.mark.asyncio
async def test_reuse_with_family_policy_revokes_rotated_tokens() -> None:
    manager = session_manager(reuse_policy=REUSE_POLICY_REVOKE_FAMILY)
    issued = await _login(manager, "heidi@example.org")
    other_device = await _login(manager, "heidi@example.org")
    renewed = await _renew(manager, issued.renewal_token)

    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, issued.renewal_token)
    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, renewed.renewal_token)
    # A separate login is a separate family.
    assert await _renew(manager, other_device.renewal_token)


@pytest.mark.asyncio
async def test_reuse_with_revoke_all_policy_ends_every_session() -> None:
    manager = session_manager(reuse_policy=REUSE_POLICY_REVOKE_ALL)
    issued = await _login(manager, "ivan@example.org")
    other_device = await _login(manager, "ivan@example.org")
    await _renew(manager, issued.renewal_token)

    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, issued.renewal_token)
    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, other_device.renewal_token)


@pytest.mark.asyncio
async def test_expired_unknown_and_missing_tokens_are_revoked() -> None:
    manager = session_manager()
    issued = await _login(manager, "judy@example.org")
    async with SessionLocal() as session:
        await session.execute(
            update(RenewalToken)
            .where(RenewalToken.token_hash == hash_renewal_token(issued.renewal_token))
            .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        await session.commit()

    for token in (issued.renewal_token, "dgr_unknown_token", "", None):
        with pytest.raises(RefreshTokenRevokedError):
            await _renew(manager, token)


@pytest.mark.asyncio
async def test_renewal_picks_up_role_changes() -> None:
    manager = session_manager()
    issued = await _login(manager, "ken@example.org")
    async with SessionLocal() as session:
        await session.execute(
            update(Actor)
            .where(Actor.id == issued.actor.actor_id)
            .values(role=Role.DEPT_ADMIN.value, department_id="dept-a")
        )
        await session.commit()

    renewed = await _renew(manager, issued.renewal_token)
    assert renewed.actor.role is Role.DEPT_ADMIN
    assert renewed.actor.department_id == "dept-a"


@pytest.mark.asyncio
async def test_logout_is_idempotent() -> None:
    manager = session_manager()
    issued = await _login(manager, "leo@example.org")

    await _logout(manager, issued.renewal_token)
    await _logout(manager, issued.renewal_token)
    await _logout(manager, "dgr_unknown_token")
    await _logout(manager, None)

    assert (await _token_row(issued.renewal_token)).consumed is True
    assert (await _event_types()).count("auth.logout") == 1
    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, issued.renewal_token)


@pytest.mark.asyncio
async def test_renew_after_logout_is_not_treated_as_reuse() -> None:
    manager = session_manager(reuse_policy=REUSE_POLICY_REVOKE_FAMILY)
    issued = await _login(manager, "mallory@example.org")
    renewed = await _renew(manager, issued.renewal_token)
    other_device = await _login(manager, "mallory@example.org")

    await _logout(manager, renewed.renewal_token)
    with pytest.raises(RefreshTokenRevokedError):
        await _renew(manager, renewed.renewal_token)

    events = await _event_types()
    assert "auth.renewal.reuse_detected" not in events
    assert "auth.renewal.rejected" in events
    assert (await _token_row(renewed.renewal_token)).replaced_by_id is None
    assert await _renew(manager, other_device.renewal_token)
