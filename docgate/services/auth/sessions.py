"""Session credentials and renewal-token rotation.

Session credentials are short-lived HS256 JWTs validated purely from their
signature and claims. Renewal tokens are opaque, single-use and stored only
as SHA-256 hashes. Each renewal consumes the presented token with a
compare-and-swap and inserts its replacement in the same transaction, so two
concurrent renewals of one token produce exactly one winner.

Presenting an already-consumed token is treated as a replay signal. The
default response only rejects it. ``revoke_family`` additionally revokes every
outstanding token rotated from the same login, and ``revoke_all`` revokes all
of the actor's tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
from uuid import uuid4

import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docgate.core.config import (
    REUSE_POLICIES,
    REUSE_POLICY_REVOKE_ALL,
    REUSE_POLICY_REVOKE_FAMILY,
    REUSE_POLICY_REVOKE_TOKEN,
    Settings,
)
from docgate.core.errors import (
    ActorDisabledError,
    DomainNotAllowedError,
    RefreshTokenRevokedError,
    UnauthenticatedError,
)
from docgate.domain.access import ActorContext, Role, parse_role
from docgate.domain.models import Actor, RenewalToken
from docgate.persistence.db import with_storage_timeout
from docgate.persistence.repos import actors as actors_repo
from docgate.persistence.repos import renewal_tokens as tokens_repo
from docgate.services.audit import RequestContext, record_event
from docgate.services.auth.federated import VerifiedIdentity


logger = logging.getLogger(__name__)

TOKEN_PREFIX = "dgr_"
SESSION_TOKEN_TYPE = "session"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_renewal_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_renewal_token() -> tuple[str, str, str, str]:
    # Embed the token id so operators can correlate rows without the secret.
    token_id = uuid4().hex
    raw_token = f"{TOKEN_PREFIX}{token_id}_{secrets.token_urlsafe(32)}"
    return token_id, raw_token, raw_token[:12], hash_renewal_token(raw_token)


@dataclass(frozen=True)
class SessionConfig:
    signing_secret: str
    algorithm: str = "HS256"
    issuer: str = "docgate"
    session_ttl: timedelta = timedelta(minutes=60)
    renewal_ttl: timedelta = timedelta(days=30)
    reuse_policy: str = REUSE_POLICY_REVOKE_TOKEN
    allowed_domain: str = "example.org"
    bootstrap_admin_emails: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.signing_secret:
            raise ValueError("signing_secret must not be empty")
        if self.reuse_policy not in REUSE_POLICIES:
            raise ValueError(f"Unsupported renewal reuse policy: {self.reuse_policy}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfig":
        admins = frozenset(
            email.strip().lower()
            for email in settings.bootstrap_admin_emails.split(",")
            if email.strip()
        )
        return cls(
            signing_secret=settings.session_signing_secret,
            algorithm=settings.session_algorithm,
            issuer=settings.session_issuer,
            session_ttl=timedelta(minutes=settings.session_ttl_minutes),
            renewal_ttl=timedelta(days=settings.renewal_ttl_days),
            reuse_policy=settings.renewal_reuse_policy,
            allowed_domain=settings.allowed_domain.strip().lower(),
            bootstrap_admin_emails=admins,
        )


@dataclass(frozen=True)
class IssuedCredentials:
    actor: ActorContext
    session_token: str
    session_expires_at: datetime
    renewal_token: str
    renewal_expires_at: datetime

    @property
    def expires_in(self) -> int:
        return max(0, int((self.session_expires_at - _utc_now()).total_seconds()))


def _actor_context(actor: Actor) -> ActorContext:
    return ActorContext(
        actor_id=actor.id,
        role=parse_role(actor.role),
        department_id=actor.department_id,
    )


class SessionManager:
    def __init__(self, config: SessionConfig) -> None:
        self.config = config

    # -- session credentials -------------------------------------------------

    def issue_session_token(self, actor: ActorContext, *, now: datetime | None = None) -> tuple[str, datetime]:
        issued_at = now or _utc_now()
        expires_at = issued_at + self.config.session_ttl
        payload = {
            "sub": actor.actor_id,
            "role": actor.role.value,
            "dept": actor.department_id,
            "iat": issued_at,
            "exp": expires_at,
            "iss": self.config.issuer,
            "typ": SESSION_TOKEN_TYPE,
            "jti": uuid4().hex,
        }
        token = jwt.encode(payload, self.config.signing_secret, algorithm=self.config.algorithm)
        return token, expires_at

    def validate_session(self, token: str | None) -> ActorContext:
        """Rebuild the caller from a session credential without touching storage."""
        if not token:
            raise UnauthenticatedError()
        try:
            claims = jwt.decode(
                token,
                self.config.signing_secret,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
                options={"require": ["exp", "iat", "sub", "iss"]},
            )
        except jwt.PyJWTError as exc:
            # One message for every cause so clients cannot probe why a token failed.
            raise UnauthenticatedError() from exc
        if claims.get("typ") != SESSION_TOKEN_TYPE:
            raise UnauthenticatedError()
        try:
            return ActorContext(
                actor_id=str(claims["sub"]),
                role=parse_role(str(claims.get("role") or "")),
                department_id=claims.get("dept"),
            )
        except (TypeError, ValueError) as exc:
            raise UnauthenticatedError() from exc

    # -- login ---------------------------------------------------------------

    async def login(
        self,
        session: AsyncSession,
        identity: VerifiedIdentity,
        *,
        request_ctx: RequestContext | None = None,
    ) -> IssuedCredentials:
        """Exchange a verified federated identity for a session and a renewal token."""
        if identity.domain.strip().lower() != self.config.allowed_domain:
            await record_event(
                session=session,
                event_type="auth.login.domain_rejected",
                outcome="failure",
                resource_type="auth",
                request_ctx=request_ctx,
                metadata={"domain": identity.domain},
                error_code=DomainNotAllowedError.code,
                commit=True,
            )
            raise DomainNotAllowedError()
        return await with_storage_timeout(self._login(session, identity, request_ctx))

    async def _login(
        self, session: AsyncSession, identity: VerifiedIdentity, request_ctx: RequestContext | None
    ) -> IssuedCredentials:
        actor_row = await self._get_or_provision_actor(session, identity)
        if not actor_row.is_active:
            await record_event(
                session=session,
                actor_id=actor_row.id,
                event_type="auth.login.disabled",
                outcome="failure",
                resource_type="auth",
                request_ctx=request_ctx,
                error_code=ActorDisabledError.code,
                commit=True,
            )
            raise ActorDisabledError()
        actor = _actor_context(actor_row)
        now = _utc_now()
        await actors_repo.touch_last_login(session, actor.actor_id, at=now)
        raw_renewal, renewal_row = await self._insert_renewal(
            session, actor_id=actor.actor_id, family_id=uuid4().hex, now=now
        )
        await record_event(
            session=session,
            actor=actor,
            event_type="auth.login.success",
            outcome="success",
            resource_type="auth",
            request_ctx=request_ctx,
            metadata={"family_id": renewal_row.family_id},
        )
        await session.commit()
        return self._issue(actor, raw_renewal, renewal_row, now=now)

    async def _get_or_provision_actor(self, session: AsyncSession, identity: VerifiedIdentity) -> Actor:
        existing = await actors_repo.get_actor_by_email(session, identity.email)
        if existing is not None:
            return existing
        role = Role.GLOBAL_ADMIN if identity.email in self.config.bootstrap_admin_emails else Role.READER
        try:
            actor = await actors_repo.create_actor(
                session, actor_id=uuid4().hex, email=identity.email, role=role.value
            )
        except IntegrityError:
            # A concurrent first login provisioned the same email; reload it.
            await session.rollback()
            reloaded = await actors_repo.get_actor_by_email(session, identity.email)
            if reloaded is None:
                raise
            return reloaded
        logger.info("actor_provisioned actor_id=%s role=%s", actor.id, role.value)
        return actor

    # -- renewal -------------------------------------------------------------

    async def renew(
        self,
        session: AsyncSession,
        presented_token: str | None,
        *,
        request_ctx: RequestContext | None = None,
    ) -> IssuedCredentials:
        """Rotate a renewal token; any failure is REFRESH_TOKEN_REVOKED."""
        if not presented_token:
            raise RefreshTokenRevokedError()
        return await with_storage_timeout(self._renew(session, presented_token, request_ctx))

    async def _renew(
        self, session: AsyncSession, presented_token: str, request_ctx: RequestContext | None
    ) -> IssuedCredentials:
        now = _utc_now()
        row = await tokens_repo.get_by_hash(session, hash_renewal_token(presented_token))
        if row is None:
            logger.info("renewal_rejected reason=unknown")
            raise RefreshTokenRevokedError()
        if row.consumed:
            # Only rotated tokens record a successor; anything else was logged out or revoked.
            if row.replaced_by_id is None:
                await self._reject_renewal(session, row, reason="revoked", request_ctx=request_ctx)
            else:
                await self._handle_reuse(session, row, now=now, request_ctx=request_ctx)
            raise RefreshTokenRevokedError()
        if _as_utc(row.expires_at) <= now:
            await self._reject_renewal(session, row, reason="expired", request_ctx=request_ctx)
            raise RefreshTokenRevokedError()
        actor_row = await actors_repo.get_actor(session, row.actor_id)
        if actor_row is None or not actor_row.is_active:
            await tokens_repo.consume_if_unconsumed(session, row.id, at=now)
            await self._reject_renewal(session, row, reason="actor_inactive", request_ctx=request_ctx)
            raise RefreshTokenRevokedError()

        new_id, raw_renewal, prefix, token_hash = generate_renewal_token()
        swapped = await tokens_repo.consume_if_unconsumed(
            session, row.id, at=now, replaced_by_id=new_id
        )
        if not swapped:
            # A concurrent renewal consumed this token first.
            await session.rollback()
            logger.info("renewal_rejected reason=lost_race token_prefix=%s", row.token_prefix)
            raise RefreshTokenRevokedError()
        renewal_row = await tokens_repo.insert_token(
            session,
            token_id=new_id,
            actor_id=row.actor_id,
            family_id=row.family_id,
            token_hash=token_hash,
            token_prefix=prefix,
            expires_at=now + self.config.renewal_ttl,
            created_at=now,
        )
        # Role changes made since login take effect here.
        actor = _actor_context(actor_row)
        await record_event(
            session=session,
            actor=actor,
            event_type="auth.renewal.success",
            outcome="success",
            resource_type="renewal_token",
            resource_id=new_id,
            request_ctx=request_ctx,
            metadata={"family_id": row.family_id, "replaced": row.id},
        )
        await session.commit()
        return self._issue(actor, raw_renewal, renewal_row, now=now)

    async def _handle_reuse(
        self,
        session: AsyncSession,
        row: RenewalToken,
        *,
        now: datetime,
        request_ctx: RequestContext | None,
    ) -> None:
        policy = self.config.reuse_policy
        revoked = 0
        if policy == REUSE_POLICY_REVOKE_FAMILY:
            revoked = await tokens_repo.consume_family(session, row.family_id, at=now)
        elif policy == REUSE_POLICY_REVOKE_ALL:
            revoked = await tokens_repo.consume_all_for_actor(session, row.actor_id, at=now)
        logger.warning(
            "renewal_reuse_detected actor_id=%s family_id=%s policy=%s revoked=%s",
            row.actor_id,
            row.family_id,
            policy,
            revoked,
        )
        await record_event(
            session=session,
            actor_id=row.actor_id,
            event_type="auth.renewal.reuse_detected",
            outcome="failure",
            resource_type="renewal_token",
            resource_id=row.id,
            request_ctx=request_ctx,
            metadata={"family_id": row.family_id, "policy": policy, "revoked": revoked},
            error_code=RefreshTokenRevokedError.code,
        )
        await session.commit()

    async def _reject_renewal(
        self,
        session: AsyncSession,
        row: RenewalToken,
        *,
        reason: str,
        request_ctx: RequestContext | None,
    ) -> None:
        logger.info("renewal_rejected reason=%s token_prefix=%s", reason, row.token_prefix)
        await record_event(
            session=session,
            actor_id=row.actor_id,
            event_type="auth.renewal.rejected",
            outcome="failure",
            resource_type="renewal_token",
            resource_id=row.id,
            request_ctx=request_ctx,
            metadata={"reason": reason},
            error_code=RefreshTokenRevokedError.code,
        )
        await session.commit()

    # -- logout --------------------------------------------------------------

    async def logout(
        self,
        session: AsyncSession,
        presented_token: str | None,
        *,
        request_ctx: RequestContext | None = None,
    ) -> None:
        """Consume the presented renewal token; unknown or spent tokens are a no-op."""
        if not presented_token:
            return
        await with_storage_timeout(self._logout(session, presented_token, request_ctx))

    async def _logout(
        self, session: AsyncSession, presented_token: str, request_ctx: RequestContext | None
    ) -> None:
        row = await tokens_repo.get_by_hash(session, hash_renewal_token(presented_token))
        if row is None or row.consumed:
            return
        consumed = await tokens_repo.consume_if_unconsumed(session, row.id, at=_utc_now())
        if consumed:
            await record_event(
                session=session,
                actor_id=row.actor_id,
                event_type="auth.logout",
                outcome="success",
                resource_type="renewal_token",
                resource_id=row.id,
                request_ctx=request_ctx,
            )
        await session.commit()

    # -- helpers -------------------------------------------------------------

    async def _insert_renewal(
        self, session: AsyncSession, *, actor_id: str, family_id: str, now: datetime
    ) -> tuple[str, RenewalToken]:
        token_id, raw_token, prefix, token_hash = generate_renewal_token()
        row = await tokens_repo.insert_token(
            session,
            token_id=token_id,
            actor_id=actor_id,
            family_id=family_id,
            token_hash=token_hash,
            token_prefix=prefix,
            expires_at=now + self.config.renewal_ttl,
            created_at=now,
        )
        return raw_token, row

    def _issue(
        self, actor: ActorContext, raw_renewal: str, renewal_row: RenewalToken, *, now: datetime
    ) -> IssuedCredentials:
        session_token, session_expires_at = self.issue_session_token(actor, now=now)
        return IssuedCredentials(
            actor=actor,
            session_token=session_token,
            session_expires_at=session_expires_at,
            renewal_token=raw_renewal,
            renewal_expires_at=_as_utc(renewal_row.expires_at),
        )
