from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from docgate.core.errors import UnauthenticatedError
from docgate.domain.access import ActorContext, Role
from docgate.services.auth.sessions import (
    TOKEN_PREFIX,
    SessionConfig,
    SessionManager,
    generate_renewal_token,
    hash_renewal_token,
)


SECRET = "unit-test-signing-secret-0123456789abcdef"


def _manager(**overrides) -> SessionManager:
    return SessionManager(SessionConfig(signing_secret=SECRET, **overrides))


def test_session_token_round_trip() -> None:
    manager = _manager()
    actor = ActorContext(actor_id="actor-1", role=Role.DEPT_ADMIN, department_id="dept-a")
    token, expires_at = manager.issue_session_token(actor)
    assert manager.validate_session(token) == actor
    assert expires_at - datetime.now(timezone.utc) <= timedelta(minutes=60)


def test_session_token_expires_after_ttl() -> None:
    manager = _manager()
    actor = ActorContext(actor_id="actor-1", role=Role.READER)
    issued_long_ago = datetime.now(timezone.utc) - timedelta(minutes=61)
    token, _ = manager.issue_session_token(actor, now=issued_long_ago)
    with pytest.raises(UnauthenticatedError):
        manager.validate_session(token)


def test_session_token_rejects_foreign_signature_and_issuer() -> None:
    actor = ActorContext(actor_id="actor-1", role=Role.READER)
    forged, _ = SessionManager(SessionConfig(signing_secret="x" * 40)).issue_session_token(actor)
    with pytest.raises(UnauthenticatedError):
        _manager().validate_session(forged)

    other_issuer, _ = _manager(issuer="someone-else").issue_session_token(actor)
    with pytest.raises(UnauthenticatedError):
        _manager().validate_session(other_issuer)


def test_session_token_rejects_wrong_type_and_bad_claims() -> None:
    now = datetime.now(timezone.utc)
    base = {"sub": "actor-1", "iat": now, "exp": now + timedelta(minutes=5), "iss": "docgate"}
    not_a_session = jwt.encode({**base, "role": "READER", "typ": "other"}, SECRET, algorithm="HS256")
    unknown_role = jwt.encode({**base, "role": "OWNER", "typ": "session"}, SECRET, algorithm="HS256")
    dept_admin_without_dept = jwt.encode(
        {**base, "role": "DEPT_ADMIN", "dept": None, "typ": "session"}, SECRET, algorithm="HS256"
    )
    manager = _manager()
    for token in (not_a_session, unknown_role, dept_admin_without_dept, "garbage", "", None):
        with pytest.raises(UnauthenticatedError):
            manager.validate_session(token)


def test_session_config_rejects_unknown_reuse_policy() -> None:
    with pytest.raises(ValueError):
        SessionConfig(signing_secret=SECRET, reuse_policy="ignore")
    with pytest.raises(ValueError):
        SessionConfig(signing_secret="")


def test_renewal_tokens_are_opaque_and_hashed() -> None:
    token_id, raw, prefix, token_hash = generate_renewal_token()
    assert raw.startswith(f"{TOKEN_PREFIX}{token_id}_")
    assert raw.startswith(prefix)
    assert token_hash == hash_renewal_token(raw)
    assert raw not in token_hash
    assert generate_renewal_token()[1] != raw
