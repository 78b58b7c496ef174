from __future__ import annotations

from dataclasses import dataclass
import asyncio
import json
import logging
import time
from typing import Any

import httpx
import jwt

from docgate.core.config import Settings, get_settings
from docgate.core.errors import InvalidFederatedTokenError


logger = logging.getLogger(__name__)

_ALLOWED_ALGS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}

_jwks_cache: dict[str, tuple[float, dict[str, Any]]] = {}
_jwks_lock = asyncio.Lock()


@dataclass(frozen=True)
class VerifiedIdentity:
    email: str
    domain: str
    subject: str


@dataclass(frozen=True)
class FederatedProviderConfig:
    issuer: str
    client_id: str
    jwks_url: str
    clock_skew_seconds: int = 60
    jwks_cache_ttl_s: int = 3600
    http_timeout_s: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "FederatedProviderConfig":
        return cls(
            issuer=settings.federated_issuer,
            client_id=settings.federated_client_id,
            jwks_url=settings.federated_jwks_url,
            clock_skew_seconds=settings.federated_clock_skew_seconds,
            jwks_cache_ttl_s=settings.federated_jwks_cache_ttl_s,
            http_timeout_s=settings.federated_http_timeout_s,
        )


async def _fetch_jwks(jwks_url: str, timeout_s: float) -> dict[str, Any]:
    # Fetch JWKS from the provider for signature verification.
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        response = await client.get(jwks_url)
    response.raise_for_status()
    return response.json()


async def _get_jwks(config: FederatedProviderConfig, *, refresh: bool = False) -> dict[str, Any]:
    # Cache keys per URL; a kid miss forces one refresh to pick up provider rotation.
    now = time.monotonic()
    async with _jwks_lock:
        cached = _jwks_cache.get(config.jwks_url)
        if cached and not refresh and cached[0] > now:
            return cached[1]
    jwks = await _fetch_jwks(config.jwks_url, config.http_timeout_s)
    async with _jwks_lock:
        _jwks_cache[config.jwks_url] = (now + config.jwks_cache_ttl_s, jwks)
    return jwks


def clear_jwks_cache() -> None:
    _jwks_cache.clear()


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any] | None:
    keys = jwks.get("keys") or []
    if kid:
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None
    if len(keys) == 1:
        return keys[0]
    return None


def _jwk_to_key(jwk: dict[str, Any], alg: str) -> Any:
    # Convert a JWK payload into a cryptography key for PyJWT.
    payload = json.dumps(jwk)
    if alg.startswith("RS"):
        return jwt.algorithms.RSAAlgorithm.from_jwk(payload)
    if alg.startswith("ES"):
        return jwt.algorithms.ECAlgorithm.from_jwk(payload)
    raise ValueError("Unsupported JWT algorithm")


def identity_from_claims(claims: dict[str, Any]) -> VerifiedIdentity:
    email = claims.get("email")
    if not isinstance(email, str) or "@" not in email:
        logger.info("federated_token_rejected reason=missing_email")
        raise InvalidFederatedTokenError()
    # Unverified mailboxes cannot vouch for domain membership.
    if claims.get("email_verified") is not True:
        logger.info("federated_token_rejected reason=email_unverified")
        raise InvalidFederatedTokenError()
    email = email.strip().lower()
    hosted_domain = claims.get("hd")
    domain = hosted_domain if isinstance(hosted_domain, str) and hosted_domain else email.rsplit("@", 1)[1]
    return VerifiedIdentity(email=email, domain=domain.strip().lower(), subject=str(claims.get("sub") or ""))


class FederatedIdentityVerifier:
    """Verifies ID tokens from the single configured OIDC issuer."""

    def __init__(self, config: FederatedProviderConfig) -> None:
        self.config = config

    async def verify(self, token: str) -> VerifiedIdentity:
        try:
            claims = await self._decode(token)
        except (jwt.PyJWTError, ValueError) as exc:
            logger.info("federated_token_rejected reason=%s", type(exc).__name__)
            raise InvalidFederatedTokenError() from exc
        except httpx.HTTPError as exc:
            # Key fetch failures are ours to report, not the caller's fault.
            logger.error("federated_jwks_fetch_failed url=%s", self.config.jwks_url, exc_info=exc)
            raise
        return identity_from_claims(claims)

    async def _decode(self, token: str) -> dict[str, Any]:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")
        if not alg or alg not in _ALLOWED_ALGS:
            raise ValueError("Unsupported token algorithm")
        kid = header.get("kid")
        jwk = _select_jwk(await _get_jwks(self.config), kid)
        if jwk is None:
            jwk = _select_jwk(await _get_jwks(self.config, refresh=True), kid)
        if jwk is None:
            raise ValueError("No matching JWK for token")
        key = _jwk_to_key(jwk, alg)
        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=self.config.client_id,
            issuer=self.config.issuer,
            leeway=self.config.clock_skew_seconds,
            options={"require": ["exp", "iat", "iss", "aud", "sub"]},
        )


def get_identity_verifier() -> FederatedIdentityVerifier:
    return FederatedIdentityVerifier(FederatedProviderConfig.from_settings(get_settings()))
