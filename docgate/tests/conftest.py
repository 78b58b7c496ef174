from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any docgate module reads them.
_TMP_ROOT = tempfile.mkdtemp(prefix="docgate-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_ROOT}/docgate.db"
os.environ["FILE_STORE_ROOT"] = os.path.join(_TMP_ROOT, "documents")
os.environ["SESSION_SIGNING_SECRET"] = "docgate-test-signing-secret-0123456789abcdef"
os.environ["RENEWAL_COOKIE_SECURE"] = "false"
os.environ["RENEWAL_REUSE_POLICY"] = "revoke_token"
os.environ["ALLOWED_DOMAIN"] = "example.org"
os.environ["BOOTSTRAP_ADMIN_EMAILS"] = "root@example.org"
os.environ["FEDERATED_ISSUER"] = "https://issuer.example"
os.environ["FEDERATED_CLIENT_ID"] = "docgate-test"
os.environ["FEDERATED_JWKS_URL"] = "https://issuer.example/jwks"
os.environ["AUDIT_ENABLED"] = "true"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from docgate.apps.api.main import create_app  # noqa: E402
from docgate.domain.models import Base  # noqa: E402
from docgate.persistence.db import engine  # noqa: E402
from docgate.services.auth.federated import clear_jwks_cache  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables; the engine is disposed so no connection outlives its loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    clear_jwks_cache()
    yield
    await engine.dispose()


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
