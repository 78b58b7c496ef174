from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docgate.core.config import get_settings
from docgate.core.errors import StorageUnavailableError


T = TypeVar("T")

settings = get_settings()
_is_sqlite = settings.database_url.startswith("sqlite")
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
# Configure bounded asyncpg pools for predictable latency under load.
if not _is_sqlite:
    _engine_kwargs["pool_size"] = max(1, int(settings.api_db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.api_db_max_overflow))
    _engine_kwargs["pool_timeout"] = max(1, int(settings.storage_timeout_s))
    _engine_kwargs["pool_recycle"] = 1800
    if settings.api_db_statement_timeout_ms > 0:
        _engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


if _is_sqlite:

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        # Take over transaction control from pysqlite so BEGIN is emitted explicitly.
        dbapi_connection.isolation_level = None
        # Enforce foreign keys as PostgreSQL does.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_on_begin(conn) -> None:  # type: ignore[no-untyped-def]
        # SQLite has a single writer; queue writers on the lock up front instead of
        # failing lock upgrades midway through a transaction.
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def with_storage_timeout(awaitable: Awaitable[T]) -> T:
    # Bound one storage operation; slow or unreachable storage surfaces as 503.
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.storage_timeout_s)
    except asyncio.TimeoutError as exc:
        raise StorageUnavailableError("Storage call timed out") from exc
    except (OperationalError, PoolTimeoutError) as exc:
        raise StorageUnavailableError() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StorageUnavailableError() from exc
        raise
