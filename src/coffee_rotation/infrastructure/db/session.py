"""Async engine, session factory and transaction scope."""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from coffee_rotation.application.ports import TransactionManager

T = TypeVar("T")

# Backend name -> async driver used when the URL names none or a sync one.
_ASYNC_DRIVERS = {
    "sqlite": ("aiosqlite",),
    "postgresql": ("psycopg", "asyncpg"),
}


def to_async_url(database_url: str | URL) -> URL:
    """Return the URL with an async driver (aiosqlite or psycopg)."""

    url = make_url(database_url)
    drivers = _ASYNC_DRIVERS.get(url.get_backend_name())
    if drivers is None or url.get_driver_name() in drivers:
        return url
    return url.set(drivername=f"{url.get_backend_name()}+{drivers[0]}")


def create_async_db_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """Create an async engine; pool sizing applies to server databases only."""

    url = to_async_url(database_url)
    options: dict[str, Any] = {"pool_pre_ping": True}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )
    return create_async_engine(url, **options)


def create_session_factory(
    database_url: str, **pool_options: int
) -> async_sessionmaker[AsyncSession]:
    """Create a session factory whose objects stay usable after commit."""

    return async_sessionmaker(
        bind=create_async_db_engine(database_url, **pool_options),
        expire_on_commit=False,
    )


async def with_optional_tx(
    transaction_manager: TransactionManager | None,
    fn: Callable[[object | None], Awaitable[T]],
) -> T:
    """Run fn inside a transaction, or with session=None when there is none.

    In-memory repositories accept session=None, so services stay the same
    for both storage backends.
    """
    if transaction_manager is None:
        return await fn(None)
    async with transaction_manager.transaction() as session:
        return await fn(session)


class SessionTransactionManager:
    """One AsyncSession per transaction: commit on success, rollback on error."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session
