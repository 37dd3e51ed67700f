"""Global pytest configuration and fixtures."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
import pytest_asyncio

from coffee_rotation.infrastructure.db import models  # noqa: F401
from coffee_rotation.infrastructure.db.base import Base
from coffee_rotation.infrastructure.db.session import (
    SessionTransactionManager,
    create_session_factory,
)


def fake_transaction_manager():
    """Return a fake transaction manager that yields a dummy session.

    In-memory repos accept session= and ignore it.
    """

    @asynccontextmanager
    async def _tx():
        yield object()

    class FakeTM:
        def __init__(self) -> None:
            self.opened = 0

        def transaction(self):
            self.opened += 1
            return _tx()

    return FakeTM()


@pytest.fixture
def fake_tm():
    """Pytest fixture that provides a fake transaction manager."""
    return fake_transaction_manager()


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Session factory over a fresh file-backed SQLite database."""

    factory = create_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = factory.kw["bind"]
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def sql_tm(session_factory) -> SessionTransactionManager:
    """Real transaction manager over the SQLite session factory."""
    return SessionTransactionManager(session_factory)


@pytest.fixture(autouse=True)
def _silence_noisy_library_loggers() -> None:
    """Keep aiosqlite connection lifecycle logs out of test output."""

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
