"""Shared test fixtures.

The suite runs against a throwaway SQLite file (WAL mode) so it needs no
PostgreSQL or Redis. Environment overrides must be in place before any
``runcoin`` module reads settings.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator

_TEST_DIR = tempfile.mkdtemp(prefix="runcoin_test_")
os.environ["RUNCOIN_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/runcoin.db"
os.environ["RUNCOIN_LOG_FORMAT"] = "console"
os.environ["RUNCOIN_JWT_SECRET_KEY"] = "runcoin-test-secret-key-0123456789abcdef"
os.environ["RUNCOIN_ECONOMY_TIMEZONE"] = "UTC"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from runcoin.config import Settings, get_settings  # noqa: E402
from runcoin.database import close_db, create_tables, drop_tables, get_session, init_db  # noqa: E402
from runcoin.db.models import User  # noqa: E402
from runcoin.main import create_app  # noqa: E402
from runcoin.rewards.economy_service import seed_economy_config  # noqa: E402
from runcoin.rewards.seed import seed_achievements  # noqa: E402
from tests.factories import auth_headers, make_user  # noqa: E402

get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture
async def bare_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh empty schema, nothing seeded."""
    settings = get_settings()
    await init_db(settings.database_url)
    await drop_tables()
    await create_tables()
    async for session in get_session():
        yield session
        await session.close()
        break
    await close_db()


@pytest_asyncio.fixture
async def db_session(bare_db_session: AsyncSession, settings: Settings) -> AsyncSession:
    """Fresh schema with the economy record and achievement catalog seeded."""
    await seed_economy_config(bare_db_session, settings)
    await seed_achievements(bare_db_session)
    return bare_db_session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the ASGI app, sharing the test database."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, user: User) -> AsyncClient:
    """Client authenticated as ``user`` with a real signed JWT."""
    client.headers.update(auth_headers(user))
    return client
