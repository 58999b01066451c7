"""
Shared pytest fixtures for EventGuard backend tests.

Provides:
  - async SQLite in-memory database (per-test isolation)
  - the security service container bound to that database
  - a user factory and authenticated HTTP clients (admin and regular users)
"""
from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from eventguard.config.settings import Settings
from eventguard.core.security import hash_password
from eventguard.db.base import Base
from eventguard.db.models.user import RoleEnum
from eventguard.db.repositories.users import UserAccount, UserRepository
from eventguard.db.session import build_session_factory
from eventguard.main import create_app, seed_admin
from eventguard.services.container import SecurityServices

# ─── Settings override ────────────────────────────────────────────────────────

FIELD_KEY = "0123456789abcdef0123456789abcdef"  # exactly 32 bytes
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "TestAdmin@2024!"
USER_PASSWORD = "Us3rPassw0rd!"

TEST_SETTINGS = Settings(
    environment="testing",
    database_url="sqlite+aiosqlite:///:memory:",
    jwt_secret_key="test-secret-key-not-for-production-at-all",
    field_encryption_key=FIELD_KEY,
    admin_email=ADMIN_EMAIL,
    admin_password=ADMIN_PASSWORD,
    debug=True,
    run_migrations_on_startup=False,
    cors_origins=["http://localhost:5173"],
    log_json=False,
)


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create an async in-memory SQLite engine per test function."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def broken_session_factory():
    """Session factory whose sessions fail on entry, like an unreachable database."""
    return _BrokenSession


@pytest.fixture
def services(session_factory) -> SecurityServices:
    return SecurityServices.build(TEST_SETTINGS, session_factory)


@pytest.fixture
def users(db_session, services) -> UserRepository:
    return UserRepository(db_session, services.codec)


@pytest.fixture
def make_user(services):
    """Factory fixture: create and commit a user, return its decoded account."""

    async def _make(
        email: str = "alice@example.com",
        password: str = USER_PASSWORD,
        role: RoleEnum = RoleEnum.USER,
        name: str = "Alice",
        is_active: bool = True,
    ) -> UserAccount:
        async with services.session_factory() as session:
            account = await UserRepository(session, services.codec).create(
                name=name,
                email=email,
                password_hash=hash_password(password),
                role=role,
                is_active=is_active,
            )
            await session.commit()
        return account

    return _make


# ─── App & HTTP client ────────────────────────────────────────────────────────

@pytest_asyncio.fixture(scope="function")
async def app(session_factory):
    """FastAPI test app bound to the per-test database, with the admin seeded."""
    app_ = create_app(settings=TEST_SETTINGS, session_factory=session_factory)
    await seed_admin(app_.state.services)
    return app_


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async HTTP client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


async def login_headers(client: AsyncClient, email: str, password: str) -> dict[str, str]:
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest_asyncio.fixture(scope="function")
async def admin_client(client: AsyncClient) -> AsyncClient:
    """HTTP client pre-authenticated as the seeded admin user."""
    client.headers.update(await login_headers(client, ADMIN_EMAIL, ADMIN_PASSWORD))
    return client


@pytest_asyncio.fixture(scope="function")
async def user_client(app, make_user) -> AsyncGenerator[AsyncClient, None]:
    """Separate HTTP client authenticated as a regular user (alice)."""
    await make_user()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        c.headers.update(await login_headers(c, "alice@example.com", USER_PASSWORD))
        yield c
