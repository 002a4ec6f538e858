"""Pytest fixtures for backend tests."""

import os

# Settings reject the development JWT secret unless DEBUG is set
os.environ.setdefault("DEBUG", "true")

import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backoffice.api.deps import get_bulk_engine
from backoffice.core.security import create_access_token
from backoffice.db.base import Base
from backoffice.db.session import get_db
from backoffice.main import app, create_bulk_engine
from backoffice.models.user import EntityStatus, User, UserRole

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session


async def create_user(
    session: AsyncSession,
    email: str,
    role: UserRole = UserRole.CUSTOMER,
    permissions: list[str] | None = None,
    status: EntityStatus = EntityStatus.ACTIVE,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        full_name=email.split("@")[0].title(),
        role=role.value,
        status=status.value,
        is_active=True,
        permissions=permissions or [],
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def test_user(test_session: AsyncSession) -> User:
    """An admin operator allowed to run large deletes."""
    return await create_user(
        test_session,
        "admin@example.com",
        role=UserRole.ADMIN,
        permissions=["BULK_DELETE_LARGE"],
    )


@pytest_asyncio.fixture(scope="function")
async def test_token(test_user: User) -> str:
    """Create a test JWT token."""
    return create_access_token(data={"sub": str(test_user.id)})


@pytest_asyncio.fixture(scope="function")
async def bulk_engine(session_maker):
    """Engine wired to the test database, without inter-batch delay."""
    engine = create_bulk_engine(session_maker)
    engine.batch_delay_ms = 0
    yield engine
    await engine.shutdown()


@pytest_asyncio.fixture(scope="function")
async def client(test_session: AsyncSession, bulk_engine) -> AsyncGenerator[AsyncClient, None]:
    """Create an unauthenticated test client."""
    async def override():
        yield test_session

    app.dependency_overrides[get_db] = override
    app.dependency_overrides[get_bulk_engine] = lambda: bulk_engine

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def authenticated_client(
    test_session: AsyncSession, bulk_engine, test_token: str
) -> AsyncGenerator[AsyncClient, None]:
    """Create an authenticated test client."""

    async def override():
        yield test_session

    app.dependency_overrides[get_db] = override
    app.dependency_overrides[get_bulk_engine] = lambda: bulk_engine

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {test_token}"},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(test_session: AsyncSession):
    """Factory for users persisted in the test database."""
    async def _make(
        email: str,
        role: UserRole = UserRole.CUSTOMER,
        permissions: list[str] | None = None,
        status: EntityStatus = EntityStatus.ACTIVE,
    ) -> User:
        return await create_user(test_session, email, role=role, permissions=permissions, status=status)

    return _make
