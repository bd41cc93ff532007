"""Pytest fixtures for testing."""

import os
import tempfile
from collections.abc import AsyncGenerator

# Settings are read at import time; configure them before importing the app.
TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"ticketauth_test_{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["TOKEN_ALGORITHMS"] = "HS256"
os.environ["ENVIRONMENT"] = "development"
os.environ.pop("TOKEN_JWKS_URL", None)
os.environ.pop("TOKEN_AUDIENCE", None)
os.environ.pop("TOKEN_ISSUER", None)

from tests.support import TEST_TOKEN_SECRET  # noqa: E402

os.environ["TOKEN_SECRET"] = TEST_TOKEN_SECRET

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from ticketauth.api.deps import get_identity_directory, get_system_account  # noqa: E402
from ticketauth.core.database import get_db, get_session_factory  # noqa: E402
from ticketauth.core.system_account import (  # noqa: E402
    SYSTEM_ACCOUNT_EMAIL,
    SYSTEM_ACCOUNT_ID,
    SystemAccount,
)
from ticketauth.main import app  # noqa: E402
from ticketauth.models.account import Account  # noqa: E402
from ticketauth.models.base import Base  # noqa: E402
from ticketauth.models.enums import AppRole, ApprovalStatus  # noqa: E402
from ticketauth.models.event import Event  # noqa: E402
from ticketauth.services.audit_service import AuditService  # noqa: E402
from tests.support import FakeDirectory, create_account, create_event  # noqa: E402

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Create test database session.

    Recreates all tables before each test and seeds the SYSTEM account.
    Drops everything first to ensure clean slate even if previous test crashed.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        session.add(
            Account(
                id=SYSTEM_ACCOUNT_ID,
                email=SYSTEM_ACCOUNT_EMAIL,
                display_name="System",
                approval_status=ApprovalStatus.APPROVED,
            )
        )
        await session.commit()

    async with TestSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture()
def session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionLocal


@pytest.fixture()
def system_account() -> SystemAccount:
    return SystemAccount(id=SYSTEM_ACCOUNT_ID, email=SYSTEM_ACCOUNT_EMAIL)


@pytest.fixture()
def audit(system_account: SystemAccount) -> AuditService:
    return AuditService(TestSessionLocal, system_account)


@pytest.fixture()
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest_asyncio.fixture(scope="function")
async def client(
    db: AsyncSession,
    directory: FakeDirectory,
    system_account: SystemAccount,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database, directory and SYSTEM account overrides.

    ASGITransport does not run the lifespan, so everything it would have put
    on app.state is injected here.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_system_account] = lambda: system_account
    app.dependency_overrides[get_identity_directory] = lambda: directory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_account(db: AsyncSession, directory: FakeDirectory) -> Account:
    account = await create_account(db, "admin@test.com")
    directory.add_identity(account.email, roles=[AppRole.ADMIN.value], identity_id=account.id)
    return account


@pytest_asyncio.fixture
async def organizer_account(db: AsyncSession, directory: FakeDirectory) -> Account:
    account = await create_account(db, "organizer@test.com")
    directory.add_identity(account.email, roles=[AppRole.ORGANIZER.value], identity_id=account.id)
    return account


@pytest_asyncio.fixture
async def attendee_account(db: AsyncSession, directory: FakeDirectory) -> Account:
    account = await create_account(db, "attendee@test.com")
    directory.add_identity(account.email, roles=[AppRole.ATTENDEE.value], identity_id=account.id)
    return account


@pytest_asyncio.fixture
async def event(db: AsyncSession, organizer_account: Account) -> Event:
    return await create_event(db, organizer_account)
