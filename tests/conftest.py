"""
Pytest configuration and fixtures for testing
"""
import os

# Configure the app before any app module reads settings
os.environ["AUTH_SECRET"] = "test-auth-secret-0123456789abcdef"
os.environ["APP_URL"] = "http://testserver"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
for _key in (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "REDIS_URL",
    "DATABASE_SECONDARY_URL",
    "ENV",
    "RENDER",
):
    os.environ.pop(_key, None)

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from auth_utils import create_session_token
from config import settings
from database import Base, get_db

# In-memory SQLite shared by every session in a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

TEST_STRIPE_SECRET_KEY = "sk_test_123"
TEST_WEBHOOK_SECRET = "whsec_test_123"


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated, in-memory SQLite database for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Drops all tables after the test completes
    """
    async with test_engine.begin() as conn:
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    async with TestAsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client(test_db):
    """
    httpx AsyncClient against the app, with get_db overridden to the test session
    so the test sees exactly what the request wrote.
    """
    from main import app

    async def override_get_db():
        yield test_db
        await test_db.flush()

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest.fixture
def stripe_configured(monkeypatch):
    """Pretend Stripe keys are set"""
    monkeypatch.setattr(settings, "stripe_secret_key", TEST_STRIPE_SECRET_KEY)
    monkeypatch.setattr(settings, "stripe_webhook_secret", TEST_WEBHOOK_SECRET)


@pytest.fixture
def make_user(test_db):
    """Create a user (and optionally a profile) and return it"""
    from crud.user import UserRepository
    from crud.user_profile import UserProfileRepository

    async def _make_user(email="user@example.com", name="Test User", profile=None):
        user = await UserRepository(test_db).create_user({"email": email, "name": name, "email_verified": True})
        if profile is not None:
            await UserProfileRepository(test_db).create(user.id, **profile)
        await test_db.commit()
        return user

    return _make_user


def user_dict(user) -> dict:
    """The dict shape auth dependencies hand to services"""
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "email_verified": user.email_verified,
    }


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user.id)}"}
