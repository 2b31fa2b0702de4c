"""
Pytest configuration and fixtures for testing
"""
import os

# Must be set before any application module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("WHOP_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("WHOP_API_KEY", "whop_test_key")
os.environ.pop("REDIS_URL", None)

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from database import Base
from crud.subscription import InMemorySubscriptionStore, SqlSubscriptionStore

# One SQLite file per test; each session gets its own connection, so a
# detached background task never shares a transaction with the request
TEST_DATABASE_FILENAME = "test.db"


@pytest.fixture
async def test_engine(tmp_path):
    """
    Fresh database per test: tables created before, dropped after.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / TEST_DATABASE_FILENAME}",
        echo=False,
        future=True,
    )
    async with engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """
    Fixture that provides an isolated AsyncSession for each test.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def sql_store(session_factory):
    return SqlSubscriptionStore(session_factory)


@pytest.fixture
def memory_store():
    return InMemorySubscriptionStore()
