import itertools
import json
import os

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Default DATABASE_URL for the module-level engine; tests use the per-session engine below
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
from freightguard.main import app
from freightguard.db.database import Base, get_db
from freightguard.db.models import User
from freightguard.permissions.catalog import invalidate_catalog


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine(anyio_backend, tmp_path_factory):
    # On-disk SQLite so the app's request sessions and the test session share one database
    db_path = tmp_path_factory.mktemp("db") / "freightguard_test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="session")
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(anyio_backend, session_factory):
    """Point the app's get_db at the test engine for the whole session."""

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
async def clean_tables(anyio_backend, test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def reset_catalog():
    """Every test starts from the seed catalog."""
    invalidate_catalog()
    yield
    invalidate_catalog()


@pytest.fixture
def make_user(test_session):
    counter = itertools.count(1)

    async def _make(legacy_role=None, role_id=None, organization_id="O1", dashboard_config=None):
        n = next(counter)
        user = User(
            email=f"user{n}@example.com",
            name=f"User {n}",
            legacy_role=legacy_role,
            role_id=role_id,
            organization_id=organization_id,
            dashboard_config=json.dumps(dashboard_config) if dashboard_config is not None else None,
        )
        test_session.add(user)
        await test_session.commit()
        await test_session.refresh(user)
        return user

    return _make