"""
Test Configuration: Fixtures for async DB, test client and provider fakes.

API tests run against a fresh in-memory SQLite database per test. Lifecycle,
binder and race tests use the in-memory store from order_fakes.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_db, get_label_provider, get_thread_provider
from api.main import app
from db.session import create_tables
from order_fakes import (
    Clock,
    InMemoryOrderStore,
    RecordingLabelProvider,
    RecordingThreadProvider,
    build_lifecycle,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def thread_provider():
    return RecordingThreadProvider()


@pytest.fixture
def label_provider():
    return RecordingLabelProvider()


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def lifecycle(store, thread_provider, label_provider, clock):
    return build_lifecycle(store, thread_provider, label_provider, clock=clock)


# ─── SQL-backed fixtures ───────────────────────────────────────────────────


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables, one per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    SessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with SessionLocal() as session:
        yield session


@pytest.fixture
async def client(test_db, thread_provider, label_provider):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_thread_provider] = lambda: thread_provider
    app.dependency_overrides[get_label_provider] = lambda: label_provider

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
