"""Shared fixtures: a fresh in-memory SQLite database per test."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import src.entities  # noqa: F401  (register mappers)
from broker import aggregator, directory, ledger
from broker.events import EventBus
from src.database import Base


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def quiet_bus():
    """An event bus with no subscribers, for tests that drive the coordinator by hand."""
    return EventBus()


@pytest.fixture
def record(db):
    """Record an interaction with sensible defaults."""
    async def _record(
        consumer="web-app",
        consumer_version="1.0.0",
        provider="user-service",
        operation="GET /users/{id}",
        status=200,
        timestamp=None,
        bus=None,
        **extra,
    ):
        payload = {
            "consumer": consumer,
            "consumer_version": consumer_version,
            "provider": provider,
            "operation": operation,
            "request": {"method": operation.split(" ")[0], "path": "/users/42"},
            "response": {"status": status, "body": {"id": 42}},
            "timestamp": timestamp,
            **extra,
        }
        return await aggregator.record_interaction(db, payload, bus=bus)

    return _record


@pytest.fixture
def deploy(db):
    """Register a version (if needed) and record a deployment of it."""
    async def _deploy(service, version, environment="staging", role="provider", bus=None, **kwargs):
        await directory.upload_spec(db, service, role, version, created_by="ci")
        return await ledger.record_deployment(
            db, service, version, environment, deployed_by="ci", bus=bus, **kwargs
        )

    return _deploy

