"""
Shared fixtures: an in-memory SQLite database, fake collaborators and a catalog.
"""
import os

# settings are read at import time; point them at test values first
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "local"
os.environ["DB_MANAGE"] = "create_all"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("AI_GATEWAY_API_KEY", None)
os.environ.pop("MERCADO_PAGO_ACCESS_TOKEN", None)
os.environ.pop("DENTALINK_API_TOKEN", None)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from dental_funnel.core.base import Base
from dental_funnel.core.catalog import build_catalog
from dental_funnel.core.db import import_models
from dental_funnel.platform.collaborators import Collaborators
from fakes import (
    FakeScreening, FakePayments, FakeScheduling, FakeMessaging, InMemoryStorage, RecordingRunner,
)

pytest_plugins = ('pytest_asyncio',)


@pytest_asyncio.fixture
async def engine():
    import_models()
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def catalog():
    return build_catalog()


@pytest.fixture
def collaborators(session_factory):
    return Collaborators(
        screening=FakeScreening(),
        payments=FakePayments(),
        scheduling=FakeScheduling(),
        messaging=FakeMessaging(),
        storage=InMemoryStorage(),
        session_factory=session_factory,
        detached=RecordingRunner(),
        payment_signals=None,
    )
