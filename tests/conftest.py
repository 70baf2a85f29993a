from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

_TEST_DIR = Path(tempfile.mkdtemp(prefix="chat-api-tests-"))

# settings are read once at import time, so the environment is prepared before the app is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR / 'app.sqlite3'}"
os.environ["SECRET_KEY"] = "test-secret-key-for-signing-jwt-tokens-0123456789"
os.environ["APP_ENV"] = "test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_BASE_PRICE_ID"] = "price_base"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_pro"

from advanced_alchemy.base import UUIDAuditBase  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from chat_api.db import models  # noqa: E402, F401
from tests.helpers import FakeBillingClient, FakeCompletionClient  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def billing_client() -> FakeBillingClient:
    return FakeBillingClient()


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'unit.sqlite3'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(UUIDAuditBase.registry.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with sessionmaker() as session:
        yield session
