from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from advanced_alchemy.base import UUIDAuditBase
from litestar.testing import AsyncTestClient
from sqlalchemy import update

from chat_api.asgi import create_app
from chat_api.config.app import alchemy
from chat_api.db import models as m
from tests.helpers import FakeBillingClient, FakeCompletionClient

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from litestar import Litestar

PASSWORD = "S3cret-password"


@pytest.fixture(autouse=True)
async def _reset_database() -> AsyncGenerator[None, None]:
    engine = alchemy.get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(UUIDAuditBase.registry.metadata.drop_all)
        await conn.run_sync(UUIDAuditBase.registry.metadata.create_all)
    yield


@pytest.fixture
def app(completion_client: FakeCompletionClient, billing_client: FakeBillingClient) -> Litestar:
    return create_app(completion_client=completion_client, billing_client=billing_client)


@pytest.fixture
async def client(app: Litestar) -> AsyncGenerator[AsyncTestClient[Litestar], None]:
    async with AsyncTestClient(app=app) as client:
        yield client


async def register(
    client: AsyncTestClient[Any],
    email: str = "ada@example.com",
    full_name: str = "Ada Lovelace",
) -> dict[str, str]:
    """Create an account and return its bearer headers."""
    response = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": PASSWORD, "fullName": full_name},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['data']['tokens']['accessToken']}"}


@pytest.fixture
async def user_headers(client: AsyncTestClient[Any]) -> dict[str, str]:
    return await register(client)


async def update_user(email: str, **values: Any) -> None:
    async with alchemy.get_session() as db_session:
        await db_session.execute(update(m.User).where(m.User.email == email).values(**values))
        await db_session.commit()
