"""Shared pytest fixtures."""

import asyncio
import os
import tempfile
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="docchat-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["STREAM_CHUNK_DELAY_MS"] = "0"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["ANTHROPIC_API_KEY"] = "test-key"

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import docchat.models  # noqa: E402,F401
from docchat.core import database  # noqa: E402
from docchat.core.security import create_access_token  # noqa: E402
from docchat.integrations import anthropic_client  # noqa: E402

from helpers import FakeAnthropic  # noqa: E402

# Every test drives its own event loop; pooled connections must not outlive it.
database.engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)
database.async_session.configure(bind=database.engine)


@pytest.fixture(autouse=True)
def fresh_db():
    async def reset():
        async with database.engine.begin() as conn:
            await conn.run_sync(database.Base.metadata.drop_all)
            await conn.run_sync(database.Base.metadata.create_all)

    asyncio.run(reset())
    yield


@pytest.fixture
def fake_anthropic():
    fake = FakeAnthropic()
    anthropic_client._client = fake
    yield fake
    anthropic_client._client = None


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user-1") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from docchat.main import app

    with TestClient(app) as test_client:
        yield test_client
