import os

# settings read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("PUBLISH_INTERVAL_SECONDS", "0")

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import uuid

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from podpublisher.infrastructure.accounts_repo import AccountsRepository
from podpublisher.infrastructure.database import get_session, init_db
from podpublisher.integrations.base import ProviderAdapter, SendResult
from podpublisher.models.scheduled_post import ScheduledPost, utcnow
from podpublisher.security.utils import encrypt_token
from podpublisher.services import dispatcher as dispatcher_module


@asynccontextmanager
async def _memory_db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    try:
        async with get_session(engine) as session:
            yield session
    finally:
        await engine.dispose()


async def _seed_account(
    session,
    user_id: uuid.UUID,
    provider: str,
    access_token: str = "access-token",
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    provider_user_id: Optional[str] = "acct-1",
    provider_meta: Optional[dict] = None,
    profile: Optional[dict] = None,
):
    return await AccountsRepository(session).upsert(
        user_id,
        provider,
        access_token_enc=encrypt_token(access_token),
        refresh_token_enc=encrypt_token(refresh_token),
        expires_at=expires_at,
        provider_user_id=provider_user_id,
        profile=profile or {"name": "Test Account"},
        provider_meta=provider_meta or {},
    )


async def _seed_post(session, user_id: uuid.UUID, platform: str, provider: Optional[str] = None, **fields):
    fields.setdefault("content", "Hello listeners")
    fields.setdefault("scheduled_at", utcnow())
    fields.setdefault("meta", {})
    post = ScheduledPost(user_id=user_id, platform=platform, provider=provider, **fields)
    session.add(post)
    await session.commit()
    await session.refresh(post)
    return post


class FakeAdapter(ProviderAdapter):
    """Records send() calls; each call pops the next outcome (SendResult or exception)."""

    def __init__(self, name: str, outcomes=None):
        self.name = name
        super().__init__()
        self.outcomes = list(outcomes or [])
        self.sent = []

    async def send(self, credential, post):
        self.sent.append((credential, post.id))
        outcome = self.outcomes.pop(0) if self.outcomes else SendResult(external_id=f"{self.name}-{len(self.sent)}")
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome


@pytest.fixture
def memory_db():
    return _memory_db


@pytest.fixture
def seed_account():
    return _seed_account


@pytest.fixture
def seed_post():
    return _seed_post


@pytest.fixture
def fake_adapter():
    return FakeAdapter


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture(autouse=True)
def reset_dispatch_guard():
    dispatcher_module._publishing_in_progress = False
    yield
    dispatcher_module._publishing_in_progress = False


class _LazyDb:
    """In-memory database created inside the TestClient's event loop."""

    def __init__(self):
        self.engine = None

    async def _engine(self):
        if self.engine is None:
            self.engine = create_async_engine(
                "sqlite+aiosqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            await init_db(self.engine)
        return self.engine

    async def session_dep(self):
        async with get_session(await self._engine()) as session:
            yield session

    @asynccontextmanager
    async def session(self):
        async with get_session(await self._engine()) as session:
            yield session


@pytest.fixture
def api(user_id):
    from fastapi.testclient import TestClient

    from podpublisher.dependencies.auth import get_current_user
    from podpublisher.dependencies.db import get_session_dep
    from podpublisher.main import app
    from podpublisher.security.schemas import CurrentUser

    db = _LazyDb()
    app.dependency_overrides[get_session_dep] = db.session_dep
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=user_id, email="host@example.com")
    with TestClient(app) as client:
        client.db = db
        yield client
        if db.engine is not None:
            client.portal.call(db.engine.dispose)
    app.dependency_overrides.clear()
