import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine

# register tables on SQLModel.metadata
from podpublisher.models import connected_account, integration_event, scheduled_post  # noqa: F401

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./podpublisher.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False)


async def init_db(bind: AsyncEngine = None):
    try:
        async with (bind or engine).begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)
    except Exception as e:
        logger.exception("db_init_failed", error=str(e))
        raise


@asynccontextmanager
async def get_session(bind: AsyncEngine = None) -> AsyncIterator[AsyncSession]:
    async with AsyncSession(bind or engine, expire_on_commit=False) as session:
        yield session
