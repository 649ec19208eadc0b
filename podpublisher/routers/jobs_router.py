# podpublisher/routers/jobs_router.py
from typing import Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.dependencies.adapters import get_adapters
from podpublisher.dependencies.cron import verify_cron_secret
from podpublisher.dependencies.db import get_session_dep
from podpublisher.integrations.base import ProviderAdapter
from podpublisher.schemas.scheduled_post_schema import DispatchResponse
from podpublisher.services.dispatcher import PublishDispatcher, default_lease

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["jobs"], dependencies=[Depends(verify_cron_secret)])


async def _dispatch(session: AsyncSession, adapters: Dict[str, ProviderAdapter], email_only: bool) -> DispatchResponse:
    dispatcher = PublishDispatcher(session, adapters=adapters, lease=default_lease())
    try:
        summary = await dispatcher.run(email_only=email_only)
    except SQLAlchemyError as exc:
        logger.exception("dispatch_due_posts_unreadable", email_only=email_only, error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to load scheduled posts")
    return DispatchResponse(ok=True, **summary.as_dict())


@router.post("/api/jobs/publish-scheduled", response_model=DispatchResponse)
async def publish_scheduled(
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    return await _dispatch(session, adapters, email_only=False)


@router.post("/api/cron/dispatch-scheduled-posts", response_model=DispatchResponse)
async def dispatch_scheduled_posts(
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    return await _dispatch(session, adapters, email_only=False)


@router.post("/api/cron/email-dispatch", response_model=DispatchResponse)
async def email_dispatch(
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    return await _dispatch(session, adapters, email_only=True)
