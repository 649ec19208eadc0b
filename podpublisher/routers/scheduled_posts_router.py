# podpublisher/routers/scheduled_posts_router.py
from typing import Dict, List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.dependencies.adapters import get_adapters
from podpublisher.dependencies.auth import get_current_user
from podpublisher.dependencies.db import get_session_dep
from podpublisher.integrations.base import ProviderAdapter
from podpublisher.integrations.errors import AuthExpiredError, ProviderError
from podpublisher.schemas.scheduled_post_schema import ScheduledPostCreate, ScheduledPostRead
from podpublisher.services.schedule_service import PostNotFoundError, ScheduleService, TagNotFoundError

router = APIRouter(prefix="/api/scheduled-posts", tags=["scheduled-posts"])


@router.post("", response_model=ScheduledPostRead, status_code=status.HTTP_201_CREATED)
async def create_scheduled_post(
    payload: ScheduledPostCreate,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    svc = ScheduleService(session, adapters=adapters)
    try:
        return await svc.create(current_user.id, payload)
    except TagNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AuthExpiredError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("", response_model=List[ScheduledPostRead])
async def list_scheduled_posts(
    status_filter: Optional[str] = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
):
    return await ScheduleService(session).list(current_user.id, status=status_filter)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scheduled_post(
    post_id: uuid.UUID,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
):
    try:
        await ScheduleService(session).delete(current_user.id, post_id)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
