# podpublisher/services/schedule_service.py
from typing import Dict, List, Optional
import uuid

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.infrastructure.posts_repo import ScheduledPostsRepository
from podpublisher.integrations.base import ProviderAdapter
from podpublisher.integrations.registry import get_adapter
from podpublisher.models.scheduled_post import ScheduledPost, as_utc
from podpublisher.schemas.scheduled_post_schema import MailchimpPayload, ScheduledPostCreate
from podpublisher.services.credential_service import CredentialService

logger = structlog.get_logger(__name__)

MAILCHIMP_TAG_MISSING = "This tag does not exist in your Mailchimp audience"

# written by the dispatcher only
DISPATCH_META_KEYS = ("retryCount", "nextRetryAt")


class TagNotFoundError(ValueError):
    pass


class PostNotFoundError(LookupError):
    pass


class ScheduleService:
    def __init__(self, session: AsyncSession, adapters: Optional[Dict[str, ProviderAdapter]] = None):
        self.session = session
        self.posts = ScheduledPostsRepository(session)
        self.adapters = adapters or {}

    def _adapter(self, provider: str) -> ProviderAdapter:
        return self.adapters.get(provider) or get_adapter(provider)

    async def create(self, user_id: uuid.UUID, payload: ScheduledPostCreate) -> ScheduledPost:
        # clients without an offset mean UTC
        scheduled_at = as_utc(payload.scheduled_at)

        provider = None
        meta = {k: v for k, v in payload.meta.items() if k not in DISPATCH_META_KEYS}
        if payload.email is not None:
            provider = payload.email.provider
            if isinstance(payload.email, MailchimpPayload):
                await self._check_mailchimp_tags(user_id, payload.email)
            meta.update(payload.email.to_meta())

        post = ScheduledPost(
            user_id=user_id,
            platform=payload.platform,
            provider=provider,
            title=payload.title,
            content=payload.content,
            scheduled_at=scheduled_at,
            meta=meta,
        )
        post = await self.posts.create(post)
        logger.info("post_scheduled", post_id=str(post.id), platform=post.platform, provider=provider,
                    scheduled_at=post.scheduled_at.isoformat())
        return post

    async def _check_mailchimp_tags(self, user_id: uuid.UUID, payload: MailchimpPayload) -> None:
        """
        The automation only fires for a tag that already exists in the audience,
        so an unknown tag is rejected here rather than at send time.
        Raises AuthExpiredError when Mailchimp is not connected.
        """
        adapter = self._adapter("mailchimp")
        _, credential = await CredentialService(self.session).resolve(user_id, adapter)
        existing = {name.strip().lower() for name in await adapter.list_tag_names(credential, payload.audience_id)}
        missing = [t for t in payload.tags if t.strip().lower() not in existing]
        if missing:
            logger.info("mailchimp_tag_missing", user_id=str(user_id), audience_id=payload.audience_id, tags=missing)
            raise TagNotFoundError(MAILCHIMP_TAG_MISSING)

    async def list(self, user_id: uuid.UUID, status: Optional[str] = None) -> List[ScheduledPost]:
        return await self.posts.list_by_user(user_id, status=status)

    async def delete(self, user_id: uuid.UUID, post_id: uuid.UUID) -> None:
        post = await self.posts.get_for_user(post_id, user_id)
        if post is None:
            raise PostNotFoundError("post not found")
        await self.posts.delete(post)
        logger.info("post_deleted", post_id=str(post_id), user_id=str(user_id))
