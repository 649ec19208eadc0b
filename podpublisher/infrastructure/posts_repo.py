# podpublisher/infrastructure/posts_repo.py
from typing import Optional, List
from datetime import datetime
import uuid

from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from sqlalchemy import or_, update

from podpublisher.models.scheduled_post import ScheduledPost, PostStatus, iso_z, utcnow


class ScheduledPostsRepository:
    """
    Scheduled post store. The dispatcher only ever updates rows through claim()
    and save(); rows are deleted only on explicit user request.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, post: ScheduledPost) -> ScheduledPost:
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def get_for_user(self, post_id: uuid.UUID, user_id: uuid.UUID) -> Optional[ScheduledPost]:
        q = select(ScheduledPost).where(ScheduledPost.id == post_id, ScheduledPost.user_id == user_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_user(self, user_id: uuid.UUID, status: Optional[str] = None) -> List[ScheduledPost]:
        q = select(ScheduledPost).where(ScheduledPost.user_id == user_id)
        if status:
            q = q.where(ScheduledPost.status == status)
        q = q.order_by(ScheduledPost.scheduled_at)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def delete(self, post: ScheduledPost) -> None:
        await self.session.delete(post)
        await self.session.commit()

    async def fetch_due(
        self,
        now: datetime,
        limit: int,
        lease_cutoff: datetime,
        email_only: bool = False,
    ) -> List[ScheduledPost]:
        """
        Scheduled rows whose time has come, that are not waiting on a retry and
        not held by a live claim, oldest first. meta.nextRetryAt is always
        written by iso_z, so it compares correctly as text.
        """
        retry_at = ScheduledPost.meta["nextRetryAt"].as_string()
        q = select(ScheduledPost).where(
            ScheduledPost.status == PostStatus.SCHEDULED,
            ScheduledPost.scheduled_at <= now,
            or_(retry_at.is_(None), retry_at <= iso_z(now)),
            or_(ScheduledPost.claimed_at.is_(None), ScheduledPost.claimed_at < lease_cutoff),
        )
        if email_only:
            q = q.where(ScheduledPost.platform == "email")
        q = q.order_by(ScheduledPost.scheduled_at).limit(limit)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def claim(self, post: ScheduledPost, now: datetime, lease_cutoff: datetime) -> bool:
        """
        Compare-and-set the dispatch lease. Only one concurrent caller sees True.
        """
        stmt = (
            update(ScheduledPost)
            .where(
                ScheduledPost.id == post.id,
                ScheduledPost.status == PostStatus.SCHEDULED,
                or_(ScheduledPost.claimed_at.is_(None), ScheduledPost.claimed_at < lease_cutoff),
            )
            .values(claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        await self.session.commit()
        if res.rowcount != 1:
            return False
        post.claimed_at = now
        return True

    async def save(self, post: ScheduledPost) -> ScheduledPost:
        """
        Persist a dispatch outcome and release the claim.
        """
        post.claimed_at = None
        post.updated_at = utcnow()
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post
