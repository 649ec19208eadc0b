"""Publisher loop: find due scheduled posts and hand each one to its provider.

One run fetches a bounded batch, claims each row before calling out, and
writes exactly one outcome per claimed row. A single post's failure is
recorded on that post and never aborts the batch.
"""

import asyncio
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.infrastructure.events_repo import EventsRepository
from podpublisher.infrastructure.http_client import request_budget
from podpublisher.infrastructure.posts_repo import ScheduledPostsRepository
from podpublisher.infrastructure.redis_cache import RedisLease
from podpublisher.integrations.base import ProviderAdapter, SendResult
from podpublisher.integrations.errors import MalformedPostError
from podpublisher.integrations.registry import build_adapters
from podpublisher.models.scheduled_post import ScheduledPost, PostStatus, iso_z, utcnow
from podpublisher.services.credential_service import CredentialService
from podpublisher.services.retry_policy import (
    FailureKind,
    RETRIES_EXHAUSTED_SUFFIX,
    classify,
    is_waiting_for_retry,
    next_retry_delay,
)

logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE = 50
DISPATCH_BATCH_SIZE = min(int(os.getenv("DISPATCH_BATCH_SIZE", "25")), MAX_BATCH_SIZE)
DISPATCH_LEASE_SECONDS = int(os.getenv("DISPATCH_LEASE_SECONDS", "600"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))
DISPATCH_USE_REDIS_LEASE = os.getenv("DISPATCH_USE_REDIS_LEASE", "false").lower() in ("1", "true", "yes")
DISPATCH_LEASE_KEY = "podpublisher:dispatch-lease"

_publishing_in_progress = False


@dataclass
class DispatchSummary:
    processed: int = 0
    failed: int = 0
    manual: int = 0
    retried: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


def default_lease() -> Optional[RedisLease]:
    if not DISPATCH_USE_REDIS_LEASE:
        return None
    return RedisLease(DISPATCH_LEASE_KEY, ttl_seconds=DISPATCH_LEASE_SECONDS)


def _retry_count(meta: dict) -> int:
    try:
        return int(meta.get("retryCount") or 0)
    except (TypeError, ValueError):
        return 0


class PublishDispatcher:
    def __init__(
        self,
        session: AsyncSession,
        adapters: Optional[Dict[str, ProviderAdapter]] = None,
        batch_size: int = DISPATCH_BATCH_SIZE,
        lease_seconds: int = DISPATCH_LEASE_SECONDS,
        timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS,
        lease: Optional[RedisLease] = None,
    ):
        self.session = session
        self.posts = ScheduledPostsRepository(session)
        self.events = EventsRepository(session)
        self.credentials = CredentialService(session)
        self.adapters = adapters if adapters is not None else build_adapters()
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.lease_seconds = lease_seconds
        self.timeout_seconds = timeout_seconds
        self.lease = lease

    async def run(self, now: Optional[datetime] = None, email_only: bool = False) -> DispatchSummary:
        """
        Run one batch. An overlapping call in this process, or one that loses the
        Redis lease, returns zero counters with skipped=True. Errors reading the
        due list propagate to the caller.
        """
        global _publishing_in_progress
        if _publishing_in_progress:
            logger.info("dispatch_skipped", reason="in_progress", email_only=email_only)
            return DispatchSummary(skipped=True)

        _publishing_in_progress = True
        try:
            if self.lease is not None and not await self.lease.acquire():
                logger.info("dispatch_skipped", reason="lease_held", email_only=email_only)
                return DispatchSummary(skipped=True)
            try:
                return await self._run_batch(now or utcnow(), email_only)
            finally:
                if self.lease is not None:
                    await self.lease.release()
        finally:
            _publishing_in_progress = False

    async def _run_batch(self, now: datetime, email_only: bool) -> DispatchSummary:
        summary = DispatchSummary()
        lease_cutoff = now - timedelta(seconds=self.lease_seconds)

        candidates = await self.posts.fetch_due(now, self.batch_size, lease_cutoff, email_only=email_only)
        # rows are reloaded one by one below; a rollback expires every loaded instance
        post_ids = [p.id for p in candidates if not is_waiting_for_retry(p.meta, now)]
        logger.info("dispatch_started", due=len(post_ids), email_only=email_only)

        for post_id in post_ids:
            try:
                post = await self.session.get(ScheduledPost, post_id, populate_existing=True)
                if post is None:
                    continue
                await self._dispatch_one(post, now, lease_cutoff, summary)
            except SQLAlchemyError as e:
                # the claim stays and goes stale; the post is picked up after the lease
                logger.exception("post_outcome_write_failed", post_id=str(post_id), error=str(e))
                await self.session.rollback()

        logger.info("dispatch_finished", email_only=email_only, **summary.as_dict())
        return summary

    async def _dispatch_one(self, post: ScheduledPost, now: datetime, lease_cutoff: datetime, summary: DispatchSummary):
        post_id = str(post.id)
        if not await self.posts.claim(post, now, lease_cutoff):
            logger.info("post_claimed_elsewhere", post_id=post_id)
            return

        provider = post.dispatch_key
        log = logger.bind(post_id=post_id, provider=provider, user_id=str(post.user_id))
        adapter = self.adapters.get(provider or "")

        try:
            if adapter is None:
                raise MalformedPostError(provider or post.platform, f"No publisher for platform={post.platform} provider={post.provider}")
            _, credential = await self.credentials.resolve(post.user_id, adapter, now)
            # each provider request gets timeout_seconds; the whole send gets one slot more than its steps
            with request_budget(self.timeout_seconds):
                result = await asyncio.wait_for(
                    adapter.send(credential, post),
                    timeout=self.timeout_seconds * (adapter.send_steps + 1),
                )
        except SQLAlchemyError:
            raise
        except Exception as exc:
            await self._record_failure(post, provider, exc, now, summary, log)
            return

        await self._record_success(post, provider, result, now, summary, log)

    async def _record_success(self, post, provider, result: SendResult, now, summary, log):
        meta = dict(post.meta or {})
        meta.pop("nextRetryAt", None)
        post.meta = meta
        post.status = PostStatus.PUBLISHED
        post.external_id = result.external_id
        post.external_url = result.url
        post.last_error = None
        post.published_at = now
        await self.posts.save(post)
        summary.processed += 1
        log.info("post_published", external_id=result.external_id)
        await self.events.log(
            post.user_id, provider, "send", "success",
            payload={"post_id": str(post.id), "external_id": result.external_id},
        )

    async def _record_failure(self, post, provider, exc: Exception, now, summary, log):
        kind = classify(exc)
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, asyncio.TimeoutError):
            message = f"{provider} call timed out after {self.timeout_seconds:g}s"

        if kind == FailureKind.TRANSIENT:
            meta = dict(post.meta or {})
            retry_count = _retry_count(meta)
            delay = next_retry_delay(retry_count)
            if delay is None:
                post.status = PostStatus.FAILED
                post.last_error = message + RETRIES_EXHAUSTED_SUFFIX
                summary.failed += 1
                log.warning("post_retries_exhausted", retry_count=retry_count, error=message)
            else:
                retry_at = now + delay
                meta["retryCount"] = retry_count + 1
                meta["nextRetryAt"] = iso_z(retry_at)
                post.meta = meta
                post.last_error = message
                summary.retried += 1
                log.info("post_retry_scheduled", retry_count=retry_count + 1, next_retry_at=meta["nextRetryAt"], error=message)

        elif kind == FailureKind.MANUAL:
            post.status = PostStatus.NEEDS_MANUAL_SEND
            post.manual_action_url = exc.manual_action_url
            post.external_id = exc.external_id or post.external_id
            post.last_error = message
            summary.manual += 1
            log.info("post_needs_manual_send", manual_action_url=exc.manual_action_url)

        elif kind == FailureKind.AUTH:
            post.status = PostStatus.FAILED
            post.last_error = message
            summary.failed += 1
            log.warning("post_auth_failed", error=message)
            await self.credentials.disconnect(post.user_id, provider, reason=message)

        else:
            post.status = PostStatus.FAILED
            post.last_error = message
            summary.failed += 1
            if kind == FailureKind.UNKNOWN:
                log.error("post_failed_unexpectedly", error=message, exc_info=exc)
            else:
                log.warning("post_malformed", error=message)

        await self.posts.save(post)
        await self.events.log(
            post.user_id, provider or post.platform, "send_failure", "failure",
            payload={"post_id": str(post.id), "kind": kind}, error=message,
        )
