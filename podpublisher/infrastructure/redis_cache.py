# podpublisher/infrastructure/redis_cache.py
import os
import secrets
from typing import Optional

import structlog
import redis.asyncio as aioredis

logger = structlog.get_logger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
redis_client = aioredis.from_url(REDIS_URL, decode_responses=True)


class RedisLease:
    """
    Cross-process lease for the dispatch loop (SET NX PX). The in-process guard
    in the dispatcher only protects a single replica; this one covers all of them.
    """

    def __init__(self, key: str, ttl_seconds: int, client: Optional[aioredis.Redis] = None):
        self.key = key
        self.ttl_ms = int(ttl_seconds * 1000)
        self.client = client or redis_client
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = secrets.token_hex(16)
        ok = await self.client.set(self.key, token, nx=True, px=self.ttl_ms)
        if ok:
            self._token = token
            logger.debug("lease_acquired", key=self.key)
            return True
        logger.info("lease_busy", key=self.key)
        return False

    async def release(self) -> None:
        if not self._token:
            return
        # only delete our own lease; it may have expired and been taken over
        current = await self.client.get(self.key)
        if current == self._token:
            await self.client.delete(self.key)
        self._token = None
