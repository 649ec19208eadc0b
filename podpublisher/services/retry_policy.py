"""Failure classification and the fixed retry schedule for scheduled posts."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from podpublisher.integrations.errors import (
    AuthExpiredError,
    MalformedPostError,
    ManualActionRequired,
    ProviderHTTPError,
    TransientProviderError,
)
from podpublisher.models.scheduled_post import as_utc

# indexed by the retryCount stored before the failing attempt
RETRY_DELAYS_MINUTES = (5, 15, 60, 360, 1440)
MAX_RETRIES = 4

RETRIES_EXHAUSTED_SUFFIX = " (retries exhausted)"


class FailureKind:
    TRANSIENT = "transient"
    AUTH = "auth"
    MANUAL = "manual"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"


def classify(exc: BaseException) -> str:
    if isinstance(exc, ManualActionRequired):
        return FailureKind.MANUAL
    if isinstance(exc, AuthExpiredError):
        return FailureKind.AUTH
    if isinstance(exc, MalformedPostError):
        return FailureKind.MALFORMED
    if isinstance(exc, (TransientProviderError, asyncio.TimeoutError, httpx.TransportError)):
        return FailureKind.TRANSIENT
    if isinstance(exc, ProviderHTTPError):
        if exc.status_code in (401, 403):
            return FailureKind.AUTH
        if exc.status_code in (408, 429) or exc.status_code >= 500:
            return FailureKind.TRANSIENT
    return FailureKind.UNKNOWN


def next_retry_delay(retry_count: int) -> Optional[timedelta]:
    """
    Delay before the next attempt, or None when retries are exhausted.
    retry_count is how many retries were already scheduled.
    """
    if retry_count < 0:
        retry_count = 0
    if retry_count >= MAX_RETRIES or retry_count >= len(RETRY_DELAYS_MINUTES):
        return None
    return timedelta(minutes=RETRY_DELAYS_MINUTES[retry_count])


def parse_retry_at(value: Any) -> Optional[datetime]:
    """meta.nextRetryAt as aware UTC; unparseable values count as unset."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return as_utc(dt)


def is_waiting_for_retry(meta: dict, now: datetime) -> bool:
    retry_at = parse_retry_at((meta or {}).get("nextRetryAt"))
    return retry_at is not None and retry_at > as_utc(now)
