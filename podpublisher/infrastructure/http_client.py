# podpublisher/infrastructure/http_client.py
import asyncio
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import httpx
import structlog

from podpublisher.integrations.errors import ProviderHTTPError, TransientProviderError

logger = structlog.get_logger(__name__)

PROVIDER_HTTP_TIMEOUT = float(os.getenv("PROVIDER_HTTP_TIMEOUT", "30"))

_request_budget: ContextVar[Optional[float]] = ContextVar("provider_request_budget", default=None)


@contextmanager
def request_budget(seconds: float) -> Iterator[None]:
    """Cap every provider request made inside the block at `seconds`."""
    token = _request_budget.set(seconds)
    try:
        yield
    finally:
        _request_budget.reset(token)


class ProviderHTTPClient:
    """
    Thin httpx wrapper shared by the provider adapters. Non-2xx responses become
    ProviderHTTPError, network trouble and timeouts become TransientProviderError.
    """

    def __init__(self, provider: str, timeout: float = PROVIDER_HTTP_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.provider = provider
        self.timeout = timeout
        self.transport = transport

    def _effective_timeout(self) -> float:
        budget = _request_budget.get()
        return self.timeout if budget is None else min(self.timeout, budget)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        timeout = self._effective_timeout()
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            try:
                r = await asyncio.wait_for(client.request(method, url, **kwargs), timeout)
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                logger.warning("provider_request_timeout", provider=self.provider, url=url, timeout=timeout)
                raise TransientProviderError(self.provider, f"{self.provider} request timed out") from e
            except httpx.TransportError as e:
                logger.warning("provider_request_transport_error", provider=self.provider, url=url, error=str(e))
                raise TransientProviderError(self.provider, f"{self.provider} connection error: {e}") from e

        if r.status_code >= 400:
            logger.info("provider_request_failed", provider=self.provider, url=url, status_code=r.status_code)
            raise ProviderHTTPError(self.provider, r.status_code, r.text)
        return r

    async def post(self, url, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def get(self, url, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def put(self, url, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def post_json(self, url, **kwargs) -> dict:
        r = await self.post(url, **kwargs)
        return _json_or_empty(r)

    async def get_json(self, url, **kwargs) -> dict:
        r = await self.get(url, **kwargs)
        return _json_or_empty(r)


def _json_or_empty(r: httpx.Response) -> dict:
    if not r.content:
        return {}
    try:
        return r.json()
    except ValueError:
        return {}
