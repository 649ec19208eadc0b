"""Common adapter shape for every publishing provider.

An adapter knows how to start the provider's auth flow, turn a callback code
(or a pasted API key) into tokens, refresh those tokens, and perform the single
send/post call the dispatcher needs. Adapters never touch the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

import httpx

from podpublisher.infrastructure.http_client import ProviderHTTPClient
from podpublisher.integrations.errors import AuthExpiredError, ProviderHTTPError, ProviderNotConfigured
from podpublisher.models.scheduled_post import utcnow

if TYPE_CHECKING:
    from podpublisher.models.scheduled_post import ScheduledPost


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: list[str] = field(default_factory=list)
    provider_user_id: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)
    provider_meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class Credential:
    """Decrypted credential handed to send()."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    provider_user_id: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)
    provider_meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    external_id: Optional[str]
    url: Optional[str] = None


def expires_in_to_datetime(expires_in: Any) -> Optional[datetime]:
    if not expires_in:
        return None
    return utcnow() + timedelta(seconds=int(expires_in))


def split_subject(content: str, fallback: str = "") -> tuple[str, str]:
    """Split an optional leading 'Subject: ...' line off an email body."""
    lines = content.lstrip().split("\n", 1)
    first = lines[0].strip()
    if first.lower().startswith("subject:"):
        subject = first[len("subject:"):].strip()
        body = lines[1].lstrip("\r\n") if len(lines) > 1 else ""
        return subject or fallback, body
    return fallback, content


class ProviderAdapter:
    name: str = ""
    uses_pkce: bool = False
    api_key_auth: bool = False
    # HTTP calls one send() makes; the dispatcher sizes its deadline from this
    send_steps: int = 1
    # kinds of send target a user can pick from, e.g. ("pages",)
    destination_kinds: tuple = ()

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.http = ProviderHTTPClient(self.name, transport=transport)

    # --- auth flow ---
    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        raise ProviderNotConfigured(self.name, f"{self.name} does not use an OAuth redirect")

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        raise ProviderNotConfigured(self.name, f"{self.name} does not use an OAuth redirect")

    async def validate_key(self, api_key: str) -> TokenSet:
        raise ProviderNotConfigured(self.name, f"{self.name} does not accept API keys")

    async def refresh(self, refresh_token: str) -> TokenSet:
        raise AuthExpiredError(self.name, f"{self.name} tokens cannot be refreshed; reconnect required")

    # --- publishing ---
    async def send(self, credential: Credential, post: "ScheduledPost") -> SendResult:
        raise NotImplementedError

    async def list_destinations(self, credential: Credential) -> dict[str, list]:
        """Selectable send targets keyed by kind (audiences, lists, pages...)."""
        raise ProviderNotConfigured(self.name, f"{self.name} has no destinations to choose from")

    def _require(self, *values: Optional[str]) -> None:
        if not all(values):
            raise ProviderNotConfigured(self.name, f"{self.name} OAuth is not configured")

    def _raise_for_auth(self, exc: ProviderHTTPError, message: str) -> None:
        if exc.status_code in (401, 403):
            raise AuthExpiredError(self.name, message) from exc

    def _refresh_failed(self, exc: ProviderHTTPError) -> AuthExpiredError:
        """
        Token endpoints answer 400 invalid_grant for revoked refresh tokens.
        Server-side errors are re-raised untouched so they stay retryable.
        """
        if exc.status_code not in (400, 401, 403):
            raise exc
        return AuthExpiredError(self.name, f"{self.name} token refresh failed ({exc.status_code}); reconnect required")
