"""Provider failure taxonomy.

Adapters raise these; the dispatcher's retry policy turns them into a post
status. ProviderHTTPError carries the raw status code and is classified by
code, the others already name their class of failure.
"""

from typing import Optional


class ProviderError(Exception):
    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(provider, f"{provider} API error {status_code}: {body[:500]}")


class TransientProviderError(ProviderError):
    """Timeouts, dropped connections and other failures worth retrying."""


class AuthExpiredError(ProviderError):
    """Credential is missing, revoked or expired with no way to refresh it."""


class ManualActionRequired(ProviderError):
    def __init__(self, provider: str, message: str, manual_action_url: str, external_id: Optional[str] = None):
        self.manual_action_url = manual_action_url
        self.external_id = external_id
        super().__init__(provider, message)


class MalformedPostError(ProviderError):
    """The post lacks fields the provider needs (audience, recipient, page...)."""


class ProviderNotConfigured(ProviderError):
    """OAuth client credentials for this provider are not set on the server."""
