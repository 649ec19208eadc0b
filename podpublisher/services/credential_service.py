# podpublisher/services/credential_service.py
from datetime import datetime, timedelta
from typing import Optional, Tuple
import uuid

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.infrastructure.accounts_repo import AccountsRepository
from podpublisher.infrastructure.events_repo import EventsRepository
from podpublisher.integrations.base import ProviderAdapter, Credential
from podpublisher.integrations.errors import AuthExpiredError, ProviderError
from podpublisher.models.connected_account import ConnectedAccount, AccountStatus
from podpublisher.models.scheduled_post import as_utc, utcnow
from podpublisher.security.utils import encrypt_token, decrypt_token

logger = structlog.get_logger(__name__)

# refresh a little before the provider would reject the token
EXPIRY_SKEW = timedelta(minutes=5)


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return as_utc(expires_at) <= as_utc(now or utcnow()) + EXPIRY_SKEW


class CredentialService:
    """
    Turns a stored ConnectedAccount into a usable Credential, refreshing it when
    the provider allows. A credential that can never work again raises
    AuthExpiredError; a refresh that fails for network or server reasons
    propagates as-is so the post can be retried.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.accounts = AccountsRepository(session)
        self.events = EventsRepository(session)

    async def resolve(
        self,
        user_id: uuid.UUID,
        adapter: ProviderAdapter,
        now: Optional[datetime] = None,
    ) -> Tuple[ConnectedAccount, Credential]:
        provider = adapter.name
        account = await self.accounts.get_by_user_and_provider(user_id, provider)
        if account is None or account.status == AccountStatus.DISCONNECTED:
            raise AuthExpiredError(provider, f"{provider} is not connected; reconnect required")

        access_token = decrypt_token(account.access_token_enc)
        if not access_token:
            raise AuthExpiredError(provider, f"{provider} access token unreadable; reconnect required")

        if is_token_expired(account.expires_at, now):
            refresh_token = decrypt_token(account.refresh_token_enc)
            if not refresh_token:
                raise AuthExpiredError(provider, f"{provider} token expired; reconnect required")
            account, access_token = await self._refresh(account, adapter, refresh_token)

        credential = Credential(
            access_token=access_token,
            refresh_token=decrypt_token(account.refresh_token_enc),
            expires_at=account.expires_at,
            provider_user_id=account.provider_user_id,
            profile=dict(account.profile or {}),
            provider_meta=dict(account.provider_meta or {}),
        )
        return account, credential

    async def _refresh(self, account: ConnectedAccount, adapter: ProviderAdapter, refresh_token: str):
        provider = adapter.name
        try:
            tokens = await adapter.refresh(refresh_token)
        except ProviderError as e:
            logger.warning("token_refresh_failed", provider=provider, user_id=str(account.user_id), error=str(e))
            await self.events.log(account.user_id, provider, "token_refresh_failure", "failure", error=str(e))
            # AuthExpired disconnects; anything else keeps its own classification
            raise

        account = await self.accounts.update_tokens(
            account,
            encrypt_token(tokens.access_token),
            encrypt_token(tokens.refresh_token),
            tokens.expires_at,
        )
        logger.info("token_refreshed", provider=provider, user_id=str(account.user_id))
        await self.events.log(account.user_id, provider, "token_refresh", "success")
        return account, tokens.access_token

    async def disconnect(self, user_id: uuid.UUID, provider: str, reason: str) -> Optional[ConnectedAccount]:
        account = await self.accounts.get_by_user_and_provider(user_id, provider)
        if account is None or account.status == AccountStatus.DISCONNECTED:
            return account
        logger.warning("account_disconnected", provider=provider, user_id=str(user_id), reason=reason)
        return await self.accounts.mark_disconnected(account)
