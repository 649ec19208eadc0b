# podpublisher/infrastructure/accounts_repo.py
from typing import Optional, List
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from podpublisher.models.connected_account import ConnectedAccount, AccountStatus
from podpublisher.models.scheduled_post import utcnow
import uuid
from datetime import datetime


class AccountsRepository:
    """
    Credential store: one ConnectedAccount row per (user, provider).
    All methods are async and expect an AsyncSession to be injected from the outside.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_user_and_provider(self, user_id: uuid.UUID, provider: str) -> Optional[ConnectedAccount]:
        q = select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.provider == provider
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_user(self, user_id: uuid.UUID) -> List[ConnectedAccount]:
        q = select(ConnectedAccount).where(ConnectedAccount.user_id == user_id)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def upsert(
        self,
        user_id: uuid.UUID,
        provider: str,
        access_token_enc: Optional[str],
        refresh_token_enc: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        provider_user_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        profile: Optional[dict] = None,
        provider_meta: Optional[dict] = None,
    ) -> ConnectedAccount:
        """
        Insert or replace the credentials for (user_id, provider) and mark them connected.
        """
        account = await self.get_by_user_and_provider(user_id, provider)
        if account is None:
            account = ConnectedAccount(user_id=user_id, provider=provider)
        account.access_token_enc = access_token_enc
        account.refresh_token_enc = refresh_token_enc
        account.expires_at = expires_at
        account.provider_user_id = provider_user_id
        account.scopes = list(scopes or [])
        account.profile = dict(profile or {})
        account.provider_meta = dict(provider_meta or {})
        account.status = AccountStatus.CONNECTED
        account.last_sync_at = utcnow()
        account.updated_at = utcnow()
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def update_tokens(
        self,
        account: ConnectedAccount,
        access_token_enc: str,
        refresh_token_enc: Optional[str],
        expires_at: Optional[datetime],
    ) -> ConnectedAccount:
        account.access_token_enc = access_token_enc
        account.refresh_token_enc = refresh_token_enc
        account.expires_at = expires_at
        account.status = AccountStatus.CONNECTED
        account.updated_at = utcnow()
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def mark_disconnected(self, account: ConnectedAccount, clear_tokens: bool = False) -> ConnectedAccount:
        """
        Flip the account to disconnected. Tokens are kept unless clear_tokens is set
        (explicit user disconnect), so a later reconnect can be diagnosed.
        """
        account.status = AccountStatus.DISCONNECTED
        if clear_tokens:
            account.access_token_enc = None
            account.refresh_token_enc = None
            account.expires_at = None
        account.updated_at = utcnow()
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def update_provider_meta(self, account: ConnectedAccount, **changes) -> ConnectedAccount:
        """Merge provider-specific settings (selected page, default sender...)."""
        account.provider_meta = {**(account.provider_meta or {}), **changes}
        account.updated_at = utcnow()
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account
