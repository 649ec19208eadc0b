# podpublisher/routers/integrations_router.py
import os
import uuid
from typing import Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from podpublisher.dependencies.adapters import get_adapters
from podpublisher.dependencies.auth import get_current_user
from podpublisher.dependencies.db import get_session_dep
from podpublisher.infrastructure.accounts_repo import AccountsRepository
from podpublisher.infrastructure.events_repo import EventsRepository
from podpublisher.integrations.base import Credential, ProviderAdapter
from podpublisher.integrations.errors import AuthExpiredError, ProviderError, ProviderNotConfigured
from podpublisher.models.connected_account import ConnectedAccount, AccountStatus
from podpublisher.schemas.integration_schema import (
    ApiKeyConnect, AuthUrlResponse, DestinationsResponse, FacebookPageSelect, IntegrationStatus, SendGridSenderSelect,
)
from podpublisher.security.utils import (
    code_challenge_for, create_oauth_state, encrypt_token, generate_code_verifier, pop_oauth_state,
)
from podpublisher.services.credential_service import CredentialService, is_token_expired

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])

FRONTEND_PUBLIC_URL = os.getenv("FRONTEND_PUBLIC_URL", "http://localhost:5173")

# provider_meta keys that record a user choice
SELECTION_KEYS = ("selectedPageId", "defaultSender")


def _adapter_or_404(provider: str, adapters: Dict[str, ProviderAdapter]) -> ProviderAdapter:
    adapter = adapters.get(provider)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    return adapter


def _status_of(provider: str, account: ConnectedAccount | None) -> IntegrationStatus:
    if account is None:
        return IntegrationStatus(provider=provider, connected=False)
    profile = account.profile or {}
    # a refreshable token is renewed at send time
    expired = is_token_expired(account.expires_at) and not account.refresh_token_enc
    return IntegrationStatus(
        provider=provider,
        connected=account.status == AccountStatus.CONNECTED,
        token_expired=expired,
        expires_at=account.expires_at,
        account_name=profile.get("accountName") or profile.get("name") or profile.get("username") or profile.get("email"),
        status=account.status,
    )


async def _store_tokens(session: AsyncSession, user_id, provider: str, tokens) -> ConnectedAccount:
    repo = AccountsRepository(session)
    account = await repo.upsert(
        user_id,
        provider,
        access_token_enc=encrypt_token(tokens.access_token),
        refresh_token_enc=encrypt_token(tokens.refresh_token),
        expires_at=tokens.expires_at,
        provider_user_id=tokens.provider_user_id,
        scopes=tokens.scopes,
        profile=tokens.profile,
        provider_meta=tokens.provider_meta,
    )
    await EventsRepository(session).log(user_id, provider, "auth_success", "success", payload={"account_id": str(account.id)})
    logger.info("integration_connected", provider=provider, user_id=str(user_id))
    return account


@router.get("/{provider}/auth-url", response_model=AuthUrlResponse)
async def auth_url(
    provider: str,
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404(provider, adapters)
    if adapter.api_key_auth:
        raise HTTPException(status_code=400, detail=f"{provider} connects with an API key")

    code_verifier = generate_code_verifier() if adapter.uses_pkce else None
    state = await create_oauth_state(str(current_user.id), provider, code_verifier=code_verifier)
    try:
        url = adapter.auth_url(state, code_challenge=code_challenge_for(code_verifier) if code_verifier else None)
    except ProviderNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return AuthUrlResponse(auth_url=url)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404(provider, adapters)
    if error:
        raise HTTPException(status_code=400, detail=f"Authorization denied: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    payload = await pop_oauth_state(state)
    if not payload:
        raise HTTPException(status_code=400, detail="Invalid or expired state")
    if payload.get("provider") != provider:
        raise HTTPException(status_code=400, detail="State provider mismatch")
    user_id = uuid.UUID(payload["user_id"])

    try:
        tokens = await adapter.exchange_code(code, code_verifier=payload.get("code_verifier"))
    except ProviderNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except ProviderError as exc:
        logger.warning("integration_token_exchange_failed", provider=provider, user_id=str(user_id), error=str(exc))
        await EventsRepository(session).log(user_id, provider, "auth_failure", "failure", error=str(exc))
        raise HTTPException(status_code=502, detail=f"Token exchange failed: {exc}")

    await _store_tokens(session, user_id, provider, tokens)
    return RedirectResponse(
        f"{FRONTEND_PUBLIC_URL.rstrip('/')}/settings/integrations?connected={provider}",
        status_code=status.HTTP_302_FOUND,
    )


@router.post("/{provider}/connect", response_model=IntegrationStatus)
async def connect_api_key(
    provider: str,
    body: ApiKeyConnect,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404(provider, adapters)
    if not adapter.api_key_auth:
        raise HTTPException(status_code=400, detail=f"{provider} connects through OAuth")
    try:
        tokens = await adapter.validate_key(body.api_key.strip())
    except AuthExpiredError as exc:
        await EventsRepository(session).log(current_user.id, provider, "auth_failure", "failure", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    account = await _store_tokens(session, current_user.id, provider, tokens)
    return _status_of(provider, account)


@router.get("/{provider}/status", response_model=IntegrationStatus)
async def integration_status(
    provider: str,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    _adapter_or_404(provider, adapters)
    account = await AccountsRepository(session).get_by_user_and_provider(current_user.id, provider)
    return _status_of(provider, account)


@router.post("/{provider}/disconnect", response_model=IntegrationStatus)
async def disconnect(
    provider: str,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    _adapter_or_404(provider, adapters)
    repo = AccountsRepository(session)
    account = await repo.get_by_user_and_provider(current_user.id, provider)
    if account is None:
        raise HTTPException(status_code=404, detail=f"{provider} is not connected")
    account = await repo.mark_disconnected(account, clear_tokens=True)
    logger.info("integration_disconnected", provider=provider, user_id=str(current_user.id))
    return _status_of(provider, account)


async def _connected(session: AsyncSession, user_id, adapter: ProviderAdapter):
    try:
        return await CredentialService(session).resolve(user_id, adapter)
    except AuthExpiredError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


async def _destinations_of(adapter: ProviderAdapter, credential: Credential) -> dict:
    try:
        return await adapter.list_destinations(credential)
    except AuthExpiredError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


def _destinations_response(provider: str, destinations: dict, account: ConnectedAccount) -> DestinationsResponse:
    meta = account.provider_meta or {}
    return DestinationsResponse(
        provider=provider,
        destinations=destinations,
        selected={k: meta[k] for k in SELECTION_KEYS if meta.get(k) is not None},
    )


@router.get("/{provider}/destinations", response_model=DestinationsResponse)
async def list_destinations(
    provider: str,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404(provider, adapters)
    if not adapter.destination_kinds:
        raise HTTPException(status_code=400, detail=f"{provider} has no destinations to choose from")
    account, credential = await _connected(session, current_user.id, adapter)
    destinations = await _destinations_of(adapter, credential)
    return _destinations_response(provider, destinations, account)


@router.put("/facebook/page", response_model=DestinationsResponse)
async def select_facebook_page(
    body: FacebookPageSelect,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404("facebook", adapters)
    account, credential = await _connected(session, current_user.id, adapter)
    destinations = await _destinations_of(adapter, credential)
    pages = destinations.get("pages", [])
    if not any(str(p.get("id")) == body.page_id for p in pages):
        raise HTTPException(status_code=400, detail="That Facebook page is not one you manage")

    account = await AccountsRepository(session).update_provider_meta(
        account,
        pages=[{"id": p.get("id"), "name": p.get("name")} for p in pages],
        selectedPageId=body.page_id,
    )
    logger.info("facebook_page_selected", user_id=str(current_user.id), page_id=body.page_id)
    return _destinations_response("facebook", destinations, account)


@router.put("/sendgrid/default-sender", response_model=DestinationsResponse)
async def select_sendgrid_sender(
    body: SendGridSenderSelect,
    session: AsyncSession = Depends(get_session_dep),
    current_user=Depends(get_current_user),
    adapters: Dict[str, ProviderAdapter] = Depends(get_adapters),
):
    adapter = _adapter_or_404("sendgrid", adapters)
    account, credential = await _connected(session, current_user.id, adapter)
    destinations = await _destinations_of(adapter, credential)
    sender = next(
        (s for s in destinations.get("senders", []) if s.get("verified") and str(s.get("email")).lower() == body.email.lower()),
        None,
    )
    if sender is None:
        raise HTTPException(status_code=400, detail=f"{body.email} is not a verified SendGrid sender")

    account = await AccountsRepository(session).update_provider_meta(
        account, defaultSender={"email": sender["email"], "name": body.name or sender.get("name")},
    )
    logger.info("sendgrid_default_sender_updated", user_id=str(current_user.id))
    return _destinations_response("sendgrid", destinations, account)
