# podpublisher/integrations/kit.py
import os
from typing import Optional

import httpx

from podpublisher.integrations.base import (
    ProviderAdapter, TokenSet, Credential, SendResult, expires_in_to_datetime, split_subject,
)
from podpublisher.integrations.errors import (
    AuthExpiredError, ManualActionRequired, MalformedPostError, ProviderHTTPError, TransientProviderError,
)
from podpublisher.models.scheduled_post import utcnow

KIT_CLIENT_ID = os.getenv("KIT_CLIENT_ID")
KIT_CLIENT_SECRET = os.getenv("KIT_CLIENT_SECRET")
KIT_REDIRECT_URI = os.getenv("KIT_REDIRECT_URI")

KIT_AUTH_URL = "https://api.kit.com/v4/oauth/authorize"
KIT_TOKEN_URL = "https://api.kit.com/v4/oauth/token"
KIT_API_BASE = "https://api.kit.com/v4"
KIT_BROADCASTS_URL = "https://app.kit.com/campaigns"


class KitAdapter(ProviderAdapter):
    """
    Kit (ConvertKit) v4. A send is two calls: create a draft broadcast, then
    schedule it. When the second call fails the draft is left for the user to
    send from the Kit dashboard.
    """

    name = "kit"
    send_steps = 2
    destination_kinds = ("tags",)

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or KIT_CLIENT_ID
        self.client_secret = client_secret or KIT_CLIENT_SECRET
        self.redirect_uri = redirect_uri or KIT_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        return str(httpx.URL(KIT_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri)
        token_data = await self.http.post_json(KIT_TOKEN_URL, json={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }, headers={"Accept": "application/json"})
        tokens = self._tokens_from(token_data)

        account = await self.http.get_json(
            f"{KIT_API_BASE}/account",
            headers={"Accept": "application/json", "Authorization": f"Bearer {tokens.access_token}"},
        )
        acct = account.get("account") or {}
        tokens.provider_user_id = str(acct["id"]) if acct.get("id") else None
        tokens.profile = {"name": acct.get("name"), "email": (account.get("user") or {}).get("email")}
        return tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        self._require(self.client_id, self.client_secret)
        try:
            token_data = await self.http.post_json(KIT_TOKEN_URL, json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }, headers={"Accept": "application/json"})
        except ProviderHTTPError as exc:
            raise self._refresh_failed(exc) from exc
        tokens = self._tokens_from(token_data)
        tokens.refresh_token = tokens.refresh_token or refresh_token
        return tokens

    async def send(self, credential: Credential, post) -> SendResult:
        subject, body = split_subject(post.content, fallback=post.title or "")
        if not subject:
            raise MalformedPostError(self.name, "Email subject is missing")
        headers = {"Accept": "application/json", "Authorization": f"Bearer {credential.access_token}"}

        broadcast = {
            "subject": subject,
            "content": post.meta.get("html") or body.replace("\n", "<br>"),
            "public": bool(post.meta.get("public", False)),
            "send_at": None,
        }
        if post.meta.get("tagIds"):
            broadcast["subscriber_filter"] = [{"all": [{"type": "tag", "ids": post.meta["tagIds"]}]}]

        try:
            created = await self.http.post_json(f"{KIT_API_BASE}/broadcasts", json=broadcast, headers=headers)
        except ProviderHTTPError as exc:
            self._raise_for_auth(exc, "Kit rejected the access token; reconnect required")
            if exc.status_code in (408, 429):
                raise
            raise ManualActionRequired(
                self.name, f"Kit broadcast could not be created: {exc}", manual_action_url=KIT_BROADCASTS_URL,
            ) from exc

        broadcast_id = (created.get("broadcast") or {}).get("id")
        if broadcast_id is None:
            raise ManualActionRequired(
                self.name, "Kit did not return a broadcast id", manual_action_url=KIT_BROADCASTS_URL,
            )
        broadcast_id = str(broadcast_id)

        try:
            await self.http.put(
                f"{KIT_API_BASE}/broadcasts/{broadcast_id}",
                json={"send_at": utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")},
                headers=headers,
            )
        except (ProviderHTTPError, TransientProviderError) as exc:
            raise ManualActionRequired(
                self.name,
                f"Kit broadcast {broadcast_id} was drafted but could not be sent: {exc}",
                manual_action_url=KIT_BROADCASTS_URL,
                external_id=broadcast_id,
            ) from exc
        return SendResult(external_id=broadcast_id, url=KIT_BROADCASTS_URL)

    async def list_destinations(self, credential: Credential) -> dict:
        data = await self.http.get_json(
            f"{KIT_API_BASE}/tags",
            params={"per_page": 1000},
            headers={"Accept": "application/json", "Authorization": f"Bearer {credential.access_token}"},
        )
        return {"tags": [{"id": t.get("id"), "name": t.get("name")} for t in data.get("tags", [])]}

    def _tokens_from(self, token_data: dict) -> TokenSet:
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthExpiredError(self.name, "No access token returned from Kit")
        return TokenSet(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_in_to_datetime(token_data.get("expires_in")),
            scopes=str(token_data.get("scope") or "public").split(),
        )
