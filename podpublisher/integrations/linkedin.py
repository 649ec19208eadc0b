# podpublisher/integrations/linkedin.py
import os
from typing import Optional
from urllib.parse import quote

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult, expires_in_to_datetime
from podpublisher.integrations.errors import AuthExpiredError, ProviderHTTPError

LINKEDIN_CLIENT_ID = os.getenv("LINKEDIN_CLIENT_ID")
LINKEDIN_CLIENT_SECRET = os.getenv("LINKEDIN_CLIENT_SECRET")
LINKEDIN_REDIRECT_URI = os.getenv("LINKEDIN_REDIRECT_URI")
LINKEDIN_SCOPES = os.getenv("LINKEDIN_SCOPES", "openid profile email w_member_social")

LINKEDIN_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_API_URL = "https://api.linkedin.com/v2"


class LinkedInAdapter(ProviderAdapter):
    name = "linkedin"

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or LINKEDIN_CLIENT_ID
        self.client_secret = client_secret or LINKEDIN_CLIENT_SECRET
        self.redirect_uri = redirect_uri or LINKEDIN_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri)
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": LINKEDIN_SCOPES,
        }
        return str(httpx.URL(LINKEDIN_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri)
        token_data = await self.http.post_json(LINKEDIN_TOKEN_URL, data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })
        tokens = self._tokens_from(token_data)

        profile = await self.http.get_json(
            f"{LINKEDIN_API_URL}/userinfo",
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        tokens.provider_user_id = profile.get("sub")
        tokens.profile = {
            "name": profile.get("name"),
            "email": profile.get("email"),
            "picture": profile.get("picture"),
        }
        return tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        self._require(self.client_id, self.client_secret)
        try:
            token_data = await self.http.post_json(LINKEDIN_TOKEN_URL, data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            })
        except ProviderHTTPError as exc:
            raise self._refresh_failed(exc) from exc
        tokens = self._tokens_from(token_data)
        tokens.refresh_token = tokens.refresh_token or refresh_token
        return tokens

    async def send(self, credential: Credential, post) -> SendResult:
        if not credential.provider_user_id:
            raise AuthExpiredError(self.name, "LinkedIn member id missing; reconnect required")

        share = {
            "shareCommentary": {"text": post.content},
            "shareMediaCategory": "NONE",
        }
        link = post.meta.get("link")
        if link:
            share["shareMediaCategory"] = "ARTICLE"
            share["media"] = [{
                "status": "READY",
                "originalUrl": link,
                "title": {"text": post.title or ""},
            }]

        body = {
            "author": f"urn:li:person:{credential.provider_user_id}",
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": post.meta.get("visibility", "PUBLIC")},
        }
        r = await self.http.post(
            f"{LINKEDIN_API_URL}/ugcPosts",
            json=body,
            headers={
                "Authorization": f"Bearer {credential.access_token}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        post_id = r.headers.get("x-restli-id", "")
        url = f"https://www.linkedin.com/feed/update/{quote(post_id, safe='')}" if post_id else None
        return SendResult(external_id=post_id or None, url=url)

    def _tokens_from(self, token_data: dict) -> TokenSet:
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthExpiredError(self.name, "No access token returned from LinkedIn")
        return TokenSet(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_in_to_datetime(token_data.get("expires_in")),
            scopes=[s for s in str(token_data.get("scope", "")).replace(",", " ").split() if s],
        )
