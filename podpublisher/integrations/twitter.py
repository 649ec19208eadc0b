# podpublisher/integrations/twitter.py
import os
from typing import Optional

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult, expires_in_to_datetime
from podpublisher.integrations.errors import AuthExpiredError, MalformedPostError, ProviderHTTPError

TWITTER_CLIENT_ID = os.getenv("TWITTER_CLIENT_ID")
TWITTER_CLIENT_SECRET = os.getenv("TWITTER_CLIENT_SECRET")
TWITTER_REDIRECT_URI = os.getenv("TWITTER_REDIRECT_URI")
TWITTER_SCOPES = "tweet.read tweet.write users.read offline.access"

TWITTER_AUTH_URL = "https://x.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.x.com/2/oauth2/token"
TWITTER_API_URL = "https://api.x.com/2"

TWEET_MAX_CHARS = 280


class TwitterAdapter(ProviderAdapter):
    """X (Twitter) API v2. OAuth 2.0 with PKCE; the token endpoint wants Basic client auth."""

    name = "twitter"
    uses_pkce = True

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or TWITTER_CLIENT_ID
        self.client_secret = client_secret or TWITTER_CLIENT_SECRET
        self.redirect_uri = redirect_uri or TWITTER_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri, code_challenge)
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": TWITTER_SCOPES,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return str(httpx.URL(TWITTER_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri, code_verifier)
        token_data = await self.http.post_json(
            TWITTER_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
                "client_id": self.client_id,
            },
            auth=(self.client_id, self.client_secret),
        )
        tokens = self._tokens_from(token_data)

        me = await self.http.get_json(
            f"{TWITTER_API_URL}/users/me",
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        data = me.get("data") or {}
        tokens.provider_user_id = data.get("id")
        tokens.profile = {"username": data.get("username"), "name": data.get("name")}
        return tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        self._require(self.client_id, self.client_secret)
        try:
            token_data = await self.http.post_json(
                TWITTER_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                },
                auth=(self.client_id, self.client_secret),
            )
        except ProviderHTTPError as exc:
            raise self._refresh_failed(exc) from exc
        tokens = self._tokens_from(token_data)
        # X rotates refresh tokens; keep the old one only if none came back
        tokens.refresh_token = tokens.refresh_token or refresh_token
        return tokens

    async def send(self, credential: Credential, post) -> SendResult:
        text = post.content.strip()
        if not text:
            raise MalformedPostError(self.name, "Tweet text is empty")
        if len(text) > TWEET_MAX_CHARS:
            raise MalformedPostError(self.name, f"Tweet exceeds {TWEET_MAX_CHARS} characters")

        body = {"text": text}
        reply_to = post.meta.get("replyToTweetId")
        if reply_to:
            body["reply"] = {"in_reply_to_tweet_id": str(reply_to)}

        data = await self.http.post_json(
            f"{TWITTER_API_URL}/tweets",
            json=body,
            headers={"Authorization": f"Bearer {credential.access_token}"},
        )
        tweet_id = (data.get("data") or {}).get("id")
        url = f"https://x.com/i/web/status/{tweet_id}" if tweet_id else None
        return SendResult(external_id=tweet_id, url=url)

    def _tokens_from(self, token_data: dict) -> TokenSet:
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthExpiredError(self.name, "No access token returned from X")
        return TokenSet(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_in_to_datetime(token_data.get("expires_in")),
            scopes=str(token_data.get("scope", "")).split(),
        )
