# podpublisher/integrations/facebook.py
import os
from typing import Optional

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult, expires_in_to_datetime
from podpublisher.integrations.errors import AuthExpiredError, MalformedPostError

FACEBOOK_CLIENT_ID = os.getenv("FACEBOOK_APP_ID")
FACEBOOK_CLIENT_SECRET = os.getenv("FACEBOOK_APP_SECRET")
FACEBOOK_REDIRECT_URI = os.getenv("FACEBOOK_REDIRECT_URI")
FACEBOOK_GRAPH_VERSION = os.getenv("FACEBOOK_GRAPH_VERSION", "v19.0")
FACEBOOK_SCOPES = "pages_show_list,pages_read_engagement,pages_manage_posts"

FACEBOOK_AUTH_URL = f"https://www.facebook.com/{FACEBOOK_GRAPH_VERSION}/dialog/oauth"
FACEBOOK_API_URL = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}"

LONG_LIVED_TOKEN_SECONDS = 60 * 24 * 60 * 60


class FacebookAdapter(ProviderAdapter):
    """
    Facebook Pages. The short-lived user token is swapped for a long-lived one
    (about 60 days). There is no refresh grant, so an expired token means reconnect.
    """

    name = "facebook"
    send_steps = 2
    destination_kinds = ("pages",)

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or FACEBOOK_CLIENT_ID
        self.client_secret = client_secret or FACEBOOK_CLIENT_SECRET
        self.redirect_uri = redirect_uri or FACEBOOK_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": FACEBOOK_SCOPES,
            "response_type": "code",
        }
        return str(httpx.URL(FACEBOOK_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri)
        short = await self.http.get_json(f"{FACEBOOK_API_URL}/oauth/access_token", params={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code": code,
        })
        if not short.get("access_token"):
            raise AuthExpiredError(self.name, "No access token returned from Facebook")

        long_lived = await self.http.get_json(f"{FACEBOOK_API_URL}/oauth/access_token", params={
            "grant_type": "fb_exchange_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "fb_exchange_token": short["access_token"],
        })
        access_token = long_lived.get("access_token") or short["access_token"]
        expires_in = long_lived.get("expires_in") or LONG_LIVED_TOKEN_SECONDS

        me = await self.http.get_json(f"{FACEBOOK_API_URL}/me", params={"fields": "id,name", "access_token": access_token})
        pages = await self._pages(access_token)
        return TokenSet(
            access_token=access_token,
            expires_at=expires_in_to_datetime(expires_in),
            scopes=FACEBOOK_SCOPES.split(","),
            provider_user_id=me.get("id"),
            profile={"name": me.get("name")},
            provider_meta={
                "pages": [{"id": p.get("id"), "name": p.get("name")} for p in pages],
                "selectedPageId": pages[0].get("id") if len(pages) == 1 else None,
            },
        )

    async def _pages(self, user_token: str) -> list:
        data = await self.http.get_json(f"{FACEBOOK_API_URL}/me/accounts", params={
            "fields": "id,name,access_token,category",
            "access_token": user_token,
        })
        return data.get("data") or []

    async def list_destinations(self, credential: Credential) -> dict:
        # page tokens stay server-side
        pages = await self._pages(credential.access_token)
        return {"pages": [{"id": p.get("id"), "name": p.get("name"), "category": p.get("category")} for p in pages]}

    async def send(self, credential: Credential, post) -> SendResult:
        page_id = post.meta.get("destinationId") or credential.provider_meta.get("selectedPageId")
        if not page_id:
            raise MalformedPostError(self.name, "No Facebook page selected for this post")

        # page tokens are not stored; look the page up with the user token each time
        pages = await self._pages(credential.access_token)
        page = next((p for p in pages if str(p.get("id")) == str(page_id)), None)
        if page is None or not page.get("access_token"):
            raise AuthExpiredError(self.name, f"Facebook page {page_id} is no longer accessible; reconnect required")

        body = {"message": post.content, "access_token": page["access_token"]}
        if post.meta.get("link"):
            body["link"] = post.meta["link"]
        data = await self.http.post_json(f"{FACEBOOK_API_URL}/{page_id}/feed", json=body)
        fb_post_id = data.get("id")
        url = f"https://www.facebook.com/{fb_post_id.replace('_', '/posts/', 1)}" if fb_post_id else None
        return SendResult(external_id=fb_post_id, url=url)
