# podpublisher/integrations/medium.py
from typing import Optional

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult
from podpublisher.integrations.errors import AuthExpiredError, ProviderHTTPError

MEDIUM_API_URL = "https://api.medium.com/v1"


class MediumAdapter(ProviderAdapter):
    """Medium integration tokens: pasted by the user, never expire, no refresh."""

    name = "medium"
    api_key_auth = True
    destination_kinds = ("publications",)

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)

    def _headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Accept-Charset": "utf-8",
        }

    async def validate_key(self, api_key: str) -> TokenSet:
        try:
            me = await self.http.get_json(f"{MEDIUM_API_URL}/me", headers=self._headers(api_key))
        except ProviderHTTPError as exc:
            self._raise_for_auth(exc, "Invalid Medium integration token")
            raise
        data = me.get("data") or {}
        if not data.get("id"):
            raise AuthExpiredError(self.name, "Medium did not return a user id for this token")
        return TokenSet(
            access_token=api_key,
            provider_user_id=data["id"],
            profile={"username": data.get("username"), "name": data.get("name"), "url": data.get("url")},
        )

    async def list_destinations(self, credential: Credential) -> dict:
        if not credential.provider_user_id:
            raise AuthExpiredError(self.name, "Medium author id missing; reconnect required")
        data = await self.http.get_json(
            f"{MEDIUM_API_URL}/users/{credential.provider_user_id}/publications",
            headers=self._headers(credential.access_token),
        )
        return {
            "publications": [
                {"id": p.get("id"), "name": p.get("name"), "description": p.get("description"), "url": p.get("url")}
                for p in data.get("data", [])
            ]
        }

    async def send(self, credential: Credential, post) -> SendResult:
        if not credential.provider_user_id:
            raise AuthExpiredError(self.name, "Medium author id missing; reconnect required")

        publication_id = post.meta.get("publicationId")
        if publication_id:
            endpoint = f"{MEDIUM_API_URL}/publications/{publication_id}/posts"
        else:
            endpoint = f"{MEDIUM_API_URL}/users/{credential.provider_user_id}/posts"

        title = post.title or post.content.strip().split("\n", 1)[0][:100]
        body = {
            "title": title,
            "contentFormat": post.meta.get("contentFormat", "markdown"),
            "content": post.content,
            "tags": list(post.meta.get("tags") or [])[:5],
            "publishStatus": post.meta.get("publishStatus", "public"),
        }
        if post.meta.get("canonicalUrl"):
            body["canonicalUrl"] = post.meta["canonicalUrl"]

        data = await self.http.post_json(endpoint, json=body, headers=self._headers(credential.access_token))
        created = data.get("data") or {}
        return SendResult(external_id=created.get("id"), url=created.get("url"))
