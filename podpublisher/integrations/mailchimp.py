# podpublisher/integrations/mailchimp.py
import os
import hashlib
from typing import Optional, List

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult
from podpublisher.integrations.errors import AuthExpiredError, MalformedPostError

MAILCHIMP_CLIENT_ID = os.getenv("MAILCHIMP_CLIENT_ID")
MAILCHIMP_CLIENT_SECRET = os.getenv("MAILCHIMP_CLIENT_SECRET")
MAILCHIMP_REDIRECT_URI = os.getenv("MAILCHIMP_REDIRECT_URI")

MAILCHIMP_AUTH_URL = "https://login.mailchimp.com/oauth2/authorize"
MAILCHIMP_TOKEN_URL = "https://login.mailchimp.com/oauth2/token"
MAILCHIMP_METADATA_URL = "https://login.mailchimp.com/oauth2/metadata"


def subscriber_hash(email: str) -> str:
    return hashlib.md5(email.strip().lower().encode()).hexdigest()


class MailchimpAdapter(ProviderAdapter):
    """
    Mailchimp does not send on our behalf: a scheduled email applies the
    automation trigger tag to a subscriber and the user's Mailchimp automation
    delivers it. OAuth tokens never expire and there is no refresh grant.
    """

    name = "mailchimp"
    send_steps = 2
    destination_kinds = ("audiences",)

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or MAILCHIMP_CLIENT_ID
        self.client_secret = client_secret or MAILCHIMP_CLIENT_SECRET
        self.redirect_uri = redirect_uri or MAILCHIMP_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri)
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return str(httpx.URL(MAILCHIMP_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri)
        token_data = await self.http.post_json(MAILCHIMP_TOKEN_URL, data={
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        })
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthExpiredError(self.name, "No access token returned from Mailchimp")

        meta = await self.http.get_json(MAILCHIMP_METADATA_URL, headers={"Authorization": f"OAuth {access_token}"})
        scope = str(token_data.get("scope") or "")
        return TokenSet(
            access_token=access_token,
            scopes=scope.split(),
            provider_user_id=str(meta["account_id"]) if meta.get("account_id") else None,
            profile={
                "accountName": meta.get("accountname"),
                "email": (meta.get("login") or {}).get("email") or meta.get("email"),
            },
            provider_meta={"dc": meta.get("dc"), "apiEndpoint": meta.get("api_endpoint")},
        )

    def _api_base(self, credential: Credential) -> str:
        endpoint = credential.provider_meta.get("apiEndpoint")
        if endpoint:
            return f"{endpoint.rstrip('/')}/3.0"
        dc = credential.provider_meta.get("dc")
        if dc:
            return f"https://{dc}.api.mailchimp.com/3.0"
        raise AuthExpiredError(self.name, "Mailchimp data center unknown; reconnect required")

    def _headers(self, credential: Credential) -> dict:
        return {"Authorization": f"OAuth {credential.access_token}"}

    async def list_destinations(self, credential: Credential) -> dict:
        data = await self.http.get_json(
            f"{self._api_base(credential)}/lists",
            params={"count": 1000, "fields": "lists.id,lists.name,lists.stats.member_count"},
            headers=self._headers(credential),
        )
        return {
            "audiences": [
                {"id": a.get("id"), "name": a.get("name"), "memberCount": (a.get("stats") or {}).get("member_count", 0)}
                for a in data.get("lists", [])
            ]
        }

    async def list_tag_names(self, credential: Credential, audience_id: str) -> List[str]:
        """Names of the static segments (tags) in an audience."""
        data = await self.http.get_json(
            f"{self._api_base(credential)}/lists/{audience_id}/segments",
            params={"type": "static", "count": 1000, "fields": "segments.name"},
            headers=self._headers(credential),
        )
        return [s.get("name") for s in data.get("segments", []) if s.get("name")]

    async def send(self, credential: Credential, post) -> SendResult:
        audience_id = post.meta.get("audienceId") or post.meta.get("destinationId")
        if not audience_id:
            raise MalformedPostError(self.name, "Mailchimp audienceId is missing")
        tags = [t for t in (post.meta.get("tags") or []) if t]
        if not tags:
            raise MalformedPostError(self.name, "Mailchimp trigger tag is missing")
        email = post.meta.get("subscriberEmail")
        if not email:
            raise MalformedPostError(self.name, "Mailchimp subscriberEmail is missing")

        member_url = f"{self._api_base(credential)}/lists/{audience_id}/members/{subscriber_hash(email)}"
        member = {"email_address": email, "status_if_new": "subscribed"}
        if post.meta.get("mergeFields"):
            member["merge_fields"] = post.meta["mergeFields"]
        await self.http.put(member_url, json=member, headers=self._headers(credential))

        await self.http.post(
            f"{member_url}/tags",
            json={"tags": [{"name": t, "status": "active"} for t in tags]},
            headers=self._headers(credential),
        )
        # tag application has no id of its own
        return SendResult(external_id=None)
