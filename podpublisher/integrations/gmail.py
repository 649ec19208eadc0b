# podpublisher/integrations/gmail.py
import os
import base64
from email.message import EmailMessage
from typing import Optional

import httpx

from podpublisher.integrations.base import (
    ProviderAdapter, TokenSet, Credential, SendResult, expires_in_to_datetime, split_subject,
)
from podpublisher.integrations.errors import AuthExpiredError, MalformedPostError, ProviderHTTPError

GMAIL_CLIENT_ID = os.getenv("GMAIL_CLIENT_ID")
GMAIL_CLIENT_SECRET = os.getenv("GMAIL_CLIENT_SECRET")
GMAIL_REDIRECT_URI = os.getenv("GMAIL_REDIRECT_URI")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


def build_raw_message(to: str, subject: str, body: str, sender: Optional[str] = None) -> str:
    """RFC 2822 message, base64url encoded without padding as Gmail expects."""
    msg = EmailMessage()
    msg["To"] = to
    msg["Subject"] = subject
    if sender:
        msg["From"] = sender
    msg.set_content(body)
    return base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")


class GmailAdapter(ProviderAdapter):
    name = "gmail"

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.client_id = client_id or GMAIL_CLIENT_ID
        self.client_secret = client_secret or GMAIL_CLIENT_SECRET
        self.redirect_uri = redirect_uri or GMAIL_REDIRECT_URI

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self._require(self.client_id, self.redirect_uri)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GMAIL_SCOPES),
            "access_type": "offline",  # needed for a refresh token
            "prompt": "consent",
            "state": state,
        }
        return str(httpx.URL(GOOGLE_AUTH_URL).copy_merge_params(params))

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        self._require(self.client_id, self.client_secret, self.redirect_uri)
        token_data = await self.http.post_json(GOOGLE_TOKEN_URL, data={
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })
        tokens = self._tokens_from(token_data)
        profile = await self.http.get_json(
            GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        tokens.provider_user_id = profile.get("id")
        tokens.profile = {"email": profile.get("email"), "name": profile.get("name")}
        return tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        self._require(self.client_id, self.client_secret)
        try:
            token_data = await self.http.post_json(GOOGLE_TOKEN_URL, data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            })
        except ProviderHTTPError as exc:
            raise self._refresh_failed(exc) from exc
        tokens = self._tokens_from(token_data)
        tokens.refresh_token = tokens.refresh_token or refresh_token
        return tokens

    async def send(self, credential: Credential, post) -> SendResult:
        to = post.meta.get("subscriberEmail")
        if not to:
            raise MalformedPostError(self.name, "Gmail send needs a recipient (subscriberEmail)")
        subject, body = split_subject(post.content, fallback=post.title or "")
        if not subject:
            raise MalformedPostError(self.name, "Email subject is missing")

        raw = build_raw_message(to, subject, body, sender=credential.profile.get("email"))
        data = await self.http.post_json(
            GMAIL_SEND_URL,
            json={"raw": raw},
            headers={"Authorization": f"Bearer {credential.access_token}"},
        )
        return SendResult(external_id=data.get("id"))

    def _tokens_from(self, token_data: dict) -> TokenSet:
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthExpiredError(self.name, "No access token returned from Google")
        return TokenSet(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_in_to_datetime(token_data.get("expires_in")),
            scopes=str(token_data.get("scope", "")).split(),
        )
