# podpublisher/integrations/sendgrid.py
from typing import Optional

import httpx

from podpublisher.integrations.base import ProviderAdapter, TokenSet, Credential, SendResult, split_subject
from podpublisher.integrations.errors import (
    AuthExpiredError, MalformedPostError, ManualActionRequired, ProviderError, ProviderHTTPError, TransientProviderError,
)

SENDGRID_API_URL = "https://api.sendgrid.com/v3"
SENDGRID_SINGLE_SENDS_URL = "https://mc.sendgrid.com/single-sends"


class SendGridAdapter(ProviderAdapter):
    """
    SendGrid API keys never expire. A post with listIds becomes a Marketing
    Single Send scheduled for "now"; a post with subscriberEmail goes through
    the plain Mail Send endpoint.
    """

    name = "sendgrid"
    api_key_auth = True
    send_steps = 2
    destination_kinds = ("lists", "templates", "senders")

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)

    def _headers(self, api_key: str) -> dict:
        return {"Authorization": f"Bearer {api_key}"}

    async def validate_key(self, api_key: str) -> TokenSet:
        if not api_key.startswith("SG."):
            raise AuthExpiredError(self.name, "That does not look like a SendGrid API key")
        try:
            profile = await self.http.get_json(f"{SENDGRID_API_URL}/user/profile", headers=self._headers(api_key))
            senders = await self._senders(api_key)
        except ProviderHTTPError as exc:
            self._raise_for_auth(exc, "SendGrid API key invalid or missing permissions")
            raise
        verified = [s for s in senders if s["verified"]]
        default_sender = None
        if verified:
            default_sender = {"email": verified[0]["email"], "name": verified[0]["name"]}
        return TokenSet(
            access_token=api_key,
            profile={
                "name": " ".join(filter(None, [profile.get("first_name"), profile.get("last_name")])) or None,
                "company": profile.get("company"),
            },
            provider_meta={"defaultSender": default_sender},
        )

    async def _senders(self, api_key: str) -> list:
        data = await self.http.get_json(f"{SENDGRID_API_URL}/verified_senders", headers=self._headers(api_key))
        return [
            {
                "id": s.get("id"),
                "email": s.get("from_email"),
                "name": s.get("from_name") or s.get("nickname") or "",
                "verified": bool(s.get("verified")),
            }
            for s in data.get("results", [])
        ]

    async def _optional_get(self, url: str, api_key: str, **kwargs) -> dict:
        # Marketing Campaigns and dynamic templates are absent on some plans
        try:
            return await self.http.get_json(url, headers=self._headers(api_key), **kwargs)
        except ProviderHTTPError as exc:
            if exc.status_code in (403, 404):
                return {}
            raise

    async def list_destinations(self, credential: Credential) -> dict:
        api_key = credential.access_token
        lists = await self._optional_get(f"{SENDGRID_API_URL}/marketing/lists", api_key, params={"page_size": 1000})
        templates = await self._optional_get(
            f"{SENDGRID_API_URL}/templates", api_key, params={"generations": "dynamic", "page_size": 100},
        )
        return {
            "lists": [
                {"id": item.get("id"), "name": item.get("name"), "contactCount": item.get("contact_count") or 0}
                for item in lists.get("result", [])
            ],
            "templates": [
                {"id": t.get("id"), "name": t.get("name"), "updatedAt": t.get("updated_at")}
                for t in templates.get("templates") or templates.get("result") or []
            ],
            "senders": await self._senders(api_key),
        }

    def _sender(self, credential: Credential, post) -> dict:
        if post.meta.get("fromEmail"):
            return {"email": post.meta["fromEmail"], "name": post.meta.get("fromName")}
        sender = credential.provider_meta.get("defaultSender")
        if not sender or not sender.get("email"):
            raise MalformedPostError(self.name, "No verified SendGrid sender configured")
        return sender

    async def send(self, credential: Credential, post) -> SendResult:
        subject, body = split_subject(post.content, fallback=post.title or "")
        if not subject:
            raise MalformedPostError(self.name, "Email subject is missing")

        list_ids = post.meta.get("listIds") or []
        if list_ids:
            return await self._single_send(credential, post, subject, body, list_ids)

        to = post.meta.get("subscriberEmail")
        if not to:
            raise MalformedPostError(self.name, "SendGrid send needs listIds or subscriberEmail")

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {k: v for k, v in self._sender(credential, post).items() if v},
            "subject": subject,
        }
        if post.meta.get("templateId"):
            payload["template_id"] = post.meta["templateId"]
            payload["personalizations"][0]["dynamic_template_data"] = post.meta.get("mergeFields") or {}
        else:
            payload["content"] = [{"type": "text/plain", "value": body}]

        r = await self.http.post(f"{SENDGRID_API_URL}/mail/send", json=payload, headers=self._headers(credential.access_token))
        return SendResult(external_id=r.headers.get("X-Message-Id"))

    async def _single_send(self, credential: Credential, post, subject: str, body: str, list_ids: list) -> SendResult:
        email_config = {"subject": subject}
        if post.meta.get("templateId"):
            email_config["design_id"] = post.meta["templateId"]
        else:
            email_config["plain_content"] = body
            email_config["html_content"] = post.meta.get("html") or body.replace("\n", "<br>")
        if post.meta.get("senderId"):
            email_config["sender_id"] = post.meta["senderId"]
        if post.meta.get("suppressionGroupId"):
            email_config["suppression_group_id"] = post.meta["suppressionGroupId"]

        created = await self.http.post_json(
            f"{SENDGRID_API_URL}/marketing/singlesends",
            json={
                "name": post.title or subject,
                "send_to": {"list_ids": list_ids},
                "email_config": email_config,
            },
            headers=self._headers(credential.access_token),
        )
        single_send_id = created.get("id")
        if not single_send_id:
            raise ProviderError(self.name, "SendGrid Single Send created but no id returned")

        # the draft already exists; retrying would create a second one
        try:
            await self.http.put(
                f"{SENDGRID_API_URL}/marketing/singlesends/{single_send_id}/schedule",
                json={"send_at": "now"},
                headers=self._headers(credential.access_token),
            )
        except (ProviderHTTPError, TransientProviderError) as exc:
            raise ManualActionRequired(
                self.name,
                f"SendGrid Single Send {single_send_id} was created but could not be scheduled: {exc}",
                manual_action_url=SENDGRID_SINGLE_SENDS_URL,
                external_id=single_send_id,
            ) from exc
        return SendResult(external_id=single_send_id)
