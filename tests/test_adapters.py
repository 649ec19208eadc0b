import asyncio
import base64
import json
from email import message_from_bytes
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from podpublisher.infrastructure.http_client import ProviderHTTPClient, request_budget
from podpublisher.integrations.base import Credential, split_subject
from podpublisher.integrations.errors import (
    AuthExpiredError,
    MalformedPostError,
    ManualActionRequired,
    ProviderHTTPError,
    TransientProviderError,
)
from podpublisher.integrations.facebook import FacebookAdapter
from podpublisher.integrations.gmail import GmailAdapter, build_raw_message
from podpublisher.integrations.kit import KIT_BROADCASTS_URL, KitAdapter
from podpublisher.integrations.linkedin import LinkedInAdapter
from podpublisher.integrations.mailchimp import MailchimpAdapter
from podpublisher.integrations.medium import MediumAdapter
from podpublisher.integrations.registry import ADAPTER_CLASSES, build_adapters
from podpublisher.integrations.sendgrid import SENDGRID_SINGLE_SENDS_URL, SendGridAdapter
from podpublisher.integrations.twitter import TwitterAdapter


def _post(content="Hello", title=None, **meta):
    return SimpleNamespace(content=content, title=title, meta=meta)


def _run(coro):
    return asyncio.run(coro)


def test_registry_covers_every_platform_and_email_provider():
    assert set(ADAPTER_CLASSES) == {"linkedin", "twitter", "medium", "facebook", "gmail", "sendgrid", "mailchimp", "kit"}
    adapters = build_adapters()
    assert all(adapter.name == name for name, adapter in adapters.items())


def test_split_subject():
    assert split_subject("Subject: Episode 12\n\nBody text") == ("Episode 12", "Body text")
    assert split_subject("No subject line", fallback="Title") == ("Title", "No subject line")


def test_linkedin_share_returns_restli_id():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["author"] == "urn:li:person:abc"
        assert body["specificContent"]["com.linkedin.ugc.ShareContent"]["shareMediaCategory"] == "ARTICLE"
        assert request.headers["X-Restli-Protocol-Version"] == "2.0.0"
        return httpx.Response(201, headers={"x-restli-id": "urn:li:share:42"})

    adapter = LinkedInAdapter(transport=httpx.MockTransport(handler))
    result = _run(adapter.send(Credential("tok", provider_user_id="abc"), _post(link="https://pod.example/ep1")))
    assert result.external_id == "urn:li:share:42"
    assert result.url == "https://www.linkedin.com/feed/update/urn%3Ali%3Ashare%3A42"


def test_twitter_rejects_overlong_tweet_without_calling_out():
    adapter = TwitterAdapter(transport=httpx.MockTransport(lambda r: pytest.fail("no call expected")))
    with pytest.raises(MalformedPostError):
        _run(adapter.send(Credential("tok"), _post("x" * 281)))


def test_twitter_auth_url_uses_pkce():
    adapter = TwitterAdapter(client_id="cid", client_secret="s", redirect_uri="https://app.test/cb")
    url = adapter.auth_url("state123", code_challenge="challenge")
    query = parse_qs(urlparse(url).query)
    assert query["code_challenge"] == ["challenge"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state123"]


def test_twitter_refresh_server_error_is_not_an_auth_failure():
    adapter = TwitterAdapter(client_id="cid", client_secret="s", transport=httpx.MockTransport(lambda r: httpx.Response(502)))
    with pytest.raises(ProviderHTTPError):
        _run(adapter.refresh("r"))

    adapter = TwitterAdapter(client_id="cid", client_secret="s", transport=httpx.MockTransport(lambda r: httpx.Response(400)))
    with pytest.raises(AuthExpiredError):
        _run(adapter.refresh("r"))


def test_medium_publishes_public_by_default():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "m1", "url": "https://medium.com/p/m1"}})

    adapter = MediumAdapter(transport=httpx.MockTransport(handler))
    result = _run(adapter.send(Credential("tok", provider_user_id="u1"), _post("# Show notes", title="Ep 1")))
    assert captured["path"] == "/v1/users/u1/posts"
    assert captured["body"]["publishStatus"] == "public"
    assert captured["body"]["title"] == "Ep 1"
    assert (result.external_id, result.url) == ("m1", "https://medium.com/p/m1")


def test_medium_invalid_integration_token():
    adapter = MediumAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(401, json={"errors": []})))
    with pytest.raises(AuthExpiredError):
        _run(adapter.validate_key("bad"))


def test_facebook_requires_a_page():
    adapter = FacebookAdapter(transport=httpx.MockTransport(lambda r: pytest.fail("no call expected")))
    with pytest.raises(MalformedPostError):
        _run(adapter.send(Credential("tok"), _post()))


def test_facebook_posts_with_page_token():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/me/accounts"):
            return httpx.Response(200, json={"data": [{"id": "p1", "name": "Pod", "access_token": "page-tok"}]})
        assert json.loads(request.content)["access_token"] == "page-tok"
        return httpx.Response(200, json={"id": "p1_99"})

    adapter = FacebookAdapter(transport=httpx.MockTransport(handler))
    result = _run(adapter.send(Credential("user-tok"), _post(destinationId="p1")))
    assert result.external_id == "p1_99"
    assert result.url == "https://www.facebook.com/p1/posts/99"


def test_gmail_raw_message_is_urlsafe_rfc2822():
    raw = build_raw_message("fan@example.com", "New episode", "Listen now", sender="host@example.com")
    padded = raw + "=" * (-len(raw) % 4)
    msg = message_from_bytes(base64.urlsafe_b64decode(padded))
    assert msg["To"] == "fan@example.com"
    assert msg["Subject"] == "New episode"
    assert msg["From"] == "host@example.com"


def test_gmail_needs_a_recipient():
    adapter = GmailAdapter(transport=httpx.MockTransport(lambda r: pytest.fail("no call expected")))
    with pytest.raises(MalformedPostError):
        _run(adapter.send(Credential("tok"), _post("Subject: Hi\nBody")))


def test_sendgrid_single_recipient_uses_mail_send():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v3/mail/send"
        body = json.loads(request.content)
        assert body["personalizations"][0]["to"] == [{"email": "fan@example.com"}]
        assert body["from"] == {"email": "host@example.com"}
        assert body["subject"] == "Hi"
        return httpx.Response(202, headers={"X-Message-Id": "sg-1"})

    adapter = SendGridAdapter(transport=httpx.MockTransport(handler))
    credential = Credential("SG.key", provider_meta={"defaultSender": {"email": "host@example.com"}})
    result = _run(adapter.send(credential, _post("Subject: Hi\nBody", subscriberEmail="fan@example.com")))
    assert result.external_id == "sg-1"


def test_sendgrid_schedule_failure_needs_manual_send():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "ss-1"})
        return httpx.Response(500)

    adapter = SendGridAdapter(transport=httpx.MockTransport(handler))
    with pytest.raises(ManualActionRequired) as exc_info:
        _run(adapter.send(Credential("SG.key"), _post("Subject: Hi\nBody", listIds=["l1"])))
    assert exc_info.value.manual_action_url == SENDGRID_SINGLE_SENDS_URL
    assert exc_info.value.external_id == "ss-1"


def test_mailchimp_requires_audience_and_tag():
    adapter = MailchimpAdapter(transport=httpx.MockTransport(lambda r: pytest.fail("no call expected")))
    credential = Credential("tok", provider_meta={"dc": "us1"})
    with pytest.raises(MalformedPostError):
        _run(adapter.send(credential, _post(tags=["t"], subscriberEmail="a@b.c")))
    with pytest.raises(MalformedPostError):
        _run(adapter.send(credential, _post(audienceId="aud", subscriberEmail="a@b.c")))


def test_mailchimp_lists_static_segment_names():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3.0/lists/aud/segments"
        assert request.url.params["type"] == "static"
        assert request.headers["authorization"] == "OAuth tok"
        return httpx.Response(200, json={"segments": [{"name": "new_episode"}, {"name": "vip"}]})

    adapter = MailchimpAdapter(transport=httpx.MockTransport(handler))
    names = _run(adapter.list_tag_names(Credential("tok", provider_meta={"dc": "us1"}), "aud"))
    assert names == ["new_episode", "vip"]


def test_kit_create_rejected_credentials_is_auth_failure():
    adapter = KitAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(401)))
    with pytest.raises(AuthExpiredError):
        _run(adapter.send(Credential("tok"), _post("Subject: Hi\nBody")))


def test_kit_create_rate_limit_stays_retryable():
    adapter = KitAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    with pytest.raises(ProviderHTTPError) as exc_info:
        _run(adapter.send(Credential("tok"), _post("Subject: Hi\nBody")))
    assert exc_info.value.status_code == 429


def test_kit_send_step_network_failure_needs_manual_send():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"broadcast": {"id": 5}})
        raise httpx.ReadTimeout("timed out")

    adapter = KitAdapter(transport=httpx.MockTransport(handler))
    with pytest.raises(ManualActionRequired) as exc_info:
        _run(adapter.send(Credential("tok"), _post("Subject: Hi\nBody")))
    assert exc_info.value.manual_action_url == KIT_BROADCASTS_URL
    assert exc_info.value.external_id == "5"


def test_http_client_wraps_network_errors_as_transient():
    def handler(request):
        raise httpx.ConnectError("refused")

    adapter = MediumAdapter(transport=httpx.MockTransport(handler))
    with pytest.raises(TransientProviderError):
        _run(adapter.send(Credential("tok", provider_user_id="u1"), _post()))


def test_kit_create_server_error_needs_manual_send():
    adapter = KitAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
    with pytest.raises(ManualActionRequired) as exc_info:
        _run(adapter.send(Credential("tok"), _post("Subject: Hi\nBody")))
    assert exc_info.value.manual_action_url == KIT_BROADCASTS_URL
    assert exc_info.value.external_id is None


def test_request_budget_caps_each_provider_call():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200)

    client = ProviderHTTPClient("medium", timeout=30, transport=httpx.MockTransport(handler))

    async def call():
        with request_budget(0.05):
            await client.get("https://api.medium.com/v1/me")

    with pytest.raises(TransientProviderError, match="timed out"):
        _run(call())


def test_sendgrid_slow_schedule_step_needs_manual_send():
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if request.method == "POST":
            return httpx.Response(201, json={"id": "ss-7"})
        await asyncio.sleep(1)
        return httpx.Response(200)

    adapter = SendGridAdapter(transport=httpx.MockTransport(handler))

    async def send():
        with request_budget(0.05):
            return await adapter.send(Credential("SG.key"), _post("Subject: Hi\nBody", listIds=["l1"]))

    with pytest.raises(ManualActionRequired) as exc_info:
        _run(send())
    assert exc_info.value.external_id == "ss-7"
    assert calls == ["POST", "PUT"]


def test_kit_lists_tags():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v4/tags"
        assert request.headers["authorization"] == "Bearer tok"
        return httpx.Response(200, json={"tags": [{"id": 1, "name": "new_episode", "created_at": "2026-01-01"}]})

    adapter = KitAdapter(transport=httpx.MockTransport(handler))
    assert _run(adapter.list_destinations(Credential("tok"))) == {"tags": [{"id": 1, "name": "new_episode"}]}


def test_medium_publications_need_an_author_id():
    adapter = MediumAdapter(transport=httpx.MockTransport(lambda r: pytest.fail("no call expected")))
    with pytest.raises(AuthExpiredError):
        _run(adapter.list_destinations(Credential("tok")))
