from datetime import timedelta

from sqlalchemy.exc import OperationalError

from podpublisher.dependencies.adapters import get_adapters
from podpublisher.infrastructure.posts_repo import ScheduledPostsRepository
from podpublisher.integrations.errors import ProviderHTTPError
from podpublisher.main import app
from podpublisher.models.scheduled_post import utcnow

CRON_PATHS = [
    "/api/jobs/publish-scheduled",
    "/api/cron/dispatch-scheduled-posts",
    "/api/cron/email-dispatch",
]


def test_unconfigured_secret_is_a_server_error(api, monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)
    for path in CRON_PATHS:
        r = api.post(path, headers={"x-cron-secret": "anything"})
        assert r.status_code == 500


def test_missing_or_wrong_secret_is_rejected(api, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    for path in CRON_PATHS:
        assert api.post(path).status_code == 401
        assert api.post(path, headers={"x-cron-secret": "nope"}).status_code == 401


def test_dispatch_with_nothing_due_returns_zero_counters(api, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    for path in CRON_PATHS:
        r = api.post(path, headers={"x-cron-secret": "s3cret"})
        assert r.status_code == 200
        assert r.json() == {"ok": True, "processed": 0, "failed": 0, "manual": 0, "retried": 0, "skipped": False}


def test_dispatch_reports_counters(api, monkeypatch, seed_account, seed_post, fake_adapter, user_id):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    adapters = {
        "linkedin": fake_adapter("linkedin"),
        "twitter": fake_adapter("twitter", [ProviderHTTPError("twitter", 503, "down")]),
        "gmail": fake_adapter("gmail"),
    }
    app.dependency_overrides[get_adapters] = lambda: adapters

    async def seed():
        async with api.db.session() as session:
            for provider in adapters:
                await seed_account(session, user_id, provider)
            due = utcnow() - timedelta(minutes=1)
            await seed_post(session, user_id, "linkedin", scheduled_at=due)
            await seed_post(session, user_id, "twitter", scheduled_at=due)
            await seed_post(session, user_id, "email", "gmail", scheduled_at=due, meta={"subscriberEmail": "a@b.co"})

    api.portal.call(seed)

    email = api.post("/api/cron/email-dispatch", headers={"x-cron-secret": "s3cret"}).json()
    assert (email["processed"], email["retried"]) == (1, 0)

    general = api.post("/api/jobs/publish-scheduled", headers={"x-cron-secret": "s3cret"}).json()
    assert general == {"ok": True, "processed": 1, "failed": 0, "manual": 0, "retried": 1, "skipped": False}


def test_unreadable_due_list_is_a_server_error(api, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    async def broken_fetch(self, *args, **kwargs):
        raise OperationalError("SELECT scheduled_posts", {}, Exception("database is unreachable"))

    monkeypatch.setattr(ScheduledPostsRepository, "fetch_due", broken_fetch)
    r = api.post("/api/cron/dispatch-scheduled-posts", headers={"x-cron-secret": "s3cret"})
    assert r.status_code == 500
