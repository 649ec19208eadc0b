import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from podpublisher.integrations.errors import (
    AuthExpiredError,
    MalformedPostError,
    ManualActionRequired,
    ProviderError,
    ProviderHTTPError,
    TransientProviderError,
)
from podpublisher.models.scheduled_post import iso_z
from podpublisher.services.retry_policy import (
    FailureKind,
    MAX_RETRIES,
    classify,
    is_waiting_for_retry,
    next_retry_delay,
    parse_retry_at,
)


@pytest.mark.parametrize("status_code", [408, 429, 500, 502, 503])
def test_retryable_status_codes_are_transient(status_code):
    assert classify(ProviderHTTPError("x", status_code, "")) == FailureKind.TRANSIENT


@pytest.mark.parametrize("status_code", [401, 403])
def test_rejected_credentials_are_auth_failures(status_code):
    assert classify(ProviderHTTPError("x", status_code, "")) == FailureKind.AUTH


def test_client_errors_are_unknown():
    assert classify(ProviderHTTPError("x", 400, "bad request")) == FailureKind.UNKNOWN
    assert classify(ProviderError("x", "weird")) == FailureKind.UNKNOWN
    assert classify(RuntimeError("boom")) == FailureKind.UNKNOWN


def test_named_failures_keep_their_kind():
    assert classify(ManualActionRequired("kit", "m", manual_action_url="u")) == FailureKind.MANUAL
    assert classify(AuthExpiredError("x", "gone")) == FailureKind.AUTH
    assert classify(MalformedPostError("x", "no audience")) == FailureKind.MALFORMED
    assert classify(TransientProviderError("x", "reset")) == FailureKind.TRANSIENT
    assert classify(asyncio.TimeoutError()) == FailureKind.TRANSIENT
    assert classify(httpx.ConnectError("refused")) == FailureKind.TRANSIENT


def test_delay_table_by_previous_retry_count():
    assert next_retry_delay(0) == timedelta(minutes=5)
    assert next_retry_delay(1) == timedelta(minutes=15)
    assert next_retry_delay(2) == timedelta(minutes=60)
    assert next_retry_delay(3) == timedelta(minutes=360)


def test_retries_exhausted_at_max():
    assert MAX_RETRIES == 4
    assert next_retry_delay(4) is None
    assert next_retry_delay(9) is None


def test_negative_retry_count_treated_as_first_attempt():
    assert next_retry_delay(-2) == timedelta(minutes=5)


def test_parse_retry_at_accepts_js_iso_strings():
    assert parse_retry_at("2026-03-01T10:00:00.000Z") == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_retry_at("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_retry_at("not a date") is None
    assert parse_retry_at(None) is None


def test_is_waiting_for_retry():
    now = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert is_waiting_for_retry({"nextRetryAt": "2026-03-01T10:05:00Z"}, now)
    assert not is_waiting_for_retry({"nextRetryAt": "2026-03-01T10:00:00Z"}, now)
    assert not is_waiting_for_retry({"nextRetryAt": "2026-03-01T09:55:00Z"}, now)
    assert not is_waiting_for_retry({}, now)
    assert not is_waiting_for_retry(None, now)


def test_naive_now_is_read_as_utc():
    assert is_waiting_for_retry({"nextRetryAt": "2026-03-01T10:05:00Z"}, datetime(2026, 3, 1, 10, 0))


def test_iso_z_uses_z_suffix():
    at = datetime(2026, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert iso_z(at) == "2026-03-01T10:00:00.123Z"
    assert parse_retry_at(iso_z(at)) == datetime(2026, 3, 1, 10, 0, 0, 123000, tzinfo=timezone.utc)
