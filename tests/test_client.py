"""Tests for the resilient GitHub API client."""

import asyncio
import logging

import aiohttp
import pytest

from conftest import TEST_TOKEN
from fixtures.fake_http import FakeResponse
from github_mcp_server.configuration import ServerConfig
from github_mcp_server.error_handling import (
    AuthenticationError,
    GitHubApiError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransientError,
    ValidationError,
)
from github_mcp_server.github.auth import CredentialHolder
from github_mcp_server.github.client import (
    CallSpec,
    Fatal,
    RateLimited,
    Success,
    Transient,
)


class TestCallSpec:
    """Test CallSpec construction and URL rendering."""

    def test_method_normalized_and_idempotency_defaults(self):
        assert CallSpec("get", "/user").method == "GET"
        assert CallSpec("GET", "/user").idempotent is True
        assert CallSpec("POST", "/repos/a/b/issues").idempotent is False
        assert CallSpec("PATCH", "/repos/a/b/issues/1", idempotent=True).idempotent is True

    def test_params_are_read_only(self):
        spec = CallSpec("GET", "/user/repos", params={"page": 1})
        with pytest.raises(TypeError):
            spec.params["page"] = 2

    def test_query_string_rendering(self):
        spec = CallSpec(
            "GET",
            "/repos/a/b/issues",
            params={"state": "open", "labels": ["bug", "ui"], "assignee": None, "draft": True},
        )
        assert spec.query_string() == "state=open&labels=bug%2Cui&draft=true"

    def test_url_joins_base_and_path(self):
        spec = CallSpec("GET", "/repos/a/b", params={"ref": "main"})
        assert spec.url("https://ghe.example.com/api/v3/") == "https://ghe.example.com/api/v3/repos/a/b?ref=main"
        assert CallSpec("GET", "/user").url("https://api.github.com") == "https://api.github.com/user"


class TestClassification:
    """Test mapping of raw responses onto call outcomes."""

    def test_success(self, client):
        outcome = client.classify(200, {}, {"ok": True})
        assert isinstance(outcome, Success)
        assert outcome.body == {"ok": True}

    def test_low_quota_success_is_still_success(self, client):
        headers = {"x-ratelimit-remaining": "1", "x-ratelimit-limit": "5000"}
        assert isinstance(client.classify(200, headers, []), Success)

    def test_429_is_rate_limited_with_default_window(self, client, clock):
        outcome = client.classify(429, {}, None)
        assert isinstance(outcome, RateLimited)
        assert outcome.reset_at == clock.now + 60

    def test_403_with_exhausted_quota_is_rate_limited(self, client, clock):
        headers = {
            "x-ratelimit-remaining": "0",
            "x-ratelimit-limit": "5000",
            "x-ratelimit-reset": str(int(clock.now) + 30),
        }
        outcome = client.classify(403, headers, {"message": "API rate limit exceeded"})
        assert isinstance(outcome, RateLimited)
        assert outcome.reset_at == int(clock.now) + 30

    def test_403_with_low_quota_is_fatal(self, client, clock):
        # below the 10% buffer but not exhausted: a real permission denial
        headers = {
            "x-ratelimit-remaining": "400",
            "x-ratelimit-limit": "5000",
            "x-ratelimit-reset": str(int(clock.now) + 20),
        }
        outcome = client.classify(403, headers, {"message": "Resource not accessible by integration"})
        assert isinstance(outcome, Fatal)
        assert outcome.status == 403

    def test_403_with_quota_left_is_fatal(self, client):
        headers = {"x-ratelimit-remaining": "4000", "x-ratelimit-limit": "5000"}
        assert isinstance(client.classify(403, headers, None), Fatal)

    def test_403_with_retry_after_is_rate_limited(self, client, clock):
        outcome = client.classify(403, {"retry-after": "7"}, None)
        assert isinstance(outcome, RateLimited)
        assert outcome.reset_at == clock.now + 7

    def test_5xx_is_transient(self, client):
        assert isinstance(client.classify(502, {}, None), Transient)

    def test_other_4xx_are_fatal(self, client):
        for status in (400, 401, 404, 409, 422):
            assert isinstance(client.classify(status, {}, None), Fatal)


class TestFatalErrors:
    """Test translation of fatal outcomes into typed errors."""

    def test_status_mapping(self, client):
        cases = {
            401: AuthenticationError,
            403: PermissionDeniedError,
            404: NotFoundError,
            410: NotFoundError,
            418: GitHubApiError,
        }
        for status, error_type in cases.items():
            error = client.fatal_error(Fatal(status, {"message": "nope"}))
            assert type(error) is error_type
            assert "nope" in error.message

    def test_422_reports_offending_field(self, client, github_responses):
        body = github_responses.error_response(
            "Validation Failed", [{"resource": "Issue", "field": "title", "code": "missing_field"}]
        )
        error = client.fatal_error(Fatal(422, body))
        assert isinstance(error, ValidationError)
        assert error.field == "title"


class TestRetryLoop:
    """Test the bounded retry loop against scripted responses."""

    @pytest.mark.asyncio
    async def test_rate_limited_then_success(self, client, session, clock, github_responses):
        session.queue(
            FakeResponse(429, {"message": "slow down"}, {"Retry-After": "5"}),
            FakeResponse(429, {"message": "slow down"}, {"Retry-After": "2"}),
            FakeResponse(200, github_responses.user_response()),
        )

        response = await client.execute(CallSpec("GET", "/user"))

        assert response.status == 200
        assert response.data["login"] == "testuser"
        assert len(session.calls) == 3
        assert clock.sleeps == [5.0, 2.0]
        assert sum(clock.sleeps) >= 5

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_non_idempotent_calls(self, client, session, clock):
        session.queue(
            FakeResponse(429, None, {"Retry-After": "1"}),
            FakeResponse(201, {"number": 1}),
        )
        response = await client.execute(CallSpec("POST", "/repos/a/b/issues", body={"title": "x"}))
        assert response.status == 201
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_beyond_max_wait_fails_immediately(self, client, session, clock):
        session.queue(FakeResponse(429, {"message": "slow down"}, {"Retry-After": "3600"}))

        with pytest.raises(RateLimitError) as exc_info:
            await client.execute(CallSpec("GET", "/user"))

        assert len(session.calls) == 1
        assert clock.sleeps == []
        assert exc_info.value.detail == {"reset_at": int(clock.now + 3600), "retry_after": 3600}

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_attempts(self, make_client, session, clock):
        client = make_client(ServerConfig(max_retries=1))
        session.queue(
            FakeResponse(429, None, {"Retry-After": "1"}),
            FakeResponse(429, None, {"Retry-After": "1"}),
        )
        with pytest.raises(RateLimitError):
            await client.execute(CallSpec("GET", "/user"))
        assert len(session.calls) == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_permission_denied_post_with_low_quota_not_retried(self, client, session, clock):
        headers = {
            "X-RateLimit-Remaining": "400",
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Reset": str(int(clock.now) + 20),
        }
        session.queue(FakeResponse(403, {"message": "Resource not accessible by integration"}, headers))

        with pytest.raises(PermissionDeniedError):
            await client.execute(CallSpec("POST", "/repos/a/b/issues", body={"title": "x"}))

        assert len(session.calls) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_stale_reset_falls_back_to_backoff(self, client, session, clock):
        headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(clock.now) - 30)}
        session.queue(FakeResponse(403, {"message": "API rate limit exceeded"}, headers), FakeResponse(200, {}))

        await client.execute(CallSpec("GET", "/user"))

        assert len(session.calls) == 2
        assert len(clock.sleeps) == 1
        assert 0.5 <= clock.sleeps[0] <= 1.0

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_retry_budget(self, make_client, session, clock):
        client = make_client(ServerConfig(max_retries=2))
        session.queue(*[FakeResponse(503, {"message": "unavailable"}) for _ in range(3)])

        with pytest.raises(TransientError) as exc_info:
            await client.execute(CallSpec("GET", "/repos/a/b"))

        assert len(session.calls) == 3
        assert exc_info.value.detail == {"status": 503, "attempts": 3}
        # exponential backoff with up to backoff_base of jitter
        assert len(clock.sleeps) == 2
        assert 0.5 <= clock.sleeps[0] <= 1.0
        assert 1.0 <= clock.sleeps[1] <= 1.5

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self, client, session, clock):
        session.queue(FakeResponse(500), FakeResponse(200, []))
        response = await client.execute(CallSpec("GET", "/user/repos"))
        assert response.data == []
        assert len(clock.sleeps) == 1

    @pytest.mark.asyncio
    async def test_non_idempotent_call_not_retried_on_5xx(self, client, session, clock):
        session.queue(FakeResponse(502, {"message": "bad gateway"}))

        with pytest.raises(TransientError) as exc_info:
            await client.execute(CallSpec("POST", "/repos/a/b/pulls", body={"title": "x"}))

        assert len(session.calls) == 1
        assert clock.sleeps == []
        assert exc_info.value.detail["attempts"] == 1

    @pytest.mark.asyncio
    async def test_fatal_error_single_attempt(self, client, session, clock):
        session.queue(FakeResponse(403, {"message": "Resource not accessible by integration"}))

        with pytest.raises(PermissionDeniedError):
            await client.execute(CallSpec("POST", "/repos/a/b/issues", body={"title": "x"}))

        assert len(session.calls) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_network_failure_retried(self, client, session):
        session.queue(aiohttp.ClientConnectionError("connection reset"), FakeResponse(200, {"id": 1}))
        response = await client.execute(CallSpec("GET", "/repos/a/b"))
        assert response.data == {"id": 1}
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_into_network_error(self, make_client, session):
        client = make_client(ServerConfig(max_retries=1))
        session.queue(asyncio.TimeoutError(), asyncio.TimeoutError())

        with pytest.raises(NetworkError) as exc_info:
            await client.execute(CallSpec("GET", "/repos/a/b"))

        assert exc_info.value.detail == {"attempts": 2}
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, make_client, session, clock):
        client = make_client(ServerConfig(max_retries=0))
        session.queue(FakeResponse(500))
        with pytest.raises(TransientError):
            await client.execute(CallSpec("GET", "/repos/a/b"))
        assert len(session.calls) == 1
        assert clock.sleeps == []


class TestAuthentication:
    """Test credential handling in the client."""

    @pytest.mark.asyncio
    async def test_missing_credential_fails_without_request(self, make_client, session):
        client = make_client(holder=CredentialHolder())
        with pytest.raises(AuthenticationError):
            await client.execute(CallSpec("GET", "/user"))
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_request_headers(self, client, session):
        session.queue(FakeResponse(200, {}))
        await client.execute(CallSpec("GET", "/user"))

        headers = session.calls[0].headers
        assert headers["Authorization"] == f"Bearer {TEST_TOKEN}"
        assert headers["Accept"] == "application/vnd.github+json"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert headers["User-Agent"] == "github-mcp-server/0.1.0"

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self, make_client, session):
        client = make_client(ServerConfig(request_timeout=12))
        session.queue(FakeResponse(200, {}))
        await client.execute(CallSpec("GET", "/user"))
        assert session.calls[0].timeout.total == 12

    @pytest.mark.asyncio
    async def test_success_marks_credential_valid(self, client, session, credentials):
        session.queue(FakeResponse(200, {}))
        await client.execute(CallSpec("GET", "/user"))
        assert credentials.get().valid is True

    @pytest.mark.asyncio
    async def test_401_marks_credential_invalid(self, client, session, credentials):
        session.queue(FakeResponse(401, {"message": "Bad credentials"}))
        with pytest.raises(AuthenticationError):
            await client.execute(CallSpec("GET", "/user"))
        assert credentials.get().valid is False
        assert credentials.get().value == TEST_TOKEN


class TestAttemptLogging:
    """Test per-attempt structured logging."""

    @pytest.mark.asyncio
    async def test_attempts_logged_with_context(self, client, session, caplog):
        caplog.set_level(logging.INFO, logger="github_mcp_server")
        session.queue(FakeResponse(500), FakeResponse(200, {}))

        await client.execute(CallSpec("GET", "/repos/a/b"))

        attempts = [r for r in caplog.records if getattr(r, "attempt", None) is not None]
        assert [r.outcome for r in attempts] == ["transient", "success"]
        assert [r.attempt for r in attempts] == [1, 2]
        assert attempts[0].status == 500
        assert attempts[0].method == "GET"
        assert attempts[0].path == "/repos/a/b"

    @pytest.mark.asyncio
    async def test_one_record_per_attempt(self, make_client, session, clock, caplog):
        client = make_client(ServerConfig(max_retries=1))
        caplog.set_level(logging.DEBUG, logger="github_mcp_server")
        session.queue(FakeResponse(503), FakeResponse(503))

        with pytest.raises(TransientError):
            await client.execute(CallSpec("GET", "/repos/a/b"))

        records = [r for r in caplog.records if r.name == "github_mcp_server.github.client"]
        assert [r.attempt for r in records] == [1, 2]
        assert records[0].retry_in == round(clock.sleeps[0], 3)
        assert records[1].retry_in is None

    @pytest.mark.asyncio
    async def test_token_never_logged(self, client, session, caplog):
        caplog.set_level(logging.DEBUG, logger="github_mcp_server")
        session.queue(FakeResponse(401, {"message": "Bad credentials"}))

        with pytest.raises(AuthenticationError):
            await client.execute(CallSpec("GET", "/user"))

        assert TEST_TOKEN not in caplog.text
