"""Resilient GitHub API client.

``GitHubClient.execute`` turns one ``CallSpec`` into a decoded response or a
typed ``GitHubMcpError``. Every attempt is classified into a ``CallOutcome``
and fed through an explicit, bounded retry loop:

* ``Transient`` (5xx) and ``NetworkFailure`` are retried with exponential
  backoff, but only for idempotent calls.
* ``RateLimited`` is retried once the reset time has passed, idempotent or
  not, since the remote did not process the request.
* ``Fatal`` is never retried.
"""

import asyncio
import json
import logging
import math
import random
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union
from urllib.parse import quote, urlencode

import aiohttp

from ..configuration import ServerConfig
from ..error_handling import (
    AuthenticationError,
    ConflictError,
    GitHubApiError,
    GitHubMcpError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RetryPolicy,
    TransientError,
    ValidationError,
)
from .auth import Credential, CredentialHolder

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_RATE_LIMIT_WINDOW = 60.0
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class CallSpec:
    """One intended remote call. Immutable once constructed."""

    method: str
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    idempotent: Optional[bool] = None
    requires_auth: bool = True
    credential: Optional[Credential] = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.idempotent is None:
            object.__setattr__(self, "idempotent", self.method in SAFE_METHODS)

    def query_string(self) -> str:
        items = []
        for key, value in self.params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            items.append((key, str(value)))
        return urlencode(items, quote_via=quote)

    def url(self, base_url: str) -> str:
        url = f"{base_url.rstrip('/')}/{self.path.lstrip('/')}"
        query = self.query_string()
        return f"{url}?{query}" if query else url


@dataclass(frozen=True)
class Success:
    status: int
    headers: Mapping[str, str]
    body: Any
    kind = "success"


@dataclass(frozen=True)
class RateLimited:
    reset_at: float
    status: int
    kind = "rate_limited"


@dataclass(frozen=True)
class Transient:
    status: int
    body: Any = None
    kind = "transient"


@dataclass(frozen=True)
class Fatal:
    status: int
    body: Any = None
    kind = "fatal"


@dataclass(frozen=True)
class NetworkFailure:
    reason: str
    kind = "network_failure"
    status = None


CallOutcome = Union[Success, RateLimited, Transient, Fatal, NetworkFailure]


@dataclass(frozen=True)
class ApiResponse:
    """Decoded body of a successful call."""

    status: int
    headers: Mapping[str, str]
    data: Any


def decode_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def error_message(body: Any, default: str) -> str:
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return default


def _header_number(headers: Mapping[str, str], name: str) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GitHubClient:
    """GitHub API client with authentication, rate limiting and retries."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        credentials: CredentialHolder,
        config: Optional[ServerConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.credentials = credentials
        self.config = config or ServerConfig()
        self.policy = RetryPolicy(
            max_retries=self.config.max_retries,
            backoff_base=self.config.backoff_base,
            backoff_cap=self.config.backoff_cap,
            max_rate_limit_wait=self.config.max_rate_limit_wait,
            rng=rng,
        )
        self._timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self._sleep = sleep
        self._clock = clock

    async def execute(self, spec: CallSpec) -> ApiResponse:
        """Execute ``spec`` with retries.

        Raises:
            GitHubMcpError: the typed classification of the terminal outcome.
        """
        credential = spec.credential or self.credentials.get()
        if spec.requires_auth and credential is None:
            raise AuthenticationError(
                "Not authenticated. Call github_auth with a personal access token first."
            )

        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            outcome = await self._attempt(spec, credential)

            if isinstance(outcome, Success):
                self._log_attempt(spec, attempt, outcome, started)
                self._record_validity(spec, credential, True)
                return ApiResponse(outcome.status, outcome.headers, outcome.body)

            delay: Optional[float] = None
            if isinstance(outcome, Fatal):
                if outcome.status == 401:
                    self._record_validity(spec, credential, False)
                error = self.fatal_error(outcome)
            elif isinstance(outcome, RateLimited):
                delay = self.policy.rate_limit_delay(outcome.reset_at, self._clock())
                if delay is None or not self.policy.can_retry(attempt):
                    delay, error = None, self._rate_limit_error(outcome, attempt)
                elif delay <= 0:
                    # reset already passed; the quota may not have rolled over yet
                    delay = self.policy.get_retry_delay(attempt)
            elif spec.idempotent and self.policy.can_retry(attempt):
                delay = self.policy.get_retry_delay(attempt)
            else:
                error = self._terminal_error(outcome, attempt)

            self._log_attempt(spec, attempt, outcome, started, retry_in=delay)
            if delay is None:
                raise error
            await self._sleep(delay)

    async def _attempt(self, spec: CallSpec, credential: Optional[Credential]) -> CallOutcome:
        try:
            async with self.session.request(
                spec.method,
                spec.url(self.config.github_api_url),
                headers=self._headers(credential),
                json=spec.body,
                timeout=self._timeout,
            ) as response:
                raw = await response.read()
                status = response.status
                headers = {k.lower(): v for k, v in response.headers.items()}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return NetworkFailure(reason=str(e) or type(e).__name__)
        return self.classify(status, headers, decode_body(raw))

    def _headers(self, credential: Optional[Credential]) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": self.config.user_agent,
        }
        if credential is not None:
            headers["Authorization"] = f"Bearer {credential.value}"
        return headers

    def classify(self, status: int, headers: Mapping[str, str], body: Any) -> CallOutcome:
        """Classify a raw response into a CallOutcome."""
        if 200 <= status < 300:
            if self._within_buffer(headers):
                logger.warning(
                    f"GitHub API rate limit running low: {headers.get('x-ratelimit-remaining')} "
                    f"of {headers.get('x-ratelimit-limit')} remaining"
                )
            return Success(status, headers, body)
        if status == 429:
            return RateLimited(self._reset_at(headers), status)
        if status == 403 and ("retry-after" in headers or self._quota_exhausted(headers)):
            return RateLimited(self._reset_at(headers), status)
        if status >= 500:
            return Transient(status, body)
        return Fatal(status, body)

    def _quota_exhausted(self, headers: Mapping[str, str]) -> bool:
        return _header_number(headers, "x-ratelimit-remaining") == 0

    def _within_buffer(self, headers: Mapping[str, str]) -> bool:
        remaining = _header_number(headers, "x-ratelimit-remaining")
        if remaining is None:
            return False
        limit = _header_number(headers, "x-ratelimit-limit")
        threshold = 0
        if limit:
            threshold = math.ceil(limit * self.config.rate_limit_buffer / 100)
        return remaining <= threshold

    def _reset_at(self, headers: Mapping[str, str]) -> float:
        now = self._clock()
        retry_after = _header_number(headers, "retry-after")
        if retry_after is not None:
            return now + retry_after
        reset = _header_number(headers, "x-ratelimit-reset")
        if reset is not None:
            return reset
        return now + DEFAULT_RATE_LIMIT_WINDOW

    def fatal_error(self, outcome: Fatal) -> GitHubMcpError:
        status = outcome.status
        message = error_message(outcome.body, f"GitHub API error {status}")
        detail = {"status": status}
        if status == 401:
            return AuthenticationError(f"Invalid or expired token: {message}", detail)
        if status == 403:
            return PermissionDeniedError(f"Access denied: {message}", detail)
        if status in (404, 410):
            return NotFoundError(f"Not found: {message}", detail)
        if status == 409:
            return ConflictError(message, detail)
        if status in (400, 422):
            field_name = None
            if isinstance(outcome.body, dict):
                errors = outcome.body.get("errors") or []
                if errors and isinstance(errors[0], dict):
                    field_name = errors[0].get("field")
            return ValidationError(f"GitHub rejected the request: {message}", field=field_name)
        return GitHubApiError(f"GitHub API error {status}: {message}", detail)

    def _rate_limit_error(self, outcome: RateLimited, attempt: int) -> RateLimitError:
        retry_after = max(0.0, outcome.reset_at - self._clock())
        return RateLimitError(
            f"Rate limit exceeded after {attempt} attempt(s). Retry after {retry_after:.0f} seconds",
            reset_at=outcome.reset_at,
            retry_after=retry_after,
        )

    def _terminal_error(self, outcome: CallOutcome, attempt: int) -> GitHubMcpError:
        if isinstance(outcome, Transient):
            message = error_message(outcome.body, "server error")
            return TransientError(
                f"GitHub API server error {outcome.status} after {attempt} attempt(s): {message}",
                {"status": outcome.status, "attempts": attempt},
            )
        return NetworkError(
            f"Network failure after {attempt} attempt(s): {outcome.reason}",
            {"attempts": attempt},
        )

    def _record_validity(self, spec: CallSpec, credential: Optional[Credential], valid: bool) -> None:
        # override credentials are candidates, not the held one
        if credential is not None and spec.credential is None:
            self.credentials.record_validity(credential, valid)

    def _log_attempt(
        self,
        spec: CallSpec,
        attempt: int,
        outcome: CallOutcome,
        started: float,
        retry_in: Optional[float] = None,
    ) -> None:
        level = logging.INFO if isinstance(outcome, Success) else logging.WARNING
        message = f"{spec.method} {spec.path} attempt {attempt}/{self.policy.max_attempts}: {outcome.kind}"
        if retry_in is not None:
            message += f", retrying in {retry_in:.2f}s"
        logger.log(
            level,
            message,
            extra={
                "method": spec.method,
                "path": spec.path,
                "attempt": attempt,
                "outcome": outcome.kind,
                "status": outcome.status,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
                "retry_in": None if retry_in is None else round(retry_in, 3),
            },
        )
