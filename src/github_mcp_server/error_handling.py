"""Error taxonomy and retry policy for the GitHub MCP Server.

Every failure raised below the dispatcher is one of the ``GitHubMcpError``
subclasses defined here. Each class carries a stable machine readable ``code``
and an optional structured ``detail`` payload; the dispatcher is the only
place that turns them into response envelopes.
"""

import random
from typing import Any, Dict, Optional


class GitHubMcpError(Exception):
    """Base class for all errors surfaced to tool callers."""

    code = "ApiError"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class AuthenticationError(GitHubMcpError):
    """No credential set, or the remote rejected it."""

    code = "AuthenticationError"


class ValidationError(GitHubMcpError):
    """Malformed tool input or a missing required field."""

    code = "ValidationError"

    def __init__(self, message: str, field: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message, {"field": field, "reason": reason or message})
        self.field = field


class PermissionDeniedError(GitHubMcpError):
    """The remote service denied access to the resource."""

    code = "PermissionError"


class NotFoundError(GitHubMcpError):
    code = "NotFoundError"


class RateLimitError(GitHubMcpError):
    """Rate limited and the wait could not be absorbed."""

    code = "RateLimitError"

    def __init__(self, message: str, reset_at: float, retry_after: float):
        super().__init__(
            message,
            {"reset_at": int(reset_at), "retry_after": max(0, int(round(retry_after)))},
        )
        self.reset_at = reset_at
        self.retry_after = retry_after


class ConflictError(GitHubMcpError):
    """The remote state conflicts with the request (e.g. unmergeable PR)."""

    code = "ConflictError"


class TransientError(GitHubMcpError):
    """Remote 5xx responses outlasted the retry budget."""

    code = "TransientError"


class NetworkError(GitHubMcpError):
    """Connectivity failures or timeouts outlasted the retry budget."""

    code = "NetworkError"


class UnknownToolError(GitHubMcpError):
    code = "UnknownTool"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", {"tool": name})


class GitHubApiError(GitHubMcpError):
    """Any other non-retryable remote failure."""

    code = "ApiError"


class ConfigurationError(Exception):
    """Invalid startup configuration. Fatal, never sent to callers."""


class RetryPolicy:
    """Bounded exponential backoff with jitter.

    ``max_attempts`` counts the first call, so ``max_retries=3`` allows four
    attempts in total.
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_cap: float = 30.0,
        max_rate_limit_wait: float = 60.0,
        rng: Optional[random.Random] = None,
    ):
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.max_rate_limit_wait = max_rate_limit_wait
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def can_retry(self, attempt: int) -> bool:
        """Whether another attempt may follow attempt number ``attempt``."""
        return attempt < self.max_attempts

    def get_retry_delay(self, attempt: int) -> float:
        """Delay before the attempt that follows attempt number ``attempt``."""
        delay = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_cap)
        return delay + self._rng.uniform(0, self.backoff_base)

    def rate_limit_delay(self, reset_at: float, now: float) -> Optional[float]:
        """Seconds to wait for a rate-limit reset, or None if it is too far off."""
        wait = max(0.0, reset_at - now)
        if wait > self.max_rate_limit_wait:
            return None
        return wait
