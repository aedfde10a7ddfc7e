"""Configuration module for the GitHub MCP Server.

Configuration is an immutable Pydantic model read once at startup and injected
into the API client and dispatcher. Invalid values are a fatal startup error,
never a runtime one.

Environment variable binding:
    ```bash
    export GITHUB_API_URL=https://api.github.com
    export REQUEST_TIMEOUT=30
    export MAX_RETRIES=3
    export RATE_LIMIT_BUFFER=10
    export MAX_RATE_LIMIT_WAIT=60
    export LOG_LEVEL=INFO
    ```

Usage examples:
    >>> from github_mcp_server.configuration import ServerConfig, load_config_from_env
    >>>
    >>> config = load_config_from_env()
    >>> config.request_timeout
    30.0
    >>>
    >>> # Tests build configuration directly
    >>> config = ServerConfig(max_retries=0, request_timeout=1)
"""

import os
from typing import Literal, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..error_handling import ConfigurationError

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "github-mcp-server/0.1.0"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# environment variable -> ServerConfig field
ENV_BINDINGS = {
    "GITHUB_API_URL": "github_api_url",
    "REQUEST_TIMEOUT": "request_timeout",
    "MAX_RETRIES": "max_retries",
    "RATE_LIMIT_BUFFER": "rate_limit_buffer",
    "MAX_RATE_LIMIT_WAIT": "max_rate_limit_wait",
    "LOG_LEVEL": "log_level",
    "USER_AGENT": "user_agent",
}


class ServerConfig(BaseModel):
    """Immutable server configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    github_api_url: str = DEFAULT_API_URL
    request_timeout: float = Field(default=30.0, gt=0, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)
    rate_limit_buffer: int = Field(default=10, ge=0, le=50)
    max_rate_limit_wait: float = Field(default=60.0, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_cap: float = Field(default=30.0, ge=0)
    log_level: LogLevel = "INFO"
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)

    @field_validator("github_api_url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not a well-formed http(s) URL: {value!r}")
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def is_github_enterprise(self) -> bool:
        return self.github_api_url != DEFAULT_API_URL


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Build a ServerConfig from environment variables.

    Raises:
        ConfigurationError: if any value is missing its expected shape.
    """
    environ = os.environ if environ is None else environ
    values = {
        field: environ[name]
        for name, field in ENV_BINDINGS.items()
        if environ.get(name, "").strip()
    }
    try:
        return ServerConfig.model_validate(values)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"Invalid configuration for {field}: {first['msg']}") from e


__all__ = [
    "DEFAULT_API_URL",
    "ServerConfig",
    "load_config_from_env",
]
