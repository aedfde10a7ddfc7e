"""In-memory GitHub credential holder"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional

from ..error_handling import AuthenticationError
from ..logging_config import sanitize_token

logger = logging.getLogger(__name__)

TOKEN_TYPES = {
    "ghp_": "personal_access_token",
    "github_pat_": "fine_grained_personal_access_token",
    "gho_": "oauth_token",
    "ghu_": "user_access_token",
    "ghs_": "server_to_server_token",
    "ghr_": "refresh_token",
}

MIN_TOKEN_LENGTH = 10


def detect_token_type(token: str) -> str:
    for prefix, token_type in TOKEN_TYPES.items():
        if token.startswith(prefix):
            return token_type
    return "unknown"


def validate_token_format(token: str) -> str:
    """Check a candidate token and return it stripped.

    Raises:
        AuthenticationError: if the token is empty or implausibly short.
    """
    token = (token or "").strip()
    if not token:
        raise AuthenticationError("Token cannot be empty")
    if len(token) < MIN_TOKEN_LENGTH:
        raise AuthenticationError("Token appears to be too short")
    if detect_token_type(token) == "unknown" and not token.isalnum():
        logger.warning("⚠️ Token has no recognized prefix and contains non-alphanumeric characters")
    return token


@dataclass(frozen=True)
class Credential:
    """A bearer token. ``valid`` stays None until a call succeeds with it."""

    value: str
    valid: Optional[bool] = None

    @property
    def token_type(self) -> str:
        return detect_token_type(self.value)

    def __repr__(self) -> str:
        return f"Credential({sanitize_token(self.value)!r}, valid={self.valid})"

    __str__ = __repr__


class CredentialHolder:
    """Sole owner of the process-wide credential.

    Credentials are immutable; replacing one swaps a single reference under a
    lock, so concurrent readers see either the old or the new credential.
    """

    def __init__(self, token: Optional[str] = None):
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        if token:
            self.set(token)

    def get(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    def set(self, token: str) -> Credential:
        credential = Credential(validate_token_format(token))
        with self._lock:
            self._credential = credential
        logger.debug(f"Credential set ({credential.token_type})")
        return credential

    def record_validity(self, credential: Credential, valid: bool) -> Credential:
        """Record whether the remote accepted a call made with ``credential``.

        A no-op if the credential was replaced in the meantime.
        """
        with self._lock:
            current = self._credential
            if current is None or current.value != credential.value:
                return credential
            if current.valid is not valid:
                self._credential = replace(current, valid=valid)
            return self._credential

    def clear(self) -> None:
        with self._lock:
            self._credential = None
        logger.debug("Credential cleared")

    @property
    def is_authenticated(self) -> bool:
        return self.get() is not None
