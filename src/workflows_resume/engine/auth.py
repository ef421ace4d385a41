"""Credential checks for resume triggers.

API resume accepts an API key (x-api-key) or a session token. Webhook
resume compares the x-sim-secret header against the secret configured on
the wait block. All comparisons are constant time.

With no API keys and no session tokens configured the authenticator runs
open (local/stdio use) and treats every caller as a session.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Iterable
from typing import Literal

from .exceptions import ResumeUnauthorizedError

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "x-sim-secret"
API_KEY_HEADER = "x-api-key"

AuthKind = Literal["api", "session"]


def hash_webhook_secret(secret: str) -> str:
    """Digest stored with a synchronous wait instead of the secret itself."""
    return hashlib.sha256(secret.encode()).hexdigest()


def _matches(presented: str, candidates: Iterable[str]) -> bool:
    matched = False
    for candidate in candidates:
        # No early exit: every candidate is compared
        matched |= hmac.compare_digest(presented.encode(), candidate.encode())
    return matched


class ResumeAuthenticator:
    """
    Validates resume credentials.

    Usage:
        auth = ResumeAuthenticator(api_keys=["k1"], session_tokens=["s1"])
        kind = auth.authenticate(api_key=request.headers.get("x-api-key"))
    """

    def __init__(
        self,
        api_keys: Iterable[str] | None = None,
        session_tokens: Iterable[str] | None = None,
    ):
        self.api_keys = [k for k in (api_keys or []) if k]
        self.session_tokens = [t for t in (session_tokens or []) if t]

    @property
    def is_open(self) -> bool:
        return not self.api_keys and not self.session_tokens

    def authenticate(
        self, api_key: str | None = None, session_token: str | None = None
    ) -> AuthKind:
        """
        Identify the caller of an API resume.

        An API key, when presented, must be valid: it never falls back to the
        session check.

        Raises:
            ResumeUnauthorizedError: No valid credential
        """
        if api_key:
            if self.is_open or _matches(api_key, self.api_keys):
                return "api"
            logger.warning("Resume rejected: invalid API key")
            raise ResumeUnauthorizedError("Unauthorized")

        if self.is_open:
            return "session"
        if session_token and _matches(session_token, self.session_tokens):
            return "session"

        logger.warning("Resume rejected: no valid API key or session")
        raise ResumeUnauthorizedError("Unauthorized")

    @staticmethod
    def verify_webhook_secret(expected: str | None, presented: str | None) -> None:
        """
        Check the webhook secret header.

        Nothing to check when the wait block configured no secret.

        Raises:
            ResumeUnauthorizedError: Header missing or not matching
        """
        if not expected:
            return
        if not presented:
            raise ResumeUnauthorizedError("Unauthorized - Missing authentication")
        if not hmac.compare_digest(presented.encode(), expected.encode()):
            raise ResumeUnauthorizedError("Unauthorized - Invalid secret")

    @staticmethod
    def verify_webhook_secret_hash(expected_hash: str | None, presented: str | None) -> None:
        """Same check as verify_webhook_secret, against a hash_webhook_secret digest."""
        ResumeAuthenticator.verify_webhook_secret(
            expected_hash, hash_webhook_secret(presented) if presented else None
        )


__all__ = [
    "API_KEY_HEADER",
    "AuthKind",
    "ResumeAuthenticator",
    "WEBHOOK_SECRET_HEADER",
    "hash_webhook_secret",
]
