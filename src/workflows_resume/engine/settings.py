"""Engine configuration read from WORKFLOWS_* environment variables.

Every getter falls back to its default on a malformed value and clamps
numbers into a sane range, so a typo in the environment never prevents
the server from starting.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return max(minimum, min(maximum, int(raw)))
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return max(minimum, min(maximum, float(raw)))
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default


def _env_list(name: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class EngineSettings:
    """
    Shared settings for the executor, wait handlers and resume triggers.

    Environment Variables:
        WORKFLOWS_BASE_URL: Base for approve/resume URLs (default: http://localhost:3000)
        WORKFLOWS_REDIS_URL: Redis URL for the wait registry (unset: in-memory)
        WORKFLOWS_WAIT_TIMEOUT: Synchronous wait window in seconds (default: 180)
        WORKFLOWS_MAX_SLEEP_SECONDS: Cap for time-based waits (default: 300)
        WORKFLOWS_MAX_RECURSION_DEPTH: Nested workflow limit (default: 50, range 1-10000)
        WORKFLOWS_SCHEDULER_INTERVAL: Schedule tick in seconds, 0 disables (default: 5)
        WORKFLOWS_API_KEYS: Comma-separated API keys for the API resume trigger
        WORKFLOWS_SESSION_TOKENS: Comma-separated session tokens for manual resume
        WORKFLOWS_APPROVAL_CHAT_MODEL: Model for approval chat (default: gpt-4o-mini)
        WORKFLOWS_APPROVAL_CHAT_API_URL: OpenAI-compatible base URL for approval chat
    """

    base_url: str = DEFAULT_BASE_URL
    redis_url: str | None = None
    wait_timeout: float = 180.0
    max_sleep_seconds: float = 300.0
    max_recursion_depth: int = 50
    scheduler_interval: float = 5.0
    api_keys: list[str] = field(default_factory=list)
    session_tokens: list[str] = field(default_factory=list)
    approval_chat_model: str = "gpt-4o-mini"
    approval_chat_api_url: str | None = None

    # Notification webhook retries (exponential backoff)
    notification_max_retries: int = 5
    notification_initial_delay: float = 5.0
    notification_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls(
            base_url=os.getenv("WORKFLOWS_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            redis_url=os.getenv("WORKFLOWS_REDIS_URL") or None,
            wait_timeout=_env_float("WORKFLOWS_WAIT_TIMEOUT", 180.0, 1.0, 3600.0),
            max_sleep_seconds=_env_float("WORKFLOWS_MAX_SLEEP_SECONDS", 300.0, 0.0, 86400.0),
            max_recursion_depth=_env_int("WORKFLOWS_MAX_RECURSION_DEPTH", 50, 1, 10000),
            scheduler_interval=_env_float("WORKFLOWS_SCHEDULER_INTERVAL", 5.0, 0.0, 3600.0),
            api_keys=_env_list("WORKFLOWS_API_KEYS"),
            session_tokens=_env_list("WORKFLOWS_SESSION_TOKENS"),
            approval_chat_model=os.getenv("WORKFLOWS_APPROVAL_CHAT_MODEL", "gpt-4o-mini"),
            approval_chat_api_url=os.getenv("WORKFLOWS_APPROVAL_CHAT_API_URL") or None,
        )


__all__ = ["EngineSettings"]
