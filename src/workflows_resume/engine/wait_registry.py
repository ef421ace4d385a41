"""
Wait registry: cross-process rendezvous between a blocked waiter and a resume signal.

A request that wants to hold its execution open (a synchronous webhook
wait) registers a WaitInfo and blocks on a per-execution mailbox. Another
request, possibly served by another process, delivers the wake-up payload
with resume_execution().

Semantics shared by both backends:
- Registration lives for the wait window (default 180 s) and is removed on
  wake or timeout.
- resume_execution() is a push into a mailbox, not a call to a live
  listener: once the waiter has registered, a payload delivered before the
  waiter starts blocking is still picked up.
- Exactly one resume per registration: the resume that removes the
  registration wins, a second one returns False.
- wait_for_resume() returns None on timeout; it never raises for it.

Keys (Redis):
    execution:wait:{executionId}[:{blockId}]     WaitInfo JSON, TTL = wait window
    execution:resume:{executionId}[:{blockId}]   mailbox list, TTL = 60 s

RedisWaitRegistry is the multi-instance backend. InMemoryWaitRegistry has
the same semantics within one process only; create_wait_registry() falls
back to it when no Redis URL is configured or Redis is unreachable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

WAIT_TIMEOUT_SECONDS = 180.0
MAILBOX_TTL_SECONDS = 60


@dataclass
class WaitInfo:
    """Registration of a blocked waiter."""

    workflow_id: str
    execution_id: str
    block_id: str | None
    paused_at: str
    resume_url: str | None = None
    trigger_type: str = "webhook"
    secret_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "workflowId": data["workflow_id"],
            "executionId": data["execution_id"],
            "blockId": data["block_id"],
            "pausedAt": data["paused_at"],
            "resumeUrl": data["resume_url"],
            "triggerType": data["trigger_type"],
            "secretHash": data["secret_hash"],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WaitInfo:
        return cls(
            workflow_id=data["workflowId"],
            execution_id=data["executionId"],
            block_id=data.get("blockId"),
            paused_at=data["pausedAt"],
            resume_url=data.get("resumeUrl"),
            trigger_type=data.get("triggerType", "webhook"),
            secret_hash=data.get("secretHash"),
        )


def wait_key(execution_id: str, block_id: str | None = None) -> str:
    return f"execution:wait:{execution_id}:{block_id}" if block_id else f"execution:wait:{execution_id}"


def resume_key(execution_id: str, block_id: str | None = None) -> str:
    return (
        f"execution:resume:{execution_id}:{block_id}"
        if block_id
        else f"execution:resume:{execution_id}"
    )


class WaitRegistry(ABC):
    """Abstract wait registry."""

    def __init__(self, timeout: float = WAIT_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    @abstractmethod
    async def register(self, info: WaitInfo) -> None:
        """Register a waiter so resume signals for it are accepted."""

    @abstractmethod
    async def wait_for_resume(
        self, info: WaitInfo, timeout: float | None = None
    ) -> dict[str, Any] | None:
        """Register (if needed) and block until resumed. None on timeout."""

    @abstractmethod
    async def resume_execution(
        self, execution_id: str, resume_data: dict[str, Any], block_id: str | None = None
    ) -> bool:
        """Deliver a wake-up payload. False if no registered waiter."""

    @abstractmethod
    async def get_wait_info(self, execution_id: str, block_id: str | None = None) -> WaitInfo | None:
        """Registration of a waiter, if one is currently blocked."""

    async def cancel_wait(self, execution_id: str, block_id: str | None = None) -> bool:
        """Wake a waiter with a cancellation payload."""
        return await self.resume_execution(execution_id, {"cancelled": True}, block_id)

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class InMemoryWaitRegistry(WaitRegistry):
    """Single-process wait registry.

    Registrations and mailboxes live in this process; a resume delivered to
    another server instance is not seen here.
    """

    def __init__(self, timeout: float = WAIT_TIMEOUT_SECONDS) -> None:
        super().__init__(timeout)
        self._waits: dict[str, tuple[WaitInfo, float]] = {}
        self._mailboxes: dict[str, asyncio.Queue[dict[str, Any]]] = {}

    def _mailbox(self, key: str) -> asyncio.Queue[dict[str, Any]]:
        return self._mailboxes.setdefault(key, asyncio.Queue())

    def _live_info(self, key: str) -> WaitInfo | None:
        entry = self._waits.get(key)
        if entry is None:
            return None
        info, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._waits[key]
            return None
        return info

    async def register(self, info: WaitInfo) -> None:
        key = wait_key(info.execution_id, info.block_id)
        self._waits[key] = (info, time.monotonic() + self.timeout)
        self._mailbox(resume_key(info.execution_id, info.block_id))
        logger.debug(f"Registered in-memory waiter {key}")

    async def wait_for_resume(
        self, info: WaitInfo, timeout: float | None = None
    ) -> dict[str, Any] | None:
        key = wait_key(info.execution_id, info.block_id)
        mailbox_key = resume_key(info.execution_id, info.block_id)
        if self._live_info(key) is None:
            await self.register(info)
        mailbox = self._mailbox(mailbox_key)

        try:
            resume_data = await asyncio.wait_for(mailbox.get(), timeout=timeout or self.timeout)
        except TimeoutError:
            if self._waits.pop(key, None) is not None:
                logger.info(f"Wait timed out for {key}")
                return None
            # A resume claimed the registration at the deadline; its payload is queued
            return mailbox.get_nowait() if not mailbox.empty() else None
        else:
            self._waits.pop(key, None)
            return resume_data
        finally:
            if mailbox.empty():
                self._mailboxes.pop(mailbox_key, None)

    async def resume_execution(
        self, execution_id: str, resume_data: dict[str, Any], block_id: str | None = None
    ) -> bool:
        key = wait_key(execution_id, block_id)
        if self._live_info(key) is None:
            logger.warning(f"No waiter registered for {key}")
            return False
        del self._waits[key]
        self._mailbox(resume_key(execution_id, block_id)).put_nowait(resume_data)
        logger.info(f"Delivered resume signal to {key}")
        return True

    async def get_wait_info(self, execution_id: str, block_id: str | None = None) -> WaitInfo | None:
        return self._live_info(wait_key(execution_id, block_id))


class RedisWaitRegistry(WaitRegistry):
    """Redis-backed wait registry shared by every server instance.

    Registration is SETEX'd JSON; the mailbox is a list (RPUSH by the
    resumer, BLPOP by the waiter). Deleting the registration key is the
    claim: DEL returns 1 to exactly one resumer.
    """

    def __init__(self, client: aioredis.Redis, timeout: float = WAIT_TIMEOUT_SECONDS) -> None:
        super().__init__(timeout)
        self._client = client

    async def register(self, info: WaitInfo) -> None:
        key = wait_key(info.execution_id, info.block_id)
        await self._client.setex(key, int(self.timeout), json.dumps(info.to_dict()))
        logger.debug(f"Registered Redis waiter {key}")

    async def wait_for_resume(
        self, info: WaitInfo, timeout: float | None = None
    ) -> dict[str, Any] | None:
        key = wait_key(info.execution_id, info.block_id)
        mailbox_key = resume_key(info.execution_id, info.block_id)
        if not await self._client.exists(key):
            await self.register(info)

        popped = await self._client.blpop([mailbox_key], timeout=timeout or self.timeout)
        if popped is not None:
            await self._client.delete(key)
            return json.loads(popped[1])

        if await self._client.delete(key):
            logger.info(f"Wait timed out for {key}")
            return None
        # Registration was claimed by a resumer right at the deadline
        late = await self._client.lpop(mailbox_key)
        return json.loads(late) if late is not None else None

    async def resume_execution(
        self, execution_id: str, resume_data: dict[str, Any], block_id: str | None = None
    ) -> bool:
        key = wait_key(execution_id, block_id)
        if not await self._client.delete(key):
            logger.warning(f"No waiter registered for {key}")
            return False

        mailbox_key = resume_key(execution_id, block_id)
        await self._client.rpush(mailbox_key, json.dumps(resume_data, default=str))
        await self._client.expire(mailbox_key, MAILBOX_TTL_SECONDS)
        logger.info(f"Delivered resume signal to {key}")
        return True

    async def get_wait_info(self, execution_id: str, block_id: str | None = None) -> WaitInfo | None:
        raw = await self._client.get(wait_key(execution_id, block_id))
        return WaitInfo.from_dict(json.loads(raw)) if raw else None

    async def close(self) -> None:
        await self._client.aclose()


async def create_wait_registry(
    redis_url: str | None, timeout: float = WAIT_TIMEOUT_SECONDS
) -> WaitRegistry:
    """Build the Redis registry, or the in-memory one when Redis is not usable.

    Falling back trades multi-instance correctness for availability: waits
    still work, but only for resumes that reach this same process.
    """
    if not redis_url:
        logger.info("WORKFLOWS_REDIS_URL not set, using in-memory wait registry")
        return InMemoryWaitRegistry(timeout)

    client = aioredis.from_url(redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable at {redis_url} ({e}), using in-memory wait registry")
        await client.aclose()
        return InMemoryWaitRegistry(timeout)

    logger.info(f"Using Redis wait registry at {redis_url}")
    return RedisWaitRegistry(client, timeout)


__all__ = [
    "InMemoryWaitRegistry",
    "RedisWaitRegistry",
    "WAIT_TIMEOUT_SECONDS",
    "WaitInfo",
    "WaitRegistry",
    "create_wait_registry",
    "resume_key",
    "wait_key",
]
