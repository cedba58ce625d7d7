# stockwatch/services/throttle.py

"""Per-target throttle lock with pluggable, best-effort backends.

A lock is a ``SET key 1 NX EX ttl`` that is never released explicitly;
its TTL bounds how long a stalled run keeps other runs of the same
target away.  This is cooperative mutual exclusion, not a fenced
distributed lock.
"""

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import redis
from curl_cffi import requests as curl_requests

from stockwatch.config.settings import Settings

logger = logging.getLogger("stockwatch.throttle")

_KEY_PREFIX = "lock:"


class LockBackendError(Exception):
    """The lock backend is unreachable or misconfigured."""


class LockBackend(ABC):
    """Atomic set-if-absent with expiry."""

    name: str = "backend"

    @abstractmethod
    async def try_set_if_absent(self, key: str, ttl: int) -> bool:
        """Return ``True`` if the key was free and is now held."""
        ...

    async def ping(self) -> bool:
        """Reachability probe used by the health check."""
        return True


class MemoryLockBackend(LockBackend):
    """In-process backend; only excludes tasks within one process."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    async def try_set_if_absent(self, key: str, ttl: int) -> bool:
        now = self._clock()
        with self._lock:
            self._purge(now)
            expires = self._expiry.get(key)
            if expires is not None and expires > now:
                return False
            self._expiry[key] = now + ttl
            return True

    def _purge(self, now: float) -> None:
        for stale in [k for k, exp in self._expiry.items() if exp <= now]:
            del self._expiry[stale]


class RedisLockBackend(LockBackend):
    """Lock backend over a Redis server (``REDIS_URL``)."""

    name = "redis"

    def __init__(self, url: str, client: Any = None) -> None:
        self.client = client or redis.Redis.from_url(
            url, socket_timeout=5, decode_responses=True,
        )

    async def try_set_if_absent(self, key: str, ttl: int) -> bool:
        try:
            acquired = await asyncio.to_thread(
                self.client.set, _KEY_PREFIX + key, "1", nx=True, ex=ttl,
            )
        except redis.RedisError as exc:
            raise LockBackendError(str(exc)) from exc
        return bool(acquired)

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self.client.ping))
        except redis.RedisError:
            return False


class UpstashLockBackend(LockBackend):
    """Lock backend over the Upstash Redis REST API."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        session: curl_requests.Session | None = None,
        timeout: int = 5,
    ) -> None:
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or curl_requests.Session()

    def _call(self, path: str) -> Any:
        resp = self.session.get(
            f"{self.url}/{path}",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise LockBackendError(f"Upstash HTTP {resp.status_code}")
        return resp.json().get("result")

    async def try_set_if_absent(self, key: str, ttl: int) -> bool:
        path = f"set/{quote(_KEY_PREFIX + key, safe='')}/1?EX={ttl}&NX=1"
        try:
            result = await asyncio.to_thread(self._call, path)
        except LockBackendError:
            raise
        except Exception as exc:
            raise LockBackendError(str(exc)) from exc
        return result == "OK"

    async def ping(self) -> bool:
        try:
            return await asyncio.to_thread(self._call, "ping") == "PONG"
        except Exception as exc:
            logger.debug("Upstash ping failed: %s", exc)
            return False


def build_lock_backend(settings: Settings | None = None) -> LockBackend | None:
    """Pick a backend from ``LOCK_BACKEND`` or whichever credentials exist.

    Returns ``None`` when nothing is configured, which the throttle
    treats like an unreachable backend.
    """
    cfg = settings or Settings()
    kind = cfg.LOCK_BACKEND
    if not kind:
        if cfg.UPSTASH_REDIS_REST_URL and cfg.UPSTASH_REDIS_REST_TOKEN:
            kind = "upstash"
        elif cfg.REDIS_URL:
            kind = "redis"
        else:
            return None

    if kind == "memory":
        return MemoryLockBackend()
    if kind == "redis" and cfg.REDIS_URL:
        return RedisLockBackend(cfg.REDIS_URL)
    if (
        kind == "upstash"
        and cfg.UPSTASH_REDIS_REST_URL
        and cfg.UPSTASH_REDIS_REST_TOKEN
    ):
        return UpstashLockBackend(
            cfg.UPSTASH_REDIS_REST_URL, cfg.UPSTASH_REDIS_REST_TOKEN,
        )
    logger.warning("Lock backend '%s' is not fully configured", kind)
    return None


class ThrottleLock:
    """Run an action only if this process wins the lock for *key*.

    With ``fail_open`` (the default) a missing or failing backend never
    blocks monitoring; the action runs unguarded.  With it off, the
    action is skipped until the backend is back.
    """

    def __init__(
        self,
        backend: LockBackend | None,
        fail_open: bool = Settings.THROTTLE_FAIL_OPEN,
    ) -> None:
        self.backend = backend
        self.fail_open = fail_open
        self._warned_unguarded = False

    async def acquire(self, key: str, ttl: int) -> bool:
        if self.backend is None:
            if not self.fail_open:
                logger.warning("No lock backend, skipping %s", key)
            elif not self._warned_unguarded:
                logger.warning(
                    "No lock backend configured, targets run unguarded"
                )
                self._warned_unguarded = True
            return self.fail_open
        try:
            return await self.backend.try_set_if_absent(key, ttl)
        except LockBackendError as exc:
            if self.fail_open:
                logger.warning(
                    "Lock backend %s failed for %s, running unguarded: %s",
                    self.backend.name, key, exc,
                )
            else:
                logger.error(
                    "Lock backend %s failed for %s, skipping: %s",
                    self.backend.name, key, exc,
                )
            return self.fail_open

    async def with_throttle(
        self,
        key: str,
        ttl: int,
        action: Callable[[], Awaitable[None]],
    ) -> bool:
        """Run *action* if the lock is acquired; return whether it ran.

        Exceptions raised by *action* propagate to the caller.
        """
        if not await self.acquire(key, ttl):
            logger.debug("Lock %s held elsewhere, skipping", key)
            return False
        await action()
        return True
