"""Park-scoped locks serializing the canonicalizer's read-decide-write step."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterator, Protocol

import redis

from ingestion.db.models import Park
from ingestion.settings import Settings
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class ParkLocks(Protocol):
    def hold(self, park: Park) -> ContextManager[None]: ...  # noqa: D401


class InMemoryParkLocks:
    """One ``threading.Lock`` per park; valid within a single process."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, park: Park) -> threading.Lock:
        key = Park(park).value
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, park: Park) -> Iterator[None]:
        lock = self._lock_for(park)
        with lock:
            yield


class _RedisLikeClient(Protocol):
    def lock(self, name: str, timeout: float | None = None, blocking_timeout: float | None = None): ...  # noqa: ANN201


class RedisParkLocks:
    """Redis lease lock per park, shared across worker processes.

    The lease (``timeout``) bounds how long a crashed holder can block others;
    ``blocking_timeout`` bounds how long a waiter queues before giving up with
    ``redis.exceptions.LockError``.
    """

    def __init__(
        self,
        client: _RedisLikeClient,
        *,
        prefix: str = "park-lock",
        timeout_seconds: int = 60,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._timeout = timeout_seconds

    def _format(self, park: Park) -> str:
        return f"{self._prefix}:{Park(park).value}"

    @contextmanager
    def hold(self, park: Park) -> Iterator[None]:
        lock = self._client.lock(self._format(park), timeout=self._timeout, blocking_timeout=self._timeout)
        with lock:
            yield


def build_park_locks(settings: Settings) -> InMemoryParkLocks | RedisParkLocks:
    """Prefer Redis locks; fall back to process-local locks when Redis is unreachable."""
    client = redis.Redis.from_url(settings.redis_url, socket_connect_timeout=0.2)
    try:
        client.ping()
    except redis.exceptions.RedisError:
        logger.info("park_locks.memory", extra={"reason": "redis_ping_failed"})
        return InMemoryParkLocks()
    logger.info("park_locks.redis", extra={"redis_url": settings.redis_url})
    return RedisParkLocks(client, timeout_seconds=int(settings.park_lock_timeout_seconds))
