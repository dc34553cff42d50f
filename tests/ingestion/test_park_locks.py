from __future__ import annotations

import threading
from contextlib import contextmanager

import redis

from ingestion.db.models import Park
from ingestion.services import park_locks as locks_mod
from ingestion.services.park_locks import InMemoryParkLocks, RedisParkLocks, build_park_locks
from ingestion.settings import Settings


class FakeRedis:
    def __init__(self) -> None:
        self.requested: list[tuple[str, float | None, float | None]] = []
        self.events: list[str] = []

    def lock(self, name: str, timeout: float | None = None, blocking_timeout: float | None = None):
        self.requested.append((name, timeout, blocking_timeout))
        events = self.events

        @contextmanager
        def _held():
            events.append(f"acquire:{name}")
            try:
                yield
            finally:
                events.append(f"release:{name}")

        return _held()


def _settings() -> Settings:
    return Settings(
        redis_url="redis://localhost:6379/0",
        postgres_dsn="sqlite:///./var/test.db",
        park_lock_timeout_seconds=30,
    )


def test_redis_locks_use_one_key_per_park():
    client = FakeRedis()
    locks = RedisParkLocks(client, timeout_seconds=30)

    with locks.hold(Park.UNIVERSAL):
        client.events.append("work")

    assert client.requested == [("park-lock:universal", 30, 30)]
    assert client.events == ["acquire:park-lock:universal", "work", "release:park-lock:universal"]


def test_memory_locks_serialize_same_park():
    locks = InMemoryParkLocks()
    order: list[str] = []
    entered = threading.Event()
    proceed = threading.Event()

    def first() -> None:
        with locks.hold(Park.DISNEY):
            order.append("first-in")
            entered.set()
            proceed.wait(timeout=5)
            order.append("first-out")

    def second() -> None:
        entered.wait(timeout=5)
        with locks.hold(Park.DISNEY):
            order.append("second-in")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(timeout=5)
    # a different park is not blocked
    with locks.hold(Park.SEAWORLD):
        order.append("seaworld")
    proceed.set()
    t1.join(timeout=5)
    t2.join(timeout=5)

    assert order.index("first-out") < order.index("second-in")
    assert order.index("seaworld") < order.index("first-out")


def test_build_park_locks_falls_back_to_memory(monkeypatch):
    class Unreachable:
        def ping(self):
            raise redis.exceptions.ConnectionError("refused")

    monkeypatch.setattr(locks_mod.redis.Redis, "from_url", classmethod(lambda cls, *a, **kw: Unreachable()))

    assert isinstance(build_park_locks(_settings()), InMemoryParkLocks)


def test_build_park_locks_prefers_redis(monkeypatch):
    class Reachable(FakeRedis):
        def ping(self):
            return True

    monkeypatch.setattr(locks_mod.redis.Redis, "from_url", classmethod(lambda cls, *a, **kw: Reachable()))

    locks = build_park_locks(_settings())

    assert isinstance(locks, RedisParkLocks)
