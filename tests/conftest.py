"""Shared fixtures: an in-memory Redis stand-in and tracker wiring."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from job_hierarchy.core.config import HierarchyConfig
from job_hierarchy.core.notifications import NotificationBus
from job_hierarchy.distributed.redis_backend import RedisHierarchyBackend
from job_hierarchy.distributed.tracker import HierarchyTracker


def _redis_slice(items: list, start: int, stop: int) -> list:
    """Inclusive Redis-style index range with negative indexes."""
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if stop < 0:
        stop = n + stop
    if start > stop or start >= n:
        return []
    return items[start:stop + 1]


def _parse_bound(bound: Any) -> tuple[float, bool]:
    """Parse a ZRANGEBYSCORE bound into (value, exclusive)."""
    if isinstance(bound, (int, float)):
        return float(bound), False
    text = str(bound)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    return float(text), exclusive


def _in_range(score: float, low: Any, high: Any) -> bool:
    low_value, low_excl = _parse_bound(low)
    high_value, high_excl = _parse_bound(high)
    above = score > low_value if low_excl else score >= low_value
    below = score < high_value if high_excl else score <= high_value
    return above and below


class FakePipeline:
    """Queues commands and applies them in order on execute()."""

    def __init__(self, client: FakeRedis, transaction: bool) -> None:
        self.client = client
        self.transaction = transaction
        self._commands: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        # Fail early on commands the fake does not implement
        getattr(self.client, "_" + name)

        def queue(*args: Any, **kwargs: Any) -> FakePipeline:
            self._commands.append((name, args, kwargs))
            return self

        queue.__name__ = name
        return queue

    async def execute(self) -> list[Any]:
        commands, self._commands = self._commands, []
        self.client.batches.append(
            {"transaction": self.transaction, "commands": [c[0] for c in commands]}
        )
        return [getattr(self.client, "_" + name)(*args, **kwargs) for name, args, kwargs in commands]

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._commands = []


class FakeRedis:
    """
    Very small in-memory Redis replacement.

    Implements the hash, list and sorted-set commands the tracker uses, with
    responses already decoded to str. Every command is available as an
    awaitable method and inside pipelines. Expiry is recorded, not enforced;
    use expire_now() to simulate a key expiring.
    """

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.sorted_sets: dict[str, dict[str, float]] = {}
        self.expirations: dict[str, int] = {}
        self.batches: list[dict[str, Any]] = []
        self.closed = False

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            command = object.__getattribute__(self, "_" + name)
        except AttributeError:
            raise AttributeError(name) from None

        async def call(*args: Any, **kwargs: Any) -> Any:
            return command(*args, **kwargs)

        call.__name__ = name
        return call

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    async def aclose(self) -> None:
        self.closed = True

    def expire_now(self, key: str) -> None:
        self._delete(key)

    # Keys

    def _ping(self) -> bool:
        return True

    def _exists(self, *keys: str) -> int:
        return sum(
            1 for key in keys
            if key in self.hashes or key in self.lists or key in self.sorted_sets
        )

    def _expire(self, key: str, ttl: int) -> bool:
        if not self._exists(key):
            return False
        self.expirations[key] = ttl
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            found = False
            for store in (self.hashes, self.lists, self.sorted_sets):
                if key in store:
                    del store[key]
                    found = True
            self.expirations.pop(key, None)
            removed += int(found)
        return removed

    # Hashes

    def _hset(self, key: str, field: str | None = None, value: Any = None,
              mapping: dict[str, Any] | None = None) -> int:
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        existing = self.hashes.setdefault(key, {})
        added = 0
        for k, v in items.items():
            if k not in existing:
                added += 1
            existing[k] = str(v)
        return added

    def _hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    def _hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    # Lists

    def _rpush(self, key: str, *values: Any) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(str(v) for v in values)
        return len(items)

    def _lrange(self, key: str, start: int, stop: int) -> list[str]:
        return _redis_slice(self.lists.get(key, []), start, stop)

    def _llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    # Sorted sets

    def _sorted(self, key: str) -> list[tuple[str, float]]:
        items = self.sorted_sets.get(key, {})
        return sorted(items.items(), key=lambda item: (item[1], item[0]))

    def _cleanup(self, key: str) -> None:
        if key in self.sorted_sets and not self.sorted_sets[key]:
            del self.sorted_sets[key]

    def _zadd(self, key: str, mapping: dict[str, float]) -> int:
        zset = self.sorted_sets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        for member, score in mapping.items():
            zset[member] = float(score)
        return added

    def _zrem(self, key: str, *members: str) -> int:
        zset = self.sorted_sets.get(key, {})
        removed = 0
        for member in members:
            if member in zset:
                del zset[member]
                removed += 1
        self._cleanup(key)
        return removed

    def _zscore(self, key: str, member: str) -> float | None:
        return self.sorted_sets.get(key, {}).get(member)

    def _zcard(self, key: str) -> int:
        return len(self.sorted_sets.get(key, {}))

    def _zrange(self, key: str, start: int, stop: int) -> list[str]:
        return [member for member, _ in _redis_slice(self._sorted(key), start, stop)]

    def _zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        doomed = self._zrange(key, start, stop)
        return self._zrem(key, *doomed) if doomed else 0

    def _zrangebyscore(self, key: str, low: Any, high: Any) -> list[str]:
        return [m for m, s in self._sorted(key) if _in_range(s, low, high)]

    def _zremrangebyscore(self, key: str, low: Any, high: Any) -> int:
        doomed = self._zrangebyscore(key, low, high)
        return self._zrem(key, *doomed) if doomed else 0

    def _zrevrangebyscore(self, key: str, high: Any, low: Any, start: int | None = None,
                          num: int | None = None, withscores: bool = False) -> list[Any]:
        items = [(m, s) for m, s in reversed(self._sorted(key)) if _in_range(s, low, high)]
        if start is not None and num is not None:
            items = items[start:start + num]
        if withscores:
            return items
        return [m for m, _ in items]


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def config() -> HierarchyConfig:
    return HierarchyConfig(prefix="test", dead_max_workflows=5, dead_timeout_seconds=3600)


@pytest.fixture
def backend(config, redis_client) -> RedisHierarchyBackend:
    return RedisHierarchyBackend(config, client=redis_client)


@pytest.fixture
def bus() -> NotificationBus:
    return NotificationBus()


@pytest_asyncio.fixture
async def tracker(config, redis_client):
    tracker = HierarchyTracker(config, client=redis_client)
    await tracker.connect()
    yield tracker
    await tracker.disconnect()


@pytest.fixture
def make_tree(backend):
    """Factory: create every job in `edges` (parent -> [children]) and draw the edges."""
    from job_hierarchy.distributed.job import Job

    async def build(edges, bus=None, backend=backend):
        jobs = {}
        for parent, children in edges.items():
            for jid in [parent, *children]:
                if jid not in jobs:
                    jobs[jid] = await Job.create(jid, backend, bus=bus)
        for parent, children in edges.items():
            for child in children:
                await jobs[parent].add_child(jobs[child])
        return jobs

    return build
