"""
Redis backend for the hierarchy tracker.

Owns the Redis connection and the key layout shared by jobs, workflows and
workflow sets:

- {prefix}:job:{jid}           hash  - job record (parent, status, metadata)
- {prefix}:job:{jid}:children  list  - child jids in insertion order
- {prefix}:set:{status}        zset  - workflow jids scored by timestamp
"""

from typing import Any, Iterable, List, Optional, Union
import logging

import redis.asyncio as redis

from ..core.config import HierarchyConfig

logger = logging.getLogger(__name__)


def decode(value: Union[str, bytes, None]) -> Optional[str]:
    """Normalize a Redis reply to str (clients may or may not decode)."""
    if isinstance(value, bytes):
        return value.decode()
    return value


def decode_all(values: Iterable[Union[str, bytes]]) -> List[str]:
    return [decode(v) for v in values]


class RedisHierarchyBackend:
    """
    Redis connection and key naming for job hierarchies.

    Example:
        backend = RedisHierarchyBackend(HierarchyConfig(redis_url="redis://localhost:6379/0"))
        await backend.connect()

        job = Job.find("jid-123", backend)
        print(await job.status())

    An already-built client (e.g. a shared pool, or a fake in tests) can be
    passed in with `client=`; connect() then only pings it.
    """

    def __init__(
        self,
        config: Optional[HierarchyConfig] = None,
        client: Optional[Any] = None,
    ):
        self.config = config or HierarchyConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def prefix(self) -> str:
        return self.config.prefix

    @property
    def job_ttl(self) -> int:
        return self.config.job_ttl

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise RuntimeError("Hierarchy backend not connected. Call connect() first.")
        return self._client

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(self.config.redis_url)
            self._owns_client = True
        await self._client.ping()
        logger.info(f"Hierarchy backend connected to Redis at {self.config.redis_url}")

    async def disconnect(self) -> None:
        """Disconnect from Redis (only closes clients this backend created)."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        logger.info("Hierarchy backend disconnected")

    def pipeline(self, transaction: bool = True):
        """A MULTI/EXEC batch when transaction is True, plain pipelining otherwise."""
        return self.client.pipeline(transaction=transaction)

    # Key layout

    def job_key(self, jid: str) -> str:
        return f"{self.prefix}:job:{jid}"

    def children_key(self, jid: str) -> str:
        return f"{self.job_key(jid)}:children"

    def set_key(self, status: str) -> str:
        return f"{self.prefix}:set:{status}"
