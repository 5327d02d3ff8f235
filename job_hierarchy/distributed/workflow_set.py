"""
Sorted sets of workflows, one per status category.

Each set is a Redis sorted set of root jids scored by the time the workflow
entered it, so iteration runs newest first:

- RunningSet  - in-flight workflows (queued or running); never pruned
- CompleteSet - finished workflows; pruned by age and count
- FailedSet   - failed workflows; pruned by age and count
"""

from typing import AsyncIterator, List, Optional, Union
import logging
import time

from ..core.errors import WorkflowStillExistsError
from ..core.status import JobStatus, WorkflowStatus
from .redis_backend import RedisHierarchyBackend, decode, decode_all
from .workflow import Workflow

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETE = "complete"
FAILED = "failed"
CATEGORIES = (RUNNING, COMPLETE, FAILED)

# Statuses that are tracked in the running set
_IN_FLIGHT = {"queued", "running", "requeued"}


class WorkflowSet:
    """
    A sorted set of workflows that permits enumeration.

    Example:
        running = RunningSet(backend)
        await running.add(workflow)

        async for workflow in running:
            print(workflow.jid, await workflow.status())
    """

    def __init__(
        self,
        status: str,
        backend: RedisHierarchyBackend,
        page_size: Optional[int] = None,
    ):
        if not status:
            raise ValueError("status cannot be empty")
        self.status = status
        self.backend = backend
        self.page_size = page_size or backend.config.page_size

    @staticmethod
    def for_status(
        status: Union[WorkflowStatus, JobStatus, str],
        backend: RedisHierarchyBackend,
    ) -> "WorkflowSet":
        """The set that holds workflows with the given status."""
        name = status.value if isinstance(status, (WorkflowStatus, JobStatus)) else str(status)
        if name in _IN_FLIGHT:
            return RunningSet(backend)
        if name == COMPLETE:
            return CompleteSet(backend)
        if name == FAILED:
            return FailedSet(backend)
        raise ValueError(f"No workflow set for status {status!r}")

    @property
    def key(self) -> str:
        return self.backend.set_key(self.status)

    def __eq__(self, other):
        if isinstance(other, WorkflowSet):
            return self.key == other.key
        return False

    def __hash__(self):
        return hash(self.key)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status})"

    async def size(self) -> int:
        return await self.backend.client.zcard(self.key)

    async def add(self, workflow: Workflow) -> float:
        """Insert (or refresh) a workflow; returns its new score."""
        score = time.time()
        await self.backend.client.zadd(self.key, {workflow.jid: score})
        return score

    async def contains(self, workflow: Workflow) -> bool:
        return await self.backend.client.zscore(self.key, workflow.jid) is not None

    async def remove(self, workflow: Workflow) -> bool:
        """
        Remove a workflow from the set.

        Only allowed as cleanup of a workflow that has already been deleted;
        removing a live workflow would lose track of it.
        """
        if await workflow.exists():
            raise WorkflowStillExistsError(workflow.jid)
        return bool(await self.backend.client.zrem(self.key, workflow.jid))

    async def locate(self, workflow: Workflow) -> Optional["WorkflowSet"]:
        """The other status set currently holding this workflow, if any."""
        others = [
            WorkflowSet.for_status(name, self.backend)
            for name in CATEGORIES
            if name != self.status
        ]
        pipe = self.backend.pipeline(transaction=False)
        for other in others:
            pipe.zscore(other.key, workflow.jid)
        scores = await pipe.execute()
        for other, score in zip(others, scores):
            if score is not None:
                return other
        return None

    async def move(
        self,
        workflow: Workflow,
        from_set: Optional["WorkflowSet"] = None,
    ) -> None:
        """
        Move a workflow to this set from its current one.

        The removal and the insertion run in one MULTI batch, but when
        `from_set` is not given the current set is looked up beforehand.
        Two concurrent moves of the same workflow can therefore leave it in
        more than one set; a Lua script doing lookup+move server-side would
        close that window.
        """
        if from_set is None:
            from_set = await self.locate(workflow)

        pipe = self.backend.pipeline()
        if from_set is not None and from_set != self:
            pipe.zrem(from_set.key, workflow.jid)
        pipe.zadd(self.key, {workflow.jid: time.time()})
        await pipe.execute()
        logger.debug(f"Moved workflow {workflow.jid} from {from_set} to {self}")

    async def each(self) -> AsyncIterator[Workflow]:
        """
        Iterate newest first, one page at a time.

        The cursor is the last score seen, so entries added or removed while
        iterating may be skipped or repeated at page boundaries.
        """
        max_score: Union[str, float] = "+inf"
        while True:
            elements = await self.backend.client.zrevrangebyscore(
                self.key, max_score, "-inf",
                start=0, num=self.page_size, withscores=True,
            )
            if not elements:
                break
            for jid, _ in elements:
                yield Workflow.find_by_jid(decode(jid), self.backend)
            max_score = f"({elements[-1][1]!r}"

    def __aiter__(self) -> AsyncIterator[Workflow]:
        return self.each()


class PruningSet(WorkflowSet):
    """
    A WorkflowSet that prunes itself by age and size before every insertion.

    Pruned workflows are deleted from Redis entirely. Do _not_ use for
    workflows that cannot be lost (in progress, or needing follow-up).
    """

    def __init__(
        self,
        status: str,
        backend: RedisHierarchyBackend,
        max_workflows: Optional[int] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
    ):
        super().__init__(status, backend, page_size)
        if max_workflows is None:
            max_workflows = backend.config.dead_max_workflows
        if timeout is None:
            timeout = backend.config.dead_timeout_seconds
        self.max_workflows = max_workflows
        self.timeout = timeout
        if self.max_workflows < 1:
            raise ValueError("max_workflows must be at least 1")

    async def add(self, workflow: Workflow) -> float:
        await self.prune(reserve=0 if await self.contains(workflow) else 1)
        return await super().add(workflow)

    async def move(
        self,
        workflow: Workflow,
        from_set: Optional[WorkflowSet] = None,
    ) -> None:
        await self.prune(reserve=0 if await self.contains(workflow) else 1)
        await super().move(workflow, from_set)

    async def prune(self, reserve: int = 0) -> List[str]:
        """
        Evict entries older than `timeout`, then the oldest entries beyond
        `max_workflows - reserve`, deleting each evicted workflow.

        Age and count are applied in two separate MULTI batches. Returns
        the evicted jids.
        """
        cutoff = time.time() - self.timeout

        pipe = self.backend.pipeline()
        pipe.zrangebyscore(self.key, "-inf", cutoff)
        pipe.zremrangebyscore(self.key, "-inf", cutoff)
        old_jids, _ = await pipe.execute()

        keep = max(self.max_workflows - reserve, 0)
        pipe = self.backend.pipeline()
        pipe.zrange(self.key, 0, -keep - 1)
        pipe.zremrangebyrank(self.key, 0, -keep - 1)
        excess_jids, _ = await pipe.execute()

        evicted = decode_all(old_jids) + decode_all(excess_jids)
        if evicted:
            logger.warning(
                f"Pruning {len(evicted)} workflow(s) from {self.status} set "
                f"({len(old_jids)} expired, {len(excess_jids)} over limit)"
            )
        for jid in evicted:
            await Workflow.find_by_jid(jid, self.backend).delete()
        return evicted


class RunningSet(WorkflowSet):
    def __init__(self, backend: RedisHierarchyBackend, page_size: Optional[int] = None):
        super().__init__(RUNNING, backend, page_size)


class CompleteSet(PruningSet):
    def __init__(
        self,
        backend: RedisHierarchyBackend,
        max_workflows: Optional[int] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
    ):
        super().__init__(COMPLETE, backend, max_workflows, timeout, page_size)


class FailedSet(PruningSet):
    def __init__(
        self,
        backend: RedisHierarchyBackend,
        max_workflows: Optional[int] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
    ):
        super().__init__(FAILED, backend, max_workflows, timeout, page_size)
