"""
Workflows: a job tree viewed through its root job.
"""

from typing import List, Optional, Tuple
import logging

from ..core.errors import JobNotFoundError
from ..core.notifications import NotificationBus
from ..core.status import JobStatus, WorkflowStatus, aggregate_status
from .job import STATUS_FIELD, Job
from .redis_backend import RedisHierarchyBackend, decode

logger = logging.getLogger(__name__)


class Workflow:
    """
    The root job of a tree, used as the unit of status aggregation.

    A Workflow is not a separate record; its jid is the root job's jid.
    """

    def __init__(self, job: Job):
        self.job = job

    @classmethod
    async def find(cls, job: Job) -> "Workflow":
        """Workflow containing the given job."""
        return cls(await job.root())

    @classmethod
    def find_by_jid(
        cls,
        jid: str,
        backend: RedisHierarchyBackend,
        bus: Optional[NotificationBus] = None,
    ) -> "Workflow":
        """Workflow for a known root jid; does not touch Redis."""
        return cls(Job.find(jid, backend, bus))

    @property
    def jid(self) -> str:
        return self.job.jid

    @property
    def backend(self) -> RedisHierarchyBackend:
        return self.job.backend

    def __eq__(self, other):
        if isinstance(other, Workflow):
            return self.jid == other.jid
        return False

    def __hash__(self):
        return hash(self.jid)

    def __repr__(self) -> str:
        return f"Workflow(jid={self.jid})"

    async def exists(self) -> bool:
        return await self.job.exists()

    async def jobs(self) -> List[Job]:
        """Every job in the tree, root first (depth-first order)."""
        return [node for node, _ in await self.job.walk()]

    async def job_statuses(self) -> List[Tuple[Job, Optional[JobStatus]]]:
        """Status of every job in the tree; raises JobNotFoundError if the root is gone."""
        jobs = await self.jobs()
        pipe = self.backend.pipeline(transaction=False)
        pipe.exists(self.job.key)
        for job in jobs:
            pipe.hget(job.key, STATUS_FIELD)
        root_exists, *raw = await pipe.execute()
        if not root_exists:
            raise JobNotFoundError(self.jid, f"Workflow {self.jid} not found")
        return [(job, JobStatus.parse(decode(value))) for job, value in zip(jobs, raw)]

    async def status(self) -> WorkflowStatus:
        """
        Aggregate status of the tree.

        One failed job fails the workflow; it is complete only when every
        job is complete and queued only when no job has started.
        """
        return aggregate_status(status for _, status in await self.job_statuses())

    async def workflow_set(self):
        """The status set this workflow belongs in, going by its current status."""
        from .workflow_set import WorkflowSet
        return WorkflowSet.for_status(await self.status(), self.backend)

    async def delete(self) -> int:
        """
        Delete every job record and children list in the tree.

        Jobs that already expired are skipped. Returns the number of keys removed.
        """
        keys = []
        for node, _ in await self.job.walk(strict=False):
            keys.append(node.key)
            keys.append(node.children_key)
        removed = await self.backend.client.delete(*keys)
        logger.debug(f"Deleted workflow {self.jid} ({removed} keys)")
        return removed
