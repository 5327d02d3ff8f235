"""
Hierarchy tracker: the entry point for a job-processing system.

Wires together:
- Redis backend (job records, children lists, workflow sets)
- Notification bus for status transitions
- Observer keeping workflow sets in sync with workflow status

A process may run several trackers side by side (e.g. one per Redis
database); each has its own bus.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Union
import logging

from ..core.config import HierarchyConfig
from ..core.errors import NotificationDeliveryError
from ..core.notifications import NotificationBus
from ..core.status import JobStatus, WorkflowStatus
from .job import Job
from .observers import WorkflowUpdateObserver
from .redis_backend import RedisHierarchyBackend
from .workflow import Workflow
from .workflow_set import CompleteSet, FailedSet, RunningSet, WorkflowSet

logger = logging.getLogger(__name__)


class HierarchyTracker:
    """
    Tracks parent/child job trees and their status in Redis.

    Example:
        tracker = HierarchyTracker(HierarchyConfig(redis_url="redis://localhost:6379/0"))
        await tracker.connect()

        # When a job is submitted (parent_jid for jobs enqueued by other jobs)
        await tracker.submit("child-jid", parent_jid="root-jid", metadata={"class": "Resize"})

        # In the worker executing it
        async with tracker.track("child-jid"):
            await do_the_work()

        async for workflow in tracker.failed_set:
            print(workflow.jid)
    """

    def __init__(
        self,
        config: Optional[HierarchyConfig] = None,
        client: Optional[Any] = None,
        bus: Optional[NotificationBus] = None,
    ):
        self.config = config or HierarchyConfig()
        self.backend = RedisHierarchyBackend(self.config, client=client)
        self.bus = bus or NotificationBus()
        self.observer = WorkflowUpdateObserver(self.backend)
        self._registered = False

    async def connect(self) -> None:
        """Connect to Redis and start syncing workflow sets."""
        await self.backend.connect()
        if not self._registered:
            self.observer.register(self.bus)
            self._registered = True
        logger.info(f"Hierarchy tracker connected (prefix={self.config.prefix})")

    async def disconnect(self) -> None:
        if self._registered:
            self.observer.unregister(self.bus)
            self._registered = False
        await self.backend.disconnect()
        logger.info("Hierarchy tracker disconnected")

    async def __aenter__(self) -> "HierarchyTracker":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # Lookups

    def find_job(self, jid: str) -> Job:
        return Job.find(jid, self.backend, self.bus)

    def find_workflow(self, jid: str) -> Workflow:
        return Workflow.find_by_jid(jid, self.backend, self.bus)

    def workflow_set(self, status: Union[WorkflowStatus, JobStatus, str]) -> WorkflowSet:
        return WorkflowSet.for_status(status, self.backend)

    @property
    def running_set(self) -> RunningSet:
        return RunningSet(self.backend)

    @property
    def complete_set(self) -> CompleteSet:
        return CompleteSet(self.backend)

    @property
    def failed_set(self) -> FailedSet:
        return FailedSet(self.backend)

    # Job-processing system hooks

    async def submit(
        self,
        jid: str,
        parent_jid: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Job:
        """
        Record a job at submission time.

        Jobs enqueued by another job are attached under it; a job with no
        parent starts a new workflow, which goes into the running set.
        """
        if parent_jid is not None:
            # Edge first, so the status notification sees the whole tree
            await self.find_job(parent_jid).add_child(self.find_job(jid))
        job = await Job.create(jid, self.backend, metadata, bus=self.bus)

        if parent_jid is None:
            await self.running_set.add(Workflow(job))
            logger.info(f"Started workflow {jid}")
        else:
            logger.debug(f"Submitted job {jid} under {parent_jid}")
        return job

    @asynccontextmanager
    async def track(self, jid: str, requeue_on_error: bool = False) -> AsyncIterator[Job]:
        """
        Mark a job running for the duration of the block.

        Completes the job on a clean exit. On an exception the job is failed
        (or requeued, for a job that will be retried) and the exception
        re-raised. Subscriber failures are logged rather than interrupting
        the job.
        """
        job = self.find_job(jid)
        await self._transition(job.run)
        try:
            yield job
        except Exception:
            await self._transition(job.requeue if requeue_on_error else job.fail)
            raise
        else:
            await self._transition(job.complete)

    async def _transition(self, transition) -> None:
        try:
            await transition()
        except NotificationDeliveryError as e:
            logger.error(f"Status notification failed: {e}")
