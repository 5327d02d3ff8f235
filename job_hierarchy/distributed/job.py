"""
Job nodes backed by Redis.

A Job is a handle on one unit of submitted work. Nothing is cached in the
handle except the tree root (immutable once established); every read goes
to Redis, so many workers can share the same tree.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple
import json
import logging

from ..core.config import DuplicateChildPolicy
from ..core.errors import (
    CycleDetectedError,
    DuplicateChildError,
    JobNotFoundError,
    NotificationDeliveryError,
    StructuralAnomalyError,
)
from ..core.notifications import NotificationBus, StatusUpdate, Topic
from ..core.status import JobStatus, aggregate_status
from .redis_backend import RedisHierarchyBackend, decode, decode_all

logger = logging.getLogger(__name__)

# Job hash fields owned by the tracker; everything else is caller metadata
PARENT_FIELD = "parent"
STATUS_FIELD = "status"
RESERVED_FIELDS = frozenset((PARENT_FIELD, STATUS_FIELD))


def _load_field(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        # Not written by this library (plain text from another client)
        return raw


@dataclass
class JobRecord:
    """Typed view of a stored job hash."""
    jid: str
    parent: Optional[str] = None
    status: Optional[JobStatus] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def to_hash(self) -> Dict[str, str]:
        data = {key: json.dumps(value) for key, value in self.metadata.items()}
        if self.parent is not None:
            data[PARENT_FIELD] = self.parent
        if self.status is not None:
            data[STATUS_FIELD] = self.status.value
        return data

    @classmethod
    def from_hash(cls, jid: str, data: Mapping[Any, Any]) -> "JobRecord":
        fields = {decode(k): decode(v) for k, v in data.items()}
        parent = fields.pop(PARENT_FIELD, None)
        status = JobStatus.parse(fields.pop(STATUS_FIELD, None))
        metadata = {key: _load_field(raw) for key, raw in fields.items()}
        return cls(jid=jid, parent=parent, status=status, metadata=metadata)


class Job:
    """
    A node in a job hierarchy.

    Example:
        root = await Job.create("root-jid", backend, {"class": "ReportWorker"})
        child = await Job.create("child-jid", backend)
        await root.add_child(child)

        await child.run()
        await child.complete()
        assert await child.root() == root
        assert await root.leaves() == [child]
    """

    def __init__(
        self,
        jid: str,
        backend: RedisHierarchyBackend,
        bus: Optional[NotificationBus] = None,
    ):
        self.jid = jid
        self.backend = backend
        self.bus = bus
        self._root: Optional["Job"] = None

    @classmethod
    def find(
        cls,
        jid: str,
        backend: RedisHierarchyBackend,
        bus: Optional[NotificationBus] = None,
    ) -> "Job":
        """Handle on an existing job; does not touch Redis."""
        return cls(jid, backend, bus)

    @classmethod
    async def create(
        cls,
        jid: str,
        backend: RedisHierarchyBackend,
        metadata: Optional[Mapping[str, Any]] = None,
        bus: Optional[NotificationBus] = None,
    ) -> "Job":
        """
        Record a newly submitted job with status queued.

        Re-creating an existing jid overwrites its status and the given
        metadata fields but keeps its parent and children.
        """
        metadata = dict(metadata or {})
        reserved = RESERVED_FIELDS.intersection(metadata)
        if reserved:
            raise ValueError(f"Metadata keys are reserved: {sorted(reserved)}")

        job = cls(jid, backend, bus)
        await job._transition(JobStatus.QUEUED, JobRecord(jid, metadata=metadata).to_hash())
        return job

    def _spawn(self, jid: str) -> "Job":
        return type(self)(jid, self.backend, self.bus)

    @property
    def key(self) -> str:
        return self.backend.job_key(self.jid)

    @property
    def children_key(self) -> str:
        return self.backend.children_key(self.jid)

    def __eq__(self, other):
        if isinstance(other, Job):
            return self.jid == other.jid
        return False

    def __hash__(self):
        return hash(self.jid)

    def __repr__(self) -> str:
        return f"Job(jid={self.jid})"

    # Record access

    async def exists(self) -> bool:
        return bool(await self.backend.client.exists(self.key))

    async def get(self, name: str) -> Any:
        """
        Value of one hash field, or None.

        Reserved fields come back as stored; metadata fields are JSON-decoded.
        """
        value = decode(await self.backend.client.hget(self.key, name))
        if value is None or name in RESERVED_FIELDS:
            return value
        return _load_field(value)

    async def set(self, name: str, value: Any) -> Any:
        """
        Write one hash field and refresh the record's expiry atomically.

        Metadata values are JSON-encoded, so they read back with their type.
        """
        stored = value if name in RESERVED_FIELDS else json.dumps(value)
        pipe = self.backend.pipeline()
        pipe.hset(self.key, name, stored)
        pipe.expire(self.key, self.backend.job_ttl)
        await pipe.execute()
        return value

    async def record(self) -> JobRecord:
        data = await self.backend.client.hgetall(self.key)
        if not data:
            raise JobNotFoundError(self.jid)
        return JobRecord.from_hash(self.jid, data)

    async def metadata(self) -> Dict[str, Any]:
        return (await self.record()).metadata

    # Tree exploration and manipulation

    async def parent(self) -> Optional["Job"]:
        parent_jid = await self.get(PARENT_FIELD)
        if parent_jid is None:
            return None
        parent = self._spawn(parent_jid)
        if not await parent.exists():
            raise JobNotFoundError(
                parent_jid, f"Parent {parent_jid} of job {self.jid} not found"
            )
        return parent

    async def _child_jids(self) -> List[str]:
        return decode_all(await self.backend.client.lrange(self.children_key, 0, -1))

    async def children(self) -> List["Job"]:
        """Child jobs in insertion order; every listed child must exist."""
        jids = await self._child_jids()
        if not jids:
            return []

        pipe = self.backend.pipeline(transaction=False)
        for jid in jids:
            pipe.exists(self.backend.job_key(jid))
        found = await pipe.execute()

        missing = [jid for jid, ok in zip(jids, found) if not ok]
        if missing:
            raise StructuralAnomalyError(
                f"Job {self.jid} lists children with no record: {', '.join(missing)}"
            )
        return [self._spawn(jid) for jid in jids]

    async def is_root(self) -> bool:
        return await self.get(PARENT_FIELD) is None

    async def is_leaf(self) -> bool:
        return await self.backend.client.llen(self.children_key) == 0

    async def root(self) -> "Job":
        """
        Walk up to the root of this job's tree.

        Cached on the handle: a tree's root never changes once drawn.
        """
        if self._root is not None:
            return self._root

        path = [self.jid]
        seen = {self.jid}
        node = self
        while True:
            parent = await node.parent()
            if parent is None:
                break
            if parent.jid in seen:
                raise CycleDetectedError(parent.jid, path)
            path.append(parent.jid)
            seen.add(parent.jid)
            node = parent

        self._root = node
        return node

    async def walk(self, strict: bool = True) -> List[Tuple["Job", List["Job"]]]:
        """
        Depth-first, pre-order walk of the subtree rooted here.

        Returns (job, children) pairs. Repeated entries in a children list
        are visited once. With strict=False, dangling children and nodes
        reached twice are skipped instead of raising.
        """
        result: List[Tuple[Job, List[Job]]] = []
        visited: Set[str] = set()
        stack: List[Tuple[Job, Tuple[str, ...]]] = [(self, ())]

        while stack:
            node, path = stack.pop()
            if node.jid in visited:
                if not strict:
                    continue
                if node.jid in path:
                    raise CycleDetectedError(node.jid, list(path))
                raise StructuralAnomalyError(
                    f"Job {node.jid} is reachable through more than one parent"
                )
            visited.add(node.jid)

            if strict:
                children = await node.children()
            else:
                children = [self._spawn(jid) for jid in await node._child_jids()]
            children = list(dict.fromkeys(children))
            result.append((node, children))

            child_path = path + (node.jid,)
            for child in reversed(children):
                stack.append((child, child_path))

        return result

    async def leaves(self) -> List["Job"]:
        """Leaf jobs under this one, depth-first; a childless job is its own leaf."""
        return [node for node, children in await self.walk() if not children]

    async def add_child(self, child: "Job") -> bool:
        """
        Draw a parent/child edge (both sides written in one MULTI batch).

        Call once per child. What a repeated call does depends on the
        configured DuplicateChildPolicy; returns False when it was ignored.

        Attaching a job that already has a status publishes WORKFLOW_UPDATE
        if it changes the aggregate status of this job's workflow.
        """
        if child.jid == self.jid:
            raise CycleDetectedError(child.jid, [self.jid])

        current_parent = await child.get(PARENT_FIELD)
        if current_parent is not None and current_parent != self.jid:
            raise StructuralAnomalyError(
                f"Job {child.jid} already has parent {current_parent}; "
                f"cannot add it under {self.jid}"
            )
        if current_parent is None and not await child.is_leaf():
            # An existing subtree: make sure we are not hanging our own root under us
            if (await self.root()).jid == child.jid:
                raise CycleDetectedError(child.jid, [self.jid])

        policy = self.backend.config.duplicate_child_policy
        if current_parent == self.jid and policy is not DuplicateChildPolicy.ALLOW:
            if child.jid in await self._child_jids():
                if policy is DuplicateChildPolicy.ERROR:
                    raise DuplicateChildError(self.jid, child.jid)
                logger.debug(f"Ignoring repeated add_child({child.jid}) on {self.jid}")
                return False

        # A child without a status is announced by its create() instead
        workflow = None
        if (
            self.bus is not None
            and self.bus.has_subscribers(Topic.WORKFLOW_UPDATE)
            and await child.status() is not None
        ):
            workflow = await self.workflow()
            before = await workflow.status()

        ttl = self.backend.job_ttl
        pipe = self.backend.pipeline()
        # child -> parent
        pipe.hset(child.key, PARENT_FIELD, self.jid)
        pipe.expire(child.key, ttl)
        # parent -> child
        pipe.rpush(self.children_key, child.jid)
        pipe.expire(self.children_key, ttl)
        await pipe.execute()

        # The child may have cached itself as a root before being attached
        child._root = self._root
        logger.debug(f"Added child {child.jid} to job {self.jid}")

        if workflow is not None:
            after = await workflow.status()
            if after != before:
                await self.bus.publish(
                    Topic.WORKFLOW_UPDATE, StatusUpdate(workflow.jid, after, before)
                )
        return True

    async def workflow(self):
        from .workflow import Workflow
        return await Workflow.find(self)

    # Status get/set

    async def status(self) -> Optional[JobStatus]:
        return JobStatus.parse(await self.get(STATUS_FIELD))

    async def _transition(
        self,
        status: JobStatus,
        extra_fields: Optional[Dict[str, str]] = None,
    ) -> Optional[JobStatus]:
        """
        Write a new status and notify subscribers.

        The previous status is read in the same MULTI batch as the write.
        Notifications go out only after the write has committed; a failing
        subscriber is reported after every notification was attempted.
        """
        fields = dict(extra_fields or {})
        fields[STATUS_FIELD] = status.value

        pipe = self.backend.pipeline()
        pipe.hget(self.key, STATUS_FIELD)
        pipe.hset(self.key, mapping=fields)
        pipe.expire(self.key, self.backend.job_ttl)
        previous_raw, _, _ = await pipe.execute()
        previous = JobStatus.parse(decode(previous_raw))

        logger.debug(
            f"Job {self.jid}: {previous.value if previous else None} -> {status.value}"
        )

        if self.bus is not None:
            await self._notify(status, previous)
        return previous

    async def _notify(self, status: JobStatus, previous: Optional[JobStatus]) -> None:
        errors: List[NotificationDeliveryError] = []

        try:
            await self.bus.publish(Topic.JOB_UPDATE, StatusUpdate(self.jid, status, previous))
        except NotificationDeliveryError as e:
            errors.append(e)

        if self.bus.has_subscribers(Topic.WORKFLOW_UPDATE):
            workflow = await self.workflow()
            statuses = await workflow.job_statuses()
            new_status = aggregate_status(s for _, s in statuses)
            if previous is None:
                # A new node: the workflow did not include it before
                old_status = aggregate_status(s for job, s in statuses if job != self)
            else:
                old_status = aggregate_status(
                    previous if job == self else s for job, s in statuses
                )
            if new_status != old_status:
                try:
                    await self.bus.publish(
                        Topic.WORKFLOW_UPDATE,
                        StatusUpdate(workflow.jid, new_status, old_status),
                    )
                except NotificationDeliveryError as e:
                    errors.append(e)

        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise NotificationDeliveryError(
                ",".join(e.topic for e in errors),
                [failure for e in errors for failure in e.failures],
            )

    async def enqueue(self) -> Optional[JobStatus]:
        """Status update: mark as queued (step 1)."""
        return await self._transition(JobStatus.QUEUED)

    async def is_enqueued(self) -> bool:
        return await self.status() is JobStatus.QUEUED

    async def run(self) -> Optional[JobStatus]:
        """Status update: mark as running (step 2)."""
        return await self._transition(JobStatus.RUNNING)

    async def is_running(self) -> bool:
        return await self.status() is JobStatus.RUNNING

    async def complete(self) -> Optional[JobStatus]:
        """Status update: mark as complete (step 3)."""
        return await self._transition(JobStatus.COMPLETE)

    async def is_complete(self) -> bool:
        return await self.status() is JobStatus.COMPLETE

    async def requeue(self) -> Optional[JobStatus]:
        """Status update: back in the queue for a retry."""
        return await self._transition(JobStatus.REQUEUED)

    async def is_requeued(self) -> bool:
        return await self.status() is JobStatus.REQUEUED

    async def fail(self) -> Optional[JobStatus]:
        """Status update: given up on by the job-processing system."""
        return await self._transition(JobStatus.FAILED)

    async def is_failed(self) -> bool:
        return await self.status() is JobStatus.FAILED
