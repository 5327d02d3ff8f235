# Redis-backed job hierarchy

from .redis_backend import RedisHierarchyBackend
from .job import Job, JobRecord
from .workflow import Workflow
from .workflow_set import (
    WorkflowSet,
    PruningSet,
    RunningSet,
    CompleteSet,
    FailedSet,
)
from .observers import WorkflowUpdateObserver
from .tracker import HierarchyTracker

__all__ = [
    "RedisHierarchyBackend",
    "Job",
    "JobRecord",
    "Workflow",
    "WorkflowSet",
    "PruningSet",
    "RunningSet",
    "CompleteSet",
    "FailedSet",
    "WorkflowUpdateObserver",
    "HierarchyTracker",
]
