"""
Job Hierarchy
=============

Tracks parent/child trees of jobs submitted to an asynchronous job system,
and the aggregate status of each tree ("workflow"), entirely in Redis.

Quick Start
-----------

    from job_hierarchy import HierarchyConfig, HierarchyTracker

    tracker = HierarchyTracker(HierarchyConfig(redis_url="redis://localhost:6379/0"))
    await tracker.connect()

    # At submission time
    await tracker.submit("root-jid", metadata={"class": "ImportWorker"})
    await tracker.submit("child-jid", parent_jid="root-jid")

    # In the worker
    async with tracker.track("child-jid"):
        ...

    # Reading trees back
    job = tracker.find_job("child-jid")
    workflow = await job.workflow()
    print(await workflow.status())          # WorkflowStatus.RUNNING
    print(await (await job.root()).leaves())

    # Browsing workflows by status, newest first
    async for workflow in tracker.complete_set:
        print(workflow.jid)
"""

__version__ = "0.1.0"

# Core exports
from job_hierarchy.core import (
    ConfigurationError,
    CycleDetectedError,
    DuplicateChildError,
    DuplicateChildPolicy,
    HierarchyConfig,
    HierarchyError,
    JobNotFoundError,
    JobStatus,
    NotificationBus,
    NotificationDeliveryError,
    PreconditionViolationError,
    StatusUpdate,
    StructuralAnomalyError,
    Topic,
    WorkflowStatus,
    WorkflowStillExistsError,
)

# Redis-backed exports
from job_hierarchy.distributed import (
    CompleteSet,
    FailedSet,
    HierarchyTracker,
    Job,
    JobRecord,
    PruningSet,
    RedisHierarchyBackend,
    RunningSet,
    Workflow,
    WorkflowSet,
    WorkflowUpdateObserver,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "HierarchyConfig",
    "DuplicateChildPolicy",
    # Status
    "JobStatus",
    "WorkflowStatus",
    # Notifications
    "NotificationBus",
    "StatusUpdate",
    "Topic",
    # Errors
    "HierarchyError",
    "ConfigurationError",
    "JobNotFoundError",
    "PreconditionViolationError",
    "WorkflowStillExistsError",
    "StructuralAnomalyError",
    "CycleDetectedError",
    "DuplicateChildError",
    "NotificationDeliveryError",
    # Redis-backed
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
