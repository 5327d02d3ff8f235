# Job hierarchy tracker
# Core module exports (in-process, no Redis)

from .config import DuplicateChildPolicy, HierarchyConfig
from .errors import (
    ConfigurationError,
    CycleDetectedError,
    DuplicateChildError,
    HierarchyError,
    JobNotFoundError,
    NotificationDeliveryError,
    PreconditionViolationError,
    StructuralAnomalyError,
    WorkflowStillExistsError,
)
from .notifications import NotificationBus, StatusUpdate, Topic
from .status import JobStatus, WorkflowStatus, aggregate_status

__all__ = [
    "DuplicateChildPolicy",
    "HierarchyConfig",
    "ConfigurationError",
    "CycleDetectedError",
    "DuplicateChildError",
    "HierarchyError",
    "JobNotFoundError",
    "NotificationDeliveryError",
    "PreconditionViolationError",
    "StructuralAnomalyError",
    "WorkflowStillExistsError",
    "NotificationBus",
    "StatusUpdate",
    "Topic",
    "JobStatus",
    "WorkflowStatus",
    "aggregate_status",
]
