"""
Status values for tracked jobs and workflows.

A job moves through:

    queued -> running -> complete
                 |
                 +-> requeued -> running   (retry cycle)

`failed` is applied by the surrounding job-processing system once it gives
up on a job; it is stored on the job like any other status so that the
workflow aggregate can see it.
"""

from enum import Enum
from typing import Iterable, Optional, Union


class JobStatus(Enum):
    """Status of a single job node."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    REQUEUED = "requeued"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Optional[Union[str, bytes, "JobStatus"]]) -> Optional["JobStatus"]:
        """Convert a stored value back into a JobStatus (None stays None)."""
        if value is None or isinstance(value, JobStatus):
            return value
        if isinstance(value, bytes):
            value = value.decode()
        return cls(value)


class WorkflowStatus(Enum):
    """Aggregate status of a whole job tree."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETE, WorkflowStatus.FAILED)

    @classmethod
    def parse(cls, value: Union[str, bytes, "WorkflowStatus"]) -> "WorkflowStatus":
        if isinstance(value, WorkflowStatus):
            return value
        if isinstance(value, bytes):
            value = value.decode()
        return cls(value)


def aggregate_status(statuses: Iterable[Optional[JobStatus]]) -> WorkflowStatus:
    """
    Fold job statuses into a workflow status.

    Precedence: failed > complete (all) > queued (all) > running.
    A missing status counts as queued.
    """
    seen = set()
    for status in statuses:
        status = status or JobStatus.QUEUED
        if status is JobStatus.FAILED:
            return WorkflowStatus.FAILED
        seen.add(status)

    if seen == {JobStatus.COMPLETE}:
        return WorkflowStatus.COMPLETE
    if not seen or seen == {JobStatus.QUEUED}:
        return WorkflowStatus.QUEUED
    return WorkflowStatus.RUNNING
