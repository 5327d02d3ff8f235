"""
Exceptions raised by the hierarchy tracker.

Store failures are not wrapped: anything raised by the Redis client
(`redis.exceptions.RedisError` and subclasses) reaches the caller as-is.
"""

from typing import Any, List, Tuple


class HierarchyError(Exception):
    """Base class for all tracker errors."""


class JobNotFoundError(HierarchyError):
    """A job identifier has no backing record where one is required."""

    def __init__(self, jid: str, message: str = None):
        self.jid = jid
        super().__init__(message or f"Job {jid} not found")


class PreconditionViolationError(HierarchyError):
    """An operation was called in a state where it is not allowed."""


class WorkflowStillExistsError(PreconditionViolationError):
    """A workflow was removed from a set while its record still exists."""

    def __init__(self, jid: str):
        self.jid = jid
        super().__init__(
            f"Workflow {jid} still exists; delete it before removing it from a set"
        )


class StructuralAnomalyError(HierarchyError):
    """The stored tree is not a tree (cycle, dangling child, second parent)."""


class CycleDetectedError(StructuralAnomalyError):
    def __init__(self, jid: str, path: List[str] = None):
        self.jid = jid
        self.path = path or []
        trail = " -> ".join(self.path + [jid]) if self.path else jid
        super().__init__(f"Cycle detected at job {jid}: {trail}")


class DuplicateChildError(StructuralAnomalyError):
    def __init__(self, parent_jid: str, child_jid: str):
        self.parent_jid = parent_jid
        self.child_jid = child_jid
        super().__init__(f"Job {child_jid} is already a child of {parent_jid}")


class NotificationDeliveryError(HierarchyError):
    """
    One or more subscribers raised while handling a notification.

    The state change that triggered the notification has already been
    written; this error only reports the failed deliveries.
    """

    def __init__(self, topic: str, failures: List[Tuple[Any, BaseException]]):
        self.topic = topic
        self.failures = failures
        names = ", ".join(
            getattr(handler, "__qualname__", repr(handler)) for handler, _ in failures
        )
        super().__init__(
            f"{len(failures)} handler(s) failed for topic {topic!r}: {names}"
        )


class ConfigurationError(HierarchyError, ValueError):
    """Invalid tracker configuration."""
