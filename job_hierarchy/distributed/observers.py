"""
Observers keeping Redis-side indexes in sync with status notifications.
"""

from typing import Any, Optional
import logging

from ..core.notifications import NotificationBus, StatusUpdate, Topic
from .redis_backend import RedisHierarchyBackend
from .workflow import Workflow
from .workflow_set import WorkflowSet

logger = logging.getLogger(__name__)


class WorkflowUpdateObserver:
    """
    Moves workflows between status sets when their aggregate status changes.

    Notifications are at-least-once, so handling the same transition twice
    must be harmless: the second move is a score refresh in the target set
    and a no-op removal from the source set. Updates for a workflow whose
    root record is gone are dropped, so no set entry outlives its records.

    Example:
        observer = WorkflowUpdateObserver(backend)
        observer.register(bus)
    """

    def __init__(self, backend: RedisHierarchyBackend):
        self.backend = backend

    def register(self, bus: NotificationBus) -> None:
        bus.subscribe(Topic.WORKFLOW_UPDATE, self.handle)

    def unregister(self, bus: NotificationBus) -> None:
        bus.unsubscribe(Topic.WORKFLOW_UPDATE, self.handle)

    async def handle(self, update: StatusUpdate) -> None:
        await self.call(update.jid, update.status, update.previous_status)

    async def call(self, jid: str, status: Any, previous_status: Optional[Any] = None) -> None:
        workflow = Workflow.find_by_jid(jid, self.backend)
        if not await workflow.exists():
            # Deleted (e.g. pruned) since the update was published
            logger.warning(f"Ignoring update for missing workflow {jid}")
            return
        target = WorkflowSet.for_status(status, self.backend)
        source = (
            WorkflowSet.for_status(previous_status, self.backend)
            if previous_status is not None
            else None
        )
        await target.move(workflow, source)
        logger.debug(f"Workflow {jid} now in {target.status} set")
