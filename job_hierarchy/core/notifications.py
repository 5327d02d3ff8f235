"""
In-process notification bus.

Decouples status transitions from the components that react to them
(e.g. keeping workflow sets in sync). Delivery is synchronous with the
publisher, in subscription order, and never leaves the process.
"""

import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import logging

from .errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


class Topic(Enum):
    """Notification topics published by the tracker."""
    JOB_UPDATE = "job_update"
    WORKFLOW_UPDATE = "workflow_update"


@dataclass
class StatusUpdate:
    """A status transition of a job or workflow."""
    jid: str
    status: Any
    previous_status: Optional[Any] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jid": self.jid,
            "status": _enum_value(self.status),
            "previous_status": _enum_value(self.previous_status),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusUpdate":
        return cls(
            jid=data["jid"],
            status=data["status"],
            previous_status=data.get("previous_status"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# Handlers receive the published payload; they may be sync or async
NotificationHandler = Callable[[Any], Any]


class NotificationBus:
    """
    Publish/subscribe registry keyed by topic.

    Each tracker builds its own bus, so independent trackers (and tests)
    never see each other's notifications.

    Example:
        bus = NotificationBus()

        async def on_update(update):
            print(update.jid, update.status)

        bus.subscribe(Topic.WORKFLOW_UPDATE, on_update)
        await bus.publish(Topic.WORKFLOW_UPDATE, StatusUpdate("jid", "complete"))
    """

    def __init__(self):
        self._handlers: Dict[str, List[NotificationHandler]] = {}

    @staticmethod
    def _topic_key(topic: Union[Topic, str]) -> str:
        return topic.value if isinstance(topic, Topic) else topic

    def subscribe(self, topic: Union[Topic, str], handler: NotificationHandler) -> None:
        """Register a handler for a topic."""
        key = self._topic_key(topic)
        if key not in self._handlers:
            self._handlers[key] = []
        self._handlers[key].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to {key}")

    def unsubscribe(
        self,
        topic: Union[Topic, str],
        handler: Optional[NotificationHandler] = None,
    ) -> None:
        """Remove one handler from a topic, or every handler if none is given."""
        key = self._topic_key(topic)
        if handler is None:
            self._handlers.pop(key, None)
            return
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    def has_subscribers(self, topic: Union[Topic, str]) -> bool:
        return bool(self._handlers.get(self._topic_key(topic)))

    def subscribers(self, topic: Union[Topic, str]) -> List[NotificationHandler]:
        return list(self._handlers.get(self._topic_key(topic), []))

    async def publish(self, topic: Union[Topic, str], payload: Any) -> None:
        """
        Deliver a payload to every handler of a topic.

        A failing handler does not stop delivery to the rest; once all
        handlers ran, the failures are raised as NotificationDeliveryError.
        """
        key = self._topic_key(topic)
        failures: List[Tuple[NotificationHandler, BaseException]] = []

        # Copy so handlers may (un)subscribe while we deliver
        for handler in list(self._handlers.get(key, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler error on {key}: {e!r}")
                failures.append((handler, e))

        if failures:
            raise NotificationDeliveryError(key, failures)

    def clear(self) -> None:
        self._handlers.clear()
