"""
Notification sink for retention events.

Delivery (email, Discord, ...) lives outside this package. The engine and
processor only hand events to a sink through dispatch(), which never lets a
delivery failure interrupt a run.
"""

import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Events emitted by the retention services."""

    ITEMS_MARKED = "items_marked"
    RULE_MATCHED = "rule_matched"
    SCAN_COMPLETE = "scan_complete"
    DELETION_COMPLETE = "deletion_complete"
    DELETION_ERROR = "deletion_error"
    DELETION_IMMINENT = "deletion_imminent"


class NotificationSink(Protocol):
    def notify(self, event: NotificationEvent, data: dict[str, Any]) -> None: ...


class LoggingSink:
    """Sink that writes every event to the log. Used when nothing else is wired."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def notify(self, event: NotificationEvent, data: dict[str, Any]) -> None:
        logger.log(self.level, f"Notification {event.value}: {data}", extra={"event": event.value})


def dispatch(sink: NotificationSink | None, event: NotificationEvent, data: dict[str, Any]) -> bool:
    """
    Hand an event to the sink without propagating failures.

    Returns:
        True if the sink accepted the event, False if there was no sink or it raised
    """
    if sink is None:
        return False
    try:
        sink.notify(event, data)
        return True
    except Exception as e:
        logger.warning(f"Notification {event.value} failed: {e}", extra={"event": event.value})
        return False
