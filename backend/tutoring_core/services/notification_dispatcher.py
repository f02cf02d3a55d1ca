# backend/tutoring_core/services/notification_dispatcher.py
"""
Notification dispatch boundary.

Delivery (email, push) lives outside the core. Services hand events to a
dispatcher only after their transaction committed; a failing dispatcher is
logged and never undoes the state change.
"""

import logging
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class DomainEvent(Protocol):
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        ...


class NotificationDispatcher(Protocol):
    def dispatch(self, event: DomainEvent) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records the event in the application log."""

    def dispatch(self, event: DomainEvent) -> None:
        logger.info("Notification event %s", event.event_type, extra={"event": event.to_dict()})


class RecordingNotificationDispatcher:
    """Keeps dispatched events in memory; used by tests and local tooling."""

    def __init__(self) -> None:
        self.events: List[DomainEvent] = []

    def dispatch(self, event: DomainEvent) -> None:
        self.events.append(event)


def dispatch_safely(dispatcher: NotificationDispatcher, event: DomainEvent) -> bool:
    """Best-effort dispatch; returns False when the dispatcher raised."""
    try:
        dispatcher.dispatch(event)
        return True
    except Exception as exc:
        logger.warning(
            "Notification dispatch failed for %s: %s",
            event.event_type,
            exc,
            extra={"event": event.to_dict()},
        )
        return False
