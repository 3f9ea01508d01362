"""Event bus implementation for decoupled event handling."""

import asyncio
import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Set

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventType(str, Enum):
    """Standardized event types emitted by the client core."""

    # Offline queue events
    OPERATION_QUEUED = "operation_queued"
    OPERATION_SENT = "operation_sent"
    OPERATION_FAILED = "operation_failed"  # permanently undeliverable
    QUEUE_DRAINED = "queue_drained"

    # Session events
    CREDENTIALS_REFRESHED = "credentials_refreshed"
    SESSION_EXPIRED = "session_expired"

    # Connectivity events
    CONNECTIVITY_CHANGED = "connectivity_changed"


class EventBus:
    """Central event bus for publishing and subscribing to events."""

    def __init__(self):
        """Initialize an empty event bus."""
        self._subscribers: Dict[EventType, Set[EventHandler]] = {}

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        Handlers run concurrently; an exception raised by one handler is
        logged and never reaches the publisher.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        handlers = list(self._subscribers.get(event_type, ()))
        if not handlers:
            return

        logger.debug("Publishing event %s with data: %s", event_type.value, data)

        results = await asyncio.gather(*(handler(data) for handler in handlers), return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                logger.error("Error in event handler for %s: %s", event_type.value, result)

    def subscribe(self, event_type: EventType, callback: EventHandler) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Async callback function to handle the event
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = set()

        self._subscribers[event_type].add(callback)
        logger.debug("Added subscriber for event %s", event_type.value)

    def unsubscribe(self, event_type: EventType, callback: EventHandler) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        if event_type in self._subscribers:
            self._subscribers[event_type].discard(callback)
            logger.debug("Removed subscriber for event %s", event_type.value)

            # Clean up empty subscriber sets
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, ()))
