"""
In-memory event bus for promotion lifecycle events.

The engine publishes an event whenever it creates, deactivates or evaluates a
promotion and whenever it reprices a product. Anything interested (audit
logging, cache invalidation, notifications) subscribes here instead of being
called by the engine.

Design decisions:
- Synchronous delivery in the publisher's thread
- Type-based subscriptions, plus "*" for every event
- Events raised inside a store transaction are published only after it
  commits, so subscribers never see changes that were rolled back
- A failing subscriber is logged and does not affect the publisher
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

logger = logging.getLogger("event_bus")


@dataclass
class Event:
    """
    Immutable record of something the engine did.

    Attributes:
        event_type: Name of the event type (used for routing)
        payload: Event-specific data
        source: Which component published it
        event_id: Unique identifier for this event instance
        timestamp: When the event was created
    """
    event_type: str
    payload: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"Event({self.event_type}, id={self.event_id[:8]}, source={self.source})"


EventHandler = Callable[[Event], None]


class EventBus:
    """
    Simple in-memory pub/sub.

    Example usage:
        bus = EventBus()
        bus.subscribe("PromotionDeactivated", lambda e: print(e.payload["reason"]))
        service = PromotionService(data_store, event_bus=bus)
        service.verify_active_promotions()
    """

    def __init__(self, keep_log: bool = True):
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._event_log: list[Event] = []
        self._keep_log = keep_log

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Call handler for every event of this type."""
        with self._lock:
            self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler to '{event_type}' events")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Call handler for every event."""
        self.subscribe("*", handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Remove a handler.

        Returns:
            True if the handler was subscribed, False otherwise
        """
        with self._lock:
            try:
                self._subscribers[event_type].remove(handler)
                return True
            except ValueError:
                return False

    def publish(self, event: Event) -> int:
        """
        Deliver an event to its subscribers.

        Returns:
            Number of handlers that were called
        """
        with self._lock:
            if self._keep_log:
                self._event_log.append(event)
            handlers = list(self._subscribers.get(event.event_type, []))
            handlers += self._subscribers.get("*", [])

        logger.debug(f"Publishing: {event}")

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Handler raised exception for {event}: {e}")

        return len(handlers)

    def publish_all(self, events: Iterable[Event]) -> int:
        """Publish several events in order; returns the total handler calls."""
        return sum(self.publish(event) for event in events)

    def get_subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subscribers.get(event_type, []))

    def get_event_log(self, event_type: Optional[str] = None) -> list[Event]:
        """Published events, optionally filtered by type."""
        with self._lock:
            if event_type is None:
                return self._event_log.copy()
            return [e for e in self._event_log if e.event_type == event_type]

    def clear_event_log(self) -> None:
        with self._lock:
            self._event_log.clear()


# Module-level singleton for convenience
_default_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the default event bus singleton."""
    global _default_bus
    if _default_bus is None:
        _default_bus = EventBus()
    return _default_bus


def reset_event_bus() -> EventBus:
    """Replace the default event bus (useful for testing)."""
    global _default_bus
    _default_bus = EventBus()
    return _default_bus
