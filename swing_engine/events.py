"""
In-process publish/subscribe for swing engine events
"""
import logging
import threading
from typing import Callable, Dict, List

from .models import SwingEvent

logger = logging.getLogger(__name__)

WILDCARD = "*"

EventCallback = Callable[[SwingEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe"""

    def __init__(self, bus: "EventBus", event_type: str, callback: EventCallback):
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Delivers events to callbacks registered by event type.

    Subscribers to "*" receive every event. A callback that raises is
    logged and does not stop delivery to the remaining subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, callback: EventCallback) -> Subscription:
        subscription = Subscription(self, event_type, callback)
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(subscription)
        logger.debug("Subscribed to %s events", event_type)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.event_type, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subscribers.get(event_type, []))

    def publish(self, event: SwingEvent) -> int:
        """Deliver an event; returns the number of callbacks that succeeded"""
        with self._lock:
            targets = list(self._subscribers.get(event.event_type, []))
            if event.event_type != WILDCARD:
                targets += self._subscribers.get(WILDCARD, [])

        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(event)
                delivered += 1
            except Exception as e:
                logger.error("Event callback for %s failed: %s", event.event_type, e)
        return delivered
