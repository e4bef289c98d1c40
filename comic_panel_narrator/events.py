"""
Synchronous in-process event bus.

The state store publishes geometry events after each edit; the pipeline
subscribes to them and schedules re-crops. Handlers run inline, in
subscription order.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Type

from .geometry import Rect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PanelGeometryChanged:
    """A panel now has geometry without a matching thumbnail."""
    panel_id: str
    page_id: str
    rect: Rect


@dataclass(frozen=True)
class PanelRemoved:
    """A panel left the project; its in-flight work can be dropped."""
    panel_id: str
    page_id: str


Handler = Callable[[object], None]


class EventBus:
    """Topic-by-type pub/sub."""

    def __init__(self):
        self._subscriptions: Dict[Type, List[Handler]] = {}
        self.events_published = 0

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register `handler` for `event_type`. Returns a callable that unsubscribes it."""
        self._subscriptions.setdefault(event_type, []).append(handler)

        def unsubscribe():
            handlers = self._subscriptions.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event) -> None:
        self.events_published += 1
        for handler in list(self._subscriptions.get(type(event), [])):
            handler(event)

    def subscriber_count(self, event_type: Type) -> int:
        return len(self._subscriptions.get(event_type, []))
