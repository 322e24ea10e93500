"""In-process fan-out of domain events to whoever is listening."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Protocol

from ..schemas.events import DomainEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[DomainEvent], None]


class EventPublisher(Protocol):
    def publish(self, event: DomainEvent) -> None:
        ...


class EventBus:
    """Synchronous publisher; a failing subscriber never affects the caller."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("Subscriber failed handling %s for game %s", event.type.value, event.game_id)


class NullPublisher:
    def publish(self, event: DomainEvent) -> None:
        return None
