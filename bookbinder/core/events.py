"""Per-book subscriber registry and synchronous event fan-out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Hashable

from bookbinder.core.logger import setup_logger
from bookbinder.core.models import BookEvent

if TYPE_CHECKING:
    from bookbinder.book.book import Book

logger = setup_logger(__name__)

EventCallback = Callable[[BookEvent, "Book"], Any]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Token returned by `EventBus.subscribe`; pass it back to unsubscribe."""
    identity: Hashable


class EventBus:
    """Delivers book events to subscribers in registration order.

    Each identity holds exactly one callback. Subscribing an identity again
    replaces its callback but keeps its place in the delivery order.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[Hashable, EventCallback] = {}

    def subscribe(self, identity: Hashable, callback: EventCallback) -> SubscriptionHandle:
        if not callable(callback):
            raise TypeError(f"Subscriber callback must be callable, got {type(callback).__name__}")
        self._subscribers[identity] = callback
        return SubscriptionHandle(identity)

    def unsubscribe(self, identity: Hashable) -> None:
        if isinstance(identity, SubscriptionHandle):
            identity = identity.identity
        self._subscribers.pop(identity, None)

    def notify(self, event: BookEvent) -> None:
        """Invoke every subscriber with (event, book).

        Subscribers removed while the pass is running are skipped. A failing
        callback is logged and does not stop delivery to the others.
        """
        for identity in list(self._subscribers):
            callback = self._subscribers.get(identity)
            if callback is None:
                continue
            try:
                callback(event, event.book)
            except Exception as e:
                logger.error_trace(f"Subscriber {identity!r} failed handling {event.kind.value} event: {e}")

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, identity: object) -> bool:
        if isinstance(identity, SubscriptionHandle):
            identity = identity.identity
        return identity in self._subscribers
