"""Minimal publish/subscribe signal used for status and settings changes."""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger("taskdown.events")

T = TypeVar("T")
Unsubscribe = Callable[[], None]


class Signal(Generic[T]):
    """Synchronous, ordered fan-out of values to subscribers.

    Subscribers are called in registration order on the publisher's stack.
    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, value: T) -> None:
        # Copy so callbacks may unsubscribe while being notified.
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as exc:
                logger.error("Subscriber to '%s' failed: %s", self.name, exc)

    def __len__(self) -> int:
        return len(self._subscribers)


__all__ = ["Signal", "Unsubscribe"]
