"""Typed application events and a small synchronous event bus.

Events are plain frozen dataclasses. Subscribers register per event type and
receive a ``Subscription`` handle whose ``unsubscribe()`` can be called any
number of times; the handle also works as a context manager.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger


@dataclass(frozen=True)
class LevelUpdated:
    session_id: str
    level: float


@dataclass(frozen=True)
class ProgressChanged:
    session_id: str
    state: str
    step: str
    message: str = ""


@dataclass(frozen=True)
class HistoryChanged:
    pass


@dataclass(frozen=True)
class CancelRequested:
    reason: str = "user"


@dataclass(frozen=True)
class SessionFinished:
    session_id: str
    state: str
    processed_text: str | None = None
    error_message: str | None = None


Handler = Callable[[Any], None]


class Subscription:
    def __init__(self, bus: "EventBus", event_type: type, handler: Handler):
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[type, list[Subscription]] = {}
        self._closed = False

    def subscribe(self, event_type: type, handler: Handler) -> Subscription:
        sub = Subscription(self, event_type, handler)
        with self._lock:
            if self._closed:
                sub._active = False
                return sub
            self._subscriptions.setdefault(event_type, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.event_type)
            if not subs:
                return
            try:
                subs.remove(sub)
            except ValueError:
                return
            if not subs:
                self._subscriptions.pop(sub.event_type, None)

    def subscriber_count(self, event_type: type | None = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._subscriptions.get(event_type, []))
            return sum(len(subs) for subs in self._subscriptions.values())

    def publish(self, event: Any) -> int:
        """Deliver ``event`` to every current subscriber of its type.

        Returns the number of handlers that ran without raising.
        """
        with self._lock:
            subs = list(self._subscriptions.get(type(event), []))
        delivered = 0
        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.handler(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Event handler for {type(event).__name__} failed: {e}")
        return delivered

    def close(self) -> None:
        with self._lock:
            subs = [s for group in self._subscriptions.values() for s in group]
            self._subscriptions.clear()
            self._closed = True
        for sub in subs:
            sub._active = False
