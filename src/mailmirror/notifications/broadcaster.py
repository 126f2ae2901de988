"""Fan-out of engine events to subscribers.

The engine only ever emits ``("email:new", {"accountId": ...})``. Delivery to
sockets, desktops or webhooks is up to whoever subscribes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, Protocol, Set, runtime_checkable

logger = logging.getLogger(__name__)

NEW_EMAIL_EVENT = "email:new"

Handler = Callable[[Dict[str, Any]], Any]


@runtime_checkable
class EventBroadcaster(Protocol):
    def emit(self, event: str, payload: Mapping[str, Any]) -> None:
        ...


@dataclass
class Event:
    """One emitted event.

    Attributes:
        name: Event name, e.g. ``email:new``
        payload: Event body as handed to subscribers
        emitted_at: When the event was emitted
    """

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "payload": self.payload,
            "emitted_at": self.emitted_at.isoformat(),
        }


class LocalBroadcaster:
    """In-process broadcaster.

    Synchronous handlers run inline. Coroutine handlers are scheduled on the
    running loop. A failing handler is logged and never reaches the emitter.
    """

    def __init__(self, *, history_size: int = 100) -> None:
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event``; returns an unsubscribe callable."""

        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[event].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event: str, payload: Mapping[str, Any]) -> None:
        notification = Event(name=event, payload=dict(payload))
        self._history.append(notification)
        logger.debug("Emitting event", extra={"event": event, "handlers": len(self._handlers.get(event, ()))})
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(dict(notification.payload))
            except Exception as exc:  # noqa: BLE001
                logger.error("Event handler failed", extra={"event": event}, exc_info=exc)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def recent(self, event: str | None = None) -> List[Event]:
        """Most recent emitted events, oldest first."""
        return [item for item in self._history if event is None or item.name == event]

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(finished: asyncio.Future) -> None:
            self._pending.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error("Async event handler failed", extra={"event": event}, exc_info=exc)

        task.add_done_callback(_done)


__all__ = ["Event", "EventBroadcaster", "LocalBroadcaster", "NEW_EMAIL_EVENT"]
