"""In-process publish/subscribe channel for task events.

One ``EventBus`` is created per task run and passed by reference to
every component that publishes or subscribes.  Dispatch is a plain
synchronous fan-out: ``publish`` returns after every subscriber has
been called.

Subscribers register either for one ``EventType`` or, with ``None``,
for every event (wildcard).  Typed subscribers run before wildcard
subscribers, each group in registration order.

Typical usage::

    from webtask_agent.core.event_bus import EventBus
    from webtask_agent.models.events import AgentStatusPayload, EventType

    bus = EventBus(task_id="a1b2c3d4")
    bus.subscribe(EventType.AGENT_STATUS, lambda e: print(e.payload.message))
    bus.publish(EventType.AGENT_STATUS, AgentStatusPayload(message="hi"))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from webtask_agent.models.events import EVENT_PAYLOAD_TYPES, Event, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]


class EventBus:
    """Typed, synchronous event channel for one task run.

    Args:
        task_id: Identifier stamped on every published event.
        isolate_errors: When True (the default) an exception raised by
            a subscriber is logged and the remaining subscribers still
            receive the event.  When False the exception propagates out
            of ``publish`` and aborts the dispatch pass.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        task_id: str = "",
        isolate_errors: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.task_id = task_id
        self._isolate_errors = isolate_errors
        self._clock = clock
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._last_timestamp: float = 0.0

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Register *handler* for *event_type* (``None`` for all events).

        Returns:
            A zero-argument callable that unsubscribes the handler.
        """
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType | None, handler: EventHandler) -> bool:
        """Remove a handler.

        Returns:
            True if the handler was registered.
        """
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(
        self,
        event_type: EventType,
        payload: object,
        iteration_id: str = "",
    ) -> Event:
        """Build an event and deliver it to all matching subscribers.

        Args:
            event_type: Catalog entry of the event.
            payload: Payload dataclass registered for *event_type*.
            iteration_id: Loop iteration the event belongs to.

        Returns:
            The delivered ``Event``.

        Raises:
            TypeError: If *payload* is not the type registered for
                *event_type*.
        """
        expected = EVENT_PAYLOAD_TYPES[event_type]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, "
                f"got {type(payload).__name__}"
            )

        timestamp = max(self._clock(), self._last_timestamp)
        self._last_timestamp = timestamp
        event = Event(
            type=event_type,
            timestamp=timestamp,
            task_id=self.task_id,
            iteration_id=iteration_id,
            payload=payload,
        )

        # Snapshot the lists so handlers may (un)subscribe while running.
        handlers = list(self._handlers.get(event_type, []))
        handlers += self._handlers.get(None, [])
        for handler in handlers:
            if not self._isolate_errors:
                handler(event)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event subscriber %r failed on %s",
                    handler,
                    event_type.value,
                )
        return event
