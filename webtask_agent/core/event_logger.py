"""Bridges bus events to the standard ``logging`` module.

The ``EventLogger`` is a wildcard subscriber that renders each event as
one log record on the ``webtask_agent.events`` logger.  Lifecycle events
are logged at INFO, errors and timeouts at WARNING, and chatty
per-call events (generation details, debug metrics) at DEBUG.

``task:setup`` carries the full configuration for reproducibility;
remote-debugging endpoints and anything that looks like a credential
are replaced with ``(redacted)`` before they reach the log.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import asdict
from typing import Any

from webtask_agent.core.event_bus import EventBus
from webtask_agent.models.events import Event, EventType

# Replacement for sensitive configuration values.
REDACTED: str = "(redacted)"

# Configuration keys whose values never reach the log.
_SENSITIVE_KEYS: frozenset[str] = frozenset({"cdp_endpoints", "api_key"})

# Key fragments marking a credential.  Token counts (``*_tokens``) are not.
_SENSITIVE_PATTERN = re.compile(r"api_?key|secret|password|token(?!s)")

# Longest value rendered before truncation.
_MAX_VALUE_CHARS: int = 200

_WARNING_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.TASK_ABORTED,
        EventType.TASK_VALIDATION_ERROR,
        EventType.AI_GENERATION_ERROR,
        EventType.BROWSER_NETWORK_TIMEOUT,
        EventType.CDP_ENDPOINT_CYCLE,
        EventType.BROWSER_RECONNECTED,
    }
)

_DEBUG_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.AGENT_PROCESSING,
        EventType.AI_GENERATION,
        EventType.BROWSER_ACTION_STARTED,
        EventType.BROWSER_NETWORK_WAITING,
        EventType.BROWSER_SCREENSHOT_CAPTURED,
        EventType.SYSTEM_DEBUG_COMPRESSION,
        EventType.SYSTEM_DEBUG_MESSAGE,
        EventType.TASK_METRICS_INCREMENTAL,
    }
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in _SENSITIVE_KEYS or _SENSITIVE_PATTERN.search(lowered) is not None


def redact(data: Any) -> Any:
    """Return a copy of *data* with sensitive values replaced."""
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(str(key)) else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data


def event_level(event_type: EventType) -> int:
    """Logging level used for *event_type*."""
    if event_type in _WARNING_EVENTS:
        return logging.WARNING
    if event_type in _DEBUG_EVENTS:
        return logging.DEBUG
    return logging.INFO


def format_event(event: Event) -> str:
    """Render *event* as ``[type] key=value ...``."""
    fields = asdict(event.payload)
    if event.type is EventType.TASK_SETUP:
        fields = redact(fields)
    parts = []
    for key, value in fields.items():
        text = str(value)
        if len(text) > _MAX_VALUE_CHARS:
            text = text[:_MAX_VALUE_CHARS] + "..."
        parts.append(f"{key}={text}")
    prefix = f"[{event.type.value}]"
    if event.iteration_id:
        prefix += f" ({event.iteration_id})"
    return " ".join([prefix, *parts])


class EventLogger:
    """Wildcard subscriber writing every event to a logger.

    Args:
        bus: The bus to listen to.
        log: Target logger.  Defaults to ``webtask_agent.events``.
    """

    def __init__(self, bus: EventBus, log: logging.Logger | None = None) -> None:
        self._log = log or logging.getLogger("webtask_agent.events")
        self._unsubscribe: Callable[[], None] = bus.subscribe(None, self._on_event)

    def detach(self) -> None:
        """Stop listening to the bus."""
        self._unsubscribe()

    def _on_event(self, event: Event) -> None:
        level = event_level(event.type)
        if self._log.isEnabledFor(level):
            self._log.log(level, "%s", format_event(event))
