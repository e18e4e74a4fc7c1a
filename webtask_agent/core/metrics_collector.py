"""Folds the event stream of a task run into counters.

The ``MetricsCollector`` subscribes to every event on a bus.  It counts
events per type, steps, model generations and generation errors, and
sums token usage.  When the run reaches ``task:completed`` or
``task:aborted`` it publishes a ``task:metrics`` summary and resets, so
the same collector can serve the next run on the same bus.

Typical usage::

    bus = EventBus(task_id="a1b2c3d4")
    collector = MetricsCollector(bus)
    ...
    collector.detach()
"""

from __future__ import annotations

import logging
from collections import Counter

from webtask_agent.core.event_bus import EventBus
from webtask_agent.models.events import (
    AIGenerationPayload,
    Event,
    EventType,
    TaskMetricsPayload,
)

logger = logging.getLogger(__name__)

# Events published by the collector itself; never counted.
_OWN_EVENTS: frozenset[EventType] = frozenset(
    {EventType.TASK_METRICS, EventType.TASK_METRICS_INCREMENTAL}
)

_TERMINAL_EVENTS: frozenset[EventType] = frozenset(
    {EventType.TASK_COMPLETED, EventType.TASK_ABORTED}
)


class MetricsCollector:
    """Wildcard bus subscriber that accumulates per-run metrics.

    Args:
        bus: The bus to subscribe to.  The subscription is made in the
            constructor and removed by ``detach``.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._unsubscribe = bus.subscribe(None, self._on_event)
        self.reset()

    def reset(self) -> None:
        """Zero every counter."""
        self._event_counts: Counter[str] = Counter()
        self._step_count: int = 0
        self._generation_count: int = 0
        self._generation_error_count: int = 0
        self._input_tokens: int = 0
        self._output_tokens: int = 0

    def detach(self) -> None:
        """Stop listening to the bus."""
        self._unsubscribe()

    def snapshot(self) -> TaskMetricsPayload:
        """Return the current counters as a metrics payload."""
        return TaskMetricsPayload(
            step_count=self._step_count,
            ai_generation_count=self._generation_count,
            ai_generation_error_count=self._generation_error_count,
            total_input_tokens=self._input_tokens,
            total_output_tokens=self._output_tokens,
            event_counts=dict(self._event_counts),
        )

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _on_event(self, event: Event) -> None:
        if event.type in _OWN_EVENTS:
            return

        self._event_counts[event.type.value] += 1

        if event.type is EventType.AGENT_STEP:
            self._step_count += 1
            self._bus.publish(
                EventType.TASK_METRICS_INCREMENTAL,
                self.snapshot(),
                event.iteration_id,
            )
        elif event.type is EventType.AI_GENERATION:
            payload: AIGenerationPayload = event.payload
            self._generation_count += 1
            self._input_tokens += payload.input_tokens or 0
            self._output_tokens += payload.output_tokens or 0
        elif event.type is EventType.AI_GENERATION_ERROR:
            self._generation_error_count += 1
        elif event.type in _TERMINAL_EVENTS:
            summary = self.snapshot()
            logger.debug(
                "Task %s metrics: %d steps, %d generations (%d errors), "
                "%d/%d tokens",
                event.task_id,
                summary.step_count,
                summary.ai_generation_count,
                summary.ai_generation_error_count,
                summary.total_input_tokens,
                summary.total_output_tokens,
            )
            self.reset()
            self._bus.publish(EventType.TASK_METRICS, summary, event.iteration_id)
