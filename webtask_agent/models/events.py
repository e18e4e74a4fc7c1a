"""Events published on the task event bus.

Every event carries a type tag from the closed ``EventType`` catalog, a
timestamp, the identifiers of the task run and iteration it belongs to,
and a typed payload.  Each event type has exactly one payload dataclass,
registered in ``EVENT_PAYLOAD_TYPES``; subscribers can therefore match
on ``event.type`` and rely on the payload's fields instead of probing a
loose dict.

Events are append-only: all classes here are frozen.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# Bumped whenever a payload shape changes incompatibly.
EVENT_SCHEMA_VERSION: int = 1


class EventType(Enum):
    """Catalog of event types.

    Values use the ``category:name`` wire form consumed by loggers and
    recorded session files.
    """

    # -- Task lifecycle -------------------------------------------------------
    TASK_SETUP = "task:setup"
    TASK_STARTED = "task:started"
    TASK_COMPLETED = "task:completed"
    TASK_ABORTED = "task:aborted"
    TASK_VALIDATED = "task:validated"
    TASK_VALIDATION_ERROR = "task:validation_error"
    TASK_METRICS = "task:metrics"
    TASK_METRICS_INCREMENTAL = "task:metrics_incremental"

    # -- Agent reasoning ------------------------------------------------------
    AGENT_STEP = "agent:step"
    AGENT_REASONED = "agent:reasoned"
    AGENT_EXTRACTED = "agent:extracted"
    AGENT_PROCESSING = "agent:processing"
    AGENT_STATUS = "agent:status"
    AGENT_WAITING = "agent:waiting"
    AGENT_ACTION = "agent:action"

    # -- Browser --------------------------------------------------------------
    BROWSER_ACTION_STARTED = "browser:action_started"
    BROWSER_ACTION_COMPLETED = "browser:action_completed"
    BROWSER_NAVIGATED = "browser:navigated"
    BROWSER_NETWORK_WAITING = "browser:network_waiting"
    BROWSER_NETWORK_TIMEOUT = "browser:network_timeout"
    BROWSER_SCREENSHOT_CAPTURED = "browser:screenshot_captured"
    BROWSER_RECONNECTED = "browser:reconnected"

    # -- AI generation --------------------------------------------------------
    AI_GENERATION = "ai:generation"
    AI_GENERATION_ERROR = "ai:generation:error"

    # -- Debug ----------------------------------------------------------------
    SYSTEM_DEBUG_COMPRESSION = "system:debug_compression"
    SYSTEM_DEBUG_MESSAGE = "system:debug_message"

    # -- Remote debugging endpoints -------------------------------------------
    CDP_ENDPOINT_CYCLE = "cdp:endpoint_cycle"
    CDP_ENDPOINT_CONNECTED = "cdp:endpoint_connected"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskSetupPayload:
    """Configuration captured for reproducibility before a run starts."""

    task: str
    starting_url: str
    guardrails: str
    data: dict[str, Any] | None
    config: dict[str, Any]


@dataclass(frozen=True)
class TaskStartedPayload:
    task: str
    url: str
    success_criteria: str
    plan: str
    action_items: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskCompletedPayload:
    """Terminal event for Completed and Failed runs.

    Attributes:
        success: Whether the task completed.
        final_answer: Answer (partial on budget exhaustion), or None.
        error: Failure reason.  Empty on success.
        error_code: ``TaskErrorCode`` value, or empty on success.
        iterations: Iterations run.
    """

    success: bool
    final_answer: str | None
    error: str = ""
    error_code: str = ""
    iterations: int = 0


@dataclass(frozen=True)
class TaskAbortedPayload:
    reason: str
    final_answer: str | None
    error_code: str = ""
    iterations: int = 0


@dataclass(frozen=True)
class TaskValidatedPayload:
    quality: str
    final_answer: str
    assessment: str = ""
    feedback: str = ""
    attempt: int = 0


@dataclass(frozen=True)
class TaskValidationErrorPayload:
    """A model output or proposed answer was rejected.

    Attributes:
        errors: Problems found.
        retry_count: Attempts made so far for this check.
        raw_response: Offending model output, truncated.
    """

    errors: tuple[str, ...]
    retry_count: int
    raw_response: str = ""


@dataclass(frozen=True)
class TaskMetricsPayload:
    """Counters folded from the event stream by the metrics collector."""

    step_count: int
    ai_generation_count: int
    ai_generation_error_count: int
    total_input_tokens: int
    total_output_tokens: int
    event_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentStepPayload:
    iteration: int
    max_iterations: int


@dataclass(frozen=True)
class AgentReasonedPayload:
    reasoning: str


@dataclass(frozen=True)
class AgentExtractedPayload:
    extracted: str


@dataclass(frozen=True)
class AgentProcessingPayload:
    purpose: str
    message_count: int
    has_screenshot: bool = False


@dataclass(frozen=True)
class AgentStatusPayload:
    message: str


@dataclass(frozen=True)
class AgentWaitingPayload:
    seconds: float


@dataclass(frozen=True)
class AgentActionPayload:
    action: str
    ref: str = ""
    value: str = ""
    url: str = ""


@dataclass(frozen=True)
class BrowserActionStartedPayload:
    action: str
    ref: str = ""
    value: str = ""


@dataclass(frozen=True)
class BrowserActionCompletedPayload:
    action: str
    success: bool
    ref: str = ""
    error: str = ""


@dataclass(frozen=True)
class BrowserNavigatedPayload:
    url: str
    title: str = ""


@dataclass(frozen=True)
class BrowserNetworkWaitingPayload:
    action: str


@dataclass(frozen=True)
class BrowserNetworkTimeoutPayload:
    """A navigation attempt or network-idle wait exceeded its timeout.

    Attributes:
        action: ``"goto"`` for navigation attempts, otherwise the
            action whose network-idle wait timed out.
        url: Destination, for navigation attempts.
        attempt: 1-based navigation attempt (0 for idle waits).
        timeout_ms: Timeout that elapsed.
    """

    action: str
    url: str = ""
    attempt: int = 0
    timeout_ms: int = 0


@dataclass(frozen=True)
class BrowserScreenshotCapturedPayload:
    size_bytes: int
    width: int
    height: int
    format: str = "jpeg"


@dataclass(frozen=True)
class BrowserReconnectedPayload:
    reason: str
    url: str = ""


@dataclass(frozen=True)
class AIGenerationPayload:
    """A successful model call.

    Token counts are ``None`` when the provider omitted usage metadata.
    """

    purpose: str
    tool_name: str = ""
    text: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None
    finish_reason: str = ""
    latency_ms: float = 0.0


@dataclass(frozen=True)
class AIGenerationErrorPayload:
    purpose: str
    error: str
    status_code: int | None = None


@dataclass(frozen=True)
class DebugCompressionPayload:
    original_size: int
    compressed_size: int
    compression_ratio: float
    lines_removed: int
    transformations_applied: int
    duplicates_removed: int


@dataclass(frozen=True)
class DebugMessagePayload:
    message_count: int
    total_chars: int


@dataclass(frozen=True)
class CdpEndpointCyclePayload:
    """The browser moved to another remote-debugging endpoint.

    Attributes:
        attempt: 1-based cycle number within the current call.
        total: Number of configured endpoints.
        error: Error that triggered the switch.
        endpoint_index: Index of the endpoint switched to.
    """

    attempt: int
    total: int
    error: str
    endpoint_index: int = 0


@dataclass(frozen=True)
class CdpEndpointConnectedPayload:
    endpoint: str
    endpoint_index: int


EVENT_PAYLOAD_TYPES: dict[EventType, type] = {
    EventType.TASK_SETUP: TaskSetupPayload,
    EventType.TASK_STARTED: TaskStartedPayload,
    EventType.TASK_COMPLETED: TaskCompletedPayload,
    EventType.TASK_ABORTED: TaskAbortedPayload,
    EventType.TASK_VALIDATED: TaskValidatedPayload,
    EventType.TASK_VALIDATION_ERROR: TaskValidationErrorPayload,
    EventType.TASK_METRICS: TaskMetricsPayload,
    EventType.TASK_METRICS_INCREMENTAL: TaskMetricsPayload,
    EventType.AGENT_STEP: AgentStepPayload,
    EventType.AGENT_REASONED: AgentReasonedPayload,
    EventType.AGENT_EXTRACTED: AgentExtractedPayload,
    EventType.AGENT_PROCESSING: AgentProcessingPayload,
    EventType.AGENT_STATUS: AgentStatusPayload,
    EventType.AGENT_WAITING: AgentWaitingPayload,
    EventType.AGENT_ACTION: AgentActionPayload,
    EventType.BROWSER_ACTION_STARTED: BrowserActionStartedPayload,
    EventType.BROWSER_ACTION_COMPLETED: BrowserActionCompletedPayload,
    EventType.BROWSER_NAVIGATED: BrowserNavigatedPayload,
    EventType.BROWSER_NETWORK_WAITING: BrowserNetworkWaitingPayload,
    EventType.BROWSER_NETWORK_TIMEOUT: BrowserNetworkTimeoutPayload,
    EventType.BROWSER_SCREENSHOT_CAPTURED: BrowserScreenshotCapturedPayload,
    EventType.BROWSER_RECONNECTED: BrowserReconnectedPayload,
    EventType.AI_GENERATION: AIGenerationPayload,
    EventType.AI_GENERATION_ERROR: AIGenerationErrorPayload,
    EventType.SYSTEM_DEBUG_COMPRESSION: DebugCompressionPayload,
    EventType.SYSTEM_DEBUG_MESSAGE: DebugMessagePayload,
    EventType.CDP_ENDPOINT_CYCLE: CdpEndpointCyclePayload,
    EventType.CDP_ENDPOINT_CONNECTED: CdpEndpointConnectedPayload,
}


@dataclass(frozen=True)
class Event:
    """A single published event.

    Attributes:
        type: Catalog entry.
        timestamp: Unix timestamp; non-decreasing within one bus.
        task_id: Identifier of the owning task run.
        iteration_id: Identifier of the loop iteration, or empty for
            events outside the loop.
        payload: Instance of ``EVENT_PAYLOAD_TYPES[type]``.
        schema_version: Payload schema version.
    """

    type: EventType
    timestamp: float
    task_id: str
    iteration_id: str
    payload: Any
    schema_version: int = EVENT_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-ready dict keyed by wire names."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "iteration_id": self.iteration_id,
            "schema_version": self.schema_version,
            "payload": asdict(self.payload),
        }
