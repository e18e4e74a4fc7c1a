"""Model request/response data models.

These types form the provider-neutral contract between the engine and
any ``ModelClient``.  Transcript messages are plain dicts with a
``role`` of ``"user"``, ``"assistant"`` or ``"tool"``:

* ``{"role": "user", "content": "..."}``; snapshot turns additionally
  carry ``"kind": "snapshot"`` and optionally ``"image"`` (JPEG bytes).
* ``{"role": "assistant", "content": "...", "tool_call": {...}}`` where
  the tool call dict has ``id``, ``name`` and ``arguments``.
* ``{"role": "tool", "tool_call_id": "...", "content": "..."}``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolSpec:
    """A named tool the model may call.

    Attributes:
        name: Tool name.
        description: What the tool does.
        parameters: JSON schema of the arguments object.
    """

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    """A tool call produced by the model.

    Attributes:
        name: Tool name as emitted by the model.
        arguments: Parsed arguments, or the raw argument string when
            the provider returned unparsed JSON.
        id: Provider call id (generated when the provider has none).
    """

    name: str
    arguments: dict[str, Any] | str
    id: str = ""


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider.  Either may be missing."""

    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass
class GenerationRequest:
    """Input of one model call.

    Attributes:
        messages: Transcript in the neutral format described above.
        tools: Tools the model may call.
        system: System prompt.
        max_tokens: Generation limit.  ``0`` uses the client default.
        require_tool: Force the model to answer with a tool call.
    """

    messages: list[dict[str, Any]]
    tools: list[ToolSpec] = field(default_factory=list)
    system: str = ""
    max_tokens: int = 0
    require_tool: bool = True


@dataclass
class GenerationResponse:
    """Output of one model call.

    Attributes:
        tool_calls: Tool calls in emission order (normally one).
        text: Plain text produced alongside or instead of a tool call.
        usage: Token usage, if reported.
        finish_reason: Provider stop reason.
        latency_ms: Round-trip time of the successful request.
    """

    tool_calls: list[ToolCall] = field(default_factory=list)
    text: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = ""
    latency_ms: float = 0.0

    @property
    def tool_call(self) -> ToolCall | None:
        """The first tool call, or ``None`` for a text-only answer."""
        return self.tool_calls[0] if self.tool_calls else None


@dataclass
class GenerationAttempt:
    """One request/response cycle as seen by the engine.

    Attributes:
        purpose: ``"planning"``, ``"action"`` or ``"validation"``.
        message_count: Number of transcript messages sent.
        response: The response, when the call succeeded.
        error: Error string, when the call failed.
    """

    purpose: str
    message_count: int
    response: GenerationResponse | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.response is not None
