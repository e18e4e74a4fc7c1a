"""Model-call capability contract and its Anthropic implementation.

The Director talks to the language model only through ``ModelClient``:
a request carries the transcript and the tools the model may call; the
response carries at most a few tool calls, optional text, and token
usage.  Failures are raised as ``ModelCallError``.

``AnthropicModelClient`` implements the contract over the Anthropic
Messages API with ``httpx``.  It converts the provider-neutral
transcript (see ``webtask_agent.models.generation``) into Messages API
content blocks, retries transient failures with exponential back-off,
and maps ``tool_use`` blocks back to ``ToolCall`` objects.

Typical usage::

    from webtask_agent.config.settings import get_default_settings
    from webtask_agent.core.model_client import AnthropicModelClient

    client = AnthropicModelClient(get_default_settings(), api_key="sk-ant-...")
    response = await client.generate(request)
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import ModelCallError, ToolCallDecodeError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.tool_calls import parse_arguments
from webtask_agent.models.events import (
    AgentProcessingPayload,
    AIGenerationErrorPayload,
    AIGenerationPayload,
    EventType,
)
from webtask_agent.models.generation import (
    GenerationRequest,
    GenerationResponse,
    TokenUsage,
    ToolCall,
)

logger = logging.getLogger(__name__)

# Anthropic Messages API endpoint.
_API_URL: str = "https://api.anthropic.com/v1/messages"

# Anthropic API version header.
_API_VERSION: str = "2023-06-01"


class ModelClient(ABC):
    """Abstract language-model client."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run one generation.

        Args:
            request: Transcript, tools, and generation options.

        Returns:
            The model's response.  It may contain no tool call even
            when one was required; callers must check.

        Raises:
            ModelCallError: The request failed after any retries.
        """


# ------------------------------------------------------------------
# Anthropic implementation
# ------------------------------------------------------------------


class AnthropicModelClient(ModelClient):
    """``ModelClient`` backed by the Anthropic Messages API.

    All configuration is injected via the ``Settings`` dataclass and
    the API key parameter -- there is no global state.
    """

    def __init__(
        self,
        settings: Settings,
        api_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialise with settings and optional API key.

        Args:
            settings: Application settings controlling the model name,
                timeouts, retry counts, and back-off parameters.
            api_key: Anthropic API key.  If empty, the value of the
                ``ANTHROPIC_API_KEY`` environment variable is used.
                A missing key is not an error at construction time
                (useful for tests), but ``generate`` will fail.
            transport: Optional httpx transport, e.g. a
                ``httpx.MockTransport`` in tests.
        """
        self._settings = settings
        self._api_key: str = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self._transport = transport

    # -- Payload construction ---------------------------------------

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        """Build the Messages API payload for *request*.

        Returns:
            A dictionary matching the Anthropic Messages API schema.
        """
        payload: dict[str, Any] = {
            "model": self._settings.api_model,
            "max_tokens": request.max_tokens or self._settings.api_max_tokens,
            "messages": self._convert_messages(request.messages),
        }
        if request.system:
            payload["system"] = request.system
        if request.tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in request.tools
            ]
            payload["tool_choice"] = {"type": "any" if request.require_tool else "auto"}
        return payload

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Translate the neutral transcript into Messages API turns.

        Tool results become ``tool_result`` blocks in a user turn, and
        consecutive turns of the same role are merged because the API
        requires strict user/assistant alternation.
        """
        converted: list[dict[str, Any]] = []
        for message in messages:
            role = message["role"]
            blocks: list[dict[str, Any]] = []

            if role == "tool":
                role = "user"
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": message["tool_call_id"],
                        "content": message.get("content", ""),
                    }
                )
            else:
                image = message.get("image")
                if image:
                    blocks.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/jpeg",
                                "data": base64.b64encode(image).decode("ascii"),
                            },
                        }
                    )
                if message.get("content"):
                    blocks.append({"type": "text", "text": message["content"]})
                call = message.get("tool_call")
                if call:
                    try:
                        arguments = parse_arguments(call["arguments"])
                    except ToolCallDecodeError:
                        arguments = {}
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call["id"],
                            "name": call["name"],
                            "input": arguments,
                        }
                    )

            if not blocks:
                continue
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})
        return converted

    # -- Generation -------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Call the Messages API with retry and exponential back-off.

        Server errors (5xx), rate limiting (429), transport errors and
        malformed success bodies are retried up to ``api_max_retries``
        attempts in total; other client errors fail immediately.
        """
        if not self._api_key:
            raise ModelCallError("No API key configured.", status_code=401)

        payload = self.build_payload(request)
        headers = self._build_headers()
        timeout = httpx.Timeout(self._settings.api_timeout_seconds, connect=10.0)

        last_error = ""
        last_status: int | None = None
        retries = self._settings.api_max_retries

        for attempt in range(retries):
            start_ns = time.monotonic_ns()
            try:
                async with httpx.AsyncClient(
                    timeout=timeout,
                    transport=self._transport,
                ) as client:
                    http_resp = await client.post(
                        _API_URL,
                        headers=headers,
                        json=payload,
                    )
                elapsed_ms = (time.monotonic_ns() - start_ns) / 1_000_000

                if http_resp.status_code == 200:
                    try:
                        return self._handle_success(http_resp, elapsed_ms)
                    except ValueError as exc:
                        # A garbled success body is retried like a 5xx.
                        last_status = None
                        last_error = f"Malformed response body: {exc}"
                        logger.warning(
                            "Model: attempt %d/%d failed: %s",
                            attempt + 1,
                            retries,
                            last_error,
                        )
                        if attempt < retries - 1:
                            await asyncio.sleep(
                                self._settings.api_backoff_base_seconds * (2**attempt)
                            )
                        continue

                last_status = http_resp.status_code
                last_error = f"HTTP {http_resp.status_code}: {http_resp.text[:200]}"
                logger.warning(
                    "Model: attempt %d/%d failed: %s",
                    attempt + 1,
                    retries,
                    last_error,
                )

                # Only retry on transient server errors and rate limits.
                if http_resp.status_code < 500 and http_resp.status_code != 429:
                    break

            except httpx.HTTPError as exc:
                last_status = None
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Model: attempt %d/%d error: %s",
                    attempt + 1,
                    retries,
                    last_error,
                )

            # Exponential back-off before next attempt.
            if attempt < retries - 1:
                delay = self._settings.api_backoff_base_seconds * (2**attempt)
                await asyncio.sleep(delay)

        raise ModelCallError(last_error or "Model request failed", last_status)

    # -- Private helpers --------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        """Build HTTP headers for the Anthropic Messages API.

        Returns:
            A dict of header name-value pairs.
        """
        return {
            "x-api-key": self._api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

    @staticmethod
    def _handle_success(
        http_resp: httpx.Response,
        elapsed_ms: float,
    ) -> GenerationResponse:
        """Extract tool calls, text, and usage from a 200 response.

        Args:
            http_resp: The ``httpx.Response`` with status 200.
            elapsed_ms: Request round-trip time in milliseconds.

        Returns:
            A populated ``GenerationResponse``.

        Raises:
            ValueError: The body is not JSON or does not have the
                Messages API shape.
        """
        body = http_resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"expected a JSON object, got {type(body).__name__}")
        content = body.get("content") or []
        if not isinstance(content, list) or not all(isinstance(b, dict) for b in content):
            raise ValueError("'content' is not a list of blocks")
        usage = body.get("usage") or {}
        if not isinstance(usage, dict):
            raise ValueError("'usage' is not an object")

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in content:
            if block.get("type") == "text":
                texts.append(str(block.get("text") or ""))
            elif block.get("type") == "tool_use":
                calls.append(
                    ToolCall(
                        name=block.get("name", ""),
                        arguments=block.get("input", {}),
                        id=block.get("id", ""),
                    )
                )

        # Usage metadata is optional; missing counts stay None.
        return GenerationResponse(
            tool_calls=calls,
            text="\n".join(t for t in texts if t),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens"),
                output_tokens=usage.get("output_tokens"),
            ),
            finish_reason=body.get("stop_reason") or "",
            latency_ms=elapsed_ms,
        )


# ------------------------------------------------------------------
# Instrumented calls
# ------------------------------------------------------------------


async def generate_with_events(
    model: ModelClient,
    bus: EventBus,
    request: GenerationRequest,
    purpose: str,
    iteration_id: str = "",
) -> GenerationResponse:
    """Call *model* and publish the matching generation events.

    Publishes ``agent:processing`` before the call, then either
    ``ai:generation`` (with token usage) or ``ai:generation:error``.

    Args:
        model: Client to call.
        bus: Bus receiving the events.
        request: The generation request.
        purpose: ``"planning"``, ``"action"`` or ``"validation"``.
        iteration_id: Iteration stamped on the events.

    Returns:
        The model's response.

    Raises:
        ModelCallError: Propagated from the client after the error
            event is published.
    """
    bus.publish(
        EventType.AGENT_PROCESSING,
        AgentProcessingPayload(
            purpose=purpose,
            message_count=len(request.messages),
            has_screenshot=any(m.get("image") for m in request.messages),
        ),
        iteration_id,
    )
    try:
        response = await model.generate(request)
    except ModelCallError as exc:
        bus.publish(
            EventType.AI_GENERATION_ERROR,
            AIGenerationErrorPayload(
                purpose=purpose,
                error=str(exc),
                status_code=exc.status_code,
            ),
            iteration_id,
        )
        raise

    call = response.tool_call
    bus.publish(
        EventType.AI_GENERATION,
        AIGenerationPayload(
            purpose=purpose,
            tool_name=call.name if call else "",
            text=response.text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.finish_reason,
            latency_ms=response.latency_ms,
        ),
        iteration_id,
    )
    return response
