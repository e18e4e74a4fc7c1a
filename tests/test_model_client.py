"""Tests for the Anthropic model client and instrumented generation.

HTTP traffic is served by ``httpx.MockTransport``; no network access is
needed.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any

import httpx
import pytest
from fakes import ScriptedModel, tool_response

from webtask_agent.config.settings import Settings, get_default_settings
from webtask_agent.core.errors import ModelCallError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.model_client import AnthropicModelClient, generate_with_events
from webtask_agent.core.tool_calls import ACTION_TOOLS
from webtask_agent.models.events import Event, EventType
from webtask_agent.models.generation import GenerationRequest

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_TOOL_USE_BODY: dict[str, Any] = {
    "content": [
        {"type": "text", "text": "The price is in the table."},
        {"type": "tool_use", "id": "toolu_01", "name": "click", "input": {"ref": "e3"}},
    ],
    "stop_reason": "tool_use",
    "usage": {"input_tokens": 1200, "output_tokens": 45},
}


@pytest.fixture
def settings() -> Settings:
    return replace(get_default_settings(), api_backoff_base_seconds=0.0)


def _client(
    settings: Settings,
    responses: list[httpx.Response],
    sent: list[httpx.Request] | None = None,
) -> AnthropicModelClient:
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if sent is not None:
            sent.append(request)
        return queue.pop(0)

    return AnthropicModelClient(
        settings, api_key="sk-test", transport=httpx.MockTransport(handler)
    )


def _request(**kwargs: Any) -> GenerationRequest:
    return GenerationRequest(
        messages=[{"role": "user", "content": "Find the price"}],
        tools=list(ACTION_TOOLS),
        **kwargs,
    )


# ------------------------------------------------------------------
# Payload construction
# ------------------------------------------------------------------


class TestBuildPayload:
    """Conversion of the neutral request into the Messages API schema."""

    def test_tools_and_choice(self, settings: Settings) -> None:
        """Tools are sent with input_schema and tool_choice any."""
        payload = AnthropicModelClient(settings, "k").build_payload(_request(system="sys"))
        assert payload["system"] == "sys"
        assert payload["tool_choice"] == {"type": "any"}
        assert payload["tools"][0]["input_schema"]["type"] == "object"
        assert payload["max_tokens"] == settings.api_max_tokens

    def test_tool_result_turns(self, settings: Settings) -> None:
        """Tool replies become tool_result blocks in a user turn."""
        request = GenerationRequest(
            messages=[
                {"role": "user", "content": "Task"},
                {
                    "role": "assistant",
                    "content": "",
                    "tool_call": {"id": "c1", "name": "click", "arguments": '{"ref":"e1"}'},
                },
                {"role": "tool", "tool_call_id": "c1", "content": "Action completed"},
                {"role": "user", "content": "Page: ..."},
            ]
        )
        messages = AnthropicModelClient(settings, "k").build_payload(request)["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"][0] == {
            "type": "tool_use",
            "id": "c1",
            "name": "click",
            "input": {"ref": "e1"},
        }
        # Tool result and the following user turn are merged.
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert messages[2]["content"][1] == {"type": "text", "text": "Page: ..."}

    def test_image_block(self, settings: Settings) -> None:
        """Screenshot bytes are sent as base64 JPEG."""
        request = GenerationRequest(
            messages=[{"role": "user", "content": "Page", "image": b"\xff\xd8jpeg"}]
        )
        block = AnthropicModelClient(settings, "k").build_payload(request)["messages"][0]["content"][0]
        assert block["type"] == "image"
        assert block["source"]["media_type"] == "image/jpeg"


# ------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------


class TestGenerate:
    """HTTP behaviour of generate()."""

    def test_parses_tool_use(self, settings: Settings) -> None:
        """A 200 response yields tool calls, text, and usage."""
        sent: list[httpx.Request] = []
        client = _client(settings, [httpx.Response(200, json=_TOOL_USE_BODY)], sent)
        response = asyncio.run(client.generate(_request()))

        assert response.tool_call is not None
        assert response.tool_call.name == "click"
        assert response.tool_call.arguments == {"ref": "e3"}
        assert response.tool_call.id == "toolu_01"
        assert response.text == "The price is in the table."
        assert response.usage.input_tokens == 1200
        assert response.finish_reason == "tool_use"
        assert sent[0].headers["x-api-key"] == "sk-test"
        assert json.loads(sent[0].content)["model"] == settings.api_model

    def test_missing_usage(self, settings: Settings) -> None:
        """Absent usage metadata leaves the token counts as None."""
        body = {"content": [{"type": "text", "text": "hi"}], "stop_reason": "end_turn"}
        client = _client(settings, [httpx.Response(200, json=body)])
        response = asyncio.run(client.generate(_request()))
        assert response.tool_call is None
        assert response.usage.input_tokens is None

    def test_retries_server_errors(self, settings: Settings) -> None:
        """5xx responses are retried until one succeeds."""
        client = _client(
            settings,
            [httpx.Response(529, text="overloaded"), httpx.Response(200, json=_TOOL_USE_BODY)],
        )
        response = asyncio.run(client.generate(_request()))
        assert response.tool_call is not None

    def test_gives_up_after_max_retries(self, settings: Settings) -> None:
        """Persistent 500s raise ModelCallError with the status."""
        sent: list[httpx.Request] = []
        client = _client(settings, [httpx.Response(500, text="boom") for _ in range(3)], sent)
        with pytest.raises(ModelCallError) as info:
            asyncio.run(client.generate(_request()))
        assert info.value.status_code == 500
        assert info.value.is_retryable
        assert len(sent) == settings.api_max_retries

    def test_client_error_not_retried(self, settings: Settings) -> None:
        """A 400 fails immediately."""
        sent: list[httpx.Request] = []
        client = _client(settings, [httpx.Response(400, text="bad request")], sent)
        with pytest.raises(ModelCallError) as info:
            asyncio.run(client.generate(_request()))
        assert info.value.status_code == 400
        assert not info.value.is_retryable
        assert len(sent) == 1

    def test_transport_error(self, settings: Settings) -> None:
        """Connection failures are retried, then raised without status."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = AnthropicModelClient(
            settings, api_key="sk-test", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ModelCallError) as info:
            asyncio.run(client.generate(_request()))
        assert info.value.status_code is None
        assert "ConnectError" in str(info.value)

    def test_non_json_body_retried(self, settings: Settings) -> None:
        """A 200 whose body is not JSON is retried like a server error."""
        sent: list[httpx.Request] = []
        client = _client(
            settings,
            [httpx.Response(200, text="<html>gateway</html>"), httpx.Response(200, json=_TOOL_USE_BODY)],
            sent,
        )
        response = asyncio.run(client.generate(_request()))
        assert response.tool_call is not None
        assert len(sent) == 2

    @pytest.mark.parametrize(
        "body",
        [
            ["not", "an", "object"],
            {"content": "plain text"},
            {"content": ["not a block"]},
            {"content": [], "usage": 12},
        ],
    )
    def test_malformed_body_raises_retryable(self, settings: Settings, body: Any) -> None:
        """Wrongly shaped 200 bodies end in a retryable ModelCallError."""
        sent: list[httpx.Request] = []
        client = _client(settings, [httpx.Response(200, json=body) for _ in range(3)], sent)
        with pytest.raises(ModelCallError) as info:
            asyncio.run(client.generate(_request()))
        assert info.value.status_code is None
        assert info.value.is_retryable
        assert "Malformed response body" in str(info.value)
        assert len(sent) == settings.api_max_retries

    def test_no_api_key(self, settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a key generate fails as unauthorised."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ModelCallError) as info:
            asyncio.run(AnthropicModelClient(settings).generate(_request()))
        assert info.value.status_code == 401


# ------------------------------------------------------------------
# Instrumented generation
# ------------------------------------------------------------------


class TestGenerateWithEvents:
    """Events around a model call."""

    def test_success_events(self) -> None:
        """processing then generation, with token usage."""
        bus = EventBus(task_id="t")
        events: list[Event] = []
        bus.subscribe(None, events.append)
        model = ScriptedModel(actions=[tool_response("click", ref="e1")])

        asyncio.run(generate_with_events(model, bus, _request(), "action", "t-1"))

        assert [e.type for e in events] == [EventType.AGENT_PROCESSING, EventType.AI_GENERATION]
        generation = events[1].payload
        assert generation.purpose == "action"
        assert generation.tool_name == "click"
        assert generation.input_tokens == 100
        assert events[1].iteration_id == "t-1"

    def test_error_event(self) -> None:
        """A failed call publishes ai:generation:error and re-raises."""
        bus = EventBus()
        events: list[Event] = []
        bus.subscribe(EventType.AI_GENERATION_ERROR, events.append)
        model = ScriptedModel(actions=[ModelCallError("HTTP 503", 503)])

        with pytest.raises(ModelCallError):
            asyncio.run(generate_with_events(model, bus, _request(), "action"))
        assert events[0].payload.status_code == 503
