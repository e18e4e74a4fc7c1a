"""Tests for PageExtractor."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date

from fakes import DEFAULT_SNAPSHOT, ScriptedModel, text_response

from webtask_agent.config.settings import get_default_settings
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.page_extractor import NO_DATA, PageExtractor, extraction_prompt
from webtask_agent.models.events import Event, EventType


def _extractor(model: ScriptedModel, events: list[Event]) -> PageExtractor:
    bus = EventBus(task_id="t")
    bus.subscribe(None, events.append)
    settings = replace(get_default_settings(), extraction_max_tokens=1234)
    return PageExtractor(model, bus, settings)


class TestExtractionPrompt:
    def test_page_and_description(self) -> None:
        """The page is fenced and the description follows it."""
        prompt = extraction_prompt("plan prices", DEFAULT_SNAPSHOT, today=date(2026, 3, 1))
        assert "<page_content>" in prompt
        assert '[ref=e3]' in prompt
        assert "plan prices" in prompt
        assert "2026-03-01" in prompt
        assert prompt.index("</page_content>") < prompt.index("plan prices")


class TestExtract:
    """PageExtractor.extract behaviour."""

    def test_request_has_no_tools(self) -> None:
        model = ScriptedModel(extractions=[text_response("Basic: $9")])
        asyncio.run(_extractor(model, []).extract("prices", DEFAULT_SNAPSHOT))
        request = model.requests[0]
        assert request.tools == []
        assert request.max_tokens == 1234
        assert not request.require_tool

    def test_publishes_extracted(self) -> None:
        """The stripped text is returned and published."""
        events: list[Event] = []
        model = ScriptedModel(extractions=[text_response("  Basic: $9\n")])
        text = asyncio.run(_extractor(model, events).extract("prices", DEFAULT_SNAPSHOT, "t-2"))

        assert text == "Basic: $9"
        extracted = [e for e in events if e.type is EventType.AGENT_EXTRACTED]
        assert len(extracted) == 1
        assert extracted[0].payload.extracted == "Basic: $9"
        assert extracted[0].iteration_id == "t-2"

    def test_empty_text_means_no_data(self) -> None:
        model = ScriptedModel(extractions=[text_response("   ")])
        assert asyncio.run(_extractor(model, []).extract("prices", DEFAULT_SNAPSHOT)) == NO_DATA
