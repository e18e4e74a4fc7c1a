"""Tests for the StepExecutor."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from fakes import FakeBrowser, ScriptedModel, text_response

from webtask_agent.config.settings import Settings, get_default_settings
from webtask_agent.core.errors import (
    BrowserActionError,
    BrowserDisconnectedError,
    ModelCallError,
    NavigationTimeoutError,
    StaleRefError,
)
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.navigation_retry import NavigationRetryPolicy, Navigator
from webtask_agent.core.page_extractor import PageExtractor
from webtask_agent.core.search import SearchProvider, SearchService
from webtask_agent.core.step_executor import StepExecutor, StepResult
from webtask_agent.models.actions import Action, ActionType
from webtask_agent.models.events import Event, EventType
from webtask_agent.platform.interface import BrowserInterface

# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return replace(get_default_settings(), navigation_base_timeout_ms=100)


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser(url="https://example.com/")


@pytest.fixture
def events() -> list[Event]:
    return []


@pytest.fixture
def executor(browser: FakeBrowser, settings: Settings, events: list[Event]) -> StepExecutor:
    bus = EventBus(task_id="t")
    bus.subscribe(None, events.append)
    navigator = Navigator(browser, NavigationRetryPolicy.from_settings(settings), bus)
    return StepExecutor(browser, navigator, bus, settings)


def _run(executor: StepExecutor, action: Action) -> StepResult:
    return asyncio.run(executor.execute(action, "t-1"))


def _types(events: list[Event]) -> list[EventType]:
    return [e.type for e in events]


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------


class TestDispatch:
    """Each action reaches the right browser capability."""

    def test_click(self, executor: StepExecutor, browser: FakeBrowser) -> None:
        """Clicks go through perform_action without a value."""
        result = _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert result.success
        assert browser.called("perform_action") == [
            ("perform_action", "e3", ActionType.CLICK, None)
        ]

    def test_fill_passes_value(self, executor: StepExecutor, browser: FakeBrowser) -> None:
        _run(executor, Action(type=ActionType.FILL, ref="e2", value="hello"))
        assert browser.called("perform_action")[0][3] == "hello"

    def test_hover_has_no_value(self, executor: StepExecutor, browser: FakeBrowser) -> None:
        _run(executor, Action(type=ActionType.HOVER, ref="e2", value="ignored"))
        assert browser.called("perform_action")[0][3] is None

    def test_goto_uses_navigator(self, executor: StepExecutor, browser: FakeBrowser) -> None:
        """goto is sent with the policy's first timeout."""
        _run(executor, Action(type=ActionType.GOTO, url="https://example.com/plans"))
        assert browser.called("goto") == [("goto", "https://example.com/plans", 100)]

    def test_back_publishes_navigated(
        self, executor: StepExecutor, browser: FakeBrowser, events: list[Event]
    ) -> None:
        _run(executor, Action(type=ActionType.BACK))
        assert browser.called("go_back")
        assert EventType.BROWSER_NAVIGATED in _types(events)

    def test_wait_sleeps(self, executor: StepExecutor, events: list[Event]) -> None:
        """wait publishes agent:waiting."""
        result = _run(executor, Action(type=ActionType.WAIT, seconds=0))
        assert result.success
        assert EventType.AGENT_WAITING in _types(events)

    def test_terminal_actions_skip_browser(
        self, executor: StepExecutor, browser: FakeBrowser
    ) -> None:
        """done never touches the browser."""
        assert _run(executor, Action(type=ActionType.DONE, text="42")).success
        assert browser.calls == []


# ------------------------------------------------------------------
# Events and network idle
# ------------------------------------------------------------------


class TestEvents:
    """Events published around an action."""

    def test_event_order(self, executor: StepExecutor, events: list[Event]) -> None:
        """Action, started, network wait, completed."""
        _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert _types(events) == [
            EventType.AGENT_ACTION,
            EventType.BROWSER_ACTION_STARTED,
            EventType.BROWSER_NETWORK_WAITING,
            EventType.BROWSER_ACTION_COMPLETED,
        ]
        assert events[-1].payload.success is True
        assert all(e.iteration_id == "t-1" for e in events)

    def test_no_idle_wait_for_hover(
        self, executor: StepExecutor, browser: FakeBrowser
    ) -> None:
        """Only page-changing actions wait for network idle."""
        _run(executor, Action(type=ActionType.HOVER, ref="e1"))
        assert browser.called("wait_for_load_state") == []

    def test_idle_timeout_is_not_an_error(
        self, executor: StepExecutor, browser: FakeBrowser, events: list[Event]
    ) -> None:
        """A network-idle timeout is reported but the step succeeds."""
        browser.load_state_error = TimeoutError("still busy")
        result = _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert result.success
        assert EventType.BROWSER_NETWORK_TIMEOUT in _types(events)

    def test_idle_disabled(self, browser: FakeBrowser) -> None:
        """A zero idle timeout skips the wait."""
        settings = replace(get_default_settings(), network_idle_timeout_ms=0)
        bus = EventBus()
        navigator = Navigator(browser, NavigationRetryPolicy(), bus)
        executor = StepExecutor(browser, navigator, bus, settings)
        _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert browser.called("wait_for_load_state") == []


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


class TestFailures:
    """Failures are returned, never raised."""

    def test_recoverable_error_kept(
        self, executor: StepExecutor, browser: FakeBrowser, events: list[Event]
    ) -> None:
        """Typed browser errors are passed through unchanged."""
        browser.action_errors = [StaleRefError("e3")]
        result = _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert not result.success
        assert isinstance(result.error, StaleRefError)
        assert events[-1].payload.success is False
        assert "e3" in events[-1].payload.error

    def test_unexpected_error_wrapped(
        self, executor: StepExecutor, browser: FakeBrowser
    ) -> None:
        """Driver exceptions become BrowserActionError."""
        browser.action_errors = [RuntimeError("element is covered")]
        result = _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert isinstance(result.error, BrowserActionError)
        assert "element is covered" in str(result.error)
        assert isinstance(result.error.__cause__, RuntimeError)

    def test_navigation_exhaustion(
        self, executor: StepExecutor, browser: FakeBrowser
    ) -> None:
        """An unreachable URL is a NavigationTimeoutError result."""
        browser.goto_errors = [TimeoutError("slow")] * 3
        result = _run(executor, Action(type=ActionType.GOTO, url="https://slow.example"))
        assert isinstance(result.error, NavigationTimeoutError)

    def test_disconnect_during_idle_wait(
        self, executor: StepExecutor, browser: FakeBrowser
    ) -> None:
        """A lost connection while waiting fails the step."""
        browser.load_state_error = BrowserDisconnectedError("Target closed")
        result = _run(executor, Action(type=ActionType.CLICK, ref="e3"))
        assert isinstance(result.error, BrowserDisconnectedError)


# ------------------------------------------------------------------
# Composite and reading actions
# ------------------------------------------------------------------


class _Search(SearchProvider):
    name = "Canned"

    async def search(self, query: str, browser: BrowserInterface | None = None) -> str:
        return f"results for {query}"


def _reading_executor(
    browser: FakeBrowser,
    settings: Settings,
    events: list[Event],
    model: ScriptedModel,
    search: SearchService | None = None,
) -> StepExecutor:
    bus = EventBus(task_id="t")
    bus.subscribe(None, events.append)
    navigator = Navigator(browser, NavigationRetryPolicy.from_settings(settings), bus)
    return StepExecutor(
        browser,
        navigator,
        bus,
        settings,
        extractor=PageExtractor(model, bus, settings),
        search=search,
    )


class TestReadingActions:
    """fill_and_enter, extract and web_search."""

    def test_fill_and_enter(self, executor: StepExecutor, browser: FakeBrowser) -> None:
        """The value is filled, then Enter is pressed on the same ref."""
        result = _run(executor, Action(type=ActionType.FILL_AND_ENTER, ref="e4", value="q"))
        assert result.success
        assert [c[1:] for c in browser.called("perform_action")] == [
            ("e4", ActionType.FILL, "q"),
            ("e4", ActionType.ENTER, None),
        ]

    def test_fill_and_enter_waits_for_idle(
        self, browser: FakeBrowser, settings: Settings, events: list[Event]
    ) -> None:
        executor = _reading_executor(
            browser, replace(settings, network_idle_timeout_ms=500), events, ScriptedModel()
        )
        _run(executor, Action(type=ActionType.FILL_AND_ENTER, ref="e4", value="q"))
        assert browser.called("wait_for_load_state") == [
            ("wait_for_load_state", "networkidle", 500)
        ]

    def test_extract_output(
        self, browser: FakeBrowser, settings: Settings, events: list[Event]
    ) -> None:
        """extract reads the page and returns the model's text."""
        model = ScriptedModel(extractions=[text_response("Basic: $9")])
        executor = _reading_executor(browser, settings, events, model)
        result = _run(executor, Action(type=ActionType.EXTRACT, value="plan prices"))

        assert result.success
        assert result.output == "Basic: $9"
        assert browser.called("snapshot") == [("snapshot",)]
        assert browser.called("wait_for_load_state") == []
        assert EventType.AGENT_EXTRACTED in _types(events)

    def test_extract_model_error_propagates(
        self, browser: FakeBrowser, settings: Settings, events: list[Event]
    ) -> None:
        """A failed extraction call is raised after action_completed."""
        model = ScriptedModel(extractions=[ModelCallError("HTTP 500", 500)])
        executor = _reading_executor(browser, settings, events, model)
        with pytest.raises(ModelCallError):
            _run(executor, Action(type=ActionType.EXTRACT, value="prices"))
        completed = [e for e in events if e.type is EventType.BROWSER_ACTION_COMPLETED]
        assert not completed[0].payload.success

    def test_extract_without_extractor(self, executor: StepExecutor) -> None:
        result = _run(executor, Action(type=ActionType.EXTRACT, value="prices"))
        assert isinstance(result.error, BrowserActionError)

    def test_web_search_output(
        self, browser: FakeBrowser, settings: Settings, events: list[Event]
    ) -> None:
        search = SearchService(_Search(), browser)
        executor = _reading_executor(browser, settings, events, ScriptedModel(), search)
        result = _run(executor, Action(type=ActionType.WEB_SEARCH, value="library hours"))
        assert result.success
        assert result.output.startswith("results for library hours")

    def test_web_search_disabled(self, executor: StepExecutor) -> None:
        """Without a search service the call fails as feedback."""
        result = _run(executor, Action(type=ActionType.WEB_SEARCH, value="x"))
        assert not result.success
        assert "not enabled" in str(result.error)
