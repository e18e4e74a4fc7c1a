"""Tests for the navigation retry policy and the retrying Navigator."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fakes import FakeBrowser

from webtask_agent.config.settings import get_default_settings
from webtask_agent.core.errors import (
    BrowserDisconnectedError,
    NavigationNetworkError,
    NavigationTimeoutError,
)
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.navigation_retry import (
    NavigationRetryPolicy,
    Navigator,
    classify_navigation_error,
)
from webtask_agent.models.events import Event, EventType
from webtask_agent.models.page import NavigationOutcome

# ------------------------------------------------------------------
# Policy
# ------------------------------------------------------------------


class TestNavigationRetryPolicy:
    """Pure timeout and retry math."""

    def test_timeouts_grow_geometrically(self) -> None:
        """Defaults give 30s, 60s, 120s."""
        policy = NavigationRetryPolicy()
        assert [policy.timeout_for(n) for n in (1, 2, 3)] == [30000, 60000, 120000]

    def test_timeouts_capped(self) -> None:
        """No timeout exceeds max_timeout_ms."""
        policy = NavigationRetryPolicy(max_timeout_ms=50000)
        assert policy.timeout_for(2) == 50000
        assert policy.timeout_for(10) == 50000

    def test_timeouts_monotonic(self) -> None:
        """Later attempts never get a shorter timeout."""
        policy = NavigationRetryPolicy(base_timeout_ms=1000, timeout_multiplier=1.5)
        timeouts = [policy.timeout_for(n) for n in range(1, 12)]
        assert timeouts == sorted(timeouts)
        assert max(timeouts) <= policy.max_timeout_ms

    def test_attempt_must_be_positive(self) -> None:
        """Attempt numbers are 1-based."""
        with pytest.raises(ValueError):
            NavigationRetryPolicy().timeout_for(0)

    def test_should_retry_transient_until_exhausted(self) -> None:
        """Timeouts and network errors retry until the last attempt."""
        policy = NavigationRetryPolicy(max_attempts=3)
        assert policy.should_retry(1, NavigationOutcome.TIMEOUT)
        assert policy.should_retry(2, NavigationOutcome.NETWORK_ERROR)
        assert not policy.should_retry(3, NavigationOutcome.TIMEOUT)

    def test_other_errors_never_retried(self) -> None:
        """ERROR outcomes are not retried."""
        assert not NavigationRetryPolicy().should_retry(1, NavigationOutcome.ERROR)

    def test_from_settings(self) -> None:
        """The policy mirrors the navigation settings."""
        policy = NavigationRetryPolicy.from_settings(get_default_settings())
        assert policy.max_attempts == 3
        assert policy.base_timeout_ms == 30000


class TestClassifyNavigationError:
    """Mapping driver failures to outcomes."""

    def test_timeout_error(self) -> None:
        assert classify_navigation_error(TimeoutError()) is NavigationOutcome.TIMEOUT

    def test_timeout_in_message(self) -> None:
        """Driver messages mentioning a timeout count as timeouts."""
        exc = RuntimeError("Navigation Timeout Exceeded: 30000ms")
        assert classify_navigation_error(exc) is NavigationOutcome.TIMEOUT

    def test_network_marker(self) -> None:
        exc = RuntimeError("net::ERR_CONNECTION_REFUSED at https://a")
        assert classify_navigation_error(exc) is NavigationOutcome.NETWORK_ERROR

    def test_disconnect_is_not_retryable(self) -> None:
        """A lost browser is handled by failover, not page-load retry."""
        exc = BrowserDisconnectedError("Target closed")
        assert classify_navigation_error(exc) is NavigationOutcome.ERROR

    def test_other_error(self) -> None:
        assert classify_navigation_error(ValueError("bad url")) is NavigationOutcome.ERROR


# ------------------------------------------------------------------
# Navigator
# ------------------------------------------------------------------


def _navigator(browser: FakeBrowser, max_attempts: int = 3) -> tuple[Navigator, list[Event]]:
    bus = EventBus(task_id="t")
    timeouts: list[Event] = []
    bus.subscribe(EventType.BROWSER_NETWORK_TIMEOUT, timeouts.append)
    policy = NavigationRetryPolicy(base_timeout_ms=1000, max_attempts=max_attempts)
    return Navigator(browser, policy, bus), timeouts


class TestNavigator:
    """Retrying goto."""

    def test_succeeds_first_time(self) -> None:
        """A clean load uses one attempt."""
        browser = FakeBrowser()
        navigator, timeouts = _navigator(browser)
        attempt = asyncio.run(navigator.goto("https://example.com"))
        assert attempt.outcome is NavigationOutcome.SUCCESS
        assert attempt.attempt == 1
        assert timeouts == []

    def test_two_timeouts_then_success(self) -> None:
        """Timeouts on attempts 1 and 2 then success give 2 timeout events."""
        browser = FakeBrowser()
        browser.goto_errors = [TimeoutError("slow"), TimeoutError("slow")]
        navigator, timeouts = _navigator(browser)

        attempt = asyncio.run(navigator.goto("https://example.com", "t-1"))

        assert attempt.outcome is NavigationOutcome.SUCCESS
        assert attempt.attempt == 3
        assert len(timeouts) == 2
        assert [e.payload.attempt for e in timeouts] == [1, 2]
        assert [c[2] for c in browser.called("goto")] == [1000, 2000, 4000]

    def test_timeouts_exhausted(self) -> None:
        """Three timeouts raise NavigationTimeoutError with details."""
        browser = FakeBrowser()
        browser.goto_errors = [TimeoutError("slow")] * 3
        navigator, timeouts = _navigator(browser)

        with pytest.raises(NavigationTimeoutError) as info:
            asyncio.run(navigator.goto("https://example.com"))

        assert info.value.attempt == 3
        assert info.value.max_attempts == 3
        assert info.value.timeout_ms == 4000
        assert "https://example.com" in str(info.value)
        assert len(timeouts) == 3

    def test_network_errors_exhausted(self) -> None:
        """Network errors exhaust into NavigationNetworkError."""
        browser = FakeBrowser()
        browser.goto_errors = [ConnectionError("ECONNRESET")] * 2
        navigator, timeouts = _navigator(browser, max_attempts=2)

        with pytest.raises(NavigationNetworkError) as info:
            asyncio.run(navigator.goto("https://example.com"))

        assert "ECONNRESET" in info.value.network_error
        assert timeouts == []

    def test_non_retryable_error_propagates(self) -> None:
        """Other errors are raised unchanged after one attempt."""
        browser = FakeBrowser()
        browser.goto_errors = [ValueError("invalid url")]
        navigator, _ = _navigator(browser)

        with pytest.raises(ValueError):
            asyncio.run(navigator.goto("nota url"))
        assert len(browser.called("goto")) == 1

    def test_on_retry_callback(self) -> None:
        """The callback sees each retried attempt."""
        browser = FakeBrowser()
        browser.goto_errors = [TimeoutError("slow")]
        on_retry = MagicMock()
        navigator = Navigator(
            browser,
            NavigationRetryPolicy(base_timeout_ms=10),
            EventBus(),
            on_retry=on_retry,
        )
        asyncio.run(navigator.goto("https://example.com"))
        on_retry.assert_called_once()
        attempt, exc = on_retry.call_args.args
        assert attempt == 1
        assert isinstance(exc, TimeoutError)

    def test_navigated_event(self) -> None:
        """Success publishes browser:navigated with the title."""
        browser = FakeBrowser(title="Example Domain")
        navigator, _ = _navigator(browser)
        seen: list[Event] = []
        navigator._bus.subscribe(EventType.BROWSER_NAVIGATED, seen.append)
        asyncio.run(navigator.goto("https://example.com"))
        assert seen[0].payload.title == "Example Domain"
