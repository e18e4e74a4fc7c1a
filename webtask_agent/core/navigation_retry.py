"""Navigation retry policy and retrying navigator.

Page loads fail transiently far more often than element actions: slow
servers time out and flaky networks refuse connections.  The
``NavigationRetryPolicy`` holds the pure timeout/backoff math; the
``Navigator`` applies it around ``BrowserInterface.goto``:

* attempt ``n`` (1-based) uses ``timeout(n) = min(base * multiplier**(n-1),
  max)`` milliseconds;
* timeouts and transient network errors are retried until
  ``max_attempts`` is reached; any other error propagates unchanged;
* each timed-out attempt publishes ``browser:network_timeout``;
* exhaustion raises ``NavigationTimeoutError`` or
  ``NavigationNetworkError`` carrying the URL, attempt counts, and the
  timeout or network error, so the agent can explain the failure to the
  model.

Typical usage::

    policy = NavigationRetryPolicy.from_settings(settings)
    navigator = Navigator(browser, policy, bus)
    attempt = await navigator.goto("https://example.com")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import (
    BrowserDisconnectedError,
    NavigationNetworkError,
    NavigationTimeoutError,
)
from webtask_agent.core.event_bus import EventBus
from webtask_agent.models.events import (
    BrowserNavigatedPayload,
    BrowserNetworkTimeoutPayload,
    EventType,
)
from webtask_agent.models.page import NavigationAttempt, NavigationOutcome
from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)

# Substrings identifying transient network failures in driver messages.
_NETWORK_ERROR_MARKERS: tuple[str, ...] = (
    "net::ERR_CONNECTION_REFUSED",
    "net::ERR_CONNECTION_RESET",
    "net::ERR_CONNECTION_CLOSED",
    "net::ERR_CONNECTION_TIMED_OUT",
    "net::ERR_NAME_NOT_RESOLVED",
    "net::ERR_INTERNET_DISCONNECTED",
    "net::ERR_NETWORK_CHANGED",
    "net::ERR_ADDRESS_UNREACHABLE",
    "ECONNREFUSED",
    "ECONNRESET",
    "ENOTFOUND",
    "EAI_AGAIN",
)

RetryCallback = Callable[[int, BaseException], None]


@dataclass(frozen=True)
class NavigationRetryPolicy:
    """Timeout and retry configuration for page navigation.

    Attributes:
        base_timeout_ms: Timeout of the first attempt.
        max_timeout_ms: Upper bound on any attempt's timeout.
        max_attempts: Total attempts, including the first.
        timeout_multiplier: Growth factor between attempts.
    """

    base_timeout_ms: int = 30000
    max_timeout_ms: int = 120000
    max_attempts: int = 3
    timeout_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> NavigationRetryPolicy:
        return cls(
            base_timeout_ms=settings.navigation_base_timeout_ms,
            max_timeout_ms=settings.navigation_max_timeout_ms,
            max_attempts=settings.navigation_max_attempts,
            timeout_multiplier=settings.navigation_timeout_multiplier,
        )

    def timeout_for(self, attempt: int) -> int:
        """Timeout in milliseconds for the 1-based *attempt*.

        Raises:
            ValueError: If *attempt* is less than 1.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        timeout = self.base_timeout_ms * self.timeout_multiplier ** (attempt - 1)
        return min(round(timeout), self.max_timeout_ms)

    def should_retry(self, attempt: int, outcome: NavigationOutcome) -> bool:
        """Whether a failed *attempt* with *outcome* is followed by another."""
        if outcome not in (NavigationOutcome.TIMEOUT, NavigationOutcome.NETWORK_ERROR):
            return False
        return attempt < self.max_attempts


def classify_navigation_error(exc: BaseException) -> NavigationOutcome:
    """Map a ``goto`` failure to a navigation outcome.

    Disconnection is never classified as retryable here: reconnecting
    is the job of the endpoint failover, not of the page-load retry.
    """
    if isinstance(exc, BrowserDisconnectedError):
        return NavigationOutcome.ERROR
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return NavigationOutcome.TIMEOUT
    message = str(exc)
    if "timeout" in message.lower():
        return NavigationOutcome.TIMEOUT
    if isinstance(exc, ConnectionError):
        return NavigationOutcome.NETWORK_ERROR
    if any(marker in message for marker in _NETWORK_ERROR_MARKERS):
        return NavigationOutcome.NETWORK_ERROR
    return NavigationOutcome.ERROR


class Navigator:
    """Navigates a browser with per-attempt timeouts and retries.

    Args:
        browser: The browser to drive.
        policy: Timeout and retry configuration.
        bus: Bus receiving navigation events.
        on_retry: Optional callback invoked with ``(attempt, error)``
            before each retry.
    """

    def __init__(
        self,
        browser: BrowserInterface,
        policy: NavigationRetryPolicy,
        bus: EventBus,
        on_retry: RetryCallback | None = None,
    ) -> None:
        self._browser = browser
        self._policy = policy
        self._bus = bus
        self._on_retry = on_retry

    @property
    def policy(self) -> NavigationRetryPolicy:
        return self._policy

    async def goto(self, url: str, iteration_id: str = "") -> NavigationAttempt:
        """Load *url*, retrying timeouts and transient network errors.

        Args:
            url: Destination URL.
            iteration_id: Iteration stamped on published events.

        Returns:
            The successful ``NavigationAttempt``.

        Raises:
            NavigationTimeoutError: Every attempt timed out (or the
                last one did after earlier network errors).
            NavigationNetworkError: The last attempt failed with a
                transient network error.
            Exception: Any non-retryable driver error, unchanged.
        """
        attempt_no = 1
        while True:
            attempt = NavigationAttempt(
                url=url,
                attempt=attempt_no,
                timeout_ms=self._policy.timeout_for(attempt_no),
            )
            try:
                await self._browser.goto(url, timeout_ms=attempt.timeout_ms)
            except Exception as exc:
                attempt.outcome = classify_navigation_error(exc)
                attempt.error = str(exc)
                if attempt.outcome is NavigationOutcome.ERROR:
                    raise

                if attempt.outcome is NavigationOutcome.TIMEOUT:
                    self._bus.publish(
                        EventType.BROWSER_NETWORK_TIMEOUT,
                        BrowserNetworkTimeoutPayload(
                            action="goto",
                            url=url,
                            attempt=attempt_no,
                            timeout_ms=attempt.timeout_ms,
                        ),
                        iteration_id,
                    )

                if not self._policy.should_retry(attempt_no, attempt.outcome):
                    logger.warning(
                        "Navigation to %s failed after %d attempts: %s",
                        url,
                        attempt_no,
                        attempt.error,
                    )
                    raise self._exhausted(attempt) from exc

                logger.info(
                    "Navigation to %s attempt %d/%d failed (%s); retrying",
                    url,
                    attempt_no,
                    self._policy.max_attempts,
                    attempt.outcome.value,
                )
                if self._on_retry is not None:
                    self._on_retry(attempt_no, exc)
                attempt_no += 1
                continue

            attempt.outcome = NavigationOutcome.SUCCESS
            title = await self._browser.get_title()
            self._bus.publish(
                EventType.BROWSER_NAVIGATED,
                BrowserNavigatedPayload(url=url, title=title),
                iteration_id,
            )
            return attempt

    def _exhausted(self, attempt: NavigationAttempt) -> Exception:
        if attempt.outcome is NavigationOutcome.TIMEOUT:
            return NavigationTimeoutError(
                url=attempt.url,
                timeout_ms=attempt.timeout_ms,
                attempt=attempt.attempt,
                max_attempts=self._policy.max_attempts,
            )
        return NavigationNetworkError(
            url=attempt.url,
            network_error=attempt.error,
            attempt=attempt.attempt,
            max_attempts=self._policy.max_attempts,
        )
