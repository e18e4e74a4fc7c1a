"""Exception hierarchy of the web task agent.

``RecoverableError`` subclasses describe failures the agent can work
around: the Director turns them into transcript feedback and counts
them against the error budgets instead of failing the task.  The
remaining exceptions are handled at fixed points in the Director:
``ModelCallError`` around every model call, ``PlanningError`` around
planning, and ``TaskCancelledError`` around every suspension point.
"""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """Base class of all agent errors."""


class RecoverableError(AgentError):
    """A failure the agent can recover from by trying something else.

    Attributes:
        context: Structured details for logs and feedback.
    """

    is_recoverable: bool = True

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ------------------------------------------------------------------
# Browser errors
# ------------------------------------------------------------------


class BrowserError(RecoverableError):
    """Base class for errors raised by a browser driver."""


class InvalidRefError(BrowserError):
    """The ref does not exist in the latest snapshot."""

    def __init__(self, ref: str, message: str = "") -> None:
        super().__init__(
            message or f"Invalid element reference '{ref}'.",
            {"ref": ref},
        )
        self.ref = ref


class StaleRefError(BrowserError):
    """The ref pointed at an element that has since left the page."""

    def __init__(self, ref: str, message: str = "") -> None:
        super().__init__(
            message or f"Element reference '{ref}' is stale; the page has changed.",
            {"ref": ref},
        )
        self.ref = ref


class ElementNotFoundError(BrowserError):
    """The element could not be located or interacted with."""

    def __init__(self, ref: str, message: str = "") -> None:
        super().__init__(
            message or f"Element '{ref}' was not found on the page.",
            {"ref": ref},
        )
        self.ref = ref


class BrowserActionError(BrowserError):
    """A browser action failed for a reason other than a bad ref."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"Failed to {action}: {message}", {"action": action})
        self.action = action


class BrowserDisconnectedError(BrowserError):
    """The connection to the browser was lost."""


class NavigationTimeoutError(BrowserError):
    """Navigation kept timing out until attempts ran out."""

    def __init__(
        self,
        url: str,
        timeout_ms: int,
        attempt: int,
        max_attempts: int,
    ) -> None:
        super().__init__(
            f"The page at '{url}' is unreachable (timed out after "
            f"{timeout_ms}ms across {max_attempts} attempts). "
            "Try a different URL or approach.",
            {
                "url": url,
                "timeout_ms": timeout_ms,
                "attempt": attempt,
                "max_attempts": max_attempts,
            },
        )
        self.url = url
        self.timeout_ms = timeout_ms
        self.attempt = attempt
        self.max_attempts = max_attempts


class NavigationNetworkError(BrowserError):
    """Navigation kept failing with transient network errors."""

    def __init__(
        self,
        url: str,
        network_error: str,
        attempt: int,
        max_attempts: int,
    ) -> None:
        super().__init__(
            f"The page at '{url}' could not be reached ({network_error}) "
            f"after {max_attempts} attempts. Try a different URL or approach.",
            {
                "url": url,
                "network_error": network_error,
                "attempt": attempt,
                "max_attempts": max_attempts,
            },
        )
        self.url = url
        self.network_error = network_error
        self.attempt = attempt
        self.max_attempts = max_attempts


# ------------------------------------------------------------------
# Model errors
# ------------------------------------------------------------------


class ToolCallDecodeError(RecoverableError):
    """The model's output was not a usable tool call.

    Attributes:
        raw: The offending output, for feedback and events.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message, {"raw": raw[:500]})
        self.raw = raw


class ModelCallError(AgentError):
    """A model request failed after the client's own retries.

    Attributes:
        status_code: HTTP status, or ``None`` for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        """Client errors other than rate limiting will not succeed on retry."""
        if self.status_code is None:
            return "authentication" not in str(self).lower()
        return self.status_code == 429 or self.status_code >= 500


class PlanningError(AgentError):
    """No usable plan could be obtained."""


class TaskCancelledError(AgentError):
    """The caller's cancellation signal fired."""
