"""Page observations and navigation attempts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PageObservation:
    """A page snapshot used for one decision.

    Attributes:
        url: Page URL at observation time.
        title: Document title.
        raw_snapshot: Accessibility tree as returned by the browser.
        snapshot: Compressed form sent to the model.
        screenshot: JPEG bytes when vision is enabled, else ``None``.
        is_fallback: True when the snapshot could not be taken and only
            the title and URL are known.
    """

    url: str
    title: str
    raw_snapshot: str = ""
    snapshot: str = ""
    screenshot: bytes | None = None
    is_fallback: bool = False

    def render(self) -> str:
        """Format the observation as the text of a transcript turn."""
        header = f"Page: {self.title}\nURL: {self.url}\n"
        if self.is_fallback:
            return header + "(The page snapshot is unavailable; act on the URL and title.)"
        return header + "Snapshot:\n" + self.snapshot


class NavigationOutcome(Enum):
    """Result of one navigation attempt.

    Attributes:
        SUCCESS: The page loaded.
        TIMEOUT: The attempt exceeded its timeout.
        NETWORK_ERROR: A transient network failure occurred.
        ERROR: Any other failure (not retried).
    """

    SUCCESS = "success"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    ERROR = "error"


@dataclass
class NavigationAttempt:
    """One try at loading a URL.

    Attributes:
        url: Destination.
        attempt: 1-based attempt number.
        timeout_ms: Timeout used for this attempt.
        outcome: What happened.
        error: Error message when the attempt failed.
    """

    url: str
    attempt: int
    timeout_ms: int
    outcome: NavigationOutcome | None = None
    error: str = ""
