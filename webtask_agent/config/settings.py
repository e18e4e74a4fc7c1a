"""Configuration defaults for the web task agent.

Provides the ``Settings`` dataclass that holds every tunable parameter
for the action loop, navigation retry policy, page observation, model
API integration, remote-debugging endpoints, and session recording.

The execution engine reads these values as a resolved struct; it never
parses files or environment variables itself.

Typical usage::

    from webtask_agent.config.settings import get_default_settings

    settings = get_default_settings()
    print(settings.max_iterations)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for a task run.

    Each attribute group maps to one architectural component.

    Attributes:
        max_iterations: Upper bound on observe-decide-act iterations
            before the run fails with a partial answer.
        max_consecutive_errors: Consecutive failed steps tolerated
            before the run fails.
        max_total_errors: Failed steps tolerated over the whole run.
        max_validation_attempts: Number of ``done`` proposals the
            validator may reject before the best answer is accepted.
        max_repeated_actions: Identical (action, ref, value) executions
            allowed in a row before the agent is warned.
        max_malformed_retries: Model calls allowed within one iteration
            when the output is not a usable tool call.
        navigation_base_timeout_ms: Timeout of the first navigation
            attempt.
        navigation_max_timeout_ms: Ceiling on any navigation timeout.
        navigation_max_attempts: Navigation attempts before a typed
            navigation error is raised.
        navigation_timeout_multiplier: Growth factor of the timeout
            between attempts.
        initial_navigation_retries: Browser restarts allowed while
            reaching the starting URL.
        network_idle_timeout_ms: How long to wait for network idle
            after a page-changing action.
        web_search_enabled: Whether the model is offered the
            ``web_search`` tool and may start without a URL (the run
            opens ``about:blank``).
        search_provider: Backend of ``web_search``: ``duckduckgo``,
            ``google``, ``bing`` or ``parallel-api``.
        debug: Emit compression and transcript debug events.
        vision: Attach screenshots to page observations.
        screenshot_max_width: Screenshots wider than this are
            downscaled before encoding.
        screenshot_jpeg_quality: JPEG quality (0-100) of encoded
            screenshots.
        api_model: Model identifier sent to the Messages API.
        api_max_tokens: Max tokens per generation.
        api_timeout_seconds: HTTP timeout for model requests.
        api_max_retries: Maximum number of attempts for transient API
            failures.
        api_backoff_base_seconds: Base delay for exponential back-off
            between API retries.
        planning_max_attempts: Planning calls before the run fails.
        extraction_max_tokens: Generation limit of ``extract`` calls.
        cdp_endpoints: Remote-debugging endpoints cycled on connection
            loss.  Empty when the browser is launched locally.
        recording_enabled: Whether the replay buffer should persist
            session data to disk.
        session_dir: Directory where replay session data is stored.
    """

    # -- Action loop ----------------------------------------------------------
    max_iterations: int = 50
    max_consecutive_errors: int = 5
    max_total_errors: int = 15
    max_validation_attempts: int = 3
    max_repeated_actions: int = 2
    max_malformed_retries: int = 3

    # -- Navigation retry -----------------------------------------------------
    navigation_base_timeout_ms: int = 30000
    navigation_max_timeout_ms: int = 120000
    navigation_max_attempts: int = 3
    navigation_timeout_multiplier: float = 2.0
    initial_navigation_retries: int = 1
    network_idle_timeout_ms: int = 5000
    web_search_enabled: bool = False
    search_provider: str = "duckduckgo"

    # -- Observation ----------------------------------------------------------
    debug: bool = False
    vision: bool = False
    screenshot_max_width: int = 1280
    screenshot_jpeg_quality: int = 80

    # -- API settings ---------------------------------------------------------
    api_model: str = "claude-sonnet-4-20250514"
    api_max_tokens: int = 4096
    api_timeout_seconds: float = 60.0
    api_max_retries: int = 3
    api_backoff_base_seconds: float = 2.0
    planning_max_attempts: int = 2
    extraction_max_tokens: int = 5000

    # -- Remote debugging -----------------------------------------------------
    cdp_endpoints: tuple[str, ...] = ()

    # -- Replay buffer --------------------------------------------------------
    recording_enabled: bool = False
    session_dir: str = "sessions"

    # -- Factory & serialisation ----------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create a ``Settings`` instance from a plain dictionary.

        Unknown keys are silently ignored so that forward-compatible
        config files do not break older agent versions.  List values
        for ``cdp_endpoints`` are converted to tuples to keep the
        instance hashable.

        Args:
            data: Dictionary whose keys correspond to ``Settings``
                field names.  Only recognised keys are used; the rest
                are discarded.

        Returns:
            A new ``Settings`` instance populated from *data*, with
            defaults filling any missing keys.
        """
        known_names = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_names}
        if "cdp_endpoints" in filtered:
            filtered["cdp_endpoints"] = tuple(filtered["cdp_endpoints"])
        return cls(**filtered)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the settings to a plain dictionary.

        Returns:
            A shallow dictionary mapping every field name to its
            current value.
        """
        return asdict(self)


def get_default_settings() -> Settings:
    """Return a ``Settings`` instance with all default values.

    This is the canonical way to obtain baseline configuration.  Call
    ``Settings.from_dict`` when you need to overlay user overrides on
    top of the defaults.

    Returns:
        A freshly constructed ``Settings`` with default values.
    """
    return Settings()
