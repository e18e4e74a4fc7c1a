"""Classifies step failures and determines recovery strategies.

The error classifier receives an exception raised while the agent was
deciding or acting and recommends how the Director should react.  It is
a pure-logic module with no side effects: given an exception it returns
a deterministic classification, and given the run's error counters it
decides whether the task may continue.

Recovery strategies:

* ``FEEDBACK``: tell the model what went wrong and let it try something
  else.  Browser errors and malformed model output land here.
* ``RESTART_BROWSER``: the browser connection was lost; restart it and
  re-observe the page.
* ``ABORT``: the failure cannot be fixed by the agent (for example the
  model API rejected the request).

Typical usage::

    from webtask_agent.config.settings import get_default_settings
    from webtask_agent.core.error_classifier import ErrorClassifier

    classifier = ErrorClassifier(get_default_settings())
    result = classifier.classify(exc)
    if classifier.should_continue(result, run.consecutive_errors, run.total_errors):
        run.messages.append({"role": "user", "content": result.feedback})
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import (
    BrowserActionError,
    BrowserDisconnectedError,
    ElementNotFoundError,
    InvalidRefError,
    ModelCallError,
    NavigationNetworkError,
    NavigationTimeoutError,
    RecoverableError,
    StaleRefError,
    ToolCallDecodeError,
)


class ErrorType(Enum):
    """Classification of step failures."""

    NAVIGATION_TIMEOUT = "navigation_timeout"
    NAVIGATION_NETWORK = "navigation_network"
    INVALID_REF = "invalid_ref"
    STALE_REF = "stale_ref"
    ELEMENT_NOT_FOUND = "element_not_found"
    ACTION_FAILED = "action_failed"
    BROWSER_DISCONNECTED = "browser_disconnected"
    MALFORMED_OUTPUT = "malformed_output"
    MODEL_ERROR = "model_error"
    MODEL_REJECTED = "model_rejected"
    UNKNOWN = "unknown"


class RecoveryAction(Enum):
    """Strategy for recovering from an error."""

    FEEDBACK = "feedback"
    RESTART_BROWSER = "restart_browser"
    ABORT = "abort"


@dataclass
class ErrorClassification:
    """Result of classifying a step failure.

    Attributes:
        error_type: The classified type of the error.
        recovery_action: Recommended recovery strategy.
        description: Human-readable explanation for logs.
        feedback: Message appended to the transcript so the model can
            correct course.  Empty for ``ABORT``.
        counts_against_budget: Whether the failure increments the
            consecutive and total error counters.
    """

    error_type: ErrorType
    recovery_action: RecoveryAction
    description: str
    feedback: str = ""
    counts_against_budget: bool = True


# Exception types checked in order; subclasses before their bases.
_TYPE_TABLE: tuple[tuple[type[BaseException], ErrorType], ...] = (
    (NavigationTimeoutError, ErrorType.NAVIGATION_TIMEOUT),
    (NavigationNetworkError, ErrorType.NAVIGATION_NETWORK),
    (StaleRefError, ErrorType.STALE_REF),
    (InvalidRefError, ErrorType.INVALID_REF),
    (ElementNotFoundError, ErrorType.ELEMENT_NOT_FOUND),
    (BrowserDisconnectedError, ErrorType.BROWSER_DISCONNECTED),
    (BrowserActionError, ErrorType.ACTION_FAILED),
    (ToolCallDecodeError, ErrorType.MALFORMED_OUTPUT),
)


class ErrorClassifier:
    """Classifies step failures and decides whether a run may continue.

    The classifier is stateless: every call to ``classify`` is
    independent.  Error limits are read from the injected settings.

    Args:
        settings: Application-wide settings providing
            ``max_consecutive_errors`` and ``max_total_errors``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    # -- public API -----------------------------------------------------------

    def classify(self, error: BaseException) -> ErrorClassification:
        """Classify a failure and recommend a recovery strategy.

        Args:
            error: The exception raised by the browser, the model
                client, or tool-call decoding.

        Returns:
            An ``ErrorClassification`` with the recommended recovery
            action and the feedback for the model.
        """
        message = str(error) or type(error).__name__

        if isinstance(error, ModelCallError):
            return self._classify_model_error(error, message)

        error_type = self._resolve_error_type(error)

        if error_type is ErrorType.BROWSER_DISCONNECTED:
            return ErrorClassification(
                error_type=error_type,
                recovery_action=RecoveryAction.RESTART_BROWSER,
                description=f"Browser disconnected: {message}; restarting",
                feedback=(
                    "The browser connection was lost and has been restored. "
                    "Review the current page before continuing."
                ),
            )
        if error_type in (ErrorType.INVALID_REF, ErrorType.STALE_REF):
            return ErrorClassification(
                error_type=error_type,
                recovery_action=RecoveryAction.FEEDBACK,
                description=f"Bad element reference: {message}",
                feedback=(
                    f"{message} Only use refs from the most recent page "
                    "snapshot."
                ),
            )
        if error_type is ErrorType.MALFORMED_OUTPUT:
            return ErrorClassification(
                error_type=error_type,
                recovery_action=RecoveryAction.FEEDBACK,
                description=f"Malformed model output: {message}",
                feedback=(
                    f"Your last response could not be used: {message} "
                    "Respond with exactly one valid tool call."
                ),
            )
        if error_type in (
            ErrorType.NAVIGATION_TIMEOUT,
            ErrorType.NAVIGATION_NETWORK,
        ):
            return ErrorClassification(
                error_type=error_type,
                recovery_action=RecoveryAction.FEEDBACK,
                description=f"Navigation failed: {message}",
                feedback=message,
            )
        if error_type is ErrorType.UNKNOWN:
            return ErrorClassification(
                error_type=error_type,
                recovery_action=RecoveryAction.FEEDBACK,
                description=f"Unexpected {type(error).__name__}: {message}",
                feedback=f"An error occurred: {message} Try a different approach.",
            )
        return ErrorClassification(
            error_type=error_type,
            recovery_action=RecoveryAction.FEEDBACK,
            description=f"Browser action failed: {message}",
            feedback=(
                f"The last action failed: {message} Take a fresh look at "
                "the page and try a different approach."
            ),
        )

    def should_continue(
        self,
        classification: ErrorClassification,
        consecutive_errors: int,
        total_errors: int,
    ) -> bool:
        """Decide whether the task should continue after an error.

        Args:
            classification: The result of a previous ``classify`` call.
            consecutive_errors: The run's consecutive-error counter,
                already including this failure.
            total_errors: The run's total-error counter, already
                including this failure.

        Returns:
            ``True`` if the recovery action is not ``ABORT`` and neither
            error budget has been reached.
        """
        if classification.recovery_action is RecoveryAction.ABORT:
            return False
        if total_errors >= self._settings.max_total_errors:
            return False
        return consecutive_errors < self._settings.max_consecutive_errors

    # -- private helpers ------------------------------------------------------

    @staticmethod
    def _resolve_error_type(error: BaseException) -> ErrorType:
        for exc_type, error_type in _TYPE_TABLE:
            if isinstance(error, exc_type):
                return error_type
        if isinstance(error, RecoverableError):
            return ErrorType.ACTION_FAILED
        return ErrorType.UNKNOWN

    @staticmethod
    def _classify_model_error(
        error: ModelCallError,
        message: str,
    ) -> ErrorClassification:
        if not error.is_retryable:
            return ErrorClassification(
                error_type=ErrorType.MODEL_REJECTED,
                recovery_action=RecoveryAction.ABORT,
                description=f"Model request rejected: {message}; aborting",
            )
        return ErrorClassification(
            error_type=ErrorType.MODEL_ERROR,
            recovery_action=RecoveryAction.FEEDBACK,
            description=f"Model call failed: {message}",
            feedback="The previous request failed. Continue with the task.",
        )
