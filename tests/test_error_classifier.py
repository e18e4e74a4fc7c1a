"""Unit tests for the ErrorClassifier error classification and recovery module.

No mocks are needed -- this is pure-logic testing with real ``Settings``
defaults and the agent's own exception types.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from webtask_agent.config.settings import Settings, get_default_settings
from webtask_agent.core.error_classifier import (
    ErrorClassification,
    ErrorClassifier,
    ErrorType,
    RecoveryAction,
)
from webtask_agent.core.errors import (
    BrowserActionError,
    BrowserDisconnectedError,
    ElementNotFoundError,
    InvalidRefError,
    ModelCallError,
    NavigationNetworkError,
    NavigationTimeoutError,
    StaleRefError,
    ToolCallDecodeError,
)

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _make_classifier(settings: Settings | None = None) -> ErrorClassifier:
    """Create an ErrorClassifier with default or custom settings."""
    return ErrorClassifier(settings or get_default_settings())


def _feedback(action: RecoveryAction = RecoveryAction.FEEDBACK) -> ErrorClassification:
    return ErrorClassification(
        error_type=ErrorType.ACTION_FAILED,
        recovery_action=action,
        description="x",
    )


# ==================================================================
# Test class: classification
# ==================================================================


class TestClassify:
    """Exception to classification mapping."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (InvalidRefError("e9"), ErrorType.INVALID_REF),
            (StaleRefError("e9"), ErrorType.STALE_REF),
            (ElementNotFoundError("e9"), ErrorType.ELEMENT_NOT_FOUND),
            (BrowserActionError("click", "covered"), ErrorType.ACTION_FAILED),
            (NavigationTimeoutError("https://a", 120000, 3, 3), ErrorType.NAVIGATION_TIMEOUT),
            (NavigationNetworkError("https://a", "ECONNRESET", 3, 3), ErrorType.NAVIGATION_NETWORK),
            (ToolCallDecodeError("bad json"), ErrorType.MALFORMED_OUTPUT),
            (RuntimeError("???"), ErrorType.UNKNOWN),
        ],
    )
    def test_error_types(self, error: Exception, expected: ErrorType) -> None:
        """Each exception type maps to its error type."""
        assert _make_classifier().classify(error).error_type is expected

    def test_bad_ref_feedback_mentions_ref(self) -> None:
        """Ref errors tell the model to use the latest snapshot."""
        result = _make_classifier().classify(InvalidRefError("e9"))
        assert result.recovery_action is RecoveryAction.FEEDBACK
        assert "e9" in result.feedback
        assert "most recent page snapshot" in result.feedback

    def test_navigation_feedback_is_error_message(self) -> None:
        """Navigation failures pass their own message through."""
        error = NavigationTimeoutError("https://slow.example", 120000, 3, 3)
        result = _make_classifier().classify(error)
        assert result.feedback == str(error)
        assert "https://slow.example" in result.feedback

    def test_disconnect_restarts_browser(self) -> None:
        """A lost connection triggers a browser restart."""
        result = _make_classifier().classify(BrowserDisconnectedError("Target closed"))
        assert result.error_type is ErrorType.BROWSER_DISCONNECTED
        assert result.recovery_action is RecoveryAction.RESTART_BROWSER

    def test_retryable_model_error_is_feedback(self) -> None:
        """Server errors let the run continue."""
        result = _make_classifier().classify(ModelCallError("HTTP 529: overloaded", 529))
        assert result.error_type is ErrorType.MODEL_ERROR
        assert result.recovery_action is RecoveryAction.FEEDBACK

    def test_rejected_model_request_aborts(self) -> None:
        """A 400 from the API cannot be fixed by the agent."""
        result = _make_classifier().classify(ModelCallError("HTTP 400: bad request", 400))
        assert result.error_type is ErrorType.MODEL_REJECTED
        assert result.recovery_action is RecoveryAction.ABORT

    def test_rate_limit_is_retryable(self) -> None:
        result = _make_classifier().classify(ModelCallError("HTTP 429", 429))
        assert result.recovery_action is RecoveryAction.FEEDBACK

    def test_empty_message_uses_type_name(self) -> None:
        """An exception without a message is described by its type."""
        result = _make_classifier().classify(KeyError())
        assert "KeyError" in result.description

    def test_classification_is_deterministic(self) -> None:
        """The same error always classifies the same way."""
        c = _make_classifier()
        error = StaleRefError("e3")
        assert c.classify(error) == c.classify(error)


# ==================================================================
# Test class: budgets
# ==================================================================


class TestShouldContinue:
    """Error budget decisions."""

    def test_below_budgets(self) -> None:
        assert _make_classifier().should_continue(_feedback(), 1, 1)

    def test_consecutive_budget_reached(self) -> None:
        """Reaching max_consecutive_errors stops the run."""
        settings = replace(get_default_settings(), max_consecutive_errors=3)
        assert not _make_classifier(settings).should_continue(_feedback(), 3, 3)

    def test_total_budget_reached(self) -> None:
        """Reaching max_total_errors stops the run even after successes."""
        settings = replace(get_default_settings(), max_total_errors=4)
        assert not _make_classifier(settings).should_continue(_feedback(), 1, 4)

    def test_abort_never_continues(self) -> None:
        assert not _make_classifier().should_continue(_feedback(RecoveryAction.ABORT), 0, 0)
