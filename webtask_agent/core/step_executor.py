"""Step executor: runs one decoded action against the browser.

The ``StepExecutor`` bridges the gap between the Director's decoded
``Action`` objects and the ``BrowserInterface``.  For each action it
publishes ``agent:action`` and ``browser:action_started``, dispatches
on the action type, waits for the network to settle after actions that
may load a page, and publishes ``browser:action_completed`` with the
outcome.

Failures never escape ``execute``: they are normalised to
``RecoverableError`` subclasses and returned in the ``StepResult`` so
the Director can classify them.  The exception is ``ModelCallError``
from an ``extract`` call, which propagates like any other model
failure.  ``done`` and ``abort`` are accepted but never reach the
browser; the Director interprets them.

``extract`` and ``web_search`` return text for the model in
``StepResult.output``.

Typical usage::

    executor = StepExecutor(browser, navigator, bus, settings)
    result = await executor.execute(
        Action(type=ActionType.CLICK, ref="e5"),
        iteration_id="a1b2c3d4-2",
    )
    if not result.success:
        classification = classifier.classify(result.error)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import (
    BrowserActionError,
    BrowserDisconnectedError,
    ModelCallError,
    RecoverableError,
)
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.navigation_retry import Navigator
from webtask_agent.core.page_extractor import PageExtractor
from webtask_agent.core.search import SearchService
from webtask_agent.models.actions import VALUE_ACTIONS, Action, ActionType
from webtask_agent.models.events import (
    AgentActionPayload,
    AgentWaitingPayload,
    BrowserActionCompletedPayload,
    BrowserActionStartedPayload,
    BrowserNavigatedPayload,
    BrowserNetworkTimeoutPayload,
    BrowserNetworkWaitingPayload,
    EventType,
)
from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)

# Actions after which the page may be loading and the executor waits
# for network idle before the next observation.
_SETTLING_ACTIONS: frozenset[ActionType] = frozenset(
    {
        ActionType.CLICK,
        ActionType.ENTER,
        ActionType.FILL_AND_ENTER,
        ActionType.SELECT,
        ActionType.GOTO,
        ActionType.BACK,
        ActionType.FORWARD,
    }
)


@dataclass
class StepResult:
    """Result of executing a single ``Action``.

    Attributes:
        action: The action that was executed.
        success: Whether the action completed successfully.
        error: The normalised failure, or ``None`` on success.
        output: Text produced for the model (``extract`` and
            ``web_search`` only).
        timestamp: Unix timestamp when the result was produced.
    """

    action: Action
    success: bool
    error: RecoverableError | None = None
    output: str = ""
    timestamp: float = 0.0


class StepExecutor:
    """Executes decoded actions through the browser.

    The executor is stateless between calls.  Navigation goes through
    the injected ``Navigator`` so that ``goto`` gets the retry policy.

    Args:
        browser: The browser to drive.
        navigator: Retrying navigator wrapping the same browser.
        bus: Bus receiving action and navigation events.
        settings: Provides ``network_idle_timeout_ms``.
        extractor: Runs ``extract`` actions.  Without one ``extract``
            fails as unsupported.
        search: Runs ``web_search`` actions.  Without one
            ``web_search`` fails as disabled.
    """

    def __init__(
        self,
        browser: BrowserInterface,
        navigator: Navigator,
        bus: EventBus,
        settings: Settings,
        extractor: PageExtractor | None = None,
        search: SearchService | None = None,
    ) -> None:
        self._browser = browser
        self._navigator = navigator
        self._bus = bus
        self._settings = settings
        self._extractor = extractor
        self._search = search

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, action: Action, iteration_id: str = "") -> StepResult:
        """Execute *action*.

        Args:
            action: The decoded action.
            iteration_id: Iteration stamped on published events.

        Returns:
            A ``StepResult``.  On failure ``error`` holds a
            ``RecoverableError``; a lost connection is reported as
            ``BrowserDisconnectedError``.

        Raises:
            ModelCallError: The model call of an ``extract`` failed.
        """
        name = action.type.value
        self._bus.publish(
            EventType.AGENT_ACTION,
            AgentActionPayload(
                action=name,
                ref=action.ref,
                value=action.value,
                url=action.url,
            ),
            iteration_id,
        )
        self._bus.publish(
            EventType.BROWSER_ACTION_STARTED,
            BrowserActionStartedPayload(action=name, ref=action.ref, value=action.value),
            iteration_id,
        )

        error: RecoverableError | None = None
        model_error: ModelCallError | None = None
        output = ""
        try:
            output = await self._dispatch(action, iteration_id)
            if action.type in _SETTLING_ACTIONS:
                await self._wait_for_network_idle(name, iteration_id)
        except RecoverableError as exc:
            error = exc
        except ModelCallError as exc:
            model_error = exc
        except Exception as exc:
            error = BrowserActionError(name, str(exc) or type(exc).__name__)
            error.__cause__ = exc

        failure = error or model_error
        if failure is not None:
            logger.info("Action %s failed: %s", action.describe(), failure)
        self._bus.publish(
            EventType.BROWSER_ACTION_COMPLETED,
            BrowserActionCompletedPayload(
                action=name,
                success=failure is None,
                ref=action.ref,
                error=str(failure) if failure is not None else "",
            ),
            iteration_id,
        )
        if model_error is not None:
            raise model_error
        return StepResult(
            action=action,
            success=error is None,
            error=error,
            output=output,
            timestamp=time.time(),
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, action: Action, iteration_id: str) -> str:
        """Run *action* and return the text it produced for the model."""
        if action.type is ActionType.FILL_AND_ENTER:
            await self._browser.perform_action(action.ref, ActionType.FILL, action.value)
            await self._browser.perform_action(action.ref, ActionType.ENTER, None)
        elif action.is_element_action:
            value = action.value if action.type in VALUE_ACTIONS else None
            await self._browser.perform_action(action.ref, action.type, value)
        elif action.type is ActionType.GOTO:
            await self._navigator.goto(action.url, iteration_id)
        elif action.type is ActionType.BACK:
            await self._browser.go_back()
            await self._publish_navigated(iteration_id)
        elif action.type is ActionType.FORWARD:
            await self._browser.go_forward()
            await self._publish_navigated(iteration_id)
        elif action.type is ActionType.WAIT:
            self._bus.publish(
                EventType.AGENT_WAITING,
                AgentWaitingPayload(seconds=action.seconds),
                iteration_id,
            )
            await asyncio.sleep(action.seconds)
        elif action.type is ActionType.EXTRACT:
            if self._extractor is None:
                raise BrowserActionError(action.type.value, "extraction is not available")
            snapshot = await self._browser.get_accessibility_snapshot()
            return await self._extractor.extract(action.value, snapshot, iteration_id)
        elif action.type is ActionType.WEB_SEARCH:
            if self._search is None:
                raise BrowserActionError(action.type.value, "web search is not enabled")
            return await self._search.search(action.value)
        elif action.is_terminal:
            # Interpreted by the Director.
            return ""
        else:
            raise BrowserActionError(action.type.value, "unsupported action")
        return ""

    async def _publish_navigated(self, iteration_id: str) -> None:
        url = await self._browser.get_url()
        title = await self._browser.get_title()
        self._bus.publish(
            EventType.BROWSER_NAVIGATED,
            BrowserNavigatedPayload(url=url, title=title),
            iteration_id,
        )

    async def _wait_for_network_idle(self, action: str, iteration_id: str) -> None:
        """Wait for network idle; a timeout is reported but not an error."""
        timeout_ms = self._settings.network_idle_timeout_ms
        if timeout_ms <= 0:
            return
        self._bus.publish(
            EventType.BROWSER_NETWORK_WAITING,
            BrowserNetworkWaitingPayload(action=action),
            iteration_id,
        )
        try:
            await self._browser.wait_for_load_state("networkidle", timeout_ms=timeout_ms)
        except (TimeoutError, asyncio.TimeoutError):
            logger.debug("Network did not go idle within %dms after %s", timeout_ms, action)
            self._bus.publish(
                EventType.BROWSER_NETWORK_TIMEOUT,
                BrowserNetworkTimeoutPayload(action=action, timeout_ms=timeout_ms),
                iteration_id,
            )
        except BrowserDisconnectedError:
            raise
        except Exception as exc:
            logger.warning("Network-idle wait after %s failed: %s", action, exc)
