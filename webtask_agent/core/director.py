"""Director: the task execution engine.

The Director is the top-level component of the web task agent.  It
accepts a ``Task``, asks the ``TaskPlanner`` for success criteria and a
plan, opens the starting page, and then drives the observe-decide-act
loop until the task is completed, aborted, or fails:

1. **Observe**: the ``PageObserver`` snapshots the page.  Older
   snapshot turns in the transcript are clipped so only the latest page
   state is sent to the model.
2. **Decide**: the model answers with one tool call, decoded into an
   ``Action``.  Malformed output gets corrective feedback and the same
   iteration is retried a bounded number of times.
3. **Act**: the ``StepExecutor`` runs the action.  Failures are
   classified by the ``ErrorClassifier``, counted against the error
   budgets, and fed back to the model.  An action requested once too
   often in a row is refused with a warning; once more ends the run.
   ``extract`` and ``web_search`` hand their text back as the tool
   result and leave the current snapshot in place.
4. **Validate**: a ``done`` answer is graded by the ``TaskValidator``;
   a rejected answer sends the loop round again with the validator's
   feedback.

Every transition is published on the run's ``EventBus``; exactly one
``task:completed`` or ``task:aborted`` event ends each run.  The
browser is shut down on every exit path.

Typical usage::

    director = Director(browser=browser, model=AnthropicModelClient(settings))
    result = await director.execute(
        Task(description="Find the price of the cheapest plan",
             starting_url="https://example.com/pricing",
             settings=settings),
    )
    print(result.success, result.final_answer)

A Director runs one task at a time; use one instance per concurrent
run.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Coroutine
from dataclasses import replace
from typing import Any, TypeVar

from webtask_agent.config.settings import Settings
from webtask_agent.core.error_classifier import ErrorClassifier, RecoveryAction
from webtask_agent.core.errors import (
    BrowserDisconnectedError,
    ModelCallError,
    PlanningError,
    TaskCancelledError,
    ToolCallDecodeError,
)
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.metrics_collector import MetricsCollector
from webtask_agent.core.model_client import ModelClient, generate_with_events
from webtask_agent.core.navigation_retry import NavigationRetryPolicy, Navigator
from webtask_agent.core.page_extractor import PageExtractor
from webtask_agent.core.page_observer import PageObserver
from webtask_agent.core.prompts import (
    ACTION_SYSTEM_PROMPT,
    CLIPPED_MARKER,
    action_result,
    initial_message,
    repetition_warning,
    validation_feedback,
)
from webtask_agent.core.replay_buffer import ReplayBuffer
from webtask_agent.core.search import SearchProvider, SearchService, create_search_provider
from webtask_agent.core.snapshot_compressor import SnapshotCompressor
from webtask_agent.core.step_executor import StepExecutor
from webtask_agent.core.task_planner import TaskPlanner
from webtask_agent.core.task_validator import TaskValidator
from webtask_agent.core.tool_calls import action_tools, parse_action
from webtask_agent.models.actions import Action, ActionType
from webtask_agent.models.events import (
    AgentReasonedPayload,
    AgentStatusPayload,
    AgentStepPayload,
    BrowserReconnectedPayload,
    DebugMessagePayload,
    EventType,
    TaskAbortedPayload,
    TaskCompletedPayload,
    TaskSetupPayload,
    TaskStartedPayload,
    TaskValidatedPayload,
    TaskValidationErrorPayload,
)
from webtask_agent.models.generation import GenerationRequest, GenerationResponse
from webtask_agent.models.task import (
    Task,
    TaskErrorCode,
    TaskOutcome,
    TaskResult,
    TaskRun,
)
from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Final answer and reason reported when the caller cancels a run.
_CANCELLED_MESSAGE: str = "Task aborted by user"

# Page opened when the run starts without a URL (web search mode).
_BLANK_URL: str = "about:blank"

# Raw model output kept in validation-error events.
_RAW_RESPONSE_LIMIT: int = 500


class Director:
    """Orchestrates planning, the action loop, and validation.

    The browser and the model client are injected; every other
    component is built per run from the task's settings, so a run never
    shares mutable state with another.

    Args:
        browser: Browser owned by the run for its whole lifetime.
        model: Client for all model calls (planning, actions,
            validation).
        bus: Optional bus to publish on.  Subscribe to it before
            calling ``execute`` to observe the run.  A fresh bus is
            created per run when omitted.
        compressor: Snapshot compressor.  Defaults to the built-in
            rules.
        replay: Optional session recorder.  When omitted and
            ``recording_enabled`` is set, one is created per run.
            Recording failures are logged and never end the run.
        search_provider: Backend of ``web_search``.  When omitted and
            ``web_search_enabled`` is set, ``search_provider`` from the
            settings is used.
    """

    def __init__(
        self,
        browser: BrowserInterface,
        model: ModelClient,
        bus: EventBus | None = None,
        compressor: SnapshotCompressor | None = None,
        replay: ReplayBuffer | None = None,
        search_provider: SearchProvider | None = None,
    ) -> None:
        self._browser = browser
        self._model = model
        self._external_bus = bus
        self._compressor = compressor or SnapshotCompressor()
        self._replay_override = replay
        self._search_provider = search_provider

        # Per-run state, rebuilt by ``execute``.
        self._settings = Settings()
        self._bus = bus or EventBus()
        self._run = TaskRun(task_id="")
        self._task: Task | None = None
        self._cancel: asyncio.Event | None = None
        self._history: list[str] = []
        self._replay: ReplayBuffer | None = None
        self._search: SearchService | None = None
        self._result: TaskResult | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        """The bus of the current (or last) run."""
        return self._bus

    async def execute(
        self,
        task: Task,
        cancel_event: asyncio.Event | None = None,
    ) -> TaskResult:
        """Execute a task end-to-end.

        Args:
            task: The task and its resolved settings.
            cancel_event: Optional cancellation signal.  Setting it
                aborts the in-flight browser or model call and ends the
                run as Aborted with code ``CANCELLED``.

        Returns:
            A ``TaskResult``.  Internal errors are reported in the
            result instead of being raised.

        Raises:
            asyncio.CancelledError: The asyncio task running
                ``execute`` was itself cancelled.  Cleanup still runs.
        """
        self._begin(task, cancel_event)
        run = self._run
        collector = MetricsCollector(self._bus)

        logger.info("Task %s started: %s", run.task_id, task.description)
        try:
            self._start_recording(task)
            return await self._drive()
        except TaskCancelledError:
            logger.info("Task %s cancelled", run.task_id)
            return self._finish(
                TaskOutcome.ABORTED,
                final_answer=_CANCELLED_MESSAGE,
                error=_CANCELLED_MESSAGE,
                error_code=TaskErrorCode.CANCELLED,
            )
        except asyncio.CancelledError:
            if run.outcome is None:
                self._finish(
                    TaskOutcome.ABORTED,
                    error="Task cancelled",
                    error_code=TaskErrorCode.CANCELLED,
                )
            raise
        except Exception as exc:
            if run.outcome is not None and self._result is not None:
                # The outcome is final; report it despite the late error.
                logger.exception(
                    "Task %s: error after the %s outcome was recorded",
                    run.task_id,
                    run.outcome.value,
                )
                return self._result
            logger.exception("Task %s failed unexpectedly", run.task_id)
            return self._finish(
                TaskOutcome.FAILED,
                final_answer=run.best_answer,
                error=f"Unexpected error: {type(exc).__name__}: {exc}",
                error_code=TaskErrorCode.TASK_FAILED,
            )
        finally:
            await self._shutdown_browser()
            collector.detach()
            self._stop_recording()

    # ------------------------------------------------------------------
    # Run setup
    # ------------------------------------------------------------------

    def _begin(self, task: Task, cancel_event: asyncio.Event | None) -> None:
        """Reset per-run state and build the run's components."""
        settings = task.settings
        task_id = uuid.uuid4().hex[:8]

        self._task = task
        self._settings = settings
        self._cancel = cancel_event
        self._history = []
        self._bus = self._external_bus or EventBus()
        self._bus.task_id = task_id

        self._run = TaskRun(task_id=task_id, iteration_id=f"{task_id}-0")
        self._run.stats.start_time = time.time()

        self._classifier = ErrorClassifier(settings)
        self._planner = TaskPlanner(self._model, self._bus, settings)
        self._validator = TaskValidator(self._model, self._bus, settings)
        self._observer = PageObserver(self._browser, self._compressor, self._bus, settings)
        self._navigator = Navigator(
            self._browser,
            NavigationRetryPolicy.from_settings(settings),
            self._bus,
        )
        self._extractor = PageExtractor(self._model, self._bus, settings)
        self._search = None
        self._executor = StepExecutor(
            self._browser,
            self._navigator,
            self._bus,
            settings,
            extractor=self._extractor,
        )
        self._result = None

        self._replay = self._replay_override
        if self._replay is None and settings.recording_enabled:
            self._replay = ReplayBuffer(settings)

    def _enable_search(self) -> None:
        """Bind ``web_search`` to a provider.

        Raises:
            ValueError: The configured provider is unknown or lacks an
                API key.
        """
        settings = self._settings
        provider = self._search_provider or create_search_provider(
            settings.search_provider,
            timeout_ms=settings.navigation_base_timeout_ms,
        )
        self._search = SearchService(provider, self._browser)
        self._executor = StepExecutor(
            self._browser,
            self._navigator,
            self._bus,
            settings,
            extractor=self._extractor,
            search=self._search,
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _start_recording(self, task: Task) -> None:
        """Start the session recorder; a disk failure only disables it."""
        if self._replay is None:
            return
        try:
            self._replay.start_session(self._bus, self._run.task_id, task.description)
        except OSError as exc:
            logger.warning("Session recording disabled: %s", exc)
            self._replay = None

    def _record_screenshot(self, jpeg: bytes) -> None:
        if self._replay is None:
            return
        try:
            self._replay.record_screenshot(jpeg, self._run.iteration_id)
        except OSError as exc:
            logger.warning("Could not save screenshot: %s", exc)

    def _stop_recording(self) -> None:
        if self._replay is None or not self._replay.is_recording:
            return
        outcome = self._run.outcome.value if self._run.outcome is not None else ""
        try:
            self._replay.stop_session(outcome)
        except OSError as exc:
            logger.warning("Could not save the session recording: %s", exc)

    # ------------------------------------------------------------------
    # Main flow
    # ------------------------------------------------------------------

    async def _drive(self) -> TaskResult:
        task = self._task
        assert task is not None
        run = self._run
        settings = self._settings

        self._bus.publish(
            EventType.TASK_SETUP,
            TaskSetupPayload(
                task=task.description,
                starting_url=task.starting_url,
                guardrails=task.guardrails,
                data=task.data,
                config=settings.to_dict(),
            ),
            run.iteration_id,
        )
        if not task.description.strip():
            return self._finish(
                TaskOutcome.FAILED,
                error="Task description is empty",
                error_code=TaskErrorCode.INVALID_TASK,
            )
        if settings.web_search_enabled:
            try:
                self._enable_search()
            except ValueError as exc:
                return self._finish(
                    TaskOutcome.FAILED,
                    error=f"Web search unavailable: {exc}",
                    error_code=TaskErrorCode.INVALID_TASK,
                )

        await self._guard(self._browser.start())

        # ---- Planning ----
        try:
            plan = await self._guard(self._planner.plan(task, run.iteration_id))
        except PlanningError as exc:
            logger.error("Task %s planning failed: %s", run.task_id, exc)
            return self._finish(
                TaskOutcome.FAILED,
                error=f"Planning failed: {exc}",
                error_code=TaskErrorCode.PLANNING_FAILED,
            )
        run.plan = plan

        # ---- Starting page ----
        url = task.starting_url or plan.url
        if not url and settings.web_search_enabled:
            url = _BLANK_URL
        try:
            await self._open_start_page(url)
        except TaskCancelledError:
            raise
        except Exception as exc:
            return self._finish(
                TaskOutcome.FAILED,
                error=f"Could not open {url}: {exc}",
                error_code=TaskErrorCode.NAVIGATION_FAILED,
            )

        self._bus.publish(
            EventType.TASK_STARTED,
            TaskStartedPayload(
                task=task.description,
                url=url,
                success_criteria=plan.success_criteria,
                plan=plan.plan,
                action_items=tuple(plan.action_items),
            ),
            run.iteration_id,
        )
        run.messages.append({"role": "user", "content": initial_message(task, plan, url)})

        # ---- Action loop ----
        while True:
            if run.iteration >= settings.max_iterations:
                return self._finish(
                    TaskOutcome.FAILED,
                    final_answer=run.best_answer,
                    error=f"Reached the limit of {settings.max_iterations} iterations",
                    error_code=TaskErrorCode.MAX_ITERATIONS,
                )

            run.iteration += 1
            run.stats.iterations = run.iteration
            run.iteration_id = f"{run.task_id}-{run.iteration}"
            self._bus.publish(
                EventType.AGENT_STEP,
                AgentStepPayload(
                    iteration=run.iteration,
                    max_iterations=settings.max_iterations,
                ),
                run.iteration_id,
            )

            result = await self._iterate()
            if result is not None:
                return result

    async def _open_start_page(self, url: str) -> None:
        """Navigate to *url*, restarting the browser between attempts."""
        attempts = self._settings.initial_navigation_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._guard(self._navigator.goto(url, self._run.iteration_id))
            except TaskCancelledError:
                raise
            except Exception as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Opening %s failed (attempt %d/%d): %s; restarting browser",
                    url,
                    attempt,
                    attempts,
                    exc,
                )
                await self._restart_browser(str(exc), reopen=False)
            else:
                self._run.current_url = url
                return

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    async def _iterate(self) -> TaskResult | None:
        """Run one observe-decide-act pass.

        Returns:
            The final result when the run ended, else ``None``.
        """
        run = self._run

        if run.needs_observation:
            try:
                await self._observe()
            except BrowserDisconnectedError as exc:
                return await self._handle_error(exc)

        try:
            action = await self._decide()
        except (ToolCallDecodeError, ModelCallError) as exc:
            return await self._handle_error(exc)

        if not action.is_terminal:
            return await self._act(action)
        if action.type is ActionType.DONE:
            return await self._validate(action)
        self._reply(action.call_id, "Task aborted.")
        return self._finish(
            TaskOutcome.ABORTED,
            final_answer=run.best_answer,
            error=f"Task aborted: {action.text}",
            error_code=TaskErrorCode.TASK_ABORTED,
        )

    async def _observe(self) -> None:
        run = self._run
        observation = await self._guard(self._observer.observe(run.iteration_id))
        run.current_url = observation.url or run.current_url

        for message in run.messages:
            if message.get("kind") == "snapshot":
                message["content"] = CLIPPED_MARKER
                message.pop("image", None)

        turn: dict[str, Any] = {
            "role": "user",
            "kind": "snapshot",
            "content": observation.render(),
        }
        if observation.screenshot is not None:
            turn["image"] = observation.screenshot
            self._record_screenshot(observation.screenshot)
        run.messages.append(turn)
        run.needs_observation = False

    async def _decide(self) -> Action:
        """Ask the model for the next action.

        Raises:
            ToolCallDecodeError: Every attempt produced unusable output.
            ModelCallError: The model call failed.
        """
        run = self._run
        attempts = max(1, self._settings.max_malformed_retries)

        for attempt in range(1, attempts + 1):
            if self._settings.debug:
                self._bus.publish(
                    EventType.SYSTEM_DEBUG_MESSAGE,
                    DebugMessagePayload(
                        message_count=len(run.messages),
                        total_chars=sum(len(str(m.get("content", ""))) for m in run.messages),
                    ),
                    run.iteration_id,
                )
            request = GenerationRequest(
                messages=list(run.messages),
                tools=action_tools(self._search is not None),
                system=ACTION_SYSTEM_PROMPT,
            )
            response = await self._guard(
                generate_with_events(
                    self._model, self._bus, request, "action", run.iteration_id
                )
            )
            if response.text and response.tool_call is not None:
                self._bus.publish(
                    EventType.AGENT_REASONED,
                    AgentReasonedPayload(reasoning=response.text),
                    run.iteration_id,
                )

            call_id = self._append_model_turn(response)
            try:
                action = parse_action(response.tool_call)
            except ToolCallDecodeError as exc:
                self._bus.publish(
                    EventType.TASK_VALIDATION_ERROR,
                    TaskValidationErrorPayload(
                        errors=(str(exc),),
                        retry_count=attempt,
                        raw_response=_raw_output(response),
                    ),
                    run.iteration_id,
                )
                if attempt >= attempts:
                    # The error handler answers the dangling call.
                    exc.context["call_id"] = call_id
                    raise
                logger.info(
                    "Malformed model output (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    exc,
                )
                self._reply(
                    call_id,
                    f"Your last response could not be used: {exc} "
                    "Respond with exactly one valid tool call.",
                )
                continue
            return replace(action, call_id=call_id)

        raise AssertionError("unreachable")

    async def _act(self, action: Action) -> TaskResult | None:
        """Run a non-terminal action, refusing runaway repetition first."""
        run = self._run
        description = action.describe()
        count = run.next_repeat_count(action.signature)
        limit = self._settings.max_repeated_actions

        if count >= limit + 2:
            self._reply(action.call_id, f"Action not executed: {description}")
            return self._finish(
                TaskOutcome.ABORTED,
                final_answer=run.best_answer,
                error=f"Excessive repetition: {description} was requested {count} times in a row",
                error_code=TaskErrorCode.TASK_ABORTED,
            )
        if count == limit + 1:
            run.record_action(action.signature)
            warning = repetition_warning(description, count)
            logger.warning("Iteration %d: %s", run.iteration, warning)
            self._reply(action.call_id, warning)
            self._bus.publish(
                EventType.AGENT_STATUS,
                AgentStatusPayload(message=warning),
                run.iteration_id,
            )
            run.needs_observation = True
            return None

        try:
            step = await self._guard(self._executor.execute(action, run.iteration_id))
        except ModelCallError as exc:
            return await self._handle_error(exc, action.call_id)
        if not step.success:
            assert step.error is not None
            return await self._handle_error(step.error, action.call_id)

        run.record_success()
        run.record_action(action.signature)
        run.stats.actions += 1
        self._history.append(description)
        self._reply(action.call_id, action_result(description, step.output))
        run.needs_observation = action.changes_page
        return None

    async def _validate(self, action: Action) -> TaskResult | None:
        """Grade a ``done`` answer and decide whether the run ends."""
        task = self._task
        assert task is not None
        run = self._run
        answer = action.text
        run.best_answer = answer
        run.validation_attempts += 1
        limit = self._settings.max_validation_attempts

        try:
            verdict = await self._guard(
                self._validator.validate(
                    task, run.plan, answer, self._history, run.iteration_id
                )
            )
        except (ModelCallError, ToolCallDecodeError) as exc:
            logger.warning("Validation attempt %d failed: %s", run.validation_attempts, exc)
            self._bus.publish(
                EventType.TASK_VALIDATION_ERROR,
                TaskValidationErrorPayload(
                    errors=(f"Validation failed: {exc}",),
                    retry_count=run.validation_attempts,
                ),
                run.iteration_id,
            )
            if run.validation_attempts >= limit:
                self._reply(action.call_id, "Answer accepted.")
                return self._finish(TaskOutcome.COMPLETED, final_answer=answer)
            self._reply(
                action.call_id,
                "Your answer could not be checked. Verify it against the "
                "success criteria and call done again.",
            )
            return None

        self._bus.publish(
            EventType.TASK_VALIDATED,
            TaskValidatedPayload(
                quality=verdict.quality.value,
                final_answer=answer,
                assessment=verdict.assessment,
                feedback=verdict.feedback,
                attempt=run.validation_attempts,
            ),
            run.iteration_id,
        )

        if verdict.quality.is_accepted or run.validation_attempts >= limit:
            if not verdict.quality.is_accepted:
                logger.info(
                    "Accepting %s answer after %d validation attempts",
                    verdict.quality.value,
                    run.validation_attempts,
                )
            self._reply(action.call_id, "Answer accepted.")
            return self._finish(TaskOutcome.COMPLETED, final_answer=answer)

        errors = [f"Answer judged {verdict.quality.value}"]
        if verdict.feedback:
            errors.append(verdict.feedback)
        self._bus.publish(
            EventType.TASK_VALIDATION_ERROR,
            TaskValidationErrorPayload(
                errors=tuple(errors),
                retry_count=run.validation_attempts,
            ),
            run.iteration_id,
        )
        self._reply(
            action.call_id,
            validation_feedback(verdict.quality.value, verdict.feedback),
        )
        return None

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    async def _handle_error(
        self,
        error: BaseException,
        call_id: str = "",
    ) -> TaskResult | None:
        """Classify a step failure, count it, and recover or finish."""
        run = self._run
        classification = self._classifier.classify(error)
        logger.warning("Iteration %d: %s", run.iteration, classification.description)

        if not call_id and isinstance(error, ToolCallDecodeError):
            call_id = error.context.get("call_id", "")

        if classification.counts_against_budget:
            run.record_error()

        if classification.recovery_action is RecoveryAction.ABORT:
            return self._finish(
                TaskOutcome.FAILED,
                final_answer=run.best_answer,
                error=classification.description,
                error_code=TaskErrorCode.TASK_FAILED,
            )
        if not self._classifier.should_continue(
            classification, run.consecutive_errors, run.total_errors
        ):
            return self._finish(
                TaskOutcome.FAILED,
                final_answer=run.best_answer,
                error=(
                    f"Too many errors ({run.consecutive_errors} consecutive, "
                    f"{run.total_errors} total); last: {classification.description}"
                ),
                error_code=TaskErrorCode.MAX_ERRORS,
            )

        if classification.recovery_action is RecoveryAction.RESTART_BROWSER:
            try:
                await self._restart_browser(classification.description)
            except TaskCancelledError:
                raise
            except Exception as exc:
                logger.error("Browser restart failed: %s", exc)
                return self._finish(
                    TaskOutcome.FAILED,
                    final_answer=run.best_answer,
                    error=f"Browser restart failed: {exc}",
                    error_code=TaskErrorCode.TASK_FAILED,
                )
            run.needs_observation = True

        self._reply(call_id, classification.feedback)
        return None

    async def _restart_browser(self, reason: str, reopen: bool = True) -> None:
        """Restart the browser and, if *reopen*, return to the last URL.

        Raises:
            Exception: Whatever ``BrowserInterface.start`` raised.
        """
        run = self._run
        logger.info("Restarting browser: %s", reason)
        await self._shutdown_browser()
        await self._guard(self._browser.start())

        url = run.current_url if reopen else ""
        if url:
            try:
                await self._guard(self._navigator.goto(url, run.iteration_id))
            except TaskCancelledError:
                raise
            except Exception as exc:
                logger.warning("Could not reopen %s after restart: %s", url, exc)

        self._bus.publish(
            EventType.BROWSER_RECONNECTED,
            BrowserReconnectedPayload(reason=reason, url=url),
            run.iteration_id,
        )

    async def _shutdown_browser(self) -> None:
        try:
            await self._browser.shutdown()
        except Exception as exc:
            logger.warning("Browser shutdown failed: %s", exc)

    # ------------------------------------------------------------------
    # Transcript helpers
    # ------------------------------------------------------------------

    def _append_model_turn(self, response: GenerationResponse) -> str:
        """Append the model's turn and return the id of its tool call."""
        run = self._run
        message: dict[str, Any] = {"role": "assistant", "content": response.text}
        call = response.tool_call
        call_id = ""
        if call is not None:
            call_id = call.id or f"call_{run.iteration}_{len(run.messages)}"
            message["tool_call"] = {
                "id": call_id,
                "name": call.name,
                "arguments": call.arguments,
            }
        run.messages.append(message)
        return call_id

    def _reply(self, call_id: str, text: str) -> None:
        """Answer a tool call, or add a user turn when there is none."""
        if call_id:
            self._run.messages.append(
                {"role": "tool", "tool_call_id": call_id, "content": text}
            )
        else:
            self._run.messages.append({"role": "user", "content": text})

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def _guard(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await *coro*, cancelling it when the cancel event fires.

        Raises:
            TaskCancelledError: The cancel event was set.
        """
        cancel = self._cancel
        if cancel is None:
            return await coro
        if cancel.is_set():
            coro.close()
            raise TaskCancelledError(_CANCELLED_MESSAGE)

        work = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        # Let the cancelled call unwind before cleanup touches the browser.
        await asyncio.gather(work, return_exceptions=True)
        raise TaskCancelledError(_CANCELLED_MESSAGE)

    # ------------------------------------------------------------------
    # Terminal transition
    # ------------------------------------------------------------------

    def _finish(
        self,
        outcome: TaskOutcome,
        final_answer: str | None = None,
        error: str = "",
        error_code: TaskErrorCode | None = None,
    ) -> TaskResult:
        """Record the terminal outcome and publish the terminal event.

        The result is stored before publishing so that a failing
        subscriber cannot change what ``execute`` returns.
        """
        run = self._run
        run.finish(outcome)
        run.stats.end_time = time.time()
        code = error_code.value if error_code is not None else ""
        result = TaskResult(
            success=outcome is TaskOutcome.COMPLETED,
            outcome=outcome,
            final_answer=final_answer,
            error=error,
            error_code=error_code,
            plan=run.plan,
            stats=run.stats,
        )
        self._result = result

        if outcome is TaskOutcome.ABORTED:
            self._bus.publish(
                EventType.TASK_ABORTED,
                TaskAbortedPayload(
                    reason=error,
                    final_answer=final_answer,
                    error_code=code,
                    iterations=run.iteration,
                ),
                run.iteration_id,
            )
        else:
            self._bus.publish(
                EventType.TASK_COMPLETED,
                TaskCompletedPayload(
                    success=outcome is TaskOutcome.COMPLETED,
                    final_answer=final_answer,
                    error=error,
                    error_code=code,
                    iterations=run.iteration,
                ),
                run.iteration_id,
            )

        logger.info(
            "Task %s %s after %d iterations (%.0f ms)%s",
            run.task_id,
            outcome.value,
            run.iteration,
            run.stats.duration_ms,
            f": {error}" if error else "",
        )
        return result


def _raw_output(response: GenerationResponse) -> str:
    """Model output for a validation-error event, truncated."""
    call = response.tool_call
    if call is None:
        return response.text[:_RAW_RESPONSE_LIMIT]
    return f"{call.name}({call.arguments})"[:_RAW_RESPONSE_LIMIT]
