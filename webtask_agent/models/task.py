"""Task data models: inputs, plans, run state, and results.

These dataclasses are shared between the TaskPlanner (which builds
plans), the TaskValidator, and the Director (which owns the run
state).  Keeping them in the models layer avoids circular imports
between core modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from webtask_agent.config.settings import Settings


class TaskOutcome(Enum):
    """Terminal state of a task run.

    Attributes:
        COMPLETED: A ``done`` answer was accepted.
        ABORTED: The model aborted, the user cancelled, or the agent
            kept repeating itself.
        FAILED: Planning failed or a budget was exhausted.
    """

    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class TaskErrorCode(Enum):
    """Machine-readable reason attached to a non-successful result."""

    INVALID_TASK = "INVALID_TASK"
    PLANNING_FAILED = "PLANNING_FAILED"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    TASK_ABORTED = "TASK_ABORTED"
    CANCELLED = "CANCELLED"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    MAX_ERRORS = "MAX_ERRORS"
    TASK_FAILED = "TASK_FAILED"


class CompletionQuality(Enum):
    """The validator's verdict on a proposed final answer.

    Attributes:
        FAILED: The answer does not address the task.
        PARTIAL: Some success criteria are unmet.
        COMPLETE: Every success criterion is met.
        EXCELLENT: Complete and notably thorough.
    """

    FAILED = "failed"
    PARTIAL = "partial"
    COMPLETE = "complete"
    EXCELLENT = "excellent"

    @property
    def is_accepted(self) -> bool:
        """Whether this quality finishes the task."""
        return self in (CompletionQuality.COMPLETE, CompletionQuality.EXCELLENT)


@dataclass(frozen=True)
class Task:
    """Immutable per-run input.

    Attributes:
        description: The natural-language task.
        starting_url: Page to open first.  When empty the planner must
            supply one (unless web search is enabled).
        guardrails: Optional constraints the agent must respect.
        data: Optional structured context passed through to prompts.
        settings: Resolved configuration for this run.
    """

    description: str
    starting_url: str = ""
    guardrails: str = ""
    data: dict[str, Any] | None = None
    settings: Settings = field(default_factory=Settings)


@dataclass
class TaskPlan:
    """The planner's output.

    Attributes:
        success_criteria: What a complete answer must satisfy.
        plan: Free-text step-by-step plan.
        action_items: Optional checklist derived from the plan.
        url: Starting URL proposed by the planner (may be empty).
        raw_arguments: Raw ``create_plan`` tool arguments, kept for
            debugging.
    """

    success_criteria: str
    plan: str
    action_items: list[str] = field(default_factory=list)
    url: str = ""
    raw_arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationVerdict:
    """Result of checking a proposed answer.

    Attributes:
        quality: Completion quality assigned by the validator.
        assessment: The validator's reasoning.
        feedback: Guidance for the next attempt (may be empty).
    """

    quality: CompletionQuality
    assessment: str = ""
    feedback: str = ""


@dataclass
class TaskStats:
    """Counters and timing of one run.

    Attributes:
        iterations: Loop iterations started.
        actions: Browser actions executed successfully.
        start_time: Unix timestamp when ``execute`` was entered.
        end_time: Unix timestamp of the terminal transition.
    """

    iterations: int = 0
    actions: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration_ms(self) -> float:
        """Wall-clock duration of the run in milliseconds."""
        if not self.end_time:
            return 0.0
        return (self.end_time - self.start_time) * 1000.0


@dataclass
class TaskResult:
    """Outcome returned to the caller of ``Director.execute``.

    Attributes:
        success: Whether the task completed.
        outcome: Terminal state.
        final_answer: Accepted answer, a partial answer on budget
            exhaustion, or ``None``.
        error: Human-readable failure reason.  Empty on success.
        error_code: Machine-readable failure reason.
        plan: Plan produced during planning, if any.
        stats: Counters and timing.
    """

    success: bool
    outcome: TaskOutcome
    final_answer: str | None = None
    error: str = ""
    error_code: TaskErrorCode | None = None
    plan: TaskPlan | None = None
    stats: TaskStats = field(default_factory=TaskStats)


@dataclass
class TaskRun:
    """Mutable execution state owned by the Director for one run.

    Attributes:
        task_id: Identifier stamped on every event of the run.
        iteration: Number of iterations started so far.
        iteration_id: Identifier of the current iteration.
        plan: The plan, once produced.
        messages: Rolling transcript sent to the model.
        last_signature: Signature of the last executed action.
        repeat_count: How many times ``last_signature`` ran in a row.
        consecutive_errors: Failed steps since the last success.
        total_errors: Failed steps over the whole run.
        validation_attempts: ``done`` proposals checked so far.
        best_answer: Most recent proposed final answer.
        current_url: Last URL the browser was known to be on.
        needs_observation: Whether the next iteration must snapshot
            the page.
        outcome: Terminal outcome, set exactly once.
        stats: Counters and timing.
    """

    task_id: str
    iteration: int = 0
    iteration_id: str = ""
    plan: TaskPlan | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)
    last_signature: str = ""
    repeat_count: int = 0
    consecutive_errors: int = 0
    total_errors: int = 0
    validation_attempts: int = 0
    best_answer: str | None = None
    current_url: str = ""
    needs_observation: bool = True
    outcome: TaskOutcome | None = None
    stats: TaskStats = field(default_factory=TaskStats)

    def record_success(self) -> None:
        """Reset the consecutive-error counter after a successful step."""
        self.consecutive_errors = 0

    def record_error(self) -> None:
        """Count a failed step against both error budgets."""
        self.consecutive_errors += 1
        self.total_errors += 1

    def next_repeat_count(self, signature: str) -> int:
        """Run length *signature* would reach if it ran now."""
        return self.repeat_count + 1 if signature == self.last_signature else 1

    def record_action(self, signature: str) -> int:
        """Track repetition of an executed or refused action.

        Args:
            signature: The action's ``action:ref:value`` key.

        Returns:
            How many times this signature has now run in a row.
        """
        if signature == self.last_signature:
            self.repeat_count += 1
        else:
            self.last_signature = signature
            self.repeat_count = 1
        return self.repeat_count

    def finish(self, outcome: TaskOutcome) -> None:
        """Set the terminal outcome.

        Raises:
            RuntimeError: If the run already has an outcome.
        """
        if self.outcome is not None:
            raise RuntimeError(
                f"Task run {self.task_id} already finished as {self.outcome.value}"
            )
        self.outcome = outcome
