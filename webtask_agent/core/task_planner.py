"""Task planner: turns a natural-language task into a plan.

Asks the model, through the ``create_plan`` tool, for the success
criteria a final answer must meet, a step-by-step plan, an optional
checklist of action items, and (when the task has no starting URL) the
URL to start from.

Planning is the one step the agent cannot recover from locally: a
transient failure is retried up to ``planning_max_attempts`` times in
total, after which ``PlanningError`` is raised and the task fails.

Typical usage::

    from webtask_agent.core.task_planner import TaskPlanner

    planner = TaskPlanner(model, bus, settings)
    plan = await planner.plan(task)
    print(plan.success_criteria)
"""

from __future__ import annotations

import logging

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import ModelCallError, PlanningError, ToolCallDecodeError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.model_client import ModelClient, generate_with_events
from webtask_agent.core.prompts import task_context
from webtask_agent.core.tool_calls import PLAN_TOOL, parse_arguments
from webtask_agent.models.generation import GenerationRequest, ToolCall
from webtask_agent.models.task import Task, TaskPlan

logger = logging.getLogger(__name__)

# Max tokens for a plan response (plans are shorter than action turns).
_MAX_TOKENS: int = 2048

# ------------------------------------------------------------------
# System prompt that instructs the model to call create_plan.
# ------------------------------------------------------------------
_SYSTEM_PROMPT: str = (
    "You plan web browsing tasks. Given a task, call the create_plan "
    "tool with:\n"
    "  successCriteria: what a complete final answer must contain\n"
    "  plan: a short numbered list of steps\n"
    "  actionItems: optional checklist items\n"
    "  url: the best page to start from\n"
    "\n"
    "Guidelines:\n"
    "- Keep plans under 10 steps.\n"
    "- Prefer official and primary sources for the starting URL.\n"
)


# ------------------------------------------------------------------
# Planner
# ------------------------------------------------------------------


class TaskPlanner:
    """Produces a ``TaskPlan`` for a task via the model.

    Args:
        model: Model client used for the planning call.
        bus: Bus receiving generation events.
        settings: Provides ``planning_max_attempts`` and
            ``web_search_enabled``.
    """

    def __init__(
        self,
        model: ModelClient,
        bus: EventBus,
        settings: Settings,
    ) -> None:
        self._model = model
        self._bus = bus
        self._settings = settings

    # -- Prompt construction ----------------------------------------

    def build_request(self, task: Task) -> GenerationRequest:
        """Build the planning request for *task*."""
        user_text = task_context(task)
        if task.starting_url:
            user_text += f"\n\nStarting URL: {task.starting_url}"
        elif not self._settings.web_search_enabled:
            user_text += "\n\nNo starting URL was given; you must provide one."
        return GenerationRequest(
            messages=[{"role": "user", "content": user_text}],
            tools=[PLAN_TOOL],
            system=_SYSTEM_PROMPT,
            max_tokens=_MAX_TOKENS,
        )

    # -- Response parsing -------------------------------------------

    def parse_plan(self, task: Task, tool_call: ToolCall | None) -> TaskPlan:
        """Convert a ``create_plan`` call into a ``TaskPlan``.

        Raises:
            PlanningError: The call is missing, malformed, or lacks a
                required starting URL.
        """
        if tool_call is None or tool_call.name != PLAN_TOOL.name:
            raise PlanningError("The model did not call create_plan.")
        try:
            args = parse_arguments(tool_call.arguments)
        except ToolCallDecodeError as exc:
            raise PlanningError(str(exc)) from exc

        criteria = args.get("successCriteria")
        plan_text = args.get("plan")
        if not isinstance(criteria, str) or not criteria.strip():
            raise PlanningError("create_plan is missing successCriteria.")
        if not isinstance(plan_text, str) or not plan_text.strip():
            raise PlanningError("create_plan is missing plan.")

        items = args.get("actionItems") or []
        if not isinstance(items, list):
            items = []
        url = args.get("url") if isinstance(args.get("url"), str) else ""

        if not task.starting_url and not url and not self._settings.web_search_enabled:
            raise PlanningError("No starting URL was provided by the planner.")

        return TaskPlan(
            success_criteria=criteria.strip(),
            plan=plan_text.strip(),
            action_items=[str(item) for item in items if str(item).strip()],
            url=url.strip(),
            raw_arguments=args,
        )

    # -- Planning ---------------------------------------------------

    async def plan(self, task: Task, iteration_id: str = "") -> TaskPlan:
        """Plan *task*, retrying transient failures.

        Args:
            task: The task to plan.
            iteration_id: Identifier stamped on generation events.

        Returns:
            The parsed plan.

        Raises:
            PlanningError: No usable plan after all attempts, or the
                model API rejected the request.
        """
        request = self.build_request(task)
        attempts = max(1, self._settings.planning_max_attempts)
        last_error = ""

        for attempt in range(attempts):
            try:
                response = await generate_with_events(
                    self._model, self._bus, request, "planning", iteration_id
                )
                plan = self.parse_plan(task, response.tool_call)
            except ModelCallError as exc:
                if not exc.is_retryable:
                    raise PlanningError(str(exc)) from exc
                last_error = str(exc)
            except PlanningError as exc:
                last_error = str(exc)
            else:
                logger.info(
                    "Plan ready (%d action items, url=%s)",
                    len(plan.action_items),
                    plan.url or task.starting_url or "-",
                )
                return plan

            logger.warning(
                "TaskPlanner: attempt %d/%d failed: %s",
                attempt + 1,
                attempts,
                last_error,
            )

        raise PlanningError(last_error)
