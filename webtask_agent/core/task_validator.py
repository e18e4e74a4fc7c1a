"""Checks a proposed final answer against the task's success criteria.

When the agent calls ``done``, the ``TaskValidator`` asks the model,
through the ``validate_task`` tool, for a completion quality
(``failed``, ``partial``, ``complete`` or ``excellent``), an
assessment, and feedback for another attempt.  The Director decides
what to do with the verdict.
"""

from __future__ import annotations

import logging

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import ToolCallDecodeError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.model_client import ModelClient, generate_with_events
from webtask_agent.core.prompts import task_context
from webtask_agent.core.tool_calls import VALIDATE_TOOL, parse_arguments
from webtask_agent.models.generation import GenerationRequest, ToolCall
from webtask_agent.models.task import CompletionQuality, Task, TaskPlan, ValidationVerdict

logger = logging.getLogger(__name__)

_MAX_TOKENS: int = 1024

# Most recent actions shown to the validator.
_HISTORY_LIMIT: int = 20

_SYSTEM_PROMPT: str = (
    "You review the work of a web automation agent. Compare the "
    "proposed final answer with the task and its success criteria, "
    "then call validate_task. Use 'complete' or 'excellent' only when "
    "every criterion is met; otherwise explain in feedback what is "
    "missing."
)


class TaskValidator:
    """Grades proposed final answers via the model.

    Args:
        model: Model client used for the validation call.
        bus: Bus receiving generation events.
        settings: Global configuration.
    """

    def __init__(self, model: ModelClient, bus: EventBus, settings: Settings) -> None:
        self._model = model
        self._bus = bus
        self._settings = settings

    def build_request(
        self,
        task: Task,
        plan: TaskPlan | None,
        answer: str,
        history: list[str],
    ) -> GenerationRequest:
        """Build the validation request."""
        parts = [task_context(task)]
        if plan is not None:
            parts.append(f"Success criteria: {plan.success_criteria}")
        if history:
            recent = history[-_HISTORY_LIMIT:]
            parts.append("Actions taken:\n" + "\n".join(f"- {h}" for h in recent))
        parts.append(f"Proposed final answer:\n{answer}")
        return GenerationRequest(
            messages=[{"role": "user", "content": "\n\n".join(parts)}],
            tools=[VALIDATE_TOOL],
            system=_SYSTEM_PROMPT,
            max_tokens=_MAX_TOKENS,
        )

    @staticmethod
    def parse_verdict(tool_call: ToolCall | None) -> ValidationVerdict:
        """Convert a ``validate_task`` call into a verdict.

        Raises:
            ToolCallDecodeError: The call is missing or malformed.
        """
        if tool_call is None or tool_call.name != VALIDATE_TOOL.name:
            raise ToolCallDecodeError("The validator did not call validate_task.")
        args = parse_arguments(tool_call.arguments)
        try:
            quality = CompletionQuality(str(args.get("completionQuality", "")).lower())
        except ValueError:
            raise ToolCallDecodeError(
                f"Invalid completionQuality {args.get('completionQuality')!r}.",
                raw=str(args),
            ) from None
        feedback = args.get("feedback")
        return ValidationVerdict(
            quality=quality,
            assessment=str(args.get("taskAssessment", "")),
            feedback=feedback if isinstance(feedback, str) else "",
        )

    async def validate(
        self,
        task: Task,
        plan: TaskPlan | None,
        answer: str,
        history: list[str],
        iteration_id: str = "",
    ) -> ValidationVerdict:
        """Grade *answer*.

        Raises:
            ModelCallError: The model call failed.
            ToolCallDecodeError: The verdict could not be decoded.
        """
        request = self.build_request(task, plan, answer, history)
        response = await generate_with_events(
            self._model, self._bus, request, "validation", iteration_id
        )
        verdict = self.parse_verdict(response.tool_call)
        logger.info("Answer validated as %s", verdict.quality.value)
        return verdict
