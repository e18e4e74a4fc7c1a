"""Prompt text for the action loop.

Only the framing the engine needs is kept here; wording is expected to
be tuned independently of the control flow.
"""

from __future__ import annotations

import json

from webtask_agent.models.task import Task, TaskPlan

# Replaces the body of snapshot turns older than the latest one.
CLIPPED_MARKER: str = "[clipped for brevity]"

ACTION_SYSTEM_PROMPT: str = (
    "You are a web automation agent. You see the current page as an "
    "accessibility snapshot in which interactive elements carry a "
    "[ref=ID] marker. Act by calling exactly one tool per turn.\n"
    "\n"
    "Guidelines:\n"
    "- Only use refs from the most recent snapshot.\n"
    "- Prefer direct navigation (goto) when you know the URL.\n"
    "- Use fill_and_enter to type into a search box and submit it.\n"
    "- Use extract to read long pages or details the snapshot omits.\n"
    "- Call done with the complete answer once the success criteria "
    "are met.\n"
    "- Call abort only when the task is impossible.\n"
)


def task_context(task: Task) -> str:
    """Describe the task, guardrails, and context data."""
    parts = [f"Task: {task.description}"]
    if task.guardrails:
        parts.append(f"Guardrails: {task.guardrails}")
    if task.data:
        parts.append("Context data:\n" + json.dumps(task.data, indent=2, default=str))
    return "\n".join(parts)


def initial_message(task: Task, plan: TaskPlan, url: str) -> str:
    """First user turn of the action loop."""
    lines = [
        task_context(task),
        f"Starting URL: {url}",
        f"Success criteria: {plan.success_criteria}",
        f"Plan:\n{plan.plan}",
    ]
    if plan.action_items:
        lines.append(
            "Action items:\n" + "\n".join(f"- {item}" for item in plan.action_items)
        )
    return "\n\n".join(lines)


def repetition_warning(action_description: str, count: int) -> str:
    return (
        f"You have requested the same action ({action_description}) {count} "
        "times in a row without progress, so it was not executed again. "
        "Review the page and try a different approach."
    )


def action_result(action_description: str, output: str = "") -> str:
    """Tool result of a successfully executed action."""
    text = f"Action completed: {action_description}"
    if output:
        text += f"\n\n{output}"
    return text


def validation_feedback(quality: str, feedback: str) -> str:
    text = f"Your answer was judged {quality}; the task is not complete yet."
    if feedback:
        text += f"\nFeedback: {feedback}"
    return text + "\nContinue working, then call done with an improved answer."
