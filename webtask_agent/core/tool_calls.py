"""Tool definitions and decoding of model tool calls.

The model acts by calling one of a fixed set of tools.  This module
defines the tool schemas sent with every request and turns the tool
call that comes back into a typed ``Action``.  Anything that cannot be
decoded raises ``ToolCallDecodeError``; the Director answers that with
corrective feedback instead of failing the task.

Providers do not always return clean arguments.  Some send the
argument object as a string, occasionally with the JSON duplicated
(``{"ref":"e1"}{"ref":"e1"}``) or wrapped in a Markdown fence.
``parse_arguments`` repairs those cases by extracting the first
balanced JSON object.

Typical usage::

    from webtask_agent.core.tool_calls import action_tools, parse_action

    request = GenerationRequest(messages=messages, tools=action_tools())
    response = await model.generate(request)
    action = parse_action(response.tool_call)
"""

from __future__ import annotations

import json
import re
from typing import Any

from webtask_agent.core.errors import ToolCallDecodeError
from webtask_agent.models.actions import (
    ELEMENT_ACTIONS,
    VALUE_ACTIONS,
    Action,
    ActionType,
)
from webtask_agent.models.generation import ToolCall, ToolSpec
from webtask_agent.models.task import CompletionQuality

# Longest pause the model may request.
_MAX_WAIT_SECONDS: float = 60.0

_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)

# ------------------------------------------------------------------
# Tool schemas
# ------------------------------------------------------------------

_REF_PROPERTY: dict[str, Any] = {
    "type": "string",
    "description": "Element reference from the page snapshot, e.g. 'e12'.",
}

_ACTION_DESCRIPTIONS: dict[ActionType, str] = {
    ActionType.CLICK: "Click an element.",
    ActionType.HOVER: "Move the pointer over an element.",
    ActionType.FILL: "Replace the text of an input field.",
    ActionType.FOCUS: "Give keyboard focus to an element.",
    ActionType.CHECK: "Tick a checkbox or radio button.",
    ActionType.UNCHECK: "Clear a checkbox.",
    ActionType.SELECT: "Choose an option in a select element.",
    ActionType.ENTER: "Press Enter on an element, e.g. to submit a form.",
    ActionType.FILL_AND_ENTER: "Fill an input field and press Enter, e.g. to submit a search.",
    ActionType.GOTO: "Navigate to a URL.",
    ActionType.BACK: "Go back to the previous page.",
    ActionType.FORWARD: "Go forward to the next page.",
    ActionType.WAIT: "Wait for the page to change.",
    ActionType.EXTRACT: (
        "Extract the described data from the current page. Use it for long "
        "pages or when the snapshot omits details."
    ),
    ActionType.WEB_SEARCH: "Search the web and return a summary of the results.",
    ActionType.DONE: "Finish the task and report the final result.",
    ActionType.ABORT: "Give up when the task cannot be completed.",
}


def _object_schema(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
    }


def _action_schema(action: ActionType) -> dict[str, Any]:
    if action in VALUE_ACTIONS:
        return _object_schema(
            {
                "ref": _REF_PROPERTY,
                "value": {"type": "string", "description": "Text or option to use."},
            }
        )
    if action in ELEMENT_ACTIONS:
        return _object_schema({"ref": _REF_PROPERTY})
    if action is ActionType.GOTO:
        return _object_schema({"url": {"type": "string"}})
    if action is ActionType.WAIT:
        return _object_schema(
            {"seconds": {"type": "number", "minimum": 0, "maximum": _MAX_WAIT_SECONDS}}
        )
    if action is ActionType.DONE:
        return _object_schema(
            {"result": {"type": "string", "description": "The final answer."}}
        )
    if action is ActionType.ABORT:
        return _object_schema(
            {"description": {"type": "string", "description": "Why the task cannot be done."}}
        )
    if action is ActionType.EXTRACT:
        return _object_schema(
            {"description": {"type": "string", "description": "What data to extract."}}
        )
    if action is ActionType.WEB_SEARCH:
        return _object_schema({"query": {"type": "string"}})
    return _object_schema({})


def _tool(action: ActionType) -> ToolSpec:
    return ToolSpec(
        name=action.value,
        description=_ACTION_DESCRIPTIONS[action],
        parameters=_action_schema(action),
    )


# Offered on every action request.
ACTION_TOOLS: list[ToolSpec] = [
    _tool(action) for action in ActionType if action is not ActionType.WEB_SEARCH
]

# Offered only when web search is enabled.
SEARCH_TOOL: ToolSpec = _tool(ActionType.WEB_SEARCH)


def action_tools(web_search: bool = False) -> list[ToolSpec]:
    """Tools for an action request, with ``web_search`` when enabled."""
    tools = list(ACTION_TOOLS)
    if web_search:
        tools.append(SEARCH_TOOL)
    return tools

PLAN_TOOL: ToolSpec = ToolSpec(
    name="create_plan",
    description="Record the success criteria and a step-by-step plan for the task.",
    parameters={
        "type": "object",
        "properties": {
            "successCriteria": {"type": "string"},
            "plan": {"type": "string"},
            "actionItems": {"type": "array", "items": {"type": "string"}},
            "url": {"type": "string", "description": "Page to start from."},
        },
        "required": ["successCriteria", "plan"],
    },
)

VALIDATE_TOOL: ToolSpec = ToolSpec(
    name="validate_task",
    description="Judge whether the proposed final answer completes the task.",
    parameters={
        "type": "object",
        "properties": {
            "taskAssessment": {"type": "string"},
            "completionQuality": {
                "type": "string",
                "enum": [q.value for q in CompletionQuality],
            },
            "feedback": {"type": "string"},
        },
        "required": ["taskAssessment", "completionQuality"],
    },
)


# ------------------------------------------------------------------
# Argument repair
# ------------------------------------------------------------------


def extract_first_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` object in *text*.

    Braces inside JSON strings (including escaped quotes) are ignored.

    Returns:
        The object's source text, or an empty string when no complete
        object is present.
    """
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    return ""


def parse_arguments(arguments: dict[str, Any] | str) -> dict[str, Any]:
    """Normalise tool-call arguments to a dict.

    Args:
        arguments: A dict, or JSON text that may be fenced, duplicated,
            or followed by trailing garbage.

    Returns:
        The argument object.

    Raises:
        ToolCallDecodeError: If no JSON object can be recovered.
    """
    if isinstance(arguments, dict):
        return arguments

    text = arguments.strip()
    if not text:
        return {}

    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        candidate = extract_first_json_object(text)
        if not candidate:
            raise ToolCallDecodeError(
                "Tool arguments are not valid JSON.", raw=arguments
            ) from None
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise ToolCallDecodeError(
                f"Tool arguments are not valid JSON: {exc}", raw=arguments
            ) from exc

    if not isinstance(data, dict):
        raise ToolCallDecodeError(
            f"Tool arguments must be a JSON object, got {type(data).__name__}.",
            raw=arguments,
        )
    return data


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------


def _require_str(args: dict[str, Any], key: str, tool: str, allow_empty: bool = False) -> str:
    value = args.get(key)
    if not isinstance(value, str):
        raise ToolCallDecodeError(
            f"Tool '{tool}' requires a string '{key}' argument.",
            raw=json.dumps(args, default=str),
        )
    if not allow_empty and not value.strip():
        raise ToolCallDecodeError(
            f"Tool '{tool}' requires a non-empty '{key}' argument.",
            raw=json.dumps(args, default=str),
        )
    return value


def parse_action(tool_call: ToolCall | None) -> Action:
    """Decode a model tool call into an ``Action``.

    Args:
        tool_call: The first tool call of a response, or ``None`` when
            the model answered with text only.

    Returns:
        The decoded action.

    Raises:
        ToolCallDecodeError: The call is missing, names an unknown
            tool, or violates the tool's argument schema.
    """
    if tool_call is None:
        raise ToolCallDecodeError(
            "No tool call was made. You must respond with exactly one tool call."
        )

    try:
        action_type = ActionType(tool_call.name)
    except ValueError:
        valid = ", ".join(a.value for a in ActionType)
        raise ToolCallDecodeError(
            f"Unknown tool '{tool_call.name}'. Valid tools: {valid}.",
            raw=tool_call.name,
        ) from None

    args = parse_arguments(tool_call.arguments)
    name = tool_call.name

    if action_type in ELEMENT_ACTIONS:
        ref = _require_str(args, "ref", name)
        value = ""
        if action_type in VALUE_ACTIONS:
            value = _require_str(args, "value", name, allow_empty=True)
        return Action(type=action_type, ref=ref, value=value, call_id=tool_call.id)

    if action_type is ActionType.GOTO:
        url = _require_str(args, "url", name)
        return Action(type=action_type, url=url.strip(), call_id=tool_call.id)

    if action_type is ActionType.WAIT:
        seconds = args.get("seconds")
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            raise ToolCallDecodeError(
                "Tool 'wait' requires a numeric 'seconds' argument.",
                raw=json.dumps(args, default=str),
            )
        if not 0 <= seconds <= _MAX_WAIT_SECONDS:
            raise ToolCallDecodeError(
                f"Tool 'wait' accepts 0 to {_MAX_WAIT_SECONDS:g} seconds, got {seconds}.",
                raw=json.dumps(args, default=str),
            )
        return Action(type=action_type, seconds=float(seconds), call_id=tool_call.id)

    if action_type is ActionType.DONE:
        result = _require_str(args, "result", name)
        return Action(type=action_type, text=result, call_id=tool_call.id)

    if action_type is ActionType.ABORT:
        reason = _require_str(args, "description", name)
        return Action(type=action_type, text=reason, call_id=tool_call.id)

    if action_type is ActionType.EXTRACT:
        description = _require_str(args, "description", name)
        return Action(type=action_type, value=description.strip(), call_id=tool_call.id)

    if action_type is ActionType.WEB_SEARCH:
        query = _require_str(args, "query", name)
        return Action(type=action_type, value=query.strip(), call_id=tool_call.id)

    # BACK / FORWARD take no arguments.
    return Action(type=action_type, call_id=tool_call.id)
