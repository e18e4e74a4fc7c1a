"""Browser actions the model can request.

An ``Action`` is a tagged variant over the closed ``ActionType`` set.
Element-scoped actions carry the ``ref`` of the element they target;
navigation and control actions carry their own arguments.  ``done`` and
``abort`` are terminal: the browser never sees them, only the engine
interprets them.  ``extract`` and ``web_search`` read the page or the web
without changing the page.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActionType(Enum):
    """The kind of action the agent can take.

    Attributes:
        CLICK: Click an element.
        HOVER: Move the pointer over an element.
        FILL: Replace the text of an input element.
        FOCUS: Give keyboard focus to an element.
        CHECK: Tick a checkbox or radio button.
        UNCHECK: Clear a checkbox.
        SELECT: Choose an option of a select element.
        ENTER: Press Enter while the element has focus.
        FILL_AND_ENTER: Fill an input element, then press Enter on it.
        GOTO: Navigate to a URL.
        BACK: Go back in history.
        FORWARD: Go forward in history.
        WAIT: Pause for a number of seconds.
        EXTRACT: Pull the data described in ``value`` out of the page.
        WEB_SEARCH: Run a web search for the query in ``value``.
        DONE: Finish the task with a final answer.
        ABORT: Give up on the task with a reason.
    """

    CLICK = "click"
    HOVER = "hover"
    FILL = "fill"
    FOCUS = "focus"
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT = "select"
    ENTER = "enter"
    FILL_AND_ENTER = "fill_and_enter"
    GOTO = "goto"
    BACK = "back"
    FORWARD = "forward"
    WAIT = "wait"
    EXTRACT = "extract"
    WEB_SEARCH = "web_search"
    DONE = "done"
    ABORT = "abort"


# Actions that target a page element and therefore require a ref.
ELEMENT_ACTIONS: frozenset[ActionType] = frozenset(
    {
        ActionType.CLICK,
        ActionType.HOVER,
        ActionType.FILL,
        ActionType.FOCUS,
        ActionType.CHECK,
        ActionType.UNCHECK,
        ActionType.SELECT,
        ActionType.ENTER,
        ActionType.FILL_AND_ENTER,
    }
)

# Element actions that additionally require a value.
VALUE_ACTIONS: frozenset[ActionType] = frozenset(
    {ActionType.FILL, ActionType.SELECT, ActionType.FILL_AND_ENTER}
)

# Actions interpreted by the engine only.
TERMINAL_ACTIONS: frozenset[ActionType] = frozenset(
    {ActionType.DONE, ActionType.ABORT}
)

# Actions that read the page or the web without changing the page.
READING_ACTIONS: frozenset[ActionType] = frozenset(
    {ActionType.EXTRACT, ActionType.WEB_SEARCH}
)


@dataclass(frozen=True)
class Action:
    """A single decoded action request.

    Only the fields relevant to ``type`` are populated; the rest keep
    their defaults.

    Attributes:
        type: The kind of action.
        ref: Element reference from the latest snapshot (element
            actions only).
        value: Text to fill, option to select, description of the data
            to extract, or web search query.
        url: Destination of a ``GOTO``.
        seconds: Duration of a ``WAIT``.
        text: Final answer of ``DONE`` or reason of ``ABORT``.
        call_id: Identifier tying the action to the tool call that
            produced it in the transcript.
    """

    type: ActionType
    ref: str = ""
    value: str = ""
    url: str = ""
    seconds: float = 0.0
    text: str = ""
    call_id: str = ""

    @property
    def is_terminal(self) -> bool:
        """Whether the action ends the run (``done`` or ``abort``)."""
        return self.type in TERMINAL_ACTIONS

    @property
    def is_element_action(self) -> bool:
        """Whether this action targets a page element."""
        return self.type in ELEMENT_ACTIONS

    @property
    def changes_page(self) -> bool:
        """Whether the page may differ after this action runs."""
        return self.type not in READING_ACTIONS and self.type not in TERMINAL_ACTIONS

    @property
    def signature(self) -> str:
        """Key used to detect the same action being repeated.

        Navigation actions use the URL in place of the value so that
        repeated ``goto`` calls to one page are recognised.
        """
        value = self.url if self.type is ActionType.GOTO else self.value
        return f"{self.type.value}:{self.ref}:{value}"

    def describe(self) -> str:
        """Return a short human-readable form, e.g. ``click [ref=e5]``."""
        parts = [self.type.value]
        if self.ref:
            parts.append(f"[ref={self.ref}]")
        if self.value:
            parts.append(repr(self.value))
        if self.url:
            parts.append(self.url)
        if self.type is ActionType.WAIT:
            parts.append(f"{self.seconds:g}s")
        return " ".join(parts)
