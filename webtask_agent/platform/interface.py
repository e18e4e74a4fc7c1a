"""Abstract base class defining the browser capability contract.

Every browser driver (a locally launched browser, a remote browser
reached over the Chrome DevTools Protocol, or an in-page extension
host) provides a concrete subclass of ``BrowserInterface``.  The agent
core depends only on this contract.

Drivers report failures with the exceptions in
``webtask_agent.core.errors``: ``InvalidRefError``, ``StaleRefError``,
``ElementNotFoundError`` and ``BrowserActionError`` for element
actions, and ``BrowserDisconnectedError`` when the connection to the
browser is lost.  Navigation timeouts may surface as ``TimeoutError``
or as any exception whose message mentions a timeout.
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from collections.abc import Callable

from webtask_agent.models.actions import ActionType

# Load states accepted by ``wait_for_load_state``.
LOAD_STATES: tuple[str, ...] = ("load", "domcontentloaded", "networkidle")


class BrowserInterface(ABC):
    """Abstract interface for browser control.

    All methods are coroutines.  A single instance is owned by one task
    run for its lifetime, between ``start`` and ``shutdown``.
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """Launch or connect to the browser and open a page."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Close the page and release the browser.

        Must be safe to call when ``start`` failed or was never called.
        """

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @abstractmethod
    async def goto(self, url: str, timeout_ms: int | None = None) -> None:
        """Navigate the page to *url*.

        Args:
            url: Destination URL.
            timeout_ms: Navigation timeout.  ``None`` uses the driver
                default.
        """

    @abstractmethod
    async def go_back(self) -> None:
        """Navigate one entry back in history."""

    @abstractmethod
    async def go_forward(self) -> None:
        """Navigate one entry forward in history."""

    # ------------------------------------------------------------------
    # Page state
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_url(self) -> str:
        """Return the current page URL."""

    @abstractmethod
    async def get_title(self) -> str:
        """Return the current document title."""

    @abstractmethod
    async def get_accessibility_snapshot(self) -> str:
        """Return the page's accessibility tree as text.

        Each element line starts with ``- `` and carries a role, an
        optional quoted name, and bracketed properties including
        ``[ref=ID]``.  Refs stay valid until the next snapshot.
        """

    @abstractmethod
    async def get_screenshot(self) -> bytes:
        """Capture the viewport as encoded image bytes (PNG or JPEG)."""

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    @abstractmethod
    async def perform_action(
        self,
        ref: str,
        action: ActionType,
        value: str | None = None,
    ) -> None:
        """Perform an element-scoped action.

        Args:
            ref: Element reference from the latest snapshot.
            action: One of the element actions (click, hover, fill,
                focus, check, uncheck, select, enter).  ``DONE`` and
                ``ABORT`` are no-ops.
            value: Text for ``FILL`` or the option for ``SELECT``.
        """

    @abstractmethod
    async def wait_for_load_state(
        self,
        state: str = "load",
        timeout_ms: int | None = None,
    ) -> None:
        """Wait until the page reaches *state* (see ``LOAD_STATES``).

        Raises:
            TimeoutError: If the state is not reached in time.
        """


BrowserFactory = Callable[..., BrowserInterface]


def create_browser(spec: str, endpoint: str | None = None) -> BrowserInterface:
    """Instantiate a driver named by a ``"module:attribute"`` string.

    The attribute may be a ``BrowserInterface`` subclass or any
    callable returning an instance.  It is called with no arguments, or
    with the remote-debugging *endpoint* when one is given.  The module is
    imported lazily so that driver dependencies are only required when
    the driver is used.

    Args:
        spec: Import path, e.g. ``"mydrivers.playwright:PlaywrightBrowser"``.
        endpoint: Optional remote-debugging endpoint to connect to.

    Returns:
        A ``BrowserInterface`` instance.

    Raises:
        ValueError: If *spec* is not of the form ``module:attribute``.
        TypeError: If the factory does not produce a
            ``BrowserInterface``.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"Browser spec must look like 'module:attribute', got {spec!r}"
        )
    factory: BrowserFactory = getattr(importlib.import_module(module_name), attr)
    browser = factory(endpoint) if endpoint else factory()
    if not isinstance(browser, BrowserInterface):
        raise TypeError(
            f"{spec} produced {type(browser).__name__}, not a BrowserInterface"
        )
    return browser
