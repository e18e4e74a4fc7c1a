"""Remote-debugging endpoint failover.

When the agent drives browsers reached over the Chrome DevTools
Protocol, a pool of endpoints can be configured.  ``FailoverBrowser``
wraps one driver per endpoint behind the ordinary ``BrowserInterface``:
when a call fails with ``BrowserDisconnectedError`` it connects to the
next endpoint in the list and repeats the call.  Within one call the
list is wrapped around at most once, so every endpoint (including the
one that just failed) gets exactly one more chance before the error is
raised to the caller.

Each switch publishes ``cdp:endpoint_cycle`` with the cycle number and
the error that triggered it; each successful connection publishes
``cdp:endpoint_connected``.

Typical usage::

    browser = FailoverBrowser(
        endpoints=["ws://10.0.0.5:9222", "ws://10.0.0.6:9222"],
        connect=lambda endpoint: CdpBrowser(endpoint),
        bus=bus,
    )
    await browser.start()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from webtask_agent.core.errors import BrowserDisconnectedError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.models.actions import ActionType
from webtask_agent.models.events import (
    CdpEndpointConnectedPayload,
    CdpEndpointCyclePayload,
    EventType,
)
from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)

# Exceptions treated as a lost or refused connection.
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    BrowserDisconnectedError,
    ConnectionError,
    OSError,
)


class FailoverBrowser(BrowserInterface):
    """A browser that moves to the next endpoint on connection loss.

    Args:
        endpoints: Remote-debugging endpoints, tried in order.
        connect: Factory building an unstarted driver for an endpoint.
        bus: Bus receiving endpoint events.

    Raises:
        ValueError: If *endpoints* is empty.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        connect: Callable[[str], BrowserInterface],
        bus: EventBus,
    ) -> None:
        if not endpoints:
            raise ValueError("FailoverBrowser needs at least one endpoint")
        self._endpoints = list(endpoints)
        self._connect = connect
        self._bus = bus
        self._index = 0
        self._browser: BrowserInterface | None = None

    @property
    def endpoint(self) -> str:
        """The endpoint currently in use (or tried next)."""
        return self._endpoints[self._index]

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        await self._close()
        browser = self._connect(self.endpoint)
        await browser.start()
        self._browser = browser
        logger.info("Connected to remote browser endpoint %d", self._index)
        self._bus.publish(
            EventType.CDP_ENDPOINT_CONNECTED,
            CdpEndpointConnectedPayload(
                endpoint=self.endpoint,
                endpoint_index=self._index,
            ),
        )

    async def _close(self) -> None:
        if self._browser is None:
            return
        browser, self._browser = self._browser, None
        try:
            await browser.shutdown()
        except Exception as exc:
            # The connection is usually already gone at this point.
            logger.warning("Ignoring shutdown error on dead endpoint: %s", exc)

    async def _failover(self, error: BaseException, cycles: int) -> int:
        """Cycle endpoints until one connects.

        Args:
            error: The failure that triggered the switch.
            cycles: Switches already made during the current call.

        Returns:
            The updated number of switches.

        Raises:
            BrowserDisconnectedError: Every endpoint failed once more.
        """
        total = len(self._endpoints)
        while True:
            if cycles >= total:
                raise BrowserDisconnectedError(
                    f"All {total} remote-debugging endpoints failed; "
                    f"last error: {error}"
                ) from error
            cycles += 1
            self._index = (self._index + 1) % total
            logger.warning(
                "Browser connection lost (%s); switching to endpoint %d/%d",
                error,
                self._index + 1,
                total,
            )
            self._bus.publish(
                EventType.CDP_ENDPOINT_CYCLE,
                CdpEndpointCyclePayload(
                    attempt=cycles,
                    total=total,
                    error=f"{type(error).__name__}: {error}",
                    endpoint_index=self._index,
                ),
            )
            try:
                await self._open()
                return cycles
            except _CONNECTION_ERRORS as exc:
                error = exc

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        if self._browser is None:
            raise BrowserDisconnectedError("Browser has not been started")
        cycles = 0
        while True:
            try:
                return await getattr(self._browser, method)(*args, **kwargs)
            except BrowserDisconnectedError as exc:
                cycles = await self._failover(exc, cycles)

    # ------------------------------------------------------------------
    # BrowserInterface
    # ------------------------------------------------------------------

    async def start(self) -> None:
        try:
            await self._open()
        except _CONNECTION_ERRORS as exc:
            await self._failover(exc, 0)

    async def shutdown(self) -> None:
        await self._close()

    async def goto(self, url: str, timeout_ms: int | None = None) -> None:
        await self._call("goto", url, timeout_ms=timeout_ms)

    async def go_back(self) -> None:
        await self._call("go_back")

    async def go_forward(self) -> None:
        await self._call("go_forward")

    async def get_url(self) -> str:
        return await self._call("get_url")

    async def get_title(self) -> str:
        return await self._call("get_title")

    async def get_accessibility_snapshot(self) -> str:
        return await self._call("get_accessibility_snapshot")

    async def get_screenshot(self) -> bytes:
        return await self._call("get_screenshot")

    async def perform_action(
        self,
        ref: str,
        action: ActionType,
        value: str | None = None,
    ) -> None:
        await self._call("perform_action", ref, action, value)

    async def wait_for_load_state(
        self,
        state: str = "load",
        timeout_ms: int | None = None,
    ) -> None:
        await self._call("wait_for_load_state", state, timeout_ms=timeout_ms)
