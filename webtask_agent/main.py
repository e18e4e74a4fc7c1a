"""Web task agent main entry point.

Wires the browser driver, the model client, the event bus and the
Director together and exposes a CLI to run one task.

Typical usage::

    python -m webtask_agent.main --task "Find the opening hours" \\
        --url https://example.com --browser mydrivers.playwright:PlaywrightBrowser

Programmatic usage::

    from webtask_agent.main import build_agent

    agent = build_agent("mydrivers.playwright:PlaywrightBrowser", api_key="sk-ant-...")
    result = asyncio.run(agent.run_task("Find the opening hours", "https://example.com"))
    print(result.success)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any

from webtask_agent.config.settings import Settings
from webtask_agent.core.director import Director
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.event_logger import EventLogger
from webtask_agent.core.model_client import AnthropicModelClient, ModelClient
from webtask_agent.core.search import SEARCH_PROVIDERS
from webtask_agent.models.task import Task, TaskResult
from webtask_agent.platform.failover import FailoverBrowser
from webtask_agent.platform.interface import BrowserInterface, create_browser

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


@dataclass
class WebTaskAgent:
    """Top-level agent that holds all component references.

    Constructed via the ``build_agent`` factory function.  Callers
    interact with the agent through ``run_task``.

    Attributes:
        browser: Browser driver (possibly wrapped for endpoint failover).
        model: Language-model client.
        bus: Event bus shared by the browser wrapper and the Director.
        event_logger: Subscriber writing events to the log.
        director: Task execution engine.
        settings: Immutable application configuration.
    """

    browser: BrowserInterface
    model: ModelClient
    bus: EventBus
    event_logger: EventLogger
    director: Director
    settings: Settings

    async def run_task(
        self,
        description: str,
        starting_url: str = "",
        guardrails: str = "",
        data: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> TaskResult:
        """Execute a natural-language task end-to-end.

        Args:
            description: The task, e.g. "Find the opening hours".
            starting_url: Optional first page.
            guardrails: Optional constraints for the agent.
            data: Optional structured context.
            cancel_event: Optional cancellation signal.

        Returns:
            The ``TaskResult`` of the run.
        """
        task = Task(
            description=description,
            starting_url=starting_url,
            guardrails=guardrails,
            data=data,
            settings=self.settings,
        )
        result = await self.director.execute(task, cancel_event)
        logger.info(
            "Task %s in %d iterations (%d actions, %.0f ms)",
            result.outcome.value,
            result.stats.iterations,
            result.stats.actions,
            result.stats.duration_ms,
        )
        return result


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_agent(
    browser_spec: str,
    api_key: str = "",
    settings: Settings | None = None,
    model: ModelClient | None = None,
) -> WebTaskAgent:
    """Create all components and return a fully wired ``WebTaskAgent``.

    Args:
        browser_spec: ``"module:attribute"`` naming the browser driver
            factory (see ``create_browser``).
        api_key: Anthropic API key.  Falls back to
            ``ANTHROPIC_API_KEY``.
        settings: Optional settings override.  When ``None`` the
            default settings are used.
        model: Optional model client replacing the Anthropic one.

    Returns:
        A fully constructed ``WebTaskAgent`` instance.
    """
    if settings is None:
        settings = Settings()

    # 1. Event bus and log bridge
    bus = EventBus()
    event_logger = EventLogger(bus)

    # 2. Browser, wrapped for failover when endpoints are configured
    browser: BrowserInterface
    if settings.cdp_endpoints:
        browser = FailoverBrowser(
            endpoints=settings.cdp_endpoints,
            connect=lambda endpoint: create_browser(browser_spec, endpoint),
            bus=bus,
        )
        logger.info("Using %d remote-debugging endpoints", len(settings.cdp_endpoints))
    else:
        browser = create_browser(browser_spec)

    # 3. Model client
    if model is None:
        model = AnthropicModelClient(settings, api_key=api_key)

    # 4. Director
    director = Director(browser=browser, model=model, bus=bus)

    return WebTaskAgent(
        browser=browser,
        model=model,
        bus=bus,
        event_logger=event_logger,
        director=director,
        settings=settings,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="webtask_agent",
        description="Accomplish a natural-language task in a web browser.",
    )
    parser.add_argument("--task", "-t", required=True, help="The task to execute.")
    parser.add_argument("--url", "-u", default="", help="Starting URL.")
    parser.add_argument(
        "--browser",
        "-b",
        required=True,
        help="Browser driver factory as 'module:attribute'.",
    )
    parser.add_argument(
        "--api-key",
        "-k",
        default="",
        help=(
            "Anthropic API key. Falls back to the ANTHROPIC_API_KEY "
            "environment variable if not provided."
        ),
    )
    parser.add_argument("--guardrails", default="", help="Constraints for the agent.")
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--vision", action="store_true", help="Attach screenshots.")
    parser.add_argument("--debug", action="store_true", help="Emit debug events.")
    parser.add_argument(
        "--web-search",
        action="store_true",
        help="Offer the web_search tool; the task may then omit --url.",
    )
    parser.add_argument(
        "--search-provider",
        default=None,
        choices=SEARCH_PROVIDERS,
        help="Backend of web_search (default: duckduckgo).",
    )
    parser.add_argument("--record", action="store_true", help="Record the session.")
    parser.add_argument("--session-dir", default=None, help="Where sessions are saved.")
    parser.add_argument(
        "--cdp-endpoint",
        action="append",
        default=[],
        dest="cdp_endpoints",
        help="Remote-debugging endpoint (repeatable).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Overlay CLI options on the default settings."""
    overrides: dict[str, Any] = {
        "vision": args.vision,
        "debug": args.debug,
        "recording_enabled": args.record,
        "web_search_enabled": args.web_search,
        "cdp_endpoints": args.cdp_endpoints,
    }
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations
    if args.session_dir:
        overrides["session_dir"] = args.session_dir
    if args.search_provider:
        overrides["search_provider"] = args.search_provider
    return Settings.from_dict(overrides)


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments, build the agent, run the task, and print results."""
    args = build_parser().parse_args(argv)

    # -- Logging setup ---------------------------------------------------
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # -- Resolve API key -------------------------------------------------
    api_key: str = args.api_key or os.environ.get("ANTHROPIC_API_KEY", "")
    if not api_key:
        logger.error(
            "No API key provided. Use --api-key or set the "
            "ANTHROPIC_API_KEY environment variable."
        )
        sys.exit(1)

    # -- Build and run ---------------------------------------------------
    settings = settings_from_args(args)
    agent = build_agent(args.browser, api_key=api_key, settings=settings)

    logger.info("Running task: %s", args.task)
    result = asyncio.run(agent.run_task(args.task, args.url, args.guardrails))

    _print_result_summary(args.task, result)
    sys.exit(0 if result.success else 1)


def _print_result_summary(description: str, result: TaskResult) -> None:
    """Print a human-readable summary of the task result."""
    separator = "-" * 60
    print(separator)
    print(f"Task:       {description}")
    print(f"Status:     {'SUCCESS' if result.success else result.outcome.value.upper()}")
    if result.final_answer:
        print(f"Answer:     {result.final_answer}")
    print(f"Iterations: {result.stats.iterations}")
    print(f"Actions:    {result.stats.actions}")
    print(f"Duration:   {result.stats.duration_ms:.0f} ms")
    if result.error:
        code = f" [{result.error_code.value}]" if result.error_code else ""
        print(f"Error:      {result.error}{code}")
    print(separator)


if __name__ == "__main__":
    main()
