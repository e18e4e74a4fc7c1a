"""Web search for the ``web_search`` action.

A ``SearchProvider`` turns a query into a text summary of results that
the model reads like any other page.  Two families exist:

- **Browser providers** (DuckDuckGo, Google, Bing) open the engine's
  result page in the agent's browser and return its accessibility
  snapshot.  The page the agent was on is reopened afterwards so the
  next observation sees the same page as before the search.
- **API providers** (Parallel) call a search API over ``httpx`` and
  format the hits as a numbered Markdown list.

``SearchService`` binds a provider to the browser and appends a
reminder that results are only summaries.

Typical usage::

    from webtask_agent.core.search import SearchService, create_search_provider

    service = SearchService(create_search_provider("duckduckgo"), browser)
    text = await service.search("opening hours city library")
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote_plus

import httpx

from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)

# Appended to every result so the model visits pages instead of
# answering from snippets.
SEARCH_RESULTS_REMINDER: str = (
    "**IMPORTANT:** These are only search result summaries. When you find "
    'relevant results, use `goto({"url": "..."})` to visit the actual page '
    "and get complete information."
)

# Parallel search API.
_PARALLEL_URL: str = "https://api.parallel.ai/v1beta/search"
_PARALLEL_BETA: str = "search-extract-2025-10-10"
_PARALLEL_EXCERPT_CHARS: int = 1500


class SearchError(Exception):
    """A search could not be performed."""


class SearchProvider(ABC):
    """Abstract search backend.

    Attributes:
        name: Provider name shown in the results header.
        requires_browser: Whether ``search`` needs the browser.
    """

    name: str = ""
    requires_browser: bool = False

    @abstractmethod
    async def search(self, query: str, browser: BrowserInterface | None = None) -> str:
        """Search for *query* and return the results as text.

        Raises:
            SearchError: The search failed.
        """


# ------------------------------------------------------------------
# Browser providers
# ------------------------------------------------------------------


class BrowserSearchProvider(SearchProvider):
    """Searches by loading the engine's result page in the browser.

    Subclasses only supply ``search_url``.

    Args:
        timeout_ms: Load timeout for the result page.
    """

    requires_browser = True

    def __init__(self, timeout_ms: int = 30000) -> None:
        self._timeout_ms = timeout_ms

    @abstractmethod
    def search_url(self, query: str) -> str:
        """Result page URL for *query*."""

    async def search(self, query: str, browser: BrowserInterface | None = None) -> str:
        if browser is None:
            raise SearchError(f"{self.name} search requires a browser")

        previous = await browser.get_url()
        await browser.goto(self.search_url(query), timeout_ms=self._timeout_ms)
        try:
            await browser.wait_for_load_state("load", timeout_ms=self._timeout_ms)
            snapshot = await browser.get_accessibility_snapshot()
        finally:
            if previous:
                await browser.goto(previous, timeout_ms=self._timeout_ms)

        return f'# Search Results for "{query}" (via {self.name})\n\n```\n{snapshot}\n```'


class DuckDuckGoSearchProvider(BrowserSearchProvider):
    name = "DuckDuckGo"

    def search_url(self, query: str) -> str:
        return f"https://lite.duckduckgo.com/lite/?q={quote_plus(query)}"


class GoogleSearchProvider(BrowserSearchProvider):
    name = "Google"

    def search_url(self, query: str) -> str:
        return f"https://www.google.com/search?q={quote_plus(query)}"


class BingSearchProvider(BrowserSearchProvider):
    name = "Bing"

    def search_url(self, query: str) -> str:
        return f"https://www.bing.com/search?q={quote_plus(query)}"


# ------------------------------------------------------------------
# API providers
# ------------------------------------------------------------------


class ParallelSearchProvider(SearchProvider):
    """Searches through the Parallel search API.

    Args:
        api_key: Parallel API key.
        timeout_seconds: HTTP timeout.
        transport: Optional httpx transport, e.g. a
            ``httpx.MockTransport`` in tests.
    """

    name = "Parallel"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._transport = transport

    async def search(self, query: str, browser: BrowserInterface | None = None) -> str:
        payload = {
            "objective": query,
            "search_queries": [query],
            "excerpts": {"max_chars_per_result": _PARALLEL_EXCERPT_CHARS},
        }
        headers = {
            "x-api-key": self._api_key,
            "parallel-beta": _PARALLEL_BETA,
            "content-type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(_PARALLEL_URL, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise SearchError(f"Parallel API request failed: {type(exc).__name__}: {exc}") from exc

        if resp.status_code != 200:
            raise SearchError(f"Parallel API error ({resp.status_code}): {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise SearchError(f"Parallel API returned invalid JSON: {exc}") from exc

        results = body.get("results") if isinstance(body, dict) else None
        return self.format_results(query, results if isinstance(results, list) else [])

    def format_results(self, query: str, results: list[Any]) -> str:
        """Render API hits as a numbered Markdown list."""
        lines = [f'# Search Results for "{query}" (via {self.name})', ""]
        hits = [r for r in results if isinstance(r, dict)]
        if not hits:
            lines.append("No results found.")
            return "\n".join(lines)

        for number, hit in enumerate(hits, start=1):
            title = hit.get("title") or hit.get("url") or "Untitled"
            lines.append(f"{number}. [{title}]({hit.get('url', '')})")
            excerpts = hit.get("excerpts") or []
            if isinstance(excerpts, list):
                for excerpt in excerpts:
                    if isinstance(excerpt, str) and excerpt.strip():
                        lines.append(f"   > {excerpt.strip()}")
            lines.append("")
        return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Factory and service
# ------------------------------------------------------------------

# Provider names accepted by ``create_search_provider``.
SEARCH_PROVIDERS: tuple[str, ...] = ("duckduckgo", "google", "bing", "parallel-api")


def create_search_provider(
    name: str,
    api_key: str = "",
    timeout_ms: int = 30000,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SearchProvider:
    """Build the provider called *name*.

    Args:
        name: One of ``SEARCH_PROVIDERS`` (case-insensitive).
        api_key: Key for API providers.  ``parallel-api`` falls back to
            the ``PARALLEL_API_KEY`` environment variable.
        timeout_ms: Page load timeout of browser providers.
        transport: httpx transport for API providers.

    Raises:
        ValueError: Unknown provider, or an API provider without a key.
    """
    key = name.strip().lower()
    if key == "duckduckgo":
        return DuckDuckGoSearchProvider(timeout_ms)
    if key == "google":
        return GoogleSearchProvider(timeout_ms)
    if key == "bing":
        return BingSearchProvider(timeout_ms)
    if key == "parallel-api":
        api_key = api_key or os.environ.get("PARALLEL_API_KEY", "")
        if not api_key:
            raise ValueError("parallel-api search requires PARALLEL_API_KEY")
        return ParallelSearchProvider(api_key, transport=transport)
    raise ValueError(
        f"Unknown search provider '{name}'. Valid providers: {', '.join(SEARCH_PROVIDERS)}"
    )


class SearchService:
    """Runs searches for the agent.

    Args:
        provider: The search backend.
        browser: Browser handed to providers that need one.
    """

    def __init__(self, provider: SearchProvider, browser: BrowserInterface | None = None) -> None:
        self._provider = provider
        self._browser = browser

    @property
    def provider(self) -> SearchProvider:
        return self._provider

    async def search(self, query: str) -> str:
        """Search for *query* and return results plus the reminder.

        Raises:
            SearchError: The provider failed.
        """
        logger.info("Searching the web via %s: %s", self._provider.name, query)
        results = await self._provider.search(query, self._browser)
        return f"{results}\n\n{SEARCH_RESULTS_REMINDER}"
