"""
Web-related tool implementations.

Provides tools for performing live internet searches using a search
API endpoint and for fetching raw content from a URL. Requests are made
with the `requests` library in a worker thread; results are cached in the
process-wide tool caches.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from research_agent.core.cancellation import CancellationToken
from research_agent.errors import ConfigurationError, ExecutionError
from research_agent.tools.base import Tool, ToolCategory
from research_agent.tools.cache import cached

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15


@cached("search_results")
async def search(endpoint: str, query: str, num_results: int) -> List[Dict[str, str]]:
    headers: Dict[str, str] = {}
    api_key = os.getenv("SEARCH_API_KEY", "")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    params = {"q": query, "num_results": num_results}
    logger.debug("searching %s for %r", endpoint, query)
    resp = await asyncio.to_thread(_get, endpoint, params, headers)
    try:
        data = resp.json()
    except ValueError as exc:
        raise ExecutionError(f"Search API returned a non-JSON response: {exc}") from exc
    results = data.get("results") or data.get("data") or []
    return [
        {
            "title": r.get("title") or r.get("name") or "Untitled",
            "snippet": r.get("snippet") or r.get("description") or "",
            "url": r.get("url") or r.get("link") or "",
        }
        for r in results[:num_results]
    ]


@cached("fetch_results")
async def fetch(url: str) -> str:
    resp = await asyncio.to_thread(_get, url)
    return resp.text


def _get(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    try:
        resp = requests.get(url, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ExecutionError(f"HTTP request to {url} failed: {exc}") from exc
    return resp


class WebSearchTool(Tool):
    """
    Perform live internet searches using a configurable search API.

    The search API should accept query parameters such as `q` and
    optionally `num_results`. API authentication can be provided
    via the SEARCH_API_KEY environment variable.
    """

    def __init__(self, endpoint: str) -> None:
        super().__init__(
            name="web_search",
            description="Perform a live web search and return the top results.",
            category=ToolCategory.WEB,
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "num_results": {"type": "integer"},
                },
                "required": ["query"],
            },
        )
        self.endpoint = endpoint

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "WebSearchTool":
        endpoint = cfg.get("endpoint") or os.getenv("SEARCH_API_ENDPOINT", "")
        if not endpoint:
            raise ConfigurationError(
                "web_search requires SEARCH_API_ENDPOINT env var or tools.web_search.endpoint in config."
            )
        return cls(endpoint=endpoint)

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> str:
        query = params["query"]
        num_results = int(params.get("num_results", 5))
        results = await search(self.endpoint, query, num_results)
        lines: List[str] = [f"Search results for: {query}"]
        for idx, r in enumerate(results, start=1):
            lines.append(f"{idx}. {r['title']}")
            if r["snippet"]:
                lines.append(f"   {r['snippet']}")
            if r["url"]:
                lines.append(f"   URL: {r['url']}")
        return "\n".join(lines)


class WebFetchTool(Tool):
    """
    Fetch raw web content from a given URL using HTTP GET.
    """

    def __init__(self) -> None:
        super().__init__(
            name="web_fetch",
            description="Fetch raw web content from a URL; returns the first N characters.",
            category=ToolCategory.WEB,
            input_schema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "max_chars": {"type": "integer"},
                },
                "required": ["url"],
            },
        )

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "WebFetchTool":
        return cls()

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> str:
        url = params["url"]
        max_chars = int(params.get("max_chars", 4000))
        text = await fetch(url)
        if len(text) > max_chars:
            text = text[:max_chars] + "\n...[truncated]..."
        return text
