"""Tavily web-search client."""

from typing import Any, Literal

import httpx
import structlog

from src.utils.config import settings
from src.utils.exceptions import ErrorKind, ProviderError, provider_error_from_httpx
from src.utils.models import ResearchSource

logger = structlog.get_logger()


class TavilySearchClient:
    """
    Search the web through the Tavily API.

    Request: {query, max_results, include_raw_content, search_depth}.
    Response documents carry title, url, content, score and, when the
    provider knows it, published_date.

    API Docs: https://docs.tavily.com/documentation/api-reference/endpoint/search
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.tavily.com",
        timeout: float = 30.0,
        cost_per_search: float = 0.005,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cost_per_search = cost_per_search

    @property
    def name(self) -> str:
        return "tavily"

    async def search(
        self,
        query: str,
        max_results: int = 10,
        include_raw_content: bool = True,
        search_depth: Literal["basic", "advanced"] = "advanced",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
    ) -> list[ResearchSource]:
        """
        Search Tavily for documents matching a query.

        Args:
            query: Natural-language search query.
            max_results: Maximum documents to return.
            include_raw_content: Ask for full page content.
            search_depth: "basic" or "advanced".
            include_domains: Restrict results to these domains.
            exclude_domains: Drop results from these domains.

        Returns:
            Documents in provider rank order.

        Raises:
            ProviderError: Tagged with the failure kind.
        """
        payload: dict[str, Any] = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "include_raw_content": include_raw_content,
        }
        if include_domains:
            payload["include_domains"] = include_domains
        if exclude_domains:
            payload["exclude_domains"] = exclude_domains

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(f"{self.base_url}/search", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise provider_error_from_httpx("Tavily", e) from e
            except ValueError as e:
                raise ProviderError(
                    f"Tavily returned malformed JSON: {e}", ErrorKind.PERMANENT, self.name
                ) from e

        results = data.get("results", []) or []
        logger.debug("Tavily search completed", query=query, results=len(results))
        return [self._to_source(r) for r in results[:max_results]]

    def _to_source(self, result: dict[str, Any]) -> ResearchSource:
        """Convert a Tavily result to a ResearchSource."""
        snippet = result.get("content") or ""
        return ResearchSource(
            title=result.get("title") or "",
            url=result.get("url") or "",
            content=result.get("raw_content") or snippet,
            excerpt=snippet,
            score=float(result.get("score") or 0.0),
            published_date=result.get("published_date"),
            author=result.get("author"),
        )


def create_tavily_client() -> TavilySearchClient:
    """Create a TavilySearchClient from settings.

    Raises:
        ConfigurationError: If TAVILY_API_KEY is not set.
    """
    return TavilySearchClient(
        api_key=settings.require_tavily_key(),
        base_url=settings.tavily_base_url,
        timeout=settings.http_timeout_seconds,
        cost_per_search=settings.tavily_cost_per_search,
    )
