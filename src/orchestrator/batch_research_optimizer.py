"""Article-wide research across the keyword-metrics and web-search providers.

One call researches the main keyword once and every section's keyword
against both providers, with results cached per article and per keyword.
"""

import asyncio
import hashlib
import time
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

import structlog
from pydantic import BaseModel, Field

from src.middleware.cost_tracker import CostTracker
from src.services.cache_manager import CacheManager, CacheStats
from src.tools.query_builder import (
    build_comprehensive_query,
    generate_cache_key,
    optimize_query_for_api,
)
from src.tools.source_ranker import SourceRanker
from src.utils.models import KeywordMetrics, RankedSource, ResearchSource

logger = structlog.get_logger()

ProviderName = Literal["dataforseo", "tavily"]

QUERY_GROUP_SIZE = 5
QUERY_GROUP_DELAY_SECONDS = 2.0


class KeywordMetricsClient(Protocol):
    cost_per_request: float

    async def get_keyword_metrics(self, keywords: list[str]) -> list[KeywordMetrics]: ...


class WebSearchClient(Protocol):
    cost_per_search: float

    async def search(
        self, query: str, max_results: int = 10, include_raw_content: bool = True
    ) -> list[ResearchSource]: ...


class BatchSection(BaseModel):
    title: str
    keyword: str | None = None
    priority: int = 1


class BatchResearchOptions(BaseModel):
    max_sources_per_section: int = Field(default=8, ge=1)
    cache_ttl: float = Field(default=30 * 60, gt=0, description="Seconds")
    use_existing_cache: bool = True
    fallback_on_failure: bool = True


class BatchResearchRequest(BaseModel):
    organization_id: str
    user_id: str
    main_keyword: str
    sections: list[BatchSection] = Field(default_factory=list)
    options: BatchResearchOptions = Field(default_factory=BatchResearchOptions)


class SectionSources(BaseModel):
    """Ranked, URL-unique sources for one section keyword."""

    title: str
    keyword: str
    sources: list[RankedSource] = Field(default_factory=list)
    keyword_metrics: KeywordMetrics | None = None


class BatchResearchResult(BaseModel):
    main_keyword: str
    main_keyword_metrics: KeywordMetrics | None = None
    sections: list[SectionSources] = Field(default_factory=list)
    total_cost: float = Field(default=0.0, ge=0.0)
    total_api_calls: int = Field(default=0, ge=0)
    cache_hits: int = Field(default=0, ge=0)
    processing_time_seconds: float = Field(default=0.0, ge=0.0)


class _ProviderCall(BaseModel):
    data: Any = None
    cost: float = 0.0
    api_calls: int = 0


def extract_section_keyword(main_keyword: str, section_title: str) -> str:
    """Title words related to the main keyword, or the main keyword itself."""
    main_words = main_keyword.lower().split()
    related = [
        word
        for word in section_title.lower().split()
        if any(word in main or main in word for main in main_words)
    ]
    return " ".join(related) if related else main_keyword


def batch_cache_key(organization_id: str, main_keyword: str, sections: list[BatchSection]) -> str:
    """Key that is the same for any ordering of the same sections."""
    signature = "|".join(
        sorted(f"{s.title}:{s.keyword or ''}:{s.priority}" for s in sections)
    )
    digest = hashlib.sha256(signature.encode("utf-8")).hexdigest()[:16]
    return generate_cache_key("batch_research", organization_id, main_keyword, digest)


class BatchResearchOptimizer:
    """Researches a main keyword and its sections in one pass."""

    def __init__(
        self,
        metrics_client: KeywordMetricsClient,
        search_client: WebSearchClient,
        cache: CacheManager,
        cost_tracker: CostTracker,
        ranker: SourceRanker | None = None,
        max_concurrent_sections: int = 3,
        provider_ttl: float = 30 * 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the optimizer.

        Args:
            metrics_client: Keyword-metrics provider.
            search_client: Web-search provider.
            cache: Cache for article-level and per-keyword results.
            cost_tracker: Receives one record per paid provider call.
            ranker: Source ranker; a default one is created when omitted.
            max_concurrent_sections: Sections researched at the same time.
            provider_ttl: Seconds per-keyword provider results stay cached.
            sleep: Awaitable sleep used between query groups.
        """
        if max_concurrent_sections < 1:
            raise ValueError("max_concurrent_sections must be at least 1")
        self.metrics_client = metrics_client
        self.search_client = search_client
        self.cache = cache
        self.cost_tracker = cost_tracker
        self.ranker = ranker or SourceRanker()
        self.max_concurrent_sections = max_concurrent_sections
        self.provider_ttl = provider_ttl
        self._sleep = sleep

    async def perform_batch_research(self, request: BatchResearchRequest) -> BatchResearchResult:
        """Research the main keyword and every section.

        A cached article result short-circuits with zero cost. Otherwise both
        providers are called per section without one failure cancelling the
        other. With ``fallback_on_failure`` a section whose providers both
        fail comes back empty; without it the first error is raised.
        """
        started = time.monotonic()
        options = request.options
        key = batch_cache_key(request.organization_id, request.main_keyword, request.sections)

        if options.use_existing_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.info("Batch research served from cache", main_keyword=request.main_keyword)
                return BatchResearchResult.model_validate(cached).model_copy(
                    update={
                        "total_cost": 0.0,
                        "total_api_calls": 0,
                        "cache_hits": 1,
                        "processing_time_seconds": time.monotonic() - started,
                    }
                )

        total_cost = 0.0
        total_calls = 0
        main_metrics: KeywordMetrics | None = None
        try:
            call = await self._keyword_metrics(request, request.main_keyword)
            main_metrics = call.data
            total_cost += call.cost
            total_calls += call.api_calls
        except Exception as e:
            if not options.fallback_on_failure:
                raise
            logger.warning(
                "Main keyword research failed", main_keyword=request.main_keyword, error=str(e)
            )

        semaphore = asyncio.Semaphore(self.max_concurrent_sections)

        async def bounded(section: BatchSection) -> tuple[SectionSources, float, int]:
            async with semaphore:
                return await self._research_section(request, section)

        outcomes = await asyncio.gather(*(bounded(s) for s in request.sections))
        sections = [sources for sources, _, _ in outcomes]
        total_cost += sum(cost for _, cost, _ in outcomes)
        total_calls += sum(calls for _, _, calls in outcomes)

        result = BatchResearchResult(
            main_keyword=request.main_keyword,
            main_keyword_metrics=main_metrics,
            sections=sections,
            total_cost=total_cost,
            total_api_calls=total_calls,
            processing_time_seconds=time.monotonic() - started,
        )
        try:
            await self.cache.set(key, result, ttl=options.cache_ttl)
        except Exception as e:
            logger.warning("Failed to cache batch research", key=key, error=str(e))

        logger.info(
            "Batch research completed",
            main_keyword=request.main_keyword,
            sections=len(sections),
            total_cost=total_cost,
            api_calls=total_calls,
        )
        return result

    async def _research_section(
        self, request: BatchResearchRequest, section: BatchSection
    ) -> tuple[SectionSources, float, int]:
        keyword = section.keyword or extract_section_keyword(request.main_keyword, section.title)
        max_sources = request.options.max_sources_per_section

        metrics_call, search_call = await asyncio.gather(
            self._keyword_metrics(request, keyword),
            self._search_sources(request, keyword, max_sources),
            return_exceptions=True,
        )

        failures = [c for c in (metrics_call, search_call) if isinstance(c, BaseException)]
        if len(failures) == 2:
            if not request.options.fallback_on_failure:
                raise failures[0]
            logger.warning(
                "Section research failed on both providers",
                section=section.title,
                error=str(failures[0]),
            )
        for failure in failures:
            logger.debug("Provider failed for section", section=section.title, error=str(failure))

        cost = 0.0
        calls = 0
        metrics: KeywordMetrics | None = None
        candidates: list[ResearchSource] = []
        if isinstance(metrics_call, _ProviderCall):
            metrics = metrics_call.data
            cost += metrics_call.cost
            calls += metrics_call.api_calls
        if isinstance(search_call, _ProviderCall):
            candidates = search_call.data
            cost += search_call.cost
            calls += search_call.api_calls

        unique = self.ranker.deduplicate_by_url(candidates)
        ranked = self.ranker.rank_sources_by_relevance(unique, keyword, max_sources)

        return (
            SectionSources(title=section.title, keyword=keyword, sources=ranked, keyword_metrics=metrics),
            cost,
            calls,
        )

    async def _keyword_metrics(self, request: BatchResearchRequest, keyword: str) -> _ProviderCall:
        key = generate_cache_key("keyword_research", keyword, "dataforseo")
        cached = await self.cache.get(key)
        if cached is not None:
            return _ProviderCall(data=KeywordMetrics.model_validate(cached))

        lookup = optimize_query_for_api(keyword, "dataforseo") or keyword
        metrics = await self.metrics_client.get_keyword_metrics([lookup])
        data = metrics[0] if metrics else KeywordMetrics(keyword=keyword)
        cost = self.metrics_client.cost_per_request
        await self._remember(key, data)
        self._track(request, "dataforseo", "keyword_metrics", cost)
        return _ProviderCall(data=data, cost=cost, api_calls=1)

    async def _search_sources(
        self, request: BatchResearchRequest, keyword: str, max_sources: int
    ) -> _ProviderCall:
        key = generate_cache_key("keyword_research", keyword, "tavily")
        cached = await self.cache.get(key)
        if cached is not None:
            return _ProviderCall(data=[ResearchSource.model_validate(s) for s in cached])

        query = build_comprehensive_query(keyword)
        sources = await self.search_client.search(
            optimize_query_for_api(query.main_query, "tavily"),
            max_results=max(query.max_results, max_sources),
            include_raw_content=True,
        )
        cost = self.search_client.cost_per_search
        await self._remember(key, sources)
        self._track(request, "tavily", "batch_research", cost)
        return _ProviderCall(data=sources, cost=cost, api_calls=1)

    async def _remember(self, key: str, data: Any) -> None:
        try:
            await self.cache.set(key, data, ttl=self.provider_ttl)
        except Exception as e:
            logger.warning("Failed to cache provider result", key=key, error=str(e))

    def _track(self, request: BatchResearchRequest, provider: ProviderName, endpoint: str, cost: float) -> None:
        try:
            self.cost_tracker.track_cost(
                request.organization_id, request.user_id, provider, endpoint, cost
            )
        except Exception as e:
            logger.warning("Failed to track provider cost", provider=provider, error=str(e))

    async def optimize_research_queries(
        self, organization_id: str, user_id: str, keywords: list[str]
    ) -> dict[str, BatchResearchResult]:
        """Research many keywords in groups of five with a pause between groups.

        Keywords whose research fails are left out of the result.
        """
        results: dict[str, BatchResearchResult] = {}
        for start in range(0, len(keywords), QUERY_GROUP_SIZE):
            if start:
                await self._sleep(QUERY_GROUP_DELAY_SECONDS)
            group = keywords[start : start + QUERY_GROUP_SIZE]
            outcomes = await asyncio.gather(
                *(
                    self.perform_batch_research(
                        BatchResearchRequest(
                            organization_id=organization_id,
                            user_id=user_id,
                            main_keyword=keyword,
                            options=BatchResearchOptions(max_sources_per_section=5, cache_ttl=60 * 60),
                        )
                    )
                    for keyword in group
                ),
                return_exceptions=True,
            )
            for keyword, outcome in zip(group, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error("Keyword research failed", keyword=keyword, error=str(outcome))
                    continue
                results[keyword] = outcome
        return results

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_expired_cache(self) -> int:
        return self.cache.cleanup_expired()
