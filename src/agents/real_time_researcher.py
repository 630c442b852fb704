"""Per-section research against the web-search provider."""

import time
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from src.middleware.cost_tracker import CostTracker
from src.services.cache_manager import CacheManager
from src.tools.query_builder import compose_research_query, extract_topics, generate_cache_key
from src.utils.models import (
    CitationPosition,
    ResearchQuery,
    ResearchResult,
    ResearchSource,
    SectionResearchData,
    SectionType,
    utc_now,
)

logger = structlog.get_logger()

SECTION_RESEARCH_TTL_SECONDS = 24 * 60 * 60

INSIGHT_MARKERS = ("important", "significant", "key", "critical", "essential")
REPUTABLE_SOURCES = ("wikipedia", "bbc", "cnn", "reuters", "associated press")
LOW_CREDIBILITY_SOURCES = ("blogspot", "wordpress", "medium")

MAX_INSIGHTS = 5
MAX_KEY_POINTS = 5
MAX_SUGGESTIONS = 5


class SearchClient(Protocol):
    """Web-search provider as seen by the researcher."""

    cost_per_search: float

    async def search(
        self,
        query: str,
        max_results: int = 10,
        include_raw_content: bool = True,
    ) -> list[ResearchSource]: ...


class SectionResearchRequest(BaseModel):
    """Everything needed to research one outline section."""

    article_id: str
    organization_id: str
    user_id: str
    section_id: str
    section_title: str
    section_type: SectionType
    main_keyword: str
    research_topics: list[str] = Field(default_factory=list)
    previous_sections: list[str] = Field(
        default_factory=list, description="Titles of sections already researched, in order"
    )
    max_sources: int = Field(default=20, ge=1)


def citation_context(source_title: str, section_type: SectionType) -> str:
    """Lead-in phrase used when citing a source in a section of this type."""
    contexts: dict[str, str] = {
        "introduction": f"According to {source_title}",
        "h2": f"{source_title} reports that",
        "h3": f"Research from {source_title} indicates",
        "conclusion": f"As noted by {source_title}",
        "faq": f"{source_title} explains",
    }
    return contexts.get(section_type, f"According to {source_title}")


def citation_position(source: ResearchSource, section_type: SectionType) -> CitationPosition:
    if section_type == "introduction":
        return "introduction"
    if section_type == "conclusion":
        return "conclusion"
    if "example" in source.content.lower():
        return "example"
    return "support"


class RealTimeResearcher:
    """Researches a single section, sharing a cache across sections."""

    def __init__(
        self,
        search_client: SearchClient,
        cache: CacheManager,
        cost_tracker: CostTracker,
        research_ttl: float = SECTION_RESEARCH_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the researcher.

        Args:
            search_client: Web-search provider client.
            cache: Cache shared by every section of every article in the process.
            cost_tracker: Receives one record per provider call.
            research_ttl: Seconds a section result stays cached.
            clock: Returns the current time, used for recency scoring.
        """
        self.search_client = search_client
        self.cache = cache
        self.cost_tracker = cost_tracker
        self.research_ttl = research_ttl
        self._clock = clock

    def generate_research_query(self, request: SectionResearchRequest) -> ResearchQuery:
        return ResearchQuery(
            query=compose_research_query(
                request.section_title,
                request.main_keyword,
                request.research_topics,
                request.section_type,
            ),
            section_topic=request.section_title,
            main_keyword=request.main_keyword,
            section_type=request.section_type,
            research_topics=request.research_topics,
            previous_context=request.previous_sections[-2:],
            max_sources=request.max_sources,
        )

    @staticmethod
    def cache_key(query: ResearchQuery) -> str:
        return generate_cache_key(
            "section_research", query.query, query.section_topic, query.main_keyword
        )

    async def research_section(self, request: SectionResearchRequest) -> SectionResearchData:
        """Research one section, serving identical queries from the cache.

        A cached result is returned with cost 0 and ``from_cache`` set.
        Provider errors propagate unchanged so the caller can decide on
        retries; cache writes and cost tracking never fail the call.

        Args:
            request: Section research request.

        Returns:
            SectionResearchData with sources sorted by combined score.
        """
        query = self.generate_research_query(request)
        key = self.cache_key(query)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.info(
                "Section research served from cache",
                section_id=request.section_id,
                key=key,
            )
            result = ResearchResult.model_validate(cached).model_copy(
                update={"cost": 0.0, "from_cache": True}
            )
        else:
            result = await self._search(query, request)
            await self._cache_result(key, result)
            self._track_cost(request, result.cost)

        return SectionResearchData(
            query=result.query,
            summary=result.summary,
            key_insights=result.key_insights,
            key_points=self.extract_key_points(result),
            content_suggestions=self.generate_content_suggestions(result),
            sources=result.sources,
            cost=result.cost,
            processing_time_seconds=result.processing_time_seconds,
            from_cache=result.from_cache,
        )

    async def _search(self, query: ResearchQuery, request: SectionResearchRequest) -> ResearchResult:
        started = time.monotonic()
        documents = await self.search_client.search(
            query.query, max_results=query.max_sources, include_raw_content=True
        )
        sources = self.score_sources(documents, request)[: query.max_sources]
        result = ResearchResult(
            query=query.query,
            sources=sources,
            summary=self.generate_summary(sources, query.query),
            key_insights=self.extract_key_insights(sources),
            cost=self.search_client.cost_per_search,
            processing_time_seconds=time.monotonic() - started,
        )
        logger.info(
            "Section researched",
            section_id=request.section_id,
            query=query.query,
            sources=len(sources),
            cost=result.cost,
        )
        return result

    async def _cache_result(self, key: str, result: ResearchResult) -> None:
        try:
            await self.cache.set(key, result, ttl=self.research_ttl)
        except Exception as e:
            logger.warning("Failed to cache section research", key=key, error=str(e))

    def _track_cost(self, request: SectionResearchRequest, cost: float) -> None:
        try:
            self.cost_tracker.track_cost(
                request.organization_id, request.user_id, "tavily", "section_research", cost
            )
        except Exception as e:
            logger.warning("Failed to track research cost", section_id=request.section_id, error=str(e))

    # --- Scoring ---

    def calculate_relevance_score(self, source: ResearchSource) -> float:
        score = 0.5
        if source.title:
            score += 0.2
        if len(source.content) > 500:
            score += 0.1
        if source.published_date is not None:
            age_days = (self._clock() - source.published_date).total_seconds() / 86400
            if age_days < 30:
                score += 0.1
            elif age_days < 90:
                score += 0.05
        return min(score, 1.0)

    @staticmethod
    def calculate_credibility_score(source: ResearchSource) -> float:
        score = 0.5
        url = source.url.lower()
        if url:
            if ".edu" in url or ".gov" in url:
                score += 0.3
            if any(name in url for name in REPUTABLE_SOURCES):
                score += 0.2
            if any(name in url for name in LOW_CREDIBILITY_SOURCES):
                score -= 0.1
        if source.author:
            score += 0.1
        return max(0.0, min(score, 1.0))

    @staticmethod
    def _topic_matches(research_topics: list[str], source_topics: list[str]) -> int:
        wanted = [t.lower() for t in research_topics if t]
        have = [t.lower() for t in source_topics if t]
        return sum(1 for topic in wanted if any(topic in s or s in topic for s in have))

    @staticmethod
    def filter_topics_for_section(topics: list[str], request: SectionResearchRequest) -> list[str]:
        terms = [t.lower() for t in (*request.research_topics, request.main_keyword, request.section_title) if t]
        return [
            topic
            for topic in topics
            if any(topic.lower() in term or term in topic.lower() for term in terms)
        ]

    def score_sources(
        self, documents: list[ResearchSource], request: SectionResearchRequest
    ) -> list[ResearchSource]:
        """Score documents for a section and sort them best first.

        The section's topic boost (+0.1 per matching research topic) is part
        of relevance before sorting; ties are ordered by URL.
        """
        scored: list[ResearchSource] = []
        for document in documents:
            topics = document.topics or extract_topics(document.title, document.content)
            relevance = self.calculate_relevance_score(document)
            relevance = min(1.0, relevance + 0.1 * self._topic_matches(request.research_topics, topics))
            scored.append(
                document.model_copy(
                    update={
                        "relevance_score": relevance,
                        "credibility_score": self.calculate_credibility_score(document),
                        "topics": self.filter_topics_for_section(topics, request),
                    }
                )
            )
        scored.sort(key=lambda s: (-s.combined_score, s.url))
        return scored

    # --- Text extraction ---

    @staticmethod
    def generate_summary(sources: list[ResearchSource], query: str) -> str:
        if not sources:
            return f'No research results found for "{query}".'
        points = []
        for source in sources[:3]:
            excerpt = source.excerpt or source.content[:200]
            points.append(f"{source.title}: {excerpt[:100]}...")
        return (
            f'Research on "{query}" found {len(sources)} sources. '
            f"Key findings include: {'. '.join(points)}"
        )

    @staticmethod
    def extract_key_insights(sources: list[ResearchSource]) -> list[str]:
        """Up to five sentences flagged by words like "important" or "critical"."""
        insights: list[str] = []
        for source in sources[:5]:
            if len(source.content) <= 100:
                continue
            sentences = [s.strip() for s in source.content.split(".") if len(s.strip()) > 20]
            flagged = [s for s in sentences if any(m in s.lower() for m in INSIGHT_MARKERS)]
            insights.extend(flagged[:2])
        return insights[:MAX_INSIGHTS]

    @staticmethod
    def extract_key_points(result: ResearchResult) -> list[str]:
        points = list(result.key_insights)
        points.extend(
            f"{source.excerpt[:150]}..."
            for source in result.sources[:3]
            if len(source.excerpt) > 50
        )
        return points[:MAX_KEY_POINTS]

    @staticmethod
    def generate_content_suggestions(result: ResearchResult) -> list[str]:
        suggestions: list[str] = []
        if result.summary:
            suggestions.append(f"Include key finding: {result.summary[:100]}...")
        for source in result.sources[:3]:
            suggestions.append(f"Reference {source.title} for authoritative information")
            suggestions.append(f"Include data point from {source.title}")
        return suggestions[:MAX_SUGGESTIONS]

    async def clear_section_cache(self, pattern: str = r"^section_research:") -> int:
        removed = await self.cache.invalidate_pattern(pattern)
        logger.info("Section research cache cleared", removed=removed)
        return removed

