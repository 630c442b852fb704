"""Unit tests for RealTimeResearcher."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.real_time_researcher import (
    RealTimeResearcher,
    SectionResearchRequest,
    citation_context,
    citation_position,
)
from src.middleware.cost_tracker import CostTracker
from src.services.cache_manager import CacheManager
from src.utils.exceptions import ErrorKind, ProviderError
from src.utils.models import ResearchSource

NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _search_client(documents: list[ResearchSource]) -> MagicMock:
    client = MagicMock()
    client.cost_per_search = 0.005
    client.search = AsyncMock(return_value=documents)
    return client


def _request(**overrides) -> SectionResearchRequest:
    values = {
        "article_id": "article-1",
        "organization_id": "org-1",
        "user_id": "user-1",
        "section_id": "section-2",
        "section_title": "Pricing Plans",
        "section_type": "h2",
        "main_keyword": "crm software",
        "research_topics": ["pricing"],
        "max_sources": 5,
    }
    values.update(overrides)
    return SectionResearchRequest(**values)


@pytest.fixture
def documents() -> list[ResearchSource]:
    return [
        ResearchSource(
            title="CRM overview",
            url="https://a.com/crm",
            content="This is a key point about choosing a CRM for a small business today. " * 3,
            excerpt="A fairly long excerpt describing customer relationship software in detail.",
        ),
        ResearchSource(
            title="CRM prices",
            url="https://z.com/prices",
            content="Short",
            topics=["pricing models"],
        ),
    ]


@pytest.mark.unit
class TestResearchSection:
    """Tests for section research and caching."""

    @pytest.mark.asyncio
    async def test_fresh_research_costs_one_search(self, documents: list[ResearchSource]) -> None:
        """A cache miss should call the provider once and record its cost."""
        client = _search_client(documents)
        tracker = CostTracker(clock=lambda: NOW)
        researcher = RealTimeResearcher(client, CacheManager(), tracker, clock=lambda: NOW)

        data = await researcher.research_section(_request())

        client.search.assert_awaited_once()
        assert data.cost == pytest.approx(0.005)
        assert data.from_cache is False
        assert len(data.sources) == 2
        summary = tracker.get_cost_summary("org-1")
        assert summary.request_count == 1
        assert summary.endpoint_breakdown == {"tavily:section_research": pytest.approx(0.005)}

    @pytest.mark.asyncio
    async def test_repeat_request_is_served_from_cache(self, documents: list[ResearchSource]) -> None:
        """An identical request should cost nothing and skip the provider."""
        client = _search_client(documents)
        tracker = CostTracker(clock=lambda: NOW)
        researcher = RealTimeResearcher(client, CacheManager(), tracker, clock=lambda: NOW)

        first = await researcher.research_section(_request())
        second = await researcher.research_section(_request(article_id="article-2"))

        assert client.search.await_count == 1
        assert second.cost == 0.0
        assert second.from_cache is True
        assert [s.url for s in second.sources] == [s.url for s in first.sources]
        assert tracker.get_request_count() == 1

    @pytest.mark.asyncio
    async def test_previous_context_does_not_change_cache_key(
        self, documents: list[ResearchSource]
    ) -> None:
        """Sections with different predecessors should share a cached query."""
        client = _search_client(documents)
        researcher = RealTimeResearcher(client, CacheManager(), CostTracker(), clock=lambda: NOW)

        await researcher.research_section(_request(previous_sections=["Intro"]))
        cached = await researcher.research_section(_request(previous_sections=["Intro", "Basics"]))

        assert cached.from_cache is True

    @pytest.mark.asyncio
    async def test_clear_section_cache_only_drops_section_entries(
        self, documents: list[ResearchSource]
    ) -> None:
        """Clearing should remove section research and leave other cached keys."""
        client = _search_client(documents)
        cache = CacheManager()
        researcher = RealTimeResearcher(client, cache, CostTracker(), clock=lambda: NOW)
        await researcher.research_section(_request())
        await cache.set("keyword_research:solar:tavily", ["kept"])

        removed = await researcher.clear_section_cache()
        again = await researcher.research_section(_request())

        assert removed == 1
        assert await cache.get("keyword_research:solar:tavily") == ["kept"]
        assert again.from_cache is False
        assert client.search.await_count == 2

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self) -> None:
        """Provider errors should reach the caller unchanged."""
        client = _search_client([])
        error = ProviderError("rate limit exceeded", ErrorKind.RATE_LIMITED, "tavily")
        client.search = AsyncMock(side_effect=error)
        cache = CacheManager()
        researcher = RealTimeResearcher(client, cache, CostTracker())

        with pytest.raises(ProviderError) as exc_info:
            await researcher.research_section(_request())

        assert exc_info.value is error
        assert cache.get_stats().size == 0

    @pytest.mark.asyncio
    async def test_cost_tracking_failure_is_swallowed(self, documents: list[ResearchSource]) -> None:
        """A failing cost tracker should not fail the research."""
        tracker = MagicMock()
        tracker.track_cost.side_effect = RuntimeError("ledger down")
        researcher = RealTimeResearcher(
            _search_client(documents), CacheManager(), tracker, clock=lambda: NOW
        )

        data = await researcher.research_section(_request())

        assert len(data.sources) == 2
        tracker.track_cost.assert_called_once()


@pytest.mark.unit
class TestScoring:
    """Tests for source scoring."""

    def test_topic_match_boosts_relevance(self, documents: list[ResearchSource]) -> None:
        """A source matching a research topic should rank first."""
        researcher = RealTimeResearcher(_search_client([]), CacheManager(), CostTracker(), clock=lambda: NOW)

        scored = researcher.score_sources(documents, _request())

        assert scored[0].url == "https://z.com/prices"
        assert scored[0].relevance_score == pytest.approx(0.8)
        assert scored[0].topics == ["pricing models"]
        assert scored[1].relevance_score == pytest.approx(0.7)

    def test_equal_scores_are_ordered_by_url(self) -> None:
        """Ties should be broken by URL."""
        researcher = RealTimeResearcher(_search_client([]), CacheManager(), CostTracker(), clock=lambda: NOW)
        docs = [
            ResearchSource(title="b", url="https://b.com"),
            ResearchSource(title="a", url="https://a.com"),
        ]

        scored = researcher.score_sources(docs, _request(research_topics=[]))

        assert [s.url for s in scored] == ["https://a.com", "https://b.com"]

    def test_recent_sources_score_higher(self) -> None:
        """Sources newer than 30 days should gain relevance."""
        researcher = RealTimeResearcher(_search_client([]), CacheManager(), CostTracker(), clock=lambda: NOW)

        fresh = ResearchSource(title="t", published_date=NOW - timedelta(days=10))
        older = ResearchSource(title="t", published_date=NOW - timedelta(days=60))
        stale = ResearchSource(title="t", published_date=NOW - timedelta(days=400))

        assert researcher.calculate_relevance_score(fresh) == pytest.approx(0.8)
        assert researcher.calculate_relevance_score(older) == pytest.approx(0.75)
        assert researcher.calculate_relevance_score(stale) == pytest.approx(0.7)

    def test_credibility_from_url_and_author(self) -> None:
        """Academic domains and authors should raise credibility."""
        edu = ResearchSource(url="https://cs.stanford.edu/paper", author="Jane")
        blog = ResearchSource(url="https://someone.wordpress.com/post")

        assert RealTimeResearcher.calculate_credibility_score(edu) == pytest.approx(0.9)
        assert RealTimeResearcher.calculate_credibility_score(blog) == pytest.approx(0.4)


@pytest.mark.unit
class TestTextHelpers:
    """Tests for summaries and citation helpers."""

    def test_empty_summary(self) -> None:
        """No sources should produce a not-found summary."""
        assert RealTimeResearcher.generate_summary([], "q") == 'No research results found for "q".'

    def test_key_insights_need_marker_words(self) -> None:
        """Only sentences with marker words should become insights."""
        source = ResearchSource(
            content=(
                "It is important to compare vendors before buying anything. "
                "The weather was pleasant for most of the afternoon there. "
                "A critical factor is how well the tool integrates with email."
            )
        )

        insights = RealTimeResearcher.extract_key_insights([source])

        assert insights == [
            "It is important to compare vendors before buying anything",
            "A critical factor is how well the tool integrates with email",
        ]

    def test_query_keeps_last_two_previous_sections(self) -> None:
        """Only the two most recent section titles should be carried as context."""
        researcher = RealTimeResearcher(_search_client([]), CacheManager(), CostTracker())

        query = researcher.generate_research_query(
            _request(previous_sections=["Intro", "Basics", "Setup"])
        )

        assert query.previous_context == ["Basics", "Setup"]
        assert query.max_sources == 5

    def test_citation_helpers(self) -> None:
        """Context phrases and positions should follow the section type."""
        source = ResearchSource(title="Gartner", content="For example, teams saved time.")

        assert citation_context("Gartner", "h3") == "Research from Gartner indicates"
        assert citation_position(source, "introduction") == "introduction"
        assert citation_position(source, "h2") == "example"
        assert citation_position(ResearchSource(), "h2") == "support"
