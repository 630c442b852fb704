"""Unit tests for SourceRanker."""

import itertools
from datetime import UTC, datetime, timedelta

import pytest

from src.tools.source_ranker import SourceRanker
from src.utils.models import ResearchSource

NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _source(url: str, title: str = "", days_old: int | None = None, **kwargs) -> ResearchSource:
    published = NOW - timedelta(days=days_old) if days_old is not None else None
    return ResearchSource(url=url, title=title, published_date=published, **kwargs)


@pytest.fixture
def ranker() -> SourceRanker:
    return SourceRanker(clock=lambda: NOW)


@pytest.fixture
def candidates() -> list[ResearchSource]:
    return [
        _source("https://www.harvard.edu/content-marketing", "Content Marketing Research", 3),
        _source("https://blog.example.com/a", "Content marketing tips", 40),
        _source("https://blog.example.com/b", "Marketing for content teams", 200),
        _source("https://news.example.org/story", "Industry news", None),
        _source("https://shop.example.com/buy", "Buy content marketing tools", 500),
    ]


@pytest.mark.unit
class TestSourceRanker:
    """Tests for weighted ranking."""

    def test_ranking_is_independent_of_input_order(
        self, ranker: SourceRanker, candidates: list[ResearchSource]
    ) -> None:
        """Every permutation of the input should produce the same ranking."""
        expected = [r.source.url for r in ranker.rank_sources_by_relevance(candidates, "content marketing")]

        for permutation in itertools.permutations(candidates):
            ranked = ranker.rank_sources_by_relevance(list(permutation), "content marketing")
            assert [r.source.url for r in ranked] == expected

    def test_equal_scores_break_ties_by_url(self, ranker: SourceRanker) -> None:
        """Sources with identical scores should be ordered by URL."""
        sources = [_source("https://b.example.com"), _source("https://a.example.com")]

        ranked = ranker.rank_sources_by_relevance(sources, "anything")

        assert [r.source.url for r in ranked] == ["https://a.example.com", "https://b.example.com"]

    def test_max_sources_limits_output(
        self, ranker: SourceRanker, candidates: list[ResearchSource]
    ) -> None:
        """Only the requested number of sources should be returned."""
        assert len(ranker.rank_sources_by_relevance(candidates, "content marketing", max_sources=2)) == 2

    def test_scores_within_bounds(
        self, ranker: SourceRanker, candidates: list[ResearchSource]
    ) -> None:
        """All component scores should be in [0, 1]."""
        for ranked in ranker.rank_sources_by_relevance(candidates, "content marketing"):
            for score in (ranked.relevance, ranked.recency, ranked.authority, ranked.diversity, ranked.final_score):
                assert 0.0 <= score <= 1.0

    def test_diversity_penalizes_repeated_domains(self, ranker: SourceRanker) -> None:
        """A domain appearing four times should get the lowest diversity score."""
        repeated = [_source(f"https://same.com/{i}") for i in range(4)]
        unique = _source("https://other.com/x")

        ranked = {r.source.url: r for r in ranker.rank_sources_by_relevance(repeated + [unique], "x")}

        assert ranked["https://other.com/x"].diversity == 1.0
        assert ranked["https://same.com/0"].diversity == 0.1

    def test_authority_tiers(self, ranker: SourceRanker) -> None:
        """Authority should follow the domain tiers and credential bonus."""
        assert ranker.calculate_authority_score(_source("https://en.wikipedia.org/wiki/X")) == 1.0
        assert ranker.calculate_authority_score(_source("https://cs.example.edu/p")) == 0.9
        assert ranker.calculate_authority_score(_source("https://example.org/p")) == 0.8
        assert ranker.calculate_authority_score(_source("https://github.com/p")) == 0.7
        assert ranker.calculate_authority_score(_source("https://random.io/p")) == 0.4
        credentialed = _source("https://random.io/p", author="Dr. Jane Roe")
        assert ranker.calculate_authority_score(credentialed) == pytest.approx(0.6)

    def test_recency_tiers(self, ranker: SourceRanker) -> None:
        """Recency should step down with age and be neutral when undated."""
        assert ranker.calculate_recency_score(_source("https://a.com", days_old=1)) == 1.0
        assert ranker.calculate_recency_score(_source("https://a.com", days_old=20)) == 0.8
        assert ranker.calculate_recency_score(_source("https://a.com", days_old=60)) == 0.6
        assert ranker.calculate_recency_score(_source("https://a.com", days_old=300)) == 0.4
        assert ranker.calculate_recency_score(_source("https://a.com", days_old=900)) == 0.2
        assert ranker.calculate_recency_score(_source("https://a.com")) == 0.5


@pytest.mark.unit
class TestSourceFilters:
    """Tests for filtering and de-duplication helpers."""

    def test_filter_by_recency_keeps_undated(self, ranker: SourceRanker) -> None:
        """Old sources should be dropped and undated ones kept."""
        sources = [
            _source("https://a.com", days_old=10),
            _source("https://b.com", days_old=400),
            _source("https://c.com"),
        ]
        kept = ranker.filter_by_recency(sources, max_age_days=365)
        assert [s.url for s in kept] == ["https://a.com", "https://c.com"]

    def test_deduplicate_by_domain_keeps_first(self, ranker: SourceRanker) -> None:
        """Only the first source of each domain should be kept."""
        sources = [_source("https://a.com/1"), _source("https://www.a.com/2"), _source("https://b.com/1")]
        assert [s.url for s in ranker.deduplicate_by_domain(sources)] == ["https://a.com/1", "https://b.com/1"]

    def test_deduplicate_by_url(self, ranker: SourceRanker) -> None:
        """Repeated URLs should be removed."""
        sources = [_source("https://a.com/1"), _source("https://a.com/1"), _source("https://a.com/2")]
        assert len(ranker.deduplicate_by_url(sources)) == 2

    def test_ranking_report(self, ranker: SourceRanker, candidates: list[ResearchSource]) -> None:
        """The report should count every ranked source once per distribution."""
        report = ranker.get_ranking_report(candidates, "content marketing")

        assert report.total_sources == 5
        assert sum(report.score_distribution.values()) == len(report.ranked_sources)
        assert sum(report.recency_distribution.values()) == len(report.ranked_sources)
        assert 0.0 < report.domain_diversity <= 1.0

    def test_categorize_source(self, ranker: SourceRanker) -> None:
        """Domains should map to academic, news, blog, commercial or other."""
        expected = {
            "https://www.harvard.edu/paper": "academic",
            "https://en.wikipedia.org/wiki/Compost": "academic",
            "https://www.bbc.co.uk/article": "news",
            "https://blog.example.com/post-1": "blog",
            "https://shop.example.com/item": "commercial",
            "https://example.org/page": "other",
        }

        for url, category in expected.items():
            assert ranker.categorize_source(_source(url)) == category

    def test_balance_source_types_caps_each_category(self, ranker: SourceRanker) -> None:
        """Each category should keep at most an equal share, academic first."""
        sources = [
            _source("https://blog.example.com/1"),
            _source("https://blog.example.com/2"),
            *(_source(f"https://u{i}.edu/paper") for i in range(6)),
            _source("https://example.org/1"),
            _source("https://example.org/2"),
        ]

        balanced = ranker.balance_source_types(sources)

        assert [s.url for s in balanced] == [
            "https://u0.edu/paper",
            "https://u1.edu/paper",
            "https://blog.example.com/1",
            "https://blog.example.com/2",
            "https://example.org/1",
            "https://example.org/2",
        ]
