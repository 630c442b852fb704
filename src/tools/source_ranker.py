"""Weighted ranking of candidate research sources."""

import math
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from src.utils.models import RankedSource, ResearchSource, utc_now

logger = structlog.get_logger()

SourceCategory = Literal["academic", "news", "blog", "commercial", "other"]

HIGH_AUTHORITY_DOMAINS: tuple[str, ...] = (
    "wikipedia.org",
    "harvard.edu",
    "mit.edu",
    "stanford.edu",
    "nature.com",
    "science.org",
    "pubmed.ncbi.nlm.nih.gov",
    "forbes.com",
    "entrepreneur.com",
    "inc.com",
)

WELL_KNOWN_SITES: tuple[str, ...] = (
    "medium.com",
    "linkedin.com",
    "twitter.com",
    "youtube.com",
    "reddit.com",
    "quora.com",
    "github.com",
    "stackoverflow.com",
    "wired.com",
    "techcrunch.com",
    "venturebeat.com",
    "hbr.org",
    "mckinsey.com",
    "deloitte.com",
    "nytimes.com",
    "washingtonpost.com",
    "bbc.com",
)

AUTHOR_CREDENTIALS: tuple[str, ...] = ("ph.d", "dr.", "professor")

COMMERCIAL_INDICATORS: tuple[str, ...] = (
    "shop",
    "store",
    "buy",
    "sell",
    "price",
    "amazon",
    "ebay",
    "walmart",
    "bestbuy",
)

# (max age in days, score), checked in order
RECENCY_TIERS: tuple[tuple[int, float], ...] = ((7, 1.0), (30, 0.8), (90, 0.6), (365, 0.4))


class RankingCriteria(BaseModel):
    """Weights applied to the ranking factors."""

    relevance_weight: float = Field(default=0.4, ge=0.0)
    recency_weight: float = Field(default=0.2, ge=0.0)
    authority_weight: float = Field(default=0.3, ge=0.0)
    diversity_weight: float = Field(default=0.1, ge=0.0)


class RankingReport(BaseModel):
    """Summary of a ranking run."""

    total_sources: int
    ranked_sources: list[RankedSource]
    average_score: float
    score_distribution: dict[str, int]
    domain_diversity: float
    recency_distribution: dict[str, int]


def _matches_domain(domain: str, candidate: str) -> bool:
    return domain == candidate or domain.endswith("." + candidate)


class SourceRanker:
    """Scores sources on relevance, recency, authority and domain diversity."""

    def __init__(
        self,
        criteria: RankingCriteria | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the ranker.

        Args:
            criteria: Factor weights; defaults to 0.4/0.2/0.3/0.1.
            clock: Returns the current time, used for recency.
        """
        self.criteria = criteria or RankingCriteria()
        self._clock = clock

    def rank_sources_by_relevance(
        self,
        sources: list[ResearchSource],
        keyword: str,
        max_sources: int = 8,
        criteria: RankingCriteria | None = None,
    ) -> list[RankedSource]:
        """Rank sources for a keyword and keep the best ones.

        The output order depends only on the set of sources, not on the
        order they were given in: equal scores are ordered by URL and title.

        Args:
            sources: Candidate sources.
            keyword: Keyword the sources should be relevant to.
            max_sources: Number of sources to return.
            criteria: Optional weights overriding the ranker's defaults.

        Returns:
            Top ranked sources, best first.
        """
        weights = criteria or self.criteria
        domain_counts = Counter(source.domain for source in sources if source.domain)

        ranked: list[RankedSource] = []
        for source in sources:
            relevance = self.calculate_relevance_score(source, keyword)
            recency = self.calculate_recency_score(source)
            authority = self.calculate_authority_score(source)
            diversity = self._diversity_score(source, domain_counts)
            final_score = (
                relevance * weights.relevance_weight
                + recency * weights.recency_weight
                + authority * weights.authority_weight
                + diversity * weights.diversity_weight
            )
            ranked.append(
                RankedSource(
                    source=source,
                    relevance=relevance,
                    recency=recency,
                    authority=authority,
                    diversity=diversity,
                    final_score=min(final_score, 1.0),
                )
            )

        ranked.sort(key=lambda r: (-r.final_score, r.source.url, r.source.title, r.source.content))
        logger.debug("Sources ranked", keyword=keyword, candidates=len(sources), kept=max_sources)
        return ranked[:max_sources]

    def calculate_relevance_score(self, source: ResearchSource, keyword: str) -> float:
        keyword_lower = keyword.lower().strip()
        if not keyword_lower:
            return 0.0
        keyword_words = keyword_lower.split()
        score = 0.0

        if source.title:
            title_lower = source.title.lower()
            title_words = title_lower.split()
            if title_lower == keyword_lower:
                score += 1.0
            matching = [
                word
                for word in title_words
                if any(kw in word or word in kw for kw in keyword_words)
            ]
            score += len(matching) / max(len(title_words), len(keyword_words)) * 0.8

        description_words = source.excerpt.lower().split()
        if description_words:
            matching = [
                word
                for word in description_words
                if word in keyword_lower or keyword_lower in word
            ]
            score += len(matching) / len(description_words) * 0.6

        slug = "-".join(keyword_words)
        if slug in source.url.lower():
            score += 0.4
        if source.domain and slug in source.domain:
            score += 0.3

        return min(score, 1.0)

    def calculate_recency_score(self, source: ResearchSource) -> float:
        if source.published_date is None:
            return 0.5
        age_days = (self._clock() - source.published_date).total_seconds() / 86400
        for max_days, score in RECENCY_TIERS:
            if age_days <= max_days:
                return score
        return 0.2

    def calculate_authority_score(self, source: ResearchSource) -> float:
        score = 0.5
        domain = source.domain
        if domain:
            if any(_matches_domain(domain, d) for d in HIGH_AUTHORITY_DOMAINS):
                score = 1.0
            elif domain.endswith((".edu", ".gov")):
                score = 0.9
            elif domain.endswith(".org"):
                score = 0.8
            elif any(_matches_domain(domain, d) for d in WELL_KNOWN_SITES):
                score = 0.7
            else:
                score = 0.4

        if source.author:
            author = source.author.lower()
            if any(credential in author for credential in AUTHOR_CREDENTIALS):
                score = min(score + 0.2, 1.0)
        return score

    @staticmethod
    def _diversity_score(source: ResearchSource, domain_counts: Counter) -> float:
        if not source.domain:
            return 1.0
        count = domain_counts[source.domain]
        if count <= 1:
            return 1.0
        if count == 2:
            return 0.7
        if count == 3:
            return 0.4
        return 0.1

    def filter_by_quality(
        self, sources: list[ResearchSource], min_authority_score: float = 0.3
    ) -> list[ResearchSource]:
        return [s for s in sources if self.calculate_authority_score(s) >= min_authority_score]

    def filter_by_recency(
        self, sources: list[ResearchSource], max_age_days: int = 365
    ) -> list[ResearchSource]:
        """Drop sources older than ``max_age_days``; undated sources are kept."""
        cutoff = self._clock() - timedelta(days=max_age_days)
        return [s for s in sources if s.published_date is None or s.published_date >= cutoff]

    @staticmethod
    def deduplicate_by_domain(sources: list[ResearchSource]) -> list[ResearchSource]:
        seen: set[str] = set()
        unique: list[ResearchSource] = []
        for source in sources:
            domain = source.domain
            if domain is not None:
                if domain in seen:
                    continue
                seen.add(domain)
            unique.append(source)
        return unique

    @staticmethod
    def deduplicate_by_url(sources: list[ResearchSource]) -> list[ResearchSource]:
        seen: set[str] = set()
        unique: list[ResearchSource] = []
        for source in sources:
            if source.url in seen:
                continue
            seen.add(source.url)
            unique.append(source)
        return unique

    @staticmethod
    def categorize_source(source: ResearchSource) -> SourceCategory:
        domain = source.domain or ""
        if domain.endswith((".edu", ".gov")) or "wikipedia" in domain:
            return "academic"
        if any(marker in domain for marker in ("news", "times", "post", "cnn", "bbc")):
            return "news"
        if any(marker in domain for marker in ("blog", "medium", "substack")):
            return "blog"
        if domain.endswith(".com") and any(m in domain for m in COMMERCIAL_INDICATORS):
            return "commercial"
        return "other"

    def balance_source_types(self, sources: list[ResearchSource]) -> list[ResearchSource]:
        """Cap each source category at an equal share of the list.

        Categories keep their input order and are emitted academic first.
        """
        categories: dict[SourceCategory, list[ResearchSource]] = {
            "academic": [],
            "news": [],
            "blog": [],
            "commercial": [],
            "other": [],
        }
        for source in sources:
            categories[self.categorize_source(source)].append(source)

        per_category = math.ceil(len(sources) / len(categories))
        balanced: list[ResearchSource] = []
        for members in categories.values():
            balanced.extend(members[:per_category])
        return balanced

    def get_ranking_report(self, sources: list[ResearchSource], keyword: str) -> RankingReport:
        ranked = self.rank_sources_by_relevance(sources, keyword)
        count = len(ranked)
        average = sum(r.final_score for r in ranked) / count if count else 0.0
        domains = {r.source.domain for r in ranked if r.source.domain}

        return RankingReport(
            total_sources=len(sources),
            ranked_sources=ranked,
            average_score=average,
            score_distribution={
                "high": sum(1 for r in ranked if r.final_score >= 0.7),
                "medium": sum(1 for r in ranked if 0.4 <= r.final_score < 0.7),
                "low": sum(1 for r in ranked if r.final_score < 0.4),
            },
            domain_diversity=len(domains) / count if count else 0.0,
            recency_distribution={
                "recent": sum(1 for r in ranked if r.recency >= 0.8),
                "moderate": sum(1 for r in ranked if 0.4 <= r.recency < 0.8),
                "old": sum(1 for r in ranked if r.recency < 0.4),
            },
        )
