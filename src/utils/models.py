"""Data models for the article research core."""

from datetime import UTC, datetime
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, computed_field, field_validator

ArticleStatus = Literal["pending", "queued", "generating", "completed", "failed", "cancelled"]
SectionStatus = Literal["pending", "researching", "completed", "failed"]
SectionType = Literal["introduction", "h2", "h3", "conclusion", "faq"]
QueueEntryStatus = Literal["queued", "processing", "completed", "failed"]
QueuePriority = Literal["high", "normal", "low"]
CitationPosition = Literal["introduction", "support", "example", "conclusion"]
CitationStyleName = Literal["apa", "mla", "chicago", "harvard", "ieee"]
ResearchStrategyName = Literal["sequential", "parallel", "hybrid"]
ComplexityTier = Literal["simple", "moderate", "complex"]
StructureType = Literal["linear", "hierarchical", "thematic"]
Difficulty = Literal["easy", "medium", "hard"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_datetime(value: Any) -> datetime | None:
    """Parse provider date values leniently.

    Accepts datetimes and ISO-8601 strings (with or without a trailing Z).
    Naive values are treated as UTC. Unparseable values yield None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def extract_domain(url: str) -> str | None:
    """Return the lower-cased hostname of a URL without a leading www."""
    if not url:
        return None
    host = urlparse(url).hostname
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


# --- Research ---


class ResearchSource(BaseModel):
    """A document returned by the web-search provider."""

    title: str = Field(default="", description="Document title")
    url: str = Field(default="", description="Document URL")
    content: str = Field(default="", description="Full extracted content when available")
    excerpt: str = Field(default="", description="Provider snippet")
    score: float = Field(default=0.0, description="Provider's own ranking score")
    published_date: datetime | None = Field(default=None, description="Publication date")
    author: str | None = Field(default=None)
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    credibility_score: float = Field(default=0.0, ge=0.0, le=1.0)
    topics: list[str] = Field(default_factory=list)

    model_config = {"frozen": False}

    @field_validator("published_date", mode="before")
    @classmethod
    def _parse_published_date(cls, value: Any) -> datetime | None:
        return parse_datetime(value)

    @property
    def domain(self) -> str | None:
        return extract_domain(self.url)

    @property
    def combined_score(self) -> float:
        """Weighted score used to order sources for a section."""
        return 0.7 * self.relevance_score + 0.3 * self.credibility_score


class RankedSource(BaseModel):
    """A source with the component scores assigned by the source ranker."""

    source: ResearchSource
    relevance: float = Field(ge=0.0, le=1.0)
    recency: float = Field(ge=0.0, le=1.0)
    authority: float = Field(ge=0.0, le=1.0)
    diversity: float = Field(ge=0.0, le=1.0)
    final_score: float = Field(ge=0.0, le=1.0)


class KeywordMetrics(BaseModel):
    """Keyword metrics from the keyword-metrics provider."""

    keyword: str
    search_volume: int = Field(default=0, ge=0)
    difficulty: int = Field(default=0, ge=0, le=100)
    cpc: float = Field(default=0.0, ge=0.0)
    competition: float = Field(default=0.0, ge=0.0, le=1.0)
    competition_level: Literal["low", "medium", "high"] = "low"
    trend: list[int] = Field(default_factory=list, description="Monthly search volumes, oldest first")


class ResearchQuery(BaseModel):
    """One section's research request against the web-search provider."""

    query: str
    section_topic: str
    main_keyword: str
    section_type: SectionType
    research_topics: list[str] = Field(default_factory=list)
    previous_context: list[str] = Field(
        default_factory=list, description="Titles of up to two preceding sections"
    )
    max_sources: int = Field(default=20, ge=1)


class ResearchResult(BaseModel):
    """Outcome of a single provider research call."""

    query: str
    sources: list[ResearchSource] = Field(default_factory=list)
    summary: str = ""
    key_insights: list[str] = Field(default_factory=list, max_length=5)
    cost: float = Field(default=0.0, ge=0.0)
    processing_time_seconds: float = Field(default=0.0, ge=0.0)
    from_cache: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class Citation(BaseModel):
    """A formatted reference to a research source."""

    id: str
    index: int = Field(ge=1, description="1-based position in the citation list")
    source: ResearchSource
    style: CitationStyleName = "apa"
    in_text: str = ""
    reference: str = ""
    context: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    credibility_score: float = Field(default=0.0, ge=0.0, le=1.0)
    position: CitationPosition = "support"

    @property
    def combined_score(self) -> float:
        return 0.6 * self.relevance_score + 0.4 * self.credibility_score


class CitationIssue(BaseModel):
    """A problem found while validating a citation."""

    citation_id: str
    issue_type: Literal["missing_title", "missing_url", "invalid_url", "low_relevance"]
    severity: Literal["error", "warning"]
    message: str


class SectionResearchData(BaseModel):
    """Research attached to an article section."""

    query: str
    summary: str = ""
    key_insights: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    content_suggestions: list[str] = Field(default_factory=list)
    sources: list[ResearchSource] = Field(default_factory=list)
    cost: float = Field(default=0.0, ge=0.0)
    processing_time_seconds: float = Field(default=0.0, ge=0.0)
    from_cache: bool = False


class SectionResearchResult(BaseModel):
    """Final outcome of researching one outline section."""

    section_id: str
    section_title: str
    section_type: SectionType
    research: SectionResearchData
    citations: list[Citation] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0)


# --- Outline ---


class ContentStrategy(BaseModel):
    """Writing strategy for an article or one of its sections."""

    approach: Literal["informative", "persuasive", "narrative", "technical"] = "informative"
    tone: Literal["professional", "conversational", "formal", "casual"] = "professional"
    perspective: Literal["first-person", "second-person", "third-person"] = "third-person"
    complexity: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    include_examples: bool = True
    include_data: bool = True
    include_citations: bool = True


class OutlineSection(BaseModel):
    """One node of an article outline."""

    id: str
    section_type: SectionType
    title: str
    order: int = Field(ge=1)
    estimated_words: int = Field(ge=0)
    research_topics: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    parent_id: str | None = None
    content_strategy: ContentStrategy = Field(default_factory=ContentStrategy)
    key_points: list[str] = Field(default_factory=list)


class OutlineMetadata(BaseModel):
    """Placeholder quality signals derived from outline structure."""

    seo_score: int = Field(ge=0, le=100)
    difficulty: Difficulty
    estimated_read_time_minutes: int = Field(ge=0)
    structure: StructureType
    complexity: ComplexityTier
    has_research_data: bool = False
    has_serp_data: bool = False
    content_gaps: list[str] = Field(default_factory=list)


class Outline(BaseModel):
    """Planning artifact: ordered sections with dependencies."""

    article_id: str
    keyword: str
    target_word_count: int = Field(ge=1)
    sections: list[OutlineSection]
    metadata: OutlineMetadata
    created_at: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def estimated_word_count(self) -> int:
        return sum(section.estimated_words for section in self.sections)


class KeywordResearch(BaseModel):
    """Upstream keyword research used while planning an outline."""

    keyword: str
    metrics: KeywordMetrics | None = None
    sources: list[RankedSource] = Field(default_factory=list)


class SerpAnalysis(BaseModel):
    """Search-result landscape for the main keyword."""

    top_results: list[ResearchSource] = Field(default_factory=list)
    common_topics: list[str] = Field(default_factory=list)
    faq_present: bool = False
    content_gaps: list[str] = Field(default_factory=list)


# --- Persistence ---


class Article(BaseModel):
    """One generation job."""

    id: str
    organization_id: str
    user_id: str
    keyword: str
    target_word_count: int = Field(default=1500, ge=1)
    writing_style: str = "professional"
    target_audience: str = "general"
    status: ArticleStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    retry_count: int = Field(default=0, ge=0)
    error_message: str | None = None
    current_section: str | None = None
    outline: Outline | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": False}


class ArticleSection(BaseModel):
    """Persisted state of one outline section."""

    id: str
    article_id: str
    outline_section_id: str
    section_type: SectionType
    section_title: str
    section_order: int = Field(ge=1)
    status: SectionStatus = "pending"
    research_data: SectionResearchData | None = None
    citations: list[Citation] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    error_message: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": False}


class QueueEntry(BaseModel):
    """One admission-controlled generation slot."""

    id: str
    article_id: str
    organization_id: str
    status: QueueEntryStatus = "queued"
    priority: QueuePriority = "normal"
    queue_position: int | None = Field(default=None, ge=1)
    worker_id: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"frozen": False}


class QueueCounts(BaseModel):
    """Per-organization queue aggregate returned by the store."""

    queued: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    average_wait_seconds: float = Field(default=0.0, ge=0.0)


class QueueStatus(QueueCounts):
    """Queue read model for one organization."""

    organization_id: str
    max_concurrent: int
    current_load: int


# --- Read models ---


class SectionProgress(BaseModel):
    section_id: str
    title: str
    section_type: SectionType
    status: SectionStatus
    retry_count: int = 0
    error_message: str | None = None


class ResearchProgress(BaseModel):
    """Progress read model for the presentation layer."""

    article_id: str
    status: ArticleStatus
    overall_progress: int = Field(ge=0, le=100)
    sections: list[SectionProgress] = Field(default_factory=list)
    estimated_time_remaining_seconds: float = Field(default=0.0, ge=0.0)
    cost_so_far: float = Field(default=0.0, ge=0.0)
